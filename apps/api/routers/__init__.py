"""Routers package."""

from . import (
    health,
    auth,
    uploads,
    folders,
    leaderboard,
)
