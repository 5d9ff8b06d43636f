"""
Public leaderboard for the location guessing game.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.collaborators import get_auth_provider
from services.auth_provider import AuthProviderClient
from services.leaderboard import leaderboard_service

router = APIRouter()


@router.get("/leaderboard")
async def get_leaderboard(
    limit: int = Query(default=10, ge=1, le=100),
    auth_provider: AuthProviderClient = Depends(get_auth_provider),
    db: AsyncSession = Depends(get_db),
):
    """Users ranked by total points; registered users without games appear with zeros."""
    return await leaderboard_service(db, auth_provider, limit=limit)
