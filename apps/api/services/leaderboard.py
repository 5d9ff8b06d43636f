"""Leaderboard aggregation over guessed uploads."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.upload import Upload
from services.auth_provider import AuthProviderClient, UserProfile


@dataclass
class LeaderboardEntry:
    userId: str
    displayName: str
    userEmail: Optional[str]
    avatarUrl: Optional[str]
    totalPoints: int
    gamesPlayed: int
    bestScore: int
    averageDistance: Optional[float]


@dataclass
class ScoreTotals:
    user_id: str
    total_points: int = 0
    games_played: int = 0
    best_score: int = 0
    average_distance: Optional[float] = None


def _fallback_name(user_id: str) -> str:
    return f"Player {user_id[:6]}"


def build_leaderboard(
    totals: Iterable[ScoreTotals],
    profiles: Sequence[UserProfile] = (),
    limit: Optional[int] = None,
) -> List[LeaderboardEntry]:
    """
    Rank users by total points, descending. Registered users without games
    are included with zero totals; ties keep aggregation order.
    """
    totals_by_id: Dict[str, ScoreTotals] = {}
    for stats in totals:
        totals_by_id.setdefault(str(stats.user_id), stats)
    profiles_by_id = {profile.user_id: profile for profile in profiles}

    user_ids: List[str] = list(totals_by_id.keys())
    user_ids.extend(profile.user_id for profile in profiles if profile.user_id not in totals_by_id)

    entries: List[LeaderboardEntry] = []
    for user_id in user_ids:
        stats = totals_by_id.get(user_id) or ScoreTotals(user_id=user_id)
        profile = profiles_by_id.get(user_id)
        average = round(stats.average_distance, 2) if stats.average_distance is not None else None
        entries.append(
            LeaderboardEntry(
                userId=user_id,
                displayName=(profile.display_name if profile and profile.display_name else _fallback_name(user_id)),
                userEmail=profile.email if profile else None,
                avatarUrl=profile.avatar_url if profile else None,
                totalPoints=stats.total_points,
                gamesPlayed=stats.games_played,
                bestScore=stats.best_score,
                averageDistance=average,
            )
        )

    entries.sort(key=lambda entry: entry.totalPoints, reverse=True)
    return entries[:limit] if limit is not None else entries


async def score_totals(db: AsyncSession) -> List[ScoreTotals]:
    """Per-user totals over scored uploads, in order of each user's first game."""
    result = await db.execute(
        select(
            Upload.user_id,
            func.sum(Upload.points),
            func.count(Upload.points),
            func.max(Upload.points),
            func.avg(Upload.distance_km),
        )
        .where(Upload.points.is_not(None))
        .group_by(Upload.user_id)
        .order_by(func.min(Upload.created_at), Upload.user_id)
    )
    return [
        ScoreTotals(
            user_id=str(user_id),
            total_points=int(total or 0),
            games_played=int(games or 0),
            best_score=int(best or 0),
            average_distance=float(average) if average is not None else None,
        )
        for user_id, total, games, best, average in result.all()
    ]


async def leaderboard_service(
    db: AsyncSession,
    auth_provider: AuthProviderClient,
    limit: int = 10,
) -> Dict[str, Any]:
    totals = await score_totals(db)
    profiles = await auth_provider.list_profiles()
    entries = build_leaderboard(totals, profiles, limit=limit)
    return {
        "leaderboard": [dict(asdict(entry), rank=index) for index, entry in enumerate(entries, start=1)],
        "count": len(entries),
    }
