"""
Leaderboard and showdown endpoints
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ..db import get_db
from ..dependencies.auth import get_current_user_id
from ..schemas.leaderboard import LeaderboardEntry, LeaderboardResponse, RankResponse, ShowdownResponse
from ..services.leaderboard import CATEGORY_WEEKLY, DISPLAY_FIELDS, RankResolver, category_field, score_for
from ..services.quest_store import QuestStore
from ..services.showdown import (
    format_countdown,
    is_showdown_active,
    local_now,
    showdown_multiplier,
    time_remaining_in_window,
    time_until_weekly_reset,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["leaderboard"])


def _validate_category(category: str) -> str:
    try:
        category_field(category)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return category


@router.get("/v1/leaderboard/{city}", response_model=LeaderboardResponse)
async def get_leaderboard(
    city: str,
    category: str = Query(CATEGORY_WEEKLY),
    limit: Optional[int] = Query(None, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Top heroes in a city for a category"""
    category = _validate_category(category)
    heroes = RankResolver(db).top(city, category, limit)
    display_field = DISPLAY_FIELDS[category]

    entries = [
        LeaderboardEntry(
            position=index + 1,
            user_id=hero.id,
            name=hero.name,
            level=hero.level or 1,
            score=score_for(hero, category),
            display_score=getattr(hero, display_field) or 0,
            badges=list(hero.badges or []),
        )
        for index, hero in enumerate(heroes)
    ]
    return LeaderboardResponse(city=city, category=category, entries=entries)


@router.get("/v1/leaderboard/{city}/rank", response_model=RankResponse)
async def get_rank(
    city: str,
    category: str = Query(CATEGORY_WEEKLY),
    score: Optional[int] = Query(None, ge=0),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """
    Rank for a score (defaults to the caller's own score). Computed by count,
    independent of the top-N listing.
    """
    category = _validate_category(category)
    if score is None:
        user = QuestStore(db).get_user(user_id)
        score = score_for(user, category) if user else 0

    rank = RankResolver(db).rank(city, category, score)
    return RankResponse(city=city, category=category, score=score, rank=rank)


@router.get("/v1/showdown", response_model=ShowdownResponse)
async def get_showdown():
    """Showdown Sunday window state and countdowns"""
    now = local_now()
    remaining = time_remaining_in_window(now)
    until_reset = time_until_weekly_reset(now)
    active = is_showdown_active(now)
    return ShowdownResponse(
        active=active,
        multiplier=showdown_multiplier(now),
        time_remaining_seconds=int(remaining.total_seconds()),
        time_until_reset_seconds=int(until_reset.total_seconds()),
        countdown=format_countdown(remaining if active else until_reset),
    )
