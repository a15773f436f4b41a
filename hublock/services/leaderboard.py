"""
Leaderboard and rank resolution.

A participant's rank is a count query, never derived from the top-N listing:
the two reads can race and briefly disagree, and the rank must stay
consistent with the participant's own score.
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..core.config import settings
from ..models import User

logger = logging.getLogger(__name__)

CATEGORY_WEEKLY = "weekly"
CATEGORY_ALL_TIME = "all-time"
CATEGORY_RELIABILITY = "reliability"

# Category -> ranking column
CATEGORY_FIELDS = {
    CATEGORY_WEEKLY: User.this_week_xp,
    CATEGORY_ALL_TIME: User.lifetime_xp,
    CATEGORY_RELIABILITY: User.reliability_score,
}

# Category -> value shown next to a hero (all-time shows the spendable balance)
DISPLAY_FIELDS = {
    CATEGORY_WEEKLY: "this_week_xp",
    CATEGORY_ALL_TIME: "xp",
    CATEGORY_RELIABILITY: "reliability_score",
}


def category_field(category: str):
    try:
        return CATEGORY_FIELDS[category]
    except KeyError:
        raise ValueError(f"Unknown leaderboard category: {category!r}")


def score_for(user: User, category: str) -> int:
    """The user's ranking score for a category."""
    return getattr(user, category_field(category).key) or 0


class RankResolver:

    def __init__(self, db: Session):
        self.db = db

    def rank(self, city: str, category: str, my_score: float) -> int:
        """
        1 + number of peers in the city with a strictly greater score.

        Equal scores share a rank and ranks may skip numbers.
        """
        column = category_field(category)
        higher = self.db.query(func.count(User.id)).filter(
            User.city == city,
            column > my_score,
        ).scalar() or 0
        return higher + 1

    def top(self, city: str, category: str, limit: Optional[int] = None) -> List[User]:
        """Highest-N heroes in a city for a category."""
        column = category_field(category)
        limit = limit or settings.LEADERBOARD_LIMIT
        return self.db.query(User).filter(
            User.city == city
        ).order_by(column.desc(), User.id).limit(limit).all()


def reset_weekly_scores(db: Session, now: Optional[datetime] = None) -> int:
    """Zero every user's weekly XP. Returns the number of users reset."""
    now = now or datetime.utcnow()
    count = db.query(User).update(
        {User.this_week_xp: 0, User.last_weekly_reset_at: now},
        synchronize_session=False,
    )
    db.commit()
    logger.info(f"Weekly XP reset for {count} users")
    return count
