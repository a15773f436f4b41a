from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, JSON, Index

from ..db import Base


class User(Base):
    """
    Public hero profile. Scores here back both the leaderboard and rank
    queries, so every XP award updates xp, lifetime_xp and this_week_xp
    together.
    """
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)  # auth subject (uid)
    name = Column(String, nullable=True)
    city = Column(String, nullable=True, index=True)
    gender = Column(String(16), nullable=True)
    verified_gender = Column(String(16), nullable=True)
    verified_at = Column(DateTime, nullable=True)

    xp = Column(Integer, default=0, nullable=False)  # spendable balance
    lifetime_xp = Column(Integer, default=0, nullable=False)  # all-time ranking
    this_week_xp = Column(Integer, default=0, nullable=False)
    reliability_score = Column(Integer, default=0, nullable=False)
    level = Column(Integer, default=1, nullable=False)
    quests_completed = Column(Integer, default=0, nullable=False)

    badges = Column(JSON, default=list, nullable=False)
    feedback_counts = Column(JSON, default=dict, nullable=False)  # {"leader": 3, ...}

    last_weekly_reset_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=True)

    __table_args__ = (
        Index("ix_users_city_this_week_xp", "city", "this_week_xp"),
        Index("ix_users_city_lifetime_xp", "city", "lifetime_xp"),
        Index("ix_users_city_reliability", "city", "reliability_score"),
    )
