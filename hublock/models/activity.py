"""
Global activity feed (quest completions, badge unlocks, squad reviews).
"""
from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime

from ..db import Base


class ActivityEntry(Base):
    __tablename__ = "activity_feed"

    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(String(32), nullable=False)  # quest, badge, vibe_check
    user_id = Column(String(64), nullable=False, index=True)
    user_name = Column(String, nullable=True)
    action = Column(String, nullable=False)
    target = Column(String, nullable=True)
    earned_xp = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
