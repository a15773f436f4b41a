"""
Quest, hub and squad models.

A Quest points at its Hub either by id or (older quests) by hub name.
Hub coordinates live in the structured `coordinates` JSON field, with the flat
lat/lng/long columns kept for hubs created before it existed; resolve them
through services.geo.normalize_hub_coordinates, never directly.
"""
import uuid
from datetime import datetime

from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    Boolean,
    DateTime,
    Text,
    JSON,
    ForeignKey,
    UniqueConstraint,
)

from ..db import Base

QUEST_STATUS_OPEN = "open"
QUEST_STATUS_COMPLETED = "completed"


def _uuid_str() -> str:
    return str(uuid.uuid4())


class Hub(Base):
    __tablename__ = "hubs"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    name = Column(String, nullable=False, index=True)
    city = Column(String, nullable=True)
    secret_code = Column(String(64), nullable=True)

    # {"latitude": .., "longitude": ..}
    coordinates = Column(JSON, nullable=True)
    # Legacy flat fields
    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)
    long = Column(Float, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Quest(Base):
    __tablename__ = "quests"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    title = Column(String, nullable=False)
    start_time = Column(DateTime, nullable=False)
    leader_id = Column(String(64), nullable=False, index=True)
    status = Column(String(32), default=QUEST_STATUS_OPEN, nullable=False)
    gender_requirement = Column(String(16), nullable=True)  # None = anyone
    hub_id = Column(String(36), ForeignKey("hubs.id"), nullable=True)
    hub_name = Column(String, nullable=True)
    vibe = Column(String(32), nullable=True)

    completed_by = Column(JSON, default=list, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=True)


class QuestMember(Base):
    __tablename__ = "quest_members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    quest_id = Column(String(36), ForeignKey("quests.id"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    name = Column(String, nullable=True)
    is_leader = Column(Boolean, default=False, nullable=False)
    joined_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("quest_id", "user_id", name="uq_quest_members_quest_user"),
    )


class QuestVerification(Base):
    """
    Terminal outcome of one participant's verification for one quest.

    At most one row per (quest, user). Saving again merges into the same row,
    so a retried save after a failed one corrects rather than duplicates.
    `rewarded` flips only when the completion service has applied XP.
    """
    __tablename__ = "quest_verifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    quest_id = Column(String(36), ForeignKey("quests.id"), nullable=False)
    user_id = Column(String(64), nullable=False, index=True)

    completed = Column(Boolean, default=True, nullable=False)
    location_verified = Column(Boolean, default=False, nullable=False)
    code_verified = Column(Boolean, default=False, nullable=False)
    photo_url = Column(Text, default="", nullable=False)  # data URL or ""
    completed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    rewarded = Column(Boolean, default=False, nullable=False)
    earned_xp = Column(Integer, nullable=True)
    rewarded_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("quest_id", "user_id", name="uq_quest_verifications_quest_user"),
    )

    @property
    def has_photo(self) -> bool:
        return bool(self.photo_url)
