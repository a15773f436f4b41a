"""
Models package - organized by domain
"""
from .user import User
from .quest import (
    Hub,
    Quest,
    QuestMember,
    QuestVerification,
    QUEST_STATUS_OPEN,
    QUEST_STATUS_COMPLETED,
)
from .activity import ActivityEntry

__all__ = [
    "User",
    "Hub",
    "Quest",
    "QuestMember",
    "QuestVerification",
    "ActivityEntry",
    "QUEST_STATUS_OPEN",
    "QUEST_STATUS_COMPLETED",
]
