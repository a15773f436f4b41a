"""
Quest store - the persistence collaborator of the verification pipeline.

The pipeline only ever talks to the database through this class: point reads
of quests, hubs and users, a fresh squad count, the verification record
upsert, and the two server operations (finalize quest, submit peer reviews).
Every read goes to the database; nothing is cached across calls, so a member
who joined a second ago is counted.
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models import Hub, Quest, QuestMember, QuestVerification, User
from .errors import NotAQuestMember
from .peer_review import PeerReviewService
from .quest_completion import QuestCompletionService

logger = logging.getLogger(__name__)

VERIFIED_BADGE_PHOTO_COUNT = 3


class QuestStore:
    """SQLAlchemy-backed quest document store."""

    def __init__(self, db: Session):
        self.db = db

    # Reads

    def get_quest(self, quest_id: str) -> Optional[Quest]:
        return self.db.query(Quest).filter(Quest.id == quest_id).first()

    def get_hub(self, hub_id: str) -> Optional[Hub]:
        return self.db.query(Hub).filter(Hub.id == hub_id).first()

    def find_hub_by_name(self, name: str) -> Optional[Hub]:
        return self.db.query(Hub).filter(Hub.name == name).order_by(Hub.created_at).first()

    def get_hub_for_quest(self, quest: Quest) -> Optional[Hub]:
        """Resolve the quest's hub by id, falling back to the name for older quests."""
        if quest.hub_id:
            return self.get_hub(quest.hub_id)
        if quest.hub_name:
            return self.find_hub_by_name(quest.hub_name)
        return None

    def get_user(self, user_id: str) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def get_member(self, quest_id: str, user_id: str) -> Optional[QuestMember]:
        return self.db.query(QuestMember).filter(
            QuestMember.quest_id == quest_id,
            QuestMember.user_id == user_id,
        ).first()

    def list_members(self, quest_id: str) -> List[QuestMember]:
        return self.db.query(QuestMember).filter(
            QuestMember.quest_id == quest_id
        ).order_by(QuestMember.joined_at).all()

    def count_members(self, quest_id: str) -> int:
        return self.db.query(func.count(QuestMember.id)).filter(
            QuestMember.quest_id == quest_id
        ).scalar() or 0

    def get_verification(self, quest_id: str, user_id: str) -> Optional[QuestVerification]:
        return self.db.query(QuestVerification).filter(
            QuestVerification.quest_id == quest_id,
            QuestVerification.user_id == user_id,
        ).first()

    # Writes

    def save_verification(
        self,
        quest_id: str,
        user_id: str,
        location_verified: bool,
        code_verified: bool,
        photo_url: str = "",
        now: Optional[datetime] = None,
    ) -> QuestVerification:
        """
        Write the verification record for (quest, user), merging into an
        existing row. Also records the user in the quest's completed_by list.
        A record that was already rewarded is returned unchanged.

        Raises:
            NotAQuestMember: the user never joined this quest
        """
        if not self.get_member(quest_id, user_id):
            raise NotAQuestMember()

        now = now or datetime.utcnow()
        record = self.get_verification(quest_id, user_id)
        if record is not None and record.rewarded:
            logger.info(f"Verification quest={quest_id} user={user_id} already rewarded; record left as is")
            return record
        if record is None:
            record = QuestVerification(quest_id=quest_id, user_id=user_id, rewarded=False)
            self.db.add(record)

        record.completed = True
        record.completed_at = now
        record.location_verified = bool(location_verified)
        record.code_verified = bool(code_verified)
        record.photo_url = photo_url or ""

        quest = self.get_quest(quest_id)
        if quest is not None:
            completed_by = list(quest.completed_by or [])
            if user_id not in completed_by:
                completed_by.append(user_id)
                quest.completed_by = completed_by
            quest.updated_at = now

        self.db.commit()
        self.db.refresh(record)

        logger.info(
            f"Saved verification quest={quest_id} user={user_id} "
            f"photo={'yes' if record.photo_url else 'no'}"
        )

        if record.photo_url:
            self._grant_verified_badge(user_id)

        return record

    def _grant_verified_badge(self, user_id: str) -> None:
        """Verify the profile's gender once the user has enough photo verifications."""
        photo_count = self.db.query(func.count(QuestVerification.id)).filter(
            QuestVerification.user_id == user_id,
            QuestVerification.photo_url != "",
        ).scalar() or 0

        if photo_count < VERIFIED_BADGE_PHOTO_COUNT:
            return

        user = self.get_user(user_id)
        if user is None or user.verified_gender or not user.gender:
            return

        user.verified_gender = user.gender
        user.verified_at = datetime.utcnow()
        self.db.commit()
        logger.info(f"User {user_id} auto-verified as {user.gender} ({photo_count} photos)")

    # Server operations

    def finalize_quest(self, quest_id: str, user_id: str, now: Optional[datetime] = None):
        return QuestCompletionService.finalize(self.db, quest_id, user_id, now=now)

    def submit_peer_reviews(self, quest_id: str, reviewer_id: str, reviews: Dict[str, List[str]]):
        return PeerReviewService.submit(self.db, quest_id, reviewer_id, reviews)

    def rollback(self) -> None:
        self.db.rollback()
