"""
Quest Completion Service - the server-side "finalize quest" operation.

Key rules:
- One award per (quest, user): a verification already marked rewarded
  returns already_claimed and changes nothing; the claim is a locked read
  plus a conditional UPDATE so concurrent workers cannot both award
- Only a saved, completed verification record can be rewarded
- XP uses the same rules as the client-side reward calculator
- Squad size is counted at finalize time
- Activity feed rows are written after the award commits
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from ..models import (
    ActivityEntry,
    Quest,
    QuestMember,
    QuestVerification,
    User,
    QUEST_STATUS_COMPLETED,
)
from .errors import NotAQuestMember, QuestNotFound, VerificationMissing
from .rewards import calculate_level, compute_xp, is_on_time
from .showdown import is_showdown_active

logger = logging.getLogger(__name__)

BONUS_PUNCTUALITY = "PUNCTUALITY"
BONUS_PHOTO_EVIDENCE = "PHOTO_EVIDENCE"
BONUS_SQUAD_LEADER = "SQUAD_LEADER"
BONUS_SHOWDOWN = "SHOWDOWN_SUNDAY"

BADGE_FIRST_MISSION = "FIRST_MISSION"
BADGE_EARLY_BIRD = "EARLY_BIRD"


@dataclass
class FinalizeResult:
    success: bool
    already_claimed: bool = False
    earned_xp: int = 0
    new_level: Optional[int] = None
    bonuses: List[str] = field(default_factory=list)
    new_badges: List[str] = field(default_factory=list)
    quest_title: Optional[str] = None
    on_time: bool = False
    has_evidence: bool = False
    multiplier_applied: bool = False
    squad_size: int = 1


def award_xp(user: User, amount: int) -> int:
    """Credit XP to balance, lifetime and weekly scores; returns the new level."""
    user.xp = (user.xp or 0) + amount
    user.lifetime_xp = (user.lifetime_xp or 0) + amount
    user.this_week_xp = (user.this_week_xp or 0) + amount
    user.level = calculate_level(user.lifetime_xp).level
    return user.level


def locked_verification_query(db: Session, quest_id: str, user_id: str):
    """Verification row for (quest, user), read fresh under a row lock."""
    return db.query(QuestVerification).filter(
        QuestVerification.quest_id == quest_id,
        QuestVerification.user_id == user_id,
    ).with_for_update().populate_existing()


class QuestCompletionService:
    """Applies a verified completion to the participant's stats exactly once."""

    @staticmethod
    def claim_reward(db: Session, record: QuestVerification, earned_xp: int, now: datetime) -> bool:
        """
        Flip the record to rewarded if nobody else has.

        Conditional UPDATE on rewarded = false; False means another worker
        claimed it first and this call must not award anything.
        """
        claimed = db.query(QuestVerification).filter(
            QuestVerification.id == record.id,
            QuestVerification.rewarded.is_(False),
        ).update(
            {"rewarded": True, "earned_xp": earned_xp, "rewarded_at": now},
            synchronize_session=False,
        )
        db.refresh(record)
        return claimed == 1

    @staticmethod
    def _already_claimed(db: Session, quest: Quest, record: QuestVerification) -> FinalizeResult:
        awarded_at = record.rewarded_at or record.completed_at
        return FinalizeResult(
            success=True,
            already_claimed=True,
            earned_xp=record.earned_xp or 0,
            quest_title=quest.title,
            on_time=is_on_time(record.completed_at, quest.start_time),
            has_evidence=record.has_photo,
            multiplier_applied=bool(awarded_at) and is_showdown_active(awarded_at.replace(tzinfo=timezone.utc)),
            squad_size=db.query(QuestMember).filter(QuestMember.quest_id == quest.id).count(),
        )

    @staticmethod
    def finalize(
        db: Session,
        quest_id: str,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> FinalizeResult:
        """
        Award XP for a verified quest completion.

        Args:
            now: naive UTC timestamp (defaults to utcnow)

        Raises:
            QuestNotFound: unknown quest id
            NotAQuestMember: user is not in the quest's squad
            VerificationMissing: no completed verification record to award
        """
        now = now or datetime.utcnow()

        quest = db.query(Quest).filter(Quest.id == quest_id).first()
        if not quest:
            raise QuestNotFound()

        member = db.query(QuestMember).filter(
            QuestMember.quest_id == quest_id,
            QuestMember.user_id == user_id,
        ).first()
        if not member:
            raise NotAQuestMember()

        record = locked_verification_query(db, quest_id, user_id).first()
        if record is None or not record.completed:
            logger.warning(f"Finalize refused for quest {quest_id} user {user_id}: no completed verification")
            raise VerificationMissing()

        if record.rewarded:
            logger.info(f"Quest {quest_id} already rewarded for user {user_id}")
            return QuestCompletionService._already_claimed(db, quest, record)

        has_photo = record.has_photo
        on_time = is_on_time(record.completed_at, quest.start_time)
        is_leader = quest.leader_id == user_id
        squad_size = db.query(QuestMember).filter(QuestMember.quest_id == quest_id).count()
        showdown = is_showdown_active(now.replace(tzinfo=timezone.utc))

        earned_xp = compute_xp(
            on_time=on_time,
            has_evidence=has_photo,
            skipped=not has_photo,
            is_leader=is_leader,
            squad_size=squad_size,
            multiplier_active=showdown,
        )

        if not QuestCompletionService.claim_reward(db, record, earned_xp, now):
            logger.info(f"Quest {quest_id} claimed concurrently for user {user_id}")
            return QuestCompletionService._already_claimed(db, quest, record)

        bonuses = []
        if on_time:
            bonuses.append(BONUS_PUNCTUALITY)
        if has_photo:
            bonuses.append(BONUS_PHOTO_EVIDENCE)
            if is_leader and squad_size > 1:
                bonuses.append(BONUS_SQUAD_LEADER)
        if showdown:
            bonuses.append(BONUS_SHOWDOWN)

        user = db.query(User).filter(User.id == user_id).first()
        if user is None:
            user = User(id=user_id, name=member.name, xp=0, lifetime_xp=0, this_week_xp=0,
                        reliability_score=0, level=1, quests_completed=0, badges=[], feedback_counts={})
            db.add(user)

        previous_badges = list(user.badges or [])
        new_level = award_xp(user, earned_xp)
        user.reliability_score = (user.reliability_score or 0) + 1
        user.quests_completed = (user.quests_completed or 0) + 1

        badges = list(previous_badges)
        if BADGE_FIRST_MISSION not in badges:
            badges.append(BADGE_FIRST_MISSION)
        if on_time and BADGE_EARLY_BIRD not in badges:
            badges.append(BADGE_EARLY_BIRD)
        user.badges = badges
        unlocked = [b for b in badges if b not in previous_badges]

        quest.status = QUEST_STATUS_COMPLETED
        quest.completed_at = quest.completed_at or now
        completed_by = list(quest.completed_by or [])
        if user_id not in completed_by:
            completed_by.append(user_id)
            quest.completed_by = completed_by

        db.commit()

        logger.info(
            f"Finalized quest {quest_id} for user {user_id}: earned_xp={earned_xp} "
            f"bonuses={bonuses} level={new_level}"
        )

        display_name = user.name or member.name or "Unknown Hero"
        db.add(ActivityEntry(
            type="quest",
            user_id=user_id,
            user_name=display_name,
            action=f"completed {quest.title or 'a quest'}",
            target=quest.title or "Quest",
            earned_xp=earned_xp,
        ))
        for badge in unlocked:
            db.add(ActivityEntry(
                type="badge",
                user_id=user_id,
                user_name=display_name,
                action=f"unlocked {badge} badge",
                target=badge,
            ))
        db.commit()

        return FinalizeResult(
            success=True,
            earned_xp=earned_xp,
            new_level=new_level,
            bonuses=bonuses,
            new_badges=badges,
            quest_title=quest.title,
            on_time=on_time,
            has_evidence=has_photo,
            multiplier_applied=showdown,
            squad_size=squad_size,
        )
