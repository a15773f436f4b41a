"""
Peer Review Service - post-quest "vibe check" where squad members tag each other.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List

from sqlalchemy.orm import Session

from ..models import ActivityEntry, Quest, QuestMember, User
from .errors import NotAQuestMember, QuestNotFound
from .quest_completion import award_xp

logger = logging.getLogger(__name__)

REVIEWER_REWARD_XP = 50
XP_PER_TAG = 5

# tag -> (count needed, badge id)
BADGE_THRESHOLDS = {
    "leader": (5, "SQUAD_LEADER"),
    "storyteller": (5, "MASTER_STORYTELLER"),
    "funny": (5, "ICEBREAKER"),
    "listener": (5, "EMPATHETIC_SOUL"),
    "teamplayer": (5, "TEAM_PLAYER"),
    "intellectual": (5, "PHILOSOPHER"),
}


@dataclass
class PeerReviewResult:
    success: bool
    earned_xp: int
    reviewed: List[str] = field(default_factory=list)
    unlocked_badges: Dict[str, List[str]] = field(default_factory=dict)


def _get_or_create_user(db: Session, user_id: str) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        user = User(id=user_id, xp=0, lifetime_xp=0, this_week_xp=0, reliability_score=0,
                    level=1, quests_completed=0, badges=[], feedback_counts={})
        db.add(user)
    return user


class PeerReviewService:

    @staticmethod
    def submit(db: Session, quest_id: str, reviewer_id: str, reviews: Dict[str, List[str]]) -> PeerReviewResult:
        """
        Apply a reviewer's tags to their squad mates.

        Only current members of the quest can be reviewed; the reviewer's own
        entry is ignored.

        Raises:
            QuestNotFound: unknown quest id
            NotAQuestMember: reviewer was not in the squad
        """
        quest = db.query(Quest).filter(Quest.id == quest_id).first()
        if not quest:
            raise QuestNotFound()

        member_ids = {
            m.user_id for m in db.query(QuestMember).filter(QuestMember.quest_id == quest_id).all()
        }
        if reviewer_id not in member_ids:
            raise NotAQuestMember("You were not a member of this quest.")

        reviewer = _get_or_create_user(db, reviewer_id)
        award_xp(reviewer, REVIEWER_REWARD_XP)

        reviewed = []
        unlocked_badges: Dict[str, List[str]] = {}
        for target_id, tags in (reviews or {}).items():
            if target_id == reviewer_id or not tags:
                continue
            if target_id not in member_ids:
                logger.warning(f"Ignoring review of non-member {target_id} on quest {quest_id}")
                continue

            target = _get_or_create_user(db, target_id)
            award_xp(target, len(tags) * XP_PER_TAG)

            counts = dict(target.feedback_counts or {})
            badges = list(target.badges or [])
            for tag in tags:
                counts[tag] = counts.get(tag, 0) + 1
                threshold = BADGE_THRESHOLDS.get(tag)
                if threshold and counts[tag] >= threshold[0] and threshold[1] not in badges:
                    badges.append(threshold[1])
                    unlocked_badges.setdefault(target_id, []).append(threshold[1])
                    db.add(ActivityEntry(
                        type="badge",
                        user_id=target_id,
                        user_name=target.name or "Hero",
                        action=f"earned {threshold[1].replace('_', ' ')} badge",
                        target=threshold[1],
                    ))
            target.feedback_counts = counts
            target.badges = badges
            reviewed.append(target_id)

        db.add(ActivityEntry(
            type="vibe_check",
            user_id=reviewer_id,
            user_name=reviewer.name or "Hero",
            action="completed squad review",
            target="Vibe Check",
            earned_xp=REVIEWER_REWARD_XP,
        ))
        db.commit()

        logger.info(f"Peer review on quest {quest_id} by {reviewer_id}: reviewed={reviewed}")
        return PeerReviewResult(
            success=True,
            earned_xp=REVIEWER_REWARD_XP,
            reviewed=reviewed,
            unlocked_badges=unlocked_badges,
        )
