"""
Submission of a completed verification attempt.

SubmissionGuard is the single-attempt latch: it is taken before the first
persistence call, never released after success, and released once after a
failure so the user gets exactly one retry. QuestFinalizer performs the
guarded sequence: save the verification record, trigger quest finalization,
report the reward that finalization credited.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from .errors import FinalizeError
from .evidence import CompressedImage, Evidence, SkipMarker
from .quest_store import QuestStore
from .rewards import RewardOutcome, compute_xp, is_on_time
from .showdown import is_showdown_active

logger = logging.getLogger(__name__)

LATCH_OPEN = "open"
LATCH_HELD = "held"
LATCH_DONE = "done"
LATCH_EXHAUSTED = "exhausted"


class SubmissionGuard:
    """At-most-once latch for the finalize sequence of one attempt."""

    MAX_RETRIES = 1

    def __init__(self):
        self.state = LATCH_OPEN
        self.failures = 0

    def acquire(self) -> bool:
        """Take the latch. False means another submission is running or finished."""
        if self.state != LATCH_OPEN:
            return False
        self.state = LATCH_HELD
        return True

    def mark_done(self) -> None:
        self.state = LATCH_DONE

    def release_after_failure(self) -> bool:
        """Reopen after a failed submission if a retry is still allowed."""
        self.failures += 1
        if self.failures <= self.MAX_RETRIES:
            self.state = LATCH_OPEN
            return True
        self.state = LATCH_EXHAUSTED
        return False

    def exhaust(self) -> None:
        self.state = LATCH_EXHAUSTED

    @property
    def is_open(self) -> bool:
        return self.state == LATCH_OPEN


@dataclass(frozen=True)
class SubmissionRequest:
    quest_id: str
    user_id: str
    quest_start_time: Optional[datetime]
    leader_id: Optional[str]
    evidence: Evidence
    location_verified: bool = True
    code_verified: bool = True

    @property
    def has_evidence(self) -> bool:
        return isinstance(self.evidence, CompressedImage)

    @property
    def skipped(self) -> bool:
        return isinstance(self.evidence, SkipMarker)

    @property
    def photo_url(self) -> str:
        return self.evidence.as_data_url() if self.has_evidence else ""


def _utcnow() -> datetime:
    return datetime.utcnow()


class QuestFinalizer:
    """
    Runs the finalize sequence against the quest store.

    The record write is the durability boundary: if it fails the whole
    submission fails with FinalizeError. The quest finalization call after it
    is independent and its failure is only logged; the outcome then comes
    from the attempt itself.
    """

    def __init__(self, store: QuestStore, clock: Callable[[], datetime] = _utcnow):
        self.store = store
        self._clock = clock

    async def finalize(self, request: SubmissionRequest) -> RewardOutcome:
        verified_at = self._clock()

        try:
            self.store.save_verification(
                request.quest_id,
                request.user_id,
                location_verified=request.location_verified,
                code_verified=request.code_verified,
                photo_url=request.photo_url,
                now=verified_at,
            )
        except (SQLAlchemyError, OSError) as e:
            logger.error(
                f"Saving verification failed for quest={request.quest_id} user={request.user_id}: {e}",
                exc_info=True,
            )
            self.store.rollback()
            raise FinalizeError() from e

        try:
            result = self.store.finalize_quest(request.quest_id, request.user_id, now=verified_at)
        except Exception as e:
            self.store.rollback()
            logger.warning(f"finalize_quest failed for quest={request.quest_id} (record already saved): {e}",
                           exc_info=True)
            return self._local_outcome(request, verified_at)

        # Report what was actually credited, including an earlier award
        outcome = RewardOutcome(
            xp=result.earned_xp,
            multiplier_applied=result.multiplier_applied,
            has_evidence=result.has_evidence,
            on_time=result.on_time,
            squad_size=result.squad_size,
        )
        logger.info(
            f"Verification finalized quest={request.quest_id} user={request.user_id} "
            f"xp={outcome.xp} showdown={outcome.multiplier_applied} evidence={outcome.has_evidence} "
            f"already_claimed={result.already_claimed}"
        )
        return outcome

    def _local_outcome(self, request: SubmissionRequest, verified_at: datetime) -> RewardOutcome:
        """Reward computed from the attempt itself when the server award did not run."""
        # Squad may have grown since the attempt started; count it now.
        squad_size = self.store.count_members(request.quest_id)
        on_time = is_on_time(verified_at, request.quest_start_time)
        multiplier = is_showdown_active(verified_at.replace(tzinfo=timezone.utc))

        xp = compute_xp(
            on_time=on_time,
            has_evidence=request.has_evidence,
            skipped=request.skipped,
            is_leader=request.leader_id == request.user_id,
            squad_size=squad_size,
            multiplier_active=multiplier,
        )

        logger.info(
            f"Verification saved without award quest={request.quest_id} user={request.user_id} "
            f"xp={xp} showdown={multiplier} evidence={request.has_evidence}"
        )
        return RewardOutcome(
            xp=xp,
            multiplier_applied=multiplier,
            has_evidence=request.has_evidence,
            on_time=on_time,
            squad_size=squad_size,
        )
