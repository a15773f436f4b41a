"""
Verification state machine.

A VerificationSession is one participant's attempt at proving presence for a
quest: location (layer 1), hub secret (layer 2), photo evidence or a
confirmed skip (layer 3), then a single guarded submission. Everything lives
in memory until submit; only the terminal outcome reaches the store.

Errors raised at a suspension point (sensor, compression, persistence) are
caught at that step and stored as session state. Only StaleSessionError halts
the attempt.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, List, Optional

from ..core.config import settings
from ..models import Hub, Quest
from .errors import (
    CaptureError,
    ChallengeMismatch,
    HubNotFound,
    InvalidTransition,
    QuestNotFound,
    StaleSessionError,
    VerificationError,
)
from .evidence import SKIPPED, CompressedImage, Evidence, EvidenceCapture
from .geo import Coordinates, GeofencePolicy, normalize_hub_coordinates, require_proximity
from .location import LocationProvider, acquire_position
from .quest_store import QuestStore
from .rewards import RewardOutcome
from .secret_challenge import verify_secret
from .submission import QuestFinalizer, SubmissionGuard, SubmissionRequest

logger = logging.getLogger(__name__)


class Layer(IntEnum):
    LOCATION = 1
    SECRET = 2
    EVIDENCE = 3


GPS_IDLE = "idle"
GPS_CHECKING = "checking"
GPS_SUCCESS = "success"
GPS_ERROR = "error"

SECRET_IDLE = "idle"
SECRET_ERROR = "error"

EVIDENCE_IDLE = "idle"
EVIDENCE_CAPTURING = "capturing"
EVIDENCE_CAPTURED = "captured"
EVIDENCE_SKIPPED = "skipped"

PHASE_VERIFYING = "verifying"
PHASE_FINALIZING = "finalizing"
PHASE_COMPLETE = "complete"
PHASE_FAILED = "failed"
PHASE_ABANDONED = "abandoned"
PHASE_HALTED = "halted"


@dataclass(frozen=True)
class VerificationContext:
    """What a session needs to know about the quest, resolved once up front."""
    quest: Quest
    hub: Hub
    hub_location: Optional[Coordinates]
    hub_secret: str

    @property
    def quest_id(self) -> str:
        return self.quest.id


def load_verification_context(store: QuestStore, quest_id: str, user_id: Optional[str]) -> VerificationContext:
    """
    Resolve quest, hub and normalized hub coordinates for an attempt.

    Missing coordinates are not an error here; they surface as
    MissingCoordinates when the location layer runs.

    Raises:
        StaleSessionError: no signed-in user
        QuestNotFound: unknown quest id
        HubNotFound: the quest's hub reference does not resolve
    """
    if not user_id:
        raise StaleSessionError()

    quest = store.get_quest(quest_id)
    if quest is None:
        raise QuestNotFound()

    hub = store.get_hub_for_quest(quest)
    if hub is None:
        logger.warning(f"Quest {quest_id} points at missing hub id={quest.hub_id} name={quest.hub_name}")
        raise HubNotFound()

    return VerificationContext(
        quest=quest,
        hub=hub,
        hub_location=normalize_hub_coordinates(hub),
        hub_secret=hub.secret_code or "",
    )


class VerificationSession:
    """
    Drives the three verification layers in order for one participant.

    Layers never move backwards. A failed layer is retried in place. Calling
    an action that the current state does not allow raises InvalidTransition.
    """

    def __init__(
        self,
        context: VerificationContext,
        user_id: Optional[str],
        finalizer: QuestFinalizer,
        location_provider: Optional[LocationProvider] = None,
        policy: Optional[GeofencePolicy] = None,
        capture: Optional[EvidenceCapture] = None,
        location_timeout_s: Optional[float] = None,
        advance_delay_s: Optional[float] = None,
        secret_error_clear_s: Optional[float] = None,
        override_code: Optional[str] = None,
    ):
        self.context = context
        self.user_id = user_id
        self.finalizer = finalizer
        self.location_provider = location_provider
        self.policy = policy or GeofencePolicy.from_settings()
        self.capture = capture or EvidenceCapture()
        self.location_timeout_s = (
            location_timeout_s if location_timeout_s is not None else settings.LOCATION_TIMEOUT_SECONDS
        )
        self.advance_delay_s = (
            advance_delay_s if advance_delay_s is not None else settings.LAYER1_ADVANCE_DELAY_SECONDS
        )
        self.secret_error_clear_s = (
            secret_error_clear_s if secret_error_clear_s is not None else settings.SECRET_ERROR_CLEAR_SECONDS
        )
        self.override_code = override_code

        self.layer = Layer.LOCATION
        self.phase = PHASE_VERIFYING
        self.gps_status = GPS_IDLE
        self.secret_status = SECRET_IDLE
        self.evidence_status = EVIDENCE_IDLE
        self.skip_pending = False
        self.evidence: Optional[Evidence] = None
        self.distance_m: Optional[float] = None
        self.last_error: Optional[VerificationError] = None
        self.outcome: Optional[RewardOutcome] = None
        self.guard = SubmissionGuard()

        self._timers: List[asyncio.TimerHandle] = []
        self._secret_clear_handle: Optional[asyncio.TimerHandle] = None

    # Guards

    @property
    def abandoned(self) -> bool:
        return self.phase == PHASE_ABANDONED

    def _require_layer(self, layer: Layer) -> None:
        if self.phase != PHASE_VERIFYING:
            raise InvalidTransition(f"Cannot act on layer {int(layer)} while {self.phase}")
        if self.layer != layer:
            raise InvalidTransition(f"Layer {int(layer)} is not active (current layer {int(self.layer)})")

    def _halt(self, error: StaleSessionError) -> None:
        logger.warning(f"Verification halted for quest {self.context.quest_id}: {error.message}")
        self.last_error = error
        self.phase = PHASE_HALTED
        self.guard.exhaust()
        self._cancel_timers()

    # Timers

    def _schedule(self, delay: float, callback) -> Optional[asyncio.TimerHandle]:
        if delay <= 0:
            callback()
            return None
        handle = asyncio.get_running_loop().call_later(delay, callback)
        self._timers.append(handle)
        return handle

    def _cancel_timers(self) -> None:
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()
        self._secret_clear_handle = None

    # Layer 1: location

    async def scan_location(self) -> bool:
        """
        Acquire a position and check it against the hub geofence.

        Returns True when the user is within range. The advance to layer 2
        happens after a short delay so the success state can render.
        """
        self._require_layer(Layer.LOCATION)
        if self.gps_status == GPS_CHECKING:
            return False
        if self.gps_status == GPS_SUCCESS:
            raise InvalidTransition("Location already verified")
        if not self.user_id:
            self._halt(StaleSessionError())
            return False

        self.gps_status = GPS_CHECKING
        self.last_error = None
        try:
            position = await acquire_position(self.location_provider, self.location_timeout_s)
            if self.abandoned:
                return False
            result = require_proximity(position.coordinates, self.context.hub_location, self.policy)
        except VerificationError as e:
            if self.abandoned:
                return False
            self.gps_status = GPS_ERROR
            self.last_error = e
            self.distance_m = getattr(e, "distance_m", None)
            logger.info(f"Location layer failed for quest {self.context.quest_id}: {e.code}")
            return False

        self.distance_m = result.distance_m
        self.gps_status = GPS_SUCCESS
        self._schedule(self.advance_delay_s, self._advance_to_secret)
        return True

    def _advance_to_secret(self) -> None:
        if self.phase == PHASE_VERIFYING and self.layer == Layer.LOCATION:
            self.layer = Layer.SECRET

    # Layer 2: secret

    def submit_secret(self, code: Optional[str]) -> bool:
        """Check the hub secret. A mismatch shows an error that clears itself."""
        self._require_layer(Layer.SECRET)

        if self._secret_clear_handle is not None:
            self._secret_clear_handle.cancel()
            self._secret_clear_handle = None

        if verify_secret(code, self.context.hub_secret, self.override_code):
            self.secret_status = SECRET_IDLE
            self.last_error = None
            self.layer = Layer.EVIDENCE
            return True

        self.secret_status = SECRET_ERROR
        self.last_error = ChallengeMismatch()
        self._secret_clear_handle = self._schedule(self.secret_error_clear_s, self._clear_secret_error)
        return False

    def _clear_secret_error(self) -> None:
        self._secret_clear_handle = None
        if self.secret_status == SECRET_ERROR:
            self.secret_status = SECRET_IDLE
            if isinstance(self.last_error, ChallengeMismatch):
                self.last_error = None

    # Layer 3: evidence

    async def capture_photo(self, raw: bytes) -> bool:
        """
        Compress and keep a photo. Rejected (False) while another capture is
        running. A result that arrives after abandon() is discarded.
        """
        self._require_layer(Layer.EVIDENCE)
        if self.evidence_status == EVIDENCE_CAPTURING or self.capture.busy:
            logger.warning(f"Capture rejected for quest {self.context.quest_id}: already capturing")
            return False

        previous_status = self.evidence_status
        self.evidence_status = EVIDENCE_CAPTURING
        self.skip_pending = False
        try:
            image = await self.capture.capture(raw)
        except CaptureError as e:
            if self.abandoned:
                return False
            self.evidence_status = previous_status
            self.last_error = e
            return False

        if self.abandoned:
            logger.info(f"Discarding photo for abandoned attempt on quest {self.context.quest_id}")
            return False

        self.evidence = image
        self.evidence_status = EVIDENCE_CAPTURED
        self.last_error = None
        return True

    def request_skip(self) -> None:
        """First step of skipping: show the reduced-reward warning."""
        self._require_layer(Layer.EVIDENCE)
        self.skip_pending = True

    def confirm_skip(self) -> None:
        self._require_layer(Layer.EVIDENCE)
        if not self.skip_pending:
            raise InvalidTransition("Skip must be requested before it is confirmed")
        if self.evidence_status == EVIDENCE_CAPTURING:
            raise InvalidTransition("Cannot skip while a photo is being processed")
        self.skip_pending = False
        self.evidence = SKIPPED
        self.evidence_status = EVIDENCE_SKIPPED

    def cancel_skip(self) -> None:
        self.skip_pending = False

    # Submission

    @property
    def can_submit(self) -> bool:
        return (
            self.phase in (PHASE_VERIFYING, PHASE_FAILED)
            and self.layer == Layer.EVIDENCE
            and self.evidence_status in (EVIDENCE_CAPTURED, EVIDENCE_SKIPPED)
            and self.guard.is_open
        )

    @property
    def retry_available(self) -> bool:
        return self.phase == PHASE_FAILED and self.guard.is_open

    async def submit(self) -> Optional[RewardOutcome]:
        """
        Save the verification and compute the reward, at most once.

        Returns the RewardOutcome, or None when the call was a duplicate or
        the submission failed (see last_error and retry_available).
        """
        if self.phase in (PHASE_ABANDONED, PHASE_HALTED, PHASE_COMPLETE):
            return None
        if self.layer != Layer.EVIDENCE or self.evidence_status not in (EVIDENCE_CAPTURED, EVIDENCE_SKIPPED):
            raise InvalidTransition("Evidence step is not finished")
        if not self.guard.acquire():
            logger.info(f"Duplicate submit ignored for quest {self.context.quest_id}")
            return None
        if not self.user_id:
            self._halt(StaleSessionError())
            return None

        self.phase = PHASE_FINALIZING
        self.last_error = None
        quest = self.context.quest
        request = SubmissionRequest(
            quest_id=quest.id,
            user_id=self.user_id,
            quest_start_time=quest.start_time,
            leader_id=quest.leader_id,
            evidence=self.evidence,
            location_verified=True,
            code_verified=True,
        )

        try:
            outcome = await self.finalizer.finalize(request)
        except StaleSessionError as e:
            self._halt(e)
            return None
        except VerificationError as e:
            if not (e.recoverable and self.guard.release_after_failure()):
                self.guard.exhaust()
            if self.abandoned:
                return None
            self.last_error = e
            self.phase = PHASE_FAILED
            logger.warning(
                f"Submission failed for quest {quest.id}: {e.code} (retry available: {self.guard.is_open})"
            )
            return None

        self.guard.mark_done()
        self.outcome = outcome
        if not self.abandoned:
            self.phase = PHASE_COMPLETE
        return outcome

    # Teardown

    def abandon(self) -> None:
        """Tear down the attempt. Pending timers stop; late results are dropped."""
        self._cancel_timers()
        if self.phase in (PHASE_COMPLETE, PHASE_HALTED):
            return
        self.phase = PHASE_ABANDONED
        logger.info(f"Verification abandoned for quest {self.context.quest_id}")

    def status(self) -> Dict[str, Any]:
        """Snapshot of everything the UI renders."""
        error = None
        if self.last_error is not None:
            error = {
                "code": self.last_error.code,
                "message": self.last_error.message,
                "recoverable": self.last_error.recoverable,
            }
        return {
            "layer": int(self.layer),
            "phase": self.phase,
            "gps_status": self.gps_status,
            "secret_status": self.secret_status,
            "evidence_status": self.evidence_status,
            "skip_pending": self.skip_pending,
            "distance_m": round(self.distance_m) if self.distance_m is not None else None,
            "radius_m": round(self.policy.radius_m),
            "has_photo": isinstance(self.evidence, CompressedImage),
            "can_submit": self.can_submit,
            "retry_available": self.retry_available,
            "error": error,
            "earned_xp": self.outcome.xp if self.outcome else None,
        }
