"""
Tests for the verification state machine driving all three layers
against a real quest store.
"""
import asyncio
from datetime import datetime

import pytest
from sqlalchemy.orm import Session

from hublock.models import QuestMember, QuestVerification, User, QUEST_STATUS_COMPLETED
from hublock.services.errors import (
    HubNotFound,
    InvalidTransition,
    QuestNotFound,
    StaleSessionError,
)
from hublock.services.location import (
    FAILURE_PERMISSION_DENIED,
    FAILURE_TIMEOUT,
    FAILURE_UNAVAILABLE,
    FAILURE_UNSUPPORTED,
)
from hublock.services.quest_store import QuestStore
from hublock.services.verification import (
    EVIDENCE_CAPTURED,
    EVIDENCE_IDLE,
    EVIDENCE_SKIPPED,
    GPS_ERROR,
    GPS_SUCCESS,
    PHASE_ABANDONED,
    PHASE_COMPLETE,
    PHASE_HALTED,
    SECRET_ERROR,
    SECRET_IDLE,
    Layer,
    load_verification_context,
)
from tests.helpers.verification_helpers import (
    FAR_POSITION,
    NEARBY_POSITION,
    FakeLocationProvider,
    build_session,
    pass_first_two_layers,
)


def _record(db: Session, quest_id: str, user_id: str):
    return db.query(QuestVerification).filter(
        QuestVerification.quest_id == quest_id,
        QuestVerification.user_id == user_id,
    ).first()


class TestLoadVerificationContext:

    def test_resolves_hub_and_coordinates(self, db: Session, quest):
        context = load_verification_context(QuestStore(db), quest.id, "leader")
        assert context.hub.id == "hub_koramangala"
        assert context.hub_location.latitude == pytest.approx(12.9716)
        assert context.hub_secret == "X7K92M"

    def test_hub_by_name_for_older_quests(self, db: Session, quest):
        quest.hub_id = None
        db.commit()
        context = load_verification_context(QuestStore(db), quest.id, "leader")
        assert context.hub.name == "Third Wave Koramangala"

    def test_unknown_quest(self, db: Session):
        with pytest.raises(QuestNotFound):
            load_verification_context(QuestStore(db), "nope", "leader")

    def test_broken_hub_link(self, db: Session, quest):
        quest.hub_id = None
        quest.hub_name = "Closed Cafe"
        db.commit()
        with pytest.raises(HubNotFound):
            load_verification_context(QuestStore(db), quest.id, "leader")

    def test_no_identity(self, db: Session, quest):
        with pytest.raises(StaleSessionError):
            load_verification_context(QuestStore(db), quest.id, None)


class TestFullFlow:

    @pytest.mark.asyncio
    async def test_leader_with_photo(self, db: Session, quest, png_bytes):
        session = build_session(QuestStore(db), quest.id, "leader", provider=FakeLocationProvider(NEARBY_POSITION))

        assert await session.scan_location()
        assert session.gps_status == GPS_SUCCESS
        assert session.layer == Layer.SECRET
        assert session.distance_m < 100

        assert session.submit_secret(" x7k92m ")
        assert session.layer == Layer.EVIDENCE

        assert await session.capture_photo(png_bytes(1600, 1200))
        assert session.evidence_status == EVIDENCE_CAPTURED
        assert session.can_submit

        outcome = await session.submit()

        # 100 base + 25 on time + 20 photo + 10 for the one extra member
        assert outcome.xp == 155
        assert outcome.has_evidence
        assert outcome.on_time
        assert not outcome.multiplier_applied
        assert outcome.squad_size == 2
        assert session.phase == PHASE_COMPLETE
        assert not session.can_submit

        record = _record(db, quest.id, "leader")
        assert record.location_verified and record.code_verified
        assert record.photo_url.startswith("data:image/jpeg;base64,")
        assert record.rewarded
        assert record.earned_xp == 155

        leader = db.query(User).filter(User.id == "leader").one()
        assert leader.xp == 155
        assert leader.lifetime_xp == 155
        assert leader.this_week_xp == 155
        assert leader.reliability_score == 1
        assert leader.quests_completed == 1
        assert leader.level == 2
        assert set(leader.badges) == {"FIRST_MISSION", "EARLY_BIRD"}

        db.refresh(quest)
        assert quest.status == QUEST_STATUS_COMPLETED
        assert "leader" in quest.completed_by

    @pytest.mark.asyncio
    async def test_confirmed_skip_forfeits_xp(self, db: Session, quest):
        session = build_session(QuestStore(db), quest.id, "member")
        await pass_first_two_layers(session)

        session.request_skip()
        assert session.skip_pending
        session.confirm_skip()
        assert session.evidence_status == EVIDENCE_SKIPPED

        outcome = await session.submit()
        assert outcome.xp == 0
        assert not outcome.has_evidence
        record = _record(db, quest.id, "member")
        assert record.photo_url == ""
        assert record.location_verified and record.code_verified

    @pytest.mark.asyncio
    async def test_squad_counted_at_submit_time(self, db: Session, quest, png_bytes):
        session = build_session(QuestStore(db), quest.id, "leader")
        await pass_first_two_layers(session)
        assert await session.capture_photo(png_bytes(200, 200))

        # Someone joins at the last moment
        db.add(QuestMember(quest_id=quest.id, user_id="latecomer", name="Late"))
        db.commit()

        outcome = await session.submit()
        assert outcome.squad_size == 3
        assert outcome.xp == 100 + 25 + 20 + 20

    @pytest.mark.asyncio
    async def test_showdown_doubles_award(self, db: Session, quest, png_bytes):
        # Sunday 16:00 UTC is 21:30 in the showdown timezone
        sunday_night = datetime(2026, 10, 18, 16, 0)
        quest.start_time = sunday_night
        db.commit()

        session = build_session(QuestStore(db), quest.id, "leader", verified_at=sunday_night)
        await pass_first_two_layers(session)
        assert await session.capture_photo(png_bytes(200, 200))

        outcome = await session.submit()
        assert outcome.multiplier_applied
        assert outcome.xp == 310

    @pytest.mark.asyncio
    async def test_override_code_passes_layer_two(self, db: Session, quest):
        session = build_session(QuestStore(db), quest.id, "member")
        assert await session.scan_location()
        assert session.submit_secret("SQUAD2025")
        assert session.layer == Layer.EVIDENCE


class TestLocationLayer:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("failure, code", [
        (FAILURE_UNSUPPORTED, "unsupported_platform"),
        (FAILURE_PERMISSION_DENIED, "permission_denied"),
        (FAILURE_TIMEOUT, "location_unavailable"),
        (FAILURE_UNAVAILABLE, "location_unavailable"),
    ])
    async def test_sensor_failures_become_state(self, db: Session, quest, failure, code):
        session = build_session(QuestStore(db), quest.id, "leader", provider=FakeLocationProvider(failure=failure))

        assert not await session.scan_location()
        assert session.gps_status == GPS_ERROR
        assert session.last_error.code == code
        assert session.last_error.recoverable
        assert session.layer == Layer.LOCATION

        # Retry in place with a working sensor
        session.location_provider = FakeLocationProvider()
        assert await session.scan_location()
        assert session.layer == Layer.SECRET
        assert session.last_error is None

    @pytest.mark.asyncio
    async def test_no_provider_is_unsupported(self, db: Session, quest):
        session = build_session(QuestStore(db), quest.id, "leader", provider=None, location_provider=None)
        assert not await session.scan_location()
        assert session.last_error.code == "unsupported_platform"

    @pytest.mark.asyncio
    async def test_location_request_times_out(self, db: Session, quest):
        provider = FakeLocationProvider(delay_s=5)
        session = build_session(QuestStore(db), quest.id, "leader", provider=provider, location_timeout_s=0.05)
        assert not await session.scan_location()
        assert session.last_error.code == "location_unavailable"

    @pytest.mark.asyncio
    async def test_out_of_range_carries_distance(self, db: Session, quest):
        session = build_session(QuestStore(db), quest.id, "leader", provider=FakeLocationProvider(FAR_POSITION))
        assert not await session.scan_location()
        assert session.last_error.code == "out_of_range"
        assert session.distance_m > 1000
        assert session.status()["error"]["message"].startswith(f"You are {round(session.distance_m)}m away")

    @pytest.mark.asyncio
    async def test_missing_coordinates_is_distinct(self, db: Session, quest, hub):
        hub.coordinates = {"latitude": "unknown"}
        db.commit()
        session = build_session(QuestStore(db), quest.id, "leader")
        assert not await session.scan_location()
        assert session.last_error.code == "missing_coordinates"
        assert session.distance_m is None

    @pytest.mark.asyncio
    async def test_advance_waits_for_delay(self, db: Session, quest):
        session = build_session(QuestStore(db), quest.id, "leader", advance_delay_s=0.05)
        assert await session.scan_location()
        assert session.layer == Layer.LOCATION
        await asyncio.sleep(0.1)
        assert session.layer == Layer.SECRET

    @pytest.mark.asyncio
    async def test_rescan_after_success_is_rejected(self, db: Session, quest):
        session = build_session(QuestStore(db), quest.id, "leader", advance_delay_s=0.05)
        assert await session.scan_location()
        with pytest.raises(InvalidTransition):
            await session.scan_location()


class TestSecretLayer:

    @pytest.mark.asyncio
    async def test_mismatch_self_clears(self, db: Session, quest):
        session = build_session(QuestStore(db), quest.id, "leader")
        assert await session.scan_location()

        assert not session.submit_secret("WRONG1")
        assert session.secret_status == SECRET_ERROR
        assert session.last_error.code == "challenge_mismatch"
        assert session.layer == Layer.SECRET

        await asyncio.sleep(0.1)
        assert session.secret_status == SECRET_IDLE
        assert session.last_error is None

    @pytest.mark.asyncio
    async def test_unlimited_retries(self, db: Session, quest):
        session = build_session(QuestStore(db), quest.id, "leader")
        assert await session.scan_location()
        for _ in range(10):
            assert not session.submit_secret("NOPE")
        assert session.submit_secret("X7K92M")

    @pytest.mark.asyncio
    async def test_layers_are_strictly_ordered(self, db: Session, quest, png_bytes):
        session = build_session(QuestStore(db), quest.id, "leader")
        with pytest.raises(InvalidTransition):
            session.submit_secret("X7K92M")
        with pytest.raises(InvalidTransition):
            await session.capture_photo(png_bytes(10, 10))
        with pytest.raises(InvalidTransition):
            await session.submit()


class TestEvidenceLayer:

    @pytest.mark.asyncio
    async def test_skip_needs_confirmation(self, db: Session, quest):
        session = build_session(QuestStore(db), quest.id, "leader")
        await pass_first_two_layers(session)

        with pytest.raises(InvalidTransition):
            session.confirm_skip()

        session.request_skip()
        session.cancel_skip()
        assert session.evidence_status == EVIDENCE_IDLE
        assert not session.can_submit

    @pytest.mark.asyncio
    async def test_photo_after_skip_replaces_it(self, db: Session, quest, png_bytes):
        session = build_session(QuestStore(db), quest.id, "leader")
        await pass_first_two_layers(session)
        session.request_skip()
        session.confirm_skip()

        assert await session.capture_photo(png_bytes(300, 300))
        assert session.evidence_status == EVIDENCE_CAPTURED
        outcome = await session.submit()
        assert outcome.has_evidence

    @pytest.mark.asyncio
    async def test_bad_photo_keeps_previous_state(self, db: Session, quest):
        session = build_session(QuestStore(db), quest.id, "leader")
        await pass_first_two_layers(session)

        assert not await session.capture_photo(b"not an image")
        assert session.evidence_status == EVIDENCE_IDLE
        assert session.last_error.code == "capture_error"

    @pytest.mark.asyncio
    async def test_second_capture_rejected_while_busy(self, db: Session, quest, png_bytes):
        session = build_session(QuestStore(db), quest.id, "leader")
        await pass_first_two_layers(session)

        first = asyncio.create_task(session.capture_photo(png_bytes(1600, 1200)))
        await asyncio.sleep(0)
        assert not await session.capture_photo(png_bytes(100, 100))
        assert await first
        assert session.evidence.width == 800


class TestTeardown:

    @pytest.mark.asyncio
    async def test_abandon_discards_late_photo(self, db: Session, quest, png_bytes):
        session = build_session(QuestStore(db), quest.id, "leader")
        await pass_first_two_layers(session)

        pending = asyncio.create_task(session.capture_photo(png_bytes(1600, 1200)))
        await asyncio.sleep(0)
        session.abandon()

        assert not await pending
        assert session.evidence is None
        assert session.phase == PHASE_ABANDONED
        assert await session.submit() is None

    @pytest.mark.asyncio
    async def test_abandon_cancels_advance_timer(self, db: Session, quest):
        session = build_session(QuestStore(db), quest.id, "leader", advance_delay_s=0.05)
        assert await session.scan_location()
        session.abandon()
        await asyncio.sleep(0.1)
        assert session.layer == Layer.LOCATION

    @pytest.mark.asyncio
    async def test_lost_identity_halts(self, db: Session, quest, png_bytes):
        session = build_session(QuestStore(db), quest.id, "leader")
        await pass_first_two_layers(session)
        assert await session.capture_photo(png_bytes(100, 100))

        session.user_id = None
        assert await session.submit() is None
        assert session.phase == PHASE_HALTED
        assert session.last_error.code == "stale_session"
        assert not session.last_error.recoverable
        assert not session.retry_available
        assert _record(db, quest.id, "leader") is None

    @pytest.mark.asyncio
    async def test_lost_identity_at_scan_halts(self, db: Session, quest):
        session = build_session(QuestStore(db), quest.id, None)
        assert not await session.scan_location()
        assert session.phase == PHASE_HALTED
        with pytest.raises(InvalidTransition):
            await session.scan_location()
