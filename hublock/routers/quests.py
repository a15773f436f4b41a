"""
Quest Verification Router
Handles GET /v1/quests/{id}/verification-context, POST /v1/quests/{id}/verification,
POST /v1/quests/{id}/finalize, POST /v1/quests/{id}/vibe-check
"""
import base64
import binascii
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..dependencies.auth import get_current_user_id
from ..schemas.quests import (
    FinalizeResponse,
    HubLocation,
    VerificationContextResponse,
    VerificationRequest,
    VerificationResponse,
    VibeCheckRequest,
    VibeCheckResponse,
)
from ..services.errors import CaptureError, ChallengeMismatch, FinalizeError, NotAQuestMember
from ..services.evidence import EvidenceCapture
from ..services.geo import GeofencePolicy
from ..services.location import FixedLocationProvider, Position
from ..services.quest_store import QuestStore
from ..services.showdown import is_showdown_active
from ..services.submission import QuestFinalizer
from ..services.verification import VerificationSession, load_verification_context

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/quests", tags=["quests"])


def _decode_photo(payload: str) -> bytes:
    """Accept plain base64 or a data URL."""
    if payload.startswith("data:"):
        payload = payload.split(",", 1)[-1]
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise CaptureError("Photo payload is not valid base64.")


@router.get("/{quest_id}/verification-context", response_model=VerificationContextResponse)
async def get_verification_context(
    quest_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Everything the client needs to render the three verification layers"""
    store = QuestStore(db)
    context = load_verification_context(store, quest_id, user_id)
    if not store.get_member(quest_id, user_id):
        raise NotAQuestMember()

    record = store.get_verification(quest_id, user_id)
    location = context.hub_location
    return VerificationContextResponse(
        quest_id=context.quest.id,
        quest_title=context.quest.title,
        hub_id=context.hub.id,
        hub_name=context.hub.name,
        hub_location=HubLocation(latitude=location.latitude, longitude=location.longitude) if location else None,
        radius_m=GeofencePolicy.from_settings().radius_m,
        squad_size=store.count_members(quest_id),
        is_leader=context.quest.leader_id == user_id,
        already_verified=bool(record and record.completed),
        showdown_active=is_showdown_active(),
    )


@router.post("/{quest_id}/verification", response_model=VerificationResponse)
async def submit_verification(
    quest_id: str,
    request: VerificationRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """
    Run all three layers against the submitted position, secret and photo,
    then save the record and award XP.

    Errors surface through the registered exception handlers with their
    specific code and message.
    """
    store = QuestStore(db)
    context = load_verification_context(store, quest_id, user_id)

    provider = FixedLocationProvider(Position(request.latitude, request.longitude, request.accuracy_m))
    session = VerificationSession(
        context,
        user_id,
        finalizer=QuestFinalizer(store),
        location_provider=provider,
        capture=EvidenceCapture(),
        advance_delay_s=0,
        secret_error_clear_s=0,
    )

    if not await session.scan_location():
        raise session.last_error

    if not session.submit_secret(request.secret_code):
        raise ChallengeMismatch()

    if request.photo_base64:
        if not await session.capture_photo(_decode_photo(request.photo_base64)):
            raise session.last_error or CaptureError()
    elif request.skip_photo:
        session.request_skip()
        session.confirm_skip()
    else:
        raise CaptureError("A photo is required unless skip_photo is confirmed.")

    outcome = await session.submit()
    if outcome is None:
        raise session.last_error or FinalizeError()

    return VerificationResponse(
        success=True,
        earned_xp=outcome.xp,
        multiplier_applied=outcome.multiplier_applied,
        has_evidence=outcome.has_evidence,
        on_time=outcome.on_time,
        squad_size=outcome.squad_size,
        distance_m=round(session.distance_m) if session.distance_m is not None else None,
    )


@router.post("/{quest_id}/finalize", response_model=FinalizeResponse)
async def finalize_quest(
    quest_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Award XP for an already saved verification. Safe to call repeatedly."""
    result = QuestStore(db).finalize_quest(quest_id, user_id)
    return FinalizeResponse(
        success=result.success,
        already_claimed=result.already_claimed,
        earned_xp=result.earned_xp,
        new_level=result.new_level,
        bonuses=result.bonuses,
        new_badges=result.new_badges,
        quest_title=result.quest_title,
    )


@router.post("/{quest_id}/vibe-check", response_model=VibeCheckResponse)
async def submit_vibe_check(
    quest_id: str,
    request: VibeCheckRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    result = QuestStore(db).submit_peer_reviews(quest_id, user_id, request.reviews)
    return VibeCheckResponse(
        success=result.success,
        earned_xp=result.earned_xp,
        reviewed=result.reviewed,
        unlocked_badges=result.unlocked_badges,
    )
