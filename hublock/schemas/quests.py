"""
Schemas for the quest verification API
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict


class HubLocation(BaseModel):
    latitude: float
    longitude: float


class VerificationContextResponse(BaseModel):
    quest_id: str
    quest_title: Optional[str] = None
    hub_id: str
    hub_name: Optional[str] = None
    hub_location: Optional[HubLocation] = None  # None when the hub has no usable coordinates
    radius_m: float
    squad_size: int
    is_leader: bool
    already_verified: bool
    showdown_active: bool


class VerificationRequest(BaseModel):
    latitude: float
    longitude: float
    accuracy_m: Optional[float] = None
    secret_code: str
    photo_base64: Optional[str] = None  # raw image bytes, base64 or data URL
    skip_photo: bool = False  # must be true to submit without a photo


class VerificationResponse(BaseModel):
    success: bool
    earned_xp: int
    multiplier_applied: bool
    has_evidence: bool
    on_time: bool
    squad_size: int
    distance_m: Optional[int] = None


class FinalizeResponse(BaseModel):
    success: bool
    already_claimed: bool = False
    earned_xp: int = 0
    new_level: Optional[int] = None
    bonuses: List[str] = []
    new_badges: List[str] = []
    quest_title: Optional[str] = None


class VibeCheckRequest(BaseModel):
    reviews: Dict[str, List[str]] = Field(default_factory=dict)  # member uid -> tags


class VibeCheckResponse(BaseModel):
    success: bool
    earned_xp: int
    reviewed: List[str] = []
    unlocked_badges: Dict[str, List[str]] = {}
