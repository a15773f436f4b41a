"""
Verification pipeline error taxonomy.

Every error carries a stable `code` for clients and a specific user-facing
message. `recoverable` tells the caller whether offering a retry makes sense.
"""
from typing import Optional


class VerificationError(Exception):
    """Base exception for the verification and reward pipeline"""
    code = "verification_error"
    recoverable = True
    default_message = "Verification failed."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


# Layer 1: sensors

class SensorError(VerificationError):
    """Geolocation could not produce a position"""
    code = "sensor_error"
    default_message = "Unable to retrieve your location."


class UnsupportedPlatform(SensorError):
    code = "unsupported_platform"
    default_message = "Geolocation not supported on this device."


class PermissionDenied(SensorError):
    code = "permission_denied"
    default_message = "GPS blocked. Enable location permission in your settings."


class LocationUnavailable(SensorError):
    code = "location_unavailable"
    default_message = "Unable to retrieve your location."


class OutOfRange(VerificationError):
    """Position resolved but the hub is farther than the active radius"""
    code = "out_of_range"

    def __init__(self, distance_m: float, radius_m: float):
        self.distance_m = distance_m
        self.radius_m = radius_m
        super().__init__(
            f"You are {round(distance_m)}m away. Need within {round(radius_m)}m."
        )


# Data integrity

class DataIntegrityError(VerificationError):
    """Stored data is missing or malformed; only fixing the data helps"""
    code = "data_integrity_error"
    default_message = "Quest data is invalid."


class MissingCoordinates(DataIntegrityError):
    code = "missing_coordinates"
    default_message = "Hub coordinates missing or invalid."


class QuestLinkBroken(DataIntegrityError):
    code = "quest_link_broken"
    default_message = "Quest or hub link broken."


class QuestNotFound(QuestLinkBroken):
    code = "quest_not_found"
    default_message = "Quest not found."


class HubNotFound(QuestLinkBroken):
    code = "hub_not_found"
    default_message = "Hub not found for this quest."


class VerificationMissing(DataIntegrityError):
    """Finalize was asked for a user who has no completed verification record"""
    code = "verification_missing"
    recoverable = False
    default_message = "No completed verification on file. Verify at the hub first."


# Layers 2 and 3

class ChallengeMismatch(VerificationError):
    code = "challenge_mismatch"
    default_message = "Secret code does not match."


class CaptureError(VerificationError):
    code = "capture_error"
    default_message = "Could not process the photo. Please capture it again."


# Submission

class FinalizeError(VerificationError):
    code = "finalize_error"
    default_message = "Verification could not be saved. Please try again."


class NotAQuestMember(VerificationError):
    code = "not_a_member"
    recoverable = False
    default_message = "Not a quest member. Join the quest first."


class StaleSessionError(VerificationError):
    code = "stale_session"
    recoverable = False
    default_message = "Login required. Your session expired."


class InvalidTransition(Exception):
    """A pipeline action was invoked in a state that does not allow it"""
    pass
