"""
Exception handlers for the verification error taxonomy.

Register these on a FastAPI app instance via `register_exception_handlers(app)`.
"""
import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from .core.env import is_local_env
from .services.errors import (
    CaptureError,
    ChallengeMismatch,
    DataIntegrityError,
    FinalizeError,
    NotAQuestMember,
    QuestLinkBroken,
    SensorError,
    StaleSessionError,
    VerificationError,
)

logger = logging.getLogger(__name__)

# Most specific first
STATUS_BY_ERROR = (
    (StaleSessionError, 401),
    (NotAQuestMember, 403),
    (QuestLinkBroken, 404),
    (DataIntegrityError, 409),
    (ChallengeMismatch, 422),
    (CaptureError, 422),
    (SensorError, 422),
    (FinalizeError, 502),
)


def status_for(exc: VerificationError) -> int:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    # OutOfRange and anything else the user can fix by retrying
    return 422


async def verification_error_handler(request: Request, exc: VerificationError):
    """Render a pipeline error with its stable code and specific message."""
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.code} on {request.url.path}: {exc.message}")

    content = {"error": exc.code, "detail": exc.message, "recoverable": exc.recoverable}
    distance = getattr(exc, "distance_m", None)
    if distance is not None:
        content["distance_m"] = round(distance)
    return JSONResponse(status_code=status_code, content=content)


async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors"""
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)

    if is_local_env():
        error_response = {"detail": f"Internal server error: {exc}"}
    else:
        # Details stay in the logs outside local/dev
        error_response = {"detail": "Internal server error"}

    return JSONResponse(status_code=500, content=error_response)


def register_exception_handlers(app):
    """Register all exception handlers on the given FastAPI app."""
    app.add_exception_handler(VerificationError, verification_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)
