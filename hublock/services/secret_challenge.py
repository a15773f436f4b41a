"""
Hub secret challenge (verification layer 2).

The override code is an intentional operational back door used by support
and QA to pass layer 2 at any hub. It is configuration, not a leaked secret.
There is no attempt cap or cooldown on mismatches.
"""
from typing import Optional

from ..core.config import settings


def _normalize(code: Optional[str]) -> str:
    return str(code or "").strip().upper()


def verify_secret(code: Optional[str], hub_secret: Optional[str], override_code: Optional[str] = None) -> bool:
    """
    Check a submitted code against the hub's secret.

    Comparison trims surrounding whitespace and ignores case on both sides.
    A blank submission never matches, even against a hub with no secret.
    """
    submitted = _normalize(code)
    if not submitted:
        return False

    override = _normalize(settings.SECRET_OVERRIDE_CODE if override_code is None else override_code)
    if override and submitted == override:
        return True

    return submitted == _normalize(hub_secret)
