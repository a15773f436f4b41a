"""
Reward Calculator - pure XP calculation logic.
This file should be pure business logic; no FastAPI, no DB session.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from ..core.config import settings

BASE_XP = 100
ON_TIME_BONUS_XP = 25
EVIDENCE_BONUS_XP = 20
LEADER_BONUS_PER_MEMBER_XP = 10
SHOWDOWN_MULTIPLIER = 2


@dataclass(frozen=True)
class RewardOutcome:
    xp: int
    multiplier_applied: bool
    has_evidence: bool
    on_time: bool = False
    squad_size: int = 1


@dataclass(frozen=True)
class LevelProgress:
    level: int
    xp_into_level: int
    xp_for_next_level: int


def is_on_time(verified_at: datetime, start_time: Optional[datetime], tolerance_minutes: Optional[int] = None) -> bool:
    """True when verification happened within the tolerance of the scheduled start, either side."""
    if start_time is None:
        return False
    if tolerance_minutes is None:
        tolerance_minutes = settings.ON_TIME_TOLERANCE_MINUTES
    return abs(verified_at - start_time) <= timedelta(minutes=tolerance_minutes)


def compute_xp(
    on_time: bool,
    has_evidence: bool,
    skipped: bool,
    is_leader: bool,
    squad_size: int,
    multiplier_active: bool,
) -> int:
    """
    Calculate the XP award for one verified quest completion.

    Rules apply in this order and the order matters:
    1. base award
    2. on-time bonus
    3. evidence: a confirmed skip forfeits everything accumulated so far
       (result is 0, including the on-time bonus); a photo adds a bonus
    4. leader bonus per squad member beyond the first, photo only
    5. showdown doubling of the running total

    Raises:
        ValueError: neither a photo nor a confirmed skip was recorded
    """
    if not has_evidence and not skipped:
        raise ValueError("evidence layer has no terminal state (photo or confirmed skip)")

    xp = BASE_XP

    if on_time:
        xp += ON_TIME_BONUS_XP

    if skipped:
        # Full forfeiture, not a reduction. Kept as-is until product decides otherwise.
        xp = 0
    else:
        xp += EVIDENCE_BONUS_XP

        if is_leader:
            xp += max(0, squad_size - 1) * LEADER_BONUS_PER_MEMBER_XP

    if multiplier_active:
        xp *= SHOWDOWN_MULTIPLIER

    return max(0, int(xp))


# Progressive leveling curve: neededXP(level) = 100 + (level - 1) * 50
#   Level 1 -> 2: 100 XP
#   Level 2 -> 3: 150 XP
#   Level 3 -> 4: 200 XP

def xp_needed_for_level(level: int) -> int:
    if level < 1:
        return 100
    return 100 + (level - 1) * 50


def calculate_level(total_xp: int) -> LevelProgress:
    level = 1
    remaining = max(0, int(total_xp or 0))
    needed = xp_needed_for_level(level)

    while remaining >= needed:
        remaining -= needed
        level += 1
        needed = xp_needed_for_level(level)

    return LevelProgress(level=level, xp_into_level=remaining, xp_for_next_level=needed)
