"""
Schemas for leaderboard and showdown endpoints
"""
from pydantic import BaseModel
from typing import Optional, List


class LeaderboardEntry(BaseModel):
    position: int
    user_id: str
    name: Optional[str] = None
    level: int
    score: int  # ranking field for the category
    display_score: int  # shown next to the hero (xp balance for all-time)
    badges: List[str] = []


class LeaderboardResponse(BaseModel):
    city: str
    category: str
    entries: List[LeaderboardEntry]


class RankResponse(BaseModel):
    city: str
    category: str
    score: int
    rank: int


class ShowdownResponse(BaseModel):
    active: bool
    multiplier: int
    time_remaining_seconds: int
    time_until_reset_seconds: int
    countdown: str
