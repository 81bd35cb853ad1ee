"""
Pydantic models for API request validation.
"""

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from pickup.utils.constants import MAX_MATCH_SIZE, MIN_MATCH_SIZE


class GroupCreate(BaseModel):
    name: Optional[str] = Field(default=None, max_length=100)


class GroupJoin(BaseModel):
    invite_code: str = Field(min_length=1)


class PlaySessionCreate(BaseModel):
    group_id: int


class PlaySessionInvite(BaseModel):
    """Users to add to a play session (all must be group members)."""

    user_ids: List[int] = Field(min_length=1)


class SpectatorUpdate(BaseModel):
    user_id: int
    is_spectator: bool


class MatchStart(BaseModel):
    """Match size is checked for range here; evenness is checked by the balancer."""

    match_size: int = Field(ge=MIN_MATCH_SIZE, le=MAX_MATCH_SIZE)


class MatchComplete(BaseModel):
    winning_team: int

    @field_validator("winning_team")
    @classmethod
    def validate_winning_team(cls, v: int) -> int:
        if v not in (0, 1):
            raise ValueError("winning_team must be 0 or 1")
        return v


class PenalizeRequest(BaseModel):
    user_id: int
    penalized: bool = True
