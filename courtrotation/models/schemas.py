"""
Pydantic models for API request/response validation.
"""

from typing import Dict, List, Optional
from pydantic import BaseModel, Field, model_validator

from courtrotation.utils.constants import DEFAULT_LEVEL, LEVEL_MAX, LEVEL_MIN


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    tick_worker_running: bool
    message: str


class CreateClubRequest(BaseModel):
    name: str = Field(min_length=1)


class CreatePlayerRequest(BaseModel):
    full_name: str = Field(min_length=1)
    gender: Optional[str] = None  # 'male' | 'female' | None
    level: int = Field(default=DEFAULT_LEVEL, ge=LEVEL_MIN, le=LEVEL_MAX)


class CreateCourtRequest(BaseModel):
    name: str = Field(min_length=1)


class SessionSettings(BaseModel):
    """Session settings; every field optional so it doubles as a partial update."""

    number_of_courts: Optional[int] = Field(default=None, ge=1)
    play_time_minutes: Optional[int] = Field(default=None, ge=1)
    rest_time_minutes: Optional[int] = Field(default=None, ge=0)
    selection_interval_minutes: Optional[int] = Field(default=None, ge=1)
    mixed_ratio: Optional[int] = Field(default=None, ge=0, le=100)
    skill_balance: Optional[int] = Field(default=None, ge=0, le=100)
    partner_variety: Optional[int] = Field(default=None, ge=0, le=100)
    strict_gender: Optional[bool] = None

    @model_validator(mode="after")
    def check_selection_interval(self):
        """The lookahead has to fire before the round ends to be useful."""
        if (
            self.selection_interval_minutes is not None
            and self.play_time_minutes is not None
            and self.selection_interval_minutes >= self.play_time_minutes
        ):
            raise ValueError("selection_interval_minutes must be less than play_time_minutes")
        return self


class CreateSessionRequest(SessionSettings):
    """Request to create a new session."""

    club_id: int
    name: str = Field(min_length=1)


class AddPlayersRequest(BaseModel):
    player_ids: List[int] = Field(min_length=1)


class SwapPlayersRequest(BaseModel):
    player1_id: int
    player2_id: int

    @model_validator(mode="after")
    def check_distinct(self):
        if self.player1_id == self.player2_id:
            raise ValueError("Two different player IDs required")
        return self


class CourtSummary(BaseModel):
    court_id: int
    court_index: int
    game_type: str
    team_a: List[int]
    team_b: List[int]


class SelectionResponse(BaseModel):
    status: str
    round: Optional[int] = None
    assignment_status: Optional[str] = None
    courts: List[CourtSummary] = []


class TickResponse(BaseModel):
    processed: int
    transitions: List[str]


class RoundViewResponse(BaseModel):
    active: List[Dict]
    upcoming: List[Dict]
