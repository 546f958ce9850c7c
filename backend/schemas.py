"""
Pydantic request/response schemas for the Arena wagering API.

Using explicit schemas instead of raw dicts prevents mass-assignment
vulnerabilities on ORM models and generates accurate OpenAPI docs.
"""

from __future__ import annotations

from typing import Literal, Optional
from datetime import datetime

from pydantic import BaseModel, Field, field_validator


# ---------------------------------------------------------------------------
# Players
# ---------------------------------------------------------------------------

class PlayerCreate(BaseModel):
    """Payload for POST /admin/players."""

    name: str = Field(..., min_length=1, max_length=80)
    category: Literal["home", "away"] = Field(
        "home", description="Free tag recorded with the player; never used for pricing"
    )

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name cannot be blank")
        return v

    model_config = {
        "json_schema_extra": {"example": {"name": "Carlos", "category": "home"}}
    }


class PlayerRename(BaseModel):
    """Payload for PATCH /admin/players/{player_id}. Renaming is the only edit."""

    name: str = Field(..., min_length=1, max_length=80)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name cannot be blank")
        return v


class PlayerResponse(BaseModel):
    id: int
    name: str
    category: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# Matches and odds
# ---------------------------------------------------------------------------

class MatchCreate(BaseModel):
    """
    Payload for POST /admin/matches.

    Odds for all three markets are generated server-side from the
    head-to-head record; clients never submit prices.
    """

    player_a_id: int = Field(..., description="Home side (FK to players.id)")
    player_b_id: int = Field(..., description="Away side (FK to players.id)")
    game_type: Optional[str] = Field(None, max_length=40, description='Defaults to "FIFA"')
    scheduled_at: Optional[datetime] = Field(None, description="Defaults to now (UTC)")

    model_config = {
        "json_schema_extra": {
            "example": {"player_a_id": 1, "player_b_id": 2, "game_type": "FIFA"}
        }
    }


class OddResponse(BaseModel):
    id: int
    match_id: int
    market_type: str
    selection: str
    value: float
    probability: Optional[float] = None

    class Config:
        from_attributes = True


class MatchSummaryResponse(BaseModel):
    """A match with both players and, once finished, its result."""
    id: int
    game_type: str
    scheduled_at: datetime
    status: str
    player_a: PlayerResponse
    player_b: PlayerResponse
    score_a: Optional[int] = None
    score_b: Optional[int] = None
    possession_home: Optional[int] = None
    possession_away: Optional[int] = None
    possession_winner: Optional[str] = None
    finished_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MatchResponse(MatchSummaryResponse):
    """A match together with every published odd."""
    odds: list[OddResponse] = []


class MatchListResponse(BaseModel):
    """Operator view: open matches and finished matches, newest first."""
    active: list[MatchSummaryResponse]
    finished: list[MatchSummaryResponse]


class MatchFinish(BaseModel):
    """
    Payload for POST /admin/matches/{match_id}/finish.

    Omitted possession shares default to 50/50; supplying only one share
    implies the other as its complement to 100.
    """

    score_a: int = Field(..., ge=0)
    score_b: int = Field(..., ge=0)
    possession_home: Optional[int] = Field(None, ge=0, le=100)
    possession_away: Optional[int] = Field(None, ge=0, le=100)

    model_config = {
        "json_schema_extra": {
            "example": {"score_a": 2, "score_b": 1, "possession_home": 55, "possession_away": 45}
        }
    }


class SettlementReportResponse(BaseModel):
    match_id: int
    newly_finished: bool
    graded: int
    won: int
    lost: int
    total_paid: float
    errors: list[str]
    timestamp: datetime


class RegradeResponse(BaseModel):
    """Response from /admin/settlement/regrade."""
    message: str
    matches_swept: int
    bets_graded: int
    errors: list[str]
    timestamp: datetime


# ---------------------------------------------------------------------------
# Wagers
# ---------------------------------------------------------------------------

class WagerCreate(BaseModel):
    """
    Payload for POST /api/bets.

    ``quoted_multiplier`` is what the client displayed; the ticket is always
    priced from stored odds.
    """

    match_id: int
    amount: float = Field(..., gt=0, description="Stake, debited at placement")
    odd_ids: list[int] = Field(..., min_length=1, description="One odd per market, same match")
    quoted_multiplier: Optional[float] = Field(None, gt=0)

    model_config = {
        "json_schema_extra": {
            "example": {"match_id": 7, "amount": 10.0, "odd_ids": [41, 47], "quoted_multiplier": 15.2}
        }
    }


class BetSelectionResponse(BaseModel):
    id: int
    odd_id: int
    position: int
    odd: OddResponse

    class Config:
        from_attributes = True


class WagerResponse(BaseModel):
    id: int
    user_id: str
    match_id: int
    amount: float
    total_odds: float
    potential_payout: float
    status: str
    created_at: Optional[datetime] = None
    settled_at: Optional[datetime] = None
    selections: list[BetSelectionResponse]
    match: MatchSummaryResponse

    class Config:
        from_attributes = True


class WagerPlacedResponse(BaseModel):
    message: str
    bet: WagerResponse
    balance: float


# ---------------------------------------------------------------------------
# Account
# ---------------------------------------------------------------------------

class MeResponse(BaseModel):
    user_id: str
    role: str
    balance: float
