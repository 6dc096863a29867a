"""Schemas for incident conversation endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from emergency_connect.schemas.analysis import ActionGuideItem, RiskLevel, ScamSignal


class IncidentMessageCreate(BaseModel):
    """A text message posted by an incident member."""

    text: str = Field(..., min_length=1, max_length=4000)


class IncidentMessageResponse(BaseModel):
    """Message as returned to incident members."""

    id: str
    incident_id: str
    sender_id: str
    type: str
    text: str | None
    created_at: datetime


class IncidentInsightResponse(BaseModel):
    """The stored analysis of an incident; `has_insight` is False until one exists."""

    has_insight: bool
    id: str | None = None
    summary_text: str | None = None
    scam_risk_level: RiskLevel | None = None
    scam_signals: list[ScamSignal] = Field(default_factory=list)
    action_guide: list[ActionGuideItem] = Field(default_factory=list)
    source: str | None = None
    updated_at: datetime | None = None


class ProgressUpdate(BaseModel):
    """Mark one action-guide item as pending or done."""

    item_id: str = Field(..., min_length=1, max_length=64)
    status: Literal["PENDING", "DONE"]


class ProgressCheckResponse(BaseModel):
    id: str
    incident_id: str
    item_id: str
    account_id: str
    status: str
    updated_at: datetime
