"""Schemas for configuring covert credentials."""
from __future__ import annotations

from pydantic import BaseModel, Field


class CredentialConfigRequest(BaseModel):
    """Create or replace the caller's covert credentials."""

    primary_phrase: str = Field(..., max_length=200)
    duress_phrase: str | None = Field(default=None, max_length=200)
    second_factor_question: str | None = Field(default=None, max_length=200)
    second_factor_answer: str | None = Field(default=None, max_length=200)
    attempts_per_window: int | None = Field(default=None, ge=1, le=100)
    window_seconds: int | None = Field(default=None, ge=10, le=86_400)
    lock_seconds: int | None = Field(default=None, ge=10, le=86_400)
    rotate_reminder_days: int | None = Field(default=None, ge=1, le=365)


class CredentialConfigResponse(BaseModel):
    """Configuration metadata; phrases and hashes are never returned."""

    has_code: bool
    has_duress_code: bool = False
    second_factor_type: str | None = None
    second_factor_question: str | None = None
    attempts_per_window: int | None = None
    window_seconds: int | None = None
    lock_seconds: int | None = None
    rotate_reminder_days: int | None = None
