"""Schemas for the covert entry and verification endpoints."""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class SearchItem(BaseModel):
    """A decoy search result."""

    title: str
    url: str
    snippet: str


class EnterRequest(BaseModel):
    """Search-bar submission. Any shape problem is answered with decoy results."""

    input_phrase: str | None = Field(default=None, max_length=512)


class VerifyRequest(BaseModel):
    """Second-factor answer for a previously issued challenge credential."""

    credential: str | None = Field(default=None, max_length=4096)
    answer: str | None = Field(default=None, max_length=512)


class SearchResponse(BaseModel):
    """Camouflage response, identical for every failure cause."""

    mode: Literal["SEARCH"] = "SEARCH"
    results: list[SearchItem]


class Challenge(BaseModel):
    """Second-factor challenge presented after a phrase match."""

    type: str
    question: str


class ChallengeResponse(BaseModel):
    """Phrase matched: ask the second-factor question."""

    mode: Literal["SECOND_FACTOR"] = "SECOND_FACTOR"
    challenge: Challenge
    credential: str


class IncidentResponse(BaseModel):
    """Second factor accepted: an incident session now exists."""

    mode: Literal["INCIDENT"] = "INCIDENT"
    incident_id: str
    is_duress: bool
    subject_id: str
