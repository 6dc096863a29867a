"""Capability shared by every analyzer implementation."""
from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from emergency_connect.schemas.analysis import AnalysisResult, ConversationMessage, UrgencyResult


@runtime_checkable
class Analyzer(Protocol):
    """Summarizes a conversation and classifies its urgency."""

    name: str

    async def analyze(self, messages: Sequence[ConversationMessage]) -> AnalysisResult:
        """Return a summary with scam-risk level, signals and an action guide."""
        ...

    async def assess_urgency(self, messages: Sequence[ConversationMessage]) -> UrgencyResult:
        """Return an EMERGENCY / CAUTION / SAFE classification."""
        ...


def conversation_text(messages: Sequence[ConversationMessage]) -> str:
    """Join message texts into one searchable string."""
    return " ".join(m.text for m in messages)


def format_for_prompt(messages: Sequence[ConversationMessage]) -> str:
    """Render messages as `[role] text` lines for an LLM prompt."""
    return "\n".join(f"[{m.role}] {m.text}" for m in messages)
