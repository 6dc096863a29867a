"""Value objects returned by the risk and urgency analyzers."""
from __future__ import annotations

from typing import Literal

from pydantic import AliasChoices, BaseModel, Field

RiskLevel = Literal["LOW", "MEDIUM", "HIGH"]
UrgencyLevel = Literal["EMERGENCY", "CAUTION", "SAFE"]


class ConversationMessage(BaseModel):
    """One message of an incident conversation, already decrypted."""

    role: str
    text: str


class ScamSignal(BaseModel):
    """A detected risk signal and the context it was found in."""

    keyword: str
    context: str


class ActionGuideItem(BaseModel):
    """One checklist entry for the trusted contacts."""

    id: str
    title: str
    detail: str


class AnalysisResult(BaseModel):
    """Summary and scam-risk assessment of a conversation.

    External providers answer in camelCase JSON; both spellings are accepted.
    """

    summary_text: str = Field(
        min_length=1,
        validation_alias=AliasChoices("summary_text", "summaryText"),
    )
    scam_risk_level: RiskLevel = Field(
        validation_alias=AliasChoices("scam_risk_level", "scamRiskLevel"),
    )
    scam_signals: list[ScamSignal] = Field(
        validation_alias=AliasChoices("scam_signals", "scamSignals"),
    )
    action_guide: list[ActionGuideItem] = Field(
        validation_alias=AliasChoices("action_guide", "actionGuide"),
    )
    source: str = Field(default="rule_based", description="Analyzer that produced the result.")


class UrgencyResult(BaseModel):
    """Lightweight EMERGENCY / CAUTION / SAFE classification."""

    level: UrgencyLevel
    reason: str = ""
    source: str = Field(default="rule_based", description="Analyzer that produced the result.")
