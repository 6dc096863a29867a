# src/emergency_connect/models/insight.py
"""Stored risk assessments of incidents and the contacts' checklist progress."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from emergency_connect.db.session import Base
from emergency_connect.db.time import utcnow

PROGRESS_PENDING = "PENDING"
PROGRESS_DONE = "DONE"


def _new_id() -> str:
    return str(uuid.uuid4())


class IncidentInsight(Base):
    """Latest analysis of an incident conversation; one row per incident.

    Refreshing the insight overwrites the row in place.
    """

    __tablename__ = "incident_insight"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    incident_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("incident_session.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    summary_text: Mapped[str] = mapped_column(Text, nullable=False)
    scam_risk_level: Mapped[str] = mapped_column(String(8), nullable=False)
    scam_signals: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    action_guide: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class ProgressCheck(Base):
    """A member's status for one action-guide item of an incident."""

    __tablename__ = "progress_check"
    __table_args__ = (UniqueConstraint("incident_id", "item_id", "account_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    incident_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("incident_session.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    item_id: Mapped[str] = mapped_column(String(64), nullable=False)
    account_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("account.id", ondelete="CASCADE"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=PROGRESS_PENDING)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
