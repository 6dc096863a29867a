# src/emergency_connect/models/incident.py
"""Incident sessions created by a successful covert verification."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from emergency_connect.db.session import Base
from emergency_connect.db.time import utcnow

MEMBER_ROLE_PROTECTED = "PROTECTED"
MEMBER_ROLE_CONTACT = "CONTACT"

MESSAGE_TYPE_TEXT = "TEXT"
MESSAGE_TYPE_SYSTEM = "SYSTEM"


def _new_id() -> str:
    return str(uuid.uuid4())


class IncidentSession(Base):
    """An incident raised by a protected party.

    Immutable once created; only membership rows and messages are added later.
    """

    __tablename__ = "incident_session"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    subject_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("account.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    is_duress: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class IncidentMember(Base):
    """Membership of an account in an incident."""

    __tablename__ = "incident_member"
    __table_args__ = (UniqueConstraint("incident_id", "account_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    incident_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("incident_session.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    account_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("account.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class IncidentMessage(Base):
    """A message posted to an incident; content is encrypted at rest."""

    __tablename__ = "incident_message"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    incident_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("incident_session.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sender_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("account.id", ondelete="CASCADE"),
        nullable=False,
    )
    type: Mapped[str] = mapped_column(String(16), nullable=False, default=MESSAGE_TYPE_TEXT)
    content_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
