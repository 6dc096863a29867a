# src/emergency_connect/models/account.py
"""Account identities and the links between protected parties and their contacts."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from emergency_connect.db.session import Base
from emergency_connect.db.time import utcnow

ROLE_PROTECTED = "PROTECTED"
ROLE_CONTACT = "CONTACT"

LINK_STATUS_PENDING = "PENDING"
LINK_STATUS_ACTIVE = "ACTIVE"
LINK_STATUS_REJECTED = "REJECTED"


def _new_id() -> str:
    return str(uuid.uuid4())


class Account(Base):
    """A registered person: either a protected party or a trusted contact."""

    __tablename__ = "account"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class ContactLink(Base):
    """Trust relationship from a protected party to one contact.

    The contact's phone number is stored encrypted; `contact_id` stays empty
    until the invitation is accepted.
    """

    __tablename__ = "contact_link"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    protected_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("account.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    contact_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("account.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    phone_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=LINK_STATUS_PENDING)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
