# src/emergency_connect/models/credential.py
"""Covert credential configuration owned by a protected party."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from emergency_connect.db.session import Base
from emergency_connect.db.time import utcnow

SECOND_FACTOR_QUESTION = "QUESTION"


class CredentialConfig(Base):
    """Hashed phrases, second-factor challenge and rate-limit parameters.

    Only one-way hashes are stored. Plaintext phrases and answers never reach
    the database, and the hashes never leave the service.
    """

    __tablename__ = "credential_config"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    subject_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("account.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    primary_phrase_hash: Mapped[str] = mapped_column(Text, nullable=False)
    duress_phrase_hash: Mapped[str | None] = mapped_column(Text, nullable=True)
    second_factor_type: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=SECOND_FACTOR_QUESTION,
    )
    second_factor_question: Mapped[str] = mapped_column(Text, nullable=False)
    second_factor_answer_hash: Mapped[str] = mapped_column(Text, nullable=False)
    attempts_per_window: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    window_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=300)
    lock_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=600)
    rotate_reminder_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
    )
