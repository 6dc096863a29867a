"""Data access for credentials, incidents, contact links and notifications."""
from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from emergency_connect.models import (
    ContactLink,
    CredentialConfig,
    IncidentInsight,
    IncidentMember,
    IncidentMessage,
    IncidentSession,
    Notification,
    ProgressCheck,
)
from emergency_connect.models.account import LINK_STATUS_ACTIVE
from emergency_connect.models.notification import STATUS_FAILED, STATUS_PENDING
from emergency_connect.schemas.analysis import AnalysisResult

__all__ = ["EmergencyRepository", "SqlAlchemyEmergencyRepository"]


class EmergencyRepository(Protocol):
    """Persistence operations used by the covert flow and the retry worker."""

    def list_credential_configs(self) -> Sequence[CredentialConfig]: ...

    def get_credential_config(self, subject_id: str) -> CredentialConfig | None: ...

    def save_credential_config(self, config: CredentialConfig) -> CredentialConfig: ...

    def create_incident(self, subject_id: str, is_duress: bool) -> IncidentSession: ...

    def get_incident(self, incident_id: str) -> IncidentSession | None: ...

    def add_member(self, incident_id: str, account_id: str, role: str) -> IncidentMember: ...

    def is_member(self, incident_id: str, account_id: str) -> bool: ...

    def member_roles(self, incident_id: str) -> dict[str, str]: ...

    def active_links_for(self, protected_id: str) -> Sequence[ContactLink]: ...

    def active_link_for_contact(self, contact_id: str) -> ContactLink | None: ...

    def add_message(
        self,
        incident_id: str,
        sender_id: str,
        message_type: str,
        content_encrypted: str | None,
    ) -> IncidentMessage: ...

    def list_messages(self, incident_id: str) -> Sequence[IncidentMessage]: ...

    def create_notification(
        self,
        *,
        recipient_id: str,
        incident_id: str | None,
        channel: str,
        payload: dict[str, Any],
        now: datetime,
    ) -> Notification: ...

    def update_notification(self, notification: Notification, **fields: Any) -> Notification: ...

    def due_notifications(
        self, now: datetime, max_attempts: int, limit: int
    ) -> Sequence[Notification]: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


class SqlAlchemyEmergencyRepository:
    """Repository backed by a synchronous SQLAlchemy session."""

    def __init__(self, session: Session) -> None:
        """Initialize the repository with a SQLAlchemy session."""
        self.session = session

    def list_credential_configs(self) -> list[CredentialConfig]:
        """Return every stored credential configuration."""
        return list(self.session.scalars(select(CredentialConfig)))

    def get_credential_config(self, subject_id: str) -> CredentialConfig | None:
        return self.session.scalars(
            select(CredentialConfig).where(CredentialConfig.subject_id == subject_id)
        ).first()

    def save_credential_config(self, config: CredentialConfig) -> CredentialConfig:
        self.session.add(config)
        self.session.flush()
        return config

    def create_incident(self, subject_id: str, is_duress: bool) -> IncidentSession:
        incident = IncidentSession(subject_id=subject_id, is_duress=is_duress)
        self.session.add(incident)
        self.session.flush()
        return incident

    def get_incident(self, incident_id: str) -> IncidentSession | None:
        return self.session.get(IncidentSession, incident_id)

    def add_member(self, incident_id: str, account_id: str, role: str) -> IncidentMember:
        member = IncidentMember(incident_id=incident_id, account_id=account_id, role=role)
        self.session.add(member)
        self.session.flush()
        return member

    def is_member(self, incident_id: str, account_id: str) -> bool:
        found = self.session.scalars(
            select(IncidentMember.id).where(
                IncidentMember.incident_id == incident_id,
                IncidentMember.account_id == account_id,
            )
        ).first()
        return found is not None

    def member_roles(self, incident_id: str) -> dict[str, str]:
        """Map each member's account id to their role in the incident."""
        rows = self.session.execute(
            select(IncidentMember.account_id, IncidentMember.role).where(
                IncidentMember.incident_id == incident_id
            )
        )
        return {account_id: role for account_id, role in rows}

    def active_links_for(self, protected_id: str) -> list[ContactLink]:
        """Return accepted links of a protected party, oldest first."""
        return list(
            self.session.scalars(
                select(ContactLink)
                .where(
                    ContactLink.protected_id == protected_id,
                    ContactLink.status == LINK_STATUS_ACTIVE,
                )
                .order_by(ContactLink.created_at)
            )
        )

    def active_link_for_contact(self, contact_id: str) -> ContactLink | None:
        """Return an accepted link whose contact is `contact_id`."""
        return self.session.scalars(
            select(ContactLink)
            .where(
                ContactLink.contact_id == contact_id,
                ContactLink.status == LINK_STATUS_ACTIVE,
            )
            .order_by(ContactLink.created_at)
        ).first()

    def add_message(
        self,
        incident_id: str,
        sender_id: str,
        message_type: str,
        content_encrypted: str | None,
    ) -> IncidentMessage:
        message = IncidentMessage(
            incident_id=incident_id,
            sender_id=sender_id,
            type=message_type,
            content_encrypted=content_encrypted,
        )
        self.session.add(message)
        self.session.flush()
        return message

    def list_messages(self, incident_id: str) -> list[IncidentMessage]:
        """Return the messages of an incident in posting order."""
        return list(
            self.session.scalars(
                select(IncidentMessage)
                .where(IncidentMessage.incident_id == incident_id)
                .order_by(IncidentMessage.created_at, IncidentMessage.id)
            )
        )

    def get_insight(self, incident_id: str) -> IncidentInsight | None:
        """Return the stored analysis of an incident, if any."""
        return self.session.scalars(
            select(IncidentInsight).where(IncidentInsight.incident_id == incident_id)
        ).first()

    def save_insight(
        self, incident_id: str, result: AnalysisResult, now: datetime
    ) -> IncidentInsight:
        """Store `result` as the incident's insight, replacing any earlier one."""
        insight = self.get_insight(incident_id)
        if insight is None:
            insight = IncidentInsight(incident_id=incident_id, created_at=now)
            self.session.add(insight)
        insight.summary_text = result.summary_text
        insight.scam_risk_level = result.scam_risk_level
        insight.scam_signals = [s.model_dump() for s in result.scam_signals]
        insight.action_guide = [a.model_dump() for a in result.action_guide]
        insight.source = result.source
        insight.updated_at = now
        self.session.flush()
        return insight

    def save_progress(
        self,
        incident_id: str,
        item_id: str,
        account_id: str,
        status: str,
        now: datetime,
    ) -> ProgressCheck:
        """Create or update one member's status for a checklist item."""
        check = self.session.scalars(
            select(ProgressCheck).where(
                ProgressCheck.incident_id == incident_id,
                ProgressCheck.item_id == item_id,
                ProgressCheck.account_id == account_id,
            )
        ).first()
        if check is None:
            check = ProgressCheck(incident_id=incident_id, item_id=item_id, account_id=account_id)
            self.session.add(check)
        check.status = status
        check.updated_at = now
        self.session.flush()
        return check

    def list_progress(self, incident_id: str) -> list[ProgressCheck]:
        return list(
            self.session.scalars(
                select(ProgressCheck)
                .where(ProgressCheck.incident_id == incident_id)
                .order_by(ProgressCheck.item_id, ProgressCheck.account_id)
            )
        )

    def create_notification(
        self,
        *,
        recipient_id: str,
        incident_id: str | None,
        channel: str,
        payload: dict[str, Any],
        now: datetime,
    ) -> Notification:
        notification = Notification(
            recipient_id=recipient_id,
            incident_id=incident_id,
            channel=channel,
            payload=payload,
            status=STATUS_PENDING,
            attempts=0,
            next_retry_at=now,
        )
        self.session.add(notification)
        self.session.flush()
        return notification

    def update_notification(self, notification: Notification, **fields: Any) -> Notification:
        for name, value in fields.items():
            setattr(notification, name, value)
        self.session.flush()
        return notification

    def due_notifications(self, now: datetime, max_attempts: int, limit: int) -> list[Notification]:
        """Return notifications whose retry time has come, oldest first.

        Terminal notifications have no `next_retry_at` and are never selected.
        """
        return list(
            self.session.scalars(
                select(Notification)
                .where(
                    Notification.status.in_((STATUS_PENDING, STATUS_FAILED)),
                    Notification.attempts < max_attempts,
                    Notification.next_retry_at.is_not(None),
                    Notification.next_retry_at <= now,
                )
                .order_by(Notification.created_at, Notification.id)
                .limit(limit)
            )
        )

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()
