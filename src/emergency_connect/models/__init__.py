# src/emergency_connect/models/__init__.py
"""SQLAlchemy models for the Emergency Connect service."""

from .account import Account, ContactLink
from .credential import CredentialConfig
from .incident import IncidentMember, IncidentMessage, IncidentSession
from .insight import IncidentInsight, ProgressCheck
from .notification import Notification

__all__ = [
    "Account", "ContactLink",
    "CredentialConfig",
    "IncidentSession", "IncidentMember", "IncidentMessage",
    "IncidentInsight", "ProgressCheck",
    "Notification",
]
