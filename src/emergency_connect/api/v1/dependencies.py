"""Shared API dependencies for sessions and services."""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Annotated, Any

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from emergency_connect.core.security import (
    PURPOSE_INCIDENT_SESSION,
    PURPOSE_SESSION,
    CredentialService,
    FieldCipher,
    get_credential_service,
    get_field_cipher,
)
from emergency_connect.core.settings import settings
from emergency_connect.db.session import get_db
from emergency_connect.models import Account
from emergency_connect.repositories.emergency_repo import SqlAlchemyEmergencyRepository
from emergency_connect.services.analysis import AnalysisEngine, get_analysis_engine
from emergency_connect.services.authenticator import CovertAuthenticator
from emergency_connect.services.notifications import NotificationDispatcher
from emergency_connect.services.rate_limit import RateLimiter, get_rate_limiter
from emergency_connect.services.sms import SmsChannel, get_sms_channel

SESSION_PURPOSES = (PURPOSE_SESSION, PURPOSE_INCIDENT_SESSION)

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]


def get_credential_service_dep() -> CredentialService:
    return get_credential_service()


def get_field_cipher_dep() -> FieldCipher:
    return get_field_cipher()


def get_rate_limiter_dep() -> RateLimiter:
    return get_rate_limiter()


def get_field_cipher_factory() -> Callable[[], FieldCipher]:
    return get_field_cipher


def get_sms_channel_factory() -> Callable[[], SmsChannel]:
    return get_sms_channel


def get_analysis_engine_dep() -> AnalysisEngine:
    return get_analysis_engine()


CredentialServiceDep = Annotated[CredentialService, Depends(get_credential_service_dep)]
FieldCipherDep = Annotated[FieldCipher, Depends(get_field_cipher_dep)]
RateLimiterDep = Annotated[RateLimiter, Depends(get_rate_limiter_dep)]
FieldCipherFactoryDep = Annotated[Callable[[], FieldCipher], Depends(get_field_cipher_factory)]
SmsChannelFactoryDep = Annotated[Callable[[], SmsChannel], Depends(get_sms_channel_factory)]
AnalysisEngineDep = Annotated[AnalysisEngine, Depends(get_analysis_engine_dep)]


def get_repository(db: SessionDep) -> SqlAlchemyEmergencyRepository:
    return SqlAlchemyEmergencyRepository(db)


RepositoryDep = Annotated[SqlAlchemyEmergencyRepository, Depends(get_repository)]


def get_authenticator(
    repository: RepositoryDep,
    rate_limiter: RateLimiterDep,
    credentials: CredentialServiceDep,
    channel_factory: SmsChannelFactoryDep,
    cipher_factory: FieldCipherFactoryDep,
) -> CovertAuthenticator:
    """Assemble the covert authenticator for one request.

    The SMS channel and the field cipher are resolved on first use, inside
    the authenticator's own error handling, so a configuration problem with
    either one is still answered with decoy results.
    """
    return CovertAuthenticator(
        repository,
        rate_limiter,
        credentials,
        lambda: NotificationDispatcher(repository, channel_factory()),
        cipher_factory,
    )


AuthenticatorDep = Annotated[CovertAuthenticator, Depends(get_authenticator)]


def caller_key(request: Request) -> str:
    """Identify the caller for rate limiting, honouring proxy headers."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    if request.client is not None:
        return request.client.host
    return "unknown"


@dataclass(frozen=True)
class CurrentSession:
    """The account behind a request and how it signed in."""

    account: Account
    purpose: str
    incident_id: str | None = None

    @property
    def is_incident_session(self) -> bool:
        return self.purpose == PURPOSE_INCIDENT_SESSION


def resolve_session_claims(
    request: Request,
    credentials: CredentialService,
    prefer_emergency: bool = False,
) -> dict[str, Any] | None:
    """Return the claims of the first valid session cookie.

    The primary cookie is tried first unless the caller asks for the
    incident session, in which case the order is reversed.
    """
    names = [settings.session_cookie_name, settings.emergency_cookie_name]
    if prefer_emergency:
        names.reverse()

    for name in names:
        token = request.cookies.get(name)
        if not token:
            continue
        claims = credentials.verify(token)
        if claims and claims.get("purpose") in SESSION_PURPOSES and claims.get("sub"):
            return claims
    return None


def get_current_session(
    request: Request,
    db: SessionDep,
    credentials: CredentialServiceDep,
    x_emergency_session: Annotated[str | None, Header()] = None,
) -> CurrentSession:
    """Resolve the signed-in account from the session cookies.

    Raises:
        HTTPException: If no valid session is present or the account is gone.
    """
    prefer_emergency = (x_emergency_session or "").lower() == "true"
    claims = resolve_session_claims(request, credentials, prefer_emergency)
    if claims is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )

    account = db.get(Account, claims["sub"])
    if account is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    return CurrentSession(
        account=account,
        purpose=claims["purpose"],
        incident_id=claims.get("incident_id"),
    )


CurrentSessionDep = Annotated[CurrentSession, Depends(get_current_session)]
