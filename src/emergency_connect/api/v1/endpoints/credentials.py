"""Covert credential configuration for protected parties."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from emergency_connect.models.account import ROLE_PROTECTED
from emergency_connect.schemas.credential import CredentialConfigRequest, CredentialConfigResponse
from emergency_connect.services.credential_config import (
    CredentialConfigError,
    configure_credentials,
    describe_credentials,
)

from ..dependencies import CurrentSession, CurrentSessionDep, RepositoryDep

router = APIRouter(prefix="/protected", tags=["credentials"])


def _require_protected_primary(session: CurrentSession) -> str:
    """Return the account id if the caller may manage covert credentials."""
    if session.is_incident_session:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Primary session required",
        )
    if session.account.role != ROLE_PROTECTED:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden: insufficient role",
        )
    return session.account.id


@router.put("/credentials", response_model=CredentialConfigResponse)
async def put_credentials(
    payload: CredentialConfigRequest,
    session: CurrentSessionDep,
    repository: RepositoryDep,
) -> CredentialConfigResponse:
    """Create or replace the caller's phrases and second factor."""
    subject_id = _require_protected_primary(session)
    try:
        config = configure_credentials(repository, subject_id, payload)
    except CredentialConfigError as err:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(err),
        ) from err
    return describe_credentials(config)


@router.get("/credentials", response_model=CredentialConfigResponse)
async def get_credentials(
    session: CurrentSessionDep,
    repository: RepositoryDep,
) -> CredentialConfigResponse:
    """Return configuration metadata; phrases and hashes are never exposed."""
    subject_id = _require_protected_primary(session)
    return describe_credentials(repository.get_credential_config(subject_id))
