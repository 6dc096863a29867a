"""Incident conversation and risk triage endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Query, status

from emergency_connect.core.security import FieldCipher
from emergency_connect.db.time import utcnow
from emergency_connect.models import IncidentInsight, IncidentMessage, ProgressCheck
from emergency_connect.models.incident import MESSAGE_TYPE_SYSTEM, MESSAGE_TYPE_TEXT
from emergency_connect.repositories.emergency_repo import SqlAlchemyEmergencyRepository
from emergency_connect.schemas.analysis import AnalysisResult, ConversationMessage, UrgencyResult
from emergency_connect.schemas.incident import (
    IncidentInsightResponse,
    IncidentMessageCreate,
    IncidentMessageResponse,
    ProgressCheckResponse,
    ProgressUpdate,
)

from ..dependencies import (
    AnalysisEngineDep,
    CurrentSession,
    CurrentSessionDep,
    FieldCipherDep,
    RepositoryDep,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/incidents", tags=["incidents"])

URGENCY_MESSAGE_WINDOW = 30


def _require_member(
    repository: SqlAlchemyEmergencyRepository,
    session: CurrentSession,
    incident_id: str,
) -> None:
    """Reject callers that are not members of the incident.

    An incident session only opens the incident it was issued for.
    """
    if session.incident_id is not None and session.incident_id != incident_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not a member of this incident",
        )
    if repository.get_incident(incident_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Incident not found",
        )
    if not repository.is_member(incident_id, session.account.id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not a member of this incident",
        )


def _serialize_message(message: IncidentMessage, cipher: FieldCipher) -> IncidentMessageResponse:
    return IncidentMessageResponse(
        id=message.id,
        incident_id=message.incident_id,
        sender_id=message.sender_id,
        type=message.type,
        text=cipher.decrypt(message.content_encrypted) if message.content_encrypted else None,
        created_at=message.created_at,
    )


def _conversation(
    repository: SqlAlchemyEmergencyRepository,
    cipher: FieldCipher,
    incident_id: str,
    limit: int | None = None,
) -> list[ConversationMessage]:
    """Decrypt member-written messages for analysis, oldest first."""
    roles = repository.member_roles(incident_id)
    messages = [
        m
        for m in repository.list_messages(incident_id)
        if m.type != MESSAGE_TYPE_SYSTEM and m.content_encrypted
    ]
    if limit is not None:
        messages = messages[-limit:]
    return [
        ConversationMessage(
            role=roles.get(m.sender_id, "UNKNOWN"),
            text=cipher.decrypt(m.content_encrypted),  # type: ignore[arg-type]
        )
        for m in messages
    ]


@router.get("/{incident_id}/messages", response_model=list[IncidentMessageResponse])
async def list_messages(
    incident_id: str,
    session: CurrentSessionDep,
    repository: RepositoryDep,
    cipher: FieldCipherDep,
    limit: int = Query(50, ge=1, le=100),
) -> list[IncidentMessageResponse]:
    """Return the most recent messages of an incident in posting order."""
    _require_member(repository, session, incident_id)
    messages = repository.list_messages(incident_id)[-limit:]
    return [_serialize_message(m, cipher) for m in messages]


@router.post(
    "/{incident_id}/messages",
    response_model=IncidentMessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def post_message(
    incident_id: str,
    payload: IncidentMessageCreate,
    session: CurrentSessionDep,
    repository: RepositoryDep,
    cipher: FieldCipherDep,
) -> IncidentMessageResponse:
    """Post a text message to an incident."""
    _require_member(repository, session, incident_id)
    message = repository.add_message(
        incident_id,
        session.account.id,
        MESSAGE_TYPE_TEXT,
        cipher.encrypt(payload.text),
    )
    repository.commit()
    return IncidentMessageResponse(
        id=message.id,
        incident_id=incident_id,
        sender_id=session.account.id,
        type=message.type,
        text=payload.text,
        created_at=message.created_at,
    )


@router.get("/{incident_id}/analysis", response_model=AnalysisResult)
async def get_analysis(
    incident_id: str,
    session: CurrentSessionDep,
    repository: RepositoryDep,
    cipher: FieldCipherDep,
    engine: AnalysisEngineDep,
) -> AnalysisResult:
    """Summarize the incident conversation and score its scam risk."""
    _require_member(repository, session, incident_id)
    return await engine.analyze(_conversation(repository, cipher, incident_id))


@router.get("/{incident_id}/urgency", response_model=UrgencyResult)
async def get_urgency(
    incident_id: str,
    session: CurrentSessionDep,
    repository: RepositoryDep,
    cipher: FieldCipherDep,
    engine: AnalysisEngineDep,
) -> UrgencyResult:
    """Classify the recent conversation as EMERGENCY, CAUTION or SAFE."""
    _require_member(repository, session, incident_id)
    conversation = _conversation(repository, cipher, incident_id, URGENCY_MESSAGE_WINDOW)
    return await engine.assess_urgency(conversation)


def _serialize_insight(insight: IncidentInsight) -> IncidentInsightResponse:
    return IncidentInsightResponse.model_validate(
        {
            "has_insight": True,
            "id": insight.id,
            "summary_text": insight.summary_text,
            "scam_risk_level": insight.scam_risk_level,
            "scam_signals": insight.scam_signals,
            "action_guide": insight.action_guide,
            "source": insight.source,
            "updated_at": insight.updated_at,
        }
    )


def _serialize_progress(check: ProgressCheck) -> ProgressCheckResponse:
    return ProgressCheckResponse(
        id=check.id,
        incident_id=check.incident_id,
        item_id=check.item_id,
        account_id=check.account_id,
        status=check.status,
        updated_at=check.updated_at,
    )


@router.get("/{incident_id}/insight", response_model=IncidentInsightResponse)
async def get_insight(
    incident_id: str,
    session: CurrentSessionDep,
    repository: RepositoryDep,
) -> IncidentInsightResponse:
    """Return the stored analysis without calling any analyzer."""
    _require_member(repository, session, incident_id)
    insight = repository.get_insight(incident_id)
    if insight is None:
        return IncidentInsightResponse(has_insight=False)
    return _serialize_insight(insight)


@router.post("/{incident_id}/insight/refresh", response_model=IncidentInsightResponse)
async def refresh_insight(
    incident_id: str,
    session: CurrentSessionDep,
    repository: RepositoryDep,
    cipher: FieldCipherDep,
    engine: AnalysisEngineDep,
) -> IncidentInsightResponse:
    """Re-analyze the conversation and store the result as the incident's insight.

    Raises:
        HTTPException: 400 if the incident has no member-written messages yet.
    """
    _require_member(repository, session, incident_id)
    conversation = _conversation(repository, cipher, incident_id)
    if not conversation:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No messages to analyze",
        )

    result = await engine.analyze(conversation)
    insight = repository.save_insight(incident_id, result, utcnow())
    repository.commit()
    logger.info(
        "Insight for incident %s refreshed (%s, risk %s)",
        incident_id,
        result.source,
        result.scam_risk_level,
    )
    return _serialize_insight(insight)


@router.get("/{incident_id}/progress", response_model=list[ProgressCheckResponse])
async def list_progress(
    incident_id: str,
    session: CurrentSessionDep,
    repository: RepositoryDep,
) -> list[ProgressCheckResponse]:
    """Return every member's checklist status for the incident."""
    _require_member(repository, session, incident_id)
    return [_serialize_progress(c) for c in repository.list_progress(incident_id)]


@router.post("/{incident_id}/progress", response_model=ProgressCheckResponse)
async def update_progress(
    incident_id: str,
    payload: ProgressUpdate,
    session: CurrentSessionDep,
    repository: RepositoryDep,
) -> ProgressCheckResponse:
    """Record the caller's status for one action-guide item."""
    _require_member(repository, session, incident_id)
    check = repository.save_progress(
        incident_id, payload.item_id, session.account.id, payload.status, utcnow()
    )
    repository.commit()
    return _serialize_progress(check)
