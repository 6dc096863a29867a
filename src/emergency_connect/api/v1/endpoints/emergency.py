"""Covert entry endpoints.

Both endpoints always answer 200. Any request that cannot be honoured is
answered with the decoy search results, whatever the reason.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Request, Response
from pydantic import ValidationError

from emergency_connect.core.settings import settings
from emergency_connect.schemas.emergency import (
    ChallengeResponse,
    EnterRequest,
    IncidentResponse,
    SearchResponse,
    VerifyRequest,
)
from emergency_connect.services.authenticator import camouflage

from ..dependencies import AuthenticatorDep, caller_key

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/emergency", tags=["emergency"])


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        return None


@router.post("/enter", response_model=SearchResponse | ChallengeResponse)
async def enter(request: Request, authenticator: AuthenticatorDep) -> SearchResponse | ChallengeResponse:
    """Search-bar submission: decoy results, or a second-factor challenge."""
    try:
        payload = EnterRequest.model_validate(await _json_body(request))
    except ValidationError:
        logger.debug("Malformed covert entry request")
        return camouflage()
    return await authenticator.enter(payload.input_phrase, caller_key(request))


@router.post("/verify", response_model=SearchResponse | IncidentResponse)
async def verify(
    request: Request,
    response: Response,
    authenticator: AuthenticatorDep,
) -> SearchResponse | IncidentResponse:
    """Second-factor answer: decoy results, or a newly opened incident.

    On success the incident session is set in its own cookie; the primary
    session cookie is left untouched.
    """
    try:
        payload = VerifyRequest.model_validate(await _json_body(request))
    except ValidationError:
        logger.debug("Malformed covert verification request")
        return camouflage()

    outcome = await authenticator.verify(payload.credential, payload.answer)
    if outcome.session_token:
        response.set_cookie(
            settings.emergency_cookie_name,
            outcome.session_token,
            max_age=settings.session_ttl_hours * 3600,
            path="/",
            httponly=True,
            secure=settings.secure_cookies,
            samesite="lax",
        )
    return outcome.response
