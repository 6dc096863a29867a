"""Configuration of a protected party's covert credentials."""
from __future__ import annotations

import logging

from emergency_connect.core.security import BCRYPT_MAX_BYTES, hash_secret
from emergency_connect.core.settings import settings
from emergency_connect.models import CredentialConfig
from emergency_connect.models.credential import SECOND_FACTOR_QUESTION
from emergency_connect.repositories.emergency_repo import EmergencyRepository
from emergency_connect.schemas.credential import CredentialConfigRequest, CredentialConfigResponse

logger = logging.getLogger(__name__)

MIN_PHRASE_LENGTH = 3


class CredentialConfigError(ValueError):
    """Raised when a credential configuration request is invalid."""


def _check_hashable(label: str, value: str) -> None:
    if len(value.encode("utf-8")) > BCRYPT_MAX_BYTES:
        raise CredentialConfigError(f"{label} is too long")


def validate_request(request: CredentialConfigRequest) -> None:
    """Enforce the rules a configuration must satisfy before it is hashed."""
    if len(request.primary_phrase) < MIN_PHRASE_LENGTH:
        raise CredentialConfigError("Primary phrase must be at least 3 characters")
    if not request.second_factor_question or not request.second_factor_answer:
        raise CredentialConfigError("Second factor question and answer are required")
    if request.duress_phrase and request.duress_phrase == request.primary_phrase:
        raise CredentialConfigError("Duress phrase must be different from primary phrase")

    _check_hashable("Primary phrase", request.primary_phrase)
    if request.duress_phrase:
        _check_hashable("Duress phrase", request.duress_phrase)
    _check_hashable("Second factor answer", request.second_factor_answer)


def configure_credentials(
    repository: EmergencyRepository,
    subject_id: str,
    request: CredentialConfigRequest,
) -> CredentialConfig:
    """Create or replace the credentials of `subject_id`.

    Only hashes are stored. Omitted rate-limit values fall back to the
    service defaults.

    Raises:
        CredentialConfigError: If the request breaks a configuration rule.
    """
    validate_request(request)
    defaults = settings.rate_limit_defaults

    config = repository.get_credential_config(subject_id)
    if config is None:
        config = CredentialConfig(subject_id=subject_id)

    config.primary_phrase_hash = hash_secret(request.primary_phrase)
    config.duress_phrase_hash = hash_secret(request.duress_phrase) if request.duress_phrase else None
    config.second_factor_type = SECOND_FACTOR_QUESTION
    config.second_factor_question = request.second_factor_question
    config.second_factor_answer_hash = hash_secret(request.second_factor_answer)
    config.attempts_per_window = request.attempts_per_window or defaults["attempts_per_window"]
    config.window_seconds = request.window_seconds or defaults["window_seconds"]
    config.lock_seconds = request.lock_seconds or defaults["lock_seconds"]
    config.rotate_reminder_days = request.rotate_reminder_days

    saved = repository.save_credential_config(config)
    repository.commit()
    logger.info("Credential configuration updated for subject %s", subject_id)
    return saved


def describe_credentials(config: CredentialConfig | None) -> CredentialConfigResponse:
    """Return the metadata that may be shown to the owner."""
    if config is None:
        return CredentialConfigResponse(has_code=False)
    return CredentialConfigResponse(
        has_code=True,
        has_duress_code=config.duress_phrase_hash is not None,
        second_factor_type=config.second_factor_type,
        second_factor_question=config.second_factor_question,
        attempts_per_window=config.attempts_per_window,
        window_seconds=config.window_seconds,
        lock_seconds=config.lock_seconds,
        rotate_reminder_days=config.rotate_reminder_days,
    )
