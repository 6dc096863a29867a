"""Covert phrase entry and second-factor verification.

Both entry points answer every failure with the same decoy search results:
a wrong phrase, a rate-limited caller, a malformed request, a reused or
expired credential and an internal error all look identical to the caller.
Failure causes are only visible in the server log.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from emergency_connect.core.security import (
    PURPOSE_SECOND_FACTOR,
    CredentialService,
    FieldCipher,
    verify_secret,
)
from emergency_connect.models import ContactLink, CredentialConfig
from emergency_connect.models.account import ROLE_PROTECTED
from emergency_connect.models.incident import (
    MEMBER_ROLE_CONTACT,
    MEMBER_ROLE_PROTECTED,
    MESSAGE_TYPE_SYSTEM,
)
from emergency_connect.models.notification import CHANNEL_SMS
from emergency_connect.repositories.emergency_repo import EmergencyRepository
from emergency_connect.schemas.emergency import (
    Challenge,
    ChallengeResponse,
    IncidentResponse,
    SearchItem,
    SearchResponse,
)
from emergency_connect.services.notifications import NotificationDispatcher
from emergency_connect.services.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

ALERT_MESSAGE = "[긴급연결] 보호 대상자에게 긴급 상황이 발생했습니다. 즉시 확인하세요."
DURESS_ALERT_MESSAGE = (
    "[긴급연결] 보호 대상자에게 긴급 상황이 발생했습니다. (듀레스 코드 사용됨) 즉시 확인하세요."
)
SYSTEM_MESSAGE = "🚨 긴급 채팅방이 생성되었습니다."
DURESS_SYSTEM_MESSAGE = "⚠️ 긴급 채팅방이 생성되었습니다. (듀레스 코드로 진입)"

DUMMY_SEARCH_RESULTS: tuple[SearchItem, ...] = (
    SearchItem(
        title="오늘의 날씨 - 전국 날씨 예보",
        url="https://weather.example.com",
        snippet="전국 날씨 정보를 확인하세요...",
    ),
    SearchItem(
        title="네이버 뉴스 - 최신 뉴스 모아보기",
        url="https://news.example.com",
        snippet="실시간 뉴스를 확인하세요...",
    ),
    SearchItem(
        title="맛집 추천 - 인기 맛집 리스트",
        url="https://food.example.com",
        snippet="주변 인기 맛집을 찾아보세요...",
    ),
    SearchItem(
        title="영화 순위 - 이번 주 박스오피스",
        url="https://movie.example.com",
        snippet="이번 주 인기 영화 순위...",
    ),
    SearchItem(
        title="쇼핑 - 오늘의 특가 상품",
        url="https://shop.example.com",
        snippet="오늘의 할인 상품을 확인하세요...",
    ),
)


class CamouflageableFailure(RuntimeError):
    """A covert-flow failure that must be answered with decoy results."""


def camouflage() -> SearchResponse:
    """Return the decoy search response."""
    return SearchResponse(results=list(DUMMY_SEARCH_RESULTS))


@dataclass(frozen=True)
class PhraseMatch:
    """A credential configuration matched by an entered phrase."""

    config: CredentialConfig
    is_duress: bool


@dataclass(frozen=True)
class VerifyOutcome:
    """Verification response plus the incident session token, if one was issued."""

    response: SearchResponse | IncidentResponse
    session_token: str | None = None


def match_phrase(phrase: str, configs: list[CredentialConfig]) -> PhraseMatch | None:
    """Compare `phrase` against every primary and duress hash; first match wins."""
    for config in configs:
        if verify_secret(phrase, config.primary_phrase_hash):
            return PhraseMatch(config, is_duress=False)
        if config.duress_phrase_hash and verify_secret(phrase, config.duress_phrase_hash):
            return PhraseMatch(config, is_duress=True)
    return None


class CovertAuthenticator:
    """Two-step covert entry: phrase, then second-factor answer."""

    def __init__(
        self,
        repository: EmergencyRepository,
        rate_limiter: RateLimiter,
        credentials: CredentialService,
        dispatcher_factory: Callable[[], NotificationDispatcher],
        cipher_factory: Callable[[], FieldCipher],
    ) -> None:
        self.repository = repository
        self.rate_limiter = rate_limiter
        self.credentials = credentials
        self._dispatcher_factory = dispatcher_factory
        self._cipher_factory = cipher_factory
        self._dispatcher: NotificationDispatcher | None = None
        self._cipher: FieldCipher | None = None

    @property
    def dispatcher(self) -> NotificationDispatcher:
        if self._dispatcher is None:
            self._dispatcher = self._dispatcher_factory()
        return self._dispatcher

    @property
    def cipher(self) -> FieldCipher:
        if self._cipher is None:
            self._cipher = self._cipher_factory()
        return self._cipher

    async def enter(self, phrase: Any, caller_key: str) -> SearchResponse | ChallengeResponse:
        """Check a search-bar submission against every configured phrase."""
        try:
            return await self._enter(phrase, caller_key)
        except CamouflageableFailure as e:
            logger.debug("Covert entry rejected: %s", e)
        except SQLAlchemyError:
            logger.warning("Database error during covert entry", exc_info=True)
            self.repository.rollback()
        except Exception:  # noqa: BLE001
            logger.error("Unexpected error during covert entry", exc_info=True)
        return camouflage()

    async def verify(self, credential: Any, answer: Any) -> VerifyOutcome:
        """Check the second-factor answer and open an incident on success."""
        try:
            return await self._verify(credential, answer)
        except CamouflageableFailure as e:
            logger.debug("Covert verification rejected: %s", e)
        except SQLAlchemyError:
            logger.warning("Database error during covert verification", exc_info=True)
            self.repository.rollback()
        except Exception:  # noqa: BLE001
            logger.error("Unexpected error during covert verification", exc_info=True)
            self.repository.rollback()
        return VerifyOutcome(camouflage())

    async def _enter(self, phrase: Any, caller_key: str) -> ChallengeResponse:
        if not isinstance(phrase, str) or not phrase:
            raise CamouflageableFailure("empty or malformed phrase")

        limit_key = f"emergency:{caller_key}"
        result = self.rate_limiter.check(limit_key)
        if not result.allowed:
            logger.warning("Covert entry rate limited for %s", caller_key)
            raise CamouflageableFailure("rate limited")
        self.rate_limiter.record(limit_key)

        configs = list(self.repository.list_credential_configs())
        match = await asyncio.to_thread(match_phrase, phrase, configs)
        if match is None:
            raise CamouflageableFailure("no matching phrase")

        token = self.credentials.issue_challenge(match.config.subject_id, match.is_duress)
        return ChallengeResponse(
            challenge=Challenge(
                type=match.config.second_factor_type,
                question=match.config.second_factor_question,
            ),
            credential=token,
        )

    async def _verify(self, credential: Any, answer: Any) -> VerifyOutcome:
        if not isinstance(credential, str) or not credential:
            raise CamouflageableFailure("missing credential")
        if not isinstance(answer, str) or not answer:
            raise CamouflageableFailure("missing answer")

        claims = self.credentials.verify(credential)
        if claims is None:
            raise CamouflageableFailure("invalid or expired credential")
        subject_id = claims.get("sub")
        if claims.get("purpose") != PURPOSE_SECOND_FACTOR or not subject_id:
            raise CamouflageableFailure("credential has wrong purpose")
        if not self.credentials.consume(claims):
            raise CamouflageableFailure("credential already used")

        config = self.repository.get_credential_config(subject_id)
        if config is None:
            raise CamouflageableFailure("no credential configuration")
        answer_ok = await asyncio.to_thread(
            verify_secret, answer, config.second_factor_answer_hash
        )
        if not answer_ok:
            raise CamouflageableFailure("wrong second-factor answer")

        is_duress = bool(claims.get("is_duress"))
        incident = self.repository.create_incident(subject_id, is_duress)
        self.repository.add_member(incident.id, subject_id, MEMBER_ROLE_PROTECTED)

        contacts = self._contact_links(subject_id)
        for link in contacts:
            self.repository.add_member(incident.id, link.contact_id, MEMBER_ROLE_CONTACT)

        system_text = DURESS_SYSTEM_MESSAGE if is_duress else SYSTEM_MESSAGE
        self.repository.add_message(
            incident.id, subject_id, MESSAGE_TYPE_SYSTEM, self.cipher.encrypt(system_text)
        )
        self.repository.commit()
        incident_id = incident.id
        logger.info("Incident %s opened (duress=%s, contacts=%d)", incident_id, is_duress, len(contacts))

        alert = DURESS_ALERT_MESSAGE if is_duress else ALERT_MESSAGE
        for link in contacts:
            await self._alert_contact(link, incident_id, alert)

        session_token = self.credentials.issue_incident_session(
            subject_id, ROLE_PROTECTED, incident_id
        )
        return VerifyOutcome(
            IncidentResponse(incident_id=incident_id, is_duress=is_duress, subject_id=subject_id),
            session_token,
        )

    async def _alert_contact(self, link: ContactLink, incident_id: str, alert: str) -> None:
        """Notify one contact; the incident is already committed and stays open."""
        contact_id = link.contact_id
        try:
            await self.dispatcher.create_and_send(
                contact_id,
                incident_id,
                CHANNEL_SMS,
                {"type": "EMERGENCY", "message": alert, "incident_id": incident_id},
                self._phone_for(link),
            )
            self.repository.commit()
        except Exception:  # noqa: BLE001
            logger.error(
                "Could not notify contact %s for incident %s",
                contact_id,
                incident_id,
                exc_info=True,
            )
            self.repository.rollback()

    def _contact_links(self, subject_id: str) -> list[ContactLink]:
        """Active links with an accepted contact, one per contact."""
        links: list[ContactLink] = []
        seen: set[str] = set()
        for link in self.repository.active_links_for(subject_id):
            if link.contact_id is None or link.contact_id in seen:
                continue
            seen.add(link.contact_id)
            links.append(link)
        return links

    def _phone_for(self, link: ContactLink) -> str | None:
        try:
            return self.cipher.decrypt(link.phone_encrypted)
        except ValueError:
            logger.warning("Could not decrypt phone number of contact link %s", link.id)
            return None
