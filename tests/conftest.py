# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Generator, Iterator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault(
    "ENCRYPTION_KEY",
    "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff",
)
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("PHRASE_HASH_ROUNDS", "4")
os.environ.setdefault("COUNTER_BACKEND", "memory")
os.environ.setdefault("ANALYZER_CHAIN", "[]")
os.environ.setdefault("SMS_PROVIDER", "dev")

from emergency_connect.api.v1 import dependencies as deps
from emergency_connect.core.security import CredentialService, FieldCipher
from emergency_connect.core.settings import settings
from emergency_connect.db.session import Base
from emergency_connect.db.session import get_db as app_get_session
from emergency_connect.main import app as fastapi_app
from emergency_connect.models import Account, ContactLink, CredentialConfig
from emergency_connect.models.account import LINK_STATUS_ACTIVE, ROLE_CONTACT, ROLE_PROTECTED
from emergency_connect.repositories.emergency_repo import SqlAlchemyEmergencyRepository
from emergency_connect.schemas.credential import CredentialConfigRequest
from emergency_connect.services.analysis.engine import AnalysisEngine
from emergency_connect.services.counters import InMemoryCounterStore
from emergency_connect.services.credential_config import configure_credentials
from emergency_connect.services.rate_limit import RateLimitConfig, RateLimiter
from tests.helpers import (
    ANSWER,
    CONTACT_PHONE,
    DURESS_PHRASE,
    PRIMARY_PHRASE,
    QUESTION,
    RecordingSmsChannel,
)


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def db_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def repository(db_session: Session) -> SqlAlchemyEmergencyRepository:
    return SqlAlchemyEmergencyRepository(db_session)


@pytest.fixture()
def counter_store() -> InMemoryCounterStore:
    return InMemoryCounterStore()


@pytest.fixture()
def rate_limiter(counter_store: InMemoryCounterStore) -> RateLimiter:
    return RateLimiter(counter_store, RateLimitConfig(**settings.rate_limit_defaults))


@pytest.fixture()
def credential_service(counter_store: InMemoryCounterStore) -> CredentialService:
    return CredentialService(settings.secret_key, settings.jwt_algorithm, counter_store)


@pytest.fixture()
def cipher() -> FieldCipher:
    return FieldCipher.from_hex(settings.encryption_key)


@pytest.fixture()
def sms_channel() -> RecordingSmsChannel:
    return RecordingSmsChannel()


@pytest.fixture()
def analysis_engine() -> AnalysisEngine:
    return AnalysisEngine()


@pytest.fixture()
def protected_account(db_session: Session) -> Account:
    account = Account(role=ROLE_PROTECTED, display_name="Protected User")
    db_session.add(account)
    db_session.commit()
    return account


@pytest.fixture()
def contact_account(db_session: Session, protected_account: Account, cipher: FieldCipher) -> Account:
    """A contact with an accepted link to the protected account."""
    account = Account(role=ROLE_CONTACT, display_name="Trusted Contact")
    db_session.add(account)
    db_session.flush()
    db_session.add(
        ContactLink(
            protected_id=protected_account.id,
            contact_id=account.id,
            phone_encrypted=cipher.encrypt(CONTACT_PHONE),
            status=LINK_STATUS_ACTIVE,
        )
    )
    db_session.commit()
    return account


@pytest.fixture()
def credential_config(
    repository: SqlAlchemyEmergencyRepository, protected_account: Account
) -> CredentialConfig:
    return configure_credentials(
        repository,
        protected_account.id,
        CredentialConfigRequest(
            primary_phrase=PRIMARY_PHRASE,
            duress_phrase=DURESS_PHRASE,
            second_factor_question=QUESTION,
            second_factor_answer=ANSWER,
        ),
    )


@pytest.fixture()
def app(
    db_session: Session,
    rate_limiter: RateLimiter,
    credential_service: CredentialService,
    cipher: FieldCipher,
    sms_channel: RecordingSmsChannel,
    analysis_engine: AnalysisEngine,
) -> Iterator[FastAPI]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    overrides = {
        app_get_session: _get_session_override,
        deps.get_rate_limiter_dep: lambda: rate_limiter,
        deps.get_credential_service_dep: lambda: credential_service,
        deps.get_field_cipher_dep: lambda: cipher,
        deps.get_field_cipher_factory: lambda: lambda: cipher,
        deps.get_sms_channel_factory: lambda: lambda: sms_channel,
        deps.get_analysis_engine_dep: lambda: analysis_engine,
    }
    fastapi_app.dependency_overrides.update(overrides)
    try:
        yield fastapi_app
    finally:
        for dependency in overrides:
            fastapi_app.dependency_overrides.pop(dependency, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client


