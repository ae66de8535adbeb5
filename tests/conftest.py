"""
Configuration globale pytest pour Dottir
Fixtures partagees entre tous les tests

Environnement de test (ENV=test):
- Base SQLite en memoire, recreee pour chaque test
- Horloge figee (FakeClock) injectee dans tous les services
- Store transitoire en memoire, sur la meme horloge
- Cookies non Secure pour que le TestClient les renvoie en http
"""
import os
from typing import Generator

import pytest

# Configuration environnement de test (avant tout import dottir)
os.environ["ENV"] = "test"
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENCRYPTION_KEY"] = "test-encryption-key-for-dottir-unit-tests"
os.environ["REDIS_URL"] = ""
os.environ["SESSION_COOKIE_SECURE"] = "false"
os.environ["RATE_LIMIT_REQUESTS"] = "1000"

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from dottir.core.dependencies import get_clock, get_db, get_sso_transport, get_store  # noqa: E402
from dottir.core.transient_store import MemoryTransientStore  # noqa: E402
from dottir.models import Base  # noqa: E402
from dottir.repositories import (  # noqa: E402
    MFARecoveryCodeRepository,
    MFASecretRepository,
    SessionRepository,
    SSOConnectionRepository,
    SSOProviderRepository,
    UserRepository,
)
from dottir.services.auth import AuthService  # noqa: E402
from dottir.services.backup_codes import BackupCodeManager  # noqa: E402
from dottir.services.mfa import MFAService  # noqa: E402
from dottir.services.rate_limit import FixedWindowRateLimiter  # noqa: E402
from dottir.services.session import SessionService  # noqa: E402
from dottir.services.sso import SSOService  # noqa: E402
from dottir.services.totp import TOTPEngine  # noqa: E402
from tests.factories.user import TEST_BCRYPT_ROUNDS  # noqa: E402
from tests.fakes import START_TIME, FakeClock, FakeProvider  # noqa: E402



# ============================================
# Temps et stockage transitoire
# ============================================

@pytest.fixture
def clock() -> FakeClock:
    """Horloge figee, avancee explicitement par les tests"""
    return FakeClock(START_TIME)


@pytest.fixture
def store(clock: FakeClock) -> MemoryTransientStore:
    return MemoryTransientStore(clock=clock.timestamp)


# ============================================
# Base de donnees
# ============================================

@pytest.fixture
def db_engine():
    """
    Engine SQLite en memoire partage par toutes les connexions du test.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)

    yield engine

    engine.dispose()


@pytest.fixture
def db_session(db_engine) -> Generator[Session, None, None]:
    TestSessionLocal = sessionmaker(bind=db_engine, autoflush=False)
    session = TestSessionLocal()

    yield session

    session.close()


# ============================================
# Repositories
# ============================================

@pytest.fixture
def user_repository(db_session: Session) -> UserRepository:
    return UserRepository(db_session)


@pytest.fixture
def session_repository(db_session: Session) -> SessionRepository:
    return SessionRepository(db_session)


@pytest.fixture
def mfa_secret_repository(db_session: Session) -> MFASecretRepository:
    return MFASecretRepository(db_session)


@pytest.fixture
def mfa_recovery_code_repository(db_session: Session) -> MFARecoveryCodeRepository:
    return MFARecoveryCodeRepository(db_session)


@pytest.fixture
def sso_provider_repository(db_session: Session) -> SSOProviderRepository:
    return SSOProviderRepository(db_session)


@pytest.fixture
def sso_connection_repository(db_session: Session) -> SSOConnectionRepository:
    return SSOConnectionRepository(db_session)


# ============================================
# Services
# ============================================

@pytest.fixture
def totp_engine() -> TOTPEngine:
    return TOTPEngine()


@pytest.fixture
def backup_code_manager() -> BackupCodeManager:
    """Cout bcrypt minimal pour garder les tests rapides"""
    return BackupCodeManager(rounds=4)


@pytest.fixture
def session_service(session_repository, clock) -> SessionService:
    return SessionService(
        session_repository=session_repository,
        inactivity_minutes=30,
        absolute_expiry_hours=720,
        warning_minutes=5,
        clock=clock,
    )


@pytest.fixture
def mfa_service(
    user_repository,
    mfa_secret_repository,
    mfa_recovery_code_repository,
    totp_engine,
    backup_code_manager,
    clock,
) -> MFAService:
    return MFAService(
        user_repository=user_repository,
        mfa_secret_repository=mfa_secret_repository,
        mfa_recovery_code_repository=mfa_recovery_code_repository,
        totp_engine=totp_engine,
        backup_code_manager=backup_code_manager,
        clock=clock,
    )


@pytest.fixture
def provider() -> FakeProvider:
    """Fournisseur OAuth2 simule (httpx.MockTransport)"""
    return FakeProvider()


@pytest.fixture
def sso_service(
    user_repository,
    sso_provider_repository,
    sso_connection_repository,
    store,
    provider,
    clock,
) -> SSOService:
    return SSOService(
        user_repository=user_repository,
        provider_repository=sso_provider_repository,
        connection_repository=sso_connection_repository,
        state_ttl_seconds=600,
        http_timeout=2.0,
        nonce_store=store,
        transport=provider.transport(),
        clock=clock,
    )


@pytest.fixture
def rate_limiter(store, clock) -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(store=store, limit=5, window_seconds=60, clock=clock.timestamp)


@pytest.fixture
def auth_service(
    user_repository,
    mfa_service,
    session_service,
    sso_service,
    store,
    rate_limiter,
    clock,
) -> AuthService:
    return AuthService(
        user_repository=user_repository,
        mfa_service=mfa_service,
        session_service=session_service,
        challenge_store=store,
        rate_limiter=rate_limiter,
        sso_service=sso_service,
        challenge_ttl_seconds=300,
        max_challenge_attempts=3,
        password_rounds=TEST_BCRYPT_ROUNDS,
        clock=clock,
    )


# ============================================
# Client API Test
# ============================================

@pytest.fixture
def client(db_session: Session, clock: FakeClock, store, provider) -> Generator[TestClient, None, None]:
    """
    TestClient FastAPI avec override de la DB, de l'horloge, du store
    transitoire et du transport SSO.
    """
    from dottir.main import app

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_sso_transport] = provider.transport

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


# ============================================
# Markers pytest
# ============================================

def pytest_configure(config):
    """Configuration des markers personnalises"""
    config.addinivalue_line("markers", "unit: Tests unitaires (pas de DB)")
    config.addinivalue_line("markers", "integration: Tests integration (avec DB)")
    config.addinivalue_line("markers", "e2e: Tests end-to-end (API complete)")
    config.addinivalue_line("markers", "security: Tests de securite")
