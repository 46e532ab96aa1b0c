"""
tests/conftest.py -- Shared test fixtures for the cchat auth service.

This module provides:
  - hasher / issuer / verifier: auth primitives with fixed test secrets
  - signing_keys / issuer_at / verifier_at / make_settings: builders for
    tests that need their own clock or configuration
  - credential_store / identity_store: SQL stores on a private in-memory DB
  - service: AuthService wired to the stores and a RecordingNotifier
  - api_client: TestClient with a patched lifespan and its own DB

Design: unit-level fixtures use plain sqlite:///:memory:, which SQLAlchemy
keeps on one connection per thread -- fine for single-threaded tests. The
api_client uses a named shared-memory URI (file:name?mode=memory&cache=shared
&uri=true) instead, because TestClient runs sync route handlers in a thread
pool and plain :memory: would give each worker thread a blank schema.

DEBUG and BCRYPT_ROUNDS must be set before any auth/core import so
get_settings() (called at api.main import time) auto-generates signing
secrets and hashing stays fast.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import Identity
from auth.passwords import PasswordHasher
from auth.service import AuthService
from auth.store import SQLCredentialStore, SQLIdentityStore, create_store_engine
from auth.tokens import TokenIssuer, TokenVerifier
from core.config import Settings

ACCESS_SECRET = "test-access-secret-0123456789abcdef0123"
REFRESH_SECRET = "test-refresh-secret-0123456789abcdef012"

# Far enough in the past that a 15 minute access token is long expired while
# a 30 day refresh token is still good.
ONE_HOUR_AGO = timedelta(hours=1)


class RecordingNotifier:
    """ResetNotifier that keeps (identity, password) pairs instead of sending them."""

    def __init__(self) -> None:
        self.sent: list[tuple[Identity, str]] = []

    def send_reset_password(self, identity: Identity, new_password: str) -> None:
        self.sent.append((identity, new_password))


def _fixed_clock(moment: datetime) -> Callable[[], datetime]:
    return lambda: moment


def _test_settings(**overrides) -> Settings:
    """Settings isolated from the developer's environment and .env file."""
    values = {
        "debug": True,
        "access_secret_key": ACCESS_SECRET,
        "refresh_secret_key": REFRESH_SECRET,
        "bcrypt_rounds": 4,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


# ---------------------------------------------------------------------------
# Primitives
# ---------------------------------------------------------------------------


@pytest.fixture
def signing_keys() -> tuple[str, str]:
    """(access secret, refresh secret) used by every token fixture."""
    return ACCESS_SECRET, REFRESH_SECRET


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    return _test_settings


@pytest.fixture
def issuer_at() -> Callable[[datetime], TokenIssuer]:
    """Build an issuer whose clock is frozen at the given moment."""

    def build(moment: datetime) -> TokenIssuer:
        return TokenIssuer(ACCESS_SECRET, REFRESH_SECRET, clock=_fixed_clock(moment))

    return build


@pytest.fixture
def verifier_at() -> Callable[[datetime, TokenIssuer], TokenVerifier]:
    """Build a verifier whose clock is frozen at the given moment."""

    def build(moment: datetime, issuer: TokenIssuer) -> TokenVerifier:
        return TokenVerifier(ACCESS_SECRET, REFRESH_SECRET, issuer, clock=_fixed_clock(moment))

    return build


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture
def issuer() -> TokenIssuer:
    return TokenIssuer(ACCESS_SECRET, REFRESH_SECRET)


@pytest.fixture
def past_issuer(issuer_at) -> TokenIssuer:
    """Issuer whose clock runs one hour behind: its access tokens are already expired."""
    return issuer_at(datetime.now(timezone.utc) - ONE_HOUR_AGO)


@pytest.fixture
def verifier(issuer: TokenIssuer) -> TokenVerifier:
    return TokenVerifier(ACCESS_SECRET, REFRESH_SECRET, issuer)


@pytest.fixture
def identity() -> Identity:
    return Identity(id=str(uuid.uuid4()), username="alice_0a1b2c", email="alice@example.com")


# ---------------------------------------------------------------------------
# Stores and service
# ---------------------------------------------------------------------------


@pytest.fixture
def engine():
    engine = create_store_engine("sqlite:///:memory:")
    yield engine
    engine.dispose()


@pytest.fixture
def credential_store(engine) -> SQLCredentialStore:
    return SQLCredentialStore(engine)


@pytest.fixture
def identity_store(engine) -> SQLIdentityStore:
    return SQLIdentityStore(engine)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def service(credential_store, identity_store, hasher, issuer, verifier, notifier) -> AuthService:
    return AuthService(
        credentials=credential_store,
        identities=identity_store,
        hasher=hasher,
        issuer=issuer,
        verifier=verifier,
        notifier=notifier,
    )


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires the test service into app.state so routes never open the
    configured database or build a webhook notifier.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = settings
        app.state.auth_service = service
        app.state.token_verifier = service.verifier
        yield

    return test_lifespan


@pytest.fixture
def api_client() -> Generator[tuple[TestClient, AuthService, RecordingNotifier], None, None]:
    """Yield (client, service, notifier) backed by a fresh shared-memory DB.

    Function-scoped: the TestClient keeps cookies between requests, so a
    module-wide client would leak sessions from one test into the next.
    """
    settings = _test_settings()
    db_url = f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    engine = create_store_engine(db_url)
    issuer = TokenIssuer.from_settings(settings)
    notifier = RecordingNotifier()
    service = AuthService(
        credentials=SQLCredentialStore(engine),
        identities=SQLIdentityStore(engine),
        hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
        issuer=issuer,
        verifier=TokenVerifier.from_settings(settings, issuer),
        notifier=notifier,
    )

    app.router.lifespan_context = _patch_lifespan(settings, service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, service, notifier

    engine.dispose()
