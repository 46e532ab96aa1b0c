"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic beyond trivial
properties). Stores and services do the work.

Signed claim structures live in auth/tokens.py as pydantic models because
they need validation on the way in; everything here is trusted internal data.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class Identity:
    """A registered user as seen by the auth core.

    id is opaque (a UUID4 string for the SQL identity store) and never
    changes. username and email may be changed by profile flows that live
    outside this service; tokens carry whatever was current at issue time.
    """

    id: str
    username: str
    email: str


@dataclass
class Credential:
    """Secret material bound to exactly one Identity.

    password_hash is a bcrypt hash. It is never logged and never leaves the
    store except to be verified.
    """

    identity_id: str
    password_hash: str
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class TokenPair:
    """Opaque signed access + refresh tokens. Stateless, never stored."""

    access: str
    refresh: str


class TokenState(str, Enum):
    VALID = "valid"
    EXPIRED_RETRYABLE = "expired_retryable"
    REJECTED = "rejected"


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of TokenVerifier.verify().

    VALID             -- identity set, pair None.
    EXPIRED_RETRYABLE -- identity set, pair is a freshly issued replacement
                         that the HTTP layer must hand back to the client.
    REJECTED          -- identity and pair both None.
    """

    state: TokenState
    identity: Identity | None = None
    pair: TokenPair | None = None

    @property
    def authenticated(self) -> bool:
        return self.state is not TokenState.REJECTED and self.identity is not None

    @property
    def rotated(self) -> bool:
        return self.pair is not None


REJECTED = VerificationResult(state=TokenState.REJECTED)
