"""
auth/tokens.py -- Access/refresh token issuance and verification.

Security design decisions:
  JWT: python-jose with HS256. Access tokens are signed with
       ACCESS_SECRET_KEY, refresh tokens with REFRESH_SECRET_KEY. Each claim
       set also carries a typ discriminator, so a token of one kind can never
       stand in for the other even if the secrets were ever shared.

  Claims: typed pydantic models per token kind. A token whose payload does
       not validate (missing field, wrong type, wrong typ) is treated exactly
       like a token with a bad signature.

       access  = {typ, id, username, email, exp, iat, jti}
       refresh = {typ, sub, exp, iat, jti}

       sub binds the refresh token to one identity. jti is a fresh random id,
       which also guarantees that two pairs minted in the same second differ.

  Rotation on use: when the access token is no longer valid but the refresh
       token is, the verifier mints a brand-new pair. Nothing is persisted;
       the HTTP layer must set the new pair on the response.

  Expiry: checked against an injectable clock rather than inside
       jose.jwt.decode(), so verification is a pure function of
       (tokens, secrets, clock).

  Recovery: when the access token is expired, its claims are still read to
       route the rotation, but only if its signature checks out. A token with
       a bad signature recovers nothing, so a client holding its own refresh
       token cannot forge a different username or e-mail into a freshly
       signed access token. The refresh sub must also name the same id.

  Failure mode: verify() never raises for bad input. Every structural problem
       resolves to REJECTED. Only a failure to *sign* a replacement pair is an
       error (Internal), because that is a server fault, not a client one.

Layer rule: no imports from api/. Secrets are injected by the caller (see
from_settings()); this module never reads configuration on import.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Literal

from jose import JWTError, jwt
from pydantic import BaseModel, ConfigDict, Field

from auth.errors import Internal
from auth.models import REJECTED, Identity, TokenPair, TokenState, VerificationResult

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("cchat.auth.tokens")

_ALGORITHM = "HS256"

ACCESS_TTL = timedelta(minutes=15)
REFRESH_TTL = timedelta(days=30)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Claim models
# ---------------------------------------------------------------------------


class AccessClaims(BaseModel):
    """Signed assertion of identity carried by the access token."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    typ: Literal["access"] = "access"
    id: str = Field(min_length=1)
    username: str
    email: str
    exp: int
    iat: int
    jti: str = Field(min_length=1)

    def to_identity(self) -> Identity:
        return Identity(id=self.id, username=self.username, email=self.email)


class RefreshClaims(BaseModel):
    """Signed assertion of session validity carried by the refresh token."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    typ: Literal["refresh"] = "refresh"
    sub: str = Field(min_length=1)
    exp: int
    iat: int
    jti: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Issuer
# ---------------------------------------------------------------------------


class TokenIssuer:
    """Mints signed access + refresh pairs. Stateless and thread-safe."""

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_ttl: timedelta = ACCESS_TTL,
        refresh_ttl: timedelta = REFRESH_TTL,
        clock: Clock = _utcnow,
    ) -> None:
        if not access_secret or not refresh_secret:
            raise ValueError("both signing secrets are required")
        if access_secret == refresh_secret:
            raise ValueError("access and refresh tokens must use different secrets")
        if access_ttl >= refresh_ttl:
            raise ValueError("access TTL must be shorter than refresh TTL")
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = _utcnow) -> TokenIssuer:
        return cls(
            access_secret=settings.access_secret_key,
            refresh_secret=settings.refresh_secret_key,
            access_ttl=timedelta(seconds=settings.access_token_ttl_seconds),
            refresh_ttl=timedelta(seconds=settings.refresh_token_ttl_seconds),
            clock=clock,
        )

    def issue(self, identity: Identity) -> TokenPair:
        """Return a fresh pair for identity. Raises Internal if signing fails."""
        now = self._clock()
        iat = int(now.timestamp())
        access = AccessClaims(
            id=identity.id,
            username=identity.username,
            email=identity.email,
            exp=int((now + self.access_ttl).timestamp()),
            iat=iat,
            jti=uuid.uuid4().hex,
        )
        refresh = RefreshClaims(
            sub=identity.id,
            exp=int((now + self.refresh_ttl).timestamp()),
            iat=iat,
            jti=uuid.uuid4().hex,
        )
        try:
            return TokenPair(
                access=jwt.encode(access.model_dump(), self._access_secret, algorithm=_ALGORITHM),
                refresh=jwt.encode(refresh.model_dump(), self._refresh_secret, algorithm=_ALGORITHM),
            )
        except (JWTError, TypeError, ValueError) as exc:
            logger.error("failed to sign token pair for user %s: %s", identity.id, exc)
            raise Internal("failed to generate tokens") from exc


# ---------------------------------------------------------------------------
# Verifier
# ---------------------------------------------------------------------------


class TokenVerifier:
    """Validates a presented pair and rotates it when only the refresh part is valid.

    Usage:
        verifier = TokenVerifier(access_secret, refresh_secret, issuer)
        result = verifier.verify(access_cookie, refresh_cookie)
        if result.authenticated and result.rotated:
            set_token_cookies(response, result.pair)
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        issuer: TokenIssuer,
        clock: Clock = _utcnow,
    ) -> None:
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self._issuer = issuer
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, issuer: TokenIssuer, clock: Clock = _utcnow) -> TokenVerifier:
        return cls(settings.access_secret_key, settings.refresh_secret_key, issuer, clock=clock)

    def verify(self, access_token: str | None, refresh_token: str | None) -> VerificationResult:
        """Run the VALID / EXPIRED_RETRYABLE / REJECTED state machine.

        1. Access token valid -> VALID with the identity from its own claims.
        2. Otherwise recover the identity from the access token's claims,
           expiry ignored but signature still checked, then verify the
           refresh token.
        3. Refresh valid and its sub names the same identity ->
           EXPIRED_RETRYABLE with a newly issued pair.
        4. Anything else -> REJECTED.
        """
        claims = self._access_claims(access_token)
        if claims is not None and not self._expired(claims.exp):
            return VerificationResult(state=TokenState.VALID, identity=claims.to_identity())

        # Expired access claims only route the rotation; the refresh token
        # must confirm the same identity.
        if claims is None:
            logger.debug("access token unusable and identity unrecoverable")
            return REJECTED

        refresh = self.decode_refresh(refresh_token)
        if refresh is None:
            logger.debug("refresh token invalid or expired for user %s", claims.id)
            return REJECTED
        if refresh.sub != claims.id:
            logger.warning("refresh token subject does not match access claims for user %s", claims.id)
            return REJECTED

        identity = claims.to_identity()
        return VerificationResult(
            state=TokenState.EXPIRED_RETRYABLE,
            identity=identity,
            pair=self._issuer.issue(identity),
        )

    def _access_claims(self, token: str | None) -> AccessClaims | None:
        payload = self._decode(token, self._access_secret)
        if payload is None:
            return None
        try:
            return AccessClaims.model_validate(payload)
        except ValueError:
            return None

    def decode_refresh(self, token: str | None) -> RefreshClaims | None:
        """Return verified, unexpired refresh claims or None."""
        payload = self._decode(token, self._refresh_secret)
        if payload is None:
            return None
        try:
            claims = RefreshClaims.model_validate(payload)
        except ValueError:
            return None
        return claims if not self._expired(claims.exp) else None

    def _decode(self, token: str | None, secret: str) -> dict | None:
        if not token or not isinstance(token, str):
            return None
        try:
            return jwt.decode(
                token,
                secret,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False, "verify_aud": False},
            )
        except (JWTError, ValueError, TypeError):
            return None

    def _expired(self, exp: int) -> bool:
        return int(self._clock().timestamp()) >= exp

