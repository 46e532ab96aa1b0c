"""
tests/test_tokens.py -- Unit tests for auth/tokens.py.

Covers the verification state machine:
  - VALID: unexpired access token, identity from its claims, no new pair
  - EXPIRED_RETRYABLE: expired access + valid refresh -> fresh pair that
    itself verifies as VALID
  - REJECTED: both expired, garbage refresh, wrong secrets, swapped tokens,
    refresh bound to another identity, missing or non-string input
Expiry follows the injected clock only (old and far-future pairs).
And the issuer's construction rules (distinct secrets, TTL ordering).
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from jose import JWTError, jwt

from auth.models import Identity, TokenState
from auth.tokens import AccessClaims, RefreshClaims, TokenIssuer, TokenVerifier


class TestIssue:
    def test_pair_carries_identity_claims(self, issuer: TokenIssuer, identity: Identity, signing_keys) -> None:
        access_key, refresh_key = signing_keys
        pair = issuer.issue(identity)
        access = AccessClaims.model_validate(jwt.decode(pair.access, access_key, algorithms=["HS256"]))
        refresh = RefreshClaims.model_validate(jwt.decode(pair.refresh, refresh_key, algorithms=["HS256"]))
        assert access.to_identity() == identity
        assert refresh.sub == identity.id

    def test_access_ttl_is_fifteen_minutes(self, identity: Identity, issuer_at) -> None:
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        pair = issuer_at(now).issue(identity)
        claims = jwt.get_unverified_claims(pair.access)
        assert claims["exp"] - claims["iat"] == 15 * 60

    def test_refresh_ttl_is_thirty_days(self, identity: Identity, issuer_at) -> None:
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        pair = issuer_at(now).issue(identity)
        claims = jwt.get_unverified_claims(pair.refresh)
        assert claims["exp"] - claims["iat"] == 30 * 24 * 60 * 60

    def test_refresh_token_carries_no_profile_data(self, issuer: TokenIssuer, identity: Identity) -> None:
        claims = jwt.get_unverified_claims(issuer.issue(identity).refresh)
        assert "email" not in claims
        assert "username" not in claims

    def test_pairs_issued_in_the_same_second_differ(self, identity: Identity, issuer_at) -> None:
        issuer = issuer_at(datetime(2026, 1, 1, tzinfo=timezone.utc))
        first, second = issuer.issue(identity), issuer.issue(identity)
        assert first.access != second.access
        assert first.refresh != second.refresh

    def test_access_and_refresh_use_different_secrets(self, issuer: TokenIssuer, identity: Identity, signing_keys) -> None:
        access_key, refresh_key = signing_keys
        pair = issuer.issue(identity)
        jwt.decode(pair.access, access_key, algorithms=["HS256"])
        with pytest.raises(JWTError):
            jwt.decode(pair.access, refresh_key, algorithms=["HS256"])

    def test_rejects_identical_secrets(self) -> None:
        with pytest.raises(ValueError):
            TokenIssuer("s" * 40, "s" * 40)

    def test_rejects_empty_secret(self) -> None:
        with pytest.raises(ValueError):
            TokenIssuer("", "r" * 40)

    def test_rejects_access_ttl_not_shorter_than_refresh(self) -> None:
        with pytest.raises(ValueError):
            TokenIssuer("a" * 40, "r" * 40, access_ttl=timedelta(days=1), refresh_ttl=timedelta(days=1))


class TestVerifyValid:
    def test_fresh_pair_is_valid(self, issuer: TokenIssuer, verifier: TokenVerifier, identity: Identity) -> None:
        pair = issuer.issue(identity)
        result = verifier.verify(pair.access, pair.refresh)
        assert result.state is TokenState.VALID
        assert result.identity == identity
        assert result.pair is None
        assert result.authenticated is True
        assert result.rotated is False

    def test_valid_access_needs_no_refresh(self, issuer: TokenIssuer, verifier: TokenVerifier, identity: Identity) -> None:
        pair = issuer.issue(identity)
        assert verifier.verify(pair.access, None).state is TokenState.VALID

    def test_access_expires_at_exact_exp(self, identity: Identity, issuer_at, verifier_at) -> None:
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        issuer = issuer_at(now)
        pair = issuer.issue(identity)
        at_expiry = verifier_at(now + timedelta(minutes=15), issuer)
        just_before = verifier_at(now + timedelta(minutes=15) - timedelta(seconds=1), issuer)
        assert just_before.verify(pair.access, pair.refresh).state is TokenState.VALID
        assert at_expiry.verify(pair.access, pair.refresh).state is TokenState.EXPIRED_RETRYABLE


class TestInjectedClock:
    """Expiry is judged by the verifier's clock alone, never the wall clock."""

    def test_old_pair_is_valid_at_its_issue_time(self, identity: Identity, issuer_at, verifier_at) -> None:
        then = datetime(2020, 1, 1, tzinfo=timezone.utc)
        issuer = issuer_at(then)
        pair = issuer.issue(identity)
        result = verifier_at(then + timedelta(minutes=1), issuer).verify(pair.access, pair.refresh)
        assert result.state is TokenState.VALID
        assert result.identity == identity

    def test_old_pair_rotates_while_refresh_is_live_on_that_clock(
        self, identity: Identity, issuer_at, verifier_at
    ) -> None:
        then = datetime(2020, 1, 1, tzinfo=timezone.utc)
        issuer = issuer_at(then)
        pair = issuer.issue(identity)
        result = verifier_at(then + timedelta(days=29), issuer).verify(pair.access, pair.refresh)
        assert result.state is TokenState.EXPIRED_RETRYABLE
        assert result.identity == identity

    def test_future_pair_is_expired_on_a_later_clock(self, identity: Identity, issuer_at, verifier_at) -> None:
        later = datetime(2100, 1, 1, tzinfo=timezone.utc)
        issuer = issuer_at(later)
        pair = issuer.issue(identity)
        result = verifier_at(later + timedelta(days=31), issuer).verify(pair.access, pair.refresh)
        assert result.state is TokenState.REJECTED


class TestVerifyRotation:
    def test_expired_access_with_valid_refresh_rotates(
        self, past_issuer: TokenIssuer, verifier: TokenVerifier, identity: Identity
    ) -> None:
        old = past_issuer.issue(identity)
        result = verifier.verify(old.access, old.refresh)
        assert result.state is TokenState.EXPIRED_RETRYABLE
        assert result.identity == identity
        assert result.rotated is True
        assert result.pair.access != old.access
        assert result.pair.refresh != old.refresh

    def test_rotated_pair_verifies_as_valid(
        self, past_issuer: TokenIssuer, verifier: TokenVerifier, identity: Identity
    ) -> None:
        old = past_issuer.issue(identity)
        rotated = verifier.verify(old.access, old.refresh).pair
        result = verifier.verify(rotated.access, rotated.refresh)
        assert result.state is TokenState.VALID
        assert result.identity == identity

    def test_rotation_does_not_revoke_the_old_refresh_token(
        self, past_issuer: TokenIssuer, verifier: TokenVerifier, identity: Identity
    ) -> None:
        """Verification is stateless: presenting the old pair again rotates again."""
        old = past_issuer.issue(identity)
        verifier.verify(old.access, old.refresh)
        assert verifier.verify(old.access, old.refresh).state is TokenState.EXPIRED_RETRYABLE


class TestVerifyRejected:
    def test_both_expired(self, verifier: TokenVerifier, identity: Identity, issuer_at) -> None:
        pair = issuer_at(datetime.now(timezone.utc) - timedelta(days=31)).issue(identity)
        result = verifier.verify(pair.access, pair.refresh)
        assert result.state is TokenState.REJECTED
        assert result.identity is None
        assert result.pair is None
        assert result.authenticated is False

    def test_expired_access_with_garbage_refresh(
        self, past_issuer: TokenIssuer, verifier: TokenVerifier, identity: Identity
    ) -> None:
        old = past_issuer.issue(identity)
        result = verifier.verify(old.access, "garbage")
        assert result.state is TokenState.REJECTED
        assert result.identity is None

    def test_expired_access_without_refresh(
        self, past_issuer: TokenIssuer, verifier: TokenVerifier, identity: Identity
    ) -> None:
        assert verifier.verify(past_issuer.issue(identity).access, None).state is TokenState.REJECTED

    def test_refresh_for_another_identity(
        self, past_issuer: TokenIssuer, verifier: TokenVerifier, identity: Identity
    ) -> None:
        other = Identity(id=str(uuid.uuid4()), username="mallory_ffffff", email="mallory@example.com")
        access = past_issuer.issue(identity).access
        foreign_refresh = past_issuer.issue(other).refresh
        assert verifier.verify(access, foreign_refresh).state is TokenState.REJECTED

    def test_forged_access_claims_are_not_reissued(
        self, past_issuer: TokenIssuer, verifier: TokenVerifier, identity: Identity
    ) -> None:
        """A self-signed access token naming the holder's own id but a different e-mail is refused."""
        refresh = past_issuer.issue(identity).refresh
        forged = jwt.encode(
            {
                "typ": "access",
                "id": identity.id,
                "username": "admin",
                "email": "admin@example.com",
                "exp": 1,
                "iat": 0,
                "jti": "x",
            },
            "attacker-chosen-secret-0123456789abcdef",
            algorithm="HS256",
        )
        assert verifier.verify(forged, refresh).state is TokenState.REJECTED

    def test_tokens_signed_with_other_secrets(self, verifier: TokenVerifier, identity: Identity) -> None:
        foreign = TokenIssuer("x" * 40, "y" * 40).issue(identity)
        assert verifier.verify(foreign.access, foreign.refresh).state is TokenState.REJECTED

    def test_swapped_tokens(self, issuer: TokenIssuer, verifier: TokenVerifier, identity: Identity) -> None:
        pair = issuer.issue(identity)
        assert verifier.verify(pair.refresh, pair.access).state is TokenState.REJECTED

    @pytest.mark.parametrize(
        "access, refresh",
        [
            (None, None),
            ("", ""),
            ("abc", "def"),
            ("a.b.c", "a.b.c"),
            (123, 456),
        ],
    )
    def test_malformed_input_never_raises(self, verifier: TokenVerifier, access, refresh) -> None:
        assert verifier.verify(access, refresh).state is TokenState.REJECTED


class TestFromSettings:
    def test_issuer_uses_configured_ttls(self, identity: Identity, make_settings) -> None:
        settings = make_settings(access_token_ttl_seconds=60, refresh_token_ttl_seconds=120)
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        issuer = TokenIssuer.from_settings(settings, clock=lambda: now)
        claims = jwt.get_unverified_claims(issuer.issue(identity).access)
        assert claims["exp"] - claims["iat"] == 60

    def test_verifier_accepts_issuer_tokens(self, identity: Identity, make_settings) -> None:
        settings = make_settings()
        issuer = TokenIssuer.from_settings(settings)
        verifier = TokenVerifier.from_settings(settings, issuer)
        pair = issuer.issue(identity)
        assert verifier.verify(pair.access, pair.refresh).state is TokenState.VALID
