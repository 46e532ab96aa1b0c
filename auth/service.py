"""
auth/service.py -- Password lifecycle operations (register, login, change, reset).

AuthService composes IdentityProvider, CredentialStore, PasswordHasher,
TokenIssuer and ResetNotifier. It owns the error semantics the HTTP layer
relies on:

  [E1] Login: unknown e-mail, missing credential and wrong password all raise
       the same InvalidCredentials. When there is no hash to check, bcrypt
       still runs against a dummy hash so response time does not reveal
       whether the e-mail is registered. A successful login whose stored hash
       was made at another bcrypt cost rewrites it at the configured cost
       (compare-and-swap, so a concurrent change wins).

  [E2] Register: identity and credential are created in two calls (the
       identity provider may be another service). If the credential write
       fails, the identity is deleted again and Internal is raised -- an
       identity is never left without a credential.

  [E3] Change password: the old password is verified first, and the replace
       is a compare-and-swap against the verified hash. On any failure the
       stored hash is untouched.

  [E4] Reset: without a notifier the call fails before anything is written.
       The generated secret is handed to the notifier and never logged. A
       delivery failure raises Transient saying the new password is stored
       but undelivered, so the caller requests another reset.

  [E5] Anything unexpected is logged with its traceback and re-raised as
       Internal. Taxonomy errors (auth/errors.py) pass through unchanged.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from auth.errors import AuthError, Internal, InvalidCredentials, NotFound, Transient
from auth.models import Identity, TokenPair, VerificationResult
from auth.notify import ResetNotifier, WebhookResetNotifier
from auth.passwords import PasswordHasher, generate_reset_password
from auth.store import CredentialStore, IdentityProvider, SQLCredentialStore, SQLIdentityStore, create_store_engine
from auth.tokens import TokenIssuer, TokenVerifier

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

    from core.config import Settings

logger = logging.getLogger("cchat.auth")

UNDELIVERED_RESET_MESSAGE = "New password was stored but could not be delivered; request another reset."


def normalize_email(email: str) -> str:
    return email.strip().lower()


@contextmanager
def _operation(op: str, email: str) -> Iterator[None]:
    try:
        yield
    except AuthError:
        raise
    except Exception as exc:
        logger.exception("%s failed unexpectedly for %s", op, email)
        raise Internal() from exc


class AuthService:
    """The auth orchestrator.

    Usage:
        service = AuthService(credentials, identities, hasher, issuer, verifier, notifier)
        identity, pair = service.register("a@x.com", "password1")
        identity, pair = service.login("a@x.com", "password1")
    """

    def __init__(
        self,
        credentials: CredentialStore,
        identities: IdentityProvider,
        hasher: PasswordHasher,
        issuer: TokenIssuer,
        verifier: TokenVerifier,
        notifier: ResetNotifier | None = None,
        password_generator: Callable[[], str] = generate_reset_password,
    ) -> None:
        self.credentials = credentials
        self.identities = identities
        self.hasher = hasher
        self.issuer = issuer
        self.verifier = verifier
        self.notifier = notifier
        self._generate_password = password_generator
        # Timing equalization target for [E1]; same cost as real hashes.
        self._dummy_hash = hasher.hash("cchat_timing_dummy")

    # ------------------------------------------------------------------
    # Register / login
    # ------------------------------------------------------------------

    def register(self, email: str, password: str) -> tuple[Identity, TokenPair]:
        """Create identity + credential and issue the first token pair [E2].

        Raises UserExists, Internal or Transient.
        """
        email = normalize_email(email)
        with _operation("register", email):
            logger.info("registering user %s", email)
            password_hash = self.hasher.hash(password)
            identity = self.identities.create_identity(email)
            try:
                self.credentials.create_credential(identity.id, password_hash)
            except Exception as exc:
                logger.exception("credential write failed for new user %s, rolling back identity", identity.id)
                self._discard_identity(identity)
                raise Internal() from exc
            logger.info("user %s registered as %s", email, identity.id)
            return identity, self.issuer.issue(identity)

    def login(self, email: str, password: str) -> tuple[Identity, TokenPair]:
        """Check the password and issue a new pair. Raises InvalidCredentials [E1]."""
        email = normalize_email(email)
        with _operation("login", email):
            logger.info("attempting to login user %s", email)
            identity = self.identities.get_by_email(email)
            if identity is None:
                self.hasher.verify(self._dummy_hash, password)
                logger.warning("login failed for %s: unknown user", email)
                raise InvalidCredentials()
            try:
                password_hash = self.credentials.get_password_hash(identity.id)
            except NotFound:
                self.hasher.verify(self._dummy_hash, password)
                logger.warning("login failed for %s: no credential", email)
                raise InvalidCredentials() from None
            if not self.hasher.verify(password_hash, password):
                logger.warning("login failed for %s: invalid credentials", email)
                raise InvalidCredentials()
            if self.hasher.needs_rehash(password_hash):
                self._upgrade_hash(identity, password, password_hash)
            logger.info("user %s logged in", identity.id)
            return identity, self.issuer.issue(identity)

    # ------------------------------------------------------------------
    # Password lifecycle
    # ------------------------------------------------------------------

    def change_password(self, email: str, previous_password: str, new_password: str) -> None:
        """Replace the password after verifying the previous one [E3].

        Raises NotFound, InvalidCredentials, Internal or Transient.
        """
        email = normalize_email(email)
        with _operation("change_password", email):
            logger.info("changing password for %s", email)
            identity = self._require_identity(email)
            current_hash = self.credentials.get_password_hash(identity.id)
            if not self.hasher.verify(current_hash, previous_password):
                logger.warning("password change refused for %s: invalid credentials", email)
                raise InvalidCredentials()
            new_hash = self.hasher.hash(new_password)
            self.credentials.replace_password_hash(identity.id, new_hash, expected_hash=current_hash)
            logger.info("password changed for %s", identity.id)

    def reset_password(self, email: str) -> None:
        """Replace the password with a generated one and deliver it [E4].

        Raises NotFound, Internal or Transient. Transient from the notifier
        means the new password is stored but was not delivered; calling
        reset again generates and delivers another one.
        """
        email = normalize_email(email)
        with _operation("reset_password", email):
            if self.notifier is None:
                logger.error("password reset requested for %s but no delivery channel is configured", email)
                raise Internal("password reset delivery is not configured")
            logger.info("resetting password for %s", email)
            identity = self._require_identity(email)
            new_password = self._generate_password()
            self.credentials.replace_password_hash(identity.id, self.hasher.hash(new_password))
            try:
                self.notifier.send_reset_password(identity, new_password)
            except Transient as exc:
                logger.error("password for %s was replaced but the new one was not delivered", identity.id)
                raise Transient(UNDELIVERED_RESET_MESSAGE) from exc
            logger.info("password reset for %s", identity.id)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def verify_session(self, access_token: str | None, refresh_token: str | None) -> VerificationResult:
        """Verify a presented pair; may return a rotated pair. Never mutates storage."""
        return self.verifier.verify(access_token, refresh_token)

    def close(self) -> None:
        """Release the store's connection pool and the notifier's HTTP session."""
        for part in (self.credentials, self.identities, self.notifier):
            close = getattr(part, "close", None)
            if close is not None:
                close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_identity(self, email: str) -> Identity:
        identity = self.identities.get_by_email(email)
        if identity is None:
            logger.warning("user %s not found", email)
            raise NotFound()
        return identity

    def _upgrade_hash(self, identity: Identity, password: str, current_hash: str) -> None:
        try:
            self.credentials.replace_password_hash(
                identity.id, self.hasher.hash(password), expected_hash=current_hash
            )
        except AuthError as exc:
            # The login stands; the old hash still verifies and is retried next time.
            logger.warning("could not upgrade password hash for %s: %s", identity.id, exc.code)
            return
        logger.info("password hash for %s upgraded to cost %d", identity.id, self.hasher.rounds)

    def _discard_identity(self, identity: Identity) -> None:
        try:
            self.identities.delete_identity(identity.id)
        except AuthError:
            # Internal is raised by the caller either way; this line is the
            # operator's pointer to the orphan.
            logger.exception("could not remove identity %s after failed registration", identity.id)


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------


def build_auth_service(settings: Settings, engine: Engine | None = None) -> AuthService:
    """Wire an AuthService from configuration.

    The reset notifier is only created when RESET_NOTIFY_URL is set; without
    it reset_password() refuses to run [E4].
    """
    if engine is None:
        engine = create_store_engine(settings.database_url, timeout=settings.store_timeout_seconds)
    issuer = TokenIssuer.from_settings(settings)
    notifier = None
    if settings.reset_notify_url:
        notifier = WebhookResetNotifier(
            settings.reset_notify_url,
            token=settings.reset_notify_token,
            timeout=settings.reset_notify_timeout_seconds,
        )
    return AuthService(
        credentials=SQLCredentialStore(engine),
        identities=SQLIdentityStore(engine),
        hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
        issuer=issuer,
        verifier=TokenVerifier.from_settings(settings, issuer),
        notifier=notifier,
    )
