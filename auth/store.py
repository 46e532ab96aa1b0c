"""
auth/store.py -- Credential and identity persistence (SQLAlchemy Core).

Pattern: Repository + Data Mapper. CredentialStore and IdentityProvider are
the ports the auth service depends on (typing.Protocol -- any object with the
right methods satisfies them, no inheritance needed). SQLCredentialStore and
SQLIdentityStore are the SQL-backed implementations; _row_to_identity is the
mapper. Service and route code never touches SQL directly.

Atomicity:
  Every public method runs inside one engine.begin() block, which commits on
  success and rolls back on any exception -- partial writes are never
  observable.

  replace_password_hash() is a single UPDATE whose WHERE clause optionally
  includes the hash the caller verified against (compare-and-swap). The
  database serializes concurrent UPDATEs of the same row, so the last
  committed write wins and a change based on a stale hash writes nothing.

Error translation:
  Driver errors are converted to the auth/errors.py taxonomy here and nowhere
  else:
    IntegrityError                          -> UserExists
    OperationalError, pool TimeoutError,
    invalidated connections                 -> Transient
    any other SQLAlchemyError               -> Internal

Timeouts:
  create_store_engine() applies the caller's timeout as SQLite's busy timeout
  or PostgreSQL's connect/statement timeout plus pool checkout timeout. A
  timeout aborts the transaction and surfaces as Transient.

Security:
  All queries use bound parameters. Password hashes are never logged; the
  engine is built with hide_parameters=True so driver errors rendered by
  logger.exception() carry the SQL but not the bound values.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import re
import secrets
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import Column, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from auth.errors import AuthError, Internal, InvalidCredentials, NotFound, Transient, UserExists
from auth.models import Credential, Identity

logger = logging.getLogger("cchat.auth.store")


_USERNAME_ATTEMPTS = 3

# ---------------------------------------------------------------------------
# Ports
# ---------------------------------------------------------------------------


class CredentialStore(Protocol):
    def create_credential(self, identity_id: str, password_hash: str) -> None: ...

    def get_password_hash(self, identity_id: str) -> str: ...

    def replace_password_hash(self, identity_id: str, new_hash: str, expected_hash: str | None = None) -> None: ...


class IdentityProvider(Protocol):
    def create_identity(self, email: str) -> Identity: ...

    def get_by_email(self, email: str) -> Identity | None: ...

    def delete_identity(self, identity_id: str) -> bool: ...


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),  # UUID4 string
    Column("email", String(255), nullable=False, unique=True),
    Column("username", String(64), nullable=False, unique=True),
    Column("created_at", String(32), nullable=False),
)

# No foreign key to users: the identity provider may live in another service
# with its own database. The auth service keeps the 1:1 pairing itself.
_credentials = Table(
    "credentials",
    _metadata,
    Column("user_id", String(36), primary_key=True),
    Column("password_hash", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind writers.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_store_engine(db_url: str, timeout: float = 4.0) -> Engine:
    """Create an engine with bounded waits and make sure the schema exists."""
    connect_args: dict = {}
    engine_kwargs: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = timeout  # busy timeout while another writer holds the lock
    elif db_url.startswith("postgresql"):
        connect_args["connect_timeout"] = max(1, int(timeout))
        connect_args["options"] = f"-c statement_timeout={int(timeout * 1000)}"
        engine_kwargs["pool_timeout"] = timeout
    engine = create_engine(db_url, connect_args=connect_args, hide_parameters=True, **engine_kwargs)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    _metadata.create_all(engine)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@contextmanager
def _translate_errors(op: str) -> Iterator[None]:
    try:
        yield
    except AuthError:
        raise
    except IntegrityError as exc:
        raise UserExists() from exc
    except (OperationalError, PoolTimeoutError) as exc:
        logger.warning("%s: store unavailable: %s", op, type(exc).__name__)
        raise Transient() from exc
    except DBAPIError as exc:
        if exc.connection_invalidated:
            logger.warning("%s: connection lost", op)
            raise Transient() from exc
        logger.error("%s: database error: %s", op, type(exc).__name__)
        raise Internal() from exc
    except SQLAlchemyError as exc:
        logger.error("%s: database error: %s", op, type(exc).__name__)
        raise Internal() from exc


_USERNAME_STRIP = re.compile(r"[^a-z0-9_.]")


def _generate_username(email: str) -> str:
    """Derive a public handle from the e-mail local part plus a random suffix."""
    local = _USERNAME_STRIP.sub("", email.split("@", 1)[0].lower())[:20] or "user"
    return f"{local}_{secrets.token_hex(3)}"


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class SQLCredentialStore:
    """CredentialStore over SQLAlchemy Core.

    Usage:
        engine = create_store_engine("sqlite:///auth.db")
        store = SQLCredentialStore(engine)
        store.create_credential(identity.id, hasher.hash("secret"))
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create_credential(self, identity_id: str, password_hash: str) -> None:
        """Insert the credential. Raises UserExists if one already exists."""
        now = _now_iso()
        with _translate_errors("credential.create"):
            with self.engine.begin() as conn:
                conn.execute(
                    _credentials.insert().values(
                        user_id=identity_id,
                        password_hash=password_hash,
                        created_at=now,
                        updated_at=now,
                    )
                )

    def get_credential(self, identity_id: str) -> Credential:
        """Return the full credential record. Raises NotFound."""
        with _translate_errors("credential.get"):
            with self.engine.begin() as conn:
                row = conn.execute(
                    _credentials.select().where(_credentials.c.user_id == identity_id)
                ).fetchone()
        if row is None:
            raise NotFound()
        return Credential(
            identity_id=row.user_id,
            password_hash=row.password_hash,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def get_password_hash(self, identity_id: str) -> str:
        """Return the stored hash. Raises NotFound."""
        return self.get_credential(identity_id).password_hash

    def replace_password_hash(self, identity_id: str, new_hash: str, expected_hash: str | None = None) -> None:
        """Overwrite the stored hash.

        With expected_hash set, the write only happens if the stored hash is
        still the one the caller verified. Otherwise InvalidCredentials is
        raised and nothing changes. Raises NotFound if no credential exists.
        """
        condition = _credentials.c.user_id == identity_id
        if expected_hash is not None:
            condition = condition & (_credentials.c.password_hash == expected_hash)
        with _translate_errors("credential.replace"):
            with self.engine.begin() as conn:
                result = conn.execute(
                    _credentials.update().where(condition).values(password_hash=new_hash, updated_at=_now_iso())
                )
                if result.rowcount > 0:
                    return
                exists = conn.execute(
                    _credentials.select().where(_credentials.c.user_id == identity_id)
                ).fetchone()
        if exists is None:
            raise NotFound()
        logger.warning("credential for %s changed concurrently; replace refused", identity_id)
        raise InvalidCredentials()

    def close(self) -> None:
        self.engine.dispose()


class SQLIdentityStore:
    """IdentityProvider over SQLAlchemy Core.

    In a multi-service deployment identities live in the user service; this
    implementation keeps them in the auth database for single-node setups
    and tests.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create_identity(self, email: str) -> Identity:
        """Create an identity with a generated username.

        Raises UserExists if the e-mail is taken. A username collision is
        retried with a new random suffix.
        """
        with _translate_errors("identity.create"):
            for _ in range(_USERNAME_ATTEMPTS):
                identity = Identity(id=str(uuid.uuid4()), username=_generate_username(email), email=email)
                try:
                    with self.engine.begin() as conn:
                        conn.execute(
                            _users.insert().values(
                                id=identity.id,
                                email=identity.email,
                                username=identity.username,
                                created_at=_now_iso(),
                            )
                        )
                    return identity
                except IntegrityError as exc:
                    if self.get_by_email(email) is not None:
                        raise UserExists() from exc
                    logger.info("username collision for new user, retrying")
        raise Internal("could not allocate a unique username")

    def get_by_email(self, email: str) -> Identity | None:
        with _translate_errors("identity.get_by_email"):
            with self.engine.begin() as conn:
                row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def delete_identity(self, identity_id: str) -> bool:
        with _translate_errors("identity.delete"):
            with self.engine.begin() as conn:
                result = conn.execute(_users.delete().where(_users.c.id == identity_id))
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_identity(row) -> Identity:
    return Identity(id=row.id, username=row.username, email=row.email)
