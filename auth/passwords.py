"""
auth/passwords.py -- Password hashing and reset-secret generation.

Security design decisions:
  Hashing: bcrypt directly (no passlib wrapper). bcrypt's cost factor makes
       offline brute force of low-entropy passwords expensive; the salt is
       fresh on every hash() call so two hashes of the same input differ.
       The cost comes from Settings.bcrypt_rounds (12 in production, 4 in
       tests).

  72-byte limit: bcrypt only looks at the first 72 bytes and current bcrypt
       releases refuse longer input. hash() raises ValueError up front; the
       API layer validates byte length before the request gets here.

  Verify: bcrypt.checkpw is constant-time. Any malformed hash fails closed
       (False), it never raises into the caller.

  Reset secrets: secrets.SystemRandom, one character from each class
       guaranteed, then shuffled.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import secrets
import string

import bcrypt

_BCRYPT_MAX_BYTES = 72

_SYMBOLS = "!@#$%&*+-=?^_~"
_RESET_ALPHABET = string.ascii_lowercase + string.ascii_uppercase + string.digits + _SYMBOLS
_RESET_CLASSES = (string.ascii_lowercase, string.ascii_uppercase, string.digits, _SYMBOLS)
MIN_RESET_LENGTH = 14

_rng = secrets.SystemRandom()


class PasswordHasher:
    """Adaptive salted one-way hashing of plaintext secrets.

    Usage:
        hasher = PasswordHasher(rounds=12)
        stored = hasher.hash("correct horse")
        hasher.verify(stored, "correct horse")  # True
    """

    def __init__(self, rounds: int = 12) -> None:
        if not 4 <= rounds <= 31:
            raise ValueError("bcrypt rounds must be between 4 and 31")
        self.rounds = rounds

    def hash(self, plaintext: str) -> str:
        """Return a bcrypt hash of plaintext with a fresh salt."""
        raw = plaintext.encode("utf-8")
        if len(raw) > _BCRYPT_MAX_BYTES:
            raise ValueError(f"password longer than {_BCRYPT_MAX_BYTES} bytes")
        return bcrypt.hashpw(raw, bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, hashed: str, plaintext: str) -> bool:
        """Return True if plaintext matches hashed. Never raises."""
        if not hashed or plaintext is None:
            return False
        try:
            return bcrypt.checkpw(plaintext.encode("utf-8"), hashed.encode("utf-8"))
        except (ValueError, TypeError):
            return False

    def needs_rehash(self, hashed: str) -> bool:
        """True when hashed was produced with a different cost, or is unparseable."""
        # Modular crypt format: $2b$<cost>$<22 salt chars><31 hash chars>
        parts = (hashed or "").split("$")
        if len(parts) != 4 or not parts[2].isdigit():
            return True
        return int(parts[2]) != self.rounds


def generate_reset_password(length: int = MIN_RESET_LENGTH) -> str:
    """Return a random secret with upper, lower, digit and symbol characters."""
    if length < MIN_RESET_LENGTH:
        raise ValueError(f"reset passwords must be at least {MIN_RESET_LENGTH} characters")
    chars = [_rng.choice(cls) for cls in _RESET_CLASSES]
    chars += [_rng.choice(_RESET_ALPHABET) for _ in range(length - len(chars))]
    _rng.shuffle(chars)
    return "".join(chars)
