"""
auth/notify.py -- Delivery channel for generated reset passwords.

The reset flow generates a new secret server-side; the user only learns it
through a ResetNotifier. The service refuses to reset a password when no
notifier is configured rather than discarding the secret.

WebhookResetNotifier POSTs a JSON event to an operator-supplied URL (a mail
relay, ntfy bridge, or similar). Delivery failures raise Transient so the
caller sees a retryable error instead of a silent success.

Security:
  The generated password is sent in the request body only. It never appears
  in log lines, exception messages, or URLs.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from typing import Protocol

import requests

from auth.errors import Transient
from auth.models import Identity

logger = logging.getLogger("cchat.auth.notify")


class ResetNotifier(Protocol):
    def send_reset_password(self, identity: Identity, new_password: str) -> None: ...


class WebhookResetNotifier:
    """Deliver reset passwords to a webhook endpoint."""

    def __init__(self, url: str, token: str = "", timeout: float = 5.0, session: requests.Session | None = None) -> None:
        if not url:
            raise ValueError("webhook url is required")
        self.url = url
        self.timeout = timeout
        self._headers = {"Authorization": f"Bearer {token}"} if token else {}
        if session is None:
            session = requests.Session()
            # Known endpoint -- a long redirect chain is more likely abuse than config.
            session.max_redirects = 3
        self._session = session

    def send_reset_password(self, identity: Identity, new_password: str) -> None:
        payload = {
            "event": "password_reset",
            "user_id": identity.id,
            "email": identity.email,
            "username": identity.username,
            "password": new_password,
        }
        try:
            resp = self._session.post(self.url, json=payload, headers=self._headers, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            # str(exc) may embed the response body; log the type only.
            logger.warning("reset notification for user %s failed: %s", identity.id, type(exc).__name__)
            raise Transient("Password reset notification could not be delivered.") from exc
        logger.info("reset notification delivered for user %s", identity.id)

    def close(self) -> None:
        self._session.close()
