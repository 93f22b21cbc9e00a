from __future__ import annotations

import hmac
import logging
import secrets
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class AuthService:
    """Admin sessions. Credentials come from the environment; sessions live in memory."""

    def __init__(self, email: str, password: str) -> None:
        self._email = (email or "").strip().lower()
        self._password = password or ""
        self._sessions: Dict[str, str] = {}

    def sign_in(self, email: str, password: str) -> Tuple[bool, str]:
        if not self._password:
            return False, "Admin login is not configured (set ADMIN_PASSWORD)."

        email_ok = hmac.compare_digest((email or "").strip().lower().encode(), self._email.encode())
        password_ok = hmac.compare_digest((password or "").encode(), self._password.encode())
        if not (email_ok and password_ok):
            logger.warning("failed admin sign-in for %r", email)
            return False, "Invalid email or password."

        token = secrets.token_urlsafe(32)
        self._sessions[token] = self._email
        return True, token

    def sign_out(self, token: Optional[str]) -> None:
        if token:
            self._sessions.pop(token, None)

    def is_authenticated(self, token: Optional[str]) -> bool:
        return bool(token) and token in self._sessions
