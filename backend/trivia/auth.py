from __future__ import annotations

import hmac
import secrets
from typing import Callable, Dict, List, Optional

import structlog
from pydantic import BaseModel

from .events import Subscription

logger = structlog.get_logger(__name__)


class AuthError(ValueError):
    pass


class AuthSession(BaseModel):
    token: str
    subject: str


class AuthService:
    """Admin sign-in against the configured credential pair."""

    def __init__(self, email: str, password: str):
        self._email = email
        self._password = password
        self._tokens: Dict[str, str] = {}
        self._listeners: List[Callable[[Optional[str]], None]] = []

    def sign_in(self, email: str, password: str) -> AuthSession:
        email_ok = hmac.compare_digest(email.strip().lower().encode(), self._email.strip().lower().encode())
        password_ok = hmac.compare_digest(password.encode(), self._password.encode())
        if not (email_ok and password_ok):
            logger.warning("Admin sign-in rejected", email=email)
            raise AuthError("Invalid email or password")

        token = secrets.token_urlsafe(32)
        self._tokens[token] = self._email
        logger.info("Admin signed in", subject=self._email)
        self._notify(self._email)
        return AuthSession(token=token, subject=self._email)

    def sign_out(self, token: str) -> None:
        subject = self._tokens.pop(token, None)
        if subject is not None:
            logger.info("Admin signed out", subject=subject)
            self._notify(None)

    def current_subject(self, token: Optional[str]) -> Optional[str]:
        if not token:
            return None
        return self._tokens.get(token)

    def subscribe(self, callback: Callable[[Optional[str]], None]) -> Subscription:
        self._listeners.append(callback)

        def release() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return Subscription(release)

    def _notify(self, subject: Optional[str]) -> None:
        for listener in list(self._listeners):
            try:
                listener(subject)
            except Exception:
                logger.exception("Auth listener failed")
