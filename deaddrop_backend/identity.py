"""User records and signed bearer tokens.

The mailbox only needs one thing from here: ``UserRegistry.principal_for``,
which answers whether a token belongs to a logged-in user.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import secrets
import threading
import time
from pathlib import Path

from .errors import InvalidToken
from .jsonio import read_json, write_json_atomic


logger = logging.getLogger(__name__)


class IdentityError(Exception):
    """Registration or login failure; the message is safe to show to callers."""


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


class TokenSigner:
    """HMAC-SHA256 signed tokens of the form ``<b64 payload>.<hex signature>``."""

    def __init__(self, secret: str, ttl_minutes: int = 60) -> None:
        if not secret:
            raise ValueError("Token secret must not be empty")
        self._secret = secret.encode("utf-8")
        self.ttl_seconds = ttl_minutes * 60

    def _sign(self, b64_payload: str) -> str:
        return hmac.new(self._secret, b64_payload.encode("utf-8"), hashlib.sha256).hexdigest()

    def issue(self, subject: str, purpose: str = "login") -> str:
        payload = {
            "sub": subject,
            "purpose": purpose,
            "exp": int(time.time()) + self.ttl_seconds,
            # Two tokens issued in the same second must still differ.
            "nonce": secrets.token_urlsafe(6),
        }
        payload_bytes = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        b64_payload = _b64encode(payload_bytes)
        return f"{b64_payload}.{self._sign(b64_payload)}"

    def verify(self, token: str, purpose: str = "login") -> dict:
        """Return the token's claims or raise InvalidToken."""
        try:
            b64_payload, signature = token.split(".", 1)
        except (AttributeError, ValueError) as exc:
            raise InvalidToken() from exc
        if not hmac.compare_digest(signature, self._sign(b64_payload)):
            raise InvalidToken()
        try:
            claims = json.loads(_b64decode(b64_payload))
        except ValueError as exc:
            raise InvalidToken() from exc
        if not isinstance(claims, dict) or claims.get("purpose") != purpose:
            raise InvalidToken()
        exp = claims.get("exp")
        if not isinstance(exp, int) or exp < time.time():
            raise InvalidToken("Token expired")
        return claims


class UserRegistry:
    """JSON file of ``{username: {"email": ..., "token": ...}}``."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        users = read_json(self.path)
        if not isinstance(users, dict):
            raise ValueError(f"{self.path.name}: expected an object")
        return users

    def _save(self, users: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        write_json_atomic(self.path, users)

    def register(self, username: str, email: str) -> None:
        with self._lock:
            users = self._load()
            if username in users:
                raise IdentityError("User already exists")
            users[username] = {"email": email, "token": None}
            self._save(users)
        logger.info("Registered user %s", username)

    def login(self, username: str, email: str, signer: TokenSigner) -> str:
        """Issue a fresh token for username; any previous token stops working."""
        with self._lock:
            users = self._load()
            user = users.get(username)
            if not user or user.get("email") != email:
                raise IdentityError("Invalid username or email")
            token = signer.issue(username)
            user["token"] = token
            self._save(users)
        logger.info("User %s logged in", username)
        return token

    def find_by_email(self, email: str) -> str | None:
        with self._lock:
            for username, user in self._load().items():
                if user.get("email") == email:
                    return username
        return None

    def principal_for(self, token: str, signer: TokenSigner) -> str | None:
        """Return the username holding token, or None if it is not current."""
        try:
            claims = signer.verify(token)
        except InvalidToken:
            return None
        username = claims.get("sub")
        with self._lock:
            user = self._load().get(username)
        if not user or not user.get("token"):
            return None
        if not hmac.compare_digest(user["token"], token):
            return None
        return username
