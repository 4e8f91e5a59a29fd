"""Identity session state, signed identity tokens and request auth helpers."""

from __future__ import annotations

import itertools
import json
import re
from dataclasses import dataclass
from typing import Any, Callable

from cryptography.fernet import Fernet, InvalidToken
from fastapi import Request

from taskboard.config import ConfigError
from taskboard.constants import DEFAULT_TOKEN_TTL_SECONDS
from taskboard.errors import TaskboardError
from taskboard.observability import get_logger

AUTHORIZATION_HEADER = "Authorization"
BEARER_PREFIX = "Bearer "

_VALID_USER_ID = re.compile(r"^[A-Za-z0-9_-]{1,128}$")

log = get_logger("identity")

UserListener = Callable[["User | None"], None]


@dataclass(frozen=True)
class User:
    uid: str
    email: str


@dataclass(frozen=True)
class SessionHandle:
    """Proof of an open session; closing a stale handle has no effect."""

    sequence: int
    user: User


def normalize_user_id(raw_user_id: Any) -> str:
    """Validate an opaque user id and strip surrounding whitespace."""
    if not isinstance(raw_user_id, str):
        raise TaskboardError(
            "INVALID_USER_ID",
            "User id must be a string.",
            {"type": type(raw_user_id).__name__},
        )

    normalized = raw_user_id.strip()
    if not normalized:
        raise TaskboardError("AUTH_REQUIRED", "Missing user identity.")

    if not _VALID_USER_ID.fullmatch(normalized):
        raise TaskboardError(
            "INVALID_USER_ID",
            "User id contains invalid characters.",
            {"user_id": raw_user_id},
        )
    return normalized


class IdentitySession:
    """Current-user state shared by the sync engine and mutation gateway.

    Sessions follow an explicit lifecycle: ``open(user)`` returns a handle
    and makes that user current, ``close(handle)`` ends it. Listeners are
    told about every change of current user, including sign-out.
    """

    def __init__(self) -> None:
        self._sequence = itertools.count(1)
        self._handle: SessionHandle | None = None
        self._listeners: list[UserListener] = []

    @property
    def current_user(self) -> User | None:
        return self._handle.user if self._handle is not None else None

    def open(self, user: User) -> SessionHandle:
        user = User(uid=normalize_user_id(user.uid), email=user.email)
        handle = SessionHandle(sequence=next(self._sequence), user=user)
        previous = self.current_user
        self._handle = handle
        log.info("session_opened", user_id=user.uid)
        if previous != user:
            self._notify(user)
        return handle

    def close(self, handle: SessionHandle) -> bool:
        if self._handle is None or self._handle.sequence != handle.sequence:
            return False
        self._handle = None
        log.info("session_closed", user_id=handle.user.uid)
        self._notify(None)
        return True

    def logout(self) -> None:
        if self._handle is not None:
            self.close(self._handle)

    def add_listener(self, listener: UserListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self, user: User | None) -> None:
        for listener in list(self._listeners):
            listener(user)


class TokenCodec:
    """Issue and verify signed identity tokens."""

    def __init__(
        self, key: str | bytes, ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS
    ) -> None:
        try:
            self._fernet = Fernet(key)
        except ValueError as exc:
            raise ConfigError("TASKBOARD_TOKEN_KEY is not a valid Fernet key.") from exc
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode("ascii")

    def issue(self, user: User) -> str:
        payload = json.dumps(
            {"uid": user.uid, "email": user.email}, separators=(",", ":")
        )
        return self._fernet.encrypt(payload.encode("utf-8")).decode("ascii")

    def verify(self, token: str) -> User:
        try:
            raw = self._fernet.decrypt(token.encode("utf-8"), ttl=self.ttl_seconds)
        except InvalidToken:
            raise TaskboardError(
                "INVALID_TOKEN", "Identity token is invalid or expired."
            ) from None
        try:
            claims = json.loads(raw)
        except json.JSONDecodeError:
            raise TaskboardError(
                "INVALID_TOKEN", "Identity token payload is malformed."
            ) from None
        if not isinstance(claims, dict):
            raise TaskboardError("INVALID_TOKEN", "Identity token payload is malformed.")
        return User(
            uid=normalize_user_id(claims.get("uid")),
            email=str(claims.get("email") or ""),
        )


def parse_bearer_token(raw_header: str | None) -> str:
    """Extract the token from an ``Authorization: Bearer`` header."""
    if not raw_header or not raw_header.startswith(BEARER_PREFIX):
        raise TaskboardError(
            "AUTH_REQUIRED",
            "Missing bearer token.",
            {"header": AUTHORIZATION_HEADER},
        )
    token = raw_header[len(BEARER_PREFIX) :].strip()
    if not token:
        raise TaskboardError(
            "AUTH_REQUIRED",
            "Missing bearer token.",
            {"header": AUTHORIZATION_HEADER},
        )
    return token


def get_request_user(request: Request) -> User:
    """Read and cache the authenticated user for a request."""
    cached = getattr(request.state, "user", None)
    if isinstance(cached, User):
        return cached

    token = parse_bearer_token(request.headers.get(AUTHORIZATION_HEADER))
    codec: TokenCodec = request.app.state.token_codec
    user = codec.verify(token)
    request.state.user = user
    return user
