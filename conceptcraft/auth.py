"""Local, simulated authentication session."""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Callable, List, Optional

import structlog

from .errors import ValidationFailed
from .schemas import SubscriptionTier, User
from .storage import KeyValueStore, unwrap_payload, wrap_payload

logger = structlog.get_logger(__name__)

USER_KEY = "conceptcraft_user"

SessionListener = Callable[[Optional[User]], None]


class AuthSession:
    """Hold the logged-in user and notify listeners when it changes.

    ``login`` and ``signup`` sleep for ``latency`` seconds to stand in for a
    remote auth service; both create a fresh free-tier user.
    """

    def __init__(self, kv: KeyValueStore, *, latency: float = 1.0) -> None:
        self._kv = kv
        self._latency = latency
        self._user: Optional[User] = None
        self._listeners: List[SessionListener] = []

    @property
    def user(self) -> Optional[User]:
        return self._user

    @property
    def is_authenticated(self) -> bool:
        return self._user is not None

    def subscribe(self, listener: SessionListener) -> None:
        self._listeners.append(listener)

    def _notify(self) -> None:
        for listener in self._listeners:
            listener(self._user)

    def load(self) -> None:
        """Restore a saved session, discarding it if it does not validate."""

        raw = self._kv.get(USER_KEY)
        if raw is None:
            return
        try:
            self._user = User.model_validate(unwrap_payload(raw))
        except ValueError as exc:
            logger.warning("stored_state_rejected", key=USER_KEY, error=str(exc))
            self._user = None

    async def _authenticate(self, email: str, password: str) -> User:
        if not email.strip() or not password:
            raise ValidationFailed("Email and password are required.")
        await asyncio.sleep(self._latency)
        user = User(
            user_id=uuid.uuid4().hex,
            email=email.strip(),
            subscription_tier=SubscriptionTier.FREE,
            created_at=datetime.now(timezone.utc),
        )
        self._kv.set(USER_KEY, wrap_payload(user.model_dump(mode="json", by_alias=True)))
        self._user = user
        self._notify()
        return user

    async def login(self, email: str, password: str) -> User:
        user = await self._authenticate(email, password)
        logger.info("user_logged_in", user_id=user.user_id)
        return user

    async def signup(self, email: str, password: str) -> User:
        user = await self._authenticate(email, password)
        logger.info("user_signed_up", user_id=user.user_id)
        return user

    def logout(self) -> None:
        if self._user is not None:
            logger.info("user_logged_out", user_id=self._user.user_id)
        self._user = None
        self._kv.delete(USER_KEY)
        self._notify()
