"""
Session provider

Consumed surface of the authentication provider: current user, session
refresh and change notifications. Rapid successive session changes are
coalesced into one notification after a short quiet period.
"""

import asyncio
import inspect
from typing import Awaitable, Callable, List, Optional, Protocol, Union

from pydantic import BaseModel
import structlog

from agritenant.core.auth import (
    REFRESH_TOKEN_TYPE,
    create_access_token,
    create_refresh_token,
    decode_token,
)
from agritenant.core.config import get_settings

logger = structlog.get_logger(__name__)

SessionCallback = Callable[[Optional["AuthUser"]], Union[None, Awaitable[None]]]


class AuthUser(BaseModel):
    """Authenticated user identity"""
    id: str
    email: Optional[str] = None


class AuthProvider(Protocol):
    async def get_current_user(self) -> Optional[AuthUser]:
        ...

    async def refresh_session(self) -> bool:
        ...

    def on_session_change(self, callback: SessionCallback) -> Callable[[], None]:
        ...


class TokenSessionProvider:
    """JWT-backed session holder implementing AuthProvider"""

    def __init__(
        self,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        debounce_seconds: Optional[float] = None,
    ):
        settings = get_settings()
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.debounce_seconds = (
            settings.SESSION_CHANGE_DEBOUNCE_SECONDS if debounce_seconds is None else debounce_seconds
        )
        self._callbacks: List[SessionCallback] = []
        self._pending: Optional[asyncio.Task] = None

    async def sign_in(self, user_id: str, email: Optional[str] = None) -> AuthUser:
        """Issue a fresh token pair for the user"""
        self.access_token = create_access_token(user_id, email=email)
        self.refresh_token = create_refresh_token(user_id)
        logger.info("Session started", user_id=user_id)
        self._schedule_notification()
        return AuthUser(id=user_id, email=email)

    async def sign_out(self):
        self.access_token = None
        self.refresh_token = None
        logger.info("Session ended")
        self._schedule_notification()

    async def get_current_user(self) -> Optional[AuthUser]:
        if not self.access_token:
            return None
        payload = decode_token(self.access_token)
        if payload is None:
            return None
        return AuthUser(id=payload["sub"], email=payload.get("email"))

    async def refresh_session(self) -> bool:
        """Exchange the refresh token for a new access token"""
        if not self.refresh_token:
            return False
        payload = decode_token(self.refresh_token, expected_type=REFRESH_TOKEN_TYPE)
        if payload is None:
            logger.warning("Refresh token rejected")
            return False

        # Preserve the email claim when the old access token is still decodable
        email = None
        if self.access_token:
            old = decode_token(self.access_token)
            if old:
                email = old.get("email")

        self.access_token = create_access_token(payload["sub"], email=email)
        logger.info("Session refreshed", user_id=payload["sub"])
        self._schedule_notification()
        return True

    def on_session_change(self, callback: SessionCallback) -> Callable[[], None]:
        """Register a listener; returns an unsubscribe function"""
        self._callbacks.append(callback)

        def unsubscribe():
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    async def flush(self):
        """Wait for a pending debounced notification, if any"""
        if self._pending is not None and not self._pending.done():
            await asyncio.gather(self._pending, return_exceptions=True)

    def _schedule_notification(self):
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = asyncio.get_running_loop().create_task(self._notify_after_quiet())

    async def _notify_after_quiet(self):
        await asyncio.sleep(self.debounce_seconds)
        user = await self.get_current_user()
        for callback in list(self._callbacks):
            try:
                result = callback(user)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Error in session change listener: {e}", exc_info=True)
