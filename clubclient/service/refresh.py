from __future__ import annotations

import asyncio
from collections import deque
from typing import Deque, Optional

import httpx

from clubclient.logging import get_correlation_id, get_logger
from clubclient.service.errors import AuthExpiredError
from clubclient.service.events import AuthEvents
from clubclient.service.responses import error_message, json_body
from clubclient.service.token_store import TokenStore
from clubclient.storage.models import UserProfile

logger = get_logger(__name__)


class RefreshCoordinator:
    """Single-flight exchange of the refresh token for a new access token.

    The first caller to find the coordinator idle issues the refresh call;
    callers arriving while it is in flight are queued as futures and
    settled in arrival order with the same outcome. The in-progress flag
    and the waiter queue are only touched in synchronous sections, so
    check-and-set and settle-and-clear never straddle an ``await``.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        token_store: TokenStore,
        events: AuthEvents,
        *,
        refresh_url: str,
        timeout: Optional[float] = None,
    ) -> None:
        self.http = http
        self.token_store = token_store
        self.events = events
        self.refresh_url = refresh_url
        self.timeout = timeout
        self._refreshing = False
        self._waiters: Deque[asyncio.Future] = deque()
        self.refresh_count = 0

    @property
    def is_refreshing(self) -> bool:
        return self._refreshing

    @property
    def pending_waiters(self) -> int:
        return len(self._waiters)

    async def refresh(self) -> str:
        """Return a fresh access token, joining an in-flight refresh if any.

        Raises:
            AuthExpiredError: the refresh failed; stored credentials have
                been cleared and auth-failure subscribers notified.
        """
        if self._refreshing:
            waiter = asyncio.get_running_loop().create_future()
            self._waiters.append(waiter)
            logger.debug("token_refresh_joined", position=len(self._waiters))
            return await waiter

        self._refreshing = True
        self.refresh_count += 1
        try:
            access_token = await self._exchange_refresh_token()
        except AuthExpiredError as exc:
            try:
                await self.token_store.clear_tokens()
            finally:
                # Waiters and the flag are released even if the clear is cancelled
                self._settle(error=exc)
            logger.warning(
                "token_refresh_failed",
                error=exc.message,
                code=exc.code,
                status_code=exc.status_code,
            )
            await self.events.publish_auth_failure()
            raise
        except BaseException as exc:
            # Cancellation or a bug: release queued callers instead of leaving them hanging
            self._settle(
                error=AuthExpiredError("Token refresh aborted", detail={"cause": type(exc).__name__})
            )
            raise
        self._settle(access_token=access_token)
        logger.info("token_refresh_succeeded")
        return access_token

    def _settle(
        self,
        *,
        access_token: Optional[str] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        waiters = self._waiters
        self._waiters = deque()
        self._refreshing = False
        for waiter in waiters:
            if waiter.done():
                continue
            if error is not None:
                waiter.set_exception(error)
            else:
                waiter.set_result(access_token)

    async def _exchange_refresh_token(self) -> str:
        tokens = await self.token_store.get_tokens()
        if not tokens.refresh_token:
            raise AuthExpiredError("No refresh token available", code="NO_REFRESH_TOKEN")

        headers = {"Content-Type": "application/json"}
        correlation_id = get_correlation_id()
        if correlation_id:
            headers["X-Request-ID"] = correlation_id
        try:
            response = await self.http.post(
                self.refresh_url,
                json={"refreshToken": tokens.refresh_token},
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as exc:
            raise AuthExpiredError("Token refresh timed out", code="REFRESH_TIMEOUT") from exc
        except httpx.TransportError as exc:
            raise AuthExpiredError(
                "Token refresh failed: network error", code="REFRESH_NETWORK_ERROR"
            ) from exc

        body = json_body(response)
        if not response.is_success:
            raise AuthExpiredError(
                error_message(body, "Token refresh failed"),
                status_code=response.status_code,
                code=body.get("code"),
                detail=body,
            )

        access_token = body.get("accessToken")
        if not isinstance(access_token, str) or not access_token:
            raise AuthExpiredError("No access token in refresh response", code="NO_ACCESS_TOKEN")

        # Rotation is optional server-side; keep the old refresh token when none is returned
        await self.token_store.set_tokens(
            access_token, body.get("refreshToken") or tokens.refresh_token
        )
        user = body.get("user")
        if isinstance(user, dict):
            try:
                await self.token_store.set_user(UserProfile.from_dict(user))
            except ValueError as exc:
                logger.warning("token_refresh_user_ignored", error=str(exc))
        return access_token
