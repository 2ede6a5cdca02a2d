from __future__ import annotations

import inspect
from typing import Awaitable, Callable, Optional, Union

import httpx

from clubclient.logging import get_logger
from clubclient.service.client import ApiClient
from clubclient.service.errors import ApiError, AuthInvalidError, NetworkError, RequestTimeoutError
from clubclient.service.events import Subscription
from clubclient.service.responses import error_message, json_body
from clubclient.storage.models import UserProfile

logger = get_logger(__name__)

LoggedOutCallback = Callable[[], Union[None, Awaitable[None]]]


class SessionManager:
    """Signed-in state for one app instance.

    Owns login/logout against the auth endpoints, restores a stored session
    at startup, and tears local state down when the refresh pipeline
    reports an unrecoverable auth failure. ``on_logged_out`` is where the
    UI routes back to its sign-in entry point.
    """

    def __init__(
        self,
        client: ApiClient,
        *,
        on_logged_out: Optional[LoggedOutCallback] = None,
    ) -> None:
        self.client = client
        self.token_store = client.token_store
        self.on_logged_out = on_logged_out
        self.user: Optional[UserProfile] = None
        self.is_authenticated = False
        self._subscription: Optional[Subscription] = None

    def start(self) -> None:
        if self._subscription is None:
            self._subscription = self.client.events.subscribe(self._handle_auth_failure)

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    async def restore(self) -> Optional[UserProfile]:
        """Pick up a session persisted by an earlier run."""
        tokens = await self.token_store.get_tokens()
        user = await self.token_store.get_user()
        if tokens.access_token and user is not None:
            self.user = user
            self.is_authenticated = True
            logger.info("session_restored", user_id=user.id, role=user.role)
        else:
            self.user = None
            self.is_authenticated = False
        return self.user

    async def login(self, email: str, password: str) -> UserProfile:
        # Login goes out on the raw transport: a 401 here is bad credentials, never an expiry
        url = self.client.url_for("auth/login")
        try:
            response = await self.client.http.post(
                url,
                json={"email": email, "password": password},
                timeout=self.client.timeout,
            )
        except httpx.TimeoutException as exc:
            raise RequestTimeoutError("Request timed out. Please check your connection.") from exc
        except httpx.TransportError as exc:
            raise NetworkError(
                f"Cannot connect to server at {self.client.base_url}. Please check your connection."
            ) from exc

        body = json_body(response)
        if response.status_code in (400, 401):
            logger.info("login_rejected", status_code=response.status_code)
            raise AuthInvalidError(
                error_message(body, "Invalid credentials"),
                status_code=response.status_code,
                code=body.get("code"),
                detail=body,
            )
        if not response.is_success:
            raise ApiError(
                error_message(body, "Login failed"),
                status_code=response.status_code,
                code=body.get("code"),
                detail=body,
            )

        access_token = body.get("accessToken")
        if not isinstance(access_token, str) or not access_token:
            raise ApiError("No access token in login response", status_code=response.status_code)
        try:
            user = UserProfile.from_dict(body.get("user") or {})
        except ValueError as exc:
            raise ApiError("No user in login response", status_code=response.status_code) from exc

        await self.token_store.set_tokens(access_token, body.get("refreshToken"))
        await self.token_store.set_user(user)
        self.user = user
        self.is_authenticated = True
        logger.info("login_succeeded", user_id=user.id, role=user.role)
        return user

    async def logout(self) -> None:
        """Revoke the refresh token server-side when possible, then clear local state."""
        tokens = await self.token_store.get_tokens()
        if tokens.refresh_token:
            try:
                response = await self.client.http.post(
                    self.client.url_for("auth/logout"),
                    json={"refreshToken": tokens.refresh_token},
                    timeout=self.client.timeout,
                )
                if not response.is_success:
                    logger.warning("logout_request_rejected", status_code=response.status_code)
            except httpx.HTTPError as exc:
                logger.warning(
                    "logout_request_failed",
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
        await self.token_store.clear_tokens()
        self._reset()
        logger.info("logout_completed")

    async def current_user(self) -> UserProfile:
        """Fetch the signed-in user from the API and refresh the cached snapshot."""
        payload = await self.client.get_json(self.client.url_for("auth/me"))
        data = payload.get("user", payload) if isinstance(payload, dict) else payload
        try:
            user = UserProfile.from_dict(data)
        except ValueError as exc:
            raise ApiError("No user in profile response") from exc
        await self.token_store.set_user(user)
        self.user = user
        self.is_authenticated = True
        return user

    @property
    def role(self) -> Optional[str]:
        return self.user.role if self.user else None

    def is_admin(self) -> bool:
        return self.role == "admin"

    def is_staff(self) -> bool:
        return self.role == "staff"

    def is_owner(self) -> bool:
        return self.role == "owner"

    def is_customer(self) -> bool:
        return self.role == "customer"

    def _reset(self) -> None:
        self.user = None
        self.is_authenticated = False

    async def _handle_auth_failure(self) -> None:
        # Credentials were already cleared by the refresh coordinator
        self._reset()
        logger.info("session_expired")
        if self.on_logged_out is not None:
            result = self.on_logged_out()
            if inspect.isawaitable(result):
                await result
