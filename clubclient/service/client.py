from __future__ import annotations

import asyncio
from typing import Any, Dict, Iterable, Mapping, Optional

import httpx

from clubclient.config import Settings
from clubclient.logging import correlation_scope, get_logger
from clubclient.service.errors import (
    ApiError,
    AuthInvalidError,
    NetworkError,
    RequestTimeoutError,
)
from clubclient.service.events import AuthEvents, get_auth_events
from clubclient.service.refresh import RefreshCoordinator
from clubclient.service.responses import error_message, json_body
from clubclient.service.token_store import TokenStore

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_EXPIRY_CODES = frozenset({"TOKEN_EXPIRED"})
REQUEST_ID_HEADER = "X-Request-ID"


class ApiClient:
    """HTTP client for the club API with transparent access-token refresh.

    Requests that target the application's own API (same origin as
    ``base_url`` and a path under ``api_prefix``) carry the stored bearer
    token. When such a request comes back with the expiry signal (401 plus
    an expiry code) the client obtains a fresh token from the
    :class:`RefreshCoordinator` and re-sends the request exactly once.
    Any other URL goes out untouched on the same transport.
    """

    def __init__(
        self,
        base_url: str,
        token_store: TokenStore,
        *,
        events: Optional[AuthEvents] = None,
        api_prefix: str = "/api/",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        connect_timeout: float = 10.0,
        expiry_codes: Iterable[str] = DEFAULT_EXPIRY_CODES,
        http: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_prefix = "/" + api_prefix.strip("/") + "/"
        self.timeout = timeout
        self.expiry_codes = frozenset(expiry_codes)
        self.token_store = token_store
        self.events = events or get_auth_events()
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=min(connect_timeout, timeout)),
            transport=transport,
            follow_redirects=False,
        )
        self._base = httpx.URL(self.base_url)
        self.coordinator = RefreshCoordinator(
            self.http,
            token_store,
            self.events,
            refresh_url=self.url_for("auth/refresh"),
            timeout=timeout,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        token_store: TokenStore,
        *,
        events: Optional[AuthEvents] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ApiClient":
        return cls(
            settings.api_base_url,
            token_store,
            events=events,
            api_prefix=settings.api_prefix,
            timeout=settings.request_timeout_seconds,
            connect_timeout=settings.connect_timeout_seconds,
            expiry_codes=settings.expiry_code_set,
            transport=transport,
        )

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()

    # URL handling

    def url_for(self, endpoint: str) -> str:
        """Absolute URL of an endpoint below the API prefix, e.g. ``auth/login``."""
        return f"{self.base_url}{self.api_prefix}{endpoint.lstrip('/')}"

    @property
    def _base_path(self) -> str:
        return self._base.path.rstrip("/")

    def resolve_url(self, url: str) -> str:
        if url.startswith(("http://", "https://")):
            return url
        if not url.startswith("/"):
            url = "/" + url
        return f"{self.base_url}{url}"

    def is_api_url(self, url: str) -> bool:
        target = httpx.URL(url)
        if (target.scheme, target.host, target.port) != (
            self._base.scheme,
            self._base.host,
            self._base.port,
        ):
            return False
        return target.path.startswith(f"{self._base_path}{self.api_prefix}")

    def is_expiry_signal(self, response: httpx.Response) -> bool:
        if response.status_code != 401:
            return False
        return json_body(response).get("code") in self.expiry_codes

    # Request pipeline

    async def request(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        data: Optional[Mapping[str, Any]] = None,
        files: Any = None,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        """Send a request, refreshing the access token once on expiry.

        Returns the final response whatever its status; a second 401 after
        the retry is handed back to the caller rather than retried again.

        Raises:
            AuthExpiredError: the token expired and could not be refreshed.
            RequestTimeoutError: the request exceeded its deadline.
            NetworkError: the server could not be reached.
        """
        full_url = self.resolve_url(url)
        deadline = timeout or self.timeout
        request_kwargs: Dict[str, Any] = {
            "json": json,
            "data": data,
            "files": files,
            "params": params,
        }

        if not self.is_api_url(full_url):
            outbound = self._build(method, full_url, headers, None, deadline, request_kwargs)
            return await self._send(outbound, deadline)

        with correlation_scope() as correlation_id:
            headers = {**(headers or {}), REQUEST_ID_HEADER: correlation_id}
            return await self._send_authenticated(
                method, full_url, headers, deadline, request_kwargs
            )

    async def _send_authenticated(
        self,
        method: str,
        full_url: str,
        headers: Mapping[str, str],
        deadline: float,
        request_kwargs: Dict[str, Any],
    ) -> httpx.Response:
        access_token = await self.token_store.get_access_token()
        outbound = self._build(method, full_url, headers, access_token, deadline, request_kwargs)
        response = await self._send(outbound, deadline)
        if not self.is_expiry_signal(response):
            return response

        logger.info("access_token_expired", method=method.upper(), path=outbound.url.path)
        fresh_token = await self.coordinator.refresh()

        retry = self._build(method, full_url, headers, fresh_token, deadline, request_kwargs)
        response = await self._send(retry, deadline)
        logger.info(
            "request_retried_after_refresh",
            method=method.upper(),
            path=retry.url.path,
            status_code=response.status_code,
        )
        return response

    def _build(
        self,
        method: str,
        url: str,
        headers: Optional[Mapping[str, str]],
        access_token: Optional[str],
        deadline: float,
        request_kwargs: Dict[str, Any],
    ) -> httpx.Request:
        merged = {
            key: value
            for key, value in (headers or {}).items()
            if not (access_token and key.lower() == "authorization")
        }
        if access_token:
            merged["Authorization"] = f"Bearer {access_token}"
        return self.http.build_request(
            method.upper(),
            url,
            headers=merged,
            timeout=deadline,
            **{key: value for key, value in request_kwargs.items() if value is not None},
        )

    async def _send(self, request: httpx.Request, deadline: float) -> httpx.Response:
        try:
            return await asyncio.wait_for(self.http.send(request), deadline)
        except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
            logger.warning(
                "request_timeout",
                method=request.method,
                path=request.url.path,
                timeout_seconds=deadline,
            )
            raise RequestTimeoutError(
                "Request timed out. Please check your connection.",
                detail={"url": str(request.url), "timeout_seconds": deadline},
            ) from exc
        except httpx.TransportError as exc:
            logger.error(
                "request_network_error",
                method=request.method,
                path=request.url.path,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise NetworkError(
                f"Cannot connect to server at {self.base_url}. Please check your connection.",
                detail={"url": str(request.url)},
            ) from exc

    # JSON helpers

    async def get_json(self, url: str, *, params: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> Any:
        return self.decode(await self.request("GET", url, params=params, **kwargs))

    async def post_json(self, url: str, payload: Any = None, **kwargs: Any) -> Any:
        return self.decode(await self.request("POST", url, json=payload, **kwargs))

    async def put_json(self, url: str, payload: Any = None, **kwargs: Any) -> Any:
        return self.decode(await self.request("PUT", url, json=payload, **kwargs))

    async def patch_json(self, url: str, payload: Any = None, **kwargs: Any) -> Any:
        return self.decode(await self.request("PATCH", url, json=payload, **kwargs))

    async def delete_json(self, url: str, **kwargs: Any) -> Any:
        return self.decode(await self.request("DELETE", url, **kwargs))

    async def upload_file(
        self,
        url: str,
        files: Mapping[str, Any],
        data: Optional[Mapping[str, Any]] = None,
        **kwargs: Any,
    ) -> Any:
        """POST a multipart form; file contents must be bytes so a retry can resend them."""
        return self.decode(await self.request("POST", url, files=files, data=data, **kwargs))

    def decode(self, response: httpx.Response) -> Any:
        """Return the decoded body of a 2xx response or raise the matching error."""
        if response.is_success:
            if not response.content:
                return None
            try:
                return response.json()
            except ValueError as exc:
                raise ApiError(
                    "Invalid JSON in response", status_code=response.status_code
                ) from exc

        body = json_body(response)
        message = error_message(body, f"HTTP error! status: {response.status_code}")
        if response.status_code == 401 and not self.is_expiry_signal(response):
            raise AuthInvalidError(message, code=body.get("code"), detail=body)
        raise ApiError(
            message,
            status_code=response.status_code,
            code=body.get("code"),
            detail=body,
        )
