from __future__ import annotations

import inspect
import threading
from typing import Awaitable, Callable, List, Optional, Union

from clubclient.logging import get_logger

logger = get_logger(__name__)

AuthFailureHandler = Callable[[], Union[None, Awaitable[None]]]


class Subscription:
    """Handle returned by :meth:`AuthEvents.subscribe`."""

    def __init__(self, events: "AuthEvents", handler: AuthFailureHandler) -> None:
        self._events = events
        self.handler = handler
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._events.unsubscribe(self.handler)
            self.active = False


class AuthEvents:
    """Publish/subscribe registry for unrecoverable authentication failures.

    The session layer subscribes at startup and unsubscribes at teardown;
    the refresh coordinator publishes when a refresh cannot be recovered.
    Handlers run in subscription order with no arguments and may be plain
    callables or coroutine functions.
    """

    def __init__(self) -> None:
        self._handlers: List[AuthFailureHandler] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: AuthFailureHandler) -> Subscription:
        if not callable(handler):
            raise TypeError("auth failure handler must be callable")
        with self._lock:
            self._handlers.append(handler)
        return Subscription(self, handler)

    def unsubscribe(self, handler: AuthFailureHandler) -> None:
        with self._lock:
            try:
                self._handlers.remove(handler)
            except ValueError:
                pass

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._handlers)

    async def publish_auth_failure(self) -> None:
        with self._lock:
            handlers = list(self._handlers)
        if not handlers:
            logger.warning("auth_failure_unhandled")
            return
        logger.info("auth_failure_published", subscribers=len(handlers))
        for handler in handlers:
            try:
                result = handler()
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.error(
                    "auth_failure_handler_failed",
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error_type=type(exc).__name__,
                    error=str(exc),
                )


_default_events: Optional[AuthEvents] = None
_default_lock = threading.Lock()


def get_auth_events() -> AuthEvents:
    """Process-wide registry for code that is not handed one explicitly."""
    global _default_events
    if _default_events is None:
        with _default_lock:
            if _default_events is None:
                _default_events = AuthEvents()
    return _default_events


def reset_auth_events() -> None:
    global _default_events
    with _default_lock:
        _default_events = None
