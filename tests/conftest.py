import asyncio
import inspect
import json
import os
import sys
import tempfile
from pathlib import Path

# Isolate tests from any developer .env or credential file
_test_tmp_dir = tempfile.mkdtemp(prefix="clubclient_test_")
os.environ.setdefault("CLUB_API_URL", "http://club.test")
os.environ.setdefault("CLUB_TOKEN_STORE", "memory")
os.environ.setdefault("CLUB_TOKEN_STORE_PATH", os.path.join(_test_tmp_dir, "credentials.json"))
os.environ.setdefault("LOG_LEVEL", "WARNING")

import httpx  # noqa: E402
import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from clubclient.service.client import ApiClient  # noqa: E402
from clubclient.service.events import AuthEvents  # noqa: E402
from clubclient.service.runtime import reset_runtime_for_tests  # noqa: E402
from clubclient.service.token_store import TokenStore  # noqa: E402
from clubclient.storage.memory import MemoryKeyValueStore  # noqa: E402

BASE_URL = "http://club.test"

USER_PAYLOAD = {
    "id": 7,
    "name": "Front Desk",
    "email": "desk@club.test",
    "role": "staff",
    "phone": "555-0100",
    "station_id": 3,
}


class FakeClubBackend:
    """In-process stand-in for the club backend, served through httpx.MockTransport.

    Protected routes accept tokens in ``valid_tokens``; tokens in
    ``expired_tokens`` get the expiry signal; anything else gets a plain
    401. ``refresh_gate`` holds refresh calls in flight until it is set.
    """

    def __init__(self):
        self.valid_tokens = set()
        self.expired_tokens = set()
        # refresh token -> access token handed out for it
        self.refresh_grants = {}
        self.rotate_to = None
        self.refresh_user = None
        self.refresh_failure = None
        self.refresh_exception = None
        self.refresh_gate = None
        self.always_expired_paths = set()
        self.users = {("desk@club.test", "pa55word"): ("A1", "R1", USER_PAYLOAD)}
        self.logout_status = 200
        self.requests = []

    def transport(self):
        return httpx.MockTransport(self.handle)

    def calls(self, path, method=None):
        return [
            r
            for r in self.requests
            if r.url.path == path and (method is None or r.method == method)
        ]

    def bearer_tokens(self, path):
        return [r.headers.get("Authorization") for r in self.calls(path)]

    async def handle(self, request):
        self.requests.append(request)
        path = request.url.path
        if path == "/api/auth/refresh":
            return await self._refresh(request)
        if path == "/api/auth/login":
            return self._login(request)
        if path == "/api/auth/logout":
            return httpx.Response(self.logout_status, json={"success": True})
        if path.startswith("/api/"):
            return self._protected(request)
        return httpx.Response(200, json={"external": True})

    async def _refresh(self, request):
        if self.refresh_gate is not None:
            await self.refresh_gate.wait()
        if self.refresh_exception is not None:
            raise self.refresh_exception
        if self.refresh_failure is not None:
            status, body = self.refresh_failure
            return httpx.Response(status, json=body)
        refresh_token = json.loads(request.content or b"{}").get("refreshToken")
        access = self.refresh_grants.get(refresh_token)
        if access is None:
            return httpx.Response(
                401,
                json={"error": "Invalid or expired refresh token", "code": "INVALID_REFRESH_TOKEN"},
            )
        self.valid_tokens.add(access)
        body = {"success": True, "accessToken": access}
        if self.rotate_to:
            body["refreshToken"] = self.rotate_to
        if self.refresh_user:
            body["user"] = self.refresh_user
        return httpx.Response(200, json=body)

    def _login(self, request):
        payload = json.loads(request.content or b"{}")
        grant = self.users.get((payload.get("email"), payload.get("password")))
        if grant is None:
            return httpx.Response(400, json={"error": "Invalid credentials"})
        access, refresh, user = grant
        self.valid_tokens.add(access)
        return httpx.Response(
            200,
            json={"success": True, "accessToken": access, "refreshToken": refresh, "user": user},
        )

    def _protected(self, request):
        header = request.headers.get("Authorization")
        if not header:
            return httpx.Response(
                401, json={"error": "No token provided", "code": "TOKEN_MISSING"}
            )
        token = header.split(" ", 1)[-1]
        if request.url.path in self.always_expired_paths or token in self.expired_tokens:
            return httpx.Response(
                401, json={"error": "Token expired", "code": "TOKEN_EXPIRED"}
            )
        if token not in self.valid_tokens:
            return httpx.Response(
                401, json={"error": "Invalid token", "code": "TOKEN_INVALID"}
            )
        if request.url.path == "/api/auth/me":
            return httpx.Response(200, json={"success": True, "user": USER_PAYLOAD})
        return httpx.Response(
            200,
            json={"path": request.url.path, "method": request.method, "token": token},
        )


@pytest.fixture
def backend():
    return FakeClubBackend()


@pytest.fixture
def storage():
    return MemoryKeyValueStore()


@pytest.fixture
def token_store(storage):
    return TokenStore(storage)


@pytest.fixture
def events():
    return AuthEvents()


@pytest.fixture
def client(backend, token_store, events):
    return ApiClient(BASE_URL, token_store, events=events, transport=backend.transport())


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
