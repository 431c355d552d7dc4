from __future__ import annotations

import asyncio
import json
from typing import Callable

import httpx
import pytest

from api_session.configs.settings import Settings
from api_session.credentials.backends import InMemoryBackend
from api_session.credentials.store import CredentialStore
from api_session.webclient.SessionHttpClient import SessionHttpClient

T0 = 1_700_000_000_000


class FakeClock:
    def __init__(self, now: int = T0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * 1000)


def token_reply(access: str = "new-at", refresh: str = "new-rt", expires_in: int = 3600) -> httpx.Response:
    return httpx.Response(
        200,
        json={"data": {"tokens": {"accessToken": access, "refreshToken": refresh, "accessTokenExpiresIn": expires_in}}},
    )


class FakeApi(httpx.AsyncBaseTransport):
    """
    Backend double.

    Any bearer token in `valid_tokens` is accepted, everything else gets a
    401. Refresh calls block on `refresh_gate` so tests can pile up
    concurrent 401s behind the first one.
    """

    def __init__(self) -> None:
        self.valid_tokens = {"new-at"}
        self.requests: list[httpx.Request] = []
        self.refresh_requests: list[httpx.Request] = []
        self.refresh_gate = asyncio.Event()
        self.refresh_gate.set()
        self.refresh_reply: Callable[[httpx.Request], httpx.Response] = lambda request: token_reply()

    @property
    def refresh_calls(self) -> int:
        return len(self.refresh_requests)

    def calls_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(path)]

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(0)
        path = request.url.path

        if path.endswith("/token/refresh"):
            self.refresh_requests.append(request)
            await self.refresh_gate.wait()
            return self.refresh_reply(request)

        self.requests.append(request)
        if path.endswith("/down"):
            raise httpx.ConnectError("connection refused", request=request)
        if path.endswith("/slow"):
            raise httpx.ReadTimeout("read timed out", request=request)
        if path.endswith("/boom"):
            return httpx.Response(500, json={"message": "kaboom"})
        if path.endswith("/login/basic"):
            return httpx.Response(401, json={"message": "invalid credentials"})

        auth = request.headers.get("authorization")
        if auth in {f"Bearer {t}" for t in self.valid_tokens}:
            return httpx.Response(200, json={"ok": True, "auth": auth})
        return httpx.Response(401, json={"message": "jwt expired"})


def refresh_body(request: httpx.Request) -> dict:
    return json.loads(request.content)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture
def store(backend: InMemoryBackend, clock: FakeClock) -> CredentialStore:
    return CredentialStore(backend, clock=clock)


@pytest.fixture
def api() -> FakeApi:
    return FakeApi()


@pytest.fixture
def make_client(store: CredentialStore, api: FakeApi):
    def _make(on_session_expired=None, **overrides) -> SessionHttpClient:
        settings = Settings(_env_file=None, API_URL="https://api.test/api", **overrides)
        session = httpx.AsyncClient(base_url=settings.API_URL, transport=api)
        return SessionHttpClient(store, settings=settings, client=session, on_session_expired=on_session_expired)

    return _make


@pytest.fixture
def wait_until():
    async def _wait(predicate: Callable[[], bool], attempts: int = 500) -> None:
        for _ in range(attempts):
            if predicate():
                return
            await asyncio.sleep(0)
        raise AssertionError("condition not reached")

    return _wait
