import asyncio
from typing import Callable, Dict, List, Optional, Tuple

import httpx
import pytest

from fraudwatch_client.api import FraudWatchClient
from fraudwatch_client.config import Settings
from fraudwatch_client.mock_backend import MockAuthBackend, create_app
from fraudwatch_client.persistence import InMemoryPersistence
from fraudwatch_client.pipeline import ApiRequest
from fraudwatch_client.session import SessionManager


class FakeBackend:
    """
    Send primitive for pipeline tests. Protected paths accept only
    `valid_token`; the refresh endpoint blocks on `refresh_gate` so tests can
    pile up 401s while a refresh is in flight.
    """

    def __init__(
        self,
        valid_token: str = "tok2",
        refresh_response: Optional[httpx.Response] = None,
        refresh_error: Optional[Exception] = None,
    ) -> None:
        self.valid_token = valid_token
        self.refresh_response = refresh_response or httpx.Response(200, json={"access_token": "tok2"})
        self.refresh_error = refresh_error
        self.refresh_gate = asyncio.Event()
        self.refresh_gate.set()
        self.path_gates: Dict[str, asyncio.Event] = {}
        self.calls: List[Tuple[str, Optional[str]]] = []
        self.refresh_bodies: List[dict] = []

    @property
    def refresh_calls(self) -> int:
        return len(self.refresh_bodies)

    def auth_headers_for(self, path: str) -> List[Optional[str]]:
        return [auth for p, auth in self.calls if p == path]

    async def __call__(self, request: ApiRequest, headers: Dict[str, str]) -> httpx.Response:
        auth = headers.get("Authorization")
        self.calls.append((request.path, auth))

        if request.path == "/auth/refresh":
            self.refresh_bodies.append(request.body)
            await self.refresh_gate.wait()
            if self.refresh_error is not None:
                raise self.refresh_error
            return self.refresh_response

        gate = self.path_gates.get(request.path)
        if gate is not None:
            await gate.wait()
        await asyncio.sleep(0)

        if request.path.startswith("/public"):
            return httpx.Response(200, json={"ok": True})
        if auth == f"Bearer {self.valid_token}":
            return httpx.Response(200, json={"path": request.path})
        return httpx.Response(401, json={"detail": "Token has expired"})


async def wait_until(condition: Callable[[], bool], attempts: int = 200) -> None:
    for _ in range(attempts):
        if condition():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


@pytest.fixture
def storage() -> dict:
    return {}


@pytest.fixture
def persistence(storage) -> InMemoryPersistence:
    return InMemoryPersistence(key="auth-storage", storage=storage)


@pytest.fixture
def session(persistence) -> SessionManager:
    manager = SessionManager(persistence)
    manager.hydrate()
    return manager


@pytest.fixture
def logged_in_session(session) -> SessionManager:
    session.set_token("tok1")
    session.set_refresh_token("rt1")
    return session


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, API_BASE_URL="http://testserver")


@pytest.fixture
def backend() -> MockAuthBackend:
    return MockAuthBackend(secret_key="test-secret")


@pytest.fixture
def make_client(settings, backend, persistence):
    def factory(**kwargs) -> FraudWatchClient:
        kwargs.setdefault("persistence", persistence)
        kwargs.setdefault("transport", httpx.ASGITransport(app=create_app(backend)))
        return FraudWatchClient(settings=settings, **kwargs)

    return factory
