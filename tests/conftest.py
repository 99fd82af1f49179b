from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Callable

import httpx
import pytest
import pytest_asyncio

from dashboard_api.services.cache import ResponseCache
from dashboard_api.services.client import ApiClient
from dashboard_api.services.session import SESSION_KEY, TOKEN_KEY
from dashboard_api.services.storage import MemoryStorage, PersistentStore

BASE_URL = "http://api.test"


class FakeClock:
    """Manually advanced clock usable as both a datetime and an epoch source."""

    def __init__(self, start: datetime = datetime(2026, 1, 5, 9, 0, 0)):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def time(self) -> float:
        return self.current.timestamp()

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


class FakeBackend:
    """
    httpx.MockTransport handler with per-route response queues.

    A route's queue entries are (status, json) tuples, exceptions to raise,
    or callables taking the request. The last entry repeats once the
    queue is drained.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self._routes: dict[tuple[str, str], list[Any]] = {}

    def add(self, method: str, path: str, *responses: Any) -> None:
        self._routes.setdefault((method, path), []).extend(responses)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [
            r for r in self.requests if r.method == method and r.url.path == path
        ]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self._routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"error": "Not found"})

        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        if callable(item):
            result = item(request)
            if hasattr(result, "__await__"):
                result = await result
            return result
        status, payload = item
        if isinstance(payload, (bytes, str)):
            return httpx.Response(status, content=payload)
        return httpx.Response(status, json=payload)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def store(storage: MemoryStorage, clock: FakeClock) -> PersistentStore:
    return PersistentStore(storage, clock=clock.time)


@pytest.fixture
def navigations() -> list[str]:
    return []


@pytest_asyncio.fixture
async def make_client(
    backend: FakeBackend,
    store: PersistentStore,
    clock: FakeClock,
    navigations: list[str],
) -> AsyncIterator[Callable[..., ApiClient]]:
    """Build ApiClients wired to the fake backend; closed on teardown."""
    clients: list[ApiClient] = []

    def factory(**kwargs: Any) -> ApiClient:
        kwargs.setdefault(
            "cache",
            ResponseCache(
                max_size=100, default_ttl=timedelta(minutes=5), clock=clock.now
            ),
        )
        client = ApiClient(
            base_url=BASE_URL,
            store=store,
            navigate=navigations.append,
            timeout=10.0,
            cache_ttl=timedelta(minutes=5),
            client_name="marudham",
            transport=httpx.MockTransport(backend),
            **kwargs,
        )
        clients.append(client)
        return client

    yield factory

    for client in clients:
        await client.close()


@pytest.fixture
def log_in(store: PersistentStore) -> Callable[..., None]:
    """Persist a credential pair the way a successful login does."""

    def _log_in(token: str = "old-token", refresh: str = "r1") -> None:
        store.set(TOKEN_KEY, token, 5)
        store.set(
            SESSION_KEY,
            {"refreshToken": refresh, "expiresIn": 900, "sessionId": "s-1"},
            5,
        )

    return _log_in
