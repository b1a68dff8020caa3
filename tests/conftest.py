import httpx
import pytest

BASE = "https://moyaposylka.test/api/v1"
API_KEY = "test-key"

DELIVERED_BODY = {
    "attributes": {"recipient": "Ivan", "estimatedDelivery": "2024-01-01"},
    "events": [
        {"eventDate": 1700000000000, "operation": "Delivered", "location": "Moscow"}
    ],
    "delivered": True,
}


class FakeAggregator:
    """Serves queued responses per (method, path) and records every request."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, *responses: httpx.Response) -> None:
        self.routes.setdefault((method, "/api/v1" + path), []).extend(responses)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        full = "/api/v1" + path
        return [r for r in self.requests if r.method == method and r.url.path == full]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            raise AssertionError(f"unexpected request {request.method} {request.url}")
        return queue.pop(0)


@pytest.fixture
def aggregator() -> FakeAggregator:
    return FakeAggregator()


@pytest.fixture
def client(aggregator):
    with httpx.Client(transport=httpx.MockTransport(aggregator.handler)) as c:
        yield c


@pytest.fixture
def sleeps(monkeypatch):
    """Record settling delays instead of sleeping."""
    from moyaposylka.providers import moyaposylka as mp

    recorded: list[float] = []
    monkeypatch.setattr(mp.time, "sleep", recorded.append)
    return recorded
