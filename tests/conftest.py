"""
Pytest fixtures and configuration for versionscout tests.

=============================================================================
Test Classification
=============================================================================

Markers:
- @pytest.mark.unit: Single class/function, no external dependencies
  - DEFAULT: Tests without marker are auto-classified as unit
- @pytest.mark.integration: Several components wired together, HTTP simulated
- @pytest.mark.e2e: Real service access (none in this suite; needs credentials)
- @pytest.mark.slow: Tests taking >5 seconds

=============================================================================
Mock Strategy
=============================================================================

- Network: Prohibited. Every HTTP exchange goes through httpx.MockTransport
  (see FakeService), which the scheduler accepts in place of a real transport.
- Configuration: Settings objects are built in-process; no YAML is read.
- Timing: sleep_for is set to a few milliseconds so cooldowns and retry
  pauses are real but short.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from versionscout.crawler.client import RequestScheduler
from versionscout.utils.config import AccountConfig, ClientConfig, ContentConfig, Settings

BASE_URL = "https://versionista.com"
LOGIN_URL = f"{BASE_URL}/login"

Handler = Callable[[httpx.Request], Any]


def pytest_configure(config):
    """Register custom markers for test classification."""
    config.addinivalue_line("markers", "unit: Unit tests with no external dependencies")
    config.addinivalue_line("markers", "integration: Integration tests with simulated HTTP")
    config.addinivalue_line("markers", "e2e: End-to-end tests against the real service")
    config.addinivalue_line("markers", "slow: Tests that take more than 5 seconds")


def pytest_collection_modifyitems(config, items):
    """Tests without explicit markers are assumed to be unit tests."""
    for item in items:
        has_classification = any(
            marker.name in ("unit", "integration", "e2e") for marker in item.iter_markers()
        )
        if not has_classification:
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Simulated service
# =============================================================================


class FakeService:
    """Route table behind an httpx.MockTransport.

    Routes are keyed by method and URL without query string. A route holds
    either a handler (called with the request; may be async, may raise) or a
    list of responses served in order, the last one repeating.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Handler | list[httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    @staticmethod
    def _key(method: str, url: str) -> tuple[str, str]:
        return method.upper(), url.split("?", 1)[0]

    def add(self, url: str, *responses: httpx.Response | Handler, method: str = "GET") -> None:
        if len(responses) == 1 and callable(responses[0]):
            self.routes[self._key(method, url)] = responses[0]
        else:
            self.routes[self._key(method, url)] = list(responses)

    def calls(self, url: str, method: str = "GET") -> int:
        key = self._key(method, url)
        return sum(1 for request in self.requests if self._key(request.method, str(request.url)) == key)

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(self._key(request.method, str(request.url)))
        if route is None:
            return httpx.Response(404, text=f"No route for {request.method} {request.url}")
        if callable(route):
            result = route(request)
            if inspect.isawaitable(result):
                result = await result
            return result
        template = route.pop(0) if len(route) > 1 else route[0]
        # Fresh copy per exchange; the client binds each response to its request
        return httpx.Response(template.status_code, headers=template.headers, content=template.content)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def allow_login(self) -> None:
        """Accept any credentials the way the service does: redirect home."""
        self.add(
            LOGIN_URL,
            httpx.Response(302, headers={"Location": f"{BASE_URL}/home"}),
            method="POST",
        )


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def service() -> FakeService:
    return FakeService()


@pytest.fixture
def settings() -> Settings:
    """Settings with credentials and millisecond pauses."""
    return Settings(
        account=AccountConfig(email="scout@example.org", password="hunter2"),
        client=ClientConfig(max_concurrent=4, sleep_every=0, sleep_for=0.001, max_retries=3),
        content=ContentConfig(archive_poll_interval=0.001, archive_poll_timeout=1.0),
    )


@pytest.fixture
def make_scheduler(service: FakeService):
    """Factory for schedulers wired to the fake service."""
    created: list[RequestScheduler] = []

    def _make(**kwargs: Any) -> RequestScheduler:
        kwargs.setdefault("sleep_for", 0.001)
        kwargs.setdefault("sleep_every", 0)
        scheduler = RequestScheduler(transport=service.transport, **kwargs)
        created.append(scheduler)
        return scheduler

    return _make


def html_response(body: str, status: int = 200) -> httpx.Response:
    return httpx.Response(status, text=body, headers={"Content-Type": "text/html; charset=utf-8"})
