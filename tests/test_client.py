"""
Tests for versionscout/crawler/client.py

## Test Perspectives Table

| Case ID | Input / Precondition | Perspective (Equivalence / Boundary) | Expected Result | Notes |
|---------|---------------------|---------------------------------------|-----------------|-------|
| TC-RS-N-01 | Single GET | Equivalence – normal | FetchResult with status/body/final URL | - |
| TC-RS-N-02 | 404 response | Equivalence – normal | Returned as-is, no retry | - |
| TC-RS-B-01 | 10 slow requests, max_concurrent=3 | Boundary – limit | Never more than 3 in flight | - |
| TC-RS-N-03 | Queued normal + immediate | Equivalence – normal | Immediate dispatched first, rest FIFO | - |
| TC-RS-B-02 | 7 requests, sleep_every=3 | Boundary – cooldown | 2 cooldowns, pause observed | - |
| TC-RS-N-04 | 503 then 200 | Equivalence – normal | Retried once, 200 returned | - |
| TC-RS-A-01 | Always 503 | Equivalence – abnormal | NetworkError after max_retries, carries last response | - |
| TC-RS-A-02 | Connection reset then 200 | Equivalence – abnormal | Retried, 200 returned | - |
| TC-RS-A-03 | Connect timeout | Equivalence – abnormal | NetworkError, single attempt | - |
| TC-RS-A-04 | retry=False, 503 | Equivalence – abnormal | NetworkError after one attempt | - |
| TC-RS-N-05 | Custom retry_if | Equivalence – normal | Retries until predicate passes | - |
| TC-RS-N-06 | requires_login | Equivalence – normal | Authenticator awaited before dispatch | - |
| TC-RS-N-07 | Cookie from one response | Equivalence – normal | Sent on the next request | - |
| TC-RS-A-05 | Invalid max_concurrent | Equivalence – abnormal | ValueError | - |
"""

import asyncio

import httpx
import pytest

from conftest import BASE_URL, FakeService
from versionscout.crawler.client import Priority, RequestScheduler, RequestSpec
from versionscout.crawler.retry import retry_unless_status
from versionscout.utils.errors import NetworkError

pytestmark = pytest.mark.unit

PAGE_URL = f"{BASE_URL}/page"


class TestRequestSpec:
    """Tests for RequestSpec defaults."""

    def test_defaults(self):
        # Given: A request with only a URL
        spec = RequestSpec(PAGE_URL)

        # Then: GET, follows redirects, retries, needs login, normal priority
        assert spec.method == "GET"
        assert spec.follow_redirects is True
        assert spec.retry is True
        assert spec.requires_login is True
        assert spec.priority is Priority.NORMAL

    def test_immediate_priority(self):
        assert RequestSpec(PAGE_URL, immediate=True).priority is Priority.IMMEDIATE


class TestSubmit:
    """Tests for basic request execution."""

    @pytest.mark.asyncio
    async def test_returns_fetch_result(self, service: FakeService, make_scheduler):
        # Given: A route serving HTML
        service.add(PAGE_URL, httpx.Response(200, text="<p>hi</p>", headers={"Content-Type": "text/html"}))
        scheduler = make_scheduler()

        # When: Submitting a request
        async with scheduler:
            result = await scheduler.submit(RequestSpec(PAGE_URL))

        # Then: Status, body and final URL are recorded
        assert result.status == 200
        assert result.text == "<p>hi</p>"
        assert result.final_url == PAGE_URL
        assert result.might_be_html()
        assert result.requested_at is not None

    @pytest.mark.asyncio
    async def test_client_error_returned_without_retry(self, service: FakeService, make_scheduler):
        # Given: A route answering 404
        service.add(PAGE_URL, httpx.Response(404, text="gone"))
        scheduler = make_scheduler()

        # When: Submitting a request
        async with scheduler:
            result = await scheduler.submit(RequestSpec(PAGE_URL))

        # Then: The 404 is returned after a single attempt
        assert result.status == 404
        assert service.calls(PAGE_URL) == 1
        assert scheduler.stats.retries == 0

    @pytest.mark.asyncio
    async def test_redirect_followed_and_recorded(self, service: FakeService, make_scheduler):
        # Given: A redirect to another host
        target = "http://10.0.0.1/pa/token/"
        service.add(PAGE_URL, httpx.Response(302, headers={"Location": target}))
        service.add(target, httpx.Response(200, text="diff page"))
        scheduler = make_scheduler()

        # When: Submitting a request
        async with scheduler:
            result = await scheduler.submit(RequestSpec(PAGE_URL))

        # Then: The final URL is the redirect target
        assert result.final_url == target
        assert result.final_host == "10.0.0.1"
        assert result.redirects == [target]

    @pytest.mark.asyncio
    async def test_cookies_shared_between_requests(self, service: FakeService, make_scheduler):
        # Given: One route setting a cookie and another echoing it
        service.add(f"{BASE_URL}/set", httpx.Response(200, headers={"Set-Cookie": "session=abc; Path=/"}))
        service.add(
            f"{BASE_URL}/echo",
            lambda request: httpx.Response(200, text=request.headers.get("cookie", "")),
        )
        scheduler = make_scheduler()

        # When: Requesting both in turn
        async with scheduler:
            await scheduler.submit(RequestSpec(f"{BASE_URL}/set"))
            echoed = await scheduler.submit(RequestSpec(f"{BASE_URL}/echo"))

        # Then: The cookie is sent back
        assert "session=abc" in echoed.text


class TestConcurrency:
    """Tests for the in-flight bound and queue ordering."""

    @pytest.mark.asyncio
    async def test_in_flight_never_exceeds_limit(self, service: FakeService, make_scheduler):
        # Given: A slow route that records concurrency
        active = 0
        peak = 0

        async def slow(request: httpx.Request) -> httpx.Response:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return httpx.Response(200)

        service.add(PAGE_URL, slow)
        scheduler = make_scheduler(max_concurrent=3)

        # When: Submitting 10 requests at once
        async with scheduler:
            results = await asyncio.gather(*(scheduler.submit(RequestSpec(PAGE_URL)) for _ in range(10)))

        # Then: All complete and at most 3 ran together
        assert len(results) == 10
        assert peak == 3
        assert scheduler.stats.max_in_flight == 3
        assert scheduler.stats.completed == 10

    @pytest.mark.asyncio
    async def test_immediate_jumps_queue_but_rest_fifo(self, service: FakeService, make_scheduler):
        # Given: One slot, held by a blocked request
        release = asyncio.Event()
        order: list[str] = []

        async def blocked(request: httpx.Request) -> httpx.Response:
            order.append("block")
            await release.wait()
            return httpx.Response(200)

        def record(request: httpx.Request) -> httpx.Response:
            order.append(request.url.path.strip("/"))
            return httpx.Response(200)

        service.add(f"{BASE_URL}/block", blocked)
        for name in ("a", "b", "urgent"):
            service.add(f"{BASE_URL}/{name}", record)
        scheduler = make_scheduler(max_concurrent=1)

        async with scheduler:
            first = asyncio.create_task(scheduler.submit(RequestSpec(f"{BASE_URL}/block")))
            await asyncio.sleep(0.01)

            # When: Queueing two normal requests, then an immediate one
            queued = [
                asyncio.create_task(scheduler.submit(RequestSpec(f"{BASE_URL}/a"))),
                asyncio.create_task(scheduler.submit(RequestSpec(f"{BASE_URL}/b"))),
                asyncio.create_task(scheduler.submit(RequestSpec(f"{BASE_URL}/urgent", immediate=True))),
            ]
            await asyncio.sleep(0.01)
            assert scheduler.queued == 3
            release.set()
            await asyncio.gather(first, *queued)

        # Then: The in-flight request was not preempted; urgent went next, then FIFO
        assert order == ["block", "urgent", "a", "b"]

    @pytest.mark.asyncio
    async def test_immediate_requests_fifo_among_themselves(self, service: FakeService, make_scheduler):
        # Given: One slot, held by a blocked request, and a normal request waiting
        release = asyncio.Event()
        order: list[str] = []

        async def blocked(request: httpx.Request) -> httpx.Response:
            await release.wait()
            return httpx.Response(200)

        def record(request: httpx.Request) -> httpx.Response:
            order.append(request.url.path.strip("/"))
            return httpx.Response(200)

        service.add(f"{BASE_URL}/block", blocked)
        for name in ("normal", "u1", "u2", "u3"):
            service.add(f"{BASE_URL}/{name}", record)
        scheduler = make_scheduler(max_concurrent=1)

        async with scheduler:
            first = asyncio.create_task(scheduler.submit(RequestSpec(f"{BASE_URL}/block")))
            await asyncio.sleep(0.01)

            # When: Queueing three immediate requests in order
            queued = [asyncio.create_task(scheduler.submit(RequestSpec(f"{BASE_URL}/normal")))]
            for name in ("u1", "u2", "u3"):
                queued.append(
                    asyncio.create_task(scheduler.submit(RequestSpec(f"{BASE_URL}/{name}", immediate=True)))
                )
                await asyncio.sleep(0)
            await asyncio.sleep(0.01)
            assert scheduler.queued == 4
            release.set()
            await asyncio.gather(first, *queued)

        # Then: Oldest time-limited URL first, all ahead of the normal request
        assert order == ["u1", "u2", "u3", "normal"]


class TestCooldown:
    """Tests for forced cooldown pauses."""

    @pytest.mark.asyncio
    async def test_pause_after_every_n_completions(self, service: FakeService, make_scheduler):
        # Given: sleep_every=3 and a route that records start times
        loop = asyncio.get_running_loop()
        started: list[float] = []

        def record(request: httpx.Request) -> httpx.Response:
            started.append(loop.time())
            return httpx.Response(200)

        service.add(PAGE_URL, record)
        scheduler = make_scheduler(max_concurrent=1, sleep_every=3, sleep_for=0.05)

        # When: Submitting 7 requests
        async with scheduler:
            await asyncio.gather(*(scheduler.submit(RequestSpec(PAGE_URL)) for _ in range(7)))

        # Then: Two cooldowns, the 4th request waited out the first one
        assert scheduler.stats.cooldowns == 2
        assert started[3] - started[2] >= 0.04

    @pytest.mark.asyncio
    async def test_disabled_when_sleep_every_not_positive(self, service: FakeService, make_scheduler):
        service.add(PAGE_URL, httpx.Response(200))
        scheduler = make_scheduler(sleep_every=0)

        async with scheduler:
            await asyncio.gather(*(scheduler.submit(RequestSpec(PAGE_URL)) for _ in range(5)))

        assert scheduler.stats.cooldowns == 0


class TestRetry:
    """Tests for retries on gateway errors and connection resets."""

    @pytest.mark.asyncio
    async def test_gateway_error_retried(self, service: FakeService, make_scheduler):
        # Given: A 503 followed by a 200
        service.add(PAGE_URL, httpx.Response(503), httpx.Response(200, text="ok"))
        scheduler = make_scheduler()

        # When: Submitting a request
        async with scheduler:
            result = await scheduler.submit(RequestSpec(PAGE_URL))

        # Then: The retry succeeded
        assert result.status == 200
        assert service.calls(PAGE_URL) == 2
        assert scheduler.stats.retries == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, service: FakeService, make_scheduler):
        # Given: A route that is always overloaded
        service.add(PAGE_URL, httpx.Response(503, text="busy"))
        scheduler = make_scheduler(max_retries=3)

        # When: Submitting a request
        async with scheduler:
            with pytest.raises(NetworkError) as exc_info:
                await scheduler.submit(RequestSpec(PAGE_URL))

        # Then: 1 attempt + 3 retries, the last response is attached
        assert service.calls(PAGE_URL) == 4
        assert exc_info.value.attempts == 4
        assert exc_info.value.status == 503
        assert exc_info.value.response.text == "busy"

    @pytest.mark.asyncio
    async def test_connection_reset_retried(self, service: FakeService, make_scheduler):
        # Given: A connection reset followed by a 200
        attempts = 0

        def flaky(request: httpx.Request) -> httpx.Response:
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise httpx.ReadError("Connection reset by peer", request=request)
            return httpx.Response(200, text="ok")

        service.add(PAGE_URL, flaky)
        scheduler = make_scheduler()

        # When: Submitting a request
        async with scheduler:
            result = await scheduler.submit(RequestSpec(PAGE_URL))

        # Then: The second attempt's response is returned
        assert result.status == 200
        assert attempts == 2

    @pytest.mark.asyncio
    async def test_connect_timeout_not_retried(self, service: FakeService, make_scheduler):
        # Given: A route that times out
        def timeout(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        service.add(PAGE_URL, timeout)
        scheduler = make_scheduler()

        # When/Then: NetworkError after a single attempt, cause preserved
        async with scheduler:
            with pytest.raises(NetworkError) as exc_info:
                await scheduler.submit(RequestSpec(PAGE_URL))

        assert exc_info.value.attempts == 1
        assert isinstance(exc_info.value.last_error, httpx.ConnectTimeout)
        assert exc_info.value.response is None

    @pytest.mark.asyncio
    async def test_retry_opt_out(self, service: FakeService, make_scheduler):
        # Given: An overloaded route and a request that must not be retried
        service.add(PAGE_URL, httpx.Response(503))
        scheduler = make_scheduler()

        # When/Then: Fails on the first attempt
        async with scheduler:
            with pytest.raises(NetworkError):
                await scheduler.submit(RequestSpec(PAGE_URL, retry=False))

        assert service.calls(PAGE_URL) == 1

    @pytest.mark.asyncio
    async def test_custom_retry_predicate(self, service: FakeService, make_scheduler):
        # Given: 202 twice, then 200, and a predicate wanting 200
        service.add(PAGE_URL, httpx.Response(202), httpx.Response(202), httpx.Response(200))
        scheduler = make_scheduler()

        # When: Submitting with retry_if
        async with scheduler:
            result = await scheduler.submit(RequestSpec(PAGE_URL, retry_if=retry_unless_status(200)))

        # Then: Retried until the 200 arrived
        assert result.status == 200
        assert service.calls(PAGE_URL) == 3

    @pytest.mark.asyncio
    async def test_retry_requeued_ahead_of_waiting_requests(self, service: FakeService, make_scheduler):
        # Given: One slot; the first request fails once, a second one is queued
        order: list[str] = []
        failures = iter([True])

        def first(request: httpx.Request) -> httpx.Response:
            order.append("first")
            return httpx.Response(503 if next(failures, False) else 200)

        def second(request: httpx.Request) -> httpx.Response:
            order.append("second")
            return httpx.Response(200)

        service.add(f"{BASE_URL}/first", first)
        service.add(f"{BASE_URL}/second", second)
        scheduler = make_scheduler(max_concurrent=1)

        # When: Both are submitted together
        async with scheduler:
            await asyncio.gather(
                scheduler.submit(RequestSpec(f"{BASE_URL}/first")),
                scheduler.submit(RequestSpec(f"{BASE_URL}/second")),
            )

        # Then: The retry ran before the waiting request
        assert order == ["first", "first", "second"]


class TestAuthenticator:
    """Tests for the login hook."""

    @pytest.mark.asyncio
    async def test_awaited_only_for_requests_needing_login(self, service: FakeService, make_scheduler):
        # Given: An authenticator that counts calls
        calls = 0

        async def authenticate() -> None:
            nonlocal calls
            calls += 1

        service.add(PAGE_URL, httpx.Response(200))
        scheduler = make_scheduler(authenticator=authenticate)

        # When: One request needs login and one does not
        async with scheduler:
            await scheduler.submit(RequestSpec(PAGE_URL))
            await scheduler.submit(RequestSpec(PAGE_URL, requires_login=False))

        # Then: Only the first awaited the hook
        assert calls == 1


class TestConstruction:
    """Tests for scheduler construction."""

    def test_invalid_max_concurrent(self):
        with pytest.raises(ValueError, match="max_concurrent"):
            RequestScheduler(max_concurrent=0)

    def test_from_settings(self, settings):
        # Given: Settings with a custom client section
        # When: Building a scheduler from them
        scheduler = RequestScheduler.from_settings(settings)

        # Then: Limits and retry policy follow the settings
        assert scheduler.max_concurrent == settings.client.max_concurrent
        assert scheduler.sleep_for == settings.client.sleep_for
        assert scheduler.policy.max_retries == settings.client.max_retries
