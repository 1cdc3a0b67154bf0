"""
Request scheduler for the change-tracking service.

Every HTTP request versionscout makes goes through one RequestScheduler:

- a single httpx.AsyncClient, so the login cookie is shared by all requests
- at most ``max_concurrent`` requests in flight; the rest wait in a queue
  (FIFO; ``immediate`` requests go ahead of all normal ones, still FIFO among
  themselves, because their URLs expire within seconds)
- a forced pause after every ``sleep_every`` completed requests, which keeps
  the service's abuse protection from kicking in
- retries for connection resets and gateway errors, each one re-queued at the
  head of the line after a pause of ``sleep_for * attempt * 2`` seconds

httpx's own connection pool could cap concurrency, but queued requests then
count against its timeouts. Holding them here instead means a request only
starts its clock once it is actually sent.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

import httpx

from versionscout.crawler.fetch_result import FetchResult
from versionscout.crawler.retry import RetryPolicy, RetryPredicate
from versionscout.utils.backoff import BackoffConfig
from versionscout.utils.errors import NetworkError
from versionscout.utils.logging import get_logger

if TYPE_CHECKING:
    from versionscout.utils.config import Settings

logger = get_logger(__name__)

Authenticator = Callable[[], Awaitable[None]]


class Priority(str, Enum):
    """Queue priority for a request."""

    NORMAL = "normal"
    IMMEDIATE = "immediate"  # Time-limited URL, goes to the front of the queue


@dataclass
class RequestSpec:
    """Description of one request to submit.

    Attributes:
        url: Target URL.
        method: HTTP method.
        params: Query parameters.
        data: Form body.
        headers: Extra headers for this request only.
        follow_redirects: Whether httpx should follow redirects.
        retry_if: Predicate flagging responses that should be retried.
            Defaults to the scheduler policy (502/503/504).
        retry: False disables retries for this request entirely.
        immediate: Queue ahead of all normal requests.
        requires_login: Wait for the session to be logged in before queueing.
    """

    url: str
    method: str = "GET"
    params: dict[str, Any] | None = None
    data: dict[str, Any] | None = None
    headers: dict[str, str] | None = None
    follow_redirects: bool = True
    retry_if: RetryPredicate | None = None
    retry: bool = True
    immediate: bool = False
    requires_login: bool = True

    @property
    def priority(self) -> Priority:
        return Priority.IMMEDIATE if self.immediate else Priority.NORMAL


@dataclass
class RequestTask:
    """A submitted request waiting for (or holding) a dispatch slot."""

    spec: RequestSpec
    future: asyncio.Future[FetchResult]
    max_retries: int
    is_retryable: RetryPredicate
    retries_used: int = 0

    @property
    def priority(self) -> Priority:
        return self.spec.priority


@dataclass
class SchedulerStats:
    """Counters describing scheduler activity."""

    dispatched: int = 0
    completed: int = 0
    retries: int = 0
    cooldowns: int = 0
    failures: int = 0
    max_in_flight: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "dispatched": self.dispatched,
            "completed": self.completed,
            "retries": self.retries,
            "cooldowns": self.cooldowns,
            "failures": self.failures,
            "max_in_flight": self.max_in_flight,
        }


class RequestScheduler:
    """Bounded-concurrency, rate-limited, auto-retrying request queue.

    Example:
        async with RequestScheduler(max_concurrent=4) as scheduler:
            result = await scheduler.submit(RequestSpec("https://versionista.com/"))
    """

    def __init__(
        self,
        *,
        max_concurrent: int = 6,
        sleep_every: int = 40,
        sleep_for: float = 1.0,
        max_retries: int = 3,
        user_agent: str | None = None,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
        authenticator: Authenticator | None = None,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        if sleep_for < 0:
            raise ValueError("sleep_for must be non-negative")

        self.max_concurrent = max_concurrent
        self.sleep_every = sleep_every
        self.sleep_for = sleep_for
        self.policy = RetryPolicy(
            max_retries=max_retries,
            backoff=BackoffConfig(
                base_delay=sleep_for,
                multiplier=2.0,
                max_delay=sleep_for * 2.0 * max(max_retries, 1),
            ),
        )
        self.stats = SchedulerStats()

        headers = {"User-Agent": user_agent} if user_agent else None
        self._client = httpx.AsyncClient(
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        self._authenticator = authenticator

        self._queue: deque[RequestTask] = deque()
        # Time-limited URLs; drained before _queue, FIFO among themselves
        self._immediate: deque[RequestTask] = deque()
        self._in_flight = 0
        self._until_sleep = sleep_every
        self._resume_at = 0.0
        self._resume_handle: asyncio.TimerHandle | None = None
        self._runners: set[asyncio.Task[None]] = set()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> RequestScheduler:
        """Build a scheduler from the ``client`` and ``service`` settings sections."""
        return cls(
            max_concurrent=settings.client.max_concurrent,
            sleep_every=settings.client.sleep_every,
            sleep_for=settings.client.sleep_for,
            max_retries=settings.client.max_retries,
            user_agent=settings.service.user_agent,
            timeout=settings.service.request_timeout,
            transport=transport,
        )

    # =========================================================================
    # Public API
    # =========================================================================

    @property
    def cookies(self) -> httpx.Cookies:
        """The cookie jar shared by every request."""
        return self._client.cookies

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def queued(self) -> int:
        return len(self._immediate) + len(self._queue)

    @property
    def paused(self) -> bool:
        return self._resume_handle is not None

    def set_authenticator(self, authenticator: Authenticator | None) -> None:
        """Set the coroutine awaited before queueing requests that need a login."""
        self._authenticator = authenticator

    async def submit(self, spec: RequestSpec) -> FetchResult:
        """Queue a request and wait for its response.

        Args:
            spec: What to request and how to treat the response.

        Returns:
            The response, whatever its status, unless it was flagged as
            retryable on every attempt.

        Raises:
            NetworkError: Transport failure or retryable response that outlived
                the retry budget.
        """
        if spec.requires_login and self._authenticator is not None:
            await self._authenticator()

        task = RequestTask(
            spec=spec,
            future=asyncio.get_running_loop().create_future(),
            max_retries=self.policy.max_retries if spec.retry else 0,
            is_retryable=spec.retry_if or self.policy.default_retry_if,
        )

        if task.priority is Priority.IMMEDIATE:
            self._immediate.append(task)
        else:
            self._queue.append(task)

        self._dispatch()
        return await task.future

    async def aclose(self) -> None:
        """Stop pending timers and close the HTTP client."""
        if self._resume_handle is not None:
            self._resume_handle.cancel()
            self._resume_handle = None
        for runner in list(self._runners):
            runner.cancel()
        if self._runners:
            await asyncio.gather(*self._runners, return_exceptions=True)
        for task in (*self._immediate, *self._queue):
            task.future.cancel()
        self._immediate.clear()
        self._queue.clear()
        await self._client.aclose()

    async def __aenter__(self) -> RequestScheduler:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    # =========================================================================
    # Dispatch
    # =========================================================================

    def _dispatch(self) -> None:
        """Start queued tasks while slots are free and no pause is active."""
        while (self._immediate or self._queue) and not self.paused:
            if self._in_flight >= self.max_concurrent:
                break
            task = self._immediate.popleft() if self._immediate else self._queue.popleft()
            if task.future.done():
                # Caller went away while queued
                continue

            self._in_flight += 1
            self.stats.dispatched += 1
            self.stats.max_in_flight = max(self.stats.max_in_flight, self._in_flight)

            runner = asyncio.create_task(self._run(task))
            self._runners.add(runner)
            runner.add_done_callback(self._runners.discard)

    async def _run(self, task: RequestTask) -> None:
        spec = task.spec
        response: FetchResult | None = None
        error: Exception | None = None

        logger.debug(
            "Dispatching request",
            method=spec.method,
            url=spec.url,
            priority=task.priority.value,
            attempt=task.retries_used + 1,
        )

        try:
            response = await self._send(spec)
        except asyncio.CancelledError:
            task.future.cancel()
            raise
        except Exception as e:
            error = e
        finally:
            self._finish_request()

        flagged = response is not None and task.is_retryable(response)

        if error is None and not flagged:
            self._settle(task, result=response)
        elif error is not None and not isinstance(error, (httpx.TransportError, OSError)):
            # Not a network problem; let the caller see it as-is
            self._settle(task, exception=error)
        else:
            retryable = flagged or self.policy.should_retry_exception(error)
            if retryable and task.retries_used < task.max_retries:
                task.retries_used += 1
                self.stats.retries += 1
                delay = self.policy.delay_for(task.retries_used)
                logger.info(
                    "Retrying request",
                    url=spec.url,
                    status=response.status if response is not None else None,
                    error_type=type(error).__name__ if error is not None else None,
                    attempt=task.retries_used,
                    max_retries=task.max_retries,
                    delay_seconds=round(delay, 2),
                )
                self._immediate.appendleft(task)
                self._pause(delay)
            else:
                self.stats.failures += 1
                attempts = task.retries_used + 1
                reason = (
                    f"HTTP {response.status}" if response is not None else str(error) or type(error).__name__
                )
                logger.warning(
                    "Request failed",
                    url=spec.url,
                    reason=reason,
                    attempts=attempts,
                )
                network_error = NetworkError(
                    f"{spec.method} {spec.url} failed after {attempts} attempt(s): {reason}",
                    url=spec.url,
                    attempts=attempts,
                    response=response,
                    last_error=error,
                )
                if error is not None:
                    network_error.__cause__ = error
                self._settle(task, exception=network_error)

        # Dispatch on the next loop turn, after the caller has been woken: a
        # caller holding a time-limited URL gets to queue it as immediate first.
        asyncio.get_running_loop().call_soon(self._dispatch)

    async def _send(self, spec: RequestSpec) -> FetchResult:
        requested_at = datetime.now(UTC)
        response = await self._client.request(
            spec.method,
            spec.url,
            params=spec.params,
            data=spec.data,
            headers=spec.headers,
            follow_redirects=spec.follow_redirects,
        )
        return FetchResult(
            spec.url,
            status=response.status_code,
            headers=dict(response.headers),
            content=response.content,
            final_url=str(response.url),
            redirects=[str(r.headers.get("location", r.url)) for r in response.history],
            method=spec.method,
            requested_at=requested_at,
            encoding=response.charset_encoding,
        )

    def _settle(
        self,
        task: RequestTask,
        *,
        result: FetchResult | None = None,
        exception: BaseException | None = None,
    ) -> None:
        if task.future.done():
            return
        if exception is not None:
            task.future.set_exception(exception)
        else:
            task.future.set_result(result)

    # =========================================================================
    # Cooldowns
    # =========================================================================

    def _finish_request(self) -> None:
        """Release a slot and count the completion toward the next cooldown."""
        self._in_flight -= 1
        self.stats.completed += 1

        if self.sleep_every <= 0:
            return

        self._until_sleep -= 1
        if self._until_sleep <= 0:
            self._until_sleep = self.sleep_every
            self.stats.cooldowns += 1
            logger.debug(
                "Cooling down",
                completed=self.stats.completed,
                sleep_for=self.sleep_for,
            )
            self._pause(self.sleep_for)

    def _pause(self, duration: float) -> None:
        """Hold all dispatching for ``duration`` seconds.

        Overlapping pauses do not stack; the later end time wins.
        """
        loop = asyncio.get_running_loop()
        resume_at = loop.time() + duration

        if self._resume_handle is not None:
            if resume_at <= self._resume_at:
                return
            self._resume_handle.cancel()

        self._resume_at = resume_at
        self._resume_handle = loop.call_at(resume_at, self._resume)

    def _resume(self) -> None:
        self._resume_handle = None
        self._dispatch()
