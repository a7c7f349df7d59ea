"""
Outbound request governor.

Every upstream call goes through one shared ``RequestGovernor``: calls are
queued, drained in fixed-size concurrent batches with a pause between
batches, and each call is retried on its own by a ``RetryPolicy``.
"""
import asyncio
import logging
import random
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, List, Optional

from .errors import is_rate_limit_error, is_retryable

logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[Any]]
Sleep = Callable[[float], Awaitable[Any]]


def _default_jitter() -> float:
    # uniform in [0, 1) seconds
    return random.random()


class RetryPolicy:
    """Retry an async operation with backoff.

    Rate-limited failures wait ``base_delay * 2**attempt + jitter``; other
    failures wait a flat ``base_delay``. ``max_retries`` is the total number
    of attempts, after which the last error is raised.
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 2.0,
        is_rate_limited: Callable[[BaseException], bool] = is_rate_limit_error,
        should_retry: Callable[[BaseException], bool] = is_retryable,
        sleep: Sleep = asyncio.sleep,
        jitter: Callable[[], float] = _default_jitter,
    ):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.is_rate_limited = is_rate_limited
        self.should_retry = should_retry
        self._sleep = sleep
        self._jitter = jitter

    def backoff_delay(self, attempt: int, error: BaseException) -> float:
        if self.is_rate_limited(error):
            return self.base_delay * (2 ** attempt) + self._jitter()
        return self.base_delay

    async def run(self, operation: Operation) -> Any:
        for attempt in range(self.max_retries):
            try:
                return await operation()
            except Exception as e:
                if attempt == self.max_retries - 1 or not self.should_retry(e):
                    raise
                delay = self.backoff_delay(attempt, e)
                if self.is_rate_limited(e):
                    logger.info("Rate limited, retrying in %dms...", round(delay * 1000))
                else:
                    logger.debug("Attempt %d failed (%s), retrying in %.2fs", attempt + 1, e, delay)
                await self._sleep(delay)
        # unreachable: the last attempt either returns or raises
        raise RuntimeError("Max retries exceeded")


@dataclass
class QueuedCall:
    operation: Operation
    future: "asyncio.Future[Any]"


class RequestGovernor:
    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        batch_size: int = 5,
        batch_delay: float = 0.2,
        sleep: Sleep = asyncio.sleep,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.policy = policy or RetryPolicy()
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self._sleep = sleep
        self._queue: Deque[QueuedCall] = deque()
        self._draining = False
        self._in_flight: List[QueuedCall] = []
        self._drain_task: Optional["asyncio.Task[None]"] = None

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def draining(self) -> bool:
        return self._draining

    def submit(self, operation: Operation) -> "asyncio.Future[Any]":
        """Queue ``operation``; the returned future settles with its outcome."""
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self._queue.append(QueuedCall(operation, future))
        if not self._draining:
            self._draining = True
            self._drain_task = loop.create_task(self._drain())
        return future

    async def _drain(self) -> None:
        try:
            while self._queue:
                count = min(self.batch_size, len(self._queue))
                batch = [self._queue.popleft() for _ in range(count)]
                self._in_flight = batch
                await asyncio.gather(*(self._execute(call) for call in batch))
                self._in_flight = []
                if self._queue:
                    await self._sleep(self.batch_delay)
        finally:
            self._draining = False

    async def _execute(self, call: QueuedCall) -> None:
        try:
            result = await self.policy.run(call.operation)
        except Exception as e:
            if not call.future.done():
                call.future.set_exception(e)
        else:
            if not call.future.done():
                call.future.set_result(result)

    async def aclose(self) -> None:
        task, self._drain_task = self._drain_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        abandoned = self._in_flight + list(self._queue)
        self._in_flight = []
        self._queue.clear()
        for call in abandoned:
            if not call.future.done():
                call.future.cancel()
        self._draining = False
