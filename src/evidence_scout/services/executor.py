"""
Rate-limited executor for outbound LLM calls.

A single process-wide instance serializes calls so the provider never sees
more than ``max_concurrent`` requests in flight, paces them after 429s and
transparently retries tasks flagged ``retry_on_429``.

All counter mutations happen synchronously between awaits on the event loop,
so no lock is needed.
"""

import asyncio
import collections
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from pydantic import BaseModel

from evidence_scout.config import Settings

logger = logging.getLogger(__name__)

# consecutive 429s that trigger a full pause
PAUSE_THRESHOLD = 3
# backoff exponent cap; max_delay binds long before this
_MAX_BACKOFF_EXPONENT = 16


class ExecutorConfig(BaseModel):
    """Pacing knobs. Durations are in seconds."""

    max_concurrent: int = 2
    base_delay: float = 1.0
    max_delay: float = 60.0
    backoff_factor: float = 2.0
    recovery_time: float = 90.0
    max_pause: float = 120.0
    debug: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "ExecutorConfig":
        return cls(
            max_concurrent=settings.executor_max_concurrent,
            base_delay=settings.executor_base_delay,
            max_delay=settings.executor_max_delay,
            backoff_factor=settings.executor_backoff_factor,
            recovery_time=settings.executor_recovery_time,
            debug=settings.executor_debug,
        )


@dataclass
class ExecutorTask:
    fn: Callable[[], Awaitable[Any]]
    retry_on_429: bool
    enqueued_at: float
    future: asyncio.Future = field(repr=False)
    attempts: int = 0
    # set when the caller stops waiting; never invoked or re-enqueued after
    abandoned: bool = False


def is_rate_limited(exc: BaseException) -> bool:
    return getattr(exc, "status_code", None) == 429


class RateLimitedExecutor:
    """FIFO queue plus a concurrency window with 429-aware backoff."""

    def __init__(
        self,
        config: ExecutorConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or ExecutorConfig()
        self._clock = clock
        self._queue: collections.deque[ExecutorTask] = collections.deque()
        self._active = 0
        self._workers: set[asyncio.Task] = set()
        self._pause_handle: asyncio.TimerHandle | None = None

        self.consecutive_errors = 0
        self.last_rate_limit_hit: float | None = None
        self.paused = False

    # -- Introspection ---------------------------------------------------------

    @property
    def active(self) -> int:
        return self._active

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def is_throttling(self) -> bool:
        return self.consecutive_errors > 0

    def stats(self) -> dict[str, Any]:
        return {
            "active": self._active,
            "pending": len(self._queue),
            "consecutiveErrors": self.consecutive_errors,
            "paused": self.paused,
            "currentDelay": round(self.current_delay(), 3),
        }

    def current_delay(self) -> float:
        """Delay before the next invocation, in seconds."""
        cfg = self.config
        exponent = min(self.consecutive_errors, _MAX_BACKOFF_EXPONENT)
        delay = cfg.base_delay * (cfg.backoff_factor**exponent)
        if self.last_rate_limit_hit is not None:
            remaining = cfg.recovery_time - (self._clock() - self.last_rate_limit_hit)
            if remaining > 0:
                delay = max(delay, remaining / 2)
        return min(delay, cfg.max_delay)

    # -- Submission ------------------------------------------------------------

    async def submit(
        self, fn: Callable[[], Awaitable[Any]], *, retry_on_429: bool = True
    ) -> Any:
        """Run ``fn`` once a slot is free and return its result.

        Cancelling the awaiting coroutine removes a queued task; a task that is
        already running finishes its attempt but is not retried.
        """
        loop = asyncio.get_running_loop()
        task = ExecutorTask(
            fn=fn,
            retry_on_429=retry_on_429,
            enqueued_at=self._clock(),
            future=loop.create_future(),
        )
        self._queue.append(task)
        self._schedule()
        try:
            return await task.future
        except asyncio.CancelledError:
            self._drain(task)
            raise

    def _drain(self, task: ExecutorTask) -> None:
        task.abandoned = True
        try:
            self._queue.remove(task)
        except ValueError:
            pass
        task.future.cancel()

    # -- Scheduling ------------------------------------------------------------

    def _schedule(self) -> None:
        while (
            not self.paused
            and self._active < self.config.max_concurrent
            and self._queue
        ):
            task = self._queue.popleft()
            if task.abandoned or task.future.done():
                continue
            self._active += 1
            worker = asyncio.get_running_loop().create_task(self._run(task))
            self._workers.add(worker)
            worker.add_done_callback(self._workers.discard)

    async def _run(self, task: ExecutorTask) -> None:
        try:
            delay = self.current_delay()
            if delay > 0:
                if self.config.debug:
                    logger.debug(
                        "Executor sleeping %.2fs (consecutive_errors=%d)",
                        delay,
                        self.consecutive_errors,
                    )
                await asyncio.sleep(delay)
            if task.abandoned or task.future.done():
                return

            task.attempts += 1
            try:
                result = await task.fn()
            except Exception as exc:
                self._on_error(task, exc)
            else:
                self.consecutive_errors = max(0, self.consecutive_errors - 1)
                if not task.future.done():
                    task.future.set_result(result)
        except asyncio.CancelledError:
            task.future.cancel()
            raise
        finally:
            self._active -= 1
            self._schedule()

    def _on_error(self, task: ExecutorTask, exc: Exception) -> None:
        if is_rate_limited(exc):
            self.consecutive_errors += 1
            self.last_rate_limit_hit = self._clock()
            logger.warning(
                "Upstream rate limit hit (consecutive=%d, attempt=%d)",
                self.consecutive_errors,
                task.attempts,
            )
            if self.consecutive_errors >= PAUSE_THRESHOLD:
                self._pause()
            if task.retry_on_429 and not (task.abandoned or task.future.done()):
                self._queue.appendleft(task)
                return

        if not task.future.done():
            task.future.set_exception(exc)

    def _pause(self) -> None:
        if self.paused:
            return
        duration = min(2 * self.config.recovery_time, self.config.max_pause)
        logger.warning("Executor paused for %.1fs after repeated 429s", duration)
        self.paused = True
        self._pause_handle = asyncio.get_running_loop().call_later(duration, self._resume)

    def _resume(self) -> None:
        logger.info("Executor resumed")
        self.paused = False
        self._pause_handle = None
        self._schedule()

    async def close(self) -> None:
        """Cancel the pause timer and any running workers."""
        if self._pause_handle is not None:
            self._pause_handle.cancel()
            self._pause_handle = None
        self.paused = False
        for task in self._queue:
            task.abandoned = True
            task.future.cancel()
        self._queue.clear()
        workers = list(self._workers)
        for worker in workers:
            worker.cancel()
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)
