"""Request-scoped context carrying the id and the cancellation signal."""

import asyncio
from typing import Any, Awaitable
from uuid import uuid4

from evidence_scout.errors import RequestCancelled


class QueryContext:
    """Cancellation signal for one request.

    ``guard`` runs an awaitable as a tracked task so ``cancel`` can abort
    in-flight upstream calls; they surface as RequestCancelled.
    """

    def __init__(self, request_id: str | None = None):
        self.request_id = request_id or uuid4().hex
        self._cancelled = False
        self._inflight: set[asyncio.Future] = set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        for task in list(self._inflight):
            task.cancel()

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise RequestCancelled()

    async def guard(self, awaitable: Awaitable[Any]) -> Any:
        if self._cancelled:
            # close the coroutine so it is not reported as never awaited
            close = getattr(awaitable, "close", None)
            if close is not None:
                close()
            raise RequestCancelled()

        task = asyncio.ensure_future(awaitable)
        self._inflight.add(task)
        try:
            return await task
        except asyncio.CancelledError:
            if self._cancelled and task.cancelled():
                raise RequestCancelled() from None
            raise
        finally:
            self._inflight.discard(task)
