"""Background queue for best-effort side effects (notifications)."""
import asyncio
from typing import Awaitable, Callable

from talentpay.config import Settings
from talentpay.core.logging import app_logger

SideEffect = Callable[[], Awaitable[None]]


class SideEffectQueue:
    """
    Runs side effects off the request path with bounded retries.

    Tasks are coroutine factories so a failed attempt can be retried with a
    fresh coroutine. The worker starts lazily on the running event loop the
    first time something is enqueued. Tasks that exhaust their retries are
    logged and their names kept in ``failed``.
    """

    def __init__(self, max_retries: int = 3, retry_delay_seconds: float = 1.0):
        self.max_retries = max(1, max_retries)
        self.retry_delay_seconds = retry_delay_seconds
        self.failed: list[str] = []
        self._queue: asyncio.Queue[tuple[str, SideEffect]] | None = None
        self._worker: asyncio.Task | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "SideEffectQueue":
        return cls(
            max_retries=settings.SIDE_EFFECT_MAX_RETRIES,
            retry_delay_seconds=settings.SIDE_EFFECT_RETRY_DELAY_SECONDS,
        )

    def enqueue(self, name: str, task: SideEffect) -> None:
        if self._queue is None:
            self._queue = asyncio.Queue()
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run())
        self._queue.put_nowait((name, task))

    async def drain(self) -> None:
        """Wait until every queued side effect has finished or given up."""
        if self._queue is not None:
            await self._queue.join()

    async def close(self) -> None:
        await self.drain()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

    async def _run(self) -> None:
        while True:
            name, task = await self._queue.get()
            try:
                await self._execute(name, task)
            finally:
                self._queue.task_done()

    async def _execute(self, name: str, task: SideEffect) -> None:
        for attempt in range(1, self.max_retries + 1):
            try:
                await task()
                return
            except Exception as e:
                app_logger.warning(
                    f"Side effect {name} failed (attempt {attempt}/{self.max_retries}): {e}"
                )
                if attempt < self.max_retries:
                    await asyncio.sleep(self.retry_delay_seconds)

        self.failed.append(name)
        app_logger.error(f"Side effect {name} gave up after {self.max_retries} attempts")
