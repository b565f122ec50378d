import asyncio
import logging
from typing import Awaitable, Callable

from gems_api.core.config import get_settings

logger = logging.getLogger(__name__)


Cleanup = Callable[[], Awaitable[None]]


class CleanupRunner:
    """Background queue for best-effort storage cleanups.

    At most ``max_parallel`` cleanups run at once. ``stop`` cancels whatever is
    still pending; cleanups never raise into the request that scheduled them.
    """

    def __init__(self, max_parallel: int | None = None) -> None:
        self._max_parallel = max_parallel
        self._slots: asyncio.Semaphore | None = None
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def running(self) -> bool:
        return self._slots is not None

    async def start(self) -> None:
        if self._slots is None:
            limit = self._max_parallel or get_settings().max_parallel_cleanups
            self._slots = asyncio.Semaphore(max(1, limit))

    def submit(self, cleanup: Cleanup) -> None:
        if self._slots is None:
            raise RuntimeError("CleanupRunner not running")
        task = asyncio.get_running_loop().create_task(self._run(self._slots, cleanup))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _run(self, slots: asyncio.Semaphore, cleanup: Cleanup) -> None:
        async with slots:
            try:
                await cleanup()
            except Exception:
                logger.exception("Cleanup task failed")

    async def drain(self) -> None:
        while self._pending:
            await asyncio.wait(set(self._pending))

    async def stop(self) -> None:
        if self._slots is None:
            return
        self._slots = None
        pending = list(self._pending)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._pending.clear()
