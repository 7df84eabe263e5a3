"""
Background cleanup of session state

Two asyncio tasks: a regular sweep of expired sessions and stale events, and
a slower memory check that triggers the aggressive sweep. Sweeps run in a
worker thread so they never hold up the event loop.
"""
import asyncio
from typing import Awaitable, Callable, List, Optional, Sequence

from ..core.logging import get_logger
from .session import SessionSecurityManager

logger = get_logger(__name__)


class SessionCleanupScheduler:
    def __init__(
        self,
        sessions: SessionSecurityManager,
        cleanup_interval: float = 300,
        memory_check_interval: float = 1800,
        extra_sweeps: Sequence[Callable[[], Awaitable[object]]] = (),
    ):
        self.sessions = sessions
        self.cleanup_interval = cleanup_interval
        self.memory_check_interval = memory_check_interval
        self.extra_sweeps = list(extra_sweeps)
        self._tasks: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def run_cleanup(self) -> None:
        await asyncio.to_thread(self.sessions.cleanup_expired_sessions)
        for sweep in self.extra_sweeps:
            await sweep()

    async def run_memory_check(self) -> None:
        await asyncio.to_thread(self.sessions.perform_memory_check)

    async def _every(self, interval: float, job: Callable[[], Awaitable[None]], name: str) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"Scheduled {name} failed")

    def start(self) -> None:
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._every(self.cleanup_interval, self.run_cleanup, "session cleanup")),
            asyncio.create_task(
                self._every(self.memory_check_interval, self.run_memory_check, "memory check")
            ),
        ]
        logger.info(
            f"Session cleanup scheduled every {self.cleanup_interval}s, "
            f"memory check every {self.memory_check_interval}s"
        )

    async def stop(self, timeout: Optional[float] = 5) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks, timeout=timeout)
        logger.info("Session cleanup stopped")
