"""Cancellable, reschedulable delayed task used to debounce pushes."""

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class DelayedTask:
    """Run an async action once a quiet period has elapsed.

    Every ``schedule()`` restarts the quiet period, so a burst of calls
    collapses into a single run. Once the quiet period is over the action
    is detached: a later ``schedule()`` opens a fresh window and never
    cancels an action that is already running.
    """

    def __init__(
        self,
        action: Callable[[], Awaitable[None]],
        delay: float,
        sleep: Sleep = asyncio.sleep,
        name: str = "delayed-task",
    ):
        """Initialize the delayed task.

        Args:
            action: Coroutine function to run after the quiet period.
            delay: Quiet period in seconds.
            sleep: Awaitable sleep; tests inject a manually advanced clock.
            name: Name used for logging and asyncio task names.
        """
        self._action = action
        self.delay = delay
        self._sleep = sleep
        self.name = name
        self._waiter: asyncio.Task | None = None
        self._running: set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        """Whether a run is waiting for its quiet period to end."""
        return self._waiter is not None and not self._waiter.done()

    @property
    def running(self) -> bool:
        """Whether a detached action is currently executing."""
        return bool(self._running)

    def schedule(self) -> None:
        """(Re)start the quiet period.

        Raises:
            RuntimeError: If called outside a running event loop.
        """
        loop = asyncio.get_running_loop()
        self.cancel()
        self._waiter = loop.create_task(self._wait_then_run(), name=self.name)
        logger.debug(f"{self.name} scheduled in {self.delay}s")

    def cancel(self) -> bool:
        """Cancel a pending run. A running action is left alone.

        Returns:
            True if a pending run was cancelled.
        """
        if self.pending:
            self._waiter.cancel()
            self._waiter = None
            return True
        self._waiter = None
        return False

    async def flush(self) -> bool:
        """Run a pending action now instead of waiting.

        Returns:
            True if an action was pending and has been run.
        """
        if not self.cancel():
            return False
        await self._run()
        return True

    async def wait(self) -> None:
        """Wait until no run is pending or executing."""
        while self.pending or self._running:
            if self.pending:
                waiter = self._waiter
                try:
                    await asyncio.shield(waiter)
                except asyncio.CancelledError:
                    # Rescheduled underneath us; wait on the new window
                    if not waiter.cancelled():
                        raise
            if self._running:
                await asyncio.gather(*self._running, return_exceptions=True)

    async def _wait_then_run(self) -> None:
        await self._sleep(self.delay)

        # Quiet period over: detach so a reschedule layers a new window
        current = asyncio.current_task()
        if self._waiter is current:
            self._waiter = None
        self._running.add(current)
        try:
            await self._run()
        finally:
            self._running.discard(current)

    async def _run(self) -> None:
        try:
            await self._action()
        except Exception as e:
            logger.error(f"{self.name} failed: {e}", exc_info=True)
