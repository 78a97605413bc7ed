"""Periodic and on-demand reconciliation scheduling.

At most one pass runs at a time. A tick or manual trigger that arrives while
a pass is in progress is skipped, not queued. Each tick runs as its own task,
so a pass stuck on a slow upstream never stalls the timer: the following
ticks just find the guard held and skip.
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

from calltrack.reconciler import PassResult

logger = logging.getLogger("call-tracking-scheduler")


class ReconciliationScheduler:
    """Runs reconciliation passes on a fixed interval with an overlap guard."""

    def __init__(
        self,
        run_pass: Callable[[], Awaitable[PassResult]],
        interval_seconds: float = 60,
        run_on_start: bool = True,
    ):
        """Initialize the scheduler.

        Args:
            run_pass: Coroutine function performing one pass.
            interval_seconds: Seconds between ticks.
            run_on_start: Fire a tick immediately when started.
        """
        self._run_pass = run_pass
        self.interval_seconds = interval_seconds
        self.run_on_start = run_on_start

        self._lock = asyncio.Lock()
        self._loop_task: asyncio.Task | None = None
        self._pass_tasks: set[asyncio.Task] = set()

        self.last_result: PassResult | None = None
        self.completed_runs: int = 0
        self.skipped_runs: int = 0
        self.failed_runs: int = 0

    @property
    def is_running(self) -> bool:
        """Whether the periodic loop is active."""
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def pass_in_progress(self) -> bool:
        """Whether a reconciliation pass currently holds the guard."""
        return self._lock.locked()

    async def trigger(self) -> PassResult | None:
        """Run one pass now, or return None if one is already in progress.

        Exceptions raised by the pass propagate to the caller.
        """
        if self._lock.locked():
            self.skipped_runs += 1
            logger.info("Reconciliation already in progress - skipping")
            return None

        async with self._lock:
            result = await self._run_pass()
            self.last_result = result
            self.completed_runs += 1
            return result

    async def start(self) -> None:
        """Start the periodic loop."""
        if self._loop_task is None:
            self._loop_task = asyncio.create_task(self._periodic_run())
            logger.info(
                f"Reconciliation scheduled every {self.interval_seconds}s"
                + (" (running now)" if self.run_on_start else "")
            )

    async def stop(self) -> None:
        """Stop the loop and cancel any pass it started."""
        if self._loop_task:
            self._loop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None

        for task in list(self._pass_tasks):
            task.cancel()
        for task in list(self._pass_tasks):
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._pass_tasks.clear()

    async def _periodic_run(self) -> None:
        """Fire a tick every interval."""
        if self.run_on_start:
            self._spawn_tick()
        while True:
            await asyncio.sleep(self.interval_seconds)
            self._spawn_tick()

    def _spawn_tick(self) -> None:
        task = asyncio.create_task(self._tick())
        self._pass_tasks.add(task)
        task.add_done_callback(self._pass_tasks.discard)

    async def _tick(self) -> None:
        """One scheduled pass; errors are logged so the loop keeps going."""
        try:
            await self.trigger()
        except Exception as e:
            self.failed_runs += 1
            logger.exception(f"Reconciliation pass failed: {e}")
