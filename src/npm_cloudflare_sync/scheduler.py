"""
Scheduler module for the sync service.

This module provides a fixed-delay periodic task: each run is awaited to
completion before the next delay starts, and a single-flight guard skips
any run requested while another one is still in flight.
"""

import asyncio
from typing import Awaitable, Callable, Optional

from .enums import LogLevel
from .sync_logger import StructuredLogger


class PeriodicTask:
    """
    Runs an async callback repeatedly with a fixed delay between runs.

    Exceptions raised by the callback are logged and the loop continues,
    except for the types listed in fatal_errors, which end the loop and
    are re-raised from wait().
    """

    COMPONENT = "Scheduler"

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        callback: Callable[[], Awaitable[None]],
        logger: Optional[StructuredLogger] = None,
        fatal_errors: tuple = (),
    ) -> None:
        """
        Initialize the task.

        Args:
            name: Name used in log messages
            interval_seconds: Delay between the end of one run and the next
            callback: Async function to call on every tick
            logger: Optional logger
            fatal_errors: Exception types that stop the loop
        """
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")

        self._name = name
        self._interval = interval_seconds
        self._callback = callback
        self._logger = logger
        self._fatal_errors = tuple(fatal_errors)
        self._task: Optional[asyncio.Task] = None
        self._in_flight = False
        self._runs = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def runs(self) -> int:
        """Number of completed runs."""
        return self._runs

    def is_running(self) -> bool:
        """Check if the periodic loop is active."""
        return self._task is not None and not self._task.done()

    async def run_once(self) -> bool:
        """
        Run the callback once unless a run is already in flight.

        Returns:
            False if the run was skipped by the single-flight guard
        """
        if self._in_flight:
            self._log(LogLevel.WARN, f"Skipping {self._name} run, previous run still in flight", {})
            return False

        self._in_flight = True
        try:
            await self._callback()
        except self._fatal_errors:
            raise
        except Exception as e:
            self._log(LogLevel.ERROR, f"Error in {self._name} run", {
                "error": str(e),
                "error_type": type(e).__name__,
            })
        finally:
            self._in_flight = False
            self._runs += 1
        return True

    def start(self, run_immediately: bool = False) -> asyncio.Task:
        """
        Start the periodic loop on the running event loop.

        Args:
            run_immediately: Run the callback before the first delay
        """
        if self.is_running():
            return self._task

        self._task = asyncio.create_task(
            self._loop(run_immediately), name=f"periodic-{self._name}"
        )
        self._log(LogLevel.DEBUG, f"Started {self._name} every {self._interval}s", {})
        return self._task

    async def _loop(self, run_immediately: bool) -> None:
        if run_immediately:
            await self.run_once()
        while True:
            await asyncio.sleep(self._interval)
            await self.run_once()

    def stop(self) -> None:
        """Cancel the loop. Safe to call more than once."""
        # From inside the callback the loop ends by raising instead
        if self._task is asyncio.current_task():
            return
        if self._task is not None and not self._task.done():
            self._task.cancel()
            self._log(LogLevel.DEBUG, f"Stopped {self._name}", {})

    async def wait(self) -> None:
        """
        Wait for the loop to end.

        Returns normally when the loop was cancelled; re-raises a fatal
        error that ended it.
        """
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)
