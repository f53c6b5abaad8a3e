"""Fleet-wide shutdown coordination."""

from __future__ import annotations

import asyncio
import os
from typing import Callable

from loguru import logger

from wagerd.core.scheduler import Scheduler
from wagerd.core.state import ShutdownState
from wagerd.core.supervisor import Supervisor

DEFAULT_GRACE_PERIOD = 5.0


class ShutdownCoordinator:
    """Runs the shutdown sequence exactly once.

    Order matters: the scheduler is stopped before workers are signalled,
    so no scheduled call targets a worker mid-teardown. The process exits
    when the grace period ends, whether or not workers have exited.
    """

    def __init__(
        self,
        state: ShutdownState,
        supervisor: Supervisor,
        scheduler: Scheduler | None = None,
        grace_period: float = DEFAULT_GRACE_PERIOD,
        exit_func: Callable[[int], object] = os._exit,
    ):
        self._state = state
        self._supervisor = supervisor
        self._scheduler = scheduler
        self._grace_period = grace_period
        self._exit_func = exit_func
        self._grace_timer: asyncio.TimerHandle | None = None
        self._exit_code = 0
        self.finished = asyncio.Event()

    @property
    def exit_code(self) -> int:
        return self._exit_code

    def set_scheduler(self, scheduler: Scheduler) -> None:
        self._scheduler = scheduler

    def shutdown(self, reason: str = "requested", fatal: bool = False) -> bool:
        """Begin shutdown. Returns False if it was already under way."""
        if not self._state.trip(reason):
            logger.debug(f"Shutdown already in progress, ignoring: {reason}")
            return False

        self._exit_code = 1 if fatal else 0
        logger.info(f"Shutting down all services ({reason})...")

        if self._scheduler is not None:
            self._scheduler.stop()

        self._supervisor.terminate_all()

        loop = asyncio.get_running_loop()
        self._grace_timer = loop.call_later(self._grace_period, self._force_exit)
        return True

    def fatal(self, reason: str) -> bool:
        """Shutdown caused by an unrecoverable fault."""
        return self.shutdown(reason, fatal=True)

    def _force_exit(self) -> None:
        """Grace period over: kill stragglers and exit the process."""
        self._grace_timer = None
        remaining = self._supervisor.kill_remaining()
        if remaining:
            logger.warning(f"{remaining} worker(s) did not exit within {self._grace_period}s")
        logger.info("Shutdown complete.")
        self.finished.set()
        self._exit_func(self._exit_code)
