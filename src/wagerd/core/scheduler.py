"""Recurring HTTP task scheduler for wagerd."""

from __future__ import annotations

import asyncio
from datetime import datetime
from enum import Enum
from typing import Iterable

import httpx
from loguru import logger

from wagerd.core.state import ServicePortMap, ShutdownState
from wagerd.models import ScheduleTaskConfig


class TaskState(str, Enum):
    """Lifecycle state of a scheduled task."""

    IDLE = "idle"  # Not started yet
    EXECUTING = "executing"  # HTTP call in flight, no timer
    ARMED = "armed"  # Waiting for the next run
    STOPPED = "stopped"  # Terminal


class ScheduledTask:
    """Runtime state of one periodic job."""

    def __init__(self, config: ScheduleTaskConfig):
        self.config = config
        self.state = TaskState.IDLE
        self.runner: asyncio.Task | None = None
        self.runs = 0
        self.failures = 0
        self.last_status: int | None = None
        self.last_started_at: datetime | None = None
        self.last_finished_at: datetime | None = None

    @property
    def worker(self) -> str:
        return self.config.worker

    @property
    def endpoint(self) -> str:
        return self.config.endpoint

    @property
    def interval_ms(self) -> int:
        return self.config.interval_ms

    @property
    def label(self) -> str:
        return self.config.label

    @property
    def has_pending_timer(self) -> bool:
        return self.state == TaskState.ARMED

    def __repr__(self) -> str:
        return f"ScheduledTask({self.label!r}, every={self.interval_ms}ms, state={self.state.value})"


class Scheduler:
    """Fixed-delay scheduler that triggers worker endpoints over HTTP.

    Each task runs as its own loop: execute, wait for completion, sleep
    ``interval_ms``, repeat. Slow calls push later runs back instead of
    overlapping them. Different tasks run concurrently.
    """

    def __init__(
        self,
        tasks: Iterable[ScheduleTaskConfig | ScheduledTask],
        port_map: ServicePortMap,
        state: ShutdownState,
        host: str = "localhost",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the scheduler.

        Args:
            tasks: Task configs (or prebuilt ScheduledTask objects)
            port_map: Worker name -> port
            state: Shared shutdown flag
            host: Host the workers listen on
            timeout: Per-request timeout in seconds
            client: HTTP client to use; one is created (and owned) if omitted
        """
        self._tasks = [t if isinstance(t, ScheduledTask) else ScheduledTask(t) for t in tasks]
        self._port_map = port_map
        self._state = state
        self._host = host
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._running = False
        self._stopped = False

    @property
    def tasks(self) -> list[ScheduledTask]:
        return list(self._tasks)

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running

    def _halted(self) -> bool:
        return self._stopped or self._state.is_shutting_down

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def execute(self, task: ScheduledTask) -> bool:
        """Run one execution of a task. Returns True on a 2xx response.

        Failures are logged and never raised.
        """
        if self._state.is_shutting_down:
            return False

        task.runs += 1
        port = self._port_map.get(task.worker)
        if port is None:
            task.failures += 1
            logger.error(f"Scheduled task error: worker '{task.worker}' not found")
            return False

        url = f"http://{self._host}:{port}{task.endpoint}"
        task.last_started_at = datetime.now()

        try:
            logger.info(f"Executing scheduled task: GET {url}")
            response = await self._get_client().get(url)
        except httpx.TimeoutException:
            task.failures += 1
            logger.error(f"Scheduled task timed out: {url}")
            return False
        except httpx.HTTPError as e:
            task.failures += 1
            logger.error(f"Scheduled task failed: {url} - {e}")
            return False
        except Exception as e:
            task.failures += 1
            logger.error(f"Scheduled task error for {task.label}: {e}")
            return False
        finally:
            task.last_finished_at = datetime.now()

        task.last_status = response.status_code
        if not response.is_success:
            task.failures += 1
            logger.error(f"Scheduled task error: {response.status_code} {response.reason_phrase} for {url}")
            return False

        logger.info(f"Scheduled task completed: {url} - Status: {response.status_code}")
        return True

    async def schedule_recurring(self, task: ScheduledTask) -> None:
        """Run a task until the scheduler stops or shutdown begins."""
        try:
            while not self._halted():
                task.state = TaskState.EXECUTING
                await self.execute(task)

                if self._halted():
                    break

                task.state = TaskState.ARMED
                await asyncio.sleep(task.config.interval_seconds)
        finally:
            task.state = TaskState.STOPPED
            task.runner = None

    def start(self) -> None:
        """Start every task. The first run of each is immediate.

        Must be called from within the running event loop.
        """
        if self._running:
            logger.warning("Scheduler is already running")
            return
        if any(task.runner is not None for task in self._tasks):
            # A previous stop() left an execution in flight; one runner per task
            logger.warning("Scheduler is still stopping, await wait_stopped() before restarting")
            return

        self._running = True
        self._stopped = False
        logger.info(f"Starting scheduler with {len(self._tasks)} tasks")

        for task in self._tasks:
            logger.info(f"Scheduling task: {task.label} every {task.interval_ms}ms")
            task.runner = asyncio.create_task(self.schedule_recurring(task), name=f"task-{task.label}")

    def stop(self) -> None:
        """Cancel every pending timer.

        In-flight executions finish on their own; they will not rearm.
        """
        logger.info("Stopping scheduled tasks...")
        self._stopped = True
        self._running = False

        for task in self._tasks:
            if task.has_pending_timer and task.runner is not None:
                task.runner.cancel()
                task.state = TaskState.STOPPED
                logger.info(f"Stopped scheduled task: {task.label}")

    async def wait_stopped(self) -> None:
        """Wait for all task loops to exit."""
        runners = [t.runner for t in self._tasks if t.runner is not None]
        if runners:
            await asyncio.gather(*runners, return_exceptions=True)

    async def aclose(self) -> None:
        """Close the HTTP client if the scheduler created it."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
