"""Process supervisor for wagerd."""

from __future__ import annotations

import asyncio
import os
from datetime import datetime
from typing import Callable, Iterable

import psutil
from loguru import logger

from wagerd.core.launcher import ProcessLauncher, WorkerProcess
from wagerd.core.state import ServicePortMap, ShutdownState, build_port_map
from wagerd.models import WorkerConfig


class WorkerHandle:
    """Handle to one managed worker.

    Owns the worker's live process while it runs. ``retry_count`` counts
    unplanned exits since boot and is never reset by a successful restart.
    """

    def __init__(self, config: WorkerConfig):
        self.config = config
        self.process: WorkerProcess | None = None
        self.retry_count = 0
        self.start_count = 0
        self.last_exit_code: int | None = None
        self.started_at: datetime | None = None
        self.launching = False

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def port(self) -> int:
        return self.config.port

    @property
    def max_retries(self) -> int:
        return self.config.max_retries

    @property
    def pid(self) -> int | None:
        """Get the process ID, if running."""
        return self.process.pid if self.process else None

    @property
    def is_running(self) -> bool:
        return self.process is not None

    def terminate(self) -> None:
        """Send SIGTERM to the process."""
        if self.process is not None:
            try:
                self.process.terminate()
            except ProcessLookupError:
                pass

    def kill(self) -> None:
        """Send SIGKILL to the process."""
        if self.process is not None:
            try:
                self.process.kill()
            except ProcessLookupError:
                pass

    def __repr__(self) -> str:
        return (
            f"WorkerHandle({self.name!r}, pid={self.pid}, "
            f"retries={self.retry_count}/{self.max_retries})"
        )


class Supervisor:
    """Starts worker processes, watches them exit and applies the restart policy."""

    def __init__(
        self,
        workers: Iterable[WorkerConfig],
        launcher: ProcessLauncher,
        state: ShutdownState,
        on_fatal: Callable[[str], object] | None = None,
    ):
        """Initialize the supervisor.

        Args:
            workers: Static worker configuration
            launcher: Launcher used to start every worker
            state: Shared shutdown flag
            on_fatal: Called with a reason when a worker exhausts its retries
        """
        self._configs = list(workers)
        self._launcher = launcher
        self._state = state
        self._on_fatal = on_fatal
        self._handles: dict[str, WorkerHandle] = {}
        self._watchers: set[asyncio.Task] = set()

    @property
    def handles(self) -> list[WorkerHandle]:
        return list(self._handles.values())

    @property
    def running_count(self) -> int:
        return sum(1 for h in self._handles.values() if h.is_running)

    def get_handle(self, name: str) -> WorkerHandle | None:
        return self._handles.get(name)

    def port_map(self) -> ServicePortMap:
        """Build the name -> port map from the static worker configuration."""
        return build_port_map(self._configs)

    def set_fatal_handler(self, on_fatal: Callable[[str], object]) -> None:
        self._on_fatal = on_fatal

    # Process Management

    async def initialize_and_start_services(self) -> list[WorkerHandle]:
        """Create one handle per worker and start the auto-start ones.

        Returns every handle, including manually started workers.
        """
        for config in self._configs:
            self._handles[config.name] = WorkerHandle(config)

        for handle in self._handles.values():
            if handle.config.start_manually:
                logger.debug(f"Worker '{handle.name}' is manual-start, skipping")
                continue
            await self.start(handle)

        logger.info("All auto-start services initialized and started")
        return self.handles

    async def start(self, handle: WorkerHandle) -> None:
        """Start a worker if it is not already running.

        Launch failures are logged and fed into the exit path, where they
        count against the worker's retry budget. Failed launches are retried
        in a loop here.
        """
        if handle.is_running or handle.launching:
            logger.info(f"Worker '{handle.name}' is already running")
            return

        env = os.environ.copy()
        env.update(handle.config.env)
        env["PORT"] = str(handle.port)
        env["WAGERD_WORKER"] = handle.name

        while True:
            logger.info(f"Starting worker '{handle.name}' on port {handle.port}...")
            handle.launching = True
            try:
                process = await self._launcher.launch(handle.config, env)
            except OSError as e:
                logger.error(f"Worker '{handle.name}' failed to launch: {e}")
                process = None
            finally:
                handle.launching = False

            if process is not None:
                break
            if not self._on_exit(handle, None):
                return

        handle.process = process
        handle.start_count += 1
        handle.started_at = datetime.now()
        logger.debug(f"Worker '{handle.name}' started (PID {process.pid})")

        if self._state.is_shutting_down:
            # Shutdown began while we were launching
            logger.info(f"Stopping worker '{handle.name}' started during shutdown")
            handle.terminate()

        watcher = asyncio.create_task(self._watch(handle, process), name=f"watch-{handle.name}")
        self._watchers.add(watcher)
        watcher.add_done_callback(self._watchers.discard)

    async def _watch(self, handle: WorkerHandle, process: WorkerProcess) -> None:
        """Wait for a worker process to exit, then apply the exit policy."""
        returncode = await process.wait()
        if handle.process is process and self._on_exit(handle, returncode):
            await self.start(handle)

    def _on_exit(self, handle: WorkerHandle, returncode: int | None) -> bool:
        """Handle a worker exit (normal, signal, crash or failed launch).

        Returns True if the worker should be started again.
        """
        handle.process = None
        handle.last_exit_code = returncode
        logger.info(f"Worker '{handle.name}' exited with code {returncode}")

        if self._state.is_shutting_down:
            return False

        if handle.retry_count < handle.max_retries:
            handle.retry_count += 1
            logger.warning(
                f"Restarting worker '{handle.name}' (retry {handle.retry_count}/{handle.max_retries})..."
            )
            return True

        reason = f"worker '{handle.name}' failed after {handle.max_retries} retries"
        logger.error(f"Worker '{handle.name}' failed after {handle.max_retries} retries. Shutting down all services.")
        if self._on_fatal is not None:
            self._on_fatal(reason)
        return False

    def terminate_all(self) -> int:
        """Send SIGTERM to every live worker. Returns how many were signalled."""
        count = 0
        for handle in self._handles.values():
            if handle.is_running:
                logger.info(f"Stopping worker '{handle.name}'...")
                handle.terminate()
                count += 1
        return count

    def kill_remaining(self) -> int:
        """Send SIGKILL to workers still alive. Returns how many were killed."""
        count = 0
        for handle in self._handles.values():
            if handle.is_running:
                logger.warning(f"Force killing worker '{handle.name}' (PID {handle.pid})")
                handle.kill()
                count += 1
        return count

    async def wait_stopped(self) -> None:
        """Wait for all exit watchers to finish."""
        if self._watchers:
            await asyncio.gather(*list(self._watchers), return_exceptions=True)

    def list_workers(self) -> list[dict]:
        """Get a status summary of every worker."""
        return [
            {
                "name": h.name,
                "port": h.port,
                "pid": h.pid,
                "running": h.is_running,
                "manual": h.config.start_manually,
                "starts": h.start_count,
                "retries": h.retry_count,
                "max_retries": h.max_retries,
                "last_exit_code": h.last_exit_code,
            }
            for h in self._handles.values()
        ]

    # Static Methods

    @staticmethod
    def check_pid(pid: int) -> bool:
        """Check if a process with given PID is running."""
        try:
            process = psutil.Process(pid)
            return process.is_running() and process.status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False
