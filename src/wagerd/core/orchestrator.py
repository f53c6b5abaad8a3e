"""Wires supervisor, scheduler and shutdown together into a running daemon."""

from __future__ import annotations

import asyncio
import os
import signal
import sys
from typing import Any, Callable

import httpx
from loguru import logger

from wagerd.core.launcher import ProcessLauncher, select_launcher
from wagerd.core.scheduler import Scheduler
from wagerd.core.shutdown import ShutdownCoordinator
from wagerd.core.state import ShutdownState
from wagerd.core.supervisor import Supervisor
from wagerd.models import WagerdConfig

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class Orchestrator:
    """Boots the worker fleet and the scheduler, then waits for shutdown."""

    def __init__(
        self,
        config: WagerdConfig,
        launcher: ProcessLauncher | None = None,
        http_client: httpx.AsyncClient | None = None,
        exit_func: Callable[[int], object] = os._exit,
    ):
        self.config = config
        self.state = ShutdownState()
        self.launcher = launcher or select_launcher(config)

        self.supervisor = Supervisor(
            workers=config.workers,
            launcher=self.launcher,
            state=self.state,
        )
        self.scheduler = Scheduler(
            tasks=config.schedule,
            port_map=self.supervisor.port_map(),
            state=self.state,
            host=config.host,
            timeout=config.request_timeout_seconds,
            client=http_client,
        )
        self.coordinator = ShutdownCoordinator(
            state=self.state,
            supervisor=self.supervisor,
            scheduler=self.scheduler,
            grace_period=config.grace_period_seconds,
            exit_func=exit_func,
        )
        self.supervisor.set_fatal_handler(self.coordinator.fatal)

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        if sys.platform == "win32":
            return
        for sig in HANDLED_SIGNALS:
            loop.add_signal_handler(sig, self._on_signal, sig)

    def _remove_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        if sys.platform == "win32":
            return
        for sig in HANDLED_SIGNALS:
            loop.remove_signal_handler(sig)

    def _on_signal(self, sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}")
        self.coordinator.shutdown(f"signal {sig.name}")

    def _on_loop_exception(self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        """Any uncaught error in a callback or task is fatal for the fleet."""
        exc = context.get("exception")
        message = context.get("message", "unhandled error")
        if exc is not None:
            logger.opt(exception=exc).error(f"Uncaught exception: {message}")
        else:
            logger.error(f"Uncaught error: {message}")
        self.coordinator.fatal(f"uncaught exception: {exc or message}")

    async def run(self) -> int:
        """Run until shutdown completes. Returns the exit code."""
        loop = asyncio.get_running_loop()
        previous_handler = loop.get_exception_handler()
        self._install_signal_handlers(loop)
        loop.set_exception_handler(self._on_loop_exception)

        try:
            await self.supervisor.initialize_and_start_services()

            if not self.state.is_shutting_down:
                logger.info(f"Scheduler will start in {self.config.warmup_seconds:g} seconds...")
                try:
                    await asyncio.wait_for(self.state.wait(), timeout=self.config.warmup_seconds)
                except asyncio.TimeoutError:
                    pass

            if not self.state.is_shutting_down:
                self.scheduler.start()

        except Exception as e:
            logger.opt(exception=e).error(f"Orchestrator error: {e}")
            self.coordinator.fatal(f"setup failed: {e}")

        try:
            await self.coordinator.finished.wait()
        finally:
            await self.scheduler.aclose()
            self._remove_signal_handlers(loop)
            loop.set_exception_handler(previous_handler)

        return self.coordinator.exit_code
