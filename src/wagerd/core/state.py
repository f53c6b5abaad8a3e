"""Shared runtime state for wagerd components."""

from __future__ import annotations

import asyncio
from types import MappingProxyType
from typing import Iterable, Mapping

from wagerd.models import WorkerConfig

# Worker name -> port, read-only after construction
ServicePortMap = Mapping[str, int]


def build_port_map(workers: Iterable[WorkerConfig]) -> ServicePortMap:
    """Build the read-only name -> port map shared with the scheduler."""
    return MappingProxyType({worker.name: worker.port for worker in workers})


class ShutdownState:
    """Process-wide shutting-down flag.

    Set exactly once. Readers check ``is_shutting_down`` before taking any
    scheduled action and never block on it.
    """

    def __init__(self) -> None:
        self._shutting_down = False
        self._reason: str | None = None
        self._event = asyncio.Event()

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    @property
    def reason(self) -> str | None:
        """Why shutdown was requested, if it was."""
        return self._reason

    def trip(self, reason: str = "") -> bool:
        """Set the flag. Returns True only for the first caller."""
        if self._shutting_down:
            return False
        self._shutting_down = True
        self._reason = reason
        self._event.set()
        return True

    async def wait(self) -> None:
        """Wait until shutdown has been requested."""
        await self._event.wait()

    def __bool__(self) -> bool:
        return self._shutting_down

    def __repr__(self) -> str:
        return f"ShutdownState(shutting_down={self._shutting_down}, reason={self._reason!r})"
