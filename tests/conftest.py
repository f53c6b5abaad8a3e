"""Shared fixtures for wagerd tests."""

import pytest
from loguru import logger

from wagerd.models import ScheduleTaskConfig, WorkerConfig


@pytest.fixture
def log_messages():
    """Capture loguru output as (level, message) pairs."""
    messages: list[tuple[str, str]] = []
    handler_id = logger.add(
        lambda m: messages.append((m.record["level"].name, m.record["message"])),
        level="DEBUG",
    )
    yield messages
    logger.remove(handler_id)


@pytest.fixture
def make_worker():
    """Build WorkerConfig objects with sensible defaults."""
    ports = iter(range(3100, 3200))

    def _make(name: str, **kwargs) -> WorkerConfig:
        kwargs.setdefault("entry", f"workers/{name}.py")
        kwargs.setdefault("port", next(ports))
        return WorkerConfig(name=name, **kwargs)

    return _make


@pytest.fixture
def make_task():
    def _make(worker: str, endpoint: str = "/run", interval_ms: int = 50) -> ScheduleTaskConfig:
        return ScheduleTaskConfig(worker=worker, endpoint=endpoint, interval_ms=interval_ms)

    return _make
