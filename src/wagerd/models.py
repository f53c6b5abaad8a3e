"""Pydantic models for wagerd configuration."""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class DeploymentMode(str, Enum):
    """How worker entry points are executed."""

    AUTO = "auto"  # Compiled if every artifact exists, dev otherwise
    DEV = "dev"  # Run entry points through the Python interpreter
    COMPILED = "compiled"  # Execute prebuilt artifacts


class WorkerConfig(BaseModel):
    """Static configuration of a single worker service."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    entry: str = Field(min_length=1)  # path/to/worker.py or dotted.module
    port: int = Field(gt=0, lt=65536)
    start_manually: bool = False
    max_retries: int = Field(default=3, ge=0)
    env: dict[str, str] = Field(default_factory=dict)
    artifact: str | None = None  # Compiled artifact override

    @property
    def is_module(self) -> bool:
        """Check if the entry point is a dotted module rather than a script path."""
        return not self.entry.endswith(".py") and "/" not in self.entry


class ScheduleTaskConfig(BaseModel):
    """A periodic HTTP trigger against one worker endpoint."""

    model_config = ConfigDict(frozen=True)

    worker: str = Field(min_length=1)
    endpoint: str
    interval_ms: int = Field(gt=0)

    @field_validator("endpoint")
    @classmethod
    def endpoint_is_path(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError(f"endpoint must start with '/': {v!r}")
        return v

    @property
    def interval_seconds(self) -> float:
        return self.interval_ms / 1000

    @property
    def label(self) -> str:
        return f"{self.worker}{self.endpoint}"


class LoggingConfig(BaseModel):
    """Daemon logging configuration."""

    level: str = "INFO"
    file: str | None = None
    rotation: str = "10 MB"
    retention: int = 5


class WagerdConfig(BaseModel):
    """Top-level wagerd configuration."""

    mode: DeploymentMode = DeploymentMode.AUTO
    base_dir: Path = Path(".")
    artifact_dir: Path = Path("dist")
    python: str | None = None  # Interpreter for dev mode (defaults to sys.executable)
    host: str = "localhost"

    warmup_seconds: float = Field(default=5.0, ge=0)
    grace_period_seconds: float = Field(default=5.0, ge=0)
    request_timeout_seconds: float = Field(default=30.0, gt=0)

    workers: list[WorkerConfig] = Field(default_factory=list)
    schedule: list[ScheduleTaskConfig] = Field(default_factory=list)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def check_unique_workers(self) -> "WagerdConfig":
        names: set[str] = set()
        ports: dict[int, str] = {}
        for worker in self.workers:
            if worker.name in names:
                raise ValueError(f"Duplicate worker name '{worker.name}'")
            names.add(worker.name)
            if worker.port in ports:
                raise ValueError(
                    f"Port {worker.port} is assigned to both '{ports[worker.port]}' and '{worker.name}'"
                )
            ports[worker.port] = worker.name
        return self

    def get_worker(self, name: str) -> WorkerConfig | None:
        """Get a worker config by name."""
        for worker in self.workers:
            if worker.name == name:
                return worker
        return None

    def get_auto_start_workers(self) -> list[WorkerConfig]:
        """Get workers that start at boot."""
        return [w for w in self.workers if not w.start_manually]
