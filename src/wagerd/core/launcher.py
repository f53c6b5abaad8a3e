"""Worker process launchers.

A launcher turns a WorkerConfig into a running OS process. The deployment
mode is resolved once, at startup, by ``select_launcher``; the supervisor
only ever talks to the resulting launcher.
"""

from __future__ import annotations

import asyncio
import os
import sys
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, Protocol

from loguru import logger

from wagerd.models import DeploymentMode, WagerdConfig, WorkerConfig


class WorkerProcess(Protocol):
    """The subset of ``asyncio.subprocess.Process`` the supervisor relies on."""

    pid: int
    returncode: int | None

    async def wait(self) -> int: ...

    def terminate(self) -> None: ...

    def kill(self) -> None: ...


class ProcessLauncher(ABC):
    """Launches worker processes."""

    mode: DeploymentMode

    def __init__(self, base_dir: Path | None = None):
        self.base_dir = Path(base_dir) if base_dir else Path.cwd()

    @abstractmethod
    def command_for(self, worker: WorkerConfig) -> list[str]:
        """Build the argv used to run a worker."""

    async def launch(self, worker: WorkerConfig, env: dict[str, str]) -> WorkerProcess:
        """Start the worker process.

        Stdio is inherited so worker output lands in the daemon's stream.

        Raises:
            OSError: If the executable cannot be started
        """
        cmd = self.command_for(worker)
        logger.debug(f"Launching '{worker.name}' ({self.mode.value}): {' '.join(cmd)}")
        return await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(self.base_dir),
            env=env,
            start_new_session=True,  # Own process group, signals come from us
        )


class InterpreterLauncher(ProcessLauncher):
    """Runs entry points directly through the Python interpreter (dev mode)."""

    mode = DeploymentMode.DEV

    def __init__(self, base_dir: Path | None = None, python: str | None = None):
        super().__init__(base_dir)
        self.python = python or sys.executable

    def command_for(self, worker: WorkerConfig) -> list[str]:
        if worker.is_module:
            return [self.python, "-m", worker.entry]
        return [self.python, str(self.base_dir / worker.entry)]


class CompiledLauncher(ProcessLauncher):
    """Executes prebuilt worker artifacts (e.g. PyInstaller one-file builds)."""

    mode = DeploymentMode.COMPILED

    def __init__(self, base_dir: Path | None = None, artifact_dir: Path | None = None):
        super().__init__(base_dir)
        artifact_dir = Path(artifact_dir) if artifact_dir else Path("dist")
        self.artifact_dir = artifact_dir if artifact_dir.is_absolute() else self.base_dir / artifact_dir

    def artifact_path(self, worker: WorkerConfig) -> Path:
        """Get the compiled artifact for a worker."""
        if worker.artifact:
            path = Path(worker.artifact)
            return path if path.is_absolute() else self.base_dir / path

        stem = worker.entry.rsplit(".", 1)[-1] if worker.is_module else Path(worker.entry).stem
        suffix = ".exe" if sys.platform == "win32" else ""
        return self.artifact_dir / f"{stem}{suffix}"

    def has_artifact(self, worker: WorkerConfig) -> bool:
        path = self.artifact_path(worker)
        return path.is_file() and os.access(path, os.X_OK)

    def command_for(self, worker: WorkerConfig) -> list[str]:
        return [str(self.artifact_path(worker))]


def select_launcher(config: WagerdConfig, workers: Iterable[WorkerConfig] | None = None) -> ProcessLauncher:
    """Pick the launcher for this run from the deployment mode.

    In AUTO mode, compiled artifacts are used only if every worker has one;
    a partial build falls back to dev mode for the whole fleet.
    """
    workers = list(config.workers if workers is None else workers)
    compiled = CompiledLauncher(base_dir=config.base_dir, artifact_dir=config.artifact_dir)
    interpreter = InterpreterLauncher(base_dir=config.base_dir, python=config.python)

    if config.mode == DeploymentMode.COMPILED:
        launcher: ProcessLauncher = compiled
    elif config.mode == DeploymentMode.DEV:
        launcher = interpreter
    else:
        missing = [w.name for w in workers if not compiled.has_artifact(w)]
        if workers and not missing:
            launcher = compiled
        else:
            if workers:
                logger.debug(f"No compiled artifact for: {', '.join(missing)}")
            launcher = interpreter

    logger.info(f"Using {launcher.mode.value} launcher (base dir: {launcher.base_dir})")
    return launcher
