"""wagerd core components."""

from wagerd.core.launcher import CompiledLauncher, InterpreterLauncher, ProcessLauncher, select_launcher
from wagerd.core.orchestrator import Orchestrator
from wagerd.core.scheduler import ScheduledTask, Scheduler, TaskState
from wagerd.core.shutdown import ShutdownCoordinator
from wagerd.core.state import ServicePortMap, ShutdownState, build_port_map
from wagerd.core.supervisor import Supervisor, WorkerHandle

__all__ = [
    "CompiledLauncher",
    "InterpreterLauncher",
    "Orchestrator",
    "ProcessLauncher",
    "ScheduledTask",
    "Scheduler",
    "ServicePortMap",
    "ShutdownCoordinator",
    "ShutdownState",
    "Supervisor",
    "TaskState",
    "WorkerHandle",
    "build_port_map",
    "select_launcher",
]
