"""
agentcron: schedule agent runs with the OS's own scheduler (launchd / systemd).

Public API:
    from agentcron import SchedulerService, AgentCronConfig, Job
"""

__version__ = "0.1.0"

# Core
from agentcron.core.config import AgentCronConfig
from agentcron.core.events import Event, EventType
from agentcron.core.types import OperationResult, RunStatus

# Scheduler
from agentcron.scheduler.job import Job, RunSpec
from agentcron.scheduler.service import SchedulerService

__all__ = [
    # Core
    "AgentCronConfig",
    "Event",
    "EventType",
    "OperationResult",
    "RunStatus",
    # Scheduler
    "Job",
    "RunSpec",
    "SchedulerService",
]
