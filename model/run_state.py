"""
Run state model for the adrunner job scheduler.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from .job import Job
from .job_store import JobStore


class RunnerStatus:
    IDLE = "IDLE"
    RUNNING = "RUNNING"


ProgressCallback = Callable[[Job], Any]


@dataclass
class RunState:
    """
    State of one run. A new RunState replaces the previous one whenever a run starts,
    so nothing from an earlier run (ids, statuses, callbacks) leaks into the next.
    """

    jobs: JobStore = field(default_factory=JobStore)
    command: str = ""
    max_running_jobs: int = 1
    status: str = RunnerStatus.IDLE
    on_progress: Optional[ProgressCallback] = None
    completion: Optional["asyncio.Future[List[Job]]"] = None

    @property
    def is_running(self) -> bool:
        return self.status == RunnerStatus.RUNNING
