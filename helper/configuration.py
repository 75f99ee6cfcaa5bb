"""
Runner configuration for the adrunner job scheduler.
Values come from explicit arguments or ADRUNNER_* environment variables.
"""

import logging
import os
from dataclasses import dataclass

from .logging import parse_log_level

DEFAULT_MAX_RUNNING_JOBS = 5
DEFAULT_BATCH_SIZE = 10
# Seconds; the spreadsheet host aborts server-side calls after six minutes.
DEFAULT_EXECUTION_LIMIT = 360.0


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got '{raw}'")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got '{raw}'")


@dataclass
class RunnerConfiguration:
    """
    Scheduler configuration.

    :param max_running_jobs: Upper bound on simultaneously running jobs.
    :param batch_size: Rows per job used by run_rows.
    :param execution_limit: Seconds a single remote call may take in LocalInvoker.
    :param tracing: Log every job transition at INFO instead of DEBUG.
    :param log_level: Level used by setup_logging.
    """

    max_running_jobs: int = DEFAULT_MAX_RUNNING_JOBS
    batch_size: int = DEFAULT_BATCH_SIZE
    execution_limit: float = DEFAULT_EXECUTION_LIMIT
    tracing: bool = False
    log_level: int = logging.INFO

    def __post_init__(self):
        if self.max_running_jobs < 1:
            raise ValueError("max_running_jobs must be at least 1")
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.execution_limit <= 0:
            raise ValueError("execution_limit must be positive")

    @classmethod
    def from_env(cls) -> "RunnerConfiguration":
        """Create configuration from environment variables."""
        return cls(
            max_running_jobs=_env_int(
                "ADRUNNER_MAX_RUNNING_JOBS", DEFAULT_MAX_RUNNING_JOBS
            ),
            batch_size=_env_int("ADRUNNER_BATCH_SIZE", DEFAULT_BATCH_SIZE),
            execution_limit=_env_float(
                "ADRUNNER_EXECUTION_LIMIT", DEFAULT_EXECUTION_LIMIT
            ),
            tracing=os.getenv("ADRUNNER_TRACING", "false").lower() == "true",
            log_level=parse_log_level(os.getenv("ADRUNNER_LOG_LEVEL", "INFO")),
        )
