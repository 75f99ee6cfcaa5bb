"""
Model package for adrunner.

Contains the data models of a run: jobs, batch descriptors and run state.
"""

from .job import Job, JobStatus
from .batch_descriptor import BatchDescriptor, new_batch_descriptors
from .job_store import JobStore
from .run_state import RunState, RunnerStatus
from .options_on_error import OnError, RetryBackoff

__all__ = [
    # Job related
    "Job",
    "JobStatus",
    "JobStore",
    # Batches
    "BatchDescriptor",
    "new_batch_descriptors",
    # Run state
    "RunState",
    "RunnerStatus",
    # Options
    "OnError",
    "RetryBackoff",
]
