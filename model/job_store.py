"""
In-memory job store for one run.
"""

from typing import Dict, Iterator, List, Optional

from .job import Job, JobStatus


class JobStore:
    """
    Ordered mapping from job id to job record.
    Insertion order is the FIFO admission order of the run.
    """

    def __init__(self, jobs: Optional[List[Job]] = None):
        self._jobs: Dict[int, Job] = {}
        for job in jobs or []:
            self.add(job)

    def add(self, job: Job) -> None:
        """
        :raises ValueError: If the job has no id or the id is already stored.
        """
        if job.id is None:
            raise ValueError("job must have an id before it is stored")
        if job.id in self._jobs:
            raise ValueError(f"duplicate job id: {job.id}")
        self._jobs[job.id] = job

    def get(self, job_id: int) -> Optional[Job]:
        return self._jobs.get(job_id)

    def replace(self, job: Job) -> None:
        """Replace the stored record with the same id, keeping its position."""
        if job.id not in self._jobs:
            raise KeyError(f"unknown job id: {job.id}")
        self._jobs[job.id] = job

    def pending(self) -> List[Job]:
        return [j for j in self._jobs.values() if j.status == JobStatus.PENDING]

    def running_count(self) -> int:
        return sum(1 for j in self._jobs.values() if j.status == JobStatus.RUNNING)

    def has_outstanding(self) -> bool:
        """True while any job is PENDING or RUNNING."""
        return any(not j.is_terminal for j in self._jobs.values())

    def all(self) -> List[Job]:
        return list(self._jobs.values())

    def __len__(self) -> int:
        return len(self._jobs)

    def __iter__(self) -> Iterator[Job]:
        return iter(list(self._jobs.values()))
