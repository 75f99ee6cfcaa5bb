"""
Job model for the adrunner job scheduler.

A job is one unit of schedulable work. It travels to the remote side as a flat
JSON object: the reserved keys below plus the caller-defined payload fields.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


class JobStatus:
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETE = "COMPLETE"
    ERROR = "ERROR"
    CANCELLED = "CANCELLED"

    TERMINAL = frozenset({COMPLETE, ERROR, CANCELLED})


RESERVED_KEYS = ("id", "status", "started_at", "ended_at", "error")


@dataclass
class Job:
    """
    Job represents one partition of a run.

    ``payload`` holds the opaque caller-defined part (for row batches
    ``start_row`` and ``end_row``) and any annotations the remote side adds.
    """

    id: Optional[int] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    status: str = JobStatus.PENDING
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in JobStatus.TERMINAL

    @property
    def elapsed(self) -> Optional[float]:
        """Seconds between started_at and ended_at, None while either is unknown."""
        if self.started_at is None or self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()

    def copy(self) -> "Job":
        """Return a copy that does not share the payload dict."""
        return Job(
            id=self.id,
            payload=dict(self.payload),
            status=self.status,
            started_at=self.started_at,
            ended_at=self.ended_at,
            error=self.error,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert job to its flat wire dictionary."""
        data: Dict[str, Any] = dict(self.payload)
        data["id"] = self.id
        data["status"] = self.status
        data["started_at"] = self.started_at.isoformat() if self.started_at else None
        data["ended_at"] = self.ended_at.isoformat() if self.ended_at else None
        data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        """
        Create job from a flat wire dictionary.
        Every key that is not reserved ends up in the payload.

        :raises ValueError: If id is present but not an integer, or a timestamp
            is not an ISO string.
        """
        job_id = data.get("id")
        if job_id is not None and (
            isinstance(job_id, bool) or not isinstance(job_id, int)
        ):
            raise ValueError(f"job id must be an integer, got {job_id!r}")

        job = cls(id=job_id)
        job.payload = {k: v for k, v in data.items() if k not in RESERVED_KEYS}
        job.status = data.get("status") or JobStatus.PENDING
        job.started_at = _parse_timestamp(data, "started_at")
        job.ended_at = _parse_timestamp(data, "ended_at")
        if data.get("error"):
            job.error = str(data["error"])
        return job

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_json(cls, json_str: str) -> "Job":
        """
        Create job from JSON string.

        :raises ValueError: If the string is not a JSON object describing a job.
        """
        data = json.loads(json_str)
        if not isinstance(data, dict):
            raise ValueError(f"job payload must be a JSON object, got {type(data).__name__}")
        return cls.from_dict(data)


def _parse_timestamp(data: Dict[str, Any], key: str) -> Optional[datetime]:
    """
    :raises ValueError: If the value is set but not an ISO 8601 string.
    """
    value = data.get(key)
    if not value:
        return None
    if not isinstance(value, str):
        raise ValueError(f"invalid {key}: expected ISO string, got {value!r}")
    return datetime.fromisoformat(value)
