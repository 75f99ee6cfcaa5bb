"""
Remote side of a job dispatch: decode the job, run the command on it, stamp
start and end times, and hand back the serialized job or raise it as an error.
"""

import asyncio
import inspect
from datetime import datetime
from typing import Any, Callable, Dict

from ..helper.error import JobDispatchError
from ..helper.logging import get_logger
from ..model.job import RESERVED_KEYS, Job

logger = get_logger(__name__)


def execute_job(command: Callable[..., Any], serialized_job: str) -> str:
    """
    Execute ``command`` on the job encoded in ``serialized_job``.

    The command receives the Job and may annotate ``job.payload`` in place or
    return a dict that is merged into the payload. Async commands are run to
    completion on a fresh event loop, so this must not be called from a thread
    that already runs one.

    :returns: The serialized job with ``started_at``/``ended_at`` set.
    :raises JobDispatchError: Carrying the serialized job with ``error`` set,
        if the payload cannot be decoded or the command raises.
    """
    try:
        job = Job.from_json(serialized_job)
    except ValueError as e:
        raise JobDispatchError(
            Job(error=f"malformed job payload: {e}", ended_at=datetime.now()).to_json()
        )

    logger.debug("Starting job", job_id=job.id)
    job.started_at = datetime.now()
    try:
        if inspect.iscoroutinefunction(command):
            result = asyncio.run(command(job))
        else:
            result = command(job)
        if isinstance(result, dict):
            _merge_result(job, result)
    except Exception as e:
        logger.debug("Job failed", job_id=job.id, error=e)
        job.error = str(e) or type(e).__name__
        job.ended_at = datetime.now()
        raise JobDispatchError(job.to_json())

    job.ended_at = datetime.now()
    logger.debug("Job completed", job_id=job.id)
    return job.to_json()


def _merge_result(job: Job, result: Dict[str, Any]) -> None:
    # Reserved keys are owned by the scheduler and this wrapper.
    for key, value in result.items():
        if key not in RESERVED_KEYS:
            job.payload[key] = value
