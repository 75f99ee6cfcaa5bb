"""
Caller-level helpers for processing a spreadsheet row range in batches.

The scheduler never retries; run_rows re-runs only the failed batches when an
OnError policy is given, keeping their ids so progress tables stay stable.
"""

from typing import Dict, List, Optional

from .core.retryer import Retryer
from .helper.error import RunnerError
from .helper.logging import get_logger
from .job_runner import JobRunner
from .model.batch_descriptor import new_batch_descriptors
from .model.job import Job, JobStatus
from .model.options_on_error import OnError
from .model.run_state import ProgressCallback

logger = get_logger(__name__)


async def run_rows(
    runner: JobRunner,
    command: str,
    row_start: int,
    row_end: int,
    batch_size: Optional[int] = None,
    on_progress: Optional[ProgressCallback] = None,
    on_error: Optional[OnError] = None,
) -> List[Job]:
    """
    Run ``command`` over the rows [row_start, row_end] in batches.

    :param runner: Scheduler executing the runs.
    :param command: Remote command processing one batch.
    :param row_start: First row, inclusive.
    :param row_end: Last row, inclusive.
    :param batch_size: Rows per batch, defaults to the runner's configured batch size.
    :param on_progress: Progress callback passed to every run.
    :param on_error: Retry policy for batches that end in ERROR.
    :return: Final jobs ordered by id; failed batches that exhausted their
             retries are returned with status ERROR.
    :raises ValueError: For a batch size below 1 or an empty row range.
    :raises RunnerBusyError: If the runner already has an active run.
    """
    if batch_size is None:
        batch_size = runner.config.batch_size
    descriptors = new_batch_descriptors(row_start, row_end, batch_size)

    logger.info(
        "Processing rows",
        command=command,
        rows=f"{row_start}-{row_end}",
        batches=len(descriptors),
    )
    jobs = await runner.run(command, descriptors, on_progress)
    results: Dict[int, Job] = {job.id: job for job in jobs}

    if on_error is None or on_error.max_retries == 0 or not _failed(results):
        return _ordered(results)

    async def rerun_failed() -> None:
        failed = _failed(results)
        if not failed:
            return

        logger.info("Re-running failed batches", job_ids=[j.id for j in failed])
        rerun = await runner.run(
            command,
            [Job(id=job.id, payload=job.payload) for job in failed],
            on_progress,
        )
        for job in rerun:
            results[job.id] = job

        # A stopped run is not retried any further.
        if any(job.status == JobStatus.CANCELLED for job in rerun):
            return

        still_failing = [job.id for job in rerun if job.status == JobStatus.ERROR]
        if still_failing:
            raise RunnerError(
                "re-running failed batches",
                RuntimeError(f"batches still failing: {still_failing}"),
            )

    error = await Retryer(rerun_failed, on_error).retry()
    if error is not None:
        logger.warning("Giving up on failed batches", error=error)

    return _ordered(results)


def _failed(results: Dict[int, Job]) -> List[Job]:
    return [job for job in _ordered(results) if job.status == JobStatus.ERROR]


def _ordered(results: Dict[int, Job]) -> List[Job]:
    return [results[job_id] for job_id in sorted(results)]
