"""
JobRunner - the batched job scheduler.

A run partitions its work into jobs, keeps at most ``max_running_jobs`` of them
in flight through the invoker, records every terminal outcome and resolves the
future returned by ``run()`` once no job is PENDING or RUNNING.

Everything happens on one asyncio event loop: dispatches are fire-and-forget
tasks whose settlement re-enters the scheduler through ``_complete``/``_fail``,
so the job store is only ever mutated by one callback at a time.
"""

import asyncio
import dataclasses
import functools
import inspect
import logging
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from .core.broadcaster import Broadcaster, new_broadcaster
from .helper.configuration import RunnerConfiguration
from .helper.error import JobDispatchError, RunnerBusyError
from .helper.logging import get_logger
from .invoker import Invoker
from .model.batch_descriptor import BatchDescriptor
from .model.job import Job, JobStatus
from .model.job_store import JobStore
from .model.run_state import ProgressCallback, RunnerStatus, RunState

logger = get_logger(__name__)

JobDescriptor = Union[BatchDescriptor, Dict[str, Any], Job]


def new_job_runner(
    invoker: Invoker,
    max_running_jobs: Optional[int] = None,
    tracing: Optional[bool] = None,
) -> "JobRunner":
    """
    Create a JobRunner configured from ADRUNNER_* environment variables.
    Explicit arguments override the environment.
    """
    config = RunnerConfiguration.from_env()
    overrides: Dict[str, Any] = {}
    if max_running_jobs is not None:
        overrides["max_running_jobs"] = max_running_jobs
    if tracing is not None:
        overrides["tracing"] = tracing
    if overrides:
        config = dataclasses.replace(config, **overrides)
    return JobRunner(invoker, config)


class JobRunner:
    """
    Batched job scheduler. One instance runs at most one run at a time.

    :param invoker: Issues the remote call for every admitted job.
    :param config: Runner configuration, defaults to RunnerConfiguration().
    """

    def __init__(
        self, invoker: Invoker, config: Optional[RunnerConfiguration] = None
    ):
        self.invoker = invoker
        self.config = config or RunnerConfiguration()
        self.progress: Broadcaster[Job] = new_broadcaster("job.progress")

        self._state = RunState(max_running_jobs=self.config.max_running_jobs)
        # Strong references to in-flight dispatch and callback tasks
        self._tasks: Set["asyncio.Task[Any]"] = set()

    @property
    def status(self) -> str:
        return self._state.status

    @property
    def command(self) -> str:
        return self._state.command

    @property
    def jobs(self) -> List[Job]:
        """Snapshot of the current run's jobs in admission order."""
        return [job.copy() for job in self._state.jobs]

    @property
    def running_count(self) -> int:
        return self._state.jobs.running_count()

    def run(
        self,
        command: str,
        descriptors: Iterable[JobDescriptor],
        on_progress: Optional[ProgressCallback] = None,
        max_running_jobs: Optional[int] = None,
    ) -> "asyncio.Future[List[Job]]":
        """
        Start a run of ``command`` over ``descriptors``.

        Must be called from a coroutine or callback on a running event loop.
        Descriptors without an id get the first free integer id, starting at 0.

        :param command: Remote command every job of the run invokes.
        :param descriptors: BatchDescriptor, dict or Job per job.
        :param on_progress: Called with a copy of the job on every transition;
                            coroutine functions are scheduled as tasks.
        :param max_running_jobs: Concurrency limit for this run only.
        :return: Future resolving with the final jobs once all are terminal.
                 It fails with RunnerBusyError if a run is already active and
                 with ValueError/TypeError for invalid descriptors.
        """
        loop = asyncio.get_running_loop()
        completion: "asyncio.Future[List[Job]]" = loop.create_future()

        if self._state.is_running:
            logger.warning(
                "Run rejected, runner busy",
                command=command,
                active_command=self._state.command,
            )
            completion.set_exception(RunnerBusyError(self._state.command))
            return completion

        limit = (
            self.config.max_running_jobs
            if max_running_jobs is None
            else max_running_jobs
        )
        try:
            if limit < 1:
                raise ValueError(f"max_running_jobs must be at least 1, got {limit}")
            jobs = JobStore(_new_jobs(descriptors))
        except (TypeError, ValueError) as e:
            logger.error("Run rejected", error=e, command=command)
            completion.set_exception(e)
            return completion

        self._state = RunState(
            jobs=jobs,
            command=command,
            max_running_jobs=limit,
            status=RunnerStatus.RUNNING,
            on_progress=on_progress,
            completion=completion,
        )
        logger.info(
            "Run started", command=command, jobs=len(jobs), max_running_jobs=limit
        )

        self._admit(self._state)
        return completion

    def stop(self, cancel_running: bool = False) -> None:
        """
        Cancel every PENDING job of the active run.

        In-flight remote calls are never aborted. By default RUNNING jobs settle
        with their own outcome and the run resolves once they have. With
        ``cancel_running`` they are marked CANCELLED right away, their late
        reports are ignored and the run resolves immediately.

        Idempotent; a no-op while idle.
        """
        state = self._state
        if not state.is_running:
            return

        cancelled = 0
        for job in state.jobs:
            if job.status == JobStatus.PENDING or (
                cancel_running and job.status == JobStatus.RUNNING
            ):
                job.status = JobStatus.CANCELLED
                cancelled += 1
                self._notify(state, job)

        logger.info(
            "Run stopped",
            command=state.command,
            cancelled=cancelled,
            still_running=state.jobs.running_count(),
        )
        self._check_completion(state)

    def _admit(self, state: RunState) -> None:
        """Admit pending jobs in FIFO order while slots are free, then check completion."""
        for job in state.jobs.pending():
            if not state.is_running:
                return
            if state.jobs.running_count() >= state.max_running_jobs:
                break
            # A progress callback may have stopped the run meanwhile.
            if job.status != JobStatus.PENDING:
                continue

            job.status = JobStatus.RUNNING
            self._notify(state, job)
            self._spawn(self._dispatch(state, job.id, job.to_json()))

        self._check_completion(state)

    async def _dispatch(self, state: RunState, job_id: int, payload: str) -> None:
        try:
            reply = await self.invoker.invoke(state.command, payload)
        except Exception as e:
            settle, outcome = self._fail, e
        else:
            settle, outcome = self._complete, reply

        try:
            settle(state, job_id, outcome)
        except Exception as e:
            logger.error("Handling job report failed", error=e, job_id=job_id)
            self._force_error(state, job_id, e)

    def _force_error(self, state: RunState, job_id: int, error: Exception) -> None:
        """Mark a job ERROR without decoding anything, so it never stays RUNNING."""
        job = self._live_job(state, job_id)
        if job is not None:
            job.status = JobStatus.ERROR
            job.error = job.error or str(error) or type(error).__name__
            self._notify(state, job)
        if state is self._state:
            self._admit(state)

    def _complete(self, state: RunState, job_id: int, reply: Any) -> None:
        job = self._live_job(state, job_id)
        if job is None:
            return

        try:
            if not isinstance(reply, str):
                raise ValueError(f"reply must be a JSON string, got {type(reply).__name__}")
            result = Job.from_json(reply)
            if result.id != job_id:
                raise ValueError(
                    f"reply for job {result.id} does not match dispatched job {job_id}"
                )
        except ValueError as e:
            self._fail(state, job_id, e)
            return

        result.status = JobStatus.COMPLETE
        result.error = None
        state.jobs.replace(result)
        self._notify(state, result)
        self._admit(state)

    def _fail(self, state: RunState, job_id: int, error: Exception) -> None:
        job = self._live_job(state, job_id)
        if job is None:
            return

        failed = job
        message = str(error) or type(error).__name__
        if isinstance(error, JobDispatchError):
            message = "job failed on the remote side"
            try:
                annotated = Job.from_json(error.payload)
                if annotated.id == job_id:
                    failed = annotated
            except ValueError:
                pass

        failed.status = JobStatus.ERROR
        failed.error = failed.error or message
        state.jobs.replace(failed)
        logger.warning(
            "Job failed", command=state.command, job_id=job_id, error=failed.error
        )
        self._notify(state, failed)
        self._admit(state)

    def _live_job(self, state: RunState, job_id: int) -> Optional[Job]:
        """The stored job a report applies to, or None if the report must be ignored."""
        if state is not self._state:
            logger.debug("Ignoring report from a finished run", job_id=job_id)
            return None

        job = state.jobs.get(job_id)
        if job is None or job.is_terminal:
            logger.info(
                "Ignoring late report",
                job_id=job_id,
                status=job.status if job else "UNKNOWN",
            )
            return None
        return job

    def _check_completion(self, state: RunState) -> None:
        if not state.is_running or state.jobs.has_outstanding():
            return

        state.status = RunnerStatus.IDLE
        jobs = [job.copy() for job in state.jobs]

        counts: Dict[str, int] = {}
        for job in jobs:
            counts[job.status] = counts.get(job.status, 0) + 1
        logger.info(
            "Run finished",
            command=state.command,
            complete=counts.get(JobStatus.COMPLETE, 0),
            error=counts.get(JobStatus.ERROR, 0),
            cancelled=counts.get(JobStatus.CANCELLED, 0),
        )

        if state.completion is not None and not state.completion.done():
            state.completion.set_result(jobs)

    def _notify(self, state: RunState, job: Job) -> None:
        snapshot = job.copy()
        logger.log_with_context(
            logging.INFO if self.config.tracing else logging.DEBUG,
            "Job transition",
            command=state.command,
            job_id=job.id,
            status=job.status,
        )
        self.progress.broadcast(snapshot)

        if state.on_progress is None:
            return
        try:
            result = state.on_progress(snapshot)
            if inspect.isawaitable(result):
                task = self._spawn(result)
                task.add_done_callback(functools.partial(self._callback_done, job.id))
        except Exception as e:
            logger.error("Progress callback failed", error=e, job_id=job.id)

    def _callback_done(self, job_id: Optional[int], task: "asyncio.Task[Any]") -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Progress callback failed", error=error, job_id=job_id)

    def _spawn(self, awaitable: Any) -> "asyncio.Task[Any]":
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task


def _new_jobs(descriptors: Iterable[JobDescriptor]) -> List[Job]:
    """
    Build PENDING jobs from descriptors, assigning sequential ids where missing.

    :raises TypeError: For descriptors of an unsupported type.
    :raises ValueError: For duplicate or non-integer ids.
    """
    jobs: List[Job] = []
    for descriptor in descriptors:
        if isinstance(descriptor, Job):
            jobs.append(Job(id=descriptor.id, payload=dict(descriptor.payload)))
        elif isinstance(descriptor, BatchDescriptor):
            jobs.append(Job.from_dict(descriptor.to_dict()))
        elif isinstance(descriptor, dict):
            parsed = Job.from_dict(descriptor)
            jobs.append(Job(id=parsed.id, payload=parsed.payload))
        else:
            raise TypeError(
                f"unsupported job descriptor type: {type(descriptor).__name__}"
            )

    used: Set[int] = set()
    for job in jobs:
        if job.id is None:
            continue
        if job.id in used:
            raise ValueError(f"duplicate job id: {job.id}")
        used.add(job.id)

    next_id = 0
    for job in jobs:
        if job.id is not None:
            continue
        while next_id in used:
            next_id += 1
        job.id = next_id
        used.add(next_id)

    return jobs
