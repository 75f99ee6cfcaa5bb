"""
Tests for the JobRunner scheduler.
"""

import asyncio
import json
import logging
import os
import unittest
from typing import Any, Dict, List, Set, Tuple
from unittest.mock import patch

from .helper.configuration import RunnerConfiguration
from .helper.error import JobDispatchError, RunnerBusyError
from . import job_runner as job_runner_module
from .invoker import Invoker
from .job_runner import JobRunner, new_job_runner
from .model.batch_descriptor import BatchDescriptor, new_batch_descriptors
from .model.job import Job, JobStatus
from .model.run_state import RunnerStatus


class ControlledInvoker(Invoker):
    """Invoker whose calls only settle when the test says so."""

    def __init__(self):
        self.calls: Dict[int, Tuple["asyncio.Future[str]", Dict[str, Any]]] = {}
        self.order: List[int] = []

    async def invoke(self, command: str, serialized_job: str) -> str:
        job = json.loads(serialized_job)
        future: "asyncio.Future[str]" = asyncio.get_running_loop().create_future()
        self.calls[job["id"]] = (future, job)
        self.order.append(job["id"])
        return await future

    def succeed(self, job_id: int, **annotations: Any) -> None:
        future, job = self.calls[job_id]
        future.set_result(json.dumps({**job, **annotations}))

    def fail(self, job_id: int, error: str) -> None:
        future, job = self.calls[job_id]
        future.set_exception(JobDispatchError(json.dumps({**job, "error": error})))


class EchoInvoker(Invoker):
    """Invoker echoing jobs back after a short delay, failing selected ids."""

    def __init__(self, fail_ids: Set[int] = frozenset(), delay: float = 0.01):
        self.fail_ids = fail_ids
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0

    async def invoke(self, command: str, serialized_job: str) -> str:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            job = json.loads(serialized_job)
            # Later jobs settle first to mix up completion order
            await asyncio.sleep(self.delay * (1 + (job["id"] % 3)))
            if job["id"] in self.fail_ids:
                job["error"] = "model returned no candidates"
                raise JobDispatchError(json.dumps(job))
            job["headlines"] = [f"Headline for rows {job['start_row']}-{job['end_row']}"]
            return json.dumps(job)
        finally:
            self.in_flight -= 1


async def settle(rounds: int = 10) -> None:
    """Let dispatch tasks and their callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def statuses(jobs: List[Job]) -> List[str]:
    return [job.status for job in jobs]


class TestJobRunnerScenarios(unittest.IsolatedAsyncioTestCase):
    """End-to-end behavior of a run."""

    async def test_single_batch_completes(self):
        runner = JobRunner(EchoInvoker(), RunnerConfiguration(max_running_jobs=2))
        progress: List[Job] = []

        future = runner.run(
            "generate_rsa", [{"start_row": 2, "end_row": 10}], progress.append
        )

        self.assertEqual(runner.status, RunnerStatus.RUNNING)
        self.assertEqual(runner.running_count, 1)

        jobs = await asyncio.wait_for(future, timeout=2.0)

        self.assertEqual(len(jobs), 1)
        self.assertEqual(jobs[0].id, 0)
        self.assertEqual(jobs[0].status, JobStatus.COMPLETE)
        self.assertEqual(jobs[0].payload["headlines"], ["Headline for rows 2-10"])
        self.assertEqual(statuses(progress), [JobStatus.RUNNING, JobStatus.COMPLETE])
        self.assertEqual(runner.status, RunnerStatus.IDLE)

    async def test_running_jobs_never_exceed_limit(self):
        invoker = EchoInvoker()
        runner = JobRunner(invoker, RunnerConfiguration(max_running_jobs=2))
        observed: List[int] = []

        def on_progress(job: Job) -> None:
            observed.append(runner.running_count)

        future = runner.run("generate_rsa", new_batch_descriptors(2, 51, 10), on_progress)
        self.assertEqual(runner.running_count, 2)

        jobs = await asyncio.wait_for(future, timeout=2.0)

        self.assertEqual(len(jobs), 5)
        self.assertTrue(all(job.is_terminal for job in jobs))
        self.assertEqual(statuses(jobs), [JobStatus.COMPLETE] * 5)
        self.assertLessEqual(max(observed), 2)
        self.assertLessEqual(invoker.max_in_flight, 2)
        # Every job is reported once as RUNNING and once as COMPLETE
        self.assertEqual(len(observed), 10)

    async def test_failed_batch_does_not_affect_siblings(self):
        runner = JobRunner(EchoInvoker(fail_ids={2}), RunnerConfiguration(max_running_jobs=2))

        jobs = await asyncio.wait_for(
            runner.run("generate_rsa", new_batch_descriptors(2, 51, 10)), timeout=2.0
        )

        self.assertEqual(
            statuses(jobs),
            [
                JobStatus.COMPLETE,
                JobStatus.COMPLETE,
                JobStatus.ERROR,
                JobStatus.COMPLETE,
                JobStatus.COMPLETE,
            ],
        )
        self.assertEqual(jobs[2].error, "model returned no candidates")
        self.assertEqual(jobs[2].payload["start_row"], 22)

    async def test_stop_cancels_unadmitted_jobs_only(self):
        invoker = ControlledInvoker()
        runner = JobRunner(invoker, RunnerConfiguration(max_running_jobs=2))

        future = runner.run("generate_rsa", new_batch_descriptors(2, 51, 10))
        await settle()
        self.assertEqual(sorted(invoker.calls), [0, 1])

        runner.stop()

        self.assertEqual(
            statuses(runner.jobs),
            [JobStatus.RUNNING, JobStatus.RUNNING] + [JobStatus.CANCELLED] * 3,
        )
        self.assertFalse(future.done())

        invoker.succeed(0)
        await settle()
        self.assertFalse(future.done())

        invoker.fail(1, "quota exceeded")
        jobs = await asyncio.wait_for(future, timeout=1.0)

        self.assertEqual(
            statuses(jobs),
            [JobStatus.COMPLETE, JobStatus.ERROR] + [JobStatus.CANCELLED] * 3,
        )
        self.assertEqual(sorted(invoker.calls), [0, 1])
        self.assertEqual(runner.status, RunnerStatus.IDLE)

    async def test_second_run_while_busy_is_rejected(self):
        invoker = ControlledInvoker()
        runner = JobRunner(invoker, RunnerConfiguration(max_running_jobs=2))

        first = runner.run("generate_rsa", new_batch_descriptors(2, 21, 10))
        await settle()
        before = runner.jobs

        second = runner.run("generate_ads_editor", new_batch_descriptors(2, 5, 1))
        with self.assertRaises(RunnerBusyError):
            await second

        self.assertEqual(runner.command, "generate_rsa")
        self.assertEqual(runner.jobs, before)
        self.assertEqual(runner.status, RunnerStatus.RUNNING)

        invoker.succeed(0)
        invoker.succeed(1)
        jobs = await asyncio.wait_for(first, timeout=1.0)
        self.assertEqual(statuses(jobs), [JobStatus.COMPLETE] * 2)


class TestJobRunnerAdmission(unittest.IsolatedAsyncioTestCase):
    async def test_fifo_admission(self):
        invoker = ControlledInvoker()
        runner = JobRunner(invoker, RunnerConfiguration(max_running_jobs=1))

        future = runner.run("generate_rsa", new_batch_descriptors(2, 31, 10))
        for job_id in range(3):
            await settle()
            self.assertEqual(invoker.order[-1], job_id)
            invoker.succeed(job_id)

        await asyncio.wait_for(future, timeout=1.0)
        self.assertEqual(invoker.order, [0, 1, 2])

    async def test_run_level_limit_override(self):
        invoker = ControlledInvoker()
        runner = JobRunner(invoker, RunnerConfiguration(max_running_jobs=1))

        future = runner.run("generate_rsa", new_batch_descriptors(2, 31, 10), max_running_jobs=3)
        self.assertEqual(runner.running_count, 3)

        for job_id in range(3):
            await settle()
            invoker.succeed(job_id)
        await asyncio.wait_for(future, timeout=1.0)

    async def test_invalid_limit(self):
        runner = JobRunner(ControlledInvoker())

        with self.assertRaises(ValueError):
            await runner.run("generate_rsa", [{}], max_running_jobs=0)
        self.assertEqual(runner.status, RunnerStatus.IDLE)

    async def test_empty_run_resolves_immediately(self):
        runner = JobRunner(ControlledInvoker())

        jobs = await asyncio.wait_for(runner.run("generate_rsa", []), timeout=1.0)

        self.assertEqual(jobs, [])
        self.assertEqual(runner.status, RunnerStatus.IDLE)

    async def test_id_assignment(self):
        invoker = ControlledInvoker()
        runner = JobRunner(invoker, RunnerConfiguration(max_running_jobs=5))

        future = runner.run(
            "generate_rsa",
            [
                {"id": 1, "start_row": 2, "end_row": 2},
                BatchDescriptor(start_row=3, end_row=3),
                Job(payload={"start_row": 4, "end_row": 4}),
            ],
        )

        self.assertEqual([job.id for job in runner.jobs], [1, 0, 2])
        await settle()
        for job_id in (0, 1, 2):
            invoker.succeed(job_id)
        jobs = await asyncio.wait_for(future, timeout=1.0)
        self.assertEqual([job.payload["start_row"] for job in jobs], [2, 3, 4])

    async def test_duplicate_ids_are_rejected(self):
        runner = JobRunner(ControlledInvoker())

        with self.assertRaisesRegex(ValueError, "duplicate job id: 3"):
            await runner.run("generate_rsa", [{"id": 3}, {"id": 3}])
        self.assertEqual(runner.status, RunnerStatus.IDLE)

    async def test_unsupported_descriptor(self):
        runner = JobRunner(ControlledInvoker())

        with self.assertRaises(TypeError):
            await runner.run("generate_rsa", [(2, 10)])

    async def test_new_run_replaces_job_store(self):
        runner = JobRunner(EchoInvoker(), RunnerConfiguration(max_running_jobs=3))

        await runner.run("generate_rsa", new_batch_descriptors(2, 31, 10))
        jobs = await runner.run("generate_rsa", [{"start_row": 40, "end_row": 45}])

        self.assertEqual(len(jobs), 1)
        self.assertEqual(jobs[0].id, 0)
        self.assertEqual([job.id for job in runner.jobs], [0])


class TestJobRunnerFailures(unittest.IsolatedAsyncioTestCase):
    async def _run_single(self, invoker: Invoker) -> Job:
        runner = JobRunner(invoker)
        jobs = await asyncio.wait_for(
            runner.run("generate_rsa", [{"start_row": 2, "end_row": 10}]), timeout=1.0
        )
        return jobs[0]

    async def test_transport_error(self):
        class BrokenInvoker(Invoker):
            async def invoke(self, command, serialized_job):
                raise ConnectionError("transport down")

        job = await self._run_single(BrokenInvoker())

        self.assertEqual(job.status, JobStatus.ERROR)
        self.assertEqual(job.error, "transport down")
        self.assertEqual(job.payload, {"start_row": 2, "end_row": 10})

    async def test_malformed_reply(self):
        class GarbageInvoker(Invoker):
            async def invoke(self, command, serialized_job):
                return "<html>Service Unavailable</html>"

        job = await self._run_single(GarbageInvoker())

        self.assertEqual(job.status, JobStatus.ERROR)
        self.assertIsNotNone(job.error)

    async def test_reply_for_other_job(self):
        class WrongIdInvoker(Invoker):
            async def invoke(self, command, serialized_job):
                job = json.loads(serialized_job)
                job["id"] = 42
                return json.dumps(job)

        job = await self._run_single(WrongIdInvoker())

        self.assertEqual(job.status, JobStatus.ERROR)
        self.assertIn("does not match", job.error)

    async def test_reply_with_numeric_timestamp(self):
        class EpochInvoker(Invoker):
            async def invoke(self, command, serialized_job):
                job = json.loads(serialized_job)
                job["started_at"] = 1700000000
                return json.dumps(job)

        job = await self._run_single(EpochInvoker())

        self.assertEqual(job.status, JobStatus.ERROR)
        self.assertIn("invalid started_at", job.error)

    async def test_dispatch_error_with_numeric_timestamp(self):
        class EpochFailureInvoker(Invoker):
            async def invoke(self, command, serialized_job):
                job = json.loads(serialized_job)
                job["ended_at"] = 1700000000
                job["error"] = "quota exceeded"
                raise JobDispatchError(json.dumps(job))

        job = await self._run_single(EpochFailureInvoker())

        self.assertEqual(job.status, JobStatus.ERROR)
        self.assertEqual(job.error, "job failed on the remote side")
        self.assertEqual(job.payload, {"start_row": 2, "end_row": 10})

    async def test_unexpected_decoding_error_still_settles_job(self):
        runner = JobRunner(EchoInvoker())

        with patch.object(Job, "from_json", side_effect=TypeError("decoder crashed")):
            jobs = await asyncio.wait_for(
                runner.run("generate_rsa", new_batch_descriptors(2, 21, 10)),
                timeout=1.0,
            )

        self.assertEqual(statuses(jobs), [JobStatus.ERROR] * 2)
        self.assertEqual(jobs[0].error, "decoder crashed")
        self.assertEqual(runner.status, RunnerStatus.IDLE)

    async def test_dispatch_error_without_detail(self):
        class SilentInvoker(Invoker):
            async def invoke(self, command, serialized_job):
                raise JobDispatchError(serialized_job)

        job = await self._run_single(SilentInvoker())

        self.assertEqual(job.status, JobStatus.ERROR)
        self.assertEqual(job.error, "job failed on the remote side")


class TestJobRunnerCancellation(unittest.IsolatedAsyncioTestCase):
    async def test_stop_with_cancel_running_resolves_immediately(self):
        invoker = ControlledInvoker()
        runner = JobRunner(invoker, RunnerConfiguration(max_running_jobs=2))

        future = runner.run("generate_rsa", new_batch_descriptors(2, 51, 10))
        await settle()
        runner.stop(cancel_running=True)

        jobs = await asyncio.wait_for(future, timeout=1.0)
        self.assertEqual(statuses(jobs), [JobStatus.CANCELLED] * 5)

        # Late reports must not reopen cancelled jobs
        invoker.succeed(0)
        invoker.fail(1, "late failure")
        await settle()
        self.assertEqual(statuses(runner.jobs), [JobStatus.CANCELLED] * 5)

    async def test_stop_is_idempotent(self):
        invoker = ControlledInvoker()
        runner = JobRunner(invoker, RunnerConfiguration(max_running_jobs=1))
        progress: List[Job] = []

        future = runner.run("generate_rsa", new_batch_descriptors(2, 31, 10), progress.append)
        await settle()
        runner.stop()
        reported = len(progress)
        runner.stop()
        runner.stop()

        self.assertEqual(len(progress), reported)
        invoker.succeed(0)
        jobs = await asyncio.wait_for(future, timeout=1.0)

        runner.stop()
        self.assertEqual(
            statuses(runner.jobs), [JobStatus.COMPLETE] + [JobStatus.CANCELLED] * 2
        )
        self.assertEqual(statuses(jobs), statuses(runner.jobs))

    async def test_stop_while_idle(self):
        runner = JobRunner(ControlledInvoker())
        runner.stop()
        self.assertEqual(runner.status, RunnerStatus.IDLE)

    async def test_stop_from_progress_callback(self):
        invoker = ControlledInvoker()
        runner = JobRunner(invoker, RunnerConfiguration(max_running_jobs=3))

        def on_progress(job: Job) -> None:
            if job.status == JobStatus.RUNNING:
                runner.stop()

        future = runner.run("generate_rsa", new_batch_descriptors(2, 31, 10), on_progress)

        self.assertEqual(
            statuses(runner.jobs),
            [JobStatus.RUNNING, JobStatus.CANCELLED, JobStatus.CANCELLED],
        )
        await settle()
        invoker.succeed(0)
        jobs = await asyncio.wait_for(future, timeout=1.0)
        self.assertEqual(jobs[0].status, JobStatus.COMPLETE)

    async def test_report_from_previous_run_is_ignored(self):
        invoker = ControlledInvoker()
        runner = JobRunner(invoker, RunnerConfiguration(max_running_jobs=1))

        first = runner.run("generate_rsa", [{"start_row": 2, "end_row": 10}])
        await settle()
        runner.stop(cancel_running=True)
        await first
        stale_future, stale_job = invoker.calls[0]

        second = runner.run("generate_rsa", [{"start_row": 11, "end_row": 20}])
        await settle()
        _, current_job = invoker.calls[0]
        self.assertEqual(current_job["start_row"], 11)

        stale_future.set_result(json.dumps({**stale_job, "headlines": ["stale"]}))
        await settle()
        self.assertEqual(runner.jobs[0].status, JobStatus.RUNNING)

        invoker.succeed(0, headlines=["fresh"])
        jobs = await asyncio.wait_for(second, timeout=1.0)
        self.assertEqual(jobs[0].payload["headlines"], ["fresh"])
        self.assertEqual(jobs[0].payload["start_row"], 11)


class TestJobRunnerProgress(unittest.IsolatedAsyncioTestCase):
    async def test_failing_callback_does_not_break_run(self):
        runner = JobRunner(EchoInvoker(), RunnerConfiguration(max_running_jobs=2))

        def on_progress(job: Job) -> None:
            raise RuntimeError("table render failed")

        jobs = await asyncio.wait_for(
            runner.run("generate_rsa", new_batch_descriptors(2, 31, 10), on_progress),
            timeout=2.0,
        )
        self.assertEqual(statuses(jobs), [JobStatus.COMPLETE] * 3)

    async def test_async_callback(self):
        runner = JobRunner(EchoInvoker())
        seen: List[Tuple[int, str]] = []

        async def on_progress(job: Job) -> None:
            seen.append((job.id, job.status))

        await asyncio.wait_for(
            runner.run("generate_rsa", [{"start_row": 2, "end_row": 3}], on_progress),
            timeout=2.0,
        )
        await settle()
        self.assertEqual(seen, [(0, JobStatus.RUNNING), (0, JobStatus.COMPLETE)])

    async def test_failing_async_callback_is_logged(self):
        runner = JobRunner(EchoInvoker())

        async def on_progress(job: Job) -> None:
            raise RuntimeError("table render failed")

        with self.assertLogs(job_runner_module.logger.logger, level="ERROR") as logs:
            jobs = await asyncio.wait_for(
                runner.run("generate_rsa", [{"start_row": 2, "end_row": 3}], on_progress),
                timeout=2.0,
            )
            await settle()

        self.assertEqual(jobs[0].status, JobStatus.COMPLETE)
        failures = [line for line in logs.output if "Progress callback failed" in line]
        self.assertEqual(len(failures), 2)
        self.assertIn("table render failed", failures[0])

    async def test_callback_gets_copies(self):
        runner = JobRunner(EchoInvoker())

        def on_progress(job: Job) -> None:
            job.status = JobStatus.CANCELLED
            job.payload["start_row"] = -1

        jobs = await asyncio.wait_for(
            runner.run("generate_rsa", [{"start_row": 2, "end_row": 3}], on_progress),
            timeout=2.0,
        )
        self.assertEqual(jobs[0].status, JobStatus.COMPLETE)
        self.assertEqual(jobs[0].payload["start_row"], 2)

    async def test_progress_broadcast(self):
        runner = JobRunner(EchoInvoker())
        queue = runner.progress.subscribe()

        await asyncio.wait_for(
            runner.run("generate_rsa", [{"start_row": 2, "end_row": 3}]), timeout=2.0
        )

        messages = [queue.get_nowait() for _ in range(queue.qsize())]
        self.assertEqual(statuses(messages), [JobStatus.RUNNING, JobStatus.COMPLETE])

    async def test_tracing_logs_transitions(self):
        runner = JobRunner(EchoInvoker(), RunnerConfiguration(tracing=True))

        with patch.object(job_runner_module.logger, "log_with_context") as log_with_context:
            await asyncio.wait_for(
                runner.run("generate_rsa", [{"start_row": 2, "end_row": 3}]),
                timeout=2.0,
            )

        transitions = [
            c for c in log_with_context.call_args_list if c.args[1] == "Job transition"
        ]
        self.assertEqual(len(transitions), 2)
        self.assertTrue(all(c.args[0] == logging.INFO for c in transitions))


class TestNewJobRunner(unittest.TestCase):
    def test_run_requires_event_loop(self):
        runner = JobRunner(ControlledInvoker())
        with self.assertRaises(RuntimeError):
            runner.run("generate_rsa", [{}])

    @patch.dict(os.environ, {"ADRUNNER_MAX_RUNNING_JOBS": "4"}, clear=True)
    def test_from_env(self):
        runner = new_job_runner(EchoInvoker())
        self.assertEqual(runner.config.max_running_jobs, 4)
        self.assertFalse(runner.config.tracing)

    @patch.dict(os.environ, {"ADRUNNER_MAX_RUNNING_JOBS": "4"}, clear=True)
    def test_overrides(self):
        runner = new_job_runner(EchoInvoker(), max_running_jobs=1, tracing=True)
        self.assertEqual(runner.config.max_running_jobs, 1)
        self.assertTrue(runner.config.tracing)

    def test_invalid_override(self):
        with self.assertRaises(ValueError):
            new_job_runner(EchoInvoker(), max_running_jobs=0)


if __name__ == "__main__":
    unittest.main()
