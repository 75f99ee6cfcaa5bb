"""
Simple example demonstrating the adrunner library.
Generates responsive search ad headlines for a block of spreadsheet rows in
batches, printing a progress line for every job transition.

Prerequisites:
1. Install the package: pip install adrunnerPy

Usage:
    python example.py
"""

import asyncio
import dataclasses
import logging
import random
import time

from adrunner import (
    Job,
    JobRunner,
    LocalInvoker,
    OnError,
    RunnerConfiguration,
    run_rows,
)
from adrunner.helper.logging import setup_logging


def generate_rsa(job: Job) -> dict:
    """
    Example command generating headlines for the rows of one batch.

    Args:
        job: The job carrying ``start_row`` and ``end_row`` in its payload

    Returns:
        Annotations merged into the job's payload

    Raises:
        RuntimeError: Randomly, to show how failed batches are re-run
    """
    # Simulate the model call
    time.sleep(random.uniform(0.2, 1.0))

    if random.random() < 0.2:
        raise RuntimeError("Quota exceeded for generateContent")

    rows = range(job.payload["start_row"], job.payload["end_row"] + 1)
    return {"headlines": {row: f"Fresh offers for row {row}" for row in rows}}


class RunnerExample:
    """Example demonstrating a batched run with a local invoker."""

    def __init__(self):
        """Initialize the example with a configuration from the environment."""
        self.config = RunnerConfiguration.from_env()
        self.invoker = LocalInvoker(execution_limit=self.config.execution_limit)
        self.invoker.add_command(generate_rsa)

    def on_progress(self, job: Job) -> None:
        rows = f"{job.payload['start_row']}-{job.payload['end_row']}"
        logging.info(f"Batch {job.id} (rows {rows}): {job.status} {job.error or ''}")

    async def run_example(self):
        """Run rows 2 to 51 in batches of 10 with at most 3 running at once."""
        runner = JobRunner(self.invoker, dataclasses.replace(self.config, max_running_jobs=3))
        try:
            jobs = await run_rows(
                runner,
                "generate_rsa",
                2,
                51,
                batch_size=10,
                on_progress=self.on_progress,
                on_error=OnError(max_retries=2, retry_delay=0.5),
            )
        except Exception as e:
            logging.error(f"Error in example: {e}")
            raise

        for job in jobs:
            logging.info(f"Job {job.id} finished with status: {job.status}")
        return jobs


async def main():
    """Main function."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")

    example = RunnerExample()
    setup_logging(example.config.log_level, name="adrunner")
    try:
        await example.run_example()
    except Exception as e:
        logging.error(f"Error in example: {e}")


if __name__ == "__main__":
    asyncio.run(main())
