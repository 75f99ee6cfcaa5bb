"""
Command runners - execute one job dispatch in a thread or a child process and
hand the serialized result back to the waiting invoker.
"""

import multiprocessing
import queue
import threading
import time
import traceback
from typing import Any, Callable, Optional, Union

from .execution import execute_job
from ..helper.logging import get_logger

logger = get_logger(__name__)

_POLL_INTERVAL = 0.1


class Runner(multiprocessing.Process):
    """
    Executes a single job dispatch in a separate, reliably killable process.

    The command must be picklable (a module-level function) because it is
    shipped to the child process.

    :param command: The command function to execute on the job.
    :param serialized_job: The job as JSON.
    """

    def __init__(self, command: Callable[..., Any], serialized_job: str):
        super().__init__(name=getattr(command, "__name__", "command"), daemon=True)
        self.command = command
        self.serialized_job = serialized_job
        self._result_queue: "multiprocessing.Queue[Any]" = multiprocessing.Queue(1)

    def go(self) -> None:
        """Starts the Runner process in the background."""
        self.start()

    def run(self) -> None:
        """
        Executed in the child process: runs the job and puts the serialized
        job or the raised exception on the result queue.
        """
        try:
            result: Any = execute_job(self.command, self.serialized_job)
        except Exception as e:
            logger.debug(traceback.format_exc())
            result = e
        try:
            self._result_queue.put(result)
        except BrokenPipeError:
            pass

    def get_results(self, timeout: Optional[float] = None) -> str:
        """
        Waits for the child process and returns the serialized job.

        :param timeout: Seconds to wait. If None, waits indefinitely.
        :raises TimeoutError: If the process is still running after ``timeout``.
        :raises Exception: The exception raised by the command dispatch.
        """
        # Read before join: a child blocked on a full pipe never exits.
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            try:
                result = self._result_queue.get(timeout=_POLL_INTERVAL)
                break
            except queue.Empty:
                if not self.is_alive() and self._result_queue.empty():
                    raise RuntimeError(f"runner failed with code {self.exitcode}")
                if deadline is not None and time.monotonic() >= deadline:
                    raise TimeoutError(f"runner timed out after {timeout} seconds")
        self.join()

        if isinstance(result, Exception):
            raise result
        return result

    def cancel(self) -> bool:
        """
        Terminates the child process.

        :returns: True if the process is no longer alive.
        """
        if not self.is_alive():
            return True

        logger.debug(f"Cancelling runner {self.name}")
        self.terminate()
        self.join(timeout=5.0)
        return not self.is_alive()


class SmallRunner(threading.Thread):
    """
    Thread-based runner for commands that need the parent process's state or
    cannot be pickled. Threads cannot be killed, so cancel() only reports.

    :param command: The command function to execute on the job.
    :param serialized_job: The job as JSON.
    """

    def __init__(self, command: Callable[..., Any], serialized_job: str):
        super().__init__(name=getattr(command, "__name__", "command"), daemon=True)
        self.command = command
        self.serialized_job = serialized_job
        self._result_queue: "queue.Queue[Any]" = queue.Queue(maxsize=1)

    def go(self) -> None:
        """Starts the SmallRunner thread in the background."""
        self.start()

    def run(self) -> None:
        try:
            self._result_queue.put(execute_job(self.command, self.serialized_job))
        except Exception as e:
            self._result_queue.put(e)

    def get_results(self, timeout: Optional[float] = None) -> str:
        """
        Waits for the thread and returns the serialized job.

        :param timeout: Seconds to wait. If None, waits indefinitely.
        :raises TimeoutError: If the thread is still running after ``timeout``.
        :raises Exception: The exception raised by the command dispatch.
        """
        self.join(timeout=timeout)

        if self.is_alive():
            raise TimeoutError(f"small runner timed out after {timeout} seconds")

        try:
            result = self._result_queue.get(block=False)
        except queue.Empty:
            raise RuntimeError(f"small runner {self.name} finished without a result")

        if isinstance(result, Exception):
            raise result
        return result

    def cancel(self) -> bool:
        """
        :returns: True if the thread has finished, False if it keeps running.
        """
        if not self.is_alive():
            return True

        logger.debug(
            f"SmallRunner {self.name}: cannot force terminate thread, "
            "waiting for natural completion"
        )
        return False


def go_func(
    command: Callable[..., Any], serialized_job: str, use_mp: bool = False
) -> Union[Runner, SmallRunner]:
    """
    Start a runner for one job dispatch.

    :param command: The command function to execute.
    :param serialized_job: The job as JSON.
    :param use_mp: If True, uses the process Runner (killable, needs a picklable
                   command). If False (default), uses the thread SmallRunner.
    :returns: A started Runner or SmallRunner instance.
    """
    if use_mp:
        runner: Union[Runner, SmallRunner] = Runner(command, serialized_job)
    else:
        runner = SmallRunner(command, serialized_job)

    runner.go()
    return runner
