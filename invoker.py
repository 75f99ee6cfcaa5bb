"""
Remote unit-of-work invokers.

The scheduler only depends on ``Invoker.invoke``. LocalInvoker plays the remote
side in-process: it keeps a registry of named commands and runs every dispatch
in its own runner under the host's execution time limit.
"""

import asyncio
from datetime import datetime
from typing import Any, Callable, Dict, TypeVar

from .core.runner import go_func
from .helper.configuration import DEFAULT_EXECUTION_LIMIT
from .helper.error import JobDispatchError
from .helper.logging import get_logger
from .helper.task import check_valid_command, check_valid_command_name, get_command_name
from .model.job import Job

logger = get_logger(__name__)

# TypeVar for maintaining function type through decorator
F = TypeVar("F", bound=Callable[..., Any])


class Invoker:
    """
    Issues one asynchronous remote call per job.

    ``invoke`` resolves with the serialized job echoed back by the remote side
    (same id, possibly annotated) or raises. Remote failures should raise
    JobDispatchError carrying the annotated serialized job.
    """

    async def invoke(self, command: str, serialized_job: str) -> str:
        raise NotImplementedError


class LocalInvoker(Invoker):
    """
    Invoker executing registered commands in this process.

    :param execution_limit: Seconds a single dispatch may run before it fails.
    :param use_mp: Run commands in killable child processes instead of threads.
    """

    def __init__(
        self,
        execution_limit: float = DEFAULT_EXECUTION_LIMIT,
        use_mp: bool = False,
    ):
        if execution_limit <= 0:
            raise ValueError("execution_limit must be positive")
        self.execution_limit = execution_limit
        self.use_mp = use_mp
        self.commands: Dict[str, Callable[..., Any]] = {}

    def add_command(self, command: Callable[..., Any]) -> str:
        """
        Register a command under its function name.

        :return: The name the command is registered under
        :raises RuntimeError: If the command is invalid or the name is taken
        """
        try:
            name = get_command_name(command)
        except ValueError as e:
            raise RuntimeError(f"Error adding command: {e}")
        return self.add_command_with_name(command, name)

    def add_command_with_name(self, command: Callable[..., Any], name: str) -> str:
        """
        Register a command under a specific name.

        :return: The name the command is registered under
        :raises RuntimeError: If the command is invalid or the name is taken
        """
        try:
            check_valid_command(command)
            check_valid_command_name(name)
        except ValueError as e:
            raise RuntimeError(f"Error adding command: {e}")

        if name in self.commands:
            raise RuntimeError(f"Command already exists: {name}")

        self.commands[name] = command
        logger.info(f"Command added: {name}")
        return name

    def command(self) -> Callable[[F], F]:
        """
        Decorator registering a command under its function name.

        Usage:
            @invoker.command()
            def generate_rsa(job):
                ...
        """

        def decorator(func: F) -> F:
            self.add_command(func)
            return func

        return decorator

    def command_with_name(self, name: str) -> Callable[[F], F]:
        """
        Decorator registering a command under ``name``.

        Usage:
            @invoker.command_with_name("generate_rsa_ui")
            def generate(job):
                ...
        """

        def decorator(func: F) -> F:
            self.add_command_with_name(func, name)
            return func

        return decorator

    async def invoke(self, command: str, serialized_job: str) -> str:
        func = self.commands.get(command)
        if func is None:
            raise JobDispatchError(
                _with_error(serialized_job, f"unknown command: {command}")
            )

        runner = go_func(func, serialized_job, self.use_mp)
        try:
            return await asyncio.to_thread(runner.get_results, self.execution_limit)
        except TimeoutError:
            stopped = runner.cancel()
            logger.warning(
                "Execution time limit exceeded",
                command=command,
                limit=self.execution_limit,
                stopped=stopped,
            )
            raise JobDispatchError(
                _with_error(
                    serialized_job,
                    f"execution time limit of {self.execution_limit}s exceeded",
                )
            )


def _with_error(serialized_job: str, error: str) -> str:
    """Annotate the serialized job with an error the way the remote side does."""
    try:
        job = Job.from_json(serialized_job)
    except ValueError:
        job = Job()
    job.error = error
    job.ended_at = datetime.now()
    return job.to_json()
