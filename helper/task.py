"""
Command helper functions for the adrunner job scheduler.
A command is the function the remote side executes for every job of a run.
"""

import inspect
from typing import Any, Callable

MAX_COMMAND_NAME_LENGTH = 100


def check_valid_command(command: Any) -> None:
    """
    Check if the provided command is a function taking exactly one job argument.

    :param command: The command function to validate.
    :raises ValueError: If the command is invalid.
    """
    if command is None:
        raise ValueError("command must not be None")

    if not callable(command):
        raise ValueError(f"command must be a function, got {type(command).__name__}")

    try:
        sig = inspect.signature(command)
    except (TypeError, ValueError):
        # Builtins without introspectable signatures are accepted as-is.
        return

    required = [
        p
        for p in sig.parameters.values()
        if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
        and p.default is p.empty
    ]
    accepts_varargs = any(p.kind == p.VAR_POSITIONAL for p in sig.parameters.values())
    if len(required) > 1 or (not required and not accepts_varargs):
        raise ValueError(
            f"command must accept exactly one job parameter, got {len(required)}"
        )


def check_valid_command_name(name: str) -> None:
    """
    :raises ValueError: If the name is empty or longer than MAX_COMMAND_NAME_LENGTH.
    """
    if not name or len(name) > MAX_COMMAND_NAME_LENGTH:
        raise ValueError(
            f"command name must have a length between 1 and {MAX_COMMAND_NAME_LENGTH}"
        )


def get_command_name(command: Callable[..., Any]) -> str:
    """
    Get the name a command is registered under when no explicit name is given.

    :param command: The command function to inspect.
    :returns: The name of the command function as a string.
    """
    check_valid_command(command)

    if hasattr(command, "__name__"):
        return command.__name__
    return command.__class__.__name__
