"""
Helper package for adrunner.
Provides command validation, errors, logging and configuration.
"""

from .task import (
    check_valid_command,
    check_valid_command_name,
    get_command_name,
)

from .error import (
    RunnerError,
    RunnerBusyError,
    JobDispatchError,
)

from .configuration import (
    RunnerConfiguration,
)

from .logging import (
    RunnerLogger,
    ColorFormatter,
    get_logger,
    setup_logging,
    parse_log_level,
)

__all__ = [
    # Command utilities
    "check_valid_command",
    "check_valid_command_name",
    "get_command_name",
    # Error handling
    "RunnerError",
    "RunnerBusyError",
    "JobDispatchError",
    # Configuration
    "RunnerConfiguration",
    # Logging utilities
    "RunnerLogger",
    "ColorFormatter",
    "get_logger",
    "setup_logging",
    "parse_log_level",
]
