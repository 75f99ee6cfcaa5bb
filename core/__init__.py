"""
Core components: progress broadcasting, command execution and retries.
"""

from .broadcaster import Broadcaster
from .execution import execute_job
from .runner import Runner, SmallRunner, go_func
from .retryer import Retryer

__all__ = [
    'Broadcaster',
    'execute_job',
    'Runner',
    'SmallRunner',
    'go_func',
    'Retryer'
]
