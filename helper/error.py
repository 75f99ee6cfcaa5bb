"""
Error handling utilities for the adrunner job scheduler.
"""

import inspect
from types import FrameType
from typing import Optional


class RunnerError(Exception):
    """
    Error class with trace information.
    Wrapping an existing RunnerError keeps the original exception and extends the trace.
    """

    def __init__(self, trace: str, original: Exception):
        """Initialize RunnerError with original error and trace."""
        trace_with_function = trace
        current_frame = inspect.currentframe()

        frame: Optional[FrameType] = None
        if current_frame is not None:
            frame = current_frame.f_back

        if frame:
            trace_with_function = f"{frame.f_code.co_name} - {trace}"

        if isinstance(original, RunnerError):
            self.original = original.original
            self.trace = original.trace + [trace_with_function]
        else:
            self.original = original
            self.trace = [trace_with_function]

        super().__init__(str(self.original))

    def __str__(self) -> str:
        """Return formatted error message with trace."""
        return f"{str(self.original)} | Trace: {', '.join(self.trace)}"


class RunnerBusyError(RuntimeError):
    """Raised when a run is requested while another run is still active."""

    def __init__(self, command: str = ""):
        message = "runner busy"
        if command:
            message = f"runner busy: run of '{command}' still active"
        super().__init__(message)


class JobDispatchError(Exception):
    """
    Failure of a single dispatched job on the remote side.

    Carries the serialized job as annotated by the remote side (timestamps,
    error detail). The only constructor argument is the payload string, so the
    error pickles cleanly across process boundaries.
    """

    def __init__(self, payload: str):
        super().__init__(payload)
        self.payload = payload
