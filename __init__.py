"""
adrunner - batched job scheduler for ad-creative generation

Splits a spreadsheet row range into batches and drives them through a remote
invoker with:
- Bounded concurrency and FIFO admission
- Per-job progress reporting
- Cooperative cancellation of a run
- Optional re-runs of failed batches
"""

from ._version import __version__

# Core exports
from .job_runner import (
    JobRunner,
    new_job_runner,
)

from .job_batches import (
    run_rows,
)

from .invoker import (
    Invoker,
    LocalInvoker,
)

from .helper.configuration import (
    RunnerConfiguration,
)

from .model.job import (
    Job,
    JobStatus,
)

from .model.batch_descriptor import (
    BatchDescriptor,
    new_batch_descriptors,
)

from .model.run_state import (
    RunnerStatus,
)

from .model.options_on_error import (
    OnError,
    RetryBackoff,
)

from .helper.error import (
    JobDispatchError,
    RunnerBusyError,
    RunnerError,
)

# Import submodules for direct access
from . import core
from . import helper
from . import model

__all__ = [
    # Core classes
    "JobRunner",
    "new_job_runner",
    "run_rows",
    "Invoker",
    "LocalInvoker",
    # Configuration
    "RunnerConfiguration",
    # Models
    "Job",
    "JobStatus",
    "BatchDescriptor",
    "new_batch_descriptors",
    "RunnerStatus",
    "OnError",
    "RetryBackoff",
    # Exceptions
    "JobDispatchError",
    "RunnerBusyError",
    "RunnerError",
    # Submodules
    "core",
    "helper",
    "model",
    # Version info
    "__version__",
]
