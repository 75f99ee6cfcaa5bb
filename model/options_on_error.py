"""
Retry policy for re-running failed batches.

The scheduler never retries on its own; these options drive the caller-level
retry rounds of run_rows.
"""

from enum import Enum
from typing import Any, Dict


class RetryBackoff(str, Enum):
    """Retry backoff strategies."""

    NONE = "none"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


class OnError:
    """Options for re-running the jobs of a run that ended in ERROR."""

    def __init__(
        self,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        retry_backoff: str = RetryBackoff.NONE,
    ):
        """Initialize OnError options.

        Args:
            max_retries: Maximum number of retry rounds after the first run
            retry_delay: Delay in seconds before the first retry round
            retry_backoff: Backoff strategy (none, linear, exponential)
        """
        if max_retries < 0:
            raise ValueError("max retries cannot be negative")
        if retry_delay < 0:
            raise ValueError("retry delay cannot be negative")
        if retry_backoff not in [
            RetryBackoff.NONE,
            RetryBackoff.LINEAR,
            RetryBackoff.EXPONENTIAL,
        ]:
            raise ValueError("invalid retry backoff")

        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.retry_backoff = RetryBackoff(retry_backoff)

    def delay_for(self, retry_round: int) -> float:
        """
        Seconds to wait before the given retry round (1-based).

        NONE keeps the delay constant, LINEAR adds retry_delay per round and
        EXPONENTIAL doubles it per round.
        """
        if retry_round < 1:
            return 0.0
        if self.retry_backoff == RetryBackoff.LINEAR:
            return self.retry_delay * retry_round
        if self.retry_backoff == RetryBackoff.EXPONENTIAL:
            return self.retry_delay * (2 ** (retry_round - 1))
        return self.retry_delay

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_retries": self.max_retries,
            "retry_delay": self.retry_delay,
            "retry_backoff": self.retry_backoff.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OnError":
        return cls(
            max_retries=data.get("max_retries", 3),
            retry_delay=data.get("retry_delay", 1.0),
            retry_backoff=data.get("retry_backoff", RetryBackoff.NONE),
        )

    def __repr__(self) -> str:
        return (
            f"OnError(max_retries={self.max_retries}, retry_delay={self.retry_delay}, "
            f"retry_backoff={self.retry_backoff.value})"
        )
