"""
Retryer component for re-running failed work with backoff.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from ..helper.logging import get_logger
from ..model.options_on_error import OnError

logger = get_logger(__name__)


class Retryer:
    """Calls an async function until it stops raising or the retries run out."""

    def __init__(
        self, function: Callable[[], Awaitable[Any]], options: Optional[OnError]
    ):
        """Initialize the retryer.

        :param function: Coroutine function to call on every retry round
        :param options: OnError options for retry behavior
        :raises ValueError: If options are missing or allow no retries
        """
        if options is None or options.max_retries <= 0 or options.retry_delay < 0:
            raise ValueError("No valid retry options provided")

        self.function = function
        self.options = options

    async def retry(self) -> Optional[Exception]:
        """Run up to max_retries rounds, sleeping delay_for(round) before each.

        :returns: The last exception if every round fails, otherwise None.
        """
        last_error: Optional[Exception] = None

        for retry_round in range(1, self.options.max_retries + 1):
            await asyncio.sleep(self.options.delay_for(retry_round))
            try:
                await self.function()
                return None
            except Exception as err:
                last_error = err
                logger.warning(
                    f"Retry round {retry_round}/{self.options.max_retries} failed: {err}"
                )

        return last_error
