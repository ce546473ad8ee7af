"""Deadline polling of caller-supplied conditions."""

import asyncio
import inspect
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Optional, Union

from .errors import OperationTimedOutError
from .models import WaitOptions

logger = logging.getLogger(__name__)

Condition = Callable[[], Union[bool, Awaitable[bool]]]


class PollState(Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    TIMED_OUT = "timed_out"


class PollingEngine:
    """Evaluates a condition on a fixed cadence until it holds or time runs out.

    The first evaluation happens after ``initial_delay_seconds``; the clock
    starts then. After a false result the wait times out if the next
    evaluation would start at or past ``timeout_seconds``, so a condition that
    never holds is evaluated about ``timeout / retry_frequency`` times
    (exactly 4 times for 20s / 5s).

    Exceptions raised by the condition are not retried.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.clock = clock
        self.sleep = sleep
        self.state = PollState.PENDING
        self.attempts = 0

    async def _evaluate(self, condition: Condition) -> bool:
        result = condition()
        if inspect.isawaitable(result):
            result = await result
        return bool(result)

    async def wait_for(self, condition: Condition, options: Optional[WaitOptions] = None) -> bool:
        """Return True once ``condition`` holds.

        On timeout raise ``OperationTimedOutError`` carrying
        ``options.failure_message``, or return False when
        ``options.throw_on_timeout`` is off. ``state`` and ``attempts``
        describe the most recently finished wait; counting is per call, so a
        condition may itself wait on the same engine.
        """
        options = options or WaitOptions()
        attempts = 0

        if options.initial_delay_seconds > 0:
            await self.sleep(options.initial_delay_seconds)

        started = self.clock()
        while True:
            attempts += 1
            if await self._evaluate(condition):
                self._finish(PollState.SUCCEEDED, attempts)
                logger.debug(f"Condition met after {attempts} attempt(s)")
                return True

            elapsed = self.clock() - started
            if elapsed + options.retry_frequency_seconds >= options.timeout_seconds:
                break

            await self.sleep(options.retry_frequency_seconds)

        self._finish(PollState.TIMED_OUT, attempts)
        logger.info(
            f"Condition not met after {attempts} attempt(s) in "
            f"{options.timeout_seconds}s: {options.failure_message}"
        )
        if options.throw_on_timeout:
            raise OperationTimedOutError(
                options.failure_message,
                {"attempts": attempts, "timeout_seconds": options.timeout_seconds},
            )
        return False

    def _finish(self, state: PollState, attempts: int) -> None:
        self.state = state
        self.attempts = attempts


async def wait_for(condition: Condition, options: Optional[WaitOptions] = None) -> bool:
    """Module-level shortcut using the real clock."""
    return await PollingEngine().wait_for(condition, options)
