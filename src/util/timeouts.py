"""Bounded waits that abandon, rather than cancel, slow work.

A provider request that has already been issued cannot be recalled. When a
wait times out the underlying task keeps running in the background; its
eventual result is either handed to an ``on_late`` callback or dropped.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class Outcome:
    """Result of a bounded wait.

    Attributes:
        value: Result of the awaited work when it succeeded in time
        error: Exception raised by the work, if any
        timed_out: True when the wait gave up before the work finished
    """
    value: Any = None
    error: Optional[BaseException] = None
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.timed_out


def _drain_abandoned(task: asyncio.Task, on_late: Optional[Callable[[Any], None]]) -> None:
    """Done-callback for abandoned tasks: deliver late success, log late failure."""
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug(f"Abandoned task finished with error: {error}")
        return
    if on_late is not None:
        on_late(task.result())


async def wait_abandoning(
    work: Awaitable[Any],
    timeout: Optional[float],
    on_late: Optional[Callable[[Any], None]] = None,
) -> Outcome:
    """
    Await work for at most ``timeout`` seconds without cancelling it.

    Args:
        work: Coroutine or awaitable to run
        timeout: Seconds to wait; None waits indefinitely
        on_late: Called with the result if the work succeeds after the
            wait has already given up

    Returns:
        Outcome describing success, failure or timeout. Exceptions raised by
        the work are captured, never propagated.
    """
    task = asyncio.ensure_future(work)
    try:
        done, _ = await asyncio.wait({task}, timeout=timeout)
    except asyncio.CancelledError:
        task.cancel()
        raise

    if task not in done:
        task.add_done_callback(lambda t: _drain_abandoned(t, on_late))
        return Outcome(timed_out=True)

    if task.cancelled():
        return Outcome(error=asyncio.CancelledError())
    error = task.exception()
    if error is not None:
        return Outcome(error=error)
    return Outcome(value=task.result())
