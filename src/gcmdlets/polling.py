import logging
import time
from typing import Callable, Optional, TypeVar

from gcmdlets.core import PollTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

POLL_INTERVAL = 0.25


def poll_until_done(
    refresh: Callable[[], T],
    is_done: Callable[[T], bool],
    interval: float = POLL_INTERVAL,
    timeout: Optional[float] = None,
    initial: Optional[T] = None,
    description: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """Refresh a status until it reports completion.

    Each round sleeps ``interval`` seconds, then calls ``refresh``. Errors
    raised by ``refresh`` propagate immediately. If ``initial`` is already
    done it is returned without polling.

    Raises:
        PollTimeoutError: ``timeout`` seconds passed without completion.
    """
    if initial is not None and is_done(initial):
        return initial

    deadline = None if timeout is None else clock() + timeout
    rounds = 0
    while True:
        sleep(interval)
        status = refresh()
        rounds += 1
        if is_done(status):
            logger.debug(f"{description} finished after {rounds} poll(s)")
            return status
        if deadline is not None and clock() >= deadline:
            raise PollTimeoutError(
                f"Timed out after {timeout}s waiting for {description}.",
                resource=description,
            )
