"""Explicit cooperative cancellation passed down the turn call chain."""

import asyncio
from typing import Awaitable, Optional, TypeVar

import structlog

from .errors import TurnCancelledError

log = structlog.get_logger(__name__)

T = TypeVar("T")

class CancellationToken:
    """A one-shot cancellation flag with a reason.

    The token is checked at every suspension boundary (before a model call, before tool
    execution). `run` races an awaitable against the token and an optional deadline, so the
    effective deadline is whichever of the two fires first.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self._reason: Optional[str] = None
        self._timer: Optional[asyncio.TimerHandle] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "Turn aborted.") -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        log.info("Cancellation requested", reason=reason)

    def cancel_after(self, seconds: float, reason: str = "Turn timed out.") -> None:
        """Schedules cancellation on the running loop; replaces any earlier schedule."""
        self.clear_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(seconds, self.cancel, reason)

    def clear_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TurnCancelledError(self._reason or "Turn aborted.")

    async def run(self, awaitable: Awaitable[T], timeout: Optional[float] = None,
                  timeout_reason: str = "Operation timed out.") -> T:
        """Awaits `awaitable` unless the token fires or `timeout` elapses first.

        Raises:
            TurnCancelledError: with the token's reason, or `timeout_reason` on deadline.
        """
        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            log.debug("Abandoned operation raised while being cancelled", error=str(e))
        if self.cancelled:
            raise TurnCancelledError(self._reason or "Turn aborted.")
        raise TurnCancelledError(timeout_reason)
