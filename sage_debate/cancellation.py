"""Cooperative cancellation shared by every call in one debate."""

import asyncio
import logging

from sage_debate.errors import DebateAborted

logger = logging.getLogger(__name__)


class CancelToken:
    """One-shot cancellation flag backed by an asyncio.Event.

    The token fires either when ``cancel()`` is called or when a deadline set
    through ``cancel_after()`` expires.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None
        self._timer: asyncio.TimerHandle | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled by caller") -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        logger.info("Cancel token fired: %s", reason)

    def cancel_after(self, timeout_sec: float) -> None:
        """Arm a deadline on the running loop. Replaces any earlier deadline."""
        self.clear_deadline()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(
            timeout_sec, self.cancel, f"deadline of {timeout_sec:g}s exceeded"
        )

    def clear_deadline(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise DebateAborted(self._reason or "cancelled")

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, delay: float) -> None:
        """Sleep for ``delay`` seconds, aborting early if the token fires."""
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except TimeoutError:
            return
        self.raise_if_cancelled()
