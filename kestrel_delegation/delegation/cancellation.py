"""Cancellation handle shared by explicit cancel() and the deadline timer."""

import asyncio
from enum import Enum
from typing import Optional


class AbortReason(str, Enum):
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"


class CancellationHandle:
    """One-shot abort signal for a single delegation.

    Both an explicit cancel and the deadline trigger the same handle. The
    first trigger wins: its reason is kept and later triggers are ignored,
    so backends finalise exactly once regardless of which signal raced in.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[AbortReason] = None
        self._deadline: Optional[asyncio.TimerHandle] = None

    @property
    def is_set(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[AbortReason]:
        return self._reason

    def trigger(self, reason: AbortReason) -> bool:
        """Fire the handle.

        Returns:
            True if this call fired it, False if it was already fired.
        """
        if self._event.is_set():
            return False
        self._reason = reason
        self._event.set()
        return True

    def arm_deadline(self, timeout_seconds: float) -> None:
        """Schedule a timeout trigger on the running loop."""
        self.disarm_deadline()
        loop = asyncio.get_running_loop()
        self._deadline = loop.call_later(timeout_seconds, self.trigger, AbortReason.TIMEOUT)

    def disarm_deadline(self) -> None:
        if self._deadline is not None:
            self._deadline.cancel()
            self._deadline = None

    async def wait(self) -> AbortReason:
        await self._event.wait()
        assert self._reason is not None
        return self._reason
