"""
Cooperative cancellation for one conversation turn.

WHAT: A flag shared by the HTTP read loop, retry loop, and flush timer
WHY: Stop work at safe points instead of interrupting it mid-update
HOW: asyncio.Event with a cancellable sleep
"""

import asyncio


class CancellationToken:
    """Single-shot cancellation signal; once cancelled it stays cancelled."""

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, delay: float) -> bool:
        """
        Sleep for delay seconds unless cancelled first.

        Returns:
            True if the token was cancelled before or during the sleep
        """
        if self.is_cancelled:
            return True
        if delay <= 0:
            return False
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True
