"""
Token aggregation for streaming responses.

WHAT: Batch a fast, bursty delta stream into UI-friendly flushes
WHY: Updating the target message per token is wasteful; batching too long feels laggy
HOW: Buffer deltas; flush on size threshold, on a timer since the last flush,
     or on force (stream end / cancellation)
"""

import asyncio
import inspect
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Union

from ..core.config import settings
from .cancellation import CancellationToken
from ..utils.logger import get_logger

logger = get_logger(__name__)

FlushCallback = Callable[[str], Union[None, Awaitable[None]]]


class AggregatorPhase(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    FLUSHING = "flushing"
    CANCELLED = "cancelled"


@dataclass
class AggregatorState:
    """Pending text and last flush time for one streaming response."""
    buffer: list[str] = field(default_factory=list)
    buffered_chars: int = 0
    last_flush: float = 0.0


class TokenAggregator:
    """
    Consumer-side buffer between a provider stream and the message being written.

    One instance per streaming response. The flush callback receives each batch
    of text in arrival order; concatenating every batch reproduces full_text.
    """

    def __init__(
        self,
        on_flush: FlushCallback,
        *,
        token_threshold: int | None = None,
        char_threshold: int | None = None,
        flush_interval: float | None = None,
        cancel_token: CancellationToken | None = None,
    ):
        self.on_flush = on_flush
        self.cancel_token = cancel_token
        self.token_threshold = token_threshold if token_threshold is not None else settings.TOKEN_BATCH_SIZE
        self.char_threshold = char_threshold if char_threshold is not None else settings.TOKEN_FLUSH_CHARS
        self.flush_interval = flush_interval if flush_interval is not None else settings.TOKEN_FLUSH_INTERVAL

        self.phase = AggregatorPhase.IDLE
        self.state = AggregatorState()
        self.flush_count = 0
        self._full_text: list[str] = []
        self._timer: asyncio.Task | None = None
        self._timer_flushing = False
        self._lock = asyncio.Lock()

    @property
    def full_text(self) -> str:
        return "".join(self._full_text)

    @property
    def pending_text(self) -> str:
        return "".join(self.state.buffer)

    def start(self) -> None:
        """Reset state for a new stream."""
        self._cancel_timer()
        self.state = AggregatorState(last_flush=time.monotonic())
        self._full_text = []
        self.flush_count = 0
        self.phase = AggregatorPhase.STREAMING

    async def add(self, text: str) -> None:
        """Append one delta; flushes immediately when a threshold is reached."""
        if self.phase is AggregatorPhase.IDLE:
            self.start()
        if self.phase is AggregatorPhase.CANCELLED or not text:
            return

        self.state.buffer.append(text)
        self.state.buffered_chars += len(text)
        self._full_text.append(text)

        if self._threshold_reached() or self._interval_elapsed():
            await self.flush()
        else:
            self._schedule_timer()

    async def flush(self, force: bool = False) -> str:
        """
        Move buffered text into the flush callback.

        Args:
            force: Invoke the callback even when the buffer is empty

        Returns:
            The text handed to the callback ("" when nothing was flushed)
        """
        async with self._lock:
            if not force and self._cancel_signalled():
                return ""
            if not force and not self.state.buffer:
                return ""

            text = "".join(self.state.buffer)
            self.state.buffer.clear()
            self.state.buffered_chars = 0
            self.state.last_flush = time.monotonic()

            previous = self.phase
            if previous is AggregatorPhase.STREAMING:
                self.phase = AggregatorPhase.FLUSHING
            try:
                result = self.on_flush(text)
                if inspect.isawaitable(result):
                    await result
            finally:
                if self.phase is AggregatorPhase.FLUSHING:
                    self.phase = previous

            self.flush_count += 1
            return text

    async def finish(self) -> str:
        """Stream ended normally: final forced flush, back to idle."""
        await self._stop_timer()
        if self.phase is not AggregatorPhase.CANCELLED:
            await self.flush(force=True)
            self.phase = AggregatorPhase.IDLE
        return self.full_text

    async def cancel(self) -> str:
        """
        Stop timed flushes and deliver whatever is still buffered.

        A timed flush already handing text to the callback is allowed to
        complete first. No flush callback fires after this returns.
        """
        await self._stop_timer()
        if self.phase is AggregatorPhase.CANCELLED:
            return self.full_text
        await self.flush(force=True)
        self.phase = AggregatorPhase.CANCELLED
        logger.debug(f"Token aggregator cancelled after {self.flush_count} flushes")
        return self.full_text

    def _cancel_signalled(self) -> bool:
        if self.phase is AggregatorPhase.CANCELLED:
            return True
        return self.cancel_token is not None and self.cancel_token.is_cancelled

    def _threshold_reached(self) -> bool:
        if len(self.state.buffer) >= self.token_threshold:
            return True
        return self.char_threshold is not None and self.state.buffered_chars >= self.char_threshold

    def _interval_elapsed(self) -> bool:
        return time.monotonic() - self.state.last_flush >= self.flush_interval

    def _schedule_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            return
        delay = max(0.0, self.state.last_flush + self.flush_interval - time.monotonic())
        self._timer_flushing = False
        self._timer = asyncio.get_running_loop().create_task(self._timed_flush(delay))

    async def _timed_flush(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._cancel_signalled():
            return
        if self.phase in (AggregatorPhase.STREAMING, AggregatorPhase.FLUSHING):
            # From here on the timer owns a batch and must not be cancelled
            self._timer_flushing = True
            try:
                await self.flush()
            except Exception as e:
                logger.error(f"Timed flush failed: {e}")
            if self.state.buffer and not self._cancel_signalled():
                self._timer = None
                self._schedule_timer()

    def _cancel_timer(self) -> None:
        """Drop a timer that is still sleeping; one mid-flush is left to finish."""
        if self._timer is not None and not self._timer.done() and not self._timer_flushing:
            self._timer.cancel()
        self._timer = None

    async def _stop_timer(self) -> None:
        timer = self._timer
        flushing = self._timer_flushing
        self._cancel_timer()
        if timer is not None and flushing and not timer.done():
            await timer
            self._cancel_timer()
