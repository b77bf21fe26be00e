"""
Retry policy for stream connection establishment.

WHAT: Bounded exponential backoff around the handshake of a streaming request
WHY: Rate limits and flaky networks are common; a streamed body is not restartable
HOW: Classify each failure, sleep 0.5s/1s/2s... between transient ones, abort on cancel
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from .cancellation import CancellationToken
from .error_classifier import classify_exception, is_transient
from .types import ErrorKind, ProviderError
from ..core.config import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryState:
    """Attempt counter and next delay for one request's attempt sequence."""
    attempt: int = 0
    next_backoff: float = 0.5


class RetryPolicy:
    """Retry transient handshake failures with exponential backoff."""

    def __init__(
        self,
        max_attempts: int | None = None,
        initial_backoff: float | None = None,
    ):
        self.max_attempts = max_attempts if max_attempts is not None else settings.LLM_MAX_RETRIES
        self.initial_backoff = initial_backoff if initial_backoff is not None else settings.LLM_RETRY_DELAY

    def backoff_for(self, retry_number: int) -> float:
        """Delay before retry number retry_number (0-based)."""
        return self.initial_backoff * (2 ** retry_number)

    async def run(
        self,
        attempt_fn: Callable[[], Awaitable[T]],
        *,
        cancel_token: CancellationToken | None = None,
        label: str = "request",
    ) -> T:
        """
        Run attempt_fn until it succeeds, fails permanently, or retries run out.

        Args:
            attempt_fn: Coroutine factory performing one connection attempt
            cancel_token: Aborts further attempts (and the backoff sleep) when set
            label: Name used in log lines

        Returns:
            Result of the first successful attempt

        Raises:
            ProviderError: Non-transient failure, cancellation, or exhaustion
                (NETWORK_ERROR "failed after N retries")
        """
        token = cancel_token or CancellationToken()
        state = RetryState(attempt=0, next_backoff=self.initial_backoff)
        last_error: ProviderError | None = None

        while state.attempt < self.max_attempts:
            if token.is_cancelled:
                raise ProviderError(ErrorKind.CANCELLED)

            state.attempt += 1
            try:
                return await attempt_fn()
            except Exception as e:
                error = classify_exception(e)
                if error.kind is ErrorKind.CANCELLED or token.is_cancelled:
                    raise ProviderError(ErrorKind.CANCELLED) from e
                if not is_transient(error):
                    logger.error(f"{label} failed permanently: {error.description}")
                    if error is e:
                        raise
                    raise error from e
                last_error = error

            if state.attempt >= self.max_attempts:
                break

            logger.warning(
                f"{label} failed ({last_error.description}), "
                f"retrying in {state.next_backoff:.2f}s (attempt {state.attempt}/{self.max_attempts})"
            )
            if await token.sleep(state.next_backoff):
                raise ProviderError(ErrorKind.CANCELLED)
            state.next_backoff = self.backoff_for(state.attempt)

        logger.error(f"{label} failed after {self.max_attempts} attempts: {last_error.description if last_error else 'unknown'}")
        raise ProviderError(
            ErrorKind.NETWORK_ERROR,
            f"failed after {self.max_attempts} retries"
        ) from last_error
