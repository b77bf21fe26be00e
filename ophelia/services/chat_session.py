"""
Chat turn orchestration.

WHAT: Run one user turn from send to final assistant message
WHY: Every path (success, error, cancel) must leave the history consistent
     and the loading state cleared
HOW: Single in-flight turn per session; payload preparation, provider stream,
     and token aggregation wired together with one cancellation token
"""

import asyncio
import inspect
from contextlib import aclosing, suppress
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

from ..core.config import ProviderConfig, settings
from ..llm.cancellation import CancellationToken
from ..llm.error_classifier import classify_exception, user_message
from ..llm.provider import ChatProvider
from ..llm.provider_factory import get_provider
from ..llm.streaming_handler import TokenAggregator
from ..llm.types import (
    Cancelled,
    Completed,
    ErrorKind,
    Failed,
    ProviderError,
    StreamOutcome,
)
from ..models.message import Message, MessageStore
from ..utils.logger import get_logger
from .conversation_preparer import prepare_conversation
from .memory import MemoryCollaborator, retrieve_facts

logger = get_logger(__name__)

UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred"

# Seconds a cancelled turn gets to wind down cooperatively before it is interrupted
CANCEL_GRACE_PERIOD = 1.0


@dataclass
class TurnResult:
    """Terminal state of one turn as reported to the completion callback."""
    outcome: StreamOutcome
    message: Optional[Message] = None
    error_message: Optional[str] = None


FlushHandler = Callable[[Message, str], Union[None, Awaitable[None]]]
CompletionHandler = Callable[[TurnResult], Union[None, Awaitable[None]]]
SideEffectHandler = Callable[[str], None]


async def _maybe_await(result) -> None:
    if inspect.isawaitable(result):
        await result


class ChatSession:
    """
    One conversation bound to a provider selection.

    Observable effects are the flush callback (streamed text appended to the
    assistant message) and the completion callback (one TurnResult per turn).
    """

    def __init__(
        self,
        config: ProviderConfig,
        *,
        provider: ChatProvider | None = None,
        store: MessageStore | None = None,
        memory: MemoryCollaborator | None = None,
        on_flush: FlushHandler | None = None,
        on_complete: CompletionHandler | None = None,
        on_side_effect: SideEffectHandler | None = None,
        max_history_count: int | None = None,
        token_threshold: int | None = None,
        char_threshold: int | None = None,
        flush_interval: float | None = None,
    ):
        self.config = config
        self.provider = provider or get_provider(config)
        self.store = store or MessageStore()
        self.memory = memory
        self.on_flush = on_flush
        self.on_complete = on_complete
        self.on_side_effect = on_side_effect
        self.max_history_count = max_history_count
        self.aggregator_options = {
            "token_threshold": token_threshold,
            "char_threshold": char_threshold,
            "flush_interval": flush_interval,
        }

        self.error_message: str | None = None
        self._loading = False
        self._active_task: asyncio.Task | None = None
        self._cancel_token: CancellationToken | None = None
        self._interrupted_tasks: set[asyncio.Task] = set()
        # Held from cancelling the previous turn until the next one is registered
        self._start_lock = asyncio.Lock()

    @property
    def is_loading(self) -> bool:
        return self._loading

    @property
    def model(self) -> str:
        if self.config.model:
            return self.config.model
        return ProviderConfig.from_settings(provider=self.config.provider).model or ""

    async def send_turn(self, user_text: str) -> TurnResult | None:
        """
        Append the user's message and stream the assistant reply.

        Cancels and awaits any turn still in flight first.

        Args:
            user_text: Raw input; whitespace-only input is ignored

        Returns:
            TurnResult, or None when the input was empty
        """
        text = user_text.strip()
        if not text:
            return None

        async with self._start_lock:
            await self.cancel()
            self.error_message = None

            requires_credential = getattr(self.provider, "requires_credential", True)
            if requires_credential and not self.config.api_key:
                logger.warning(f"No valid API key for provider {self.config.display_name}")
                error = ProviderError(ErrorKind.INVALID_CREDENTIAL)
                result = TurnResult(
                    outcome=Failed(error),
                    error_message=user_message(error, self.config.display_name),
                )
                self.error_message = result.error_message
                await self._notify_complete(result)
                return result

            self.store.append(Message(role="user", content=user_text))

            token = CancellationToken()
            self._loading = True
            task = asyncio.create_task(self._run_turn(token))
            self._cancel_token = token
            self._active_task = task

        try:
            return await task
        finally:
            if self._active_task is task:
                self._active_task = None
                self._cancel_token = None

    async def cancel(self) -> None:
        """Cancel the in-flight turn (if any) and wait for it to wind down."""
        token, task = self._cancel_token, self._active_task
        if token is not None:
            token.cancel()
        if task is None or task.done() or task is asyncio.current_task():
            return

        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=CANCEL_GRACE_PERIOD)
        except asyncio.TimeoutError:
            logger.warning("Turn did not stop cooperatively, interrupting it")
            self._interrupted_tasks.add(task)
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    async def clear(self) -> None:
        """Stop any turn and remove every message."""
        await self.cancel()
        self.store.clear()
        self.error_message = None
        logger.info("Messages cleared")

    async def _run_turn(self, token: CancellationToken) -> TurnResult:
        model = self.model
        placeholder = Message(
            role="assistant",
            content="",
            origin_provider=self.config.display_name,
            origin_model=model,
        )
        self.store.append(placeholder)
        self._loading = True

        aggregator = TokenAggregator(
            lambda text: self._apply_flush(placeholder, text),
            cancel_token=token,
            **self.aggregator_options,
        )

        try:
            outcome = await self._stream_into(aggregator, placeholder, model, token)
        except asyncio.CancelledError:
            partial = await aggregator.cancel()
            result = await self._finalize(Cancelled(partial), placeholder)
            current = asyncio.current_task()
            if current in self._interrupted_tasks:
                # Interrupted by cancel(), not by our caller
                self._interrupted_tasks.discard(current)
                return result
            raise
        except ProviderError as e:
            await aggregator.cancel()
            if e.kind is ErrorKind.CANCELLED or token.is_cancelled:
                outcome = Cancelled(aggregator.full_text)
            else:
                logger.error(f"Error fetching response: {e.description}")
                outcome = Failed(e)
        except Exception as e:
            logger.exception(f"Unexpected error during turn: {e}")
            await aggregator.cancel()
            outcome = Failed(classify_exception(e))
            return await self._finalize(outcome, placeholder, UNEXPECTED_ERROR_MESSAGE)

        return await self._finalize(outcome, placeholder)

    async def _stream_into(
        self,
        aggregator: TokenAggregator,
        placeholder: Message,
        model: str,
        token: CancellationToken,
    ) -> StreamOutcome:
        last_user = self.store.last_user_message()
        facts = await retrieve_facts(self.memory, last_user.content if last_user else "")

        prepared = prepare_conversation(
            self.store.messages,
            placeholder_id=placeholder.id,
            max_history_count=self.max_history_count,
            system_prompt=self.config.system_prompt,
            facts=facts,
            placement=self.provider.system_prompt_placement,
        )

        aggregator.start()
        delta_count = 0
        stream = self.provider.stream_completion(
            prepared.messages,
            model,
            prepared.system_prompt,
            cancel_token=token,
        )
        async with aclosing(stream):
            async for delta in stream:
                if token.is_cancelled:
                    break
                await aggregator.add(delta.text)
                delta_count += 1
                if delta_count % settings.HAPTIC_EVERY_N_DELTAS == 0:
                    self._fire_side_effect("tick")

        if token.is_cancelled:
            return Cancelled(await aggregator.cancel())
        return Completed(await aggregator.finish())

    async def _apply_flush(self, placeholder: Message, text: str) -> None:
        self.store.append_content(placeholder.id, text)
        if self.on_flush is not None:
            await _maybe_await(self.on_flush(placeholder, text))

    async def _finalize(
        self,
        outcome: StreamOutcome,
        placeholder: Message,
        error_message: str | None = None,
    ) -> TurnResult:
        message: Message | None = placeholder

        if isinstance(outcome, Completed):
            if not outcome.full_text.strip():
                logger.info("Empty response, removing placeholder message")
                self.store.remove(placeholder.id)
                message = None
            else:
                self._fire_side_effect("success")
        elif isinstance(outcome, Failed):
            self.store.remove(placeholder.id)
            message = None
            error_message = error_message or user_message(outcome.error, self.config.display_name)
            self.error_message = error_message
            logger.error(f"Turn failed: {error_message}")
        else:
            if not placeholder.content.strip():
                self.store.remove(placeholder.id)
                message = None
            logger.info("Turn cancelled")

        self._loading = False
        result = TurnResult(outcome=outcome, message=message, error_message=error_message)
        await self._notify_complete(result)
        return result

    async def _notify_complete(self, result: TurnResult) -> None:
        if self.on_complete is not None:
            await _maybe_await(self.on_complete(result))

    def _fire_side_effect(self, kind: str) -> None:
        """Schedule a haptic/UI side effect without waiting for it."""
        if self.on_side_effect is None:
            return
        asyncio.get_running_loop().call_soon(self._run_side_effect, kind)

    def _run_side_effect(self, kind: str) -> None:
        try:
            self.on_side_effect(kind)
        except Exception as e:
            logger.warning(f"Side effect '{kind}' failed: {e}")
