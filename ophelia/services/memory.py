"""
Memory collaborator contract.

WHAT: Interface to the external fact store, plus a retrieval wrapper
WHY: Fact lookup may be slow or broken; a turn must never wait on it indefinitely
HOW: Protocol for the store; timeout + broad failure handling degrade to no facts
"""

import asyncio
import inspect
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Protocol, Union

from ..core.config import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Fact:
    """A remembered fact about the user."""
    content: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class MemoryCollaborator(Protocol):
    """External fact store; may be sync or async."""

    def retrieve_relevant(self, query: str, top_k: int) -> Union[list[Fact], Awaitable[list[Fact]]]:
        ...


async def retrieve_facts(
    memory: MemoryCollaborator | None,
    query: str,
    *,
    top_k: int | None = None,
    timeout: float | None = None,
) -> list[Fact]:
    """
    Fetch facts relevant to query without ever blocking the turn.

    Args:
        memory: Fact store, or None when no store is configured
        query: Text to match (normally the last user message)
        top_k: Maximum facts requested
        timeout: Seconds to wait before giving up

    Returns:
        Facts in the order the store returned them; empty on absence,
        timeout, or any failure
    """
    if memory is None or not query.strip():
        return []

    if top_k is None:
        top_k = settings.MEMORY_TOP_K
    timeout = timeout if timeout is not None else settings.MEMORY_TIMEOUT

    try:
        result = memory.retrieve_relevant(query, top_k)
        if inspect.isawaitable(result):
            result = await asyncio.wait_for(result, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Memory retrieval timed out after {timeout}s, continuing without facts")
        return []
    except Exception as e:
        logger.warning(f"Memory retrieval failed ({e}), continuing without facts")
        return []

    facts = [f for f in (result or []) if getattr(f, "content", "").strip()]
    logger.debug(f"Retrieved {len(facts)} relevant facts")
    return facts
