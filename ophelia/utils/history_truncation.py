"""
Conversation history truncation utilities.

WHAT: Bound the message window sent to the provider
WHY: Context windows and request sizes are limited
HOW: Keep the most recent messages, mark the cut with a synthetic notice
"""

from typing import List

from ..models.message import Message
from ..utils.logger import get_logger

logger = get_logger(__name__)

TRUNCATION_NOTICE = "Previous context has been summarized to keep message size manageable."


def truncate_conversation_history(
    history: List[Message],
    max_messages: int = 10,
) -> List[Message]:
    """
    Keep the most recent max_messages messages.

    When anything is dropped, a synthetic assistant message carrying
    TRUNCATION_NOTICE is placed first so both the model and the reader can
    see that context was shortened. No summarization call is made.

    Args:
        history: Conversation history, oldest first
        max_messages: Maximum number of original messages to keep (default: 10)

    Returns:
        New list; the input is not modified
    """
    if not history:
        return []

    if len(history) <= max_messages:
        return list(history)

    dropped = len(history) - max_messages
    truncated = list(history[dropped:])
    truncated.insert(0, Message(role="assistant", content=TRUNCATION_NOTICE))

    logger.info(f"Truncated conversation history: {len(history)} -> {max_messages} messages (+ notice)")
    return truncated
