"""
Conversation payload preparation.

WHAT: Build the wire-ready message list for one request
WHY: The provider sees a bounded window, remembered facts, and the system
     prompt in the place that provider expects it
HOW: Exclude the in-flight placeholder, truncate, map roles, inject facts,
     then apply inline or separate system-prompt placement
"""

from dataclasses import dataclass
from typing import Optional, Sequence

from ..core.config import settings
from ..llm.types import ChatMessage
from ..models.message import Message
from ..utils.history_truncation import truncate_conversation_history
from ..utils.logger import get_logger
from .memory import Fact

logger = get_logger(__name__)

FACTS_HEADER = "Relevant facts:"
FACTS_SUMMARY_PREFIX = "Summary of user's known information:"


@dataclass
class PreparedConversation:
    """Payload plus the system prompt to hand to the adapter separately (if any)."""
    messages: list[ChatMessage]
    system_prompt: Optional[str] = None


def format_facts(facts: Sequence[Fact], max_inline: int | None = None) -> str | None:
    """
    Render facts as one system entry.

    Up to max_inline facts become a bullet list; more are collapsed into a
    single summary sentence to bound prompt size. Caller order is preserved.
    """
    contents = [f.content.strip() for f in facts if f.content.strip()]
    if not contents:
        return None

    max_inline = max_inline if max_inline is not None else settings.MAX_INLINE_FACTS
    if len(contents) > max_inline:
        joined = ". ".join(c.rstrip(".") for c in contents)
        return f"{FACTS_SUMMARY_PREFIX} {joined}."

    bullets = "\n".join(f"- {c}" for c in contents)
    return f"{FACTS_HEADER}\n{bullets}"


def prepare_conversation(
    history: Sequence[Message],
    *,
    placeholder_id: str | None = None,
    max_history_count: int | None = None,
    system_prompt: str | None = None,
    facts: Sequence[Fact] | None = None,
    placement: str = "inline",
) -> PreparedConversation:
    """
    Assemble the outbound payload for one request.

    Args:
        history: Full message history, oldest first
        placeholder_id: Id of the in-flight assistant message; always excluded.
            Without it, a trailing empty assistant message is treated as the placeholder.
        max_history_count: Window size (default MAX_HISTORY_COUNT)
        system_prompt: Configured system prompt, if any
        facts: Relevant facts from the memory collaborator, in caller order
        placement: "inline" prepends the system prompt as a system message;
            "separate" returns it for the adapter's own field

    Returns:
        PreparedConversation (deterministic for identical inputs)
    """
    if max_history_count is None:
        max_history_count = settings.MAX_HISTORY_COUNT

    if placeholder_id is not None:
        window = [m for m in history if m.id != placeholder_id]
    else:
        window = list(history)
        if window and window[-1].role == "assistant" and not window[-1].content.strip():
            window.pop()

    window = truncate_conversation_history(window, max_messages=max_history_count)

    payload: list[ChatMessage] = []

    facts_entry = format_facts(facts or [])
    if facts_entry:
        payload.append({"role": "system", "content": facts_entry})

    for message in window:
        cleaned = message.content.strip()
        if not cleaned:
            continue
        payload.append({"role": message.role, "content": cleaned})

    prompt = (system_prompt or "").strip() or None
    if placement == "inline":
        if prompt:
            payload.insert(0, {"role": "system", "content": prompt})
        prepared = PreparedConversation(messages=payload, system_prompt=None)
    elif placement == "separate":
        prepared = PreparedConversation(messages=payload, system_prompt=prompt)
    else:
        raise ValueError(f"Unknown system prompt placement: {placement}")

    logger.debug(
        f"Prepared payload: {len(prepared.messages)} messages "
        f"(facts: {len(facts or [])}, system prompt: {placement if prompt else 'none'})"
    )
    return prepared
