"""
Context window reconstruction from a stored transcript.

The chat-completions API rejects a tool message whose issuing assistant
tool call is missing, and an assistant tool call with no answer. Stored
transcripts can contain both (a crash mid-loop, a truncated window), so
history is cleaned before it is windowed and again after truncation.
"""

from sales_agent.config import settings
from sales_agent.schemas.conversation_schema import ChatMessage, Role


def drop_orphaned_tool_exchanges(messages: list[ChatMessage]) -> list[ChatMessage]:
    """Remove unanswered tool requests and tool results with no issuing request."""
    answered = {m.tool_call_id for m in messages if m.role == Role.TOOL and m.tool_call_id}

    kept: list[ChatMessage] = []
    issued: set[str] = set()
    for message in messages:
        if message.is_tool_request:
            call_ids = {call.id for call in message.tool_calls}
            if not call_ids <= answered:
                continue
            issued |= call_ids
        elif message.role == Role.TOOL:
            if message.tool_call_id not in issued:
                continue
        kept.append(message)
    return kept


def window_history(
    messages: list[ChatMessage],
    max_user_messages: int = settings.orchestrator.history_user_messages,
) -> list[ChatMessage]:
    """
    Keep the transcript tail that starts at the Nth most recent user message.

    Tool messages whose assistant request fell outside the window are
    dropped, so the result is always a valid chat-completions context.
    """
    cleaned = drop_orphaned_tool_exchanges(messages)

    start = 0
    seen_users = 0
    for index in range(len(cleaned) - 1, -1, -1):
        if cleaned[index].role == Role.USER:
            seen_users += 1
            if seen_users == max_user_messages:
                start = index
                break

    return drop_orphaned_tool_exchanges(cleaned[start:])


def recent_user_texts(messages: list[ChatMessage], limit: int = 3) -> list[str]:
    """Return the last ``limit`` user message texts, most recent first."""
    texts = [m.content for m in reversed(messages) if m.role == Role.USER and m.content]
    return texts[:limit]
