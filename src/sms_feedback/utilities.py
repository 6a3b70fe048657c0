from typing import Any

from haystack.dataclasses import ChatMessage

from sms_feedback.enums import MessageDirection
from sms_feedback.pydantic_models import ConversationLogEntry


def log_entries_to_chat_messages(
    entries: list[ConversationLogEntry],
) -> list[ChatMessage]:
    """
    Presents a conversation log as chat messages: what the respondent sent is
    a user message, what we sent back is an assistant message.
    """
    messages = []
    for entry in entries:
        meta = {
            "status": entry.status.value,
            "provider_message_id": entry.provider_message_id,
            "created_at": entry.created_at.isoformat() if entry.created_at else None,
        }
        if entry.error:
            meta["error"] = entry.error
        if entry.direction == MessageDirection.INBOUND:
            messages.append(ChatMessage.from_user(text=entry.content, meta=meta))
        else:
            messages.append(ChatMessage.from_assistant(text=entry.content, meta=meta))
    return messages


def chat_messages_to_json(messages: list[ChatMessage]) -> list[dict[str, Any]]:
    """Converts a list of ChatMessage objects to a JSON-serializable list of dicts."""
    return [
        {
            "role": msg.role.value,
            "text": msg.text,
            "meta": {k: v for k, v in msg.meta.items()},
        }
        for msg in messages
    ]
