"""Conversion between wire messages, internal Message records and langchain messages."""

from typing import Any, Dict, Iterable, List, Optional
from langchain_core.messages import (
    AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
)

from orbia.domain.models.agent_state import Message, MessageRole, new_message_id

ACCEPTED_WIRE_ROLES = {MessageRole.USER.value, MessageRole.ASSISTANT.value, MessageRole.SYSTEM.value}


def normalize(raw_messages: Optional[Iterable[Any]]) -> List[Message]:
    """Keep well-formed user/assistant/system entries, silently drop everything else"""

    if not raw_messages:
        return []

    normalized: List[Message] = []
    for raw in raw_messages:
        if not isinstance(raw, dict):
            continue
        role = raw.get("role")
        content = raw.get("content")
        if role not in ACCEPTED_WIRE_ROLES or not isinstance(content, str):
            continue
        message_id = raw.get("id")
        if not isinstance(message_id, str) or not message_id:
            message_id = new_message_id()
        normalized.append(Message(id=message_id, role=MessageRole(role), content=content))

    return normalized


def to_langchain(message: Message) -> BaseMessage:
    """Convert an internal message into the langchain class the chat model expects"""

    if message.role == MessageRole.USER:
        return HumanMessage(content=message.content, id=message.id)
    if message.role == MessageRole.SYSTEM:
        return SystemMessage(content=message.content, id=message.id)
    if message.role == MessageRole.TOOL:
        return ToolMessage(
            content=message.content,
            tool_call_id=message.tool_call_id or "",
            name=message.name,
            id=message.id
        )
    return AIMessage(content=message.content, tool_calls=message.tool_calls or [], id=message.id)


def from_langchain(message: BaseMessage) -> Message:
    """Convert a langchain message back into an internal record"""

    content = text_content(message.content)
    message_id = message.id or new_message_id()

    if isinstance(message, HumanMessage):
        return Message(id=message_id, role=MessageRole.USER, content=content)
    if isinstance(message, SystemMessage):
        return Message(id=message_id, role=MessageRole.SYSTEM, content=content)
    if isinstance(message, ToolMessage):
        return Message(
            id=message_id,
            role=MessageRole.TOOL,
            content=content,
            name=message.name,
            tool_call_id=message.tool_call_id
        )
    if isinstance(message, AIMessage):
        tool_calls = [
            {"id": call.get("id"), "name": call["name"], "args": call.get("args", {})}
            for call in message.tool_calls
        ]
        return Message(
            id=message_id,
            role=MessageRole.ASSISTANT,
            content=content,
            tool_calls=tool_calls or None
        )
    raise ValueError(f"Unsupported message type: {type(message).__name__}")


def to_memory_format(messages: Iterable[Message]) -> List[Dict[str, str]]:
    """Reduce messages to the {role, content} pairs used for memory extraction"""

    return [
        {"role": m.role.value, "content": m.content}
        for m in messages
        if m.role in (MessageRole.USER, MessageRole.ASSISTANT) and m.content.strip()
    ]


def text_content(content: Any) -> str:
    """Flatten langchain content blocks into plain text"""

    if isinstance(content, str):
        return content
    parts: List[str] = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(str(block.get("text", "")))
    return "".join(parts)
