from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum
import uuid


class MessageRole(str, Enum):
    """Conversation message roles"""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


def new_message_id() -> str:
    return f"msg_{uuid.uuid4().hex}"


class Message(BaseModel):
    """Role-tagged conversation message, immutable once appended to a checkpoint"""
    id: str = Field(default_factory=new_message_id, description="Unique message identifier")
    role: MessageRole
    content: str = Field(default="")
    name: Optional[str] = Field(None, description="Tool name for tool-role messages")
    tool_call_id: Optional[str] = Field(None, description="Tool call answered by a tool-role message")
    tool_calls: Optional[List[Dict[str, Any]]] = Field(None, description="Tool calls requested by an assistant message")

    model_config = {"frozen": True, "use_enum_values": False}

    def to_wire(self) -> Dict[str, Any]:
        """Serialize for checkpoints and API responses"""
        return self.model_dump(mode="json", exclude_none=True)


class Thread(BaseModel):
    """The single durable conversation identity of one user"""
    thread_id: str
    user_id: str
    created_at: datetime = Field(default_factory=datetime.utcnow)
    last_accessed_at: datetime = Field(default_factory=datetime.utcnow)


class Checkpoint(BaseModel):
    """Current persisted state of a thread"""
    thread_id: str
    channel_values: Dict[str, Any] = Field(default_factory=lambda: {"messages": []})
    version: int = Field(default=0, description="Monotonic version used for optimistic saves")
    updated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    @classmethod
    def empty(cls, thread_id: str) -> "Checkpoint":
        return cls(thread_id=thread_id)

    @property
    def messages(self) -> List[Message]:
        """Messages in append order"""
        return [Message.model_validate(raw) for raw in self.channel_values.get("messages", [])]

    def with_messages(self, messages: List[Message], **auxiliary: Any) -> "Checkpoint":
        """Build the replacement checkpoint carrying the given message sequence"""
        channel_values = dict(self.channel_values)
        channel_values.update(auxiliary)
        channel_values["messages"] = [m.to_wire() for m in messages]
        return Checkpoint(thread_id=self.thread_id, channel_values=channel_values, version=self.version)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class AgentResponse(BaseModel):
    """Result of a synchronous agent invocation"""
    thread_id: Optional[str] = None
    message: Message
    suggestions: Optional[List[str]] = None
    tool_results: List[Dict[str, Any]] = Field(default_factory=list)

    def to_wire(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "message": {"role": self.message.role.value, "content": self.message.content}
        }
        if self.suggestions is not None:
            body["suggestions"] = self.suggestions
        if self.thread_id:
            body["threadId"] = self.thread_id
        return body
