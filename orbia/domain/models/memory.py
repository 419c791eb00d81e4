from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum
import hashlib
import uuid


class MemoryEvent(str, Enum):
    """History event types"""
    ADD = "ADD"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class RelationType(str, Enum):
    """Graph edge types"""
    HAS_MEMORY = "HAS_MEMORY"
    RELATES_TO = "RELATES_TO"


def content_hash(content: str) -> str:
    return hashlib.md5(content.strip().lower().encode("utf-8")).hexdigest()


class MemoryRecord(BaseModel):
    """A durable fact extracted from conversation, owned by one user"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    hash: str = ""
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    def model_post_init(self, __context: Any) -> None:
        if not self.hash:
            self.hash = content_hash(self.content)

    def to_wire(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "memory": self.content,
            "user_id": self.user_id,
            "metadata": self.metadata,
            "hash": self.hash,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class ScoredMemory(BaseModel):
    """Search hit"""
    record: MemoryRecord
    score: float

    def to_wire(self) -> Dict[str, Any]:
        data = self.record.to_wire()
        data["score"] = round(self.score, 4)
        return data


class MemoryHistoryEntry(BaseModel):
    """Append-only version history entry"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    memory_id: str
    previous_content: Optional[str] = None
    new_content: Optional[str] = None
    event: MemoryEvent
    created_at: datetime = Field(default_factory=datetime.utcnow)

    def to_wire(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "memory_id": self.memory_id,
            "old_memory": self.previous_content,
            "new_memory": self.new_content,
            "event": self.event.value,
            "created_at": self.created_at.isoformat(),
        }


class MemoryRelation(BaseModel):
    """Graph edge"""
    source_id: str
    target_id: str
    type: RelationType
    score: Optional[float] = None


class GraphNode(BaseModel):
    id: str
    name: str
    type: str = Field(description="user or memory")
    properties: Dict[str, Any] = Field(default_factory=dict)


class MemoryGraph(BaseModel):
    """Read-only projection of a user's memories and their relations"""
    nodes: List[GraphNode] = Field(default_factory=list)
    edges: List[MemoryRelation] = Field(default_factory=list)

    def to_wire(self) -> Dict[str, Any]:
        return {
            "nodes": [n.model_dump(mode="json") for n in self.nodes],
            "links": [
                {"source": e.source_id, "target": e.target_id, "type": e.type.value}
                for e in self.edges
            ],
        }
