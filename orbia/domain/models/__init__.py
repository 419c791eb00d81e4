from .agent_state import AgentResponse, Checkpoint, Message, MessageRole, Thread
from .memory import (
    GraphNode,
    MemoryEvent,
    MemoryGraph,
    MemoryHistoryEntry,
    MemoryRecord,
    MemoryRelation,
    RelationType,
    ScoredMemory,
)
from .tool_result import ToolResult

__all__ = [
    "AgentResponse",
    "Checkpoint",
    "GraphNode",
    "MemoryEvent",
    "MemoryGraph",
    "MemoryHistoryEntry",
    "MemoryRecord",
    "MemoryRelation",
    "Message",
    "MessageRole",
    "RelationType",
    "ScoredMemory",
    "Thread",
    "ToolResult",
]
