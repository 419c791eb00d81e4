from abc import ABC, abstractmethod
from typing import Dict, Set, Tuple
import asyncio

from orbia.domain.models.memory import (
    GraphNode, MemoryGraph, MemoryRecord, MemoryRelation, RelationType
)


class GraphMemoryStore(ABC):
    """Secondary relationship index over memory records.

    Only relationships are read from here; record presence is always decided
    by the semantic store.
    """

    @abstractmethod
    async def link_memory(self, user_id: str, record: MemoryRecord) -> None:
        """Assert (user)-[:HAS_MEMORY]->(memory)"""
        pass

    @abstractmethod
    async def relate(self, source_id: str, target_id: str, score: float) -> None:
        """Assert (memory)-[:RELATES_TO]->(memory)"""
        pass

    @abstractmethod
    async def update_memory(self, memory_id: str, content: str) -> None:
        pass

    @abstractmethod
    async def remove_memory(self, memory_id: str) -> None:
        pass

    @abstractmethod
    async def remove_user_memories(self, user_id: str) -> None:
        pass

    @abstractmethod
    async def linked_memory_ids(self, user_id: str) -> Set[str]:
        pass

    @abstractmethod
    async def get_user_graph(self, user_id: str) -> MemoryGraph:
        """User node, HAS_MEMORY edges and one hop of RELATES_TO edges"""
        pass

    async def close(self) -> None:
        pass


class InMemoryGraphStore(GraphMemoryStore):
    """In-memory graph for development and tests"""

    def __init__(self):
        self.memory_nodes: Dict[str, Dict[str, str]] = {}
        self.user_edges: Dict[str, Set[str]] = {}
        self.relations: Dict[Tuple[str, str], float] = {}
        self._lock = asyncio.Lock()

    async def link_memory(self, user_id: str, record: MemoryRecord) -> None:
        async with self._lock:
            self.memory_nodes[record.id] = {"content": record.content, "user_id": user_id}
            self.user_edges.setdefault(user_id, set()).add(record.id)

    async def relate(self, source_id: str, target_id: str, score: float) -> None:
        async with self._lock:
            self.relations[(source_id, target_id)] = score

    async def update_memory(self, memory_id: str, content: str) -> None:
        async with self._lock:
            if memory_id in self.memory_nodes:
                self.memory_nodes[memory_id]["content"] = content

    async def remove_memory(self, memory_id: str) -> None:
        async with self._lock:
            self._detach(memory_id)

    async def remove_user_memories(self, user_id: str) -> None:
        async with self._lock:
            for memory_id in list(self.user_edges.get(user_id, set())):
                self._detach(memory_id)
            self.user_edges.pop(user_id, None)

    async def linked_memory_ids(self, user_id: str) -> Set[str]:
        async with self._lock:
            return set(self.user_edges.get(user_id, set()))

    async def get_user_graph(self, user_id: str) -> MemoryGraph:
        async with self._lock:
            owned = self.user_edges.get(user_id, set())
            if not owned:
                return MemoryGraph()

            graph = MemoryGraph(nodes=[
                GraphNode(id=user_id, name=f"User: {user_id}", type="user", properties={"user_id": user_id})
            ])
            node_ids = {user_id}
            for memory_id in sorted(owned):
                self._add_memory_node(graph, node_ids, memory_id)
                graph.edges.append(MemoryRelation(
                    source_id=user_id, target_id=memory_id, type=RelationType.HAS_MEMORY
                ))

            for (source_id, target_id), score in self.relations.items():
                if source_id in owned or target_id in owned:
                    self._add_memory_node(graph, node_ids, source_id)
                    self._add_memory_node(graph, node_ids, target_id)
                    graph.edges.append(MemoryRelation(
                        source_id=source_id, target_id=target_id,
                        type=RelationType.RELATES_TO, score=score
                    ))
            return graph

    def _add_memory_node(self, graph: MemoryGraph, node_ids: Set[str], memory_id: str):
        if memory_id in node_ids:
            return
        node_ids.add(memory_id)
        properties = dict(self.memory_nodes.get(memory_id, {}))
        graph.nodes.append(GraphNode(
            id=memory_id,
            name=properties.get("content", "Memory"),
            type="memory",
            properties=properties
        ))

    def _detach(self, memory_id: str):
        self.memory_nodes.pop(memory_id, None)
        for edges in self.user_edges.values():
            edges.discard(memory_id)
        for key in [k for k in self.relations if memory_id in k]:
            del self.relations[key]
