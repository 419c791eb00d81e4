"""
Neo4j-backed memory graph.

Schema:
    (:User {user_id})-[:HAS_MEMORY]->(:Memory {memory_id, user_id, content})
    (:Memory)-[:RELATES_TO {score}]->(:Memory)
"""

import asyncio
from typing import Any, Dict, List, Optional, Set

import structlog
from neo4j import AsyncDriver, AsyncGraphDatabase

from orbia.domain.context.memory.graph_memory_store import GraphMemoryStore
from orbia.domain.models.memory import (
    GraphNode, MemoryGraph, MemoryRecord, MemoryRelation, RelationType
)

logger = structlog.get_logger(__name__)

CONNECTION_TIMEOUT = 10.0
ACQUISITION_TIMEOUT = 10.0
MAX_CONNECTION_LIFETIME = 3600

LINK_MEMORY = """
MERGE (u:User {user_id: $user_id})
MERGE (m:Memory {memory_id: $memory_id})
SET m.user_id = $user_id, m.content = $content, m.created_at = $created_at
MERGE (u)-[:HAS_MEMORY]->(m)
"""

RELATE = """
MATCH (a:Memory {memory_id: $source_id}), (b:Memory {memory_id: $target_id})
WHERE a.user_id = b.user_id
MERGE (a)-[r:RELATES_TO]->(b)
SET r.score = $score
"""

UPDATE_MEMORY = "MATCH (m:Memory {memory_id: $memory_id}) SET m.content = $content"

REMOVE_MEMORY = "MATCH (m:Memory {memory_id: $memory_id}) DETACH DELETE m"

REMOVE_USER_MEMORIES = """
MATCH (:User {user_id: $user_id})-[:HAS_MEMORY]->(m:Memory)
DETACH DELETE m
"""

LINKED_MEMORY_IDS = """
MATCH (:User {user_id: $user_id})-[:HAS_MEMORY]->(m:Memory)
RETURN m.memory_id AS memory_id
"""

USER_GRAPH = """
MATCH (u:User {user_id: $user_id})-[:HAS_MEMORY]->(m:Memory)
OPTIONAL MATCH (m)-[r:RELATES_TO]-(other:Memory)
RETURN m.memory_id AS memory_id, m.content AS content,
       collect(DISTINCT {source: startNode(r).memory_id, target: endNode(r).memory_id,
                         content: other.content, other_id: other.memory_id, score: r.score}) AS relations
"""


class Neo4jGraphStore(GraphMemoryStore):
    """Graph store on the neo4j async driver"""

    def __init__(
        self,
        uri: str,
        user: str,
        password: str,
        database: str = "neo4j",
        connection_timeout: float = CONNECTION_TIMEOUT,
        query_timeout: float = 10.0
    ):
        self.uri = uri
        self.user = user
        self.password = password
        self.database = database
        self.connection_timeout = connection_timeout
        self.query_timeout = query_timeout
        self._driver: Optional[AsyncDriver] = None

    async def initialize(self) -> None:
        if self._driver is not None:
            return

        logger.info("Initializing Neo4j connection", uri=self.uri)
        self._driver = AsyncGraphDatabase.driver(
            self.uri,
            auth=(self.user, self.password),
            max_connection_lifetime=MAX_CONNECTION_LIFETIME,
            connection_timeout=self.connection_timeout,
            connection_acquisition_timeout=ACQUISITION_TIMEOUT,
        )
        try:
            await asyncio.wait_for(self._driver.verify_connectivity(), timeout=self.connection_timeout)
        except asyncio.TimeoutError:
            await self.close()
            raise ConnectionError(f"Neo4j connection timeout to {self.uri}")

        await self._execute("CREATE CONSTRAINT memory_id IF NOT EXISTS FOR (m:Memory) REQUIRE m.memory_id IS UNIQUE")
        await self._execute("CREATE CONSTRAINT user_id IF NOT EXISTS FOR (u:User) REQUIRE u.user_id IS UNIQUE")
        logger.info("Neo4j connection established")

    async def close(self) -> None:
        if self._driver:
            await self._driver.close()
            self._driver = None
            logger.info("Neo4j connection closed")

    async def link_memory(self, user_id: str, record: MemoryRecord) -> None:
        await self._execute(
            LINK_MEMORY,
            user_id=user_id,
            memory_id=record.id,
            content=record.content,
            created_at=record.created_at.isoformat()
        )

    async def relate(self, source_id: str, target_id: str, score: float) -> None:
        await self._execute(RELATE, source_id=source_id, target_id=target_id, score=score)

    async def update_memory(self, memory_id: str, content: str) -> None:
        await self._execute(UPDATE_MEMORY, memory_id=memory_id, content=content)

    async def remove_memory(self, memory_id: str) -> None:
        await self._execute(REMOVE_MEMORY, memory_id=memory_id)

    async def remove_user_memories(self, user_id: str) -> None:
        await self._execute(REMOVE_USER_MEMORIES, user_id=user_id)

    async def linked_memory_ids(self, user_id: str) -> Set[str]:
        records = await self._execute(LINKED_MEMORY_IDS, user_id=user_id)
        return {record["memory_id"] for record in records}

    async def get_user_graph(self, user_id: str) -> MemoryGraph:
        records = await self._execute(USER_GRAPH, user_id=user_id)
        if not records:
            return MemoryGraph()

        graph = MemoryGraph(nodes=[
            GraphNode(id=user_id, name=f"User: {user_id}", type="user", properties={"user_id": user_id})
        ])
        seen_nodes = {user_id}
        seen_edges = set()

        def add_memory_node(memory_id: str, content: Optional[str]):
            if memory_id in seen_nodes:
                return
            seen_nodes.add(memory_id)
            graph.nodes.append(GraphNode(
                id=memory_id, name=content or "Memory", type="memory", properties={"content": content}
            ))

        for record in records:
            memory_id = record["memory_id"]
            add_memory_node(memory_id, record["content"])
            graph.edges.append(MemoryRelation(source_id=user_id, target_id=memory_id, type=RelationType.HAS_MEMORY))

            for rel in record["relations"]:
                if rel.get("source") is None or rel.get("target") is None:
                    continue
                key = (rel["source"], rel["target"])
                if key in seen_edges:
                    continue
                seen_edges.add(key)
                add_memory_node(rel["other_id"], rel.get("content"))
                graph.edges.append(MemoryRelation(
                    source_id=rel["source"], target_id=rel["target"],
                    type=RelationType.RELATES_TO, score=rel.get("score")
                ))

        return graph

    async def _execute(self, query: str, **parameters: Any) -> List[Dict[str, Any]]:
        if self._driver is None:
            await self.initialize()

        try:
            result = await asyncio.wait_for(
                self._driver.execute_query(query, parameters, database_=self.database),
                timeout=self.query_timeout
            )
        except asyncio.TimeoutError:
            logger.error("Neo4j query timeout", timeout=self.query_timeout, query=query[:80])
            raise TimeoutError(f"Neo4j query timeout after {self.query_timeout}s")
        return [record.data() for record in result.records]
