# Memory = durable facts about a user that outlive any single conversation.
#
# The semantic store is the source of truth for records, embeddings and
# version history. The graph store indexes (user)-[:HAS_MEMORY]->(memory)
# and (memory)-[:RELATES_TO]->(memory) edges and may lag behind; it is
# repaired by MemoryService.reconcile.

from .fact_extractor import FactExtractor, LLMFactExtractor, UserMessageExtractor
from .graph_memory_store import GraphMemoryStore, InMemoryGraphStore
from .memory_service import MemoryService
from .vector_memory_store import InMemorySemanticStore, SemanticMemoryStore, cosine_similarity

__all__ = [
    "FactExtractor",
    "GraphMemoryStore",
    "InMemoryGraphStore",
    "InMemorySemanticStore",
    "LLMFactExtractor",
    "MemoryService",
    "SemanticMemoryStore",
    "UserMessageExtractor",
    "cosine_similarity",
]
