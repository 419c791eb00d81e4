from .neo4j_graph_store import Neo4jGraphStore

__all__ = ["Neo4jGraphStore"]
