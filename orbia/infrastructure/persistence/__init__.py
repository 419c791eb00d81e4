from .checkpoint_store import SqlCheckpointStore
from .database import Database
from .sql_memory_store import SqlSemanticMemoryStore

__all__ = ["Database", "SqlCheckpointStore", "SqlSemanticMemoryStore"]
