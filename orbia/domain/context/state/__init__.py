# State = the current checkpoint of a user's single thread.
#
# It holds the ordered message sequence plus auxiliary values, carries a
# version for optimistic saves and expires 24 hours after its last write.
# Expiry drops the checkpoint only; the thread survives.

from .checkpoint_store import CheckpointStore, InMemoryCheckpointStore
from .state_manager import ThreadManager, generate_thread_id

__all__ = ["CheckpointStore", "InMemoryCheckpointStore", "ThreadManager", "generate_thread_id"]
