from step_sync_assistant.memory.manager import ConversationMemoryManager, MemoryConfig
from step_sync_assistant.memory.models import MemoryStats, Message, Session
from step_sync_assistant.memory.persistence import ConversationPersistence, PersistenceError, SqlitePersistence
from step_sync_assistant.memory.pruning import PruneReport, prune_memory
from step_sync_assistant.memory.store import MemoryStore

__all__ = [
    "ConversationMemoryManager",
    "ConversationPersistence",
    "MemoryConfig",
    "MemoryStats",
    "MemoryStore",
    "Message",
    "PersistenceError",
    "PruneReport",
    "Session",
    "SqlitePersistence",
    "prune_memory",
]
