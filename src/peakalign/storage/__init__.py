from .materializer import EventMaterializer, best_per_key
from .memory import InMemoryStore
from .port import AlignmentStore
from .sqlite import SQLiteStore

__all__ = [
    "AlignmentStore",
    "EventMaterializer",
    "InMemoryStore",
    "SQLiteStore",
    "best_per_key",
]
