"""
Adapters layer - Storage backends for slots and swap requests.
"""

from .memory_store import InMemoryStorage
from .sql_store import SqlStorage

__all__ = ["InMemoryStorage", "SqlStorage"]
