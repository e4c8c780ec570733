"""Session and flag persistence adapters."""

from .flags import JsonFlagStore, MemoryFlagStore
from .http import HttpSessionStore, create_store_session
from .memory import InMemorySessionStore

__all__ = [
    "HttpSessionStore",
    "InMemorySessionStore",
    "JsonFlagStore",
    "MemoryFlagStore",
    "create_store_session",
]
