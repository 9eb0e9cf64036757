"""Persistence backends for the linking pipeline."""

from .base import LinkingStore
from .memory import InMemoryLinkingStore
from .sql import ClientRow, DocumentRow, SqlLinkingStore

__all__ = [
    "LinkingStore",
    "InMemoryLinkingStore",
    "SqlLinkingStore",
    "ClientRow",
    "DocumentRow",
]
