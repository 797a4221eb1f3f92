"""
Relations module for reltrack.

This module handles:
- The SQLite relations table (upsert, batch upsert, rename, prune)
- Grouped, recency-ordered reads with a TTL cache in front

Invariants:
    - The composite endpoint key is unique
    - Batch upserts and renames are atomic
    - Writes invalidate cached reads of every type they touch
"""

from .models import Relation, RelatedEntry, RelationGroup, UserCommand
from .store import USER_COMMANDS_KEY, RelationStore

__all__ = [
    "Relation",
    "RelatedEntry",
    "RelationGroup",
    "UserCommand",
    "RelationStore",
    "USER_COMMANDS_KEY",
]
