"""
Relation data model.

Rows are exposed as dataclasses with snake_case fields; ``to_dict()``
produces the camelCase shape returned to API consumers.
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass
class Relation:
    """A directed, typed edge with aggregated observation counters.

    Attributes:
        source_type: Type of the source endpoint (e.g. "username")
        source_value: Value of the source endpoint
        target_type: Type of the target endpoint (e.g. "command")
        target_value: Value of the target endpoint
        metadata: Attributes of the latest observation
        first_seen: First observation (Unix ms)
        last_seen: Latest observation (Unix ms)
        strength: Number of upserts of this edge
        connection_count: Mirrors strength under upsert; bumped on rename merges
        id: Row identifier
    """

    source_type: str
    source_value: str
    target_type: str
    target_value: str
    metadata: dict[str, Any]
    first_seen: int
    last_seen: int
    strength: int
    connection_count: int
    id: int | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Relation:
        return cls(
            id=row["id"],
            source_type=row["source_type"],
            source_value=row["source_value"],
            target_type=row["target_type"],
            target_value=row["target_value"],
            metadata=json.loads(row["metadata_json"]),
            first_seen=row["first_seen"],
            last_seen=row["last_seen"],
            strength=row["strength"],
            connection_count=row["connection_count"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sourceType": self.source_type,
            "sourceValue": self.source_value,
            "targetType": self.target_type,
            "targetValue": self.target_value,
            "metadata": self.metadata,
            "firstSeen": self.first_seen,
            "lastSeen": self.last_seen,
            "strength": self.strength,
            "connectionCount": self.connection_count,
        }


@dataclass
class RelatedEntry:
    """One target inside a RelationGroup."""

    target: str
    type: str
    strength: int
    connection_count: int
    first_seen: int
    last_seen: int
    metadata: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target,
            "type": self.type,
            "strength": self.strength,
            "connectionCount": self.connection_count,
            "firstSeen": self.first_seen,
            "lastSeen": self.last_seen,
            "metadata": self.metadata,
        }


@dataclass
class RelationGroup:
    """Edges sharing one source value, in the order they were scanned."""

    source: str
    type: str
    related: list[RelatedEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "type": self.type,
            "related": [entry.to_dict() for entry in self.related],
        }


@dataclass
class UserCommand:
    """Flat username -> command row."""

    username: str
    command: str
    first_seen: int
    last_seen: int
    metadata: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "username": self.username,
            "command": self.command,
            "firstSeen": self.first_seen,
            "lastSeen": self.last_seen,
            "metadata": self.metadata,
        }


def group_relations(rows: list[sqlite3.Row]) -> list[RelationGroup]:
    """Group rows by source value, keeping first-appearance order.

    Args:
        rows: Relation rows, already ordered by recency

    Returns:
        One RelationGroup per distinct source value
    """
    groups: dict[str, RelationGroup] = {}

    for row in rows:
        source = row["source_value"]
        group = groups.get(source)
        if group is None:
            group = RelationGroup(source=source, type=row["source_type"])
            groups[source] = group

        group.related.append(
            RelatedEntry(
                target=row["target_value"],
                type=row["target_type"],
                strength=row["strength"],
                connection_count=row["connection_count"],
                first_seen=row["first_seen"],
                last_seen=row["last_seen"],
                metadata=json.loads(row["metadata_json"]),
            )
        )

    return list(groups.values())


def to_millis(value: Any) -> int | None:
    """Convert an observation timestamp to Unix ms.

    Accepts Unix ms integers, ``datetime`` objects and ISO-8601 strings
    (a trailing ``Z`` is treated as UTC). Naive datetimes are taken as UTC.

    Raises:
        ValueError: If the value cannot be interpreted as a timestamp
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        value = datetime.fromisoformat(text)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1000)
    raise ValueError(f"Invalid timestamp: {value!r}")
