"""
reltrack - Relation tracking and log rotation service.

This package records typed, directed relationships between values observed
in logged events (usernames, commands, IP addresses, ...) and keeps the
append-only JSON log files that feed it bounded in size.

Architecture:
    ┌─────────────┐     ┌────────────────┐     ┌─────────────────┐
    │   Callers   │────▶│ RelationStore  │────▶│ SQLite          │
    │ (handlers,  │     │                │     │ (relations)     │
    │  schedulers)│     └───────┬────────┘     └─────────────────┘
    └─────────────┘             │
                                ▼
                        ┌────────────────┐
                        │   TimedCache   │
                        └────────────────┘

    ┌────────────────────┐     ┌─────────────┐     ┌─────────────┐
    │ LogRotationManager │────▶│ zip archive │────▶│ S3 exporter │
    └────────────────────┘     └─────────────┘     └─────────────┘

Invariants:
    - (source_type, source_value, target_type, target_value) is unique
    - Re-observing an edge never moves last_seen backwards
    - The cache is advisory; dropping it only costs recomputation
    - Archives are immutable once written

How to change safely:
    - Keep cache invalidation on every write path
    - Multi-statement writes must stay inside one transaction
    - Never change the archive naming scheme without updating the exporter
"""

from ._version import __version__

__all__ = ["__version__"]
