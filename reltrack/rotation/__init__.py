"""
Rotation module for reltrack.

This module archives append-only JSON log files into zip bundles once they
reach a size threshold, and tracks the export status of each archive.

Invariants:
    - Archives are immutable once written
    - Corrupted files are preserved as timestamped backups
    - Export status is metadata only; no upload happens here
"""

from .manager import LogRotationManager
from .models import ExportState, ExportStatus, RotationCheck, RotationResult, RotationState

__all__ = [
    "LogRotationManager",
    "ExportState",
    "ExportStatus",
    "RotationCheck",
    "RotationResult",
    "RotationState",
]
