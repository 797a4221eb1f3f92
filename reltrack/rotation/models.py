"""Data types shared by the rotation manager and the archive exporter."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class RotationState(Enum):
    """Phase of the rotation manager."""

    IDLE = "idle"
    CHECKING = "checking"
    ROTATING = "rotating"


class ExportState(Enum):
    """Externally reported state of an archive upload."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class ExportStatus:
    """Export status record attached to an archive.

    Attributes:
        archive_file: Archive file name (the record key)
        status: Current upload state
        created_at: When the record was first created (ISO-8601)
        updated_at: Last status change (ISO-8601), None until updated
        details: Free-form details reported with the status
    """

    archive_file: str
    status: ExportState
    created_at: str
    updated_at: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "archiveFileName": self.archive_file,
            "status": self.status.value,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            **self.details,
        }


@dataclass
class RotationResult:
    """Outcome of one archive operation."""

    rotated_files: list[str]
    archive_file: str
    archive_path: str
    export_path: str
    s3_export: bool = False


@dataclass
class RotationCheck:
    """Outcome of a check-and-rotate pass.

    Attributes:
        rotated_files: Files that were archived and reset (possibly none)
        result: The archive operation, None when nothing needed rotation
        timestamp: When the pass finished (ISO-8601)
    """

    rotated_files: list[str]
    result: RotationResult | None
    timestamp: str
