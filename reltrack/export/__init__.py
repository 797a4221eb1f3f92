"""
Export module for reltrack.

Uploads rotated log archives that were marked for export to S3 and
reports the outcome back to the rotation manager's status records.
"""

from .exporter import ArchiveExporter, ExportError

__all__ = ["ArchiveExporter", "ExportError"]
