"""
Log rotation manager for reltrack.

The manager watches a fixed set of append-only JSON log files (each file
holds one JSON list) and archives the ones that grew too large:

    idle -> checking -> rotating -> idle

Archive format:
    <archive_dir>/logs_<YYYY-MM-DD>_<unix_ms>.zip

Each archive holds one member per rotated file, named
``<file stem>_<YYYY-MM-DD>.json``. A copy of every archive is placed in
the export directory for download and upload.

Invariants:
    - Archives are immutable once written
    - A rotated file is reset to an empty list only after its archive exists
    - Corrupted files are backed up byte-for-byte before being reset
    - At most one check/rotate pass runs at a time

How to change safely:
    - Keep archive names parseable; the exporter keys status on them
    - Never delete a corrupted file without writing its backup first
"""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
import zipfile
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..config import DEFAULT_LOG_FILES
from ..events import EventLogger, LoggingEventLogger, emit_event
from .models import (
    ExportState,
    ExportStatus,
    RotationCheck,
    RotationResult,
    RotationState,
)

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _archive_member_name(file_name: str, date_str: str) -> str:
    base = Path(file_name).name
    if base.endswith(".json"):
        base = base[: -len(".json")]
    return f"{base}_{date_str}.json"


class LogRotationManager:
    """Archives and resets oversized JSON log files.

    Attributes:
        data_dir: Directory holding the managed log files
        archive_dir: Directory receiving zip archives
        export_dir: Export-facing copy of every archive
        log_files: Managed log file names
        rotation_interval_seconds: Interval between scheduled checks
        max_logs_per_file: Entry count that triggers rotation

    Example:
        >>> manager = LogRotationManager(data_dir="/var/lib/reltrack/logs")
        >>> await manager.initialize()  # check now, then every interval
        >>> await manager.force_rotation(use_s3=True)
        >>> await manager.stop()
    """

    def __init__(
        self,
        data_dir: str,
        archive_dir: str | None = None,
        export_dir: str | None = None,
        log_files: Iterable[str] = DEFAULT_LOG_FILES,
        rotation_interval_seconds: float = 24 * 60 * 60,
        max_logs_per_file: int = 10000,
        event_logger: EventLogger | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        """Initialize the rotation manager.

        Args:
            data_dir: Directory holding the managed log files
            archive_dir: Archive directory (defaults to <data_dir>/archives)
            export_dir: Export directory (defaults to <data_dir>/exports)
            log_files: Managed log file names
            rotation_interval_seconds: Interval between scheduled checks
            max_logs_per_file: Entry count that triggers rotation
            event_logger: Consumer of system events
            clock: Current UTC time
        """
        self.data_dir = Path(data_dir)
        self.archive_dir = Path(archive_dir) if archive_dir else self.data_dir / "archives"
        self.export_dir = Path(export_dir) if export_dir else self.data_dir / "exports"
        self.log_files = list(log_files)
        self.rotation_interval_seconds = rotation_interval_seconds
        self.max_logs_per_file = max_logs_per_file
        self.event_logger = event_logger if event_logger is not None else LoggingEventLogger()
        self.clock = clock

        self.state = RotationState.IDLE
        self.is_initialized = False
        self._timer: asyncio.Task | None = None
        self._inflight: asyncio.Future | None = None
        self._pass_lock = asyncio.Lock()
        self._export_statuses: dict[str, ExportStatus] = {}

    def _timestamp(self) -> str:
        return self.clock().isoformat()

    async def initialize(self) -> bool:
        """Create directories, rotate once, then schedule periodic checks.

        Calling it again while initialized does nothing.

        Returns:
            True on success, False if startup failed
        """
        if self.is_initialized:
            return True

        try:
            self._ensure_directory(self.archive_dir)
            self._ensure_directory(self.export_dir)

            await self.check_and_rotate()

            self._timer = asyncio.create_task(self._schedule_loop())
            self.is_initialized = True
            logger.info("Log rotation system initialized")

            await emit_event(
                self.event_logger,
                "log_rotation_initialized",
                {
                    "rotationInterval": self.rotation_interval_seconds,
                    "maxLogsPerFile": self.max_logs_per_file,
                    "timestamp": self._timestamp(),
                },
            )
            return True

        except Exception as e:
            logger.error(f"Failed to initialize log rotation system: {e}", exc_info=True)
            await emit_event(
                self.event_logger,
                "log_rotation_init_error",
                {"error": str(e), "timestamp": self._timestamp()},
            )
            return False

    async def stop(self) -> None:
        """Cancel the scheduler.

        A pass already started by the scheduler runs to completion.
        """
        if self._timer is not None:
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
            self._timer = None
            logger.info("Log rotation scheduler stopped")
        self.is_initialized = False

    def _ensure_directory(self, dir_path: Path) -> None:
        if not dir_path.exists():
            dir_path.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created directory: {dir_path}")

    async def _schedule_loop(self) -> None:
        """Run a scheduled check every rotation interval."""
        while True:
            await asyncio.sleep(self.rotation_interval_seconds)
            self._inflight = asyncio.ensure_future(self._scheduled_check())
            await asyncio.shield(self._inflight)

    async def _scheduled_check(self) -> None:
        """One scheduled tick; errors are reported, never raised."""
        if self._pass_lock.locked():
            logger.warning("Log rotation pass still running, skipping scheduled check")
            return

        try:
            await self.check_and_rotate()
        except Exception as e:
            logger.error(f"Scheduled log rotation failed: {e}", exc_info=True)
            await emit_event(
                self.event_logger,
                "log_rotation_error",
                {"error": str(e), "timestamp": self._timestamp()},
            )

    async def check_and_rotate(self) -> RotationCheck:
        """Check every managed file and rotate the ones that need it.

        Files needing rotation are archived together in one archive.

        Returns:
            RotationCheck listing the rotated files
        """
        async with self._pass_lock:
            try:
                self.state = RotationState.CHECKING
                rotations = []
                for log_file in self.log_files:
                    if await self.check_log_file(log_file):
                        rotations.append(log_file)

                if not rotations:
                    logger.debug("No logs needed rotation")
                    return RotationCheck(rotated_files=[], result=None, timestamp=self._timestamp())

                result = await self._rotate(rotations, use_s3=False)
                return RotationCheck(
                    rotated_files=rotations,
                    result=result,
                    timestamp=self._timestamp(),
                )

            except Exception as e:
                logger.error(f"Log rotation check failed: {e}", exc_info=True)
                await emit_event(
                    self.event_logger,
                    "log_rotation_check_failed",
                    {"error": str(e), "timestamp": self._timestamp()},
                )
                raise
            finally:
                self.state = RotationState.IDLE

    async def check_log_file(self, file_name: str) -> bool:
        """Decide whether a log file needs rotation.

        A missing or unreadable file does not. A file that is not valid JSON
        is backed up to ``<file>.corrupted.<unix_ms>`` and does. A file whose
        JSON is not a list does. Otherwise the entry count decides.
        """
        file_path = self.data_dir / file_name

        try:
            data = file_path.read_bytes()
        except OSError as e:
            logger.warning(f"{file_name} does not exist or cannot be read: {e}")
            return False

        try:
            logs = json.loads(data.decode("utf-8"))
        except ValueError as e:
            return await self._quarantine(file_name, file_path, data, e)

        if not isinstance(logs, list):
            logger.warning(f"{file_name} does not contain a valid array, triggering rotation")
            return True

        return len(logs) >= self.max_logs_per_file

    async def _quarantine(
        self,
        file_name: str,
        file_path: Path,
        data: bytes,
        error: Exception,
    ) -> bool:
        """Back up a corrupted log file so it can be reset."""
        logger.error(f"Error parsing {file_name}: {error}")

        stamp = int(self.clock().timestamp() * 1000)
        backup_path = Path(f"{file_path}.corrupted.{stamp}")
        try:
            backup_path.write_bytes(data)
        except OSError as e:
            # Without a backup the file must not be reset.
            logger.error(f"Failed to back up corrupted {file_name}: {e}", exc_info=True)
            return False

        logger.info(f"Corrupted log file backed up to {backup_path}")
        await emit_event(
            self.event_logger,
            "log_file_corrupted",
            {
                "file": file_name,
                "backupPath": str(backup_path),
                "error": str(error),
                "timestamp": self._timestamp(),
            },
        )
        return True

    async def rotate_logs(self, log_files: Iterable[str], use_s3: bool = False) -> RotationResult:
        """Archive the given files and reset them to empty lists.

        Args:
            log_files: Managed file names to rotate
            use_s3: Record a pending export status for the archive

        Returns:
            RotationResult describing the archive
        """
        async with self._pass_lock:
            try:
                return await self._rotate(list(log_files), use_s3)
            finally:
                self.state = RotationState.IDLE

    async def force_rotation(self, use_s3: bool = False) -> RotationResult:
        """Rotate every managed file regardless of size."""
        logger.info("Manual log rotation triggered", extra={"use_s3": use_s3})
        return await self.rotate_logs(self.log_files, use_s3=use_s3)

    async def _rotate(self, log_files: list[str], use_s3: bool) -> RotationResult:
        self.state = RotationState.ROTATING

        now = self.clock()
        date_str = now.strftime("%Y-%m-%d")
        archive_file = f"logs_{date_str}_{int(now.timestamp() * 1000)}.zip"
        archive_path = self.archive_dir / archive_file
        export_path = self.export_dir / archive_file

        try:
            self._ensure_directory(self.archive_dir)
            self._ensure_directory(self.export_dir)

            loop = asyncio.get_running_loop()
            await loop.run_in_executor(
                None, self._create_archive, log_files, archive_path, date_str
            )
            await loop.run_in_executor(None, shutil.copyfile, archive_path, export_path)

            for log_file in log_files:
                self._reset_log_file(log_file)

            if use_s3:
                self._export_statuses[archive_file] = ExportStatus(
                    archive_file=archive_file,
                    status=ExportState.PENDING,
                    created_at=self._timestamp(),
                )

            await emit_event(
                self.event_logger,
                "log_rotation_completed",
                {
                    "rotatedFiles": log_files,
                    "archiveFile": archive_file,
                    "s3Export": "requested" if use_s3 else "not_requested",
                    "timestamp": self._timestamp(),
                },
            )
            logger.info(
                f"Log rotation completed. {len(log_files)} files archived to {archive_file}"
            )

            return RotationResult(
                rotated_files=log_files,
                archive_file=archive_file,
                archive_path=str(archive_path),
                export_path=str(export_path),
                s3_export=use_s3,
            )

        except Exception as e:
            logger.error(f"Log rotation failed: {e}", exc_info=True)
            await emit_event(
                self.event_logger,
                "log_rotation_failed",
                {"error": str(e), "timestamp": self._timestamp()},
            )
            raise

    def _create_archive(self, log_files: list[str], output_path: Path, date_str: str) -> None:
        """Write a maximally compressed zip of the given log files."""
        with zipfile.ZipFile(
            output_path, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9
        ) as archive:
            for file_name in log_files:
                file_path = self.data_dir / file_name
                if not file_path.exists():
                    logger.warning(f"{file_name} does not exist, leaving it out of the archive")
                    continue
                archive.write(file_path, arcname=_archive_member_name(file_name, date_str))

        logger.info(f"Archive created: {output_path} ({output_path.stat().st_size} bytes)")

    def _reset_log_file(self, file_name: str) -> None:
        file_path = self.data_dir / file_name
        file_path.write_text(json.dumps([], indent=2))
        logger.debug(f"Reset {file_name} to empty array")

    def update_s3_upload_status(
        self,
        archive_file: str,
        status: ExportState | str,
        details: dict[str, Any] | None = None,
    ) -> ExportStatus:
        """Record an externally reported upload status for an archive.

        Raises:
            ValueError: If status is not pending, success or failed
        """
        state = ExportState(status)
        now = self._timestamp()
        existing = self._export_statuses.get(archive_file)

        record = ExportStatus(
            archive_file=archive_file,
            status=state,
            created_at=existing.created_at if existing else now,
            updated_at=now,
            details=dict(details or {}),
        )
        self._export_statuses[archive_file] = record

        logger.info(f"Updated S3 upload status for {archive_file} to {state.value}")
        return record

    def get_s3_upload_status(self, archive_file: str) -> ExportStatus | None:
        return self._export_statuses.get(archive_file)

    def get_all_s3_upload_statuses(self) -> list[ExportStatus]:
        return list(self._export_statuses.values())

    @property
    def stats(self) -> dict[str, Any]:
        """Get rotation manager statistics."""
        return {
            "initialized": self.is_initialized,
            "state": self.state.value,
            "log_files": list(self.log_files),
            "pending_exports": sum(
                1 for s in self._export_statuses.values() if s.status is ExportState.PENDING
            ),
        }
