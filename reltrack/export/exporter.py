"""
S3 exporter for rotated log archives.

The exporter picks up archives whose export status is ``pending`` from the
rotation manager's export directory, uploads them, and reports ``success``
or ``failed`` through ``LogRotationManager.update_s3_upload_status``.

Object layout:
    s3://<bucket>/<export_prefix>/logs_<YYYY-MM-DD>_<unix_ms>.zip

Invariants:
    - Only archives marked pending are uploaded
    - An upload failure is recorded on the archive, never raised
    - Archives are uploaded as-is; the local copy is left in place
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from aiobotocore.session import get_session

from ..config import S3Config
from ..rotation import ExportState, ExportStatus, LogRotationManager

logger = logging.getLogger(__name__)


class ExportError(Exception):
    """Archive export is misconfigured."""

    pass


class ArchiveExporter:
    """Uploads pending log archives to S3.

    Attributes:
        manager: Rotation manager owning the archives and their status
        s3_config: S3 configuration

    Example:
        >>> exporter = ArchiveExporter(manager, s3_config)
        >>> await exporter.export_pending()
    """

    def __init__(
        self,
        manager: LogRotationManager,
        s3_config: S3Config,
        client: Any = None,
    ) -> None:
        """Initialize the exporter.

        Args:
            manager: LogRotationManager instance
            s3_config: S3Config instance
            client: Already opened S3 client; one is created from s3_config if omitted

        Raises:
            ExportError: If no bucket is configured
        """
        if not s3_config.bucket:
            raise ExportError("S3 bucket is required for archive export")

        self.manager = manager
        self.s3_config = s3_config
        self._s3_client = client
        self._owns_client = client is None
        self._s3_ctx = None
        self._running = False
        self._exported_count = 0

    async def start(self) -> None:
        """Run export passes every configured interval until stopped."""
        if self._running:
            logger.warning("Archive exporter already running")
            return

        self._running = True
        logger.info(
            "Starting archive exporter",
            extra={
                "bucket": self.s3_config.bucket,
                "interval_seconds": self.s3_config.interval_seconds,
            },
        )

        try:
            while self._running:
                try:
                    await self.export_pending()
                except Exception as e:
                    logger.error(f"Archive export pass failed: {e}", exc_info=True)
                await asyncio.sleep(self.s3_config.interval_seconds)

        except asyncio.CancelledError:
            logger.info("Archive exporter cancelled")
        except Exception as e:
            logger.error(f"Archive exporter error: {e}", exc_info=True)
        finally:
            self._running = False
            await self._close_s3_client()

    async def stop(self) -> None:
        """Stop the exporter loop."""
        self._running = False
        logger.info("Stopping archive exporter")

    async def _init_s3_client(self) -> None:
        """Initialize S3 client."""
        session = get_session()

        client_kwargs = {
            "region_name": self.s3_config.region,
        }

        if self.s3_config.endpoint_url:
            client_kwargs["endpoint_url"] = self.s3_config.endpoint_url

        if self.s3_config.access_key_id:
            client_kwargs["aws_access_key_id"] = self.s3_config.access_key_id
            client_kwargs["aws_secret_access_key"] = self.s3_config.secret_access_key

        s3_ctx = session.create_client("s3", **client_kwargs)
        self._s3_client = await s3_ctx.__aenter__()
        self._s3_ctx = s3_ctx

    async def _close_s3_client(self) -> None:
        """Close S3 client."""
        if self._owns_client and self._s3_ctx is not None:
            await self._s3_ctx.__aexit__(None, None, None)
            self._s3_ctx = None
            self._s3_client = None

    def _build_s3_key(self, archive_file: str) -> str:
        prefix = self.s3_config.export_prefix.strip("/")
        return f"{prefix}/{archive_file}" if prefix else archive_file

    async def export_pending(self) -> list[ExportStatus]:
        """Upload every archive whose export status is pending.

        If the S3 client cannot be opened, the archives stay pending with the
        error in their details and are retried on the next pass.

        Returns:
            The updated status records, one per attempted archive
        """
        pending = [
            status.archive_file
            for status in self.manager.get_all_s3_upload_statuses()
            if status.status is ExportState.PENDING
        ]
        if not pending:
            return []

        if self._s3_client is None:
            try:
                await self._init_s3_client()
            except Exception as e:
                logger.error(f"Failed to initialize S3 client: {e}", exc_info=True)
                return [
                    self.manager.update_s3_upload_status(
                        archive_file,
                        ExportState.PENDING,
                        {"error": str(e), "bucket": self.s3_config.bucket},
                    )
                    for archive_file in pending
                ]

        return [await self._export_archive(archive_file) for archive_file in pending]

    async def _export_archive(self, archive_file: str) -> ExportStatus:
        """Upload one archive and record the outcome."""
        archive_path = self.manager.export_dir / archive_file
        s3_key = self._build_s3_key(archive_file)

        try:
            body = archive_path.read_bytes()
            await self._s3_client.put_object(
                Bucket=self.s3_config.bucket,
                Key=s3_key,
                Body=body,
                ContentType="application/zip",
            )
        except Exception as e:
            logger.error(f"Failed to export archive {archive_file}: {e}", exc_info=True)
            return self.manager.update_s3_upload_status(
                archive_file,
                ExportState.FAILED,
                {"error": str(e), "bucket": self.s3_config.bucket, "key": s3_key},
            )

        self._exported_count += 1
        logger.info(
            "Exported log archive",
            extra={
                "archive_file": archive_file,
                "bucket": self.s3_config.bucket,
                "s3_key": s3_key,
                "size_bytes": len(body),
            },
        )
        return self.manager.update_s3_upload_status(
            archive_file,
            ExportState.SUCCESS,
            {"bucket": self.s3_config.bucket, "key": s3_key, "sizeBytes": len(body)},
        )

    @property
    def stats(self) -> dict[str, Any]:
        """Get exporter statistics."""
        return {
            "running": self._running,
            "exported_count": self._exported_count,
        }
