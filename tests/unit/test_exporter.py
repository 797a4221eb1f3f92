"""
Unit tests for the S3 archive exporter.

The S3 client is replaced by an in-memory fake; no network access.
"""

import asyncio
import json
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from reltrack.config import S3Config
from reltrack.events import EventLogger
from reltrack.export import ArchiveExporter, ExportError
from reltrack.rotation import ExportState, LogRotationManager

NOW = datetime(2024, 3, 5, 12, 0, 0, tzinfo=timezone.utc)


class NullEventLogger(EventLogger):
    async def log_system_event(self, event_name, payload):
        pass


class FakeS3Client:
    """Records put_object calls."""

    def __init__(self, fail=False):
        self.fail = fail
        self.objects = {}

    async def put_object(self, Bucket, Key, Body, ContentType):
        if self.fail:
            raise RuntimeError("AccessDenied")
        self.objects[(Bucket, Key)] = Body


class TestArchiveExporter:
    """Tests for ArchiveExporter."""

    @pytest.fixture
    def base_dir(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield Path(tmpdir)

    @pytest.fixture
    def manager(self, base_dir):
        data_dir = base_dir / "data"
        data_dir.mkdir()
        (data_dir / "security_logs.json").write_text(json.dumps([{"event": "login"}]))
        return LogRotationManager(
            data_dir=str(data_dir),
            export_dir=str(base_dir / "exports"),
            log_files=["security_logs.json"],
            event_logger=NullEventLogger(),
            clock=lambda: NOW,
        )

    @pytest.fixture
    def s3_config(self):
        return S3Config(enabled=True, bucket="audit-bucket", export_prefix="log-archives/")

    def test_requires_bucket(self, manager):
        with pytest.raises(ExportError):
            ArchiveExporter(manager, S3Config(bucket=""), client=FakeS3Client())

    @pytest.mark.asyncio
    async def test_nothing_pending(self, manager, s3_config):
        client = FakeS3Client()
        exporter = ArchiveExporter(manager, s3_config, client=client)

        await manager.force_rotation(use_s3=False)

        assert await exporter.export_pending() == []
        assert client.objects == {}

    @pytest.mark.asyncio
    async def test_exports_pending_archive(self, manager, s3_config):
        """A pending archive is uploaded and marked successful."""
        client = FakeS3Client()
        exporter = ArchiveExporter(manager, s3_config, client=client)
        result = await manager.force_rotation(use_s3=True)

        statuses = await exporter.export_pending()

        key = f"log-archives/{result.archive_file}"
        assert [s.archive_file for s in statuses] == [result.archive_file]
        assert client.objects[("audit-bucket", key)] == Path(result.export_path).read_bytes()

        status = manager.get_s3_upload_status(result.archive_file)
        assert status.status is ExportState.SUCCESS
        assert status.details["key"] == key
        assert exporter.stats["exported_count"] == 1

        # Already exported archives are not uploaded again
        assert await exporter.export_pending() == []

    @pytest.mark.asyncio
    async def test_failed_upload_is_recorded(self, manager, s3_config):
        """Upload errors become a failed status instead of raising."""
        exporter = ArchiveExporter(manager, s3_config, client=FakeS3Client(fail=True))
        result = await manager.force_rotation(use_s3=True)

        statuses = await exporter.export_pending()

        assert statuses[0].status is ExportState.FAILED
        assert "AccessDenied" in statuses[0].details["error"]
        assert manager.get_s3_upload_status(result.archive_file).status is ExportState.FAILED

    @pytest.mark.asyncio
    async def test_client_init_failure_keeps_archive_pending(self, manager, s3_config, monkeypatch):
        """A client that cannot be opened leaves the archive pending for the next pass."""
        exporter = ArchiveExporter(manager, s3_config)
        client = FakeS3Client()
        attempts = []

        async def flaky_init():
            attempts.append(1)
            if len(attempts) == 1:
                raise ConnectionError("endpoint unreachable")
            exporter._s3_client = client

        monkeypatch.setattr(exporter, "_init_s3_client", flaky_init)
        result = await manager.force_rotation(use_s3=True)

        statuses = await exporter.export_pending()

        assert statuses[0].status is ExportState.PENDING
        assert "endpoint unreachable" in statuses[0].details["error"]

        statuses = await exporter.export_pending()

        assert statuses[0].status is ExportState.SUCCESS
        assert ("audit-bucket", f"log-archives/{result.archive_file}") in client.objects
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_loop_survives_failed_pass(self, manager, monkeypatch):
        """An error in one export pass does not stop later passes."""
        s3_config = S3Config(enabled=True, bucket="audit-bucket", interval_seconds=0.01)
        exporter = ArchiveExporter(manager, s3_config, client=FakeS3Client())
        original = exporter.export_pending
        calls = []

        async def flaky_export():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("status map unavailable")
            return await original()

        monkeypatch.setattr(exporter, "export_pending", flaky_export)
        result = await manager.force_rotation(use_s3=True)

        task = asyncio.create_task(exporter.start())
        for _ in range(200):
            await asyncio.sleep(0.01)
            if manager.get_s3_upload_status(result.archive_file).status is ExportState.SUCCESS:
                break

        await exporter.stop()
        await task

        assert len(calls) >= 2
        assert manager.get_s3_upload_status(result.archive_file).status is ExportState.SUCCESS
        assert exporter.stats["running"] is False
