"""
Unit tests for relation and rotation data types.
"""

from datetime import datetime, timezone

import pytest

from reltrack.relations.models import Relation, to_millis
from reltrack.rotation import ExportState, ExportStatus


class TestToMillis:
    """Tests for observation timestamp conversion."""

    def test_none(self):
        assert to_millis(None) is None

    def test_integer_passthrough(self):
        assert to_millis(1_700_000_000_000) == 1_700_000_000_000

    def test_iso_string_with_z(self):
        assert to_millis("2023-11-14T22:13:20Z") == 1_700_000_000_000

    def test_iso_string_with_offset(self):
        assert to_millis("2023-11-15T00:13:20+02:00") == 1_700_000_000_000

    def test_naive_datetime_is_utc(self):
        assert to_millis(datetime(2023, 11, 14, 22, 13, 20)) == 1_700_000_000_000

    def test_aware_datetime(self):
        value = datetime(2023, 11, 14, 22, 13, 20, 500000, tzinfo=timezone.utc)
        assert to_millis(value) == 1_700_000_000_500

    def test_invalid_string(self):
        with pytest.raises(ValueError):
            to_millis("yesterday")

    def test_bool_rejected(self):
        with pytest.raises(ValueError):
            to_millis(True)


class TestSerialization:
    """Tests for the camelCase API shape."""

    def test_relation_to_dict(self):
        relation = Relation(
            id=7,
            source_type="username",
            source_value="alice",
            target_type="command",
            target_value="ls",
            metadata={"host": "web-1"},
            first_seen=1,
            last_seen=2,
            strength=3,
            connection_count=3,
        )

        data = relation.to_dict()

        assert data["sourceType"] == "username"
        assert data["targetValue"] == "ls"
        assert data["connectionCount"] == 3
        assert data["lastSeen"] == 2

    def test_export_status_to_dict_flattens_details(self):
        status = ExportStatus(
            archive_file="logs_2024-01-01_1.zip",
            status=ExportState.SUCCESS,
            created_at="2024-01-01T00:00:00+00:00",
            details={"key": "log-archives/logs_2024-01-01_1.zip"},
        )

        data = status.to_dict()

        assert data["status"] == "success"
        assert data["archiveFileName"] == "logs_2024-01-01_1.zip"
        assert data["key"] == "log-archives/logs_2024-01-01_1.zip"
