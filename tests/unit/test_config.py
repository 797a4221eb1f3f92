"""
Unit tests for environment-driven configuration.
"""

import pytest

from reltrack.config import (
    DEFAULT_LOG_FILES,
    RotationConfig,
    S3Config,
    ServiceConfig,
    StorageConfig,
)


class TestConfig:
    """Tests for configuration loading and validation."""

    def test_defaults(self, monkeypatch):
        for name in ("LOG_FILES", "LOG_MAX_ENTRIES_PER_FILE", "RELATIONS_CACHE_TTL_SECONDS"):
            monkeypatch.delenv(name, raising=False)

        config = ServiceConfig.from_env()

        assert config.rotation.log_files == DEFAULT_LOG_FILES
        assert config.rotation.max_logs_per_file == 10000
        assert config.cache.ttl_seconds == 30
        assert config.s3.enabled is False

    def test_rotation_from_env(self, monkeypatch):
        monkeypatch.setenv("LOG_FILES", "a.json, b.json,,")
        monkeypatch.setenv("LOG_MAX_ENTRIES_PER_FILE", "50")
        monkeypatch.setenv("LOG_ROTATION_INTERVAL_SECONDS", "60")
        monkeypatch.setenv("LOG_ARCHIVE_DIR", "/tmp/archives")

        config = RotationConfig.from_env()

        assert config.log_files == ("a.json", "b.json")
        assert config.max_logs_per_file == 50
        assert config.interval_seconds == 60
        assert config.archive_dir == "/tmp/archives"

    def test_storage_db_path(self, monkeypatch):
        monkeypatch.setenv("DATA_DIR", "/srv/reltrack")
        monkeypatch.setenv("SQLITE_WAL_MODE", "false")

        config = StorageConfig.from_env()

        assert config.db_path == "/srv/reltrack/relations.db"
        assert config.wal_mode is False

    def test_s3_requires_bucket(self):
        config = ServiceConfig(s3=S3Config(enabled=True, bucket=""))

        with pytest.raises(ValueError, match="S3_BUCKET"):
            config.validate()

    def test_rotation_requires_positive_threshold(self):
        config = ServiceConfig(rotation=RotationConfig(max_logs_per_file=0))

        with pytest.raises(ValueError, match="LOG_MAX_ENTRIES_PER_FILE"):
            config.validate()

    def test_invalid_number_raises(self, monkeypatch):
        monkeypatch.setenv("LOG_MAX_ENTRIES_PER_FILE", "lots")

        with pytest.raises(ValueError):
            ServiceConfig.from_env()
