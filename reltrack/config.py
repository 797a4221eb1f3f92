"""
Configuration management for reltrack.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Every directory and threshold can be overridden at construction
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep the env var names stable; deployments depend on them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_LOG_FILES = (
    "security_logs.json",
    "data_logs.json",
    "system_logs.json",
    "audit_logs.json",
)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass(frozen=True)
class StorageConfig:
    """Relation store configuration.

    Attributes:
        data_dir: Directory holding the SQLite database
        db_file: Database file name inside data_dir
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    data_dir: str = "/var/lib/reltrack"
    db_file: str = "relations.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @property
    def db_path(self) -> str:
        return os.path.join(self.data_dir, self.db_file)

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("DATA_DIR", "/var/lib/reltrack"),
            db_file=os.getenv("RELATIONS_DB_FILE", "relations.db"),
            wal_mode=_env_bool("SQLITE_WAL_MODE", "true"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class CacheConfig:
    """Relations cache configuration.

    Attributes:
        ttl_seconds: How long a cached query result stays valid
    """

    ttl_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> CacheConfig:
        """Load configuration from environment variables."""
        return cls(ttl_seconds=float(os.getenv("RELATIONS_CACHE_TTL_SECONDS", "30")))


@dataclass(frozen=True)
class RotationConfig:
    """Log rotation configuration.

    Attributes:
        enabled: Whether the rotation scheduler runs
        data_dir: Directory holding the managed log files
        archive_dir: Directory for zip archives (defaults to <data_dir>/archives)
        export_dir: Export-facing copy of every archive
        log_files: Names of the managed log files
        interval_seconds: Interval between scheduled checks
        max_logs_per_file: Entry count that triggers rotation
    """

    enabled: bool = True
    data_dir: str = "/var/lib/reltrack/logs"
    archive_dir: str | None = None
    export_dir: str = "/var/lib/reltrack/exports"
    log_files: tuple[str, ...] = DEFAULT_LOG_FILES
    interval_seconds: float = 24 * 60 * 60
    max_logs_per_file: int = 10000

    @classmethod
    def from_env(cls) -> RotationConfig:
        """Load configuration from environment variables."""
        log_files = os.getenv("LOG_FILES")
        return cls(
            enabled=_env_bool("LOG_ROTATION_ENABLED", "true"),
            data_dir=os.getenv("LOG_DATA_DIR", "/var/lib/reltrack/logs"),
            archive_dir=os.getenv("LOG_ARCHIVE_DIR"),
            export_dir=os.getenv("LOG_EXPORT_DIR", "/var/lib/reltrack/exports"),
            log_files=tuple(f.strip() for f in log_files.split(",") if f.strip())
            if log_files
            else DEFAULT_LOG_FILES,
            interval_seconds=float(os.getenv("LOG_ROTATION_INTERVAL_SECONDS", str(24 * 60 * 60))),
            max_logs_per_file=int(os.getenv("LOG_MAX_ENTRIES_PER_FILE", "10000")),
        )


@dataclass(frozen=True)
class RetentionConfig:
    """Relation pruning configuration.

    Attributes:
        enabled: Whether old relations are pruned periodically
        max_age_days: Relations not seen for this many days are deleted
        interval_seconds: Interval between pruning passes
    """

    enabled: bool = False
    max_age_days: float = 30
    interval_seconds: float = 24 * 60 * 60

    @classmethod
    def from_env(cls) -> RetentionConfig:
        """Load configuration from environment variables."""
        return cls(
            enabled=_env_bool("RELATION_RETENTION_ENABLED", "false"),
            max_age_days=float(os.getenv("RELATION_MAX_AGE_DAYS", "30")),
            interval_seconds=float(os.getenv("RELATION_PRUNE_INTERVAL_SECONDS", str(24 * 60 * 60))),
        )


@dataclass(frozen=True)
class S3Config:
    """S3 configuration for archive export.

    Attributes:
        enabled: Whether pending archives are uploaded
        bucket: S3 bucket name
        region: AWS region
        endpoint_url: Custom endpoint URL (for MinIO)
        export_prefix: Key prefix for uploaded archives
        interval_seconds: Interval between export passes
        access_key_id: AWS access key ID (optional, uses AWS credential chain)
        secret_access_key: AWS secret access key (optional)
    """

    enabled: bool = False
    bucket: str = "reltrack-logs"
    region: str = "us-east-1"
    endpoint_url: str | None = None
    export_prefix: str = "log-archives"
    interval_seconds: float = 300
    access_key_id: str | None = None
    secret_access_key: str | None = None

    @classmethod
    def from_env(cls) -> S3Config:
        """Load configuration from environment variables."""
        return cls(
            enabled=_env_bool("S3_EXPORT_ENABLED", "false"),
            bucket=os.getenv("S3_BUCKET", "reltrack-logs"),
            region=os.getenv("S3_REGION", os.getenv("AWS_REGION", "us-east-1")),
            endpoint_url=os.getenv("S3_ENDPOINT"),
            export_prefix=os.getenv("S3_EXPORT_PREFIX", "log-archives"),
            interval_seconds=float(os.getenv("S3_EXPORT_INTERVAL_SECONDS", "300")),
            access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServiceConfig:
    """Complete service configuration.

    Attributes:
        storage: Relation store configuration
        cache: Relations cache configuration
        rotation: Log rotation configuration
        retention: Relation pruning configuration
        s3: Archive export configuration
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    rotation: RotationConfig = field(default_factory=RotationConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    s3: S3Config = field(default_factory=S3Config)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServiceConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is missing or invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            cache=CacheConfig.from_env(),
            rotation=RotationConfig.from_env(),
            retention=RetentionConfig.from_env(),
            s3=S3Config.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.cache.ttl_seconds < 0:
            raise ValueError("RELATIONS_CACHE_TTL_SECONDS must not be negative")

        if self.rotation.enabled:
            if not self.rotation.log_files:
                raise ValueError("LOG_FILES must name at least one file when rotation is enabled")
            if self.rotation.interval_seconds <= 0:
                raise ValueError("LOG_ROTATION_INTERVAL_SECONDS must be positive")
            if self.rotation.max_logs_per_file <= 0:
                raise ValueError("LOG_MAX_ENTRIES_PER_FILE must be positive")

        if self.retention.enabled and self.retention.max_age_days <= 0:
            raise ValueError("RELATION_MAX_AGE_DAYS must be positive")

        if self.s3.enabled and not self.s3.bucket:
            raise ValueError("S3_BUCKET is required when S3_EXPORT_ENABLED=true")

        if not os.path.exists(self.storage.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on first write."
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Service configuration loaded",
            extra={
                "db_path": self.storage.db_path,
                "cache_ttl_seconds": self.cache.ttl_seconds,
                "rotation_enabled": self.rotation.enabled,
                "log_data_dir": self.rotation.data_dir,
                "log_files": list(self.rotation.log_files),
                "retention_enabled": self.retention.enabled,
                "s3_export_enabled": self.s3.enabled,
                "s3_bucket": self.s3.bucket if self.s3.enabled else None,
                "log_level": self.observability.log_level,
            },
        )
