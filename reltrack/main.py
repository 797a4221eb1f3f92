"""
reltrack service - Main entry point.

This module starts the service with all components:
- Relation store (SQLite + query cache)
- Log rotation scheduler
- Archive exporter loop (rotation archives -> S3)
- Relation retention loop (prunes stale relations)

Usage:
    python -m reltrack.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The relations schema exists before any background loop starts
    - Graceful shutdown cancels loops but lets an in-flight rotation finish

How to change safely:
    - Add new components with enable/disable flags
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path

import json_log_formatter

from .cache import TimedCache
from .config import ServiceConfig
from .events import EventLogger, LoggingEventLogger
from .export import ArchiveExporter
from .relations import RelationStore
from .rotation import LogRotationManager

logger = logging.getLogger(__name__)


def setup_logging(config: ServiceConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Service configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)


class Service:
    """reltrack service orchestrator.

    Attributes:
        config: Service configuration
        cache: Relations query cache
        relation_store: SQLite relation store
        rotation_manager: Log rotation manager (if enabled)
        exporter: Archive exporter (if enabled)

    Example:
        >>> service = Service()
        >>> await service.start()  # blocks until request_shutdown()
        >>> await service.stop()
    """

    def __init__(
        self,
        config: ServiceConfig | None = None,
        event_logger: EventLogger | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            config: Optional service configuration (loaded from env if not provided)
            event_logger: System event consumer (logging-based if not provided)
        """
        self.config = config or ServiceConfig.from_env()
        self.event_logger = event_logger or LoggingEventLogger()
        self._running = False
        self._shutdown_event = asyncio.Event()

        self.cache = TimedCache(ttl_seconds=self.config.cache.ttl_seconds)
        self.relation_store = RelationStore(
            db_path=self.config.storage.db_path,
            cache=self.cache,
            wal_mode=self.config.storage.wal_mode,
            busy_timeout_ms=self.config.storage.busy_timeout_ms,
        )
        self.rotation_manager: LogRotationManager | None = None
        self.exporter: ArchiveExporter | None = None

        self._tasks: list[asyncio.Task] = []

    async def start(self) -> None:
        """Start the service and wait for shutdown."""
        if self._running:
            logger.warning("Service already running")
            return

        logger.info("Starting reltrack service")
        self.config.log_config()

        try:
            Path(self.config.storage.data_dir).mkdir(parents=True, exist_ok=True)
            await self.relation_store.initialize()

            if self.config.rotation.enabled:
                rotation = self.config.rotation
                self.rotation_manager = LogRotationManager(
                    data_dir=rotation.data_dir,
                    archive_dir=rotation.archive_dir,
                    export_dir=rotation.export_dir,
                    log_files=rotation.log_files,
                    rotation_interval_seconds=rotation.interval_seconds,
                    max_logs_per_file=rotation.max_logs_per_file,
                    event_logger=self.event_logger,
                )
                if not await self.rotation_manager.initialize():
                    logger.warning("Log rotation did not initialize; continuing without it")

                if self.config.s3.enabled:
                    self.exporter = ArchiveExporter(self.rotation_manager, self.config.s3)
                    self._tasks.append(asyncio.create_task(self.exporter.start()))

            if self.config.retention.enabled:
                self._tasks.append(asyncio.create_task(self._retention_loop()))

            self._running = True
            logger.info("reltrack service started successfully")

            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Service startup failed: {e}", exc_info=True)
            await self.stop()
            raise

    async def _retention_loop(self) -> None:
        """Prune relations older than the configured age."""
        retention = self.config.retention
        while True:
            try:
                await self.relation_store.delete_old_relations(retention.max_age_days)
            except Exception as e:
                logger.error(f"Relation pruning failed: {e}", exc_info=True)
            await asyncio.sleep(retention.interval_seconds)

    async def stop(self) -> None:
        """Stop the service gracefully."""
        logger.info("Stopping reltrack service")

        for task in self._tasks:
            task.cancel()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        if self.exporter:
            await self.exporter.stop()

        if self.rotation_manager:
            await self.rotation_manager.stop()

        self._running = False
        logger.info("reltrack service stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    try:
        config = ServiceConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    service = Service(config)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        service.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(service.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(service.stop())
        loop.close()


if __name__ == "__main__":
    main()
