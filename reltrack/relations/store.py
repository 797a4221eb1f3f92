"""
SQLite relation store for reltrack.

This module persists directed, typed edges between observed values
(username -> command, ip -> command, ...) with aggregated counters, and
serves grouped, recency-ordered reads through a TimedCache.

Invariants:
    - (source_type, source_value, target_type, target_value) is unique
    - Upserting an existing key bumps strength and connection_count by one
      and never moves last_seen backwards
    - Multi-statement writes run in one transaction (all or nothing)
    - Every write path invalidates the cache entries of the types it touches

How to change safely:
    - Schema migrations must be backward compatible
    - Keep cache keys prefixed with the relation type
    - Use transactions for all multi-statement writes

Table schema:
    relations:
        - id INTEGER PRIMARY KEY
        - source_type TEXT, source_value TEXT
        - target_type TEXT, target_value TEXT
        - metadata_json TEXT (JSON object)
        - first_seen INTEGER (Unix ms)
        - last_seen INTEGER (Unix ms)
        - strength INTEGER
        - connection_count INTEGER
        - UNIQUE (source_type, source_value, target_type, target_value)
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ..cache import TimedCache
from .models import Relation, RelationGroup, UserCommand, group_relations, to_millis

logger = logging.getLogger(__name__)

USERNAME_TYPE = "username"
COMMAND_TYPE = "command"
USER_COMMANDS_KEY = "user_commands"

MS_PER_DAY = 24 * 60 * 60 * 1000

_UPSERT_SQL = """
    INSERT INTO relations (
        source_type, source_value, target_type, target_value,
        metadata_json, first_seen, last_seen, strength, connection_count
    )
    VALUES (?, ?, ?, ?, ?, ?, ?, 1, 1)
    ON CONFLICT (source_type, source_value, target_type, target_value)
    DO UPDATE SET
        last_seen = MAX(relations.last_seen, excluded.last_seen),
        metadata_json = excluded.metadata_json,
        strength = relations.strength + 1,
        connection_count = relations.connection_count + 1
"""

# Rename merge: strength is not additive, connection_count counts the merge.
_REINSERT_SQL = """
    INSERT INTO relations (
        source_type, source_value, target_type, target_value,
        strength, connection_count, first_seen, last_seen, metadata_json
    )
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT (source_type, source_value, target_type, target_value)
    DO UPDATE SET
        last_seen = excluded.last_seen,
        strength = MAX(relations.strength, excluded.strength),
        connection_count = relations.connection_count + 1,
        metadata_json = excluded.metadata_json
"""

_SELECT_BY_KEY_SQL = """
    SELECT * FROM relations
    WHERE source_type = ? AND source_value = ? AND target_type = ? AND target_value = ?
"""


def _now_ms() -> int:
    return int(time.time() * 1000)


def _field(relation: Mapping[str, Any], snake: str, camel: str) -> Any:
    if snake in relation:
        return relation[snake]
    return relation.get(camel)


class RelationStore:
    """SQLite store for typed relations with a query cache in front.

    Thread safety:
        Each operation opens its own connection. SQLite serializes
        conflicting writers; the cache is shared without locking.

    Example:
        >>> store = RelationStore("/var/lib/reltrack/relations.db", TimedCache())
        >>> await store.initialize()
        >>> await store.upsert_relation("username", "alice", "command", "ls")
        >>> groups = await store.get_relations("username", limit=10)
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        db_path: str,
        cache: TimedCache | None = None,
        clock: Callable[[], int] = _now_ms,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the relation store.

        Args:
            db_path: SQLite database file
            cache: Query cache (a private one is created if omitted)
            clock: Current time in Unix ms
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.db_path = Path(db_path)
        self.cache = cache if cache is not None else TimedCache()
        self.clock = clock
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection to the relations database."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")

            yield conn
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS relations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                source_type TEXT NOT NULL,
                source_value TEXT NOT NULL,
                target_type TEXT NOT NULL,
                target_value TEXT NOT NULL,
                metadata_json TEXT NOT NULL DEFAULT '{}',
                first_seen INTEGER NOT NULL,
                last_seen INTEGER NOT NULL,
                strength INTEGER NOT NULL DEFAULT 1,
                connection_count INTEGER NOT NULL DEFAULT 1,
                UNIQUE (source_type, source_value, target_type, target_value)
            );

            CREATE INDEX IF NOT EXISTS idx_relations_source
                ON relations(source_type, source_value);
            CREATE INDEX IF NOT EXISTS idx_relations_target
                ON relations(target_type, target_value);
            CREATE INDEX IF NOT EXISTS idx_relations_last_seen
                ON relations(last_seen DESC);

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    async def initialize(self) -> None:
        """Create the database file and schema if they don't exist."""
        with self._get_connection() as conn:
            self._create_schema(conn)
        logger.info(f"Initialized relations database: {self.db_path}")

    def _invalidate_types(self, types: Iterable[str]) -> None:
        """Drop cached results for each relation type."""
        for relation_type in types:
            self.cache.invalidate_prefix(relation_type)
            if relation_type in (USERNAME_TYPE, COMMAND_TYPE):
                self.cache.invalidate_prefix(USER_COMMANDS_KEY)

    def _upsert_args(
        self,
        source_type: str,
        source_value: str,
        target_type: str,
        target_value: str,
        metadata: dict[str, Any],
        first_seen: Any,
        last_seen: Any,
    ) -> tuple[Any, ...]:
        now = self.clock()
        first = to_millis(first_seen if first_seen is not None else metadata.get("firstSeen"))
        last = to_millis(last_seen if last_seen is not None else metadata.get("timestamp"))
        return (
            source_type,
            source_value,
            target_type,
            target_value,
            json.dumps(metadata),
            first if first is not None else now,
            last if last is not None else now,
        )

    async def upsert_relation(
        self,
        source_type: str,
        source_value: str,
        target_type: str,
        target_value: str,
        metadata: dict[str, Any] | None = None,
        first_seen: Any = None,
        last_seen: Any = None,
    ) -> Relation:
        """Insert an edge or fold a new observation into an existing one.

        Observation times default to the metadata keys ``firstSeen`` and
        ``timestamp``, then to the store clock.

        Args:
            source_type: Type of the source endpoint
            source_value: Value of the source endpoint
            target_type: Type of the target endpoint
            target_value: Value of the target endpoint
            metadata: Attributes of this observation; replaces stored metadata
            first_seen: Optional first observation time
            last_seen: Optional observation time

        Returns:
            The stored Relation after the upsert
        """
        metadata = metadata or {}
        self._invalidate_types((source_type, target_type))

        try:
            args = self._upsert_args(
                source_type, source_value, target_type, target_value,
                metadata, first_seen, last_seen,
            )
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    conn.execute(_UPSERT_SQL, args)
                    row = conn.execute(
                        _SELECT_BY_KEY_SQL,
                        (source_type, source_value, target_type, target_value),
                    ).fetchone()
                    conn.execute("COMMIT")
                except Exception:
                    conn.execute("ROLLBACK")
                    raise

            return Relation.from_row(row)

        except Exception as e:
            logger.error(f"Error upserting relation: {e}", exc_info=True)
            raise

    async def batch_upsert_relations(
        self,
        relations: list[Mapping[str, Any]] | None,
    ) -> list[Relation]:
        """Upsert many relations in a single transaction.

        Each mapping takes the upsert_relation arguments, in snake_case or
        camelCase (``source_type`` or ``sourceType``, ...). Any failing row
        rolls back the whole batch. Cache invalidation runs once per
        distinct type, after commit.

        Returns:
            The stored relations, in input order
        """
        if not relations:
            return []

        types_to_invalidate: set[str] = set()
        results: list[Relation] = []

        try:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    for relation in relations:
                        source_type = _field(relation, "source_type", "sourceType")
                        source_value = _field(relation, "source_value", "sourceValue")
                        target_type = _field(relation, "target_type", "targetType")
                        target_value = _field(relation, "target_value", "targetValue")
                        metadata = relation.get("metadata") or {}

                        types_to_invalidate.add(source_type)
                        types_to_invalidate.add(target_type)

                        conn.execute(
                            _UPSERT_SQL,
                            self._upsert_args(
                                source_type, source_value, target_type, target_value,
                                metadata,
                                _field(relation, "first_seen", "firstSeen"),
                                _field(relation, "last_seen", "lastSeen"),
                            ),
                        )
                        row = conn.execute(
                            _SELECT_BY_KEY_SQL,
                            (source_type, source_value, target_type, target_value),
                        ).fetchone()
                        if row is not None:
                            results.append(Relation.from_row(row))

                    conn.execute("COMMIT")
                except Exception:
                    conn.execute("ROLLBACK")
                    raise

            self._invalidate_types(t for t in types_to_invalidate if t is not None)

            logger.debug(
                "Batch upserted relations",
                extra={"count": len(results), "types": sorted(t for t in types_to_invalidate if t)},
            )
            return results

        except Exception as e:
            logger.error(f"Error in batch upsert relations: {e}", exc_info=True)
            raise

    async def get_relations(self, relation_type: str, limit: int = 100) -> list[RelationGroup]:
        """Get recent relations touching a type, grouped by source value.

        At most ``limit`` edges are kept per distinct value on the
        ``relation_type`` side. Results are cached for the cache TTL.

        Args:
            relation_type: Type matched against either endpoint
            limit: Maximum edges per distinct value

        Returns:
            Groups ordered by first appearance in last_seen DESC order
        """
        cache_key = f"{relation_type}_{limit}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        try:
            with self._get_connection() as conn:
                rows = conn.execute(
                    """
                    WITH ranked_relations AS (
                        SELECT
                            *,
                            ROW_NUMBER() OVER (
                                PARTITION BY CASE WHEN source_type = :type
                                                  THEN source_value ELSE target_value END
                                ORDER BY last_seen DESC, id DESC
                            ) AS row_num
                        FROM relations
                        WHERE source_type = :type OR target_type = :type
                    )
                    SELECT * FROM ranked_relations
                    WHERE row_num <= :limit
                    ORDER BY last_seen DESC, id DESC
                    """,
                    {"type": relation_type, "limit": limit},
                ).fetchall()

            groups = group_relations(rows)
            self.cache.set(cache_key, groups)
            return groups

        except Exception as e:
            logger.error(f"Error getting relations: {e}", exc_info=True)
            raise

    async def get_relations_by_value(self, relation_type: str, value: str) -> list[RelationGroup]:
        """Get every edge where (relation_type, value) is either endpoint.

        Always reads live data.
        """
        try:
            with self._get_connection() as conn:
                rows = conn.execute(
                    """
                    SELECT * FROM relations
                    WHERE (source_type = :type AND source_value = :value)
                       OR (target_type = :type AND target_value = :value)
                    ORDER BY last_seen DESC, id DESC
                    """,
                    {"type": relation_type, "value": value},
                ).fetchall()

            return group_relations(rows)

        except Exception as e:
            logger.error(f"Error getting relations by value: {e}", exc_info=True)
            raise

    async def get_user_commands(self) -> list[UserCommand]:
        """Get all username -> command edges, most recent first."""
        cached = self.cache.get(USER_COMMANDS_KEY)
        if cached is not None:
            return cached

        try:
            with self._get_connection() as conn:
                rows = conn.execute(
                    """
                    SELECT source_value, target_value, first_seen, last_seen, metadata_json
                    FROM relations
                    WHERE source_type = ? AND target_type = ?
                    ORDER BY last_seen DESC, id DESC
                    """,
                    (USERNAME_TYPE, COMMAND_TYPE),
                ).fetchall()

            commands = [
                UserCommand(
                    username=row["source_value"],
                    command=row["target_value"],
                    first_seen=row["first_seen"],
                    last_seen=row["last_seen"],
                    metadata=json.loads(row["metadata_json"]),
                )
                for row in rows
            ]
            self.cache.set(USER_COMMANDS_KEY, commands)
            return commands

        except Exception as e:
            logger.error(f"Error getting user commands: {e}", exc_info=True)
            raise

    async def update_field_value(self, field_type: str, old_value: str, new_value: str) -> int:
        """Rename a value of field_type across both endpoints of every edge.

        Matching rows are deleted and re-inserted with the new value. When a
        re-inserted edge collides with a surviving one, the larger strength
        wins and connection_count is bumped.

        The returned total adds the source-side and target-side matches, so
        an edge carrying old_value on both ends counts twice.

        Returns:
            Number of matched rows, 0 when nothing was requested
        """
        if not old_value or not new_value or old_value == new_value:
            return 0

        logger.info(f'Updating relations: {field_type} from "{old_value}" to "{new_value}"')
        self._invalidate_types((field_type,))

        try:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    source_rows = conn.execute(
                        "SELECT * FROM relations WHERE source_type = ? AND source_value = ?",
                        (field_type, old_value),
                    ).fetchall()
                    target_rows = conn.execute(
                        "SELECT * FROM relations WHERE target_type = ? AND target_value = ?",
                        (field_type, old_value),
                    ).fetchall()

                    conn.execute(
                        "DELETE FROM relations WHERE source_type = ? AND source_value = ?",
                        (field_type, old_value),
                    )
                    conn.execute(
                        "DELETE FROM relations WHERE target_type = ? AND target_value = ?",
                        (field_type, old_value),
                    )

                    now = self.clock()
                    for row in source_rows:
                        conn.execute(
                            _REINSERT_SQL,
                            (
                                row["source_type"], new_value,
                                row["target_type"], row["target_value"],
                                row["strength"], row["connection_count"],
                                row["first_seen"], now, row["metadata_json"],
                            ),
                        )
                    for row in target_rows:
                        conn.execute(
                            _REINSERT_SQL,
                            (
                                row["source_type"], row["source_value"],
                                row["target_type"], new_value,
                                row["strength"], row["connection_count"],
                                row["first_seen"], now, row["metadata_json"],
                            ),
                        )

                    conn.execute("COMMIT")
                except Exception:
                    conn.execute("ROLLBACK")
                    raise

            total_updated = len(source_rows) + len(target_rows)
            logger.info(
                f'Updated {total_updated} relation records with {field_type} '
                f'from "{old_value}" to "{new_value}"'
            )
            return total_updated

        except Exception as e:
            logger.error(f"Error updating {field_type} relations: {e}", exc_info=True)
            raise

    async def update_user_commands(self, old_username: str, new_username: str) -> int:
        """Rename the source of username edges in place.

        Returns:
            Number of rows updated
        """
        self.cache.invalidate_prefix(USERNAME_TYPE)
        self.cache.invalidate_prefix(USER_COMMANDS_KEY)

        try:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    """
                    UPDATE relations SET source_value = ?
                    WHERE source_type = ? AND source_value = ?
                    """,
                    (new_username, USERNAME_TYPE, old_username),
                )
                return cursor.rowcount

        except Exception as e:
            logger.error(f"Error updating user commands: {e}", exc_info=True)
            raise

    async def delete_old_relations(self, max_age_days: float = 30) -> int:
        """Delete relations not seen within max_age_days and flush the cache.

        Returns:
            Number of rows deleted
        """
        cutoff = self.clock() - int(max_age_days * MS_PER_DAY)

        try:
            with self._get_connection() as conn:
                cursor = conn.execute("DELETE FROM relations WHERE last_seen < ?", (cutoff,))
                deleted = cursor.rowcount

            self.cache.clear_all()

            logger.info(
                "Deleted old relations",
                extra={"deleted": deleted, "max_age_days": max_age_days},
            )
            return deleted

        except Exception as e:
            logger.error(f"Error deleting old relations: {e}", exc_info=True)
            raise

    async def get_stats(self) -> dict[str, Any]:
        """Get store statistics.

        Returns:
            Dictionary with relation count, distinct types and cache stats
        """
        with self._get_connection() as conn:
            stats: dict[str, Any] = {}

            cursor = conn.execute("SELECT COUNT(*) FROM relations")
            stats["relations"] = cursor.fetchone()[0]

            cursor = conn.execute(
                """
                SELECT source_type AS type FROM relations
                UNION
                SELECT target_type FROM relations
                ORDER BY type
                """
            )
            stats["types"] = [row[0] for row in cursor.fetchall()]

        stats["cache"] = self.cache.stats
        return stats
