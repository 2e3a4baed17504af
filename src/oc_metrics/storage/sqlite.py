"""
SQLite storage backend for metrics.

SqliteDatabase implements both the Database capability and, through
SqliteApplier, the migration Applier against one SharedConnection.

SQLite Schema (see ``migrations/``):
    CREATE TABLE Metrics (
        name TEXT,               -- dot-separated metric name
        time TEXT,               -- fixed-width ISO 8601 UTC timestamp
        value_type TEXT,         -- 'double' or 'string'
        dvalue REAL,             -- payload for double rows, 0.0 otherwise
        tvalue TEXT              -- payload for string rows, '' otherwise
    );
    CREATE TABLE SchemaMigrations (name TEXT PRIMARY KEY);
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from pathlib import Path
from typing import Any

from oc_metrics.errors import StorageError
from oc_metrics.logging import get_logger
from oc_metrics.migrator import Migration, load_migrations, migrate
from oc_metrics.migrator.sqlite import SqliteApplier
from oc_metrics.storage import (
    VALUE_TYPE_DOUBLE,
    VALUE_TYPE_STRING,
    Database,
    Metric,
    format_timestamp,
    parse_timestamp,
)
from oc_metrics.storage.connection import SharedConnection

logger = get_logger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"


def embedded_migrations() -> list[Migration]:
    """Return the migrations shipped with this package, sorted by name."""
    return load_migrations(MIGRATIONS_DIR)


class SqliteDatabase(Database):
    """
    SQLite-backed metrics store.

    Example:
        >>> db = SqliteDatabase.open(":memory:")
        >>> db.setup()
        ['0001_create_metrics.sql', '0002_index_metrics_name_time.sql']
        >>> db.write_metric(Metric("svc.cpu", datetime.now(UTC), 23.0))
        >>> db.list_metrics("svc.")
        [('svc.cpu', datetime.datetime(...))]
    """

    def __init__(
        self,
        conn: SharedConnection,
        migrations: Sequence[Migration] | None = None,
    ) -> None:
        """
        Initialize the database.

        Args:
            conn: The shared connection all operations go through.
            migrations: Migration set run by ``setup``; defaults to the
                embedded migrations.
        """
        self.conn = conn
        self._migrations = migrations

    @classmethod
    def open(
        cls,
        path: str | Path,
        migrations: Sequence[Migration] | None = None,
    ) -> SqliteDatabase:
        """Open a database at ``path`` (``":memory:"`` for an in-memory store)."""
        return cls(SharedConnection.open(path), migrations)

    def applier(self) -> SqliteApplier:
        """Return a migration Applier bound to this database's connection."""
        return SqliteApplier(self.conn)

    def setup(self) -> list[str]:
        migrations = (
            self._migrations if self._migrations is not None else embedded_migrations()
        )
        applied = migrate(migrations, self.applier())
        logger.info(
            "Metrics database schema ready",
            extra={"applied_migrations": applied},
        )
        return applied

    def write_metric(self, metric: Metric) -> None:
        if isinstance(metric.value, str):
            value_type, dvalue, tvalue = VALUE_TYPE_STRING, 0.0, metric.value
        else:
            value_type, dvalue, tvalue = VALUE_TYPE_DOUBLE, float(metric.value), ""

        row = (metric.name, format_timestamp(metric.when), value_type, dvalue, tvalue)

        with self.conn.statement() as db:
            db.execute(
                """
                INSERT INTO Metrics (name, time, value_type, dvalue, tvalue)
                VALUES (?, ?, ?, ?, ?)
                """,
                row,
            )

    def read_metrics(
        self,
        prefix: str,
        start: datetime | None = None,
        stop: datetime | None = None,
        limit: int | None = None,
    ) -> list[Metric]:
        # prefix is not escaped; '%' and '_' in it act as LIKE wildcards
        conditions = ["t1.name LIKE :prefix"]
        params: dict[str, Any] = {"prefix": f"{prefix}%"}

        if start is not None:
            conditions.append("t1.time > :start")
            params["start"] = format_timestamp(start)

        if stop is not None:
            conditions.append("t1.time < :stop")
            params["stop"] = format_timestamp(stop)

        query = f"""
            SELECT t1.name, t1.time, t1.value_type, t1.dvalue, t1.tvalue
            FROM Metrics t1
            WHERE {" AND ".join(conditions)}
        """
        if limit is not None:
            query += " LIMIT :limit"
            params["limit"] = limit

        with self.conn.statement() as db:
            rows = db.execute(query, params).fetchall()

        return [self._row_to_metric(row) for row in rows]

    def list_metrics(self, prefix: str) -> list[tuple[str, datetime]]:
        with self.conn.statement() as db:
            rows = db.execute(
                """
                SELECT t1.name, MAX(t1.time)
                FROM Metrics t1
                WHERE t1.name LIKE ?
                GROUP BY t1.name
                """,
                (f"{prefix}%",),
            ).fetchall()

        return [(name, self._parse_time(text)) for name, text in rows]

    def close(self) -> None:
        """Close the underlying connection."""
        self.conn.close()

    @classmethod
    def _row_to_metric(cls, row: tuple[Any, ...]) -> Metric:
        name, time_text, value_type, dvalue, tvalue = row
        value = float(dvalue) if value_type == VALUE_TYPE_DOUBLE else tvalue
        return Metric(name=name, when=cls._parse_time(time_text), value=value)

    @staticmethod
    def _parse_time(text: str) -> datetime:
        try:
            return parse_timestamp(text)
        except (TypeError, ValueError) as e:
            raise StorageError(
                f"problem parsing timestamp from database: {e}",
                details={"time": text},
            ) from e
