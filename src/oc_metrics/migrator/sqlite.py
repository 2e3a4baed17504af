"""SQLite Applier backed by a SharedConnection."""

from __future__ import annotations

from oc_metrics.migrator import Applier
from oc_metrics.storage.connection import SharedConnection

SCHEMA_MIGRATIONS_SQL = """
CREATE TABLE IF NOT EXISTS SchemaMigrations (
    name TEXT PRIMARY KEY
);
"""


class SqliteApplier(Applier):
    """
    Applier that keeps its ledger in the ``SchemaMigrations`` table.

    Every method takes the connection lock for its own statement only.
    """

    def __init__(self, conn: SharedConnection) -> None:
        self.conn = conn

    def setup(self) -> None:
        with self.conn.statement() as db:
            db.executescript(SCHEMA_MIGRATIONS_SQL)

    def apply(self, sql: str) -> None:
        with self.conn.statement() as db:
            db.executescript(sql)

    def mark_applied(self, name: str) -> None:
        with self.conn.statement() as db:
            db.execute("INSERT INTO SchemaMigrations (name) VALUES (?)", (name,))

    def applied(self) -> list[str]:
        with self.conn.statement() as db:
            rows = db.execute("SELECT t1.name FROM SchemaMigrations t1").fetchall()
        return [row[0] for row in rows]
