"""
Tests for the migration engine.

This test module validates:
- Applying migrations to a fresh database
- Idempotence on the same and on a reopened connection
- Applying only newly appended migrations
- Consistency checks on the applied history
- Encoding errors on non-UTF-8 content
"""

from __future__ import annotations

from pathlib import Path

import pytest

from oc_metrics.errors import ConsistencyError, EncodingError, MigrationError
from oc_metrics.migrator import Applier, Migration, load_migrations, migrate
from oc_metrics.migrator.sqlite import SqliteApplier
from oc_metrics.storage.connection import SharedConnection

# =============================================================================
# Fixtures and helpers
# =============================================================================

POSTS = Migration("0001_posts.sql", b"CREATE TABLE Posts (Id TEXT);")
COMMENTS = Migration(
    "0002_comments.sql",
    b"CREATE TABLE Comments (Id TEXT, PostId TEXT);\n"
    b"CREATE INDEX idx_comments_post ON Comments (PostId);",
)


class RecordingApplier(Applier):
    """In-memory Applier that records every call."""

    def __init__(self, applied: list[str] | None = None) -> None:
        self.ledger = list(applied or [])
        self.calls: list[tuple[str, str | None]] = []

    def setup(self) -> None:
        self.calls.append(("setup", None))

    def apply(self, sql: str) -> None:
        self.calls.append(("apply", sql))

    def mark_applied(self, name: str) -> None:
        self.calls.append(("mark_applied", name))
        self.ledger.append(name)

    def applied(self) -> list[str]:
        self.calls.append(("applied", None))
        return list(self.ledger)


@pytest.fixture
def conn() -> SharedConnection:
    """In-memory shared connection."""
    conn = SharedConnection.open(":memory:")
    yield conn
    conn.close()


def _tables(conn: SharedConnection) -> set[str]:
    with conn.statement() as db:
        rows = db.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    return {row[0] for row in rows}


# =============================================================================
# Tests for applying migrations
# =============================================================================


class TestApplyMigrations:
    """Tests for applying migrations to a SQLite backend."""

    def test_apply_new_migrations(self, conn: SharedConnection) -> None:
        """Test that a fresh database gets every migration."""
        applied = migrate([POSTS, COMMENTS], SqliteApplier(conn))

        assert applied == ["0001_posts.sql", "0002_comments.sql"]
        assert {"Posts", "Comments", "SchemaMigrations"} <= _tables(conn)

        with conn.statement() as db:
            db.execute("INSERT INTO Posts (Id) VALUES (?)", ("hello world",))

    def test_migrations_sorted_by_name(self) -> None:
        """Test that migrations run in name order regardless of input order."""
        applier = RecordingApplier()

        migrate([COMMENTS, POSTS], applier)

        marked = [arg for call, arg in applier.calls if call == "mark_applied"]
        assert marked == ["0001_posts.sql", "0002_comments.sql"]

    def test_apply_then_mark_order(self) -> None:
        """Test that each migration is applied before it is recorded."""
        applier = RecordingApplier()

        migrate([POSTS], applier)

        assert [call for call, _ in applier.calls] == [
            "setup",
            "applied",
            "apply",
            "mark_applied",
        ]
        assert applier.calls[2][1] == POSTS.content.decode("utf-8")

    def test_accepts_mapping(self, conn: SharedConnection) -> None:
        """Test that a name-to-content mapping works as the migration set."""
        applied = migrate(
            {"0001_posts.sql": "CREATE TABLE Posts (Id TEXT);"},
            SqliteApplier(conn),
        )

        assert applied == ["0001_posts.sql"]
        assert "Posts" in _tables(conn)

    def test_empty_migration_set(self, conn: SharedConnection) -> None:
        """Test that an empty set only creates the ledger."""
        assert migrate([], SqliteApplier(conn)) == []
        assert "SchemaMigrations" in _tables(conn)


# =============================================================================
# Tests for idempotence
# =============================================================================


class TestMigrationIdempotence:
    """Tests for re-running migrations."""

    def test_reapply_migrations(self, conn: SharedConnection) -> None:
        """Test that a second run changes nothing and keeps data."""
        applier = SqliteApplier(conn)
        migrate([POSTS], applier)
        with conn.statement() as db:
            db.execute("INSERT INTO Posts (Id) VALUES (?)", ("hello world",))

        assert migrate([POSTS], applier) == []

        with conn.statement() as db:
            row = db.execute("SELECT Id FROM Posts").fetchone()
        assert row[0] == "hello world"

    def test_second_run_applies_nothing(self) -> None:
        """Test that no apply call happens when history is complete."""
        applier = RecordingApplier(applied=["0001_posts.sql"])

        migrate([POSTS], applier)

        assert "apply" not in [call for call, _ in applier.calls]

    def test_reopened_database(self, temp_db_path: Path) -> None:
        """Test idempotence across a reopened file-backed database."""
        first = SharedConnection.open(temp_db_path)
        migrate([POSTS], SqliteApplier(first))
        first.close()

        second = SharedConnection.open(temp_db_path)
        try:
            assert migrate([POSTS], SqliteApplier(second)) == []
        finally:
            second.close()

    def test_appended_migration_applied(self, conn: SharedConnection) -> None:
        """Test that only a newly appended migration runs."""
        applier = SqliteApplier(conn)
        migrate([POSTS], applier)

        applied = migrate([POSTS, COMMENTS], applier)

        assert applied == ["0002_comments.sql"]
        assert sorted(applier.applied()) == ["0001_posts.sql", "0002_comments.sql"]


# =============================================================================
# Tests for consistency enforcement
# =============================================================================


class TestMigrationConsistency:
    """Tests for diverging migration history."""

    def test_renamed_migration(self) -> None:
        """Test that a renamed applied migration is a ConsistencyError."""
        applier = RecordingApplier(applied=["0001_old_name.sql"])

        with pytest.raises(ConsistencyError) as exc_info:
            migrate([POSTS, COMMENTS], applier)

        assert "0001_old_name.sql" in exc_info.value.message
        assert "0001_posts.sql" in exc_info.value.message
        assert exc_info.value.error_code == "consistency"
        assert "apply" not in [call for call, _ in applier.calls]

    def test_inserted_migration_before_applied(self) -> None:
        """Test that a file sorted before applied history is rejected."""
        applier = RecordingApplier(applied=["0002_comments.sql"])

        with pytest.raises(ConsistencyError):
            migrate([POSTS, COMMENTS], applier)

        assert applier.ledger == ["0002_comments.sql"]

    def test_removed_last_migration(self) -> None:
        """Test that an applied migration with no file is rejected."""
        applier = RecordingApplier(applied=["0001_posts.sql", "0002_comments.sql"])

        with pytest.raises(ConsistencyError):
            migrate([POSTS], applier)

    def test_divergence_in_sqlite_ledger(self, conn: SharedConnection) -> None:
        """Test that nothing further is applied to a diverging SQLite ledger."""
        applier = SqliteApplier(conn)
        applier.setup()
        applier.mark_applied("0001_something_else.sql")

        with pytest.raises(ConsistencyError):
            migrate([POSTS, COMMENTS], applier)

        assert "Posts" not in _tables(conn)
        assert "Comments" not in _tables(conn)


# =============================================================================
# Tests for migration content errors
# =============================================================================


class TestMigrationContent:
    """Tests for unreadable or failing migrations."""

    def test_invalid_utf8(self) -> None:
        """Test that non-UTF-8 content is an EncodingError."""
        applier = RecordingApplier()
        bad = Migration("0001_bad.sql", b"CREATE TABLE \xff\xfe (Id TEXT);")

        with pytest.raises(EncodingError) as exc_info:
            migrate([bad], applier)

        assert isinstance(exc_info.value, MigrationError)
        assert applier.ledger == []

    def test_failing_sql_is_not_recorded(self, conn: SharedConnection) -> None:
        """Test that a migration whose SQL fails is not marked applied."""
        from oc_metrics.errors import StorageError

        applier = SqliteApplier(conn)
        broken = Migration("0002_broken.sql", b"CREATE TABLE (;")

        with pytest.raises(StorageError):
            migrate([POSTS, broken], applier)

        assert applier.applied() == ["0001_posts.sql"]


# =============================================================================
# Tests for loading migration files
# =============================================================================


class TestLoadMigrations:
    """Tests for reading migrations from a directory."""

    def test_load_sorted_sql_files(self, tmp_path: Path) -> None:
        """Test that only .sql files are loaded, sorted by name."""
        (tmp_path / "0002_b.sql").write_bytes(b"SELECT 2;")
        (tmp_path / "0001_a.sql").write_bytes(b"SELECT 1;")
        (tmp_path / "README.md").write_text("not a migration")

        migrations = load_migrations(tmp_path)

        assert [m.name for m in migrations] == ["0001_a.sql", "0002_b.sql"]
        assert migrations[0].content == b"SELECT 1;"
