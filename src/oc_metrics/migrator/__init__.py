"""
A small schema migration engine.

Migrations are named blobs of SQL text. They are sorted by name before being
applied, so name files with a numeric or date prefix (``0001_...``). Each
migration runs at most once per database; the names of applied migrations are
kept by the backend's Applier and must always form an ordered prefix of the
available migration names.

Example:
    >>> from oc_metrics.migrator import Migration, migrate
    >>> from oc_metrics.migrator.sqlite import SqliteApplier
    >>> from oc_metrics.storage.connection import SharedConnection
    >>> conn = SharedConnection.open(":memory:")
    >>> migrate(
    ...     [Migration("0001_posts.sql", b"CREATE TABLE Posts (Id TEXT);")],
    ...     SqliteApplier(conn),
    ... )
    ['0001_posts.sql']
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path

from oc_metrics.errors import ConsistencyError, EncodingError, MigrationError
from oc_metrics.logging import get_logger

logger = get_logger(__name__)

MIGRATION_SUFFIX = ".sql"


@dataclass(frozen=True)
class Migration:
    """A named schema change.

    Attributes:
        name: File identifier; sort order of names is execution order.
        content: Raw migration bytes, expected to be UTF-8 SQL.
    """

    name: str
    content: bytes


class Applier(ABC):
    """Backend capability used by ``migrate`` to run and record migrations."""

    @abstractmethod
    def setup(self) -> None:
        """Create the applied-migration ledger; must be idempotent."""

    @abstractmethod
    def apply(self, sql: str) -> None:
        """Execute a schema-altering SQL script."""

    @abstractmethod
    def mark_applied(self, name: str) -> None:
        """Record ``name`` as applied."""

    @abstractmethod
    def applied(self) -> list[str]:
        """Return the names of all applied migrations."""


MigrationSource = Iterable[Migration] | Mapping[str, bytes | str]


def _index_migrations(available: MigrationSource) -> dict[str, bytes | str]:
    if isinstance(available, Mapping):
        return dict(available)
    return {m.name: m.content for m in available}


def load_migrations(directory: str | Path) -> list[Migration]:
    """
    Read every ``*.sql`` file in a directory into Migration objects.

    Args:
        directory: Directory holding the migration files.

    Returns:
        Migrations sorted by file name.
    """
    directory = Path(directory)
    return [
        Migration(name=path.name, content=path.read_bytes())
        for path in sorted(directory.glob(f"*{MIGRATION_SUFFIX}"))
    ]


def migrate(available: MigrationSource, applier: Applier) -> list[str]:
    """
    Bring a backend's schema up to date.

    Already-applied migrations are checked against the available set
    position by position; anything that does not line up aborts the run.
    Migrations past the applied prefix are applied in name order, each one
    recorded right after it succeeds.

    Args:
        available: The full migration set, as Migration objects or a
            mapping of name to content.
        applier: Backend that executes and records migrations.

    Returns:
        Names of the migrations applied by this call.

    Raises:
        ConsistencyError: If the applied history diverges from the
            available migrations.
        EncodingError: If a migration to apply is not valid UTF-8.
        MigrationError: If a migration's content cannot be found.
        StorageError: If the backend fails.
    """
    contents = _index_migrations(available)
    names = sorted(contents)

    applier.setup()
    applied = sorted(applier.applied())

    if len(applied) > len(names):
        raise ConsistencyError(
            "Problem applying migrations; found applied migration "
            f"'{applied[len(names)]}' with no matching migration file",
            details={"applied": applied[len(names)], "available_count": len(names)},
        )

    newly_applied: list[str] = []
    for i, name in enumerate(names):
        if i < len(applied):
            # history must line up with the files exactly
            if applied[i] != name:
                raise ConsistencyError(
                    "Problem applying migrations; expected to find applied "
                    f"migration '{applied[i]}', but found '{name}'",
                    details={"applied": applied[i], "available": name, "index": i},
                )
            continue

        raw = contents.get(name)
        if raw is None:
            raise MigrationError(
                f"Expected to find migration {name} in the migration set; did not",
                details={"name": name},
            )
        if isinstance(raw, bytes):
            try:
                sql = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                raise EncodingError(
                    f"Migration {name} contains poorly formed text: {e}",
                    details={"name": name},
                ) from e
        else:
            sql = raw

        applier.apply(sql)
        applier.mark_applied(name)
        newly_applied.append(name)
        logger.info("Applied migration", extra={"migration": name})

    if not newly_applied:
        logger.debug("Schema is up to date", extra={"applied_count": len(applied)})

    return newly_applied


__all__ = [
    "Applier",
    "Migration",
    "load_migrations",
    "migrate",
]
