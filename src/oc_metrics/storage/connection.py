"""
A single SQLite connection shared by every storage operation.

All access goes through ``SharedConnection.statement()``, which holds a
mutex for exactly one statement (or one script). Nothing is held across
statements, so a multi-statement sequence such as apply-then-mark can
interleave with other callers.

If a statement fails with anything other than ``sqlite3.Error`` or a
parameter binding error (``OverflowError``, ``ValueError``) while the lock is
held, the connection is poisoned: every later call raises StorageError until
the process is restarted.
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from oc_metrics.errors import StorageError
from oc_metrics.logging import get_logger

logger = get_logger(__name__)

MEMORY_PATH = ":memory:"


class SharedConnection:
    """
    Mutex-guarded wrapper around one ``sqlite3.Connection``.

    Example:
        >>> conn = SharedConnection.open(":memory:")
        >>> with conn.statement() as db:
        ...     db.execute("SELECT 1").fetchone()
        (1,)
    """

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._conn = connection
        self._lock = threading.Lock()
        self._poisoned = False

    @classmethod
    def open(cls, path: str | Path) -> SharedConnection:
        """
        Open a connection to a file-backed or in-memory database.

        Parent directories of a file path are created as needed.

        Raises:
            StorageError: If the database cannot be opened.
        """
        path = str(path)
        try:
            if path != MEMORY_PATH:
                Path(path).parent.mkdir(parents=True, exist_ok=True)
            # autocommit; statements are never grouped into transactions
            connection = sqlite3.connect(
                path,
                check_same_thread=False,
                isolation_level=None,
            )
        except (OSError, sqlite3.Error) as e:
            raise StorageError(
                f"problem opening database: {e}",
                details={"database_path": path},
            ) from e
        logger.debug("Opened database", extra={"database_path": path})
        return cls(connection)

    @property
    def poisoned(self) -> bool:
        """Whether a previous statement failed while holding the lock."""
        return self._poisoned

    @contextmanager
    def statement(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Hold the lock for the duration of one statement.

        Yields:
            The underlying connection.

        Raises:
            StorageError: If the connection is poisoned or SQLite fails.
        """
        with self._lock:
            if self._poisoned:
                raise StorageError("mutex error: database connection is poisoned")
            try:
                yield self._conn
            except sqlite3.Error as e:
                raise StorageError(
                    f"problem interacting with database: {e}",
                    details={"sqlite_error": type(e).__name__},
                ) from e
            except StorageError:
                raise
            except (OverflowError, ValueError) as e:
                # parameter binding failed before the statement ran
                raise StorageError(
                    f"problem binding statement parameters: {e}",
                    details={"error_type": type(e).__name__},
                ) from e
            except BaseException:
                self._poisoned = True
                logger.error("Database connection poisoned", exc_info=True)
                raise

    def close(self) -> None:
        """Close the underlying connection."""
        with self._lock:
            self._conn.close()
