"""
Pytest configuration for the metrics service tests.
"""

from __future__ import annotations

import logging
from collections.abc import Generator
from pathlib import Path

import pytest

from oc_metrics.storage.sqlite import SqliteDatabase

pytest_plugins = ["pytest_asyncio"]


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (deselect with '-m \"not integration\"')",
    )


@pytest.fixture
def temp_db_path(tmp_path: Path) -> Path:
    """Path for a file-backed test database."""
    return tmp_path / "metrics.db"


@pytest.fixture
def database() -> Generator[SqliteDatabase, None, None]:
    """An in-memory database with the schema applied."""
    db = SqliteDatabase.open(":memory:")
    db.setup()
    yield db
    db.close()


@pytest.fixture(autouse=True)
def _propagate_package_logs() -> Generator[None, None, None]:
    """Let caplog see oc_metrics records even after setup_logging ran."""
    logger = logging.getLogger("oc_metrics")
    propagate = logger.propagate
    logger.propagate = True
    yield
    logger.propagate = propagate
