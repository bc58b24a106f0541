"""
Integration test fixtures — file-backed SQLite, blob directory and JSONL logs.
All services share one Database the way a long-running process would.

Run: pytest tests/integration/ -v -m integration
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from tasktrack.db.session import Database
from tasktrack.engine.config import DatabaseConfig, LoggingConfig, StorageConfig, TaskTrackConfig
from tasktrack.engine.logging import init_logging
from tasktrack.services import AttachmentService, CommentService, StatsService, TaskService
from tasktrack.storage.blobs import FileBlobStore


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: exercises several services against a file database")


@pytest.fixture
def workspace(tmp_path) -> TaskTrackConfig:
    """Config pointing every component at tmp_path."""
    return TaskTrackConfig(
        database=DatabaseConfig(url=f"sqlite:///{tmp_path / 'tasktrack.db'}"),
        storage=StorageConfig(blob_root=str(tmp_path / "blobs")),
        logging=LoggingConfig(directory=str(tmp_path / "logs")),
    )


@pytest.fixture
def app(workspace):
    """The four services wired to one database, blob store and file logger."""
    file_logger = init_logging(workspace.logging.directory, workspace.logging.level)
    db = Database.from_config(workspace)
    blobs = FileBlobStore(workspace.storage.blob_root)
    yield SimpleNamespace(
        db=db,
        blobs=blobs,
        logs=file_logger,
        tasks=TaskService(db, blobs, config=workspace),
        comments=CommentService(db),
        attachments=AttachmentService(db, blobs, config=workspace),
        stats=StatsService(db),
    )
    db.dispose()
