"""
TaskTrack Test Suite — Shared fixtures and configuration.

Run:  pytest tests/ -v
"""

from __future__ import annotations

from typing import Any, Callable

import pytest

from tasktrack.db.session import Database
from tasktrack.engine.config import LoggingConfig, StorageConfig, TaskTrackConfig
from tasktrack.engine.context import Identity
from tasktrack.services import AttachmentService, CommentService, StatsService, TaskService
from tasktrack.storage.blobs import FileBlobStore
from tasktrack.tasks.schemas import Task, UploadFile


# ---------------------------------------------------------------------------
# Global state — config / logging / database singletons reset per test
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_globals(monkeypatch, tmp_path):
    """Run each test from an empty directory with fresh singletons."""
    import tasktrack.db.session as session_mod
    import tasktrack.engine.config as cfg_mod
    import tasktrack.engine.logging as log_mod

    monkeypatch.delenv("TASKTRACK_CONFIG", raising=False)
    monkeypatch.chdir(tmp_path)
    cfg_mod._config = None
    log_mod._file_logger = None
    session_mod._default_database = None
    yield
    cfg_mod._config = None
    log_mod._file_logger = None
    if session_mod._default_database is not None:
        session_mod._default_database.dispose()
        session_mod._default_database = None


@pytest.fixture
def config(tmp_path) -> TaskTrackConfig:
    return TaskTrackConfig(
        storage=StorageConfig(blob_root=str(tmp_path / "blobs")),
        logging=LoggingConfig(directory=str(tmp_path / "logs")),
    )


@pytest.fixture
def database():
    """In-memory SQLite with all tables created."""
    db = Database("sqlite://", create_tables=True)
    yield db
    db.dispose()


@pytest.fixture
def blob_store(tmp_path) -> FileBlobStore:
    return FileBlobStore(str(tmp_path / "blobs"))


# ---------------------------------------------------------------------------
# Identities
# ---------------------------------------------------------------------------

@pytest.fixture
def u1() -> Identity:
    return Identity(id="user-1", username="u1")


@pytest.fixture
def u2() -> Identity:
    return Identity(id="user-2", username="u2")


@pytest.fixture
def u3() -> Identity:
    return Identity(id="user-3", username="u3")


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------

@pytest.fixture
def task_service(database, blob_store, config) -> TaskService:
    return TaskService(database, blob_store, config=config)


@pytest.fixture
def comment_service(database) -> CommentService:
    return CommentService(database)


@pytest.fixture
def attachment_service(database, blob_store, config) -> AttachmentService:
    return AttachmentService(database, blob_store, config=config)


@pytest.fixture
def stats_service(database) -> StatsService:
    return StatsService(database)


@pytest.fixture
def make_task(task_service, u1) -> Callable[..., Task]:
    """Create a task as ``identity`` (u1 by default)."""

    def _make(title: str = "Task", identity: Identity = None, **fields: Any) -> Task:
        return task_service.create(identity or u1, {"title": title, **fields})

    return _make


@pytest.fixture
def upload_file() -> Callable[..., UploadFile]:
    def _upload(name: str = "notes.txt", body: bytes = b"hello", content_type: str = "text/plain") -> UploadFile:
        return UploadFile(filename=name, content=body, content_type=content_type)

    return _upload
