"""Tests for tasktrack.services.tasks — TaskService CRUD, access rules and cascading delete."""

from datetime import date
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from tasktrack.engine.errors import ForbiddenError, NotFoundError, StorageError, ValidationError
from tasktrack.engine.logging import init_logging
from tasktrack.tasks.related import AttachmentStore, CommentStore
from tasktrack.tasks.schemas import TaskCreate, TaskPriority, TaskStatus
from tasktrack.tasks.store import TaskStore, UserStore


class TestCreate:

    def test_defaults_applied(self, task_service, u1):
        task = task_service.create(u1, {"title": "Fix bug"})
        assert task.status == TaskStatus.TODO
        assert task.priority == TaskPriority.MEDIUM
        assert task.creator_id == "user-1"
        assert task.creator.id == "user-1"
        assert task.creator.username == "u1"
        assert task.id
        assert task.created_at is not None

    def test_null_status_and_priority_use_defaults(self, task_service, u1):
        task = task_service.create(u1, {"title": "Fix bug", "status": None, "priority": None})
        assert task.status == TaskStatus.TODO
        assert task.priority == TaskPriority.MEDIUM

    def test_all_fields(self, task_service, u1):
        task = task_service.create(u1, {
            "title": "  Ship release  ",
            "description": "Tag and publish",
            "status": "in-progress",
            "priority": "high",
            "due_date": "2025-03-01",
            "tags": ["release", "release", "ops"],
            "assigned_to": ["u2", "u3"],
        })
        assert task.title == "Ship release"
        assert task.status == TaskStatus.IN_PROGRESS
        assert task.due_date == date(2025, 3, 1)
        assert task.tags == ["release", "ops"]
        assert task.assigned_to == ["u2", "u3"]

    def test_accepts_schema_instance(self, task_service, u1):
        task = task_service.create(u1, TaskCreate(title="Typed"))
        assert task.title == "Typed"

    @pytest.mark.parametrize("fields", [
        {},
        {"title": ""},
        {"title": "   "},
        {"title": None},
        {"title": "x" * 201},
        {"title": "ok", "status": "done"},
        {"title": "ok", "priority": "urgent"},
        {"title": "ok", "creator": "user-9"},
        {"title": "ok", "id": "abc"},
        {"title": "ok", "tags": ["x" * 51]},
    ])
    def test_invalid(self, task_service, u1, fields):
        with pytest.raises(ValidationError):
            task_service.create(u1, fields)

    def test_non_mapping_rejected(self, task_service, u1):
        with pytest.raises(ValidationError):
            task_service.create(u1, "Fix bug")

    def test_creator_recorded_in_directory(self, task_service, database, u1):
        task_service.create(u1, {"title": "Fix bug"})
        assert UserStore(database).get("user-1").username == "u1"


class TestGetOne:

    def test_creator(self, task_service, make_task, u1):
        task = make_task("Fix bug")
        assert task_service.get_one(u1, task.id).id == task.id

    def test_assignee_can_view(self, task_service, make_task, u2):
        task = make_task("Fix bug", assigned_to=["u2"])
        assert task_service.get_one(u2, task.id).title == "Fix bug"

    def test_stranger_forbidden(self, task_service, make_task, u3):
        task = make_task("Fix bug", assigned_to=["u2"])
        with pytest.raises(ForbiddenError) as exc_info:
            task_service.get_one(u3, task.id)
        assert exc_info.value.required_permission == "view"

    def test_not_found(self, task_service, u1):
        with pytest.raises(NotFoundError):
            task_service.get_one(u1, "missing")

    def test_visibility_matches_list(self, task_service, make_task, u1, u2, u3):
        tasks = [
            make_task("a"),
            make_task("b", assigned_to=["u2"]),
            make_task("c", identity=u3, assigned_to=["u2"]),
            make_task("d", identity=u3),
        ]
        for ident in (u1, u2, u3):
            listed = {t.id for t in task_service.list(ident, {"limit": 50}).items}
            for task in tasks:
                try:
                    task_service.get_one(ident, task.id)
                    viewable = True
                except ForbiddenError:
                    viewable = False
                assert viewable == (task.id in listed)


class TestDeletedCreator:
    """The creator's user record is removed after the task was created."""

    def test_creator_is_none(self, task_service, make_task, database, u2):
        task = make_task("Orphan", assigned_to=["u2"])
        UserStore(database).delete("user-1")
        loaded = task_service.get_one(u2, task.id)
        assert loaded.creator is None
        assert loaded.creator_id == "user-1"

    def test_nobody_can_mutate(self, task_service, make_task, database, u1, u2):
        task = make_task("Orphan", assigned_to=["u2"])
        UserStore(database).delete("user-1")
        with pytest.raises(ForbiddenError):
            task_service.update(u1, task.id, {"title": "x"})
        with pytest.raises(ForbiddenError):
            task_service.delete(u2, task.id)

    def test_list_agrees_with_get_one(self, task_service, make_task, database, u1):
        make_task("Orphan")
        UserStore(database).delete("user-1")
        assert task_service.list(u1).total_count == 0


class TestUpdate:

    def test_creator_updates(self, task_service, make_task, u1):
        task = make_task("Fix bug")
        updated = task_service.update(u1, task.id, {"status": "completed", "title": "Fixed bug"})
        assert updated.status == TaskStatus.COMPLETED
        assert updated.title == "Fixed bug"
        assert updated.updated_at >= task.updated_at

    def test_only_sent_fields_change(self, task_service, make_task, u1):
        task = make_task("Fix bug", description="keep me", tags=["a"])
        updated = task_service.update(u1, task.id, {"priority": "low"})
        assert updated.description == "keep me"
        assert updated.tags == ["a"]
        assert updated.priority == TaskPriority.LOW

    def test_description_can_be_cleared(self, task_service, make_task, u1):
        task = make_task("Fix bug", description="old")
        assert task_service.update(u1, task.id, {"description": None}).description is None

    def test_reassign(self, task_service, make_task, u1, u2, u3):
        task = make_task("Fix bug", assigned_to=["u2", "u3"])
        updated = task_service.update(u1, task.id, {"assigned_to": ["u3", "u1"]})
        assert updated.assigned_to == ["u3", "u1"]
        with pytest.raises(ForbiddenError):
            task_service.get_one(u2, task.id)
        assert task_service.get_one(u3, task.id).id == task.id

    def test_any_status_transition(self, task_service, make_task, u1):
        task = make_task("Fix bug", status="completed")
        assert task_service.update(u1, task.id, {"status": "todo"}).status == TaskStatus.TODO

    def test_empty_patch_returns_task(self, task_service, make_task, u1):
        task = make_task("Fix bug")
        assert task_service.update(u1, task.id, {}).title == "Fix bug"

    def test_last_write_wins(self, task_service, make_task, u1):
        task = make_task("Fix bug")
        task_service.update(u1, task.id, {"title": "first"})
        task_service.update(u1, task.id, {"title": "second"})
        assert task_service.get_one(u1, task.id).title == "second"

    def test_assignee_forbidden(self, task_service, make_task, u2):
        task = make_task("Fix bug", assigned_to=["u2"])
        with pytest.raises(ForbiddenError) as exc_info:
            task_service.update(u2, task.id, {"title": "mine now"})
        assert exc_info.value.required_permission == "update"

    def test_access_checked_before_validation(self, task_service, make_task, u3):
        task = make_task("Fix bug")
        with pytest.raises(ForbiddenError):
            task_service.update(u3, task.id, {"title": ""})

    def test_not_found(self, task_service, u1):
        with pytest.raises(NotFoundError):
            task_service.update(u1, "missing", {"title": "x"})

    @pytest.mark.parametrize("patch_data", [
        {"title": ""},
        {"title": None},
        {"status": None},
        {"status": "archived"},
        {"priority": None},
        {"tags": None},
        {"assigned_to": None},
        {"creator": "user-2"},
        {"creator_id": "user-2"},
        {"id": "other"},
        {"created_at": "2025-01-01T00:00:00Z"},
    ])
    def test_invalid_patch(self, task_service, make_task, u1, patch_data):
        task = make_task("Fix bug")
        with pytest.raises(ValidationError):
            task_service.update(u1, task.id, patch_data)
        assert task_service.get_one(u1, task.id).title == "Fix bug"


class TestDelete:

    def test_delete_twice(self, task_service, make_task, u1):
        task = make_task("Fix bug")
        task_service.delete(u1, task.id)
        with pytest.raises(NotFoundError):
            task_service.delete(u1, task.id)
        with pytest.raises(NotFoundError):
            task_service.get_one(u1, task.id)

    def test_assignee_forbidden(self, task_service, make_task, u1, u2):
        task = make_task("Fix bug", assigned_to=["u2"])
        with pytest.raises(ForbiddenError):
            task_service.delete(u2, task.id)
        assert task_service.get_one(u1, task.id).id == task.id

    def test_cascades_to_children(
        self, task_service, comment_service, attachment_service, make_task, database, blob_store, u1, upload_file
    ):
        task = make_task("Fix bug")
        comment_service.add(u1, task.id, "first")
        comment_service.add(u1, task.id, "second")
        attachment = attachment_service.upload(u1, task.id, [upload_file()])[0]
        assert blob_store.exists(attachment.storage_key)

        task_service.delete(u1, task.id)

        assert not blob_store.exists(attachment.storage_key)
        assert AttachmentStore(database).get(attachment.id) is None
        assert CommentStore(database).find_by_task(task.id) == []
        assert TaskStore(database).get(task.id) is None

    def test_other_tasks_untouched(self, task_service, comment_service, make_task, u1):
        keep = make_task("Keep")
        drop = make_task("Drop")
        comment_service.add(u1, keep.id, "stays")
        task_service.delete(u1, drop.id)
        assert len(comment_service.list_for_task(u1, keep.id)) == 1


class TestCascadeFailure:
    """Blob failures during delete leave the task and its children in place."""

    def _task_with_files(self, make_task, attachment_service, comment_service, u1, upload_file, count=2):
        task = make_task("Fix bug")
        comment_service.add(u1, task.id, "note")
        files = [upload_file(f"f{i}.txt", f"body {i}".encode()) for i in range(count)]
        return task, attachment_service.upload(u1, task.id, files)

    def test_second_blob_delete_fails(
        self, task_service, attachment_service, comment_service, make_task, blob_store, database, u1, upload_file
    ):
        task, attachments = self._task_with_files(make_task, attachment_service, comment_service, u1, upload_file)
        real_delete = blob_store.delete
        calls = []

        def flaky_delete(key):
            calls.append(key)
            if len(calls) == 2:
                raise OSError("disk unavailable")
            real_delete(key)

        with patch.object(blob_store, "delete", side_effect=flaky_delete):
            with pytest.raises(StorageError) as exc_info:
                task_service.delete(u1, task.id)
        assert isinstance(exc_info.value.__cause__, OSError)

        # Everything is still there, and every attachment is readable again
        assert task_service.get_one(u1, task.id).id == task.id
        assert len(comment_service.list_for_task(u1, task.id)) == 1
        restored = attachment_service.list_for_task(u1, task.id)
        assert {a.id for a in restored} == {a.id for a in attachments}
        for attachment in restored:
            _, data = attachment_service.download(u1, attachment.id)
            assert data.startswith(b"body ")

    def test_retry_after_failure_succeeds(
        self, task_service, attachment_service, comment_service, make_task, blob_store, u1, upload_file
    ):
        task, _ = self._task_with_files(make_task, attachment_service, comment_service, u1, upload_file, count=1)
        with patch.object(blob_store, "delete", side_effect=OSError("busy")):
            with pytest.raises(StorageError):
                task_service.delete(u1, task.id)

        task_service.delete(u1, task.id)
        with pytest.raises(NotFoundError):
            task_service.get_one(u1, task.id)

    def test_interrupt_mid_cascade_restores_blobs(
        self, task_service, attachment_service, comment_service, make_task, blob_store, u1, upload_file
    ):
        task, attachments = self._task_with_files(make_task, attachment_service, comment_service, u1, upload_file)
        real_delete = blob_store.delete
        calls = []

        def interrupted_delete(key):
            calls.append(key)
            if len(calls) == 2:
                raise KeyboardInterrupt
            real_delete(key)

        with patch.object(blob_store, "delete", side_effect=interrupted_delete):
            with pytest.raises(KeyboardInterrupt):
                task_service.delete(u1, task.id)

        restored = attachment_service.list_for_task(u1, task.id)
        assert {a.id for a in restored} == {a.id for a in attachments}
        assert all(blob_store.exists(a.storage_key) for a in restored)

        task_service.delete(u1, task.id)
        with pytest.raises(NotFoundError):
            task_service.get_one(u1, task.id)
        assert not any(blob_store.exists(a.storage_key) for a in restored)

    def test_commit_failure_restores_blobs(
        self, task_service, attachment_service, comment_service, make_task, blob_store, u1, upload_file
    ):
        task, attachments = self._task_with_files(make_task, attachment_service, comment_service, u1, upload_file)
        real_commit = Session.commit
        failed = []

        def failing_commit(session):
            if not failed:
                failed.append(True)
                raise OperationalError("COMMIT", {}, Exception("disk I/O error"))
            return real_commit(session)

        with patch.object(Session, "commit", new=failing_commit):
            with pytest.raises(StorageError):
                task_service.delete(u1, task.id)

        for attachment in attachment_service.list_for_task(u1, task.id):
            _, data = attachment_service.download(u1, attachment.id)
            assert data.startswith(b"body ")
        assert len(comment_service.list_for_task(u1, task.id)) == 1

    def test_missing_blob_changes_nothing(
        self, task_service, attachment_service, comment_service, make_task, blob_store, u1, upload_file
    ):
        task, attachments = self._task_with_files(make_task, attachment_service, comment_service, u1, upload_file, count=1)
        blob_store.delete(attachments[0].storage_key)

        with pytest.raises(StorageError):
            task_service.delete(u1, task.id)
        assert task_service.get_one(u1, task.id).id == task.id
        assert len(attachment_service.list_for_task(u1, task.id)) == 1


class TestStructuredLogging:

    def test_list_logs_identity_filters_and_count(self, task_service, make_task, u1, tmp_path):
        fl = init_logging(str(tmp_path / "logs"))
        make_task("Quarterly Report")
        task_service.list(u1, {"search": "quarterly"})

        entry = fl.query("queries")[-1]
        assert entry["event"] == "tasks_listed"
        assert entry["user_id"] == "user-1"
        assert entry["username"] == "u1"
        assert entry["filters"]["search"] == "quarterly"
        assert entry["result_count"] == 1
        assert entry["total_count"] == 1

    def test_record_operations_logged(self, task_service, make_task, u1, tmp_path):
        fl = init_logging(str(tmp_path / "logs"))
        task = make_task("Fix bug")
        task_service.update(u1, task.id, {"priority": "high"})
        task_service.delete(u1, task.id)

        events = [e["event"] for e in fl.query("records", filters={"record_id": task.id})]
        assert events == ["task_create", "task_update", "task_delete"]
        update = fl.query("records", filters={"event": "task_update"})[0]
        assert update["fields_changed"] == ["priority"]

    def test_denial_logged(self, task_service, make_task, u3, tmp_path):
        fl = init_logging(str(tmp_path / "logs"))
        task = make_task("Fix bug")
        with pytest.raises(ForbiddenError):
            task_service.get_one(u3, task.id)

        entry = fl.query("security")[-1]
        assert entry["event"] == "access_denied"
        assert entry["user_id"] == "user-3"
        assert entry["record_id"] == task.id
        assert entry["permission_needed"] == "view"
