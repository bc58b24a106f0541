"""
TaskTrack Attachment Service — file uploads on tasks, backed by a BlobStore.

Handles:
- Upload with extension / content type / size / count validation
- Listing, download and delete with access checks
- Compensation: blobs stored for an upload whose records could not be
  written are deleted again; a blob removed by a delete that does not
  commit is stored again and its record re-pointed

Access:
    upload / list  — task creator only
    download / delete — uploader only

Config:
    tasktrack.yaml → storage.max_upload_size_mb, storage.max_files_per_upload,
    storage.allowed_extensions
"""

from __future__ import annotations

import logging
import mimetypes
import os
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tasktrack.db.session import Database
from tasktrack.engine.config import TaskTrackConfig, get_config
from tasktrack.engine.context import Identity
from tasktrack.engine.errors import NotFoundError, StorageError, ValidationError
from tasktrack.services.base import ServiceBase, parse_input
from tasktrack.storage.blobs import BlobStore
from tasktrack.tasks.policy import AccessPolicy, access_policy
from tasktrack.tasks.related import AttachmentStore
from tasktrack.tasks.schemas import Attachment, UploadFile
from tasktrack.tasks.store import unit_of_work

logger = logging.getLogger("tasktrack.services.attachments")

# Content types accepted for each allowed extension
CONTENT_TYPES: Dict[str, Tuple[str, ...]] = {
    "jpeg": ("image/jpeg",),
    "jpg": ("image/jpeg",),
    "png": ("image/png",),
    "gif": ("image/gif",),
    "pdf": ("application/pdf",),
    "doc": ("application/msword",),
    "docx": ("application/vnd.openxmlformats-officedocument.wordprocessingml.document",),
    "txt": ("text/plain",),
    "zip": ("application/zip", "application/x-zip-compressed"),
}


def _extension(filename: str) -> str:
    return os.path.splitext(filename)[1].lower().lstrip(".")


def restore_blob(
    blob_store: BlobStore,
    attachments: AttachmentStore,
    attachment: Attachment,
    data: bytes,
    session: Session,
) -> str:
    """Store removed content again under a new key and point the record at it."""
    key = blob_store.store(data, {
        "original_name": attachment.original_name,
        "content_type": attachment.content_type,
        "task_id": attachment.task_id,
        "uploader_id": attachment.uploader_id,
    })
    attachments.update_storage_key(attachment.id, key, session=session)
    return key


def _normalize_content_type(content_type: Optional[str], filename: str) -> str:
    """Strip parameters (``; charset=...``); guess from the name when absent."""
    if content_type:
        return content_type.split(";", 1)[0].strip().lower()
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or "application/octet-stream"


class AttachmentService(ServiceBase):

    def __init__(
        self,
        database: Database,
        blob_store: BlobStore,
        config: Optional[TaskTrackConfig] = None,
        policy: AccessPolicy = access_policy,
    ):
        super().__init__(database, policy)
        self._config = config or get_config()
        self._blobs = blob_store
        self._attachments = AttachmentStore(database)

    # -------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------

    def validate_upload(self, upload: UploadFile) -> str:
        """
        Check one file against the storage limits.

        Returns the normalized content type; raises ValidationError.
        """
        storage = self._config.storage
        ext = _extension(upload.filename)
        if ext not in storage.allowed_extensions:
            raise ValidationError(
                f"File type '.{ext}' not allowed. Allowed: {storage.allowed_extensions}",
                field="filename",
            )

        content_type = _normalize_content_type(upload.content_type, upload.filename)
        accepted = CONTENT_TYPES.get(ext)
        if accepted and content_type not in accepted:
            raise ValidationError(
                f"Content type '{content_type}' does not match '.{ext}'",
                field="content_type",
            )

        max_bytes = storage.max_upload_size_mb * 1024 * 1024
        if len(upload.content) > max_bytes:
            raise ValidationError(
                f"File size ({len(upload.content) / 1024 / 1024:.1f} MB) exceeds "
                f"limit ({storage.max_upload_size_mb} MB)",
                field="content",
            )
        return content_type

    def _parse_files(self, files: Sequence[Union[UploadFile, Mapping[str, Any]]]) -> List[Tuple[UploadFile, str]]:
        limit = self._config.storage.max_files_per_upload
        if not files:
            raise ValidationError("No files uploaded")
        if len(files) > limit:
            raise ValidationError(f"At most {limit} files per upload, got {len(files)}")
        parsed = [parse_input(UploadFile, f, "Invalid file") for f in files]
        return [(upload, self.validate_upload(upload)) for upload in parsed]

    # -------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------

    def upload(
        self,
        identity: Identity,
        task_id: str,
        files: Sequence[Union[UploadFile, Mapping[str, Any]]],
    ) -> List[Attachment]:
        """
        Store each file and record its metadata on the task.

        All files are validated before any blob is written. If the records
        cannot be written, the blobs stored so far are deleted again.
        """
        stored: List[str] = []
        created: List[Attachment] = []
        try:
            with unit_of_work(self._db, "attachment upload") as session:
                self._require_task(identity, task_id, "upload files to", self._policy.can_access_children, session)
                for upload, content_type in self._parse_files(files):
                    key = self._store_blob(upload, content_type, identity, task_id)
                    stored.append(key)
                    created.append(self._attachments.create(
                        task_id=task_id,
                        uploader_id=identity.id,
                        original_name=upload.filename,
                        storage_key=key,
                        content_type=content_type,
                        size_bytes=len(upload.content),
                        session=session,
                    ))
        except BaseException:
            self._discard_blobs(stored)
            raise

        for attachment in created:
            self._audit(
                identity, "create", "attachment", attachment.id,
                task_id=task_id, size_bytes=attachment.size_bytes,
            )
        logger.info(f"Uploaded {len(created)} file(s) to task {task_id} by {identity.username}")
        return created

    def list_for_task(self, identity: Identity, task_id: str) -> List[Attachment]:
        with unit_of_work(self._db, "attachment list") as session:
            self._require_task(identity, task_id, "view files of", self._policy.can_access_children, session)
            return self._attachments.find_by_task(task_id, session=session)

    def download(self, identity: Identity, attachment_id: str) -> Tuple[Attachment, bytes]:
        attachment = self._require_own_attachment(identity, attachment_id, "download")
        try:
            data = self._blobs.fetch(attachment.storage_key)
        except Exception as exc:
            raise StorageError(
                "Attachment content unavailable", operation="attachment download", resource_id=attachment_id
            ) from exc
        return attachment, data

    def delete(self, identity: Identity, attachment_id: str) -> None:
        """
        Remove the record and its blob.

        The content is read first. If the blob delete or the commit fails,
        or the call is interrupted, the record is rolled back and the blob
        is stored again if it is already gone.
        """
        with unit_of_work(self._db, "attachment delete") as session:
            attachment = self._require_own_attachment(identity, attachment_id, "delete", session)
            try:
                data = self._blobs.fetch(attachment.storage_key)
            except Exception as exc:
                raise StorageError(
                    "Attachment content unavailable", operation="attachment delete", resource_id=attachment_id
                ) from exc

            self._attachments.delete_by_id(attachment_id, session=session)
            try:
                self._blobs.delete(attachment.storage_key)
                session.commit()
            except SQLAlchemyError as exc:
                self._undo_delete(session, attachment, data)
                raise StorageError(
                    "Could not delete file", operation="attachment delete", resource_id=attachment_id
                ) from exc
            except Exception as exc:
                self._undo_delete(session, attachment, data)
                raise StorageError(
                    "Error deleting file from storage", operation="attachment delete", resource_id=attachment_id
                ) from exc
            except BaseException:
                self._undo_delete(session, attachment, data)
                raise

        self._audit(identity, "delete", "attachment", attachment_id, task_id=attachment.task_id)

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    def _require_own_attachment(
        self,
        identity: Identity,
        attachment_id: str,
        permission: str,
        session: Optional[Session] = None,
    ) -> Attachment:
        attachment = self._attachments.get(attachment_id, session=session)
        if attachment is None:
            raise NotFoundError("File not found", resource="attachment", resource_id=attachment_id)
        if attachment.uploader_id != identity.id:
            self._deny(identity, "attachment", attachment_id, permission)
        return attachment

    def _store_blob(self, upload: UploadFile, content_type: str, identity: Identity, task_id: str) -> str:
        try:
            return self._blobs.store(upload.content, {
                "original_name": upload.filename,
                "content_type": content_type,
                "task_id": task_id,
                "uploader_id": identity.id,
            })
        except Exception as exc:
            raise StorageError("Could not store file", operation="attachment upload", resource_id=task_id) from exc

    def _undo_delete(self, session: Session, attachment: Attachment, data: bytes) -> None:
        session.rollback()
        if self._blobs.exists(attachment.storage_key):
            return
        try:
            restore_blob(self._blobs, self._attachments, attachment, data, session)
            session.commit()
        except Exception as exc:
            logger.error(f"Could not restore blob for attachment {attachment.id}: {exc}")
            return
        logger.warning(f"Restored blob for attachment {attachment.id} after failed delete")

    def _discard_blobs(self, keys: List[str]) -> None:
        for key in keys:
            try:
                self._blobs.delete(key)
            except Exception as exc:
                logger.error(f"Could not discard blob {key} after failed upload: {exc}")
