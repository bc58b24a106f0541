"""
TaskTrack Blob Storage — opaque-key binary storage for attachments.

BlobStore contract:
    store(data, metadata) -> key
    fetch(key)            -> bytes      (KeyError if missing)
    delete(key)           -> None       (KeyError if missing)

FileBlobStore keeps each blob under ``{root}/{shard}/{key}`` with a
sidecar ``.meta.json`` holding the caller's metadata plus size and sha256.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger("tasktrack.storage.blobs")

META_SUFFIX = ".meta.json"


class BlobStore:
    """Interface for binary storage used by the attachment services."""

    def store(self, data: bytes, metadata: Optional[Dict[str, Any]] = None) -> str:
        raise NotImplementedError

    def fetch(self, key: str) -> bytes:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        try:
            self.fetch(key)
            return True
        except KeyError:
            return False


class FileBlobStore(BlobStore):
    """
    Filesystem-backed BlobStore.

    Keys look like ``ab/ab12...ef_report.pdf``: a two-character shard, a
    random hex id and the sanitized original name for readability.
    """

    def __init__(self, root: str):
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def store(self, data: bytes, metadata: Optional[Dict[str, Any]] = None) -> str:
        metadata = dict(metadata or {})
        blob_id = uuid.uuid4().hex
        safe_name = self._safe_filename(str(metadata.get("original_name", "")))
        key = f"{blob_id[:2]}/{blob_id}_{safe_name}"

        path = self._path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)

        digest = hashlib.sha256(data).hexdigest()
        metadata.update({
            "size_bytes": len(data),
            "sha256": digest,
            "stored_at": datetime.now(timezone.utc).isoformat(),
        })
        self._meta_path(path).write_text(json.dumps(metadata, default=str), encoding="utf-8")

        logger.info(f"Stored blob: {key} ({len(data)} bytes, sha256={digest[:12]})")
        return key

    def fetch(self, key: str) -> bytes:
        path = self._path_for(key)
        if not path.is_file():
            raise KeyError(key)
        return path.read_bytes()

    def metadata(self, key: str) -> Dict[str, Any]:
        path = self._path_for(key)
        meta = self._meta_path(path)
        if not path.is_file():
            raise KeyError(key)
        if not meta.is_file():
            return {}
        return json.loads(meta.read_text(encoding="utf-8"))

    def delete(self, key: str) -> None:
        path = self._path_for(key)
        if not path.is_file():
            raise KeyError(key)
        path.unlink()
        meta = self._meta_path(path)
        if meta.exists():
            meta.unlink()
        logger.info(f"Deleted blob: {key}")

    def exists(self, key: str) -> bool:
        return self._path_for(key).is_file()

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    def _path_for(self, key: str) -> Path:
        """Resolve a key to a path; keys may never escape the root."""
        if not key or key.startswith(("/", "\\")) or ".." in Path(key).parts:
            raise KeyError(key)
        return self._root / key

    @staticmethod
    def _meta_path(path: Path) -> Path:
        return path.with_name(path.name + META_SUFFIX)

    @staticmethod
    def _safe_filename(filename: str) -> str:
        """
        Sanitize a filename for safe filesystem storage.

        Removes path separators, null bytes, and leading dots.
        Preserves extension.
        """
        name = os.path.basename(filename.replace("\\", "/"))
        name = "".join(c for c in name if c.isprintable() and c not in '<>:"/\\|?*')
        name = name.lstrip(".")
        if not name:
            name = "unnamed"
        if len(name) > 100:
            base, ext = os.path.splitext(name)
            name = base[:100 - len(ext)] + ext
        return name

    def __repr__(self) -> str:
        return f"<FileBlobStore root='{self._root}'>"
