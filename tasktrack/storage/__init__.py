"""TaskTrack Storage — binary blob storage for attachments."""

from tasktrack.storage.blobs import BlobStore, FileBlobStore

__all__ = [
    "BlobStore",
    "FileBlobStore",
]
