"""
Blob storage collaborator for attachment bytes.

The messaging core only depends on the BlobStore interface; LocalBlobStore
keeps files under a directory and is the default deployment.
"""
from __future__ import annotations

import logging
import uuid
from pathlib import Path

from community_messaging.core.config import settings
from community_messaging.core.errors import NotFound, StorageUnavailable

logger = logging.getLogger(__name__)


class BlobStore:
    """Interface for attachment byte storage. Failures raise StorageUnavailable."""

    def put(self, data: bytes, filename: str, content_type: str) -> str:
        """Store bytes and return an opaque reference."""
        raise NotImplementedError

    def get(self, reference: str) -> bytes:
        raise NotImplementedError

    def delete(self, reference: str) -> None:
        raise NotImplementedError


class LocalBlobStore(BlobStore):
    """Stores each blob as a uniquely named file under ``root``."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def _path_for(self, reference: str) -> Path:
        # references are generated names; anything with a separator is not ours
        if not reference or "/" in reference or "\\" in reference or reference.startswith("."):
            raise NotFound("Attachment data not found")
        return self.root / reference

    def put(self, data: bytes, filename: str, content_type: str) -> str:
        reference = f"{uuid.uuid4().hex}{Path(filename).suffix.lower()}"
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            self._path_for(reference).write_bytes(data)
        except OSError as e:
            raise StorageUnavailable(
                "Attachment storage is unavailable",
                details={"filename": filename},
            ) from e
        logger.debug("Stored blob %s (%d bytes)", reference, len(data))
        return reference

    def get(self, reference: str) -> bytes:
        path = self._path_for(reference)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise NotFound("Attachment data not found") from e
        except OSError as e:
            raise StorageUnavailable("Attachment storage is unavailable") from e

    def delete(self, reference: str) -> None:
        path = self._path_for(reference)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageUnavailable("Attachment storage is unavailable") from e


_blob_store: BlobStore | None = None


def get_blob_store() -> BlobStore:
    """FastAPI dependency returning the process-wide blob store."""
    global _blob_store
    if _blob_store is None:
        _blob_store = LocalBlobStore(settings.attachment_dir)
    return _blob_store
