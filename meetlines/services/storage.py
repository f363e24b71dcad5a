"""Object storage with public URLs.

Buckets are directories under ``uploads_dir``; the FastAPI app serves them
read-only at ``/storage/v1/object/public/<bucket>/<path>``.
"""

import logging
from pathlib import Path

from meetlines.config import get_settings

logger = logging.getLogger(__name__)

PUBLIC_PREFIX = "/storage/v1/object/public"


class StorageError(Exception):
    pass


class ObjectStorage:
    def __init__(self, root: str, base_url: str):
        self.root = Path(root).resolve()
        self.base_url = base_url.rstrip("/")

    def _object_path(self, bucket: str, path: str) -> Path:
        target = (self.root / bucket / path).resolve()
        if self.root not in target.parents:
            raise StorageError(f"Invalid object path: {bucket}/{path}")
        return target

    def upload(self, bucket: str, path: str, data: bytes, upsert: bool = False) -> str:
        """Store ``data`` at ``bucket/path`` and return the object key."""
        target = self._object_path(bucket, path)
        if target.exists() and not upsert:
            raise StorageError(f"Object already exists: {bucket}/{path}")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.info("Stored object %s/%s (%d bytes)", bucket, path, len(data))
        return f"{bucket}/{path}"

    def download(self, bucket: str, path: str) -> bytes:
        target = self._object_path(bucket, path)
        if not target.exists():
            raise StorageError(f"Object not found: {bucket}/{path}")
        return target.read_bytes()

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}{PUBLIC_PREFIX}/{bucket}/{path}"


def get_storage() -> ObjectStorage:
    settings = get_settings()
    return ObjectStorage(settings.uploads_dir, settings.base_url)
