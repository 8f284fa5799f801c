import logging
import os
import re
import unicodedata
from typing import Iterable, List, Optional

from app.core.config import settings
from app.core.exceptions import StorageFailure
from app.utils.supabase_client import get_supabase

logger = logging.getLogger(__name__)


def sanitize_filename(filename: str) -> str:
    name, ext = os.path.splitext(filename)

    name = unicodedata.normalize("NFD", name).encode("ascii", "ignore").decode("utf-8")

    name = re.sub(r"\s+", "_", name)

    name = re.sub(r"[^a-zA-Z0-9._-]", "", name)

    ext = re.sub(r"[^a-zA-Z0-9.]", "", ext)

    return f"{name or 'file'}{ext}"


def build_object_key(user_id: int, entry_id, filename: str) -> str:
    return f"{user_id}/{entry_id}/{sanitize_filename(filename)}"


class BlobStorage:
    """Thin wrapper over a Supabase Storage bucket."""

    def __init__(self, client, bucket: str):
        self.client = client
        self.bucket = bucket

    def _bucket(self):
        return self.client.storage.from_(self.bucket)

    def put(self, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        options = {"content-type": content_type or "application/octet-stream", "upsert": "false"}
        try:
            res = self._bucket().upload(path, data, file_options=options)
        except Exception as e:
            logger.exception(f"Upload of {path} failed: {e}")
            raise StorageFailure(f"Could not store file {os.path.basename(path)}") from e

        stored = getattr(res, "path", None)
        if not stored:
            logger.error(f"Upload of {path} returned no path")
            raise StorageFailure(f"Could not store file {os.path.basename(path)}")

        logger.info(f"Uploaded {path} to bucket {self.bucket}")
        return stored

    def delete(self, paths: Iterable[str]) -> None:
        paths = [p for p in paths if p]
        if not paths:
            return
        try:
            self._bucket().remove(paths)
        except Exception as e:
            raise StorageFailure(f"Could not delete {len(paths)} object(s)") from e
        logger.info(f"Removed {len(paths)} object(s) from bucket {self.bucket}")

    def list(self, prefix: str) -> List[dict]:
        try:
            return self._bucket().list(prefix)
        except Exception as e:
            raise StorageFailure(f"Could not list objects under {prefix}") from e

    def public_url(self, path: str) -> str:
        return self._bucket().get_public_url(path)

    def thumbnail_url(self, path: str, size: int) -> str:
        return self._bucket().get_public_url(
            path,
            {"transform": {"width": size, "height": size, "resize": "cover"}},
        )


def get_blob_storage() -> BlobStorage:
    return BlobStorage(get_supabase(), settings.storage_bucket)
