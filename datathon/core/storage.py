"""Durable storage for answer key backing files.

The answer key store keeps only metadata in SQL; the uploaded table itself is
written here so the in-memory key can be rebuilt after a restart.
"""

import logging
import os
import uuid
from functools import lru_cache
from typing import Optional

from datathon.core.config import settings

logger = logging.getLogger(__name__)

SUPABASE_SCHEME = "supabase://"


def _safe_name(filename: Optional[str]) -> str:
    base = os.path.basename(filename or "answer_key.csv") or "answer_key.csv"
    return f"{uuid.uuid4()}_{base}"


class LocalAnswerKeyFiles:
    """Backing files in a directory on local disk."""

    def __init__(self, directory: str):
        self.directory = directory

    def save(self, filename: Optional[str], content: bytes) -> str:
        os.makedirs(self.directory, exist_ok=True)
        path = os.path.abspath(os.path.join(self.directory, _safe_name(filename)))
        with open(path, "wb") as fh:
            fh.write(content)
        logger.info(f"Stored answer key backing file at {path}")
        return path

    def read(self, location: str) -> Optional[bytes]:
        if not location or not os.path.exists(location):
            return None
        with open(location, "rb") as fh:
            return fh.read()

    def delete(self, location: str) -> None:
        if location and os.path.exists(location):
            os.remove(location)
            logger.info(f"Removed answer key backing file {location}")


@lru_cache(maxsize=1)
def get_supabase_client():
    from supabase import create_client

    return create_client(
        settings.SUPABASE_URL,
        settings.SUPABASE_SERVICE_KEY,  # Use service role key for admin access
    )


class SupabaseAnswerKeyFiles:
    """Backing files in a Supabase storage bucket."""

    def __init__(self, client, bucket: str):
        self.client = client
        self.bucket = bucket

    def _object_name(self, location: str) -> str:
        prefix = f"{SUPABASE_SCHEME}{self.bucket}/"
        return location[len(prefix):] if location.startswith(prefix) else location

    def save(self, filename: Optional[str], content: bytes) -> str:
        name = _safe_name(filename)
        result = self.client.storage.from_(self.bucket).upload(
            name,
            content,
            file_options={"content-type": "text/csv", "upsert": "true"},
        )
        if hasattr(result, "error") and result.error:
            raise RuntimeError(str(result.error))
        logger.info(f"Uploaded answer key {name} to Supabase bucket {self.bucket}")
        return f"{SUPABASE_SCHEME}{self.bucket}/{name}"

    def read(self, location: str) -> Optional[bytes]:
        try:
            return self.client.storage.from_(self.bucket).download(self._object_name(location))
        except Exception as e:
            # The SDK raises its own StorageException for missing objects.
            logger.error(f"Failed to download answer key {location} from Supabase: {str(e)}")
            return None

    def delete(self, location: str) -> None:
        self.client.storage.from_(self.bucket).remove([self._object_name(location)])
        logger.info(f"Removed answer key {location} from Supabase")


def build_answer_key_files():
    if settings.ANSWER_KEY_STORAGE == "supabase":
        return SupabaseAnswerKeyFiles(get_supabase_client(), settings.SUPABASE_BUCKET)
    return LocalAnswerKeyFiles(settings.ANSWER_KEY_DIR)
