"""Object storage adapters for raw log objects (Google Cloud Storage or a local directory)."""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from google.cloud import storage

from dealbot_python_backend.config import (
    GCS_BUCKET_NAME,
    LIST_PAGE_SIZE,
    LOCAL_LOG_DIR,
    OBJECT_SOURCE_BACKEND,
)
from dealbot_python_backend.parsers.log_content import decode_object_bytes

logger = logging.getLogger(__name__)


@dataclass
class StoredObject:
    key: str
    last_modified: Optional[datetime]
    size: int
    bucket: str


@dataclass
class ObjectListing:
    objects: List[StoredObject] = field(default_factory=list)
    is_truncated: bool = False
    next_token: Optional[str] = None


def _normalize_backend(backend: str) -> str:
    normalized = str(backend or "auto").strip().lower()
    if normalized not in {"auto", "gcs", "local"}:
        raise ValueError("OBJECT_SOURCE_BACKEND must be one of: auto, gcs, local")
    return normalized


class GCSObjectSource:
    """Lists and downloads log objects from a GCS bucket."""

    def __init__(self, bucket_name: Optional[str] = None, client: Optional[storage.Client] = None):
        self.bucket_name = bucket_name or GCS_BUCKET_NAME
        if not self.bucket_name:
            raise ValueError("GCS_BUCKET_NAME is not configured.")
        self._client = client

    @property
    def client(self) -> storage.Client:
        if self._client is None:
            self._client = storage.Client()
        return self._client

    def _list_page(self, prefix, page_token, max_results) -> ObjectListing:
        iterator = self.client.list_blobs(
            self.bucket_name,
            prefix=prefix,
            page_size=max_results,
            page_token=page_token,
        )
        page = next(iterator.pages, None)
        blobs = list(page) if page is not None else []
        next_token = iterator.next_page_token

        return ObjectListing(
            objects=[
                StoredObject(
                    key=blob.name,
                    last_modified=blob.updated,
                    size=blob.size or 0,
                    bucket=self.bucket_name,
                )
                for blob in blobs
            ],
            is_truncated=next_token is not None,
            next_token=next_token,
        )

    async def list_objects(
        self,
        prefix: Optional[str] = None,
        page_token: Optional[str] = None,
        max_results: int = LIST_PAGE_SIZE,
    ) -> ObjectListing:
        logger.info("Listing objects in bucket %s with prefix: %s", self.bucket_name, prefix)
        listing = await asyncio.to_thread(self._list_page, prefix, page_token, max_results)
        logger.info("Found %d objects", len(listing.objects))
        return listing

    def _download(self, key: str) -> bytes:
        blob = self.client.bucket(self.bucket_name).blob(key)
        return blob.download_as_bytes()

    async def download_object(self, key: str) -> str:
        logger.info("Downloading object: %s", key)
        raw = await asyncio.to_thread(self._download, key)
        content = decode_object_bytes(raw, key)
        logger.info("Downloaded object %s, size: %d bytes", key, len(raw))
        return content


class LocalObjectSource:
    """Same interface over a local directory; keys are paths relative to the root."""

    def __init__(self, root_dir: Optional[str] = None):
        self.root = Path(root_dir or LOCAL_LOG_DIR).expanduser()

    def _list_all(self, prefix: Optional[str]) -> List[StoredObject]:
        if not self.root.exists():
            raise LookupError(f"Log directory not found: {self.root}")

        objects = []
        for path in sorted(p for p in self.root.rglob("*") if p.is_file()):
            key = path.relative_to(self.root).as_posix()
            if prefix and not key.startswith(prefix):
                continue
            stat = path.stat()
            objects.append(
                StoredObject(
                    key=key,
                    last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                    size=stat.st_size,
                    bucket=str(self.root),
                )
            )
        return objects

    async def list_objects(
        self,
        prefix: Optional[str] = None,
        page_token: Optional[str] = None,
        max_results: int = LIST_PAGE_SIZE,
    ) -> ObjectListing:
        objects = await asyncio.to_thread(self._list_all, prefix)
        start = int(page_token or 0)
        end = start + max_results
        truncated = end < len(objects)
        return ObjectListing(
            objects=objects[start:end],
            is_truncated=truncated,
            next_token=str(end) if truncated else None,
        )

    async def download_object(self, key: str) -> str:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Object key escapes log directory: {key}")
        if not path.exists():
            raise LookupError(f"Object not found: {key}")
        raw = await asyncio.to_thread(path.read_bytes)
        return decode_object_bytes(raw, key)


def build_object_source(backend: Optional[str] = None):
    """Resolve the configured adapter; ``auto`` prefers GCS when a bucket is set."""
    resolved = _normalize_backend(backend or OBJECT_SOURCE_BACKEND)

    if resolved == "gcs":
        return GCSObjectSource()
    if resolved == "local":
        return LocalObjectSource()

    if GCS_BUCKET_NAME:
        return GCSObjectSource()
    logger.warning("GCS_BUCKET_NAME not set; reading logs from %s", os.path.abspath(LOCAL_LOG_DIR))
    return LocalObjectSource()
