"""Object storage for source assets and finished exports.

LocalStorageService keeps objects on disk for development; GCSStorageService
talks to Google Cloud Storage. `use_local_storage` picks one.
"""

import asyncio
import logging
import shutil
from collections.abc import AsyncIterator
from datetime import timedelta
from pathlib import Path

import httpx

from timeline_export.config import get_settings
from timeline_export.exceptions import StorageError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class LocalStorageService:
    """Local file storage for development without GCS."""

    def __init__(self, base_path: str | None = None, base_url: str | None = None) -> None:
        settings = get_settings()
        self.base_path = Path(base_path or settings.local_storage_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.base_url = (base_url or settings.local_storage_base_url).rstrip("/")

    def _get_full_path(self, storage_key: str) -> Path:
        full_path = (self.base_path / storage_key).resolve()
        if self.base_path.resolve() not in full_path.parents:
            raise StorageError(f"Storage key escapes storage root: {storage_key}")
        return full_path

    def get_public_url(self, storage_key: str) -> str:
        """Get URL for accessing the file."""
        return f"{self.base_url}/{storage_key}"

    async def get_signed_url(self, storage_key: str, expiration_minutes: int = 60) -> str:
        """Local files are served unsigned."""
        return self.get_public_url(storage_key)

    async def upload_file(self, local_path: str, storage_key: str, content_type: str | None = None) -> str:
        """Copy a local file into storage."""
        full_path = self._get_full_path(storage_key)
        full_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            await asyncio.to_thread(shutil.copy, local_path, str(full_path))
        except OSError as e:
            raise StorageError(f"Upload failed for {storage_key}: {e}") from e
        return self.get_public_url(storage_key)

    async def iter_file(self, storage_key: str) -> AsyncIterator[bytes]:
        """Yield the stored object in chunks."""
        full_path = self._get_full_path(storage_key)
        if not full_path.exists():
            raise StorageError(f"Stored file not found: {storage_key}")
        with full_path.open("rb") as f:
            while True:
                chunk = await asyncio.to_thread(f.read, CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk

    def delete_file(self, storage_key: str) -> bool:
        """Delete file."""
        full_path = self._get_full_path(storage_key)
        if full_path.exists():
            full_path.unlink()
            return True
        return False

    def file_exists(self, storage_key: str) -> bool:
        """Check if file exists."""
        return self._get_full_path(storage_key).exists()

    def get_file_path(self, storage_key: str) -> Path:
        """Get the actual file path for serving."""
        return self._get_full_path(storage_key)


class GCSStorageService:
    """Google Cloud Storage service for production."""

    def __init__(self, bucket_name: str | None = None, project_id: str | None = None) -> None:
        from google.cloud import storage

        settings = get_settings()
        self._storage = storage
        self._bucket_name = bucket_name or settings.gcs_bucket_name
        self._project_id = project_id if project_id is not None else settings.gcs_project_id
        self._client: storage.Client | None = None
        self._bucket: storage.Bucket | None = None

    @property
    def client(self):
        if self._client is None:
            if self._project_id:
                self._client = self._storage.Client(project=self._project_id)
            else:
                self._client = self._storage.Client()
        return self._client

    @property
    def bucket(self):
        if self._bucket is None:
            self._bucket = self.client.bucket(self._bucket_name)
        return self._bucket

    def get_public_url(self, storage_key: str) -> str:
        """Get the public URL for a stored file."""
        return f"https://storage.googleapis.com/{self._bucket_name}/{storage_key}"

    def generate_download_url(self, storage_key: str, expires_minutes: int = 60) -> str:
        """Generate a V4 signed URL for downloading a file."""
        blob = self.bucket.blob(storage_key)
        return blob.generate_signed_url(
            version="v4",
            expiration=timedelta(minutes=expires_minutes),
            method="GET",
        )

    async def get_signed_url(self, storage_key: str, expiration_minutes: int = 60) -> str:
        """Generate a signed download URL (async wrapper for generate_download_url)."""
        return await asyncio.to_thread(self.generate_download_url, storage_key, expiration_minutes)

    async def upload_file(self, local_path: str, storage_key: str, content_type: str | None = None) -> str:
        """Upload a local file to GCS."""
        blob = self.bucket.blob(storage_key)
        try:
            if content_type:
                await asyncio.to_thread(blob.upload_from_filename, local_path, content_type=content_type)
            else:
                await asyncio.to_thread(blob.upload_from_filename, local_path)
        except OSError as e:
            raise StorageError(f"Upload failed for {storage_key}: {e}") from e
        return self.get_public_url(storage_key)

    async def iter_file(self, storage_key: str) -> AsyncIterator[bytes]:
        """Stream the object through a short-lived signed URL."""
        url = await self.get_signed_url(storage_key, expiration_minutes=15)
        async with httpx.AsyncClient(timeout=httpx.Timeout(30.0, read=300.0)) as client:
            async with client.stream("GET", url) as response:
                if response.status_code != 200:
                    raise StorageError(f"Stored file unavailable ({response.status_code}): {storage_key}")
                async for chunk in response.aiter_bytes(CHUNK_SIZE):
                    yield chunk

    def delete_file(self, storage_key: str) -> bool:
        """Delete a file from GCS."""
        blob = self.bucket.blob(storage_key)
        if blob.exists():
            blob.delete()
            return True
        return False

    def file_exists(self, storage_key: str) -> bool:
        """Check if a file exists in GCS."""
        blob = self.bucket.blob(storage_key)
        return blob.exists()


StorageService = LocalStorageService | GCSStorageService


def create_storage_service() -> StorageService:
    """Use LocalStorageService or GCSStorageService based on config."""
    if get_settings().use_local_storage:
        logger.info("[STORAGE] Using local storage")
        return LocalStorageService()
    logger.info("[STORAGE] Using Google Cloud Storage")
    return GCSStorageService()
