"""Upload finished exports and evict old jobs."""

import asyncio
import logging
import os
from collections.abc import AsyncIterator
from datetime import datetime, timedelta, timezone

from timeline_export.config import get_settings
from timeline_export.exceptions import StorageError
from timeline_export.services.job_store import JobStore
from timeline_export.services.storage_service import StorageService

logger = logging.getLogger(__name__)

EXPORT_CONTENT_TYPE = "video/mp4"


class DeliveryService:
    def __init__(
        self,
        storage: StorageService,
        prefix: str | None = None,
        url_expiration_minutes: int | None = None,
    ):
        settings = get_settings()
        self.storage = storage
        self.prefix = (prefix or settings.export_storage_prefix).strip("/")
        self.url_expiration_minutes = url_expiration_minutes or settings.export_url_expiration_minutes

    def storage_key_for(self, job_id: str) -> str:
        return f"{self.prefix}/{job_id}.mp4"

    async def deliver(self, job_id: str, local_path: str) -> tuple[str, str]:
        """Upload the rendered file; returns (storage key, signed download URL)."""
        if not os.path.exists(local_path):
            raise StorageError(f"Rendered file missing: {local_path}")
        storage_key = self.storage_key_for(job_id)
        size = os.path.getsize(local_path)
        logger.info(f"[DELIVERY] Uploading {storage_key} ({size} bytes)")
        await self.storage.upload_file(local_path, storage_key, content_type=EXPORT_CONTENT_TYPE)
        url = await self.storage.get_signed_url(storage_key, self.url_expiration_minutes)
        return storage_key, url

    def open_artifact(self, storage_key: str) -> AsyncIterator[bytes]:
        return self.storage.iter_file(storage_key)

    async def delete_artifact(self, storage_key: str) -> bool:
        return await asyncio.to_thread(self.storage.delete_file, storage_key)


class JobJanitor:
    """Removes jobs, and their artifacts, once they pass the retention age."""

    def __init__(
        self,
        store: JobStore,
        delivery: DeliveryService,
        retention_hours: int | None = None,
    ):
        self.store = store
        self.delivery = delivery
        self.retention = timedelta(hours=retention_hours or get_settings().export_retention_hours)

    async def sweep(self, now: datetime | None = None) -> int:
        """Evict expired jobs; returns how many were removed."""
        now = now or datetime.now(timezone.utc)
        expired = await self.store.list_expired(now - self.retention)
        removed = 0
        for job in expired:
            if job.output_key:
                try:
                    await self.delivery.delete_artifact(job.output_key)
                except (StorageError, OSError) as e:
                    logger.warning(f"[CLEANUP] Could not delete artifact {job.output_key}: {e}")
            if await self.store.delete(job.id):
                removed += 1
        if removed:
            logger.info(f"[CLEANUP] Evicted {removed} expired job(s)")
        return removed

    async def run_forever(self, interval_seconds: float | None = None) -> None:
        interval = interval_seconds or get_settings().cleanup_interval_seconds
        logger.info(f"[CLEANUP] Janitor started (every {interval}s, retention {self.retention})")
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("[CLEANUP] Sweep failed")
