"""Fetch every asset a job needs into its temp directory.

Downloads for one job run concurrently, one per unique asset key, so an asset
referenced by several elements is fetched once and becomes one graph input.
An asset that cannot be resolved or downloaded is logged and left out of the
returned map; the compiler then drops the elements that use it.
"""

import asyncio
import logging
import os
from typing import Callable
from urllib.parse import urlparse

import httpx

from timeline_export.config import get_settings
from timeline_export.exceptions import AssetDownloadError, AssetResolutionError
from timeline_export.render.timeline import TimelineElement
from timeline_export.services.asset_resolver import AssetResolver
from timeline_export.services.retry import RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_EXTENSION = ".mp4"
CHUNK_SIZE = 1024 * 256

# Fraction of the job's assets finished, 0.0-1.0
DownloadProgressCallback = Callable[[float], None]


def extension_from_url(url: str) -> str:
    """File extension of the URL path, `.mp4` when there is none."""
    ext = os.path.splitext(urlparse(url).path)[1].lower()
    if not ext or len(ext) > 6 or not ext[1:].isalnum():
        return DEFAULT_EXTENSION
    return ext


class AssetDownloader:
    """Streams assets to disk under a shared RetryPolicy."""

    def __init__(
        self,
        resolver: AssetResolver,
        policy: RetryPolicy | None = None,
        timeout_seconds: float | None = None,
        max_size_bytes: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.resolver = resolver
        self.policy = policy or RetryPolicy.from_settings()
        self.timeout_seconds = timeout_seconds or settings.download_timeout_seconds
        self.max_size_bytes = max_size_bytes or settings.download_max_size_bytes
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout_seconds),
            follow_redirects=True,
            transport=self._transport,
        )

    async def download_all(
        self,
        job_id: str,
        elements: list[TimelineElement],
        dest_dir: str,
        on_progress: DownloadProgressCallback | None = None,
    ) -> dict[str, str]:
        """Download the media of `elements`; returns asset key -> local path."""
        unique: dict[str, TimelineElement] = {}
        for element in elements:
            key = element.asset_key
            if element.is_media and key and key not in unique:
                unique[key] = element

        if not unique:
            logger.info(f"[DOWNLOAD] Job {job_id}: no media assets")
            if on_progress:
                on_progress(1.0)
            return {}

        logger.info(f"[DOWNLOAD] Job {job_id}: fetching {len(unique)} asset(s)")
        total = len(unique)
        finished = 0

        async with self._client() as client:

            async def _fetch(index: int, key: str, element: TimelineElement) -> tuple[str, str | None]:
                nonlocal finished
                try:
                    return key, await self._fetch_one(client, job_id, index, element, dest_dir)
                finally:
                    finished += 1
                    if on_progress:
                        on_progress(finished / total)

            results = await asyncio.gather(
                *(_fetch(i, key, element) for i, (key, element) in enumerate(unique.items()))
            )

        paths = {key: path for key, path in results if path is not None}
        failed = total - len(paths)
        if failed:
            logger.warning(
                f"[DOWNLOAD] Job {job_id}: {failed}/{total} asset(s) unavailable; "
                f"continuing without them"
            )
        return paths

    async def _fetch_one(
        self,
        client: httpx.AsyncClient,
        job_id: str,
        index: int,
        element: TimelineElement,
        dest_dir: str,
    ) -> str | None:
        key = element.asset_key
        try:
            resolved = await self.resolver.resolve(element)
        except AssetResolutionError as e:
            logger.warning(f"[DOWNLOAD] Job {job_id}: {e.message}")
            return None
        except Exception:
            logger.exception(f"[DOWNLOAD] Job {job_id}: failed to resolve {key}")
            return None

        dest_path = os.path.join(dest_dir, f"{job_id}_{index}{extension_from_url(resolved.url)}")
        try:
            size = await self.policy.run(self._attempt, client, resolved.url, dest_path)
        except AssetDownloadError as e:
            logger.warning(f"[DOWNLOAD] Job {job_id}: giving up on {key}: {e.message}")
            self._discard(dest_path)
            return None
        except httpx.HTTPError as e:
            logger.warning(f"[DOWNLOAD] Job {job_id}: giving up on {key}: {e}")
            self._discard(dest_path)
            return None
        except Exception:
            logger.exception(f"[DOWNLOAD] Job {job_id}: unexpected error fetching {key}")
            self._discard(dest_path)
            return None

        logger.info(f"[DOWNLOAD] Job {job_id}: {key} -> {dest_path} ({size} bytes)")
        return dest_path

    async def _attempt(self, client: httpx.AsyncClient, url: str, dest_path: str) -> int:
        """One streaming GET; returns the number of bytes written."""
        try:
            async with client.stream("GET", url) as response:
                status = response.status_code
                if 400 <= status < 500:
                    raise AssetDownloadError(
                        f"HTTP {status}", url=url, http_status=status, retryable=False
                    )
                if status >= 500:
                    raise AssetDownloadError(f"HTTP {status}", url=url, http_status=status)

                expected = response.headers.get("content-length")
                expected_size = int(expected) if expected and expected.isdigit() else None
                if expected_size is not None and expected_size > self.max_size_bytes:
                    raise AssetDownloadError(
                        f"Asset too large ({expected_size} bytes)", url=url, retryable=False
                    )

                written = 0
                with open(dest_path, "wb") as f:
                    async for chunk in response.aiter_bytes(CHUNK_SIZE):
                        written += len(chunk)
                        if written > self.max_size_bytes:
                            raise AssetDownloadError(
                                f"Asset exceeds {self.max_size_bytes} bytes", url=url, retryable=False
                            )
                        f.write(chunk)
        except httpx.TimeoutException as e:
            raise AssetDownloadError(f"Timed out: {e}", url=url) from e
        except httpx.TransportError as e:
            raise AssetDownloadError(f"Transport error: {e}", url=url) from e
        except OSError as e:
            raise AssetDownloadError(f"Write failed: {e}", url=url) from e

        on_disk = os.path.getsize(dest_path)
        if on_disk == 0:
            raise AssetDownloadError("Empty response body", url=url)
        if on_disk != written or (expected_size is not None and on_disk != expected_size):
            raise AssetDownloadError(
                f"Size mismatch: expected {expected_size or written}, wrote {on_disk}", url=url
            )
        return on_disk

    @staticmethod
    def _discard(path: str) -> None:
        if os.path.exists(path):
            os.remove(path)
