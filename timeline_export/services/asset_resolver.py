"""Turn an element's asset reference into a fetchable URL."""

import logging
from dataclasses import dataclass

from timeline_export.config import get_settings
from timeline_export.exceptions import AssetResolutionError, StorageError
from timeline_export.render.timeline import TimelineElement
from timeline_export.services.asset_catalog import AssetCatalog
from timeline_export.services.storage_service import StorageService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedAsset:
    key: str
    url: str


class AssetResolver:
    """External descriptors carry their own URL; internal ids go through the
    catalog and storage for a signed, time-limited URL."""

    def __init__(
        self,
        catalog: AssetCatalog,
        storage: StorageService,
        url_expiration_minutes: int | None = None,
    ):
        self.catalog = catalog
        self.storage = storage
        self.url_expiration_minutes = (
            url_expiration_minutes or get_settings().asset_url_expiration_minutes
        )

    async def resolve(self, element: TimelineElement) -> ResolvedAsset:
        key = element.asset_key
        if not element.is_media or key is None:
            raise AssetResolutionError(element.id, "element does not reference media")

        if element.external_asset is not None:
            return ResolvedAsset(key=key, url=element.external_asset.url)

        storage_key = await self.catalog.get_storage_key(element.asset_id)
        if not storage_key:
            raise AssetResolutionError(key, "unknown asset id")
        try:
            url = await self.storage.get_signed_url(storage_key, self.url_expiration_minutes)
        except StorageError as e:
            raise AssetResolutionError(key, e.message) from e
        logger.debug(f"[RESOLVE] {key} -> {storage_key}")
        return ResolvedAsset(key=key, url=url)
