"""Asset metadata lookup: internal asset id -> storage key."""

import logging
import threading
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from timeline_export.models.asset import Asset
from timeline_export.models.database import session_scope

logger = logging.getLogger(__name__)


class AssetCatalog(Protocol):
    async def get_storage_key(self, asset_id: str) -> str | None:
        """Return the storage key for an asset, or None if it does not exist."""
        ...


class SqlAssetCatalog:
    """Reads storage keys from the `assets` table."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def get_storage_key(self, asset_id: str) -> str | None:
        async with session_scope(self._session_maker) as session:
            result = await session.execute(select(Asset.storage_key).where(Asset.id == asset_id))
            storage_key = result.scalar_one_or_none()
        if storage_key is None:
            logger.warning(f"[CATALOG] Asset not found: {asset_id}")
        return storage_key


class InMemoryAssetCatalog:
    """Dictionary-backed catalog for local development and tests."""

    def __init__(self, keys: dict[str, str] | None = None):
        self._keys: dict[str, str] = dict(keys or {})
        self._lock = threading.Lock()

    def register(self, asset_id: str, storage_key: str) -> None:
        with self._lock:
            self._keys[asset_id] = storage_key

    async def get_storage_key(self, asset_id: str) -> str | None:
        with self._lock:
            return self._keys.get(asset_id)
