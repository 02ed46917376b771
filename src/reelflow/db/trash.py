"""Trash bookkeeping for assets rejected at human gates.

Trashed assets are kept for the configured retention window and then purged
together with their stored file.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete

from reelflow.config import EngineConfig
from reelflow.core.types import AssetStatus
from reelflow.db.models import TrashRecordModel
from reelflow.db.repositories import AssetRepository, TrashRecordRepository

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from reelflow.core.protocols import ArtifactStorage
    from reelflow.db.models import AssetModel

__all__ = ["TrashService"]

logger = logging.getLogger(__name__)


class TrashService:
    """Move assets in and out of the trash.

    Methods flush but never commit; the caller owns the transaction.

    Attributes:
        session: SQLAlchemy async session for database operations.
        config: Engine configuration providing the retention window.
    """

    def __init__(self, session: AsyncSession, config: EngineConfig | None = None) -> None:
        self.session = session
        self.config = config or EngineConfig()
        self._assets = AssetRepository(session=session)
        self._records = TrashRecordRepository(session=session)

    def _expire_at(self) -> datetime:
        return datetime.now(timezone.utc) + self.config.trash_retention

    async def trash_asset(
        self,
        asset: AssetModel,
        *,
        origin_run_id: int | None = None,
        origin_node_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TrashRecordModel:
        """Mark an asset TRASHED and record when it may be purged.

        Trashing an already trashed asset extends its retention.

        Args:
            asset: The asset to trash.
            origin_run_id: The run whose gate rejected it.
            origin_node_id: The gate node that rejected it.
            metadata: Decision context to store on the record.

        Returns:
            The trash record.
        """
        if asset.status != AssetStatus.TRASHED:
            asset.status = AssetStatus.TRASHED
            asset.trashed_at = datetime.now(timezone.utc)

        existing = await self._records.find_by_asset(asset.id)
        if existing is not None:
            existing.expire_at = self._expire_at()
            if metadata:
                existing.metadata_ = dict(metadata)
            await self.session.flush()
            return existing

        return await self._records.add(
            TrashRecordModel(
                asset_id=asset.id,
                origin_run_id=origin_run_id,
                origin_node_id=origin_node_id,
                metadata_=dict(metadata or {}),
                expire_at=self._expire_at(),
            )
        )

    async def restore_asset(self, asset: AssetModel) -> None:
        """Re-activate an asset and drop its trash record."""
        asset.status = AssetStatus.ACTIVE
        asset.trashed_at = None
        await self.session.execute(delete(TrashRecordModel).where(TrashRecordModel.asset_id == asset.id))
        await self.session.flush()

    async def create_record(
        self,
        *,
        origin_run_id: int | None = None,
        origin_node_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TrashRecordModel:
        """Record rejected values that are not assets."""
        return await self._records.add(
            TrashRecordModel(
                asset_id=None,
                origin_run_id=origin_run_id,
                origin_node_id=origin_node_id,
                metadata_=dict(metadata or {}),
                expire_at=self._expire_at(),
            )
        )

    async def purge_expired(self, storage: ArtifactStorage) -> int:
        """Delete expired trash records, their assets and the stored files.

        A record whose file cannot be deleted is kept for the next purge.

        Args:
            storage: Storage the asset files live in.

        Returns:
            The number of records purged.
        """
        purged = 0
        for record in await self._records.find_expired(datetime.now(timezone.utc)):
            asset = await self._assets.get_one_or_none(id=record.asset_id) if record.asset_id else None
            try:
                if asset is not None:
                    await storage.delete(asset.url)
            except Exception:
                logger.warning("Failed to delete stored file of trashed asset %s", record.asset_id, exc_info=True)
                continue
            if asset is not None:
                await self.session.delete(asset)
            await self.session.delete(record)
            purged += 1
        await self.session.flush()
        return purged
