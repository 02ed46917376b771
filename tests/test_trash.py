"""Tests for trash bookkeeping."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Any

import pytest
from sqlalchemy import select

from reelflow.config import EngineConfig
from reelflow.core.types import AssetStatus
from reelflow.db.models import AssetModel, TrashRecordModel
from reelflow.db.trash import TrashService

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from tests.conftest import FakeStorage


@pytest.fixture
async def asset(async_session: AsyncSession, seeded_task: dict[str, Any], storage: FakeStorage) -> AssetModel:
    """Create a stored asset belonging to the seeded task."""
    storage.objects["memory://frame.png"] = b"png"
    model = AssetModel(
        task_id=seeded_task["task"].id,
        version_id=seeded_task["version"].id,
        url="memory://frame.png",
        filename="frame.png",
        metadata_={},
    )
    async_session.add(model)
    await async_session.flush()
    return model


async def _records(session: AsyncSession) -> list[TrashRecordModel]:
    return list((await session.execute(select(TrashRecordModel))).scalars().all())


@pytest.mark.integration
class TestTrashService:
    """Tests for TrashService."""

    async def test_trash_asset(self, async_session: AsyncSession, asset: AssetModel) -> None:
        record = await TrashService(async_session).trash_asset(
            asset,
            origin_run_id=3,
            origin_node_id="review",
            metadata={"reason": "blurry"},
        )
        assert asset.status == AssetStatus.TRASHED
        assert asset.trashed_at is not None
        assert record.asset_id == asset.id
        assert record.origin_node_id == "review"
        assert record.metadata_ == {"reason": "blurry"}
        assert record.expire_at - asset.trashed_at >= timedelta(hours=23)

    async def test_trashing_twice_extends_the_record(self, async_session: AsyncSession, asset: AssetModel) -> None:
        service = TrashService(async_session)
        first = await service.trash_asset(asset)
        first_expiry = first.expire_at
        second = await service.trash_asset(asset)
        assert second.id == first.id
        assert second.expire_at >= first_expiry
        assert len(await _records(async_session)) == 1

    async def test_restore_asset(self, async_session: AsyncSession, asset: AssetModel) -> None:
        service = TrashService(async_session)
        await service.trash_asset(asset)
        await service.restore_asset(asset)
        assert asset.status == AssetStatus.ACTIVE
        assert asset.trashed_at is None
        assert await _records(async_session) == []

    async def test_create_record_without_asset(self, async_session: AsyncSession) -> None:
        record = await TrashService(async_session).create_record(
            origin_run_id=1,
            origin_node_id="pick",
            metadata={"rejected": ["a", "b"]},
        )
        assert record.asset_id is None
        assert record.metadata_ == {"rejected": ["a", "b"]}

    async def test_purge_expired(self, async_session: AsyncSession, asset: AssetModel, storage: FakeStorage) -> None:
        service = TrashService(async_session, EngineConfig(trash_retention=timedelta(seconds=-1)))
        await service.trash_asset(asset)
        await service.create_record(origin_node_id="pick")

        assert await service.purge_expired(storage) == 2
        assert storage.deleted == ["memory://frame.png"]
        assert await _records(async_session) == []
        assert (await async_session.execute(select(AssetModel))).scalars().all() == []

    async def test_purge_keeps_unexpired_records(
        self, async_session: AsyncSession, asset: AssetModel, storage: FakeStorage
    ) -> None:
        service = TrashService(async_session)
        await service.trash_asset(asset)
        assert await service.purge_expired(storage) == 0
        assert len(await _records(async_session)) == 1
        assert storage.deleted == []

    async def test_failed_delete_keeps_record(
        self,
        async_session: AsyncSession,
        asset: AssetModel,
        storage: FakeStorage,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        storage.fail_deletes = True
        service = TrashService(async_session, EngineConfig(trash_retention=timedelta(seconds=-1)))
        await service.trash_asset(asset)

        assert await service.purge_expired(storage) == 0
        assert len(await _records(async_session)) == 1
        assert "Failed to delete stored file" in caplog.text
