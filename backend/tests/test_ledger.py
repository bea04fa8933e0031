"""
ImgBed Backend — Metadata Ledger Tests
========================================

What:  ImageLedger insert/lookup/soft-delete against a real SQLite ledger,
       plus retry and failure handling against a scripted mock session.
"""

import warnings
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from imgbed.exceptions import DatabaseError, NotFoundError
from imgbed.models.image import ImageRecord
from imgbed.services.identifiers import new_image_id
from imgbed.services.ledger import ImageLedger


async def _insert(ledger, db, image_id=None, ext="webp", **overrides):
    fields = dict(
        image_id=image_id or new_image_id(),
        ext=ext,
        size_bytes=1234,
        width=100,
        height=50,
        original_name="photo.png",
        is_transcoded=True,
    )
    fields.update(overrides)
    return await ledger.insert(db, **fields)


class TestInsertAndFind:

    def setup_method(self):
        self.ledger = ImageLedger()

    @pytest.mark.asyncio
    async def test_insert_returns_typed_record(self, db_session):
        record = await _insert(self.ledger, db_session)
        assert record.stored_filename == f"{record.id}.webp"
        assert record.format == "webp"
        assert record.is_deleted is False
        assert record.is_public is True
        assert record.uploaded_by == "guest"
        assert record.uploaded_at is not None

    @pytest.mark.asyncio
    async def test_find_one_roundtrip(self, db_session):
        inserted = await _insert(self.ledger, db_session, uploaded_by="alice", is_public=False)
        await db_session.commit()

        found = await self.ledger.find_one(db_session, inserted.id)
        assert found is not None
        assert found.id == inserted.id
        assert found.size_bytes == 1234
        assert (found.width, found.height) == (100, 50)
        assert found.uploaded_by == "alice"
        assert found.is_public is False

    @pytest.mark.asyncio
    async def test_find_one_unknown(self, db_session):
        assert await self.ledger.find_one(db_session, new_image_id()) is None

    @pytest.mark.asyncio
    async def test_get_unknown_raises_not_found(self, db_session):
        with pytest.raises(NotFoundError) as exc_info:
            await self.ledger.get(db_session, new_image_id())
        assert exc_info.value.cause == "unknown"

    @pytest.mark.asyncio
    async def test_duplicate_id_is_database_error(self, db_session):
        image_id = new_image_id()
        await _insert(self.ledger, db_session, image_id=image_id)
        with pytest.raises(DatabaseError):
            await _insert(self.ledger, db_session, image_id=image_id)

    @pytest.mark.asyncio
    async def test_invalid_row_is_rejected(self, db_session):
        row = ImageRecord(
            id="abc123",
            original_name="x.png",
            stored_filename="someone-else.png",
            size_bytes=10,
            width=1,
            height=1,
            format="png",
        )
        db_session.add(row)
        await db_session.flush()

        with pytest.raises(DatabaseError):
            await self.ledger.find_one(db_session, "abc123")


class TestSoftDelete:

    def setup_method(self):
        self.ledger = ImageLedger()

    @pytest.mark.asyncio
    async def test_deleted_hidden_unless_included(self, db_session):
        record = await _insert(self.ledger, db_session)
        deleted = await self.ledger.mark_deleted(db_session, record.id)
        await db_session.commit()

        assert deleted.is_deleted is True
        assert await self.ledger.find_one(db_session, record.id) is None

        admin_view = await self.ledger.find_one(db_session, record.id, include_deleted=True)
        assert admin_view is not None
        assert admin_view.is_deleted is True

    @pytest.mark.asyncio
    async def test_mark_deleted_bumps_updated_at(self, db_session):
        record = await _insert(self.ledger, db_session)
        deleted = await self.ledger.mark_deleted(db_session, record.id)
        assert deleted.updated_at >= record.updated_at

    @pytest.mark.asyncio
    async def test_delete_twice_is_not_found(self, db_session):
        record = await _insert(self.ledger, db_session)
        await self.ledger.mark_deleted(db_session, record.id)
        with pytest.raises(NotFoundError) as exc_info:
            await self.ledger.mark_deleted(db_session, record.id)
        assert exc_info.value.cause == "deleted"

    @pytest.mark.asyncio
    async def test_delete_unknown_is_not_found(self, db_session):
        with pytest.raises(NotFoundError):
            await self.ledger.mark_deleted(db_session, new_image_id())


class TestTransientFailures:

    def setup_method(self):
        self.ledger = ImageLedger()

    @pytest.mark.asyncio
    async def test_lookup_retries_operational_error(self, mock_db_session):
        empty = MagicMock()
        empty.scalar_one_or_none.return_value = None
        dropped = OperationalError("SELECT", {}, Exception("server closed the connection"))
        mock_db_session.execute = AsyncMock(side_effect=[dropped, empty])

        assert await self.ledger.find_one(mock_db_session, "abc") is None
        assert mock_db_session.execute.await_count == 2
        mock_db_session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_lookup_gives_up_as_database_error(self, mock_db_session):
        dropped = OperationalError("SELECT", {}, Exception("server closed the connection"))
        mock_db_session.execute = AsyncMock(side_effect=dropped)

        with pytest.raises(DatabaseError):
            await self.ledger.find_one(mock_db_session, "abc")
        assert mock_db_session.execute.await_count >= 2

    def test_backoff_config_is_current(self, test_settings):
        with warnings.catch_warnings():
            warnings.simplefilter("error", DeprecationWarning)
            ImageLedger(test_settings)

    @pytest.mark.asyncio
    async def test_retry_policy_comes_from_settings(self, mock_db_session, test_settings):
        config = test_settings.model_copy(
            update={"retry_max_attempts": 4, "retry_min_wait": 0, "retry_max_wait": 0}
        )
        dropped = OperationalError("SELECT", {}, Exception("server closed the connection"))
        mock_db_session.execute = AsyncMock(side_effect=dropped)

        with pytest.raises(DatabaseError):
            await ImageLedger(config).find_one(mock_db_session, "abc")
        assert mock_db_session.execute.await_count == 4

    @pytest.mark.asyncio
    async def test_insert_flush_failure(self, mock_db_session):
        mock_db_session.flush = AsyncMock(
            side_effect=OperationalError("INSERT", {}, Exception("disk I/O error"))
        )
        with pytest.raises(DatabaseError):
            await _insert(self.ledger, mock_db_session)
