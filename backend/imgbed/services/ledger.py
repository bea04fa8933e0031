"""
ImgBed Backend — Metadata Ledger
==================================

What:  Durable record of every stored image, keyed by identifier.
How:   Async SQLAlchemy queries against the `images` table. Every row leaving
       this module is validated into ImageRecordSchema; a row that fails
       validation is reported as a DatabaseError, never served.
Who:   UploadService (insert), RetrievalService (find_one), delete and
       metadata routes (mark_deleted, get).

Transactions:
    The ledger only flushes. The request-scoped session from
    get_db_session() commits on success and rolls back on error.

Transient failures:
    Lookups retry OperationalError (dropped connection, failover) with
    tenacity: exponential backoff with jitter, retry_* from the ledger's settings.
    Writes are not retried here; they run inside the caller's transaction.
"""

import logging
from typing import Optional

import pydantic
from sqlalchemy import select
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from imgbed.config import Settings, settings as default_settings
from imgbed.exceptions import DatabaseError, NotFoundError
from imgbed.models.image import ImageRecord, utcnow
from imgbed.schemas.image import ImageRecordSchema

logger = logging.getLogger(__name__)


def _to_schema(row: ImageRecord) -> ImageRecordSchema:
    try:
        return ImageRecordSchema.model_validate(row)
    except pydantic.ValidationError as e:
        logger.error("Ledger row %s failed validation: %s", row.id, e)
        raise DatabaseError(
            message="Stored image metadata is invalid.",
            context={"image_id": row.id, "errors": e.error_count()},
        ) from e


class ImageLedger:
    """
    Accessor for image records; receives the session per call and holds
    only its retry policy.

    Methods:
        find_one():     lookup by id, optionally including soft-deleted rows
        get():          find_one() that raises NotFoundError on a miss
        insert():       add a record for a freshly written file
        mark_deleted(): flip the soft-delete flag
    """

    def __init__(self, config: Optional[Settings] = None):
        config = config or default_settings
        self._retrying = AsyncRetrying(
            retry=retry_if_exception_type(OperationalError),
            stop=stop_after_attempt(config.retry_max_attempts),
            wait=wait_exponential_jitter(
                multiplier=config.retry_min_wait,
                max=config.retry_max_wait,
            ),
            reraise=True,
        )

    async def _select(
        self,
        db: AsyncSession,
        image_id: str,
        include_deleted: bool,
    ) -> Optional[ImageRecord]:
        query = select(ImageRecord).where(ImageRecord.id == image_id)
        if not include_deleted:
            query = query.where(ImageRecord.is_deleted.is_(False))
        try:
            result = await db.execute(query)
        except OperationalError:
            logger.warning("Transient ledger error looking up %s, retrying", image_id)
            await db.rollback()
            raise
        return result.scalar_one_or_none()

    async def find_one(
        self,
        db: AsyncSession,
        image_id: str,
        include_deleted: bool = False,
    ) -> Optional[ImageRecordSchema]:
        """
        Look up a record by identifier.

        Args:
            include_deleted: True for administrative paths that must still see
                             soft-deleted images

        Returns:
            The validated record, or None when there is no match.

        Raises:
            DatabaseError: query failed after retries, or the row is invalid
        """
        try:
            # copy(): retry state is per call
            row = await self._retrying.copy()(self._select, db, image_id, include_deleted)
        except SQLAlchemyError as e:
            logger.error("Ledger lookup failed for %s: %s", image_id, e, exc_info=True)
            raise DatabaseError(
                message="Could not look up the image. Please try again.",
                context={"image_id": image_id, "error_type": type(e).__name__},
            ) from e

        if row is None:
            return None
        return _to_schema(row)

    async def get(
        self,
        db: AsyncSession,
        image_id: str,
        include_deleted: bool = True,
    ) -> ImageRecordSchema:
        record = await self.find_one(db, image_id, include_deleted=include_deleted)
        if record is None:
            raise NotFoundError(cause="unknown", resource_id=image_id)
        return record

    async def insert(
        self,
        db: AsyncSession,
        *,
        image_id: str,
        ext: str,
        size_bytes: int,
        width: int,
        height: int,
        original_name: str = "",
        is_transcoded: bool = False,
        is_public: bool = True,
        uploaded_by: str = "guest",
        source_ip: str = "",
    ) -> ImageRecordSchema:
        """
        Add a record for a file that has already been written.

        Flushes so constraint violations surface here, inside the caller's
        transaction, rather than at commit time.

        Raises:
            DatabaseError: the insert failed (duplicate id, lost connection, ...)
        """
        row = ImageRecord(
            id=image_id,
            original_name=original_name,
            stored_filename=f"{image_id}.{ext}",
            size_bytes=size_bytes,
            width=width,
            height=height,
            format=ext,
            is_transcoded=is_transcoded,
            is_public=is_public,
            uploaded_by=uploaded_by,
            source_ip=source_ip,
            is_deleted=False,
        )
        try:
            db.add(row)
            await db.flush()
        except SQLAlchemyError as e:
            logger.error("Ledger insert failed for %s: %s", image_id, e, exc_info=True)
            raise DatabaseError(
                message="Could not record the uploaded image. Please try again.",
                context={"image_id": image_id, "error_type": type(e).__name__},
            ) from e

        logger.info("Ledger record created: %s", row.stored_filename)
        return _to_schema(row)

    async def mark_deleted(self, db: AsyncSession, image_id: str) -> ImageRecordSchema:
        """
        Soft-delete a live record and bump updated_at.

        Raises:
            NotFoundError: no record, or it is already deleted
            DatabaseError: the update failed
        """
        try:
            result = await db.execute(
                select(ImageRecord).where(ImageRecord.id == image_id)
            )
            row = result.scalar_one_or_none()
            if row is None:
                raise NotFoundError(cause="unknown", resource_id=image_id)
            if row.is_deleted:
                raise NotFoundError(cause="deleted", resource_id=image_id)

            row.is_deleted = True
            row.updated_at = utcnow()
            await db.flush()
        except SQLAlchemyError as e:
            logger.error("Ledger soft delete failed for %s: %s", image_id, e, exc_info=True)
            raise DatabaseError(
                message="Could not delete the image. Please try again.",
                context={"image_id": image_id, "error_type": type(e).__name__},
            ) from e

        logger.info("Ledger record soft-deleted: %s", image_id)
        return _to_schema(row)


# ── Singleton Instance ────────────────────────────────────────────────────
ledger = ImageLedger()
