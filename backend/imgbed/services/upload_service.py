"""
ImgBed Backend — Upload Service (Orchestrator)
================================================

What:  Turns an uploaded buffer into a stored file plus a ledger record,
       and handles soft deletion.
How:   Composes the transform engine, the storage adapter and the ledger.
Who:   POST /api/upload and DELETE /api/images/{id}.

Orchestration Flow (POST /api/upload):
    ┌──────────┐    ┌───────────┐    ┌─────────────┐    ┌──────────┐
    │ Validate │───▶│ Transform │───▶│ Write file  │───▶│  Ledger  │
    │ name/size│    │ (Pillow)  │    │ (durable)   │    │ insert   │
    └──────────┘    └───────────┘    └─────────────┘    └──────────┘

    On failure:
    - before the write: nothing to undo
    - ledger insert/commit fails: the written file is removed, then the
      error propagates

Every value in the response describes the stored bytes, never the
client's declared name, type or size.
"""

import logging
from pathlib import Path
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from imgbed.config import Settings, settings as default_settings
from imgbed.exceptions import DatabaseError, ValidationError
from imgbed.schemas.image import DeleteResponse, UploadOptions, UploadResponse
from imgbed.services.file_service import FileService
from imgbed.services.identifiers import new_image_id
from imgbed.services.image_service import TransformOptions, process_upload
from imgbed.services.ledger import ImageLedger, ledger as default_ledger

logger = logging.getLogger(__name__)


class UploadService:
    """
    Upload and delete workflows.

    Holds no per-request state; the session is passed to each call.
    """

    def __init__(
        self,
        storage: FileService,
        config: Optional[Settings] = None,
        ledger: Optional[ImageLedger] = None,
    ):
        self.storage = storage
        self.config = config or default_settings
        self.ledger = ledger or default_ledger

    # ── Validation ────────────────────────────────────────────────────────

    def validate_extension(self, filename: str) -> str:
        """
        Check the client filename's extension against the allowed formats.

        Returns the normalized extension without the dot. The extension only
        gates the upload; the stored format comes from decoding the bytes.
        """
        ext = Path(filename).suffix.lower().lstrip(".")
        allowed = self.config.allowed_formats_set
        if ext not in allowed:
            raise ValidationError(
                message=(
                    f"File type '{ext or filename}' is not supported. "
                    f"Allowed types: {', '.join(sorted(allowed))}"
                ),
                field="file",
                context={"extension": ext, "allowed": sorted(allowed)},
            )
        return ext

    def validate_size(self, actual_size: int) -> None:
        if actual_size == 0:
            raise ValidationError(message="The uploaded file is empty.", field="file")

        max_size = self.config.max_file_size
        if actual_size > max_size:
            max_mb = max_size / (1024 * 1024)
            raise ValidationError(
                message=(
                    f"File size ({actual_size / (1024 * 1024):.1f}MB) exceeds "
                    f"maximum of {max_mb:.0f}MB."
                ),
                field="file",
                context={"max_size": max_size, "actual_size": actual_size},
            )

    # ── Upload ────────────────────────────────────────────────────────────

    async def upload(
        self,
        db: AsyncSession,
        content: bytes,
        options: UploadOptions,
    ) -> UploadResponse:
        """
        Validate, transform, store and record one upload.

        Raises:
            ValidationError: empty, too large, or disallowed extension
            UnsupportedOrCorruptImageError: bytes do not decode as an image
            FileStorageError: the file could not be written
            DatabaseError: the ledger record could not be written
        """
        self.validate_extension(options.original_name)
        self.validate_size(len(content))

        transform_options = TransformOptions(
            target_format=self.config.target_format,
            quality=options.quality,
            preserve_animated=self.config.preserve_animated,
            lossless=options.lossless,
        )
        result = await process_upload(content, transform_options, convert=options.convert)
        info = result.info

        image_id = new_image_id()
        stored_path = await self.storage.write(image_id, info.format, result.content)

        try:
            record = await self.ledger.insert(
                db,
                image_id=image_id,
                ext=info.format,
                size_bytes=info.size,
                width=info.width,
                height=info.height,
                original_name=options.original_name,
                is_transcoded=result.transcoded,
                is_public=options.is_public,
                uploaded_by=options.uploaded_by,
                source_ip=options.source_ip,
            )
            await db.commit()
        except SQLAlchemyError as e:
            await self.storage.cleanup_file(stored_path)
            logger.error("Commit failed for %s: %s", image_id, e, exc_info=True)
            raise DatabaseError(
                message="Could not record the uploaded image. Please try again.",
                context={"image_id": image_id, "error_type": type(e).__name__},
            ) from e
        except Exception:
            await self.storage.cleanup_file(stored_path)
            raise

        logger.info(
            "Upload stored: %s (%dx%d, %d bytes, transcoded=%s, by=%s)",
            record.stored_filename,
            record.width,
            record.height,
            record.size_bytes,
            record.is_transcoded,
            record.uploaded_by,
        )
        return UploadResponse(
            id=record.id,
            filename=record.stored_filename,
            format=record.format,
            size=record.size_bytes,
            width=record.width,
            height=record.height,
            is_transcoded=record.is_transcoded,
            url=f"/i/{record.stored_filename}",
        )

    # ── Delete ────────────────────────────────────────────────────────────

    async def delete_image(self, db: AsyncSession, image_id: str) -> DeleteResponse:
        """
        Soft-delete a record and remove its file.

        The flag is committed before the file is touched, so a failure
        removing the file leaves a deleted record (never served publicly)
        instead of a live record with no file.

        Raises:
            NotFoundError: unknown or already deleted
        """
        record = await self.ledger.mark_deleted(db, image_id.lower())
        try:
            await db.commit()
        except SQLAlchemyError as e:
            logger.error("Commit failed deleting %s: %s", record.id, e, exc_info=True)
            raise DatabaseError(
                message="Could not delete the image. Please try again.",
                context={"image_id": record.id, "error_type": type(e).__name__},
            ) from e

        file_removed = await self.storage.delete(record.id, record.format)
        if not file_removed:
            logger.warning("Deleted record %s had no file on disk", record.id)
        return DeleteResponse(id=record.id, deleted=True, file_removed=file_removed)
