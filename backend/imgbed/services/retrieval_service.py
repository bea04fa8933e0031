"""
ImgBed Backend — Retrieval Gate
=================================

What:  Resolves `<id>.<ext>` request paths to stored files and the headers
       to serve them with.
How:   Parse → ledger lookup → file check → chunked stream. Credential
       checks happen before this runs, in the route dependency.
Who:   GET /i/{filename} (public) and GET /api/images/preview/{path}
       (administrative).

Public vs preview:
    public   soft-deleted records are invisible; long-lived cache headers
    preview  soft-deleted records still resolve; never cached

Any failure to serve is a 404 with the same message. The cause is logged
server-side; ledger/filesystem drift goes to the `imgbed.integrity` logger.
"""

import logging
import re
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from imgbed.config import Settings, settings as default_settings
from imgbed.exceptions import ImgBedError, InternalError, NotFoundError
from imgbed.schemas.image import ImageRecordSchema
from imgbed.services.file_service import FileService, OpenedFile
from imgbed.services.ledger import ImageLedger, ledger as default_ledger

logger = logging.getLogger(__name__)
integrity_logger = logging.getLogger("imgbed.integrity")

IMAGE_PATH_RE = re.compile(r"^([a-f0-9-]+)\.(\w+)$", re.IGNORECASE | re.ASCII)

MIME_TYPES = {
    "jpeg": "image/jpeg",
    "jpg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "avif": "image/avif",
    "svg": "image/svg+xml",
    "bmp": "image/bmp",
    "ico": "image/x-icon",
    "apng": "image/apng",
    "tiff": "image/tiff",
    "tif": "image/tiff",
}
DEFAULT_MIME_TYPE = "application/octet-stream"

PREVIEW_CACHE_CONTROL = "no-store, no-cache, must-revalidate"


def mime_type_for(ext: str) -> str:
    return MIME_TYPES.get(ext.lower(), DEFAULT_MIME_TYPE)


def parse_image_path(path: str) -> Tuple[str, str]:
    """
    Split `<id>.<ext>` into (lowercased id, ext).

    Raises:
        NotFoundError: the path does not have that shape
    """
    match = IMAGE_PATH_RE.fullmatch(path or "")
    if match is None:
        raise NotFoundError(cause="malformed", context={"path": path})
    return match.group(1).lower(), match.group(2)


@dataclass
class ServedImage:
    record: ImageRecordSchema
    media_type: str
    headers: Dict[str, str]
    body: AsyncIterator[bytes]


class RetrievalService:
    def __init__(
        self,
        storage: FileService,
        config: Optional[Settings] = None,
        ledger: Optional[ImageLedger] = None,
    ):
        self.storage = storage
        self.config = config or default_settings
        self.ledger = ledger or default_ledger

    def cache_control(self, admin: bool) -> str:
        if admin:
            return PREVIEW_CACHE_CONTROL
        return f"public, max-age={self.config.public_cache_max_age}, immutable"

    async def resolve(
        self,
        db: AsyncSession,
        path: str,
        admin: bool = False,
    ) -> Tuple[ImageRecordSchema, OpenedFile]:
        """
        Find the record behind `path` and open its file.

        The requested extension is only checked for shape; the record's
        stored format picks the file. The file is opened here, before any
        response is started, so a concurrent delete yields either the whole
        body or a 404.

        Returns:
            (record, opened stored file)
        """
        image_id, requested_ext = parse_image_path(path)

        record = await self.ledger.find_one(db, image_id, include_deleted=admin)
        if record is None:
            raise NotFoundError(cause="unknown", resource_id=image_id)

        opened = await self.storage.open_stream(
            record.id, record.format, self.config.stream_chunk_size
        )
        if opened is None:
            integrity_logger.warning(
                "Ledger/filesystem drift: record %s has no file %s (deleted=%s)",
                record.id,
                record.stored_filename,
                record.is_deleted,
            )
            raise NotFoundError(cause="missing", resource_id=image_id)

        if opened.size != record.size_bytes:
            integrity_logger.warning(
                "Ledger/filesystem drift: %s is %d bytes on disk, ledger says %d",
                record.stored_filename,
                opened.size,
                record.size_bytes,
            )

        if requested_ext.lower() != record.format:
            logger.debug(
                "Requested .%s for %s; serving stored .%s",
                requested_ext,
                record.id,
                record.format,
            )
        return record, opened

    async def serve(
        self,
        db: AsyncSession,
        path: str,
        admin: bool = False,
    ) -> ServedImage:
        """
        Resolve `path` and prepare a streamed response body with headers.

        Raises:
            NotFoundError: malformed path, unknown/deleted record, missing file
            DatabaseError: the ledger lookup failed
            InternalError: anything unclassified
        """
        try:
            record, opened = await self.resolve(db, path, admin=admin)
        except ImgBedError:
            raise
        except Exception as e:
            logger.error("Unexpected error serving %r: %s", path, e, exc_info=True)
            raise InternalError(context={"path": path, "error_type": type(e).__name__}) from e

        headers = {
            "Content-Length": str(opened.size),
            "Cache-Control": self.cache_control(admin),
            "X-Content-Type-Options": "nosniff",
        }
        return ServedImage(
            record=record,
            media_type=mime_type_for(record.format),
            headers=headers,
            body=opened.chunks,
        )
