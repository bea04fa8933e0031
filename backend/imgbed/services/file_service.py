"""
ImgBed Backend — File Storage Service
=======================================

What:  Storage adapter for image bytes: one flat directory of `<id>.<ext>` files.
How:   aiofiles for async I/O; writes go to a hidden temp file in the same
       directory and are fsync'd and renamed into place, so a reader never
       sees a partial file under its final name.
Who:   UploadService (write, cleanup), RetrievalService (open_stream),
       delete flow (delete).

Path Safety:
    Callers pass an identifier and an extension, never a path. Both are
    checked against their expected shape, and the joined path must resolve
    inside the storage root. Anything else raises InvalidStoragePathError,
    which the API reports as an ordinary 404.

Directory Structure:
    uploads/
    ├── 0b6f3c1e-8d5a-4c47-9a0e-6b1f2d3c4e5f.webp
    ├── 7c9e6679-7425-40de-944b-e07fc1f90ae7.gif
    └── .tmp-<random>                       (in-flight writes only)
"""

import asyncio
import logging
import os
import re
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional, Union

import aiofiles

from imgbed.config import settings
from imgbed.exceptions import FileStorageError, InvalidStoragePathError
from imgbed.services.identifiers import is_valid_image_id

logger = logging.getLogger(__name__)

_EXTENSION_RE = re.compile(r"^\w+$", re.ASCII)
TEMP_PREFIX = ".tmp-"


@dataclass
class OpenedFile:
    """A stored file opened for streaming: its size and a chunk iterator."""
    size: int
    chunks: AsyncIterator[bytes]


class FileService:
    """
    Reads and writes image files under a single storage root.

    create_app() builds one per app from its settings; nothing in the
    package holds a global instance.
    """

    def __init__(self, storage_root: Optional[Union[str, Path]] = None):
        """
        Args:
            storage_root: Directory for stored files. Defaults to
                          settings.upload_dir. Created if absent.
        """
        root = Path(storage_root) if storage_root is not None else settings.upload_dir
        self.storage_root = root.resolve()
        self.storage_root.mkdir(parents=True, exist_ok=True)
        logger.info("FileService initialized with storage_root=%s", self.storage_root)

    # ── Path Construction ─────────────────────────────────────────────────

    def filename_for(self, image_id: str, ext: str) -> str:
        """
        Build `<id>.<ext>` after checking both parts.

        Raises:
            InvalidStoragePathError: id is not identifier-shaped or ext is
                                     not a plain word
        """
        filename = f"{image_id}.{ext}"
        if (
            not is_valid_image_id(image_id)
            or not _EXTENSION_RE.fullmatch(ext or "")
            or ".." in filename
            or "/" in filename
            or "\\" in filename
        ):
            raise InvalidStoragePathError(filename)
        return filename

    def path_for(self, image_id: str, ext: str) -> Path:
        """Absolute path of a stored file; guaranteed to be inside the root."""
        path = (self.storage_root / self.filename_for(image_id, ext)).resolve()
        if path.parent != self.storage_root:
            raise InvalidStoragePathError(path.name)
        return path

    # ── Write / Read ──────────────────────────────────────────────────────

    async def write(self, image_id: str, ext: str, content: bytes) -> Path:
        """
        Durably store `content` as `<id>.<ext>`.

        Steps:
            1. Write bytes to `.tmp-<uuid>` in the storage root
            2. Flush and fsync the temp file
            3. os.replace() onto the final name (atomic on one filesystem)

        Returns:
            Absolute path of the stored file.

        Raises:
            FileStorageError: any OS-level failure; the temp file is removed
        """
        final_path = self.path_for(image_id, ext)
        temp_path = self.storage_root / f"{TEMP_PREFIX}{uuid.uuid4().hex}"

        try:
            async with aiofiles.open(temp_path, "wb") as f:
                await f.write(content)
                await f.flush()
                await asyncio.to_thread(os.fsync, f.fileno())
            await asyncio.to_thread(os.replace, temp_path, final_path)
        except OSError as e:
            logger.error("Failed to store file %s: %s", final_path.name, e)
            await self.cleanup_file(temp_path)
            raise FileStorageError(
                message="Failed to save uploaded image. Please try again.",
                context={"path": str(final_path), "os_error": str(e)},
            ) from e

        logger.info("File stored: %s (%d bytes)", final_path.name, len(content))
        return final_path

    async def read(
        self,
        image_id: str,
        ext: str,
        chunk_size: Optional[int] = None,
    ) -> AsyncIterator[bytes]:
        """Yield the stored file in chunks of `chunk_size` bytes."""
        path = self.path_for(image_id, ext)
        size = chunk_size or settings.stream_chunk_size
        async with aiofiles.open(path, "rb") as f:
            while True:
                chunk = await f.read(size)
                if not chunk:
                    break
                yield chunk

    async def open_stream(
        self,
        image_id: str,
        ext: str,
        chunk_size: Optional[int] = None,
    ) -> Optional[OpenedFile]:
        """
        Open a stored file now and stream it later.

        The size comes from the open handle, and the handle keeps the bytes
        readable if the file is unlinked before streaming finishes.

        Returns:
            OpenedFile, or None if the file is missing.
        """
        path = self.path_for(image_id, ext)
        try:
            f = await aiofiles.open(path, "rb")
        except FileNotFoundError:
            return None
        try:
            stat = await asyncio.to_thread(os.fstat, f.fileno())
        except OSError:
            await f.close()
            raise
        return OpenedFile(
            size=stat.st_size,
            chunks=self._iter_chunks(f, chunk_size or settings.stream_chunk_size),
        )

    @staticmethod
    async def _iter_chunks(f, chunk_size: int) -> AsyncIterator[bytes]:
        try:
            while True:
                chunk = await f.read(chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            await f.close()

    async def exists(self, image_id: str, ext: str) -> bool:
        path = self.path_for(image_id, ext)
        return await asyncio.to_thread(path.is_file)

    async def size_of(self, image_id: str, ext: str) -> Optional[int]:
        """Byte size of a stored file, or None if it is missing."""
        path = self.path_for(image_id, ext)
        try:
            stat = await asyncio.to_thread(path.stat)
        except FileNotFoundError:
            return None
        return stat.st_size

    # ── Removal ───────────────────────────────────────────────────────────

    async def delete(self, image_id: str, ext: str) -> bool:
        """
        Remove a stored file.

        Returns:
            True if a file was removed, False if it was already gone.

        Raises:
            FileStorageError: the file exists but could not be removed
        """
        path = self.path_for(image_id, ext)
        try:
            await asyncio.to_thread(os.remove, path)
        except FileNotFoundError:
            logger.info("Delete: file already gone: %s", path.name)
            return False
        except OSError as e:
            logger.error("Failed to delete file %s: %s", path.name, e)
            raise FileStorageError(
                message="Failed to remove stored image.",
                context={"path": str(path), "os_error": str(e)},
            ) from e
        logger.info("File deleted: %s", path.name)
        return True

    async def cleanup_file(self, file_path: Union[str, Path]) -> None:
        """
        Remove a file left by a failed upload.

        Best-effort: missing files are ignored and other failures are logged,
        so the error that triggered the cleanup is the one that propagates.
        """
        path = Path(file_path)
        try:
            await asyncio.to_thread(path.unlink)
            logger.info("Cleaned up file: %s", path.name)
        except FileNotFoundError:
            logger.debug("Cleanup: file already gone: %s", path.name)
        except OSError as e:
            logger.warning("Failed to clean up file %s: %s", path, e)

    async def is_writable(self) -> bool:
        """Health probe: the root exists and accepts writes."""
        return await asyncio.to_thread(
            lambda: self.storage_root.is_dir() and os.access(self.storage_root, os.W_OK)
        )
