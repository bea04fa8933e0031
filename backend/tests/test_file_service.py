"""
ImgBed Backend — Storage Adapter Tests
========================================

What:  FileService path safety, atomic writes, chunked reads and removal.
How:   Real files under pytest's tmp_path; OS failures are injected with
       unittest.mock.patch.

Test Strategy:
    ✅ Root is created on construction (idempotent)
    ✅ Write then read returns identical bytes; no temp files left behind
    ✅ Traversal, separators, uppercase and non-hex ids are rejected
    ✅ A failed rename leaves neither the final file nor the temp file
    ✅ delete() reports whether a file was removed
"""

from unittest.mock import patch

import pytest

from imgbed.exceptions import FileStorageError, InvalidStoragePathError, NotFoundError
from imgbed.services.file_service import TEMP_PREFIX, FileService
from imgbed.services.identifiers import new_image_id


class TestStorageRoot:

    def test_creates_missing_root(self, tmp_path):
        root = tmp_path / "a" / "b" / "uploads"
        service = FileService(root)
        assert root.is_dir()
        assert service.storage_root == root.resolve()

    def test_existing_root_is_fine(self, tmp_path):
        FileService(tmp_path)
        FileService(tmp_path)


class TestPathSafety:

    def test_filename_for_valid(self, file_service):
        image_id = new_image_id()
        assert file_service.filename_for(image_id, "webp") == f"{image_id}.webp"

    def test_path_is_inside_root(self, file_service):
        image_id = new_image_id()
        path = file_service.path_for(image_id, "png")
        assert path.parent == file_service.storage_root
        assert path.name == f"{image_id}.png"

    @pytest.mark.parametrize("image_id, ext", [
        ("..", "png"),
        ("../etc/passwd", "png"),
        ("abc/def", "png"),
        ("abc\\def", "png"),
        ("ABCDEF", "png"),
        ("not-hex", "png"),
        ("", "png"),
        ("abc", ""),
        ("abc", "png/../../x"),
        ("abc", "p.ng"),
        ("abc", "png\n"),
    ])
    def test_rejects_unsafe_components(self, file_service, image_id, ext):
        with pytest.raises(InvalidStoragePathError):
            file_service.path_for(image_id, ext)

    def test_invalid_path_is_a_not_found(self, file_service):
        with pytest.raises(NotFoundError) as exc_info:
            file_service.filename_for("../../x", "png")
        assert exc_info.value.message == NotFoundError.MESSAGE
        assert exc_info.value.cause == "malformed"


class TestWriteAndRead:

    @pytest.mark.asyncio
    async def test_write_then_read(self, file_service, png_bytes):
        image_id = new_image_id()
        path = await file_service.write(image_id, "png", png_bytes)

        assert path.read_bytes() == png_bytes
        assert await file_service.exists(image_id, "png")
        assert await file_service.size_of(image_id, "png") == len(png_bytes)

        chunks = [c async for c in file_service.read(image_id, "png", chunk_size=64)]
        assert b"".join(chunks) == png_bytes
        assert len(chunks) > 1
        assert all(len(c) <= 64 for c in chunks)

    @pytest.mark.asyncio
    async def test_open_stream_reports_size_and_streams(self, file_service, png_bytes):
        image_id = new_image_id()
        await file_service.write(image_id, "png", png_bytes)

        opened = await file_service.open_stream(image_id, "png", chunk_size=64)
        assert opened.size == len(png_bytes)
        assert b"".join([c async for c in opened.chunks]) == png_bytes

    @pytest.mark.asyncio
    async def test_open_stream_missing_file(self, file_service):
        assert await file_service.open_stream(new_image_id(), "png") is None

    @pytest.mark.asyncio
    async def test_no_temp_files_after_write(self, file_service, png_bytes):
        await file_service.write(new_image_id(), "png", png_bytes)
        leftovers = [p for p in file_service.storage_root.iterdir() if p.name.startswith(TEMP_PREFIX)]
        assert leftovers == []

    @pytest.mark.asyncio
    async def test_failed_replace_cleans_up(self, file_service, png_bytes):
        image_id = new_image_id()
        with patch(
            "imgbed.services.file_service.os.replace",
            side_effect=OSError("No space left on device"),
        ):
            with pytest.raises(FileStorageError):
                await file_service.write(image_id, "png", png_bytes)

        assert list(file_service.storage_root.iterdir()) == []
        assert not await file_service.exists(image_id, "png")

    @pytest.mark.asyncio
    async def test_missing_file(self, file_service):
        image_id = new_image_id()
        assert not await file_service.exists(image_id, "png")
        assert await file_service.size_of(image_id, "png") is None


class TestRemoval:

    @pytest.mark.asyncio
    async def test_delete_reports_removal(self, file_service, png_bytes):
        image_id = new_image_id()
        await file_service.write(image_id, "png", png_bytes)

        assert await file_service.delete(image_id, "png") is True
        assert not await file_service.exists(image_id, "png")
        assert await file_service.delete(image_id, "png") is False

    @pytest.mark.asyncio
    async def test_cleanup_missing_file_does_not_raise(self, file_service):
        await file_service.cleanup_file(file_service.storage_root / "gone.png")

    @pytest.mark.asyncio
    async def test_cleanup_removes_file(self, file_service, png_bytes):
        path = await file_service.write(new_image_id(), "png", png_bytes)
        await file_service.cleanup_file(path)
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_is_writable(self, file_service):
        assert await file_service.is_writable()
