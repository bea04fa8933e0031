"""
ImgBed Backend — Format/Transform Engine Tests
================================================

What:  Pillow-backed inspect/compress/convert behavior on real encoded images.
How:   Fixture images are generated with Pillow at test time; nothing is
       mocked, so these exercise the actual codecs.
"""

from io import BytesIO

import pytest
from PIL import Image

from conftest import decode
from imgbed.exceptions import UnsupportedOrCorruptImageError, ValidationError
from imgbed.services.image_service import (
    TransformOptions,
    compress,
    convert_lossless,
    extension_for,
    inspect,
    process_upload,
    transform,
)


def _mpo_bytes() -> bytes:
    """Two-picture MPO, as written by stereo and depth cameras."""
    left = Image.new("RGB", (48, 32), (200, 10, 10))
    right = Image.new("RGB", (48, 32), (10, 10, 200))
    buffer = BytesIO()
    left.save(buffer, format="MPO", save_all=True, append_images=[right])
    return buffer.getvalue()


class TestInspect:

    def test_png_dimensions_and_format(self, png_bytes):
        info = inspect(png_bytes)
        assert info.format == "png"
        assert (info.width, info.height) == (100, 50)
        assert info.size == len(png_bytes)
        assert info.animated is False

    def test_jpeg_reports_jpg(self, jpeg_bytes):
        assert inspect(jpeg_bytes).format == "jpg"

    def test_gif_is_animated(self, gif_bytes):
        info = inspect(gif_bytes)
        assert info.format == "gif"
        assert info.animated is True

    def test_corrupt_raises(self, corrupt_bytes):
        with pytest.raises(UnsupportedOrCorruptImageError):
            inspect(corrupt_bytes)

    def test_text_raises(self):
        with pytest.raises(UnsupportedOrCorruptImageError):
            inspect(b"<svg xmlns='http://www.w3.org/2000/svg'></svg>")

    def test_empty_raises(self):
        with pytest.raises(UnsupportedOrCorruptImageError):
            inspect(b"")

    def test_extension_for_unknown_format(self):
        assert extension_for("MPO") == "jpg"
        assert extension_for("PPM") == "ppm"

    @pytest.mark.parametrize("fmt", ["PPM", "PCX", "TGA", "SGI"])
    def test_unlisted_decoders_refused(self, fmt):
        buffer = BytesIO()
        Image.new("RGB", (10, 10), (1, 2, 3)).save(buffer, format=fmt)
        with pytest.raises(UnsupportedOrCorruptImageError):
            inspect(buffer.getvalue())

    def test_multi_picture_jpeg_is_not_animated(self):
        info = inspect(_mpo_bytes())
        assert info.format == "jpg"
        assert info.animated is False


class TestCompress:

    def test_png_to_webp_keeps_dimensions(self, png_bytes):
        out = compress(png_bytes, "webp", 80)
        img = decode(out)
        assert img.format == "WEBP"
        assert img.size == (100, 50)

    def test_png_to_avif(self, png_bytes):
        info = inspect(compress(png_bytes, "avif", 60))
        assert info.format == "avif"
        assert (info.width, info.height) == (100, 50)

    def test_lower_quality_is_smaller(self):
        buffer = BytesIO()
        Image.effect_noise((256, 256), 64).convert("RGB").save(buffer, format="PNG")
        photo = buffer.getvalue()
        high = compress(photo, "jpg", 95)
        low = compress(photo, "jpg", 10)
        assert len(low) < len(high)

    def test_alpha_survives_webp(self, rgba_png_bytes):
        img = decode(compress(rgba_png_bytes, "webp", 80))
        assert img.mode == "RGBA"

    def test_alpha_dropped_for_jpeg(self, rgba_png_bytes):
        img = decode(compress(rgba_png_bytes, "jpg", 80))
        assert img.format == "JPEG"
        assert img.mode == "RGB"


class TestConvertLossless:

    def test_webp_lossless_pixels_identical(self, png_bytes):
        out = convert_lossless(png_bytes, "webp")
        original = decode(png_bytes).convert("RGB")
        converted = decode(out).convert("RGB")
        assert converted.size == original.size
        assert converted.tobytes() == original.tobytes()

    def test_jpeg_has_no_lossless_mode(self, png_bytes):
        with pytest.raises(ValidationError):
            convert_lossless(png_bytes, "jpg")


class TestTransformOptions:

    @pytest.mark.parametrize("quality", [0, 101, -5])
    def test_quality_out_of_range(self, quality):
        with pytest.raises(ValidationError):
            TransformOptions(quality=quality)

    def test_unknown_target(self):
        with pytest.raises(ValidationError):
            TransformOptions(target_format="svg")


class TestTransform:

    def test_static_png_transcoded_to_webp(self, png_bytes):
        result = transform(png_bytes, TransformOptions(target_format="webp", quality=80))
        assert result.transcoded is True
        assert result.info.format == "webp"
        assert (result.info.width, result.info.height) == (100, 50)
        assert result.info.size == len(result.content)

    def test_animated_gif_preserved_byte_for_byte(self, gif_bytes):
        result = transform(gif_bytes, TransformOptions())
        assert result.transcoded is False
        assert result.content == gif_bytes
        assert result.info.format == "gif"

    def test_gif_flattened_when_not_preserving(self, gif_bytes):
        result = transform(gif_bytes, TransformOptions(preserve_animated=False))
        assert result.transcoded is True
        assert result.info.format == "webp"
        assert result.info.animated is False

    def test_multi_picture_jpeg_is_transcoded(self):
        result = transform(_mpo_bytes(), TransformOptions(target_format="webp"))
        assert result.transcoded is True
        assert result.info.format == "webp"
        assert (result.info.width, result.info.height) == (48, 32)

    def test_lossless_option(self, png_bytes):
        result = transform(png_bytes, TransformOptions(lossless=True))
        assert decode(result.content).convert("RGB").tobytes() == \
            decode(png_bytes).convert("RGB").tobytes()

    def test_corrupt_input(self, corrupt_bytes):
        with pytest.raises(UnsupportedOrCorruptImageError):
            transform(corrupt_bytes, TransformOptions())


class TestProcessUpload:

    @pytest.mark.asyncio
    async def test_convert_false_keeps_bytes(self, png_bytes):
        result = await process_upload(png_bytes, TransformOptions(), convert=False)
        assert result.content == png_bytes
        assert result.transcoded is False
        assert result.info.format == "png"

    @pytest.mark.asyncio
    async def test_convert_true_transcodes(self, jpeg_bytes):
        result = await process_upload(jpeg_bytes, TransformOptions(), convert=True)
        assert result.info.format == "webp"
        assert (result.info.width, result.info.height) == (80, 60)

    @pytest.mark.asyncio
    async def test_convert_false_still_rejects_garbage(self, corrupt_bytes):
        with pytest.raises(UnsupportedOrCorruptImageError):
            await process_upload(corrupt_bytes, TransformOptions(), convert=False)
