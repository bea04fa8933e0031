"""
ImgBed Backend — Image Format/Transform Engine
================================================

What:  Decodes uploads, reports intrinsic format and dimensions, and
       re-encodes to a target format (lossy at a quality, or lossless).
How:   Pillow does all decoding and encoding. The primitives are plain
       synchronous functions; `process_upload` runs them in a worker thread
       so CPU-bound codec work never blocks the event loop.
Who:   UploadService, before anything is written to disk or the ledger.

Pipeline (transform):
    1. Decode → ImageInfo (failure → UnsupportedOrCorruptImageError)
    2. Animated container and preserve_animated → original bytes unchanged
    3. Otherwise re-encode (lossy `compress` or `convert_lossless`)
    4. Decode the new buffer again; that ImageInfo is what gets recorded

The encode path writes a single frame, so animated GIF/WebP/APNG input
would lose its animation if it were re-encoded.
"""

import asyncio
import logging
from dataclasses import dataclass
from io import BytesIO

from PIL import Image, ImageOps, UnidentifiedImageError

from imgbed.exceptions import UnsupportedOrCorruptImageError, ValidationError

logger = logging.getLogger(__name__)

# ── Format Tables ─────────────────────────────────────────────────────────
# Pillow format name → extension recorded in the ledger and used on disk
FORMAT_EXTENSIONS = {
    "JPEG": "jpg",
    "MPO": "jpg",
    "PNG": "png",
    "GIF": "gif",
    "WEBP": "webp",
    "BMP": "bmp",
    "ICO": "ico",
    "TIFF": "tiff",
    "AVIF": "avif",
}

# Requested target format → Pillow encoder name
TARGET_ENCODERS = {
    "webp": "WEBP",
    "jpg": "JPEG",
    "jpeg": "JPEG",
    "png": "PNG",
    "avif": "AVIF",
    "tiff": "TIFF",
    "tif": "TIFF",
    "bmp": "BMP",
}

# Encoders that take a quality setting
LOSSY_ENCODERS = {"JPEG", "WEBP", "AVIF"}

# Encoders without an alpha channel
OPAQUE_ENCODERS = {"JPEG", "BMP"}

# Modes each encoder accepts without conversion
ENCODER_MODES = {
    "JPEG": {"RGB", "L", "CMYK"},
    "BMP": {"RGB", "L", "1"},
    "WEBP": {"RGB", "RGBA"},
    "AVIF": {"RGB", "RGBA"},
    "PNG": {"RGB", "RGBA", "L", "LA", "P", "1", "I", "I;16"},
    "TIFF": {"RGB", "RGBA", "L", "LA", "1", "CMYK"},
}

# Decoders tried on uploads; every other Pillow plugin is refused
ACCEPTED_DECODERS = tuple(FORMAT_EXTENSIONS)

# Containers treated as animated regardless of frame count
ANIMATED_CONTAINERS = {"GIF"}

# Multi-frame containers whose extra frames are not animation (MPO: stereo/depth JPEG)
STILL_MULTIFRAME = {"MPO"}

# Decode failures Pillow raises on untrusted input
DECODE_ERRORS = (
    UnidentifiedImageError,
    Image.DecompressionBombError,
    OSError,
    ValueError,
    SyntaxError,
    EOFError,
)


@dataclass(frozen=True)
class ImageInfo:
    format: str
    width: int
    height: int
    size: int
    animated: bool = False


@dataclass(frozen=True)
class TransformOptions:
    """
    Options for one transform.

    quality is only used by lossy encoders; lossless=True selects
    `convert_lossless` instead of `compress`.
    """
    target_format: str = "webp"
    quality: int = 80
    preserve_animated: bool = True
    lossless: bool = False

    def __post_init__(self) -> None:
        if self.target_format.lower() not in TARGET_ENCODERS:
            raise ValidationError(
                message=f"Target format '{self.target_format}' is not supported.",
                field="target_format",
                context={"allowed": sorted(TARGET_ENCODERS)},
            )
        if not 1 <= self.quality <= 100:
            raise ValidationError(
                message="Quality must be between 1 and 100.",
                field="quality",
                context={"quality": self.quality},
            )


@dataclass(frozen=True)
class TransformResult:
    content: bytes
    info: ImageInfo
    transcoded: bool


def extension_for(pil_format: str) -> str:
    """Canonical extension for a Pillow format name (unknown → lowercased name)."""
    return FORMAT_EXTENSIONS.get(pil_format, pil_format.lower())


def _open(content: bytes) -> Image.Image:
    try:
        img = Image.open(BytesIO(content), formats=ACCEPTED_DECODERS)
        img.load()
    except DECODE_ERRORS as e:
        logger.info("Rejected undecodable image (%d bytes): %s", len(content), e)
        raise UnsupportedOrCorruptImageError(
            context={"error": str(e), "size": len(content)}
        ) from e
    return img


def _is_animated(img: Image.Image) -> bool:
    if img.format in STILL_MULTIFRAME:
        return False
    return img.format in ANIMATED_CONTAINERS or bool(getattr(img, "is_animated", False))


def _has_alpha(img: Image.Image) -> bool:
    return img.mode in ("RGBA", "LA", "PA", "RGBa", "La") or "transparency" in img.info


def _prepare_for(img: Image.Image, encoder: str) -> Image.Image:
    """Convert to a pixel mode the encoder accepts, keeping alpha where it can."""
    if img.mode in ENCODER_MODES.get(encoder, {"RGB", "RGBA"}):
        return img
    if encoder not in OPAQUE_ENCODERS and _has_alpha(img):
        return img.convert("RGBA")
    return img.convert("RGB")


def inspect(content: bytes) -> ImageInfo:
    """
    Decode `content` and describe it.

    Raises:
        UnsupportedOrCorruptImageError: the buffer is not a decodable image
    """
    with _open(content) as img:
        return ImageInfo(
            format=extension_for(img.format or ""),
            width=img.width,
            height=img.height,
            size=len(content),
            animated=_is_animated(img),
        )


def _encode(content: bytes, target_format: str, **params) -> bytes:
    encoder = TARGET_ENCODERS[target_format.lower()]
    with _open(content) as img:
        # Bake EXIF orientation into the pixels; the re-encode drops the tag
        frame = ImageOps.exif_transpose(img)
        frame = _prepare_for(frame, encoder)
        buffer = BytesIO()
        try:
            frame.save(buffer, format=encoder, **params)
        except (OSError, ValueError, KeyError) as e:
            raise UnsupportedOrCorruptImageError(
                message=f"The image could not be converted to {target_format}",
                context={"error": str(e), "encoder": encoder},
            ) from e
    return buffer.getvalue()


def compress(content: bytes, target_format: str = "webp", quality: int = 80) -> bytes:
    """Lossy re-encode. Quality is ignored by encoders that do not take one."""
    encoder = TARGET_ENCODERS.get(target_format.lower())
    if encoder in LOSSY_ENCODERS:
        return _encode(content, target_format, quality=quality)
    return _encode(content, target_format)


def convert_lossless(content: bytes, target_format: str = "webp") -> bytes:
    """Re-encode with no quality loss."""
    encoder = TARGET_ENCODERS.get(target_format.lower())
    if encoder == "WEBP":
        return _encode(content, target_format, lossless=True, quality=100)
    if encoder == "AVIF":
        return _encode(content, target_format, quality=100)
    if encoder == "JPEG":
        raise ValidationError(
            message="JPEG has no lossless mode; choose webp or png.",
            field="target_format",
        )
    return _encode(content, target_format)


def transform(content: bytes, options: TransformOptions) -> TransformResult:
    """
    Run the full pipeline for one upload buffer.

    Returns the bytes to persist with an ImageInfo derived from exactly
    those bytes.
    """
    original = inspect(content)

    if options.preserve_animated and original.animated:
        logger.debug("Keeping animated %s as uploaded", original.format)
        return TransformResult(content=content, info=original, transcoded=False)

    if options.lossless:
        encoded = convert_lossless(content, options.target_format)
    else:
        encoded = compress(content, options.target_format, options.quality)

    info = inspect(encoded)
    logger.debug(
        "Transcoded %s (%d bytes) → %s (%d bytes)",
        original.format,
        original.size,
        info.format,
        info.size,
    )
    return TransformResult(content=encoded, info=info, transcoded=True)


async def process_upload(
    content: bytes,
    options: TransformOptions,
    convert: bool = True,
) -> TransformResult:
    """
    Async entry point: inspect-only when `convert` is False, otherwise the
    full transform. Codec work runs in a worker thread.
    """
    if not convert:
        info = await asyncio.to_thread(inspect, content)
        return TransformResult(content=content, info=info, transcoded=False)
    return await asyncio.to_thread(transform, content, options)
