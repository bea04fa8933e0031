"""
ImgBed Backend — Image Identifier Generator
=============================================

What:  Produces the opaque public handle for every stored image.
How:   uuid4 (122 random bits from the OS CSPRNG) rendered as the canonical
       lowercase hyphenated string. No counter and no lock, so concurrent
       requests and worker threads never coordinate.
Who:   UploadService when a new image is persisted; FileService and the
       retrieval gate to check the shape of caller-supplied ids.
"""

import re
import uuid

# Hex digits and hyphens only; the 36-char cap matches a canonical UUID
IMAGE_ID_PATTERN = r"^[a-f0-9-]{1,36}$"
_IMAGE_ID_RE = re.compile(IMAGE_ID_PATTERN)


def new_image_id() -> str:
    """Return a fresh identifier, e.g. '3f0c9a9e-5b1d-4c1e-9a57-0d6a9f2f7b11'."""
    return str(uuid.uuid4())


def is_valid_image_id(value: str) -> bool:
    return bool(_IMAGE_ID_RE.fullmatch(value))
