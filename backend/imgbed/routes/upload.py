"""
ImgBed Backend — Upload Route Handler
=======================================

What:  POST /api/upload, the only way images enter the host.
How:   Reads the multipart file, resolves per-upload options against the
       deployment defaults, and delegates to UploadService.
Who:   The web uploader, paste-to-upload integrations, and scripts.

Request Flow:
    1. Client sends multipart/form-data with a `file` (or `image`) field
    2. Optional credential → private upload owned by the token subject;
       no credential → public guest upload (if guest uploads are enabled)
    3. UploadService: validate → transform → write → record
    4. 201 Created with UploadResponse

Form fields:
    convert   re-encode to the configured target format (default: settings)
    quality   1-100 lossy quality (default: settings)
    lossless  lossless re-encode instead of lossy
"""

import logging
from typing import Optional

import pydantic
from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from imgbed.config import Settings
from imgbed.database import get_db_session
from imgbed.dependencies import get_settings, get_upload_service
from imgbed.exceptions import UnauthorizedError, ValidationError
from imgbed.schemas.image import ErrorResponse, UploadOptions, UploadResponse
from imgbed.services.auth_service import Identity, optional_identity
from imgbed.services.upload_service import UploadService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Upload"])

# Width of ImageRecord.source_ip
SOURCE_IP_MAX_LENGTH = 64


def _client_ip(request: Request) -> str:
    # Peer address only, as RateLimitMiddleware sees it; proxies set it via
    # uvicorn --proxy-headers/--forwarded-allow-ips
    host = request.client.host if request.client else ""
    return host[:SOURCE_IP_MAX_LENGTH]


@router.post(
    "/upload",
    status_code=201,
    response_model=UploadResponse,
    responses={
        201: {"description": "Image stored", "model": UploadResponse},
        400: {"description": "Invalid, unsupported or corrupt upload", "model": ErrorResponse},
        401: {"description": "Invalid credential, or guest uploads disabled", "model": ErrorResponse},
        429: {"description": "Rate limit exceeded", "model": ErrorResponse},
    },
    summary="Upload an image",
    description=(
        "Upload an image (jpeg, png, gif, webp, avif, bmp, ico, apng, tiff). "
        "Static images are re-encoded to the configured target format unless "
        "`convert` is false; animated images are stored as uploaded."
    ),
)
async def upload_image(
    request: Request,
    file: Optional[UploadFile] = File(None, description="Image file"),
    image: Optional[UploadFile] = File(None, description="Alias of `file`"),
    convert: Optional[bool] = Form(None),
    quality: Optional[int] = Form(None),
    lossless: bool = Form(False),
    identity: Optional[Identity] = Depends(optional_identity),
    db: AsyncSession = Depends(get_db_session),
    service: UploadService = Depends(get_upload_service),
    config: Settings = Depends(get_settings),
) -> UploadResponse:
    upload = file or image
    if upload is None:
        raise ValidationError(message="No file was uploaded.", field="file")

    if identity is None and not config.allow_guest_upload:
        raise UnauthorizedError(reason="missing")

    try:
        options = UploadOptions(
            original_name=upload.filename or "",
            convert=config.convert_uploads if convert is None else convert,
            quality=config.default_quality if quality is None else quality,
            lossless=lossless,
            uploaded_by=identity.subject if identity else config.guest_name,
            source_ip=_client_ip(request),
            is_public=identity is None,
        )
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        field = str(first["loc"][0]) if first.get("loc") else None
        raise ValidationError(
            message=f"Invalid upload option: {first['msg']}",
            field=field,
        ) from e

    try:
        content = await upload.read()
        logger.info(
            "Received upload: filename=%s, size=%d bytes, by=%s",
            options.original_name,
            len(content),
            options.uploaded_by,
        )
        return await service.upload(db, content, options)
    finally:
        await upload.close()
