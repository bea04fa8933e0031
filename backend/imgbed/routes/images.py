"""
ImgBed Backend — Image Retrieval and Administration Routes
============================================================

What:  Serves stored images and exposes administrative metadata/delete.
How:   Thin handlers over RetrievalService and UploadService; bodies are
       streamed in chunks with StreamingResponse.
Who:   Browsers (<img src="/i/...">), the admin console (preview, delete).

Endpoints:
    GET    /i/{filename}                public, cacheable, live images only
    GET    /api/images/preview/{path}   credential required, includes deleted
    GET    /api/images/{image_id}       credential required, metadata view
    DELETE /api/images/{image_id}       credential required, soft delete
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from imgbed.database import get_db_session
from imgbed.dependencies import get_ledger, get_retrieval_service, get_upload_service
from imgbed.schemas.image import DeleteResponse, ErrorResponse, ImageMetadataResponse
from imgbed.services.auth_service import Identity, require_identity
from imgbed.services.ledger import ImageLedger
from imgbed.services.retrieval_service import RetrievalService, ServedImage
from imgbed.services.upload_service import UploadService

logger = logging.getLogger(__name__)

public_router = APIRouter(tags=["Images"])
router = APIRouter(prefix="/api/images", tags=["Images"])

NOT_FOUND = {404: {"description": "Image not found", "model": ErrorResponse}}
UNAUTHORIZED = {401: {"description": "Missing, invalid or expired credential", "model": ErrorResponse}}


def _stream(served: ServedImage) -> StreamingResponse:
    return StreamingResponse(
        served.body,
        media_type=served.media_type,
        headers=served.headers,
    )


@public_router.get(
    "/i/{filename:path}",
    response_class=StreamingResponse,
    responses={200: {"content": {"image/*": {}}}, **NOT_FOUND},
    summary="Fetch a public image",
)
async def get_public_image(
    filename: str,
    db: AsyncSession = Depends(get_db_session),
    service: RetrievalService = Depends(get_retrieval_service),
) -> StreamingResponse:
    served = await service.serve(db, filename, admin=False)
    return _stream(served)


@router.get(
    "/preview/{path:path}",
    response_class=StreamingResponse,
    responses={200: {"content": {"image/*": {}}}, **UNAUTHORIZED, **NOT_FOUND},
    summary="Preview any stored image",
    description=(
        "Administrative preview. Accepts the credential as a Bearer header or "
        "a `token` query parameter so it works in <img> tags. Resolves "
        "soft-deleted images and is never cached."
    ),
)
async def preview_image(
    path: str,
    identity: Identity = Depends(require_identity),
    db: AsyncSession = Depends(get_db_session),
    service: RetrievalService = Depends(get_retrieval_service),
) -> StreamingResponse:
    served = await service.serve(db, path, admin=True)
    logger.debug("Preview of %s by %s", served.record.stored_filename, identity.subject)
    return _stream(served)


@router.get(
    "/{image_id}",
    response_model=ImageMetadataResponse,
    responses={**UNAUTHORIZED, **NOT_FOUND},
    summary="Image metadata",
)
async def get_image_metadata(
    image_id: str,
    identity: Identity = Depends(require_identity),
    db: AsyncSession = Depends(get_db_session),
    ledger: ImageLedger = Depends(get_ledger),
) -> ImageMetadataResponse:
    record = await ledger.get(db, image_id.lower(), include_deleted=True)
    return ImageMetadataResponse.from_record(record)


@router.delete(
    "/{image_id}",
    response_model=DeleteResponse,
    responses={**UNAUTHORIZED, **NOT_FOUND},
    summary="Soft-delete an image",
)
async def delete_image(
    image_id: str,
    identity: Identity = Depends(require_identity),
    db: AsyncSession = Depends(get_db_session),
    service: UploadService = Depends(get_upload_service),
) -> DeleteResponse:
    result = await service.delete_image(db, image_id)
    logger.info("Image %s deleted by %s", result.id, identity.subject)
    return result
