"""
ImgBed Backend — Pydantic Schemas
===================================

What:  Typed records and API contracts for the upload/retrieval path.
How:   ImageRecordSchema is the ledger boundary type: every ORM row is
       validated into it before use (deserialize-or-fail). Response models
       control exactly which fields leave the service.
Who:   Ledger and upload services; route handlers as response models.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from imgbed.services.identifiers import IMAGE_ID_PATTERN


# ══════════════════════════════════════════════════════════════════════════
# Ledger Records
# ══════════════════════════════════════════════════════════════════════════


class ImageRecordSchema(BaseModel):
    """
    Validated view of one `images` row.

    A row whose stored filename is not `<id>.<format>` is an integrity
    failure and is rejected here instead of being served.
    """
    id: str = Field(min_length=1, max_length=36, pattern=IMAGE_ID_PATTERN)
    original_name: str
    stored_filename: str
    size_bytes: int = Field(ge=0)
    width: int = Field(ge=0)
    height: int = Field(ge=0)
    format: str = Field(pattern=r"^\w+$")
    is_transcoded: bool
    is_public: bool
    uploaded_by: str
    source_ip: str
    is_deleted: bool
    uploaded_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True, "frozen": True}

    @model_validator(mode="after")
    def check_stored_filename(self) -> "ImageRecordSchema":
        expected = f"{self.id}.{self.format}"
        if self.stored_filename != expected:
            raise ValueError(
                f"stored_filename '{self.stored_filename}' does not match '{expected}'"
            )
        return self


# ══════════════════════════════════════════════════════════════════════════
# Upload Inputs
# ══════════════════════════════════════════════════════════════════════════


class UploadOptions(BaseModel):
    """
    Per-upload settings. `convert` and `quality` default to the
    deployment-wide values when the caller leaves them unset.
    """
    original_name: str = Field(default="unknown", max_length=255)
    convert: bool = True
    quality: int = Field(default=80, ge=1, le=100)
    lossless: bool = False
    uploaded_by: str = Field(default="guest", max_length=100)
    source_ip: str = Field(default="", max_length=64)
    is_public: bool = True

    @field_validator("original_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip() or "unknown"


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class UploadResponse(BaseModel):
    """
    Returned by POST /api/upload with HTTP 201. Values describe the stored
    file, so `size` equals the byte length served back from `url`.
    """
    id: str = Field(description="Image identifier (UUID)")
    filename: str = Field(description="Stored filename: <id>.<ext>")
    format: str = Field(description="Format of the stored file")
    size: int = Field(description="Stored file size in bytes")
    width: int
    height: int
    is_transcoded: bool = Field(description="Whether the upload was re-encoded")
    url: str = Field(description="Public URL: /i/<id>.<ext>")


class ImageMetadataResponse(BaseModel):
    """Administrative metadata view, including soft-deleted images."""
    id: str
    original_name: str
    filename: str
    format: str
    size: int
    width: int
    height: int
    is_transcoded: bool
    is_public: bool
    is_deleted: bool
    uploaded_by: str
    source_ip: str
    uploaded_at: datetime
    updated_at: datetime
    url: str

    @classmethod
    def from_record(cls, record: ImageRecordSchema) -> "ImageMetadataResponse":
        return cls(
            id=record.id,
            original_name=record.original_name,
            filename=record.stored_filename,
            format=record.format,
            size=record.size_bytes,
            width=record.width,
            height=record.height,
            is_transcoded=record.is_transcoded,
            is_public=record.is_public,
            is_deleted=record.is_deleted,
            uploaded_by=record.uploaded_by,
            source_ip=record.source_ip,
            uploaded_at=record.uploaded_at,
            updated_at=record.updated_at,
            url=f"/i/{record.stored_filename}",
        )


class DeleteResponse(BaseModel):
    id: str
    deleted: bool = True
    file_removed: bool = Field(description="False if the file was already missing")


class ErrorResponse(BaseModel):
    """
    Standardized error body for all API errors.

    Example:
        {
            "error": "not_found",
            "message": "Image not found",
            "request_id": "1a2b3c4d"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str
    database: str = Field(description="connected or disconnected")
    storage: str = Field(description="writable or unavailable")
    uptime_seconds: float
