"""
ImgBed Backend — Image Ledger SQLAlchemy Model
================================================

What:  ORM model representing the `images` table: one row per stored file.
How:   Inherits from SQLAlchemy's DeclarativeBase; Alembic reads this for migrations.
Who:   Used by the ledger service for insert/lookup/soft-delete.

Lifecycle:
    1. Inserted after the file has been durably written to the storage root
    2. Never updated in place except for the soft-delete flag and updated_at
    3. Never physically deleted; is_deleted=True keeps the audit trail
"""

from datetime import datetime, timezone

from sqlalchemy import BigInteger, Boolean, DateTime, Index, Integer, String, false
from sqlalchemy.orm import Mapped, mapped_column

from imgbed.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ImageRecord(Base):
    """
    Metadata for one stored image.

    `id` is the public handle and the only input to `stored_filename`.
    Size, dimensions and format always describe the bytes on disk, never
    the values a client declared.

    Query Patterns:
        - Public retrieval: WHERE id = :id AND is_deleted = false
        - Admin preview:    WHERE id = :id
    """

    __tablename__ = "images"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        comment="Random UUID (lowercase, hyphenated); public handle, never reused",
    )

    original_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        default="",
        comment="Client-supplied filename, informational only",
    )

    stored_filename: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        comment="<id>.<format>; the only value used to build the on-disk path",
    )

    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    width: Mapped[int] = mapped_column(Integer, nullable=False)
    height: Mapped[int] = mapped_column(Integer, nullable=False)

    format: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="Canonical extension of the stored file (jpg, png, webp, ...)",
    )

    is_transcoded: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    is_public: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )

    # ── Provenance (moderation/audit only) ────────────────────────────────
    uploaded_by: Mapped[str] = mapped_column(String(100), nullable=False, default="guest")
    source_ip: Mapped[str] = mapped_column(String(64), nullable=False, default="")

    is_deleted: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
        comment="Soft-delete marker; row is kept after the file is removed",
    )

    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    __table_args__ = (
        Index("idx_images_is_deleted", "is_deleted"),
        Index("idx_images_uploaded_at", uploaded_at.desc()),
    )

    def __repr__(self) -> str:
        return (
            f"<ImageRecord(id={self.id}, stored_filename='{self.stored_filename}', "
            f"is_deleted={self.is_deleted})>"
        )
