"""Create images table

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

What:  Creates the `images` ledger table: one row per stored file.
How:   Portable column types; ids are text UUIDs generated by the app, not
       the database, so the same migration runs on PostgreSQL and SQLite.

Rollback: downgrade() drops the table (all image metadata is lost; files
on disk are left untouched).
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "images",
        sa.Column(
            "id",
            sa.String(36),
            nullable=False,
            comment="Random UUID (lowercase, hyphenated); public handle, never reused",
        ),
        sa.Column("original_name", sa.String(255), nullable=False, server_default=sa.text("''")),
        sa.Column(
            "stored_filename",
            sa.String(64),
            nullable=False,
            comment="<id>.<format>; the only value used to build the on-disk path",
        ),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("width", sa.Integer(), nullable=False),
        sa.Column("height", sa.Integer(), nullable=False),
        sa.Column(
            "format",
            sa.String(16),
            nullable=False,
            comment="Canonical extension of the stored file (jpg, png, webp, ...)",
        ),
        sa.Column("is_transcoded", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("uploaded_by", sa.String(100), nullable=False, server_default=sa.text("'guest'")),
        sa.Column("source_ip", sa.String(64), nullable=False, server_default=sa.text("''")),
        sa.Column(
            "is_deleted",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
            comment="Soft-delete marker; row is kept after the file is removed",
        ),
        sa.Column(
            "uploaded_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("stored_filename"),
    )

    # Public retrieval filters on is_deleted; admin listings sort by upload time
    op.create_index("idx_images_is_deleted", "images", ["is_deleted"])
    op.create_index("idx_images_uploaded_at", "images", [sa.text("uploaded_at DESC")])


def downgrade() -> None:
    op.drop_index("idx_images_uploaded_at", table_name="images")
    op.drop_index("idx_images_is_deleted", table_name="images")
    op.drop_table("images")
