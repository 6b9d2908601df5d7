"""Variant pipeline schema — projects, Bible assets, scenes, image_variants

Revision ID: 0001
Revises: None
Create Date: 2026-10-18 09:00:00
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TABLE_KW = {"mysql_charset": "utf8mb4", "mysql_collate": "utf8mb4_unicode_ci"}


def _approval_slice() -> list[sa.Column]:
    return [
        sa.Column("approved_image_url", sa.String(1024), nullable=True),
        sa.Column("approved_image_path", sa.String(1024), nullable=True),
        sa.Column("approved_at", sa.DateTime, nullable=True),
        sa.Column("image_status", sa.String(20), nullable=False, server_default="pending",
                  comment="pending | generating | ready | approved | failed"),
        sa.Column("selected_model", sa.String(100), nullable=True),
    ]


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime, nullable=True, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=True, server_default=sa.func.now()),
    ]


def _project_fk() -> sa.Column:
    return sa.Column(
        "project_id", sa.String(36), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False,
    )


def upgrade() -> None:
    # --- projects ---
    op.create_table(
        "projects",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("visual_style", sa.Text, nullable=True),
        *_timestamps(),
        **TABLE_KW,
    )

    # --- Bible assets ---
    op.create_table(
        "characters",
        sa.Column("id", sa.String(36), primary_key=True),
        _project_fk(),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("visual_dna", sa.Text, nullable=True),
        sa.Column("shot_images", sa.JSON, nullable=True),
        *_approval_slice(),
        *_timestamps(),
        **TABLE_KW,
    )
    for table in ("locations", "props"):
        op.create_table(
            table,
            sa.Column("id", sa.String(36), primary_key=True),
            _project_fk(),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("description", sa.Text, nullable=True),
            sa.Column("prompt", sa.Text, nullable=True),
            *_approval_slice(),
            *_timestamps(),
            **TABLE_KW,
        )

    # --- scenes ---
    op.create_table(
        "scenes",
        sa.Column("id", sa.String(36), primary_key=True),
        _project_fk(),
        sa.Column("sequence_order", sa.Integer, nullable=False, server_default="0"),
        sa.Column("action", sa.Text, nullable=True),
        sa.Column("shot_type", sa.String(50), nullable=True),
        sa.Column("wardrobe", sa.Text, nullable=True),
        sa.Column("composition", sa.Text, nullable=True),
        sa.Column("atmosphere", sa.Text, nullable=True),
        sa.Column("time_of_day", sa.String(50), nullable=True),
        sa.Column("prompt_visual", sa.Text, nullable=True),
        sa.Column("location_id", sa.String(36), nullable=True),
        sa.Column("character_ids", sa.JSON, nullable=True),
        sa.Column("prop_ids", sa.JSON, nullable=True),
        *_approval_slice(),
        *_timestamps(),
        **TABLE_KW,
    )
    for table in ("characters", "locations", "props", "scenes"):
        op.create_index(f"ix_{table}_project_id", table, ["project_id"])

    # --- image_variants ---
    op.create_table(
        "image_variants",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("asset_type", sa.String(20), nullable=False, comment="character | location | prop | scene"),
        sa.Column("asset_id", sa.String(36), nullable=False),
        sa.Column("sub_type", sa.String(20), nullable=True, comment="portrait | three_quarter | full_body"),
        sa.Column("model", sa.String(100), nullable=False),
        sa.Column("prompt", sa.Text, nullable=False),
        sa.Column("image_url", sa.String(1024), nullable=False, server_default=""),
        sa.Column("storage_path", sa.String(1024), nullable=False, server_default=""),
        sa.Column("status", sa.String(20), nullable=False, server_default="generating",
                  comment="generating | ready | failed | selected"),
        sa.Column("is_selected", sa.Boolean, nullable=False, server_default="0"),
        sa.Column("generation_order", sa.Integer, nullable=False, server_default="0"),
        sa.Column("parent_variant_id", sa.String(36), nullable=True),
        sa.Column("job_id", sa.String(255), nullable=True),
        sa.Column("reference_images", sa.JSON, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
        **TABLE_KW,
    )
    op.create_index("ix_image_variants_key", "image_variants", ["asset_type", "asset_id", "sub_type"])
    op.create_index("ix_image_variants_status", "image_variants", ["status"])
    op.create_index("ix_image_variants_job_id", "image_variants", ["job_id"])


def downgrade() -> None:
    op.drop_index("ix_image_variants_job_id", table_name="image_variants")
    op.drop_index("ix_image_variants_status", table_name="image_variants")
    op.drop_index("ix_image_variants_key", table_name="image_variants")
    op.drop_table("image_variants")

    for table in ("scenes", "props", "locations", "characters"):
        op.drop_index(f"ix_{table}_project_id", table_name=table)
        op.drop_table(table)
    op.drop_table("projects")
