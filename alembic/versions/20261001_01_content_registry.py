"""
Content registry + quota ledger.

- content_items (one row per upload or logical copy)
- content_variants / content_backups (children, cascade on delete)
- storage_records (per-owner quota ledger)
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic.
revision = "20261001_01_content_registry"
down_revision = None
branch_labels = None
depends_on = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")

content_type = sa.Enum("video", "audio", "image", "document", name="content_type")
access_level = sa.Enum("public", "ticket_holders", "private", name="access_level")
content_priority = sa.Enum("normal", "high", name="content_priority")
storage_class = sa.Enum("hot", "cool", "archive", name="storage_class")
processing_status = sa.Enum("pending", "processing", "completed", "failed", name="processing_status")
lifecycle_status = sa.Enum("active", "soft_deleted", "hard_deleted", name="lifecycle_status")


def upgrade() -> None:
    # --- content_items ---
    op.create_table(
        "content_items",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.String(length=128), nullable=False),
        sa.Column("type", content_type, nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("original_filename", sa.String(length=255), nullable=False),
        sa.Column("access_level", access_level, nullable=False),
        sa.Column("priority", content_priority, nullable=False),
        sa.Column("storage_key", sa.String(length=1024), nullable=False),
        sa.Column("storage_class", storage_class, nullable=False),
        sa.Column("content_hash", sa.String(length=64), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("mime_type", sa.String(length=127), nullable=False),
        sa.Column("extension", sa.String(length=16), nullable=False),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processing_status", processing_status, nullable=False),
        sa.Column("processing_error", sa.String(length=1024), nullable=True),
        sa.Column("lifecycle_status", lifecycle_status, nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("hard_delete_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_duplicate", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("original_content_id", sa.Uuid(), nullable=True),
        sa.Column("width", sa.Integer(), nullable=True),
        sa.Column("height", sa.Integer(), nullable=True),
        sa.Column("duration_seconds", sa.Float(), nullable=True),
        sa.Column("bitrate_bps", sa.BigInteger(), nullable=True),
        sa.Column("sample_rate", sa.Integer(), nullable=True),
        sa.Column("channels", sa.Integer(), nullable=True),
        sa.Column("waveform", JSONType, nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_content_items"),
        sa.CheckConstraint("size_bytes >= 0", name="ck_content_items_size_nonneg"),
        sa.CheckConstraint("length(storage_key) > 0", name="ck_content_items_storage_key_not_blank"),
        sa.CheckConstraint(
            "(is_duplicate = false) OR (original_content_id IS NOT NULL)",
            name="ck_content_items_duplicate_has_original",
        ),
    )
    op.create_index("ix_content_items_owner_id", "content_items", ["owner_id"], unique=False)
    op.create_index("ix_content_items_storage_key", "content_items", ["storage_key"], unique=False)
    op.create_index("ix_content_items_original_content_id", "content_items", ["original_content_id"], unique=False)
    op.create_index("ix_content_items_hash_owner", "content_items", ["content_hash", "owner_id"], unique=False)
    op.create_index("ix_content_items_owner_lifecycle", "content_items", ["owner_id", "lifecycle_status"], unique=False)
    op.create_index("ix_content_items_hard_delete_due", "content_items", ["lifecycle_status", "hard_delete_at"], unique=False)

    # --- content_variants ---
    op.create_table(
        "content_variants",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("content_id", sa.Uuid(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("label", sa.String(length=32), nullable=False),
        sa.Column("kind", sa.String(length=32), nullable=False),
        sa.Column("storage_key", sa.String(length=1024), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("width", sa.Integer(), nullable=True),
        sa.Column("height", sa.Integer(), nullable=True),
        sa.Column("bitrate_kbps", sa.Integer(), nullable=True),
        sa.Column("mime_type", sa.String(length=127), nullable=True),
        sa.Column("error", sa.String(length=1024), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_content_variants"),
        sa.ForeignKeyConstraint(
            ["content_id"], ["content_items.id"], ondelete="CASCADE",
            name="fk_content_variants_content_id_content_items",
        ),
        sa.CheckConstraint("size_bytes >= 0", name="ck_content_variants_size_nonneg"),
    )
    op.create_index("ix_content_variants_content_id", "content_variants", ["content_id"], unique=False)
    op.create_index("ix_content_variants_storage_key", "content_variants", ["storage_key"], unique=False)
    op.create_index("uq_content_variants_content_label", "content_variants", ["content_id", "label"], unique=True)

    # --- content_backups ---
    op.create_table(
        "content_backups",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("content_id", sa.Uuid(), nullable=False),
        sa.Column("target", sa.String(length=64), nullable=False),
        sa.Column("provider", sa.String(length=32), nullable=False),
        sa.Column("region", sa.String(length=32), nullable=True),
        sa.Column("bucket", sa.String(length=255), nullable=False),
        sa.Column("key", sa.String(length=1024), nullable=False),
        sa.Column("storage_class", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("error", sa.String(length=1024), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_content_backups"),
        sa.ForeignKeyConstraint(
            ["content_id"], ["content_items.id"], ondelete="CASCADE",
            name="fk_content_backups_content_id_content_items",
        ),
    )
    op.create_index("ix_content_backups_content_id", "content_backups", ["content_id"], unique=False)
    op.create_index("uq_content_backups_content_target", "content_backups", ["content_id", "target"], unique=True)

    # --- storage_records ---
    op.create_table(
        "storage_records",
        sa.Column("owner_id", sa.String(length=128), nullable=False),
        sa.Column("quota_bytes", sa.BigInteger(), nullable=False),
        sa.Column("used_bytes", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("reserved_bytes", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reconciled_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("owner_id", name="pk_storage_records"),
        sa.CheckConstraint("used_bytes >= 0", name="ck_storage_records_used_nonneg"),
        sa.CheckConstraint("reserved_bytes >= 0", name="ck_storage_records_reserved_nonneg"),
        sa.CheckConstraint("quota_bytes >= 0", name="ck_storage_records_quota_nonneg"),
    )


def downgrade() -> None:
    op.drop_table("storage_records")
    op.drop_index("uq_content_backups_content_target", table_name="content_backups")
    op.drop_index("ix_content_backups_content_id", table_name="content_backups")
    op.drop_table("content_backups")
    op.drop_index("uq_content_variants_content_label", table_name="content_variants")
    op.drop_index("ix_content_variants_storage_key", table_name="content_variants")
    op.drop_index("ix_content_variants_content_id", table_name="content_variants")
    op.drop_table("content_variants")
    for name in (
        "ix_content_items_hard_delete_due",
        "ix_content_items_owner_lifecycle",
        "ix_content_items_hash_owner",
        "ix_content_items_original_content_id",
        "ix_content_items_storage_key",
        "ix_content_items_owner_id",
    ):
        op.drop_index(name, table_name="content_items")
    op.drop_table("content_items")

    bind = op.get_bind()
    for enum in (lifecycle_status, processing_status, storage_class, content_priority, access_level, content_type):
        enum.drop(bind, checkfirst=True)
