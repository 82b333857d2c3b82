"""Create the sync journal, artifact records and contract tables."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op as alembic_op  # type: ignore[import-untyped]

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None

RAW_SCHEMA = "mirror_raw"
SYNC_STATUS = sa.Enum(
    "Pending", "Processing", "Completed", "Failed", "Skipped", name="sync_status"
)


def _business_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "artifact_id",
            sa.Integer(),
            sa.ForeignKey(f"{RAW_SCHEMA}.artifact_records.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("contract_id", sa.Text(), nullable=False),
        sa.Column("property_no", sa.Integer(), nullable=True),
        sa.Column("room_no", sa.Integer(), nullable=True),
    ]


def upgrade() -> None:
    """Create journal, dedup and business tables."""

    alembic_op.execute(sa.schema.CreateSchema(RAW_SCHEMA, if_not_exists=True))

    alembic_op.create_table(
        "sync_attempts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("site_id", sa.String(length=255), nullable=False),
        sa.Column("list_id", sa.String(length=255), nullable=False),
        sa.Column("delta_link", sa.Text(), nullable=True),
        sa.Column("subscription_id", sa.String(length=255), nullable=True),
        sa.Column("status", SYNC_STATUS, nullable=False),
        sa.Column("successful_items", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_items", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_processed_at", sa.DateTime(timezone=True), nullable=True),
        schema=RAW_SCHEMA,
    )
    alembic_op.create_index(
        "ix_sync_attempts_site_list_created",
        "sync_attempts",
        ["site_id", "list_id", "created_at"],
        schema=RAW_SCHEMA,
    )

    alembic_op.create_table(
        "artifact_records",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("content_hash", sa.String(length=64), nullable=False),
        sa.Column("content_size", sa.Integer(), nullable=False),
        sa.Column("file_name", sa.String(length=512), nullable=True),
        sa.Column("source_item_id", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("record_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "sync_attempt_id",
            sa.Integer(),
            sa.ForeignKey(f"{RAW_SCHEMA}.sync_attempts.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("content_hash", "content_size", name="uq_artifact_content"),
        schema=RAW_SCHEMA,
    )
    alembic_op.create_index(
        "ix_artifact_records_status", "artifact_records", ["status"], schema=RAW_SCHEMA
    )

    alembic_op.create_table(
        "contract_creation",
        *_business_columns(),
        sa.Column("contractor_no", sa.Integer(), nullable=True),
        sa.Column("reference_id", sa.Integer(), nullable=True),
        sa.Column("property_name", sa.Text(), nullable=True),
        sa.Column("contractor_name", sa.Text(), nullable=True),
        sa.Column("contract_status", sa.Text(), nullable=True),
        sa.Column("application_date", sa.Date(), nullable=True),
        sa.Column("move_in_date", sa.Date(), nullable=True),
        sa.Column("contract_date", sa.Date(), nullable=True),
        sa.Column("key_money", sa.Numeric(12, 0), nullable=True),
        sa.Column("security_deposit", sa.Numeric(12, 0), nullable=True),
        sa.Column("brokerage_fee", sa.Numeric(12, 0), nullable=True),
        sa.Column("fixed_term", sa.Boolean(), nullable=True),
        sa.Column("output_at", sa.DateTime(), nullable=True),
        schema=RAW_SCHEMA,
    )
    alembic_op.create_table(
        "contract_renewal",
        *_business_columns(),
        sa.Column("contractor_name", sa.Text(), nullable=True),
        sa.Column("renewal_date", sa.Date(), nullable=True),
        sa.Column("next_contract_start", sa.Date(), nullable=True),
        sa.Column("next_contract_end", sa.Date(), nullable=True),
        sa.Column("output_at", sa.DateTime(), nullable=True),
        schema=RAW_SCHEMA,
    )
    alembic_op.create_table(
        "contract_termination",
        *_business_columns(),
        sa.Column("contractor_name", sa.Text(), nullable=True),
        sa.Column("notice_received", sa.Date(), nullable=True),
        sa.Column("scheduled_move_out", sa.Date(), nullable=True),
        sa.Column("actual_move_out", sa.Date(), nullable=True),
        sa.Column("inspection_time", sa.Time(), nullable=True),
        sa.Column("settlement_amount", sa.Numeric(12, 0), nullable=True),
        sa.Column("output_at", sa.DateTime(), nullable=True),
        schema=RAW_SCHEMA,
    )
    for table in ("contract_creation", "contract_renewal", "contract_termination"):
        alembic_op.create_index(
            f"ix_{RAW_SCHEMA}_{table}_artifact_id",
            table,
            ["artifact_id"],
            schema=RAW_SCHEMA,
        )


def downgrade() -> None:
    """Drop every table created by this revision."""

    for table in ("contract_termination", "contract_renewal", "contract_creation"):
        alembic_op.drop_index(
            f"ix_{RAW_SCHEMA}_{table}_artifact_id", table_name=table, schema=RAW_SCHEMA
        )
        alembic_op.drop_table(table, schema=RAW_SCHEMA)
    alembic_op.drop_index(
        "ix_artifact_records_status", table_name="artifact_records", schema=RAW_SCHEMA
    )
    alembic_op.drop_table("artifact_records", schema=RAW_SCHEMA)
    alembic_op.drop_index(
        "ix_sync_attempts_site_list_created", table_name="sync_attempts", schema=RAW_SCHEMA
    )
    alembic_op.drop_table("sync_attempts", schema=RAW_SCHEMA)
    SYNC_STATUS.drop(alembic_op.get_bind(), checkfirst=True)
