"""add fee settings and platform health tables

Revision ID: 0001_platform_ops_core
Revises:
Create Date: 2026-10-19 09:00:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0001_platform_ops_core"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="creator"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    op.create_table(
        "company_profiles",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("legal_name", sa.String(length=255), nullable=False),
        sa.Column("trade_name", sa.String(length=255), nullable=True),
        sa.Column("custom_platform_fee_percentage", sa.Numeric(5, 4), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", name="uq_company_profiles_user_id"),
        sa.CheckConstraint(
            "custom_platform_fee_percentage IS NULL OR "
            "(custom_platform_fee_percentage >= 0 AND custom_platform_fee_percentage <= 0.5)",
            name="ck_company_profiles_custom_platform_fee_range",
        ),
    )

    op.create_table(
        "company_verification_documents",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("company_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("document_url", sa.String(length=1024), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["company_id"], ["company_profiles.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_company_verification_documents_company_id",
        "company_verification_documents",
        ["company_id"],
        unique=False,
    )

    op.create_table(
        "offers",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("company_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("view_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["company_id"], ["company_profiles.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_offers_company_id", "offers", ["company_id"], unique=False)

    op.create_table(
        "offer_videos",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("offer_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("video_url", sa.String(length=1024), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["offer_id"], ["offers.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_offer_videos_offer_id", "offer_videos", ["offer_id"], unique=False)

    op.create_table(
        "platform_settings",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("key", sa.String(length=128), nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(length=64), nullable=True),
        sa.Column("updated_by", sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_platform_settings_key", "platform_settings", ["key"], unique=True)
    op.create_index("ix_platform_settings_category", "platform_settings", ["category"], unique=False)

    op.create_table(
        "audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("actor", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(length=255), nullable=False),
        sa.Column(
            "metadata_json",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"], unique=False)

    op.create_table(
        "api_metrics",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("endpoint", sa.String(length=255), nullable=False),
        sa.Column("method", sa.String(length=10), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("hour", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_requests", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("successful_requests", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_requests", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("avg_response_time_ms", sa.Float(), nullable=False, server_default="0"),
        sa.Column("min_response_time_ms", sa.Float(), nullable=False, server_default="0"),
        sa.Column("max_response_time_ms", sa.Float(), nullable=False, server_default="0"),
        sa.Column("p50_response_time_ms", sa.Float(), nullable=False, server_default="0"),
        sa.Column("p95_response_time_ms", sa.Float(), nullable=False, server_default="0"),
        sa.Column("p99_response_time_ms", sa.Float(), nullable=False, server_default="0"),
        sa.Column("error_4xx_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_5xx_count", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("endpoint", "method", "date", "hour", name="uq_api_metrics_endpoint_method_date_hour"),
    )
    op.create_index("ix_api_metrics_date", "api_metrics", ["date"], unique=False)

    op.create_table(
        "api_error_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("endpoint", sa.String(length=255), nullable=False),
        sa.Column("method", sa.String(length=10), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("error_stack", sa.Text(), nullable=True),
        sa.Column("request_id", sa.String(length=100), nullable=True),
        sa.Column("user_id", sa.String(length=255), nullable=True),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("request_body", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_api_error_logs_status_code", "api_error_logs", ["status_code"], unique=False)
    op.create_index("ix_api_error_logs_timestamp", "api_error_logs", ["timestamp"], unique=False)

    op.create_table(
        "storage_metrics",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("total_files", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_storage_bytes", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("video_files", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("video_storage_bytes", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("image_files", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("image_storage_bytes", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("document_files", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("document_storage_bytes", sa.BigInteger(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("date", name="uq_storage_metrics_date"),
    )

    op.create_table(
        "video_hosting_costs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("total_videos", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_video_storage_gb", sa.Numeric(12, 4), nullable=False, server_default="0"),
        sa.Column("total_bandwidth_gb", sa.Numeric(12, 4), nullable=False, server_default="0"),
        sa.Column("storage_cost_usd", sa.Numeric(12, 4), nullable=False, server_default="0"),
        sa.Column("bandwidth_cost_usd", sa.Numeric(12, 4), nullable=False, server_default="0"),
        sa.Column("transcoding_cost_usd", sa.Numeric(12, 4), nullable=False, server_default="0"),
        sa.Column("total_cost_usd", sa.Numeric(12, 4), nullable=False, server_default="0"),
        sa.Column("cost_per_video_usd", sa.Numeric(12, 4), nullable=False, server_default="0"),
        sa.Column("views_count", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("date", name="uq_video_hosting_costs_date"),
    )

    op.create_table(
        "platform_health_snapshots",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("overall_health_score", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("api_health_score", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("storage_health_score", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("database_health_score", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("avg_response_time_ms", sa.Float(), nullable=False, server_default="0"),
        sa.Column("error_rate_percent", sa.Float(), nullable=False, server_default="0"),
        sa.Column("active_users_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("requests_per_minute", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("memory_usage_percent", sa.Float(), nullable=False, server_default="0"),
        sa.Column("cpu_usage_percent", sa.Float(), nullable=False, server_default="0"),
        sa.Column("disk_usage_percent", sa.Float(), nullable=False, server_default="0"),
        sa.Column("database_connections", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("uptime_seconds", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column(
            "alerts",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column(
            "metadata",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_platform_health_snapshots_timestamp",
        "platform_health_snapshots",
        ["timestamp"],
        unique=False,
    )

    op.execute(
        """
        INSERT INTO platform_settings (id, key, value, description, category, updated_by)
        VALUES
            (gen_random_uuid(), 'platform_fee_percentage', '4',
             'Platform fee charged on each payment, in whole percent', 'fees', 'system'),
            (gen_random_uuid(), 'stripe_processing_fee_percentage', '3',
             'Payment processing fee deducted from each payment, in whole percent', 'fees', 'system')
        ON CONFLICT (key) DO NOTHING
        """
    )


def downgrade() -> None:
    op.drop_index("ix_platform_health_snapshots_timestamp", table_name="platform_health_snapshots")
    op.drop_table("platform_health_snapshots")
    op.drop_table("video_hosting_costs")
    op.drop_table("storage_metrics")
    op.drop_index("ix_api_error_logs_timestamp", table_name="api_error_logs")
    op.drop_index("ix_api_error_logs_status_code", table_name="api_error_logs")
    op.drop_table("api_error_logs")
    op.drop_index("ix_api_metrics_date", table_name="api_metrics")
    op.drop_table("api_metrics")
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_platform_settings_category", table_name="platform_settings")
    op.drop_index("ix_platform_settings_key", table_name="platform_settings")
    op.drop_table("platform_settings")
    op.drop_index("ix_offer_videos_offer_id", table_name="offer_videos")
    op.drop_table("offer_videos")
    op.drop_index("ix_offers_company_id", table_name="offers")
    op.drop_table("offers")
    op.drop_index("ix_company_verification_documents_company_id", table_name="company_verification_documents")
    op.drop_table("company_verification_documents")
    op.drop_table("company_profiles")
    op.drop_table("users")
