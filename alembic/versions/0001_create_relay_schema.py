from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001_create_relay_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not inspector.has_table("businesses"):
        op.create_table(
            "businesses",
            sa.Column("id", sa.String(64), primary_key=True),
            sa.Column("organization_id", sa.String(64), nullable=True),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("website_url", sa.String(512), nullable=True),
            sa.Column("website_context", sa.Text(), nullable=True),
            sa.Column("industry", sa.String(255), nullable=True),
            sa.Column("business_type", sa.String(64), nullable=True),
            sa.Column("linkedin_url", sa.String(512), nullable=True),
            sa.Column("files_uploaded", sa.Text(), nullable=True),
            sa.Column(
                "created_at",
                sa.DateTime(timezone=True),
                server_default=sa.func.now(),
                nullable=False,
            ),
        )
        op.create_index("ix_businesses_organization_id", "businesses", ["organization_id"], unique=False)

    if not inspector.has_table("lindy_responses"):
        op.create_table(
            "lindy_responses",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("business_id", sa.String(64), nullable=False),
            sa.Column("question_id", sa.String(32), nullable=False),
            sa.Column("role", sa.String(32), nullable=False, server_default="external-agent"),
            sa.Column("content_json", sa.Text(), nullable=False),
            sa.Column("suggestions_json", sa.Text(), nullable=False),
            sa.Column("idempotency_key", sa.String(255), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index(
            "ix_lindy_responses_idempotency_key",
            "lindy_responses",
            ["idempotency_key"],
            unique=False,
        )
        op.create_index(
            "ix_lindy_responses_business_question_created",
            "lindy_responses",
            ["business_id", "question_id", "created_at"],
            unique=False,
        )

    if not inspector.has_table("lindy_request_logs"):
        op.create_table(
            "lindy_request_logs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("business_id", sa.String(64), nullable=True),
            sa.Column("question_id", sa.String(32), nullable=True),
            sa.Column("direction", sa.String(16), nullable=False),
            sa.Column("endpoint", sa.String(1024), nullable=False),
            sa.Column("method", sa.String(8), nullable=False, server_default="POST"),
            sa.Column("payload_json", sa.Text(), nullable=True),
            sa.Column("response_status", sa.Integer(), nullable=True),
            sa.Column("response_body_json", sa.Text(), nullable=True),
            sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("processing_time_ms", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index(
            "ix_lindy_request_logs_business_id",
            "lindy_request_logs",
            ["business_id"],
            unique=False,
        )
        op.create_index(
            "ix_lindy_request_logs_business_created",
            "lindy_request_logs",
            ["business_id", "created_at"],
            unique=False,
        )


def downgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if inspector.has_table("lindy_request_logs"):
        op.drop_index("ix_lindy_request_logs_business_created", table_name="lindy_request_logs")
        op.drop_index("ix_lindy_request_logs_business_id", table_name="lindy_request_logs")
        op.drop_table("lindy_request_logs")

    if inspector.has_table("lindy_responses"):
        op.drop_index("ix_lindy_responses_business_question_created", table_name="lindy_responses")
        op.drop_index("ix_lindy_responses_idempotency_key", table_name="lindy_responses")
        op.drop_table("lindy_responses")

    if inspector.has_table("businesses"):
        op.drop_index("ix_businesses_organization_id", table_name="businesses")
        op.drop_table("businesses")
