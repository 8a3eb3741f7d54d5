"""Initial schema -- google_tokens and reviews.

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # 1. google_tokens (one live credential per organization)
    op.create_table(
        "google_tokens",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("organization_id", UUID(as_uuid=True), nullable=False, unique=True),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False),
        sa.Column("access_token", sa.Text, nullable=False),
        sa.Column("refresh_token", sa.Text, nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    # 2. reviews (local mirror)
    op.create_table(
        "reviews",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("organization_id", UUID(as_uuid=True), nullable=False),
        sa.Column("platform", sa.String(20), nullable=False, server_default="google"),
        sa.Column("platform_review_id", sa.String(255), nullable=False),
        sa.Column("location_id", sa.String(255), nullable=False),
        sa.Column("location_name", sa.String(500), nullable=False),
        sa.Column("reviewer_name", sa.String(255), nullable=False, server_default="Anonymous"),
        sa.Column("reviewer_avatar_url", sa.Text, nullable=True),
        sa.Column("rating", sa.SmallInteger, nullable=False),
        sa.Column("review_text", sa.Text, nullable=True),
        sa.Column("review_reply", sa.Text, nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reply_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("raw_data", JSONB, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint(
            "organization_id",
            "platform",
            "platform_review_id",
            name="uq_reviews_org_platform_review",
        ),
        sa.CheckConstraint("rating BETWEEN 1 AND 5", name="ck_reviews_rating_range"),
    )

    # ── Indexes ─────────────────────────────────────────────────
    op.execute(sa.text(
        "CREATE INDEX ix_reviews_org_reviewed_at "
        "ON reviews (organization_id, reviewed_at DESC)"
    ))
    op.execute(sa.text(
        "CREATE INDEX ix_reviews_org_unanswered "
        "ON reviews (organization_id) WHERE review_reply IS NULL"
    ))


def downgrade() -> None:
    op.drop_index("ix_reviews_org_unanswered", table_name="reviews")
    op.drop_index("ix_reviews_org_reviewed_at", table_name="reviews")
    op.drop_table("reviews")
    op.drop_table("google_tokens")
