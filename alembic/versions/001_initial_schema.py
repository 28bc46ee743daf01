"""Initial schema — the 7 Kindred tables plus the pgvector extension.

Revision ID: 001_initial
Revises:
Create Date: 2026-01-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from pgvector.sqlalchemy import Vector
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

EMBEDDING_DIMENSIONS = 1536


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def _user_fk(name: str, **kwargs) -> sa.Column:
    return sa.Column(
        name,
        postgresql.UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        **kwargs,
    )


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    # ── 1. users ────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String, unique=True, index=True, nullable=False),
        sa.Column("name", sa.String, nullable=True),
        sa.Column("first_name", sa.String, nullable=True),
        sa.Column("age", sa.Integer, nullable=True),
        sa.Column("gender", sa.String, nullable=True, comment="male / female / other"),
        sa.Column("sexual_orientation", sa.String, nullable=True),
        sa.Column("bio", sa.Text, nullable=True),
        sa.Column("interests", postgresql.JSONB, nullable=True),
        sa.Column(
            "search_objectives",
            postgresql.JSONB,
            nullable=True,
            comment="serious / friendship / casual",
        ),
        sa.Column(
            "ai_profile",
            postgresql.JSONB,
            nullable=True,
            comment="AI-derived attributes: personality, intention, identity, "
            "friendship, love, sexuality",
        ),
        sa.Column("city", sa.String, nullable=True),
        sa.Column("location_latitude", sa.Float, nullable=True),
        sa.Column("location_longitude", sa.Float, nullable=True),
        sa.Column(
            "onboarding_complete",
            sa.Boolean,
            server_default="false",
            nullable=False,
        ),
        sa.Column("preference_age_min", sa.Integer, nullable=True),
        sa.Column("preference_age_max", sa.Integer, nullable=True),
        sa.Column("preference_distance_km", sa.Integer, nullable=True),
        sa.Column("preference_genders", postgresql.JSONB, nullable=True),
        sa.Column("profile_embedding", Vector(EMBEDDING_DIMENSIONS), nullable=True),
        sa.Column(
            "profile_embedding_updated_at", sa.DateTime(timezone=True), nullable=True
        ),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_active_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_users_discovery_filters",
        "users",
        ["onboarding_complete", "age", "gender"],
    )
    op.execute(
        "CREATE INDEX ix_users_profile_embedding ON users "
        "USING hnsw (profile_embedding vector_cosine_ops)"
    )

    # ── 2. photos ───────────────────────────────────────────────────
    op.create_table(
        "photos",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _user_fk("user_id"),
        sa.Column(
            "storage_path",
            sa.String,
            nullable=False,
            comment="Object path inside the GCS bucket",
        ),
        sa.Column("mime_type", sa.String, nullable=False, server_default="image/jpeg"),
        sa.Column("display_order", sa.Integer, nullable=False, server_default="0"),
        sa.Column("is_primary", sa.Boolean, nullable=False, server_default="false"),
        _created_at(),
    )
    op.create_index("ix_photos_user_order", "photos", ["user_id", "display_order"])

    # ── 3. likes ────────────────────────────────────────────────────
    op.create_table(
        "likes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _user_fk("user_id"),
        _user_fk("liked_user_id"),
        _created_at(),
        sa.UniqueConstraint("user_id", "liked_user_id", name="uq_like_pair"),
    )
    op.create_index("ix_likes_liked_user", "likes", ["liked_user_id"])

    # ── 4. passes ───────────────────────────────────────────────────
    op.create_table(
        "passes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _user_fk("user_id"),
        _user_fk("passed_user_id"),
        _created_at(),
        sa.UniqueConstraint("user_id", "passed_user_id", name="uq_pass_pair"),
    )

    # ── 5. matches ──────────────────────────────────────────────────
    op.create_table(
        "matches",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _user_fk("user_id"),
        _user_fk("matched_user_id"),
        sa.Column("compatibility_score_global", sa.Float, nullable=True),
        sa.Column("compatibility_score_love", sa.Float, nullable=True),
        sa.Column("compatibility_score_friendship", sa.Float, nullable=True),
        sa.Column("compatibility_score_carnal", sa.Float, nullable=True),
        sa.Column("compatibility_insight", sa.Text, nullable=True),
        sa.Column("is_active", sa.Boolean, server_default="true", nullable=False),
        sa.Column("closed_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "matched_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("user_id", "matched_user_id", name="uq_match_pair"),
    )
    op.create_index("ix_matches_matched_user", "matches", ["matched_user_id"])

    # ── 6. compatibility_cache ──────────────────────────────────────
    op.create_table(
        "compatibility_cache",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _user_fk("user_id"),
        _user_fk("target_user_id"),
        sa.Column("score_global", sa.Integer, nullable=False),
        sa.Column("score_love", sa.Integer, nullable=True),
        sa.Column("score_friendship", sa.Integer, nullable=True),
        sa.Column("score_carnal", sa.Integer, nullable=True),
        sa.Column("compatibility_insight", sa.Text, nullable=True),
        sa.Column("user_profile_hash", sa.String(64), nullable=False),
        sa.Column("target_profile_hash", sa.String(64), nullable=False),
        sa.Column(
            "embedding_score",
            sa.Float,
            nullable=True,
            comment="Cosine similarity at calculation time",
        ),
        sa.Column(
            "computed_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "user_id", "target_user_id", name="uq_compatibility_pair"
        ),
    )
    op.create_index(
        "ix_compatibility_user_score",
        "compatibility_cache",
        ["user_id", "score_global"],
    )
    op.create_index(
        "ix_compatibility_user_hashes",
        "compatibility_cache",
        ["user_id", "user_profile_hash", "target_profile_hash"],
    )
    op.create_index(
        "ix_compatibility_target_user",
        "compatibility_cache",
        ["target_user_id"],
    )
    op.create_index(
        "ix_compatibility_expires_at",
        "compatibility_cache",
        ["expires_at"],
    )

    # ── 7. push_tokens ──────────────────────────────────────────────
    op.create_table(
        "push_tokens",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _user_fk("user_id"),
        sa.Column("token", sa.String, unique=True, nullable=False),
        sa.Column("platform", sa.String, nullable=True, comment="ios / android / web"),
        _created_at(),
    )


def downgrade() -> None:
    # Drop in reverse order (children / dependents first).
    op.drop_table("push_tokens")

    op.drop_index("ix_compatibility_expires_at", table_name="compatibility_cache")
    op.drop_index("ix_compatibility_target_user", table_name="compatibility_cache")
    op.drop_index("ix_compatibility_user_hashes", table_name="compatibility_cache")
    op.drop_index("ix_compatibility_user_score", table_name="compatibility_cache")
    op.drop_table("compatibility_cache")

    op.drop_index("ix_matches_matched_user", table_name="matches")
    op.drop_table("matches")

    op.drop_table("passes")

    op.drop_index("ix_likes_liked_user", table_name="likes")
    op.drop_table("likes")

    op.drop_index("ix_photos_user_order", table_name="photos")
    op.drop_table("photos")

    op.execute("DROP INDEX IF EXISTS ix_users_profile_embedding")
    op.drop_index("ix_users_discovery_filters", table_name="users")
    op.drop_table("users")
