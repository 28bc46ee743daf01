"""
Kindred — Compatibility cache entry.

One row per ordered (user, target) pair.  Rows are never updated in place:
a stale pair is deleted and a fresh row inserted.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, utcnow


class CompatibilityCacheEntry(Base):
    __tablename__ = "compatibility_cache"
    __table_args__ = (
        UniqueConstraint("user_id", "target_user_id", name="uq_compatibility_pair"),
        Index("ix_compatibility_user_score", "user_id", "score_global"),
        Index(
            "ix_compatibility_user_hashes",
            "user_id",
            "user_profile_hash",
            "target_profile_hash",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    target_user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    score_global: Mapped[int] = mapped_column(Integer, nullable=False)
    score_love: Mapped[int | None] = mapped_column(Integer, nullable=True)
    score_friendship: Mapped[int | None] = mapped_column(Integer, nullable=True)
    score_carnal: Mapped[int | None] = mapped_column(Integer, nullable=True)
    compatibility_insight: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_profile_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    target_profile_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    embedding_score: Mapped[float | None] = mapped_column(
        Float, nullable=True, comment="Cosine similarity at calculation time"
    )
    computed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<CompatibilityCacheEntry {self.user_id} -> {self.target_user_id} "
            f"global={self.score_global}>"
        )
