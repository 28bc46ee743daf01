"""
Kindred — User model (profile, preferences, embedding).
"""

import uuid
from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import Boolean, DateTime, Float, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base, JSONType, utcnow

EMBEDDING_DIMENSIONS = 1536


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    email: Mapped[str] = mapped_column(
        String, unique=True, index=True, nullable=False
    )
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    first_name: Mapped[str | None] = mapped_column(String, nullable=True)
    age: Mapped[int | None] = mapped_column(Integer, nullable=True)
    gender: Mapped[str | None] = mapped_column(
        String, nullable=True, comment="male / female / other"
    )
    sexual_orientation: Mapped[str | None] = mapped_column(String, nullable=True)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    interests: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    search_objectives: Mapped[list | None] = mapped_column(
        JSONType, nullable=True, comment="serious / friendship / casual"
    )
    ai_profile: Mapped[dict | None] = mapped_column(
        JSONType,
        nullable=True,
        comment="AI-derived attributes: personality, intention, identity, "
        "friendship, love, sexuality",
    )

    # ── Location ───────────────────────────────────────────────────
    city: Mapped[str | None] = mapped_column(String, nullable=True)
    location_latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    location_longitude: Mapped[float | None] = mapped_column(Float, nullable=True)

    onboarding_complete: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )

    # ── Preferences ────────────────────────────────────────────────
    preference_age_min: Mapped[int | None] = mapped_column(
        Integer, default=18, nullable=True
    )
    preference_age_max: Mapped[int | None] = mapped_column(
        Integer, default=50, nullable=True
    )
    preference_distance_km: Mapped[int | None] = mapped_column(
        Integer, default=50, nullable=True
    )
    preference_genders: Mapped[list | None] = mapped_column(JSONType, nullable=True)

    # ── Embedding ──────────────────────────────────────────────────
    profile_embedding = mapped_column(Vector(EMBEDDING_DIMENSIONS), nullable=True)
    profile_embedding_updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=utcnow, nullable=True
    )
    last_active_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # ── Relationships ──────────────────────────────────────────────
    photos: Mapped[list["Photo"]] = relationship(
        "Photo",
        back_populates="user",
        cascade="all, delete-orphan",
        order_by="Photo.display_order",
        lazy="selectin",
    )

    @property
    def has_embedding(self) -> bool:
        return self.profile_embedding is not None

    @property
    def has_coordinates(self) -> bool:
        return (
            self.location_latitude is not None
            and self.location_longitude is not None
        )

    def __repr__(self) -> str:
        return f"<User {self.email!r} id={self.id}>"
