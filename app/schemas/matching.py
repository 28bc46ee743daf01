from pydantic import BaseModel, Field, field_validator, model_validator
from uuid import UUID
from datetime import datetime
from typing import Optional

from app.utils.gender import normalize_gender


class DiscoverFilters(BaseModel):
    """Per-request overrides of the requester's stored preferences."""

    age_min: Optional[int] = Field(None, ge=18, le=120)
    age_max: Optional[int] = Field(None, ge=18, le=120)
    genders: Optional[list[str]] = None
    max_distance_km: Optional[int] = Field(None, gt=0, le=20000)

    @field_validator("genders")
    @classmethod
    def _normalize_genders(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        if v is None:
            return v
        normalized = []
        for raw in v:
            token = normalize_gender(raw)
            if token is None:
                raise ValueError(f"Unknown gender token: {raw!r}")
            if token not in normalized:
                normalized.append(token)
        return normalized

    @model_validator(mode="after")
    def _age_range_is_ordered(self) -> "DiscoverFilters":
        if (
            self.age_min is not None
            and self.age_max is not None
            and self.age_min > self.age_max
        ):
            raise ValueError("age_min must be less than or equal to age_max")
        return self


class PhotoResponse(BaseModel):
    id: UUID
    url: str
    is_primary: bool
    display_order: int


class ProfileCard(BaseModel):
    id: UUID
    name: Optional[str] = None
    first_name: Optional[str] = None
    age: Optional[int] = None
    gender: Optional[str] = None
    bio: Optional[str] = None
    interests: list[str] = []
    search_objectives: list[str] = []
    city: Optional[str] = None
    photos: list[PhotoResponse] = []


class CandidateResponse(ProfileCard):
    is_liked: bool = False
    distance_km: Optional[int] = None
    has_compatibility: bool = False
    compatibility_score_global: Optional[int] = None
    compatibility_score_love: Optional[int] = None
    compatibility_score_friendship: Optional[int] = None
    compatibility_score_carnal: Optional[int] = None
    compatibility_insight: Optional[str] = None
    embedding_score: Optional[float] = None


class DiscoverResponse(BaseModel):
    has_profile_embedding: bool
    profiles: list[CandidateResponse]


class MatchResponse(BaseModel):
    id: UUID
    matched_user: ProfileCard
    compatibility_score_global: Optional[float] = None
    compatibility_score_love: Optional[float] = None
    compatibility_score_friendship: Optional[float] = None
    compatibility_score_carnal: Optional[float] = None
    compatibility_insight: Optional[str] = None
    is_active: bool
    matched_at: datetime


class LikeResponse(BaseModel):
    match: bool
    match_data: Optional[MatchResponse] = None


class PassResponse(BaseModel):
    status: str = "passed"


class UnmatchResponse(BaseModel):
    can_like_again: bool
    remaining_slots: int


class ConversationsStatusResponse(BaseModel):
    active_conversations: int
    max_conversations: int
    remaining_slots: int
    can_like: bool


class CacheStatsResponse(BaseModel):
    total_entries: int
    expired_entries: int
    oldest_entry: Optional[datetime] = None
    newest_entry: Optional[datetime] = None


class CacheInvalidateResponse(BaseModel):
    user_id: UUID
    deleted: int


class CacheCleanupResponse(BaseModel):
    deleted: int
