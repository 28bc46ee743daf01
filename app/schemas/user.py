from pydantic import AfterValidator, BaseModel, Field, field_validator
from uuid import UUID
from datetime import datetime
from typing import Annotated, Any, Optional

from app.utils.gender import normalize_gender


def _canonical_gender(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    token = normalize_gender(v)
    if token is None:
        raise ValueError(f"Unknown gender: {v!r}")
    return token


def _canonical_gender_list(v: Optional[list[str]]) -> Optional[list[str]]:
    if v is None:
        return v
    return list(dict.fromkeys(_canonical_gender(g) for g in v))


Gender = Annotated[Optional[str], AfterValidator(_canonical_gender)]
GenderList = Annotated[Optional[list[str]], AfterValidator(_canonical_gender_list)]


class UserCreate(BaseModel):
    email: str
    name: Optional[str] = None
    first_name: Optional[str] = None
    age: Optional[int] = Field(None, ge=18, le=120)
    gender: Gender = None
    sexual_orientation: Optional[str] = None
    bio: Optional[str] = None
    interests: list[str] = []
    search_objectives: list[str] = []
    ai_profile: Optional[dict[str, Any]] = None
    city: Optional[str] = None
    location_latitude: Optional[float] = Field(None, ge=-90, le=90)
    location_longitude: Optional[float] = Field(None, ge=-180, le=180)
    onboarding_complete: bool = False
    preference_age_min: int = Field(18, ge=18, le=120)
    preference_age_max: int = Field(50, ge=18, le=120)
    preference_distance_km: int = Field(50, ge=1, le=500)
    preference_genders: GenderList = []


class UserUpdate(BaseModel):
    """Partial profile update; only fields that are set are applied."""

    name: Optional[str] = None
    first_name: Optional[str] = None
    age: Optional[int] = Field(None, ge=18, le=120)
    gender: Gender = None
    sexual_orientation: Optional[str] = None
    bio: Optional[str] = None
    interests: Optional[list[str]] = None
    search_objectives: Optional[list[str]] = None
    ai_profile: Optional[dict[str, Any]] = None
    city: Optional[str] = None
    location_latitude: Optional[float] = Field(None, ge=-90, le=90)
    location_longitude: Optional[float] = Field(None, ge=-180, le=180)
    onboarding_complete: Optional[bool] = None
    preference_age_min: Optional[int] = Field(None, ge=18, le=120)
    preference_age_max: Optional[int] = Field(None, ge=18, le=120)
    preference_distance_km: Optional[int] = Field(None, ge=1, le=500)
    preference_genders: GenderList = None

    @field_validator("onboarding_complete")
    @classmethod
    def _not_null(cls, v: Optional[bool]) -> bool:
        if v is None:
            raise ValueError("onboarding_complete cannot be null")
        return v


class UserResponse(BaseModel):
    id: UUID
    email: str
    name: Optional[str]
    first_name: Optional[str]
    age: Optional[int]
    gender: Optional[str]
    sexual_orientation: Optional[str]
    bio: Optional[str]
    interests: Optional[list[str]]
    search_objectives: Optional[list[str]]
    ai_profile: Optional[dict[str, Any]]
    city: Optional[str]
    location_latitude: Optional[float]
    location_longitude: Optional[float]
    onboarding_complete: bool
    preference_age_min: Optional[int]
    preference_age_max: Optional[int]
    preference_distance_km: Optional[int]
    preference_genders: Optional[list[str]]
    has_embedding: bool
    created_at: datetime
    updated_at: Optional[datetime]

    model_config = {"from_attributes": True}


class ProfileUpdateResponse(BaseModel):
    user: UserResponse
    fingerprint_changed: bool
    cache_entries_invalidated: int


class PhotoUploadResponse(BaseModel):
    id: UUID
    storage_path: str
    display_order: int
    is_primary: bool


class PushTokenCreate(BaseModel):
    token: str = Field(min_length=1)
    platform: Optional[str] = None


class PushTokenResponse(BaseModel):
    id: UUID
    platform: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}
