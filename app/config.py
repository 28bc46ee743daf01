"""
Kindred — configuration.

Every setting comes from the environment (or an optional .env file) and is
validated once into a cached ``Settings`` instance.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the Kindred matching backend."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Gemini LLM + embeddings
    # ------------------------------------------------------------------ #
    GEMINI_API_KEY: str
    GEMINI_MODEL_PRIMARY: str = "gemini-2.5-pro"
    GEMINI_MODEL_FALLBACK: str = "gemini-2.5-flash"
    GEMINI_MODEL_STABLE: str = "gemini-2.0-flash"
    GEMINI_EMBEDDING_MODEL: str = "models/gemini-embedding-001"
    EMBEDDING_DIMENSIONS: int = 1536

    LLM_DEFAULT_TEMPERATURE: float = 0.7
    LLM_DEFAULT_MAX_TOKENS: int = 1024
    COMPATIBILITY_TEMPERATURE: float = 0.5
    COMPATIBILITY_MAX_TOKENS: int = 512
    LLM_TIMEOUT_SECONDS: float = 30.0
    LLM_MAX_CONCURRENCY: int = 20

    # ------------------------------------------------------------------ #
    # Database – Cloud SQL via connector or plain asyncpg URL
    # ------------------------------------------------------------------ #
    DATABASE_URL: str
    DB_USER: str = "kindred_user"
    DB_PASSWORD: str = ""
    DB_NAME: str = "kindred"
    CLOUD_SQL_INSTANCE_CONNECTION: str = ""
    CLOUD_SQL_USE_UNIX_SOCKET: bool = False

    # ------------------------------------------------------------------ #
    # Redis – domain event publication
    # ------------------------------------------------------------------ #
    REDIS_URL: str
    EVENTS_CHANNEL: str = "kindred:events"

    # ------------------------------------------------------------------ #
    # Compatibility cache + scoring policy
    # ------------------------------------------------------------------ #
    COMPATIBILITY_CACHE_TTL_DAYS: int = 30

    # Payment / quota failure from the LLM provider
    NEUTRAL_SCORE_GLOBAL: int = 50
    NEUTRAL_SCORE_LOVE: int = 50
    NEUTRAL_SCORE_FRIENDSHIP: int = 50
    NEUTRAL_SCORE_CARNAL: int = 50
    NEUTRAL_INSIGHT: str = (
        "Compatibility analysis is temporarily degraded. Scores will be "
        "refined as soon as the service is back."
    )

    # Any other LLM failure (timeout, malformed output, network)
    OPTIMISTIC_SCORE_GLOBAL: int = 70
    OPTIMISTIC_SCORE_LOVE: int = 65
    OPTIMISTIC_SCORE_FRIENDSHIP: int = 70
    OPTIMISTIC_SCORE_CARNAL: int = 60
    OPTIMISTIC_INSIGHT: str = (
        "Compatibility analysis pending... scores will be refined shortly."
    )

    # Used at match creation when compatibility cannot be obtained at all
    MATCH_DEFAULT_SCORE_GLOBAL: int = 75
    MATCH_DEFAULT_SCORE_LOVE: int = 70
    MATCH_DEFAULT_SCORE_FRIENDSHIP: int = 75
    MATCH_DEFAULT_SCORE_CARNAL: int = 65
    MATCH_DEFAULT_INSIGHT: str = (
        "It's a match! Start the conversation to discover your compatibility."
    )

    # ------------------------------------------------------------------ #
    # Discovery + matching
    # ------------------------------------------------------------------ #
    DISCOVERY_CANDIDATE_LIMIT: int = 20
    DISCOVERY_DEFAULT_MAX_DISTANCE_KM: int = 200
    MAX_ACTIVE_CONVERSATIONS: int = 5

    # ------------------------------------------------------------------ #
    # Google Cloud Storage – photos
    # ------------------------------------------------------------------ #
    GCP_PROJECT_ID: str = ""
    GCS_BUCKET_NAME: str = ""
    PHOTO_URL_TTL_MINUTES: int = 60

    # ------------------------------------------------------------------ #
    # Push notifications
    # ------------------------------------------------------------------ #
    PUSH_GATEWAY_URL: str = ""
    PUSH_SERVER_KEY: str = ""
    PUSH_TIMEOUT_SECONDS: float = 10.0

    # ------------------------------------------------------------------ #
    # Runtime environment
    # ------------------------------------------------------------------ #
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    ALLOWED_ORIGINS: str = "*"
    REQUEST_TIMEOUT_SECONDS: float = 70.0

    # ------------------------------------------------------------------ #
    # Derived helpers
    # ------------------------------------------------------------------ #
    @property
    def allowed_origins_list(self) -> list[str]:
        """Return ALLOWED_ORIGINS as a list split on commas."""
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @field_validator(
        "NEUTRAL_SCORE_GLOBAL",
        "NEUTRAL_SCORE_LOVE",
        "NEUTRAL_SCORE_FRIENDSHIP",
        "NEUTRAL_SCORE_CARNAL",
        "OPTIMISTIC_SCORE_GLOBAL",
        "OPTIMISTIC_SCORE_LOVE",
        "OPTIMISTIC_SCORE_FRIENDSHIP",
        "OPTIMISTIC_SCORE_CARNAL",
        "MATCH_DEFAULT_SCORE_GLOBAL",
        "MATCH_DEFAULT_SCORE_LOVE",
        "MATCH_DEFAULT_SCORE_FRIENDSHIP",
        "MATCH_DEFAULT_SCORE_CARNAL",
    )
    @classmethod
    def _score_must_be_between_0_and_100(cls, v: int) -> int:
        if not 0 <= v <= 100:
            raise ValueError(f"Score must be between 0 and 100, got {v}")
        return v

    @field_validator(
        "COMPATIBILITY_CACHE_TTL_DAYS",
        "DISCOVERY_CANDIDATE_LIMIT",
        "LLM_MAX_CONCURRENCY",
        "MAX_ACTIVE_CONVERSATIONS",
    )
    @classmethod
    def _must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"Value must be positive, got {v}")
        return v


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """The process-wide ``Settings``; tests call ``get_settings.cache_clear()``."""
    return Settings()  # type: ignore[call-arg]
