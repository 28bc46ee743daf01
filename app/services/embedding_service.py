"""
Kindred — Profile embeddings

Builds a text projection of a profile, embeds it with the Gemini embedding
model (1536 dimensions) and stores the vector on ``users.profile_embedding``
for pgvector similarity search in discovery.

After a successful refresh an ``embedding_generated`` event is published to
the injected ``EventSink``.
"""

from __future__ import annotations

from typing import Any

import google.generativeai as genai
import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from app.config import get_settings
from app.database import utcnow
from app.exceptions import EmbeddingError
from app.services.events import EventSink, NullEventSink
from app.services.llm_service import is_retryable_api_error

logger = structlog.get_logger("kindred.embedding_service")

_AI_PROFILE_LABELS: tuple[tuple[str, str], ...] = (
    ("personality", "Personality"),
    ("intention", "Intention"),
    ("identity", "Identity"),
    ("friendship", "Friendship"),
    ("love", "Love"),
    ("sexuality", "Sexuality"),
)


class EmbeddingService:
    """Gemini embedding client plus profile-embedding persistence."""

    def __init__(self, event_sink: EventSink | None = None) -> None:
        settings = get_settings()
        genai.configure(api_key=settings.GEMINI_API_KEY)

        self.model = settings.GEMINI_EMBEDDING_MODEL
        self.dimensions = settings.EMBEDDING_DIMENSIONS
        self.event_sink = event_sink if event_sink is not None else NullEventSink()

        logger.info(
            "embedding_service_initialised",
            model=self.model,
            dimensions=self.dimensions,
        )

    # ── Public API ────────────────────────────────────────────────────────

    async def embed(self, text: str) -> list[float]:
        """Return the embedding vector for ``text``.

        Raises
        ------
        EmbeddingError
            On empty input, provider failure after retries, or a vector of
            unexpected dimensionality.
        """
        if not text or not text.strip():
            raise EmbeddingError("Cannot embed empty text")

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception(is_retryable_api_error),
                stop=stop_after_attempt(3),
                wait=wait_exponential(multiplier=1, min=1, max=10),
                reraise=True,
            ):
                with attempt:
                    result = await genai.embed_content_async(
                        model=self.model,
                        content=text,
                        task_type="semantic_similarity",
                        output_dimensionality=self.dimensions,
                    )
        except Exception as exc:
            logger.error("embedding_failed", model=self.model, error=str(exc))
            raise EmbeddingError(f"Embedding request failed: {exc}") from exc

        vector = list(result["embedding"])
        if len(vector) != self.dimensions:
            raise EmbeddingError(
                f"Expected {self.dimensions} dimensions, got {len(vector)}"
            )
        return vector

    @staticmethod
    def build_profile_text(user: Any) -> str:
        """Project the profile into the text that gets embedded."""
        parts: list[str] = []

        ai_profile = getattr(user, "ai_profile", None) or {}
        summary = ai_profile.get("summary")
        if summary:
            parts.append(str(summary))
        traits = [
            f"{label}: {ai_profile[key]}"
            for key, label in _AI_PROFILE_LABELS
            if ai_profile.get(key)
        ]
        if traits:
            parts.append("\n".join(traits))

        if getattr(user, "bio", None):
            parts.append(user.bio)
        if getattr(user, "age", None) is not None:
            parts.append(f"Age: {user.age}")
        if getattr(user, "city", None):
            parts.append(f"City: {user.city}")
        if getattr(user, "search_objectives", None):
            parts.append(f"Looking for: {', '.join(user.search_objectives)}")
        if getattr(user, "interests", None):
            parts.append(f"Interests: {', '.join(user.interests)}")

        return "\n\n".join(parts)

    async def refresh_user_embedding(
        self,
        user: Any,
        db_session: AsyncSession,
    ) -> list[float] | None:
        """Recompute and store the user's profile embedding.

        Returns ``None`` (leaving any previous vector in place) when the
        profile has no embeddable content yet.
        """
        log = logger.bind(user_id=str(user.id))

        text = self.build_profile_text(user)
        if not text:
            log.info("embedding_skipped", reason="empty_profile")
            return None

        vector = await self.embed(text)
        user.profile_embedding = vector
        user.profile_embedding_updated_at = utcnow()
        await db_session.flush()

        log.info("embedding_refreshed", text_length=len(text))
        await self.event_sink.publish(
            "embedding_generated",
            {"user_id": str(user.id), "dimensions": len(vector)},
        )
        return vector
