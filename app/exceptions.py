"""Domain exceptions raised by the Kindred service layer."""

from __future__ import annotations


class KindredError(RuntimeError):
    """Base exception for service-layer failures."""


class NotFoundError(KindredError):
    """Raised when a referenced user, match or entry does not exist."""


class InvalidFilterError(KindredError, ValueError):
    """Raised when discovery filters are inconsistent."""


class InvalidOperationError(KindredError, ValueError):
    """Raised for requests that are well-formed but not allowed (e.g. liking yourself)."""


class ConversationLimitError(KindredError):
    """Raised when a user tries to like while at the active-conversation cap."""

    def __init__(self, max_conversations: int, active_conversations: int) -> None:
        self.max_conversations = max_conversations
        self.active_conversations = active_conversations
        super().__init__(
            f"Active conversation limit reached ({active_conversations}/"
            f"{max_conversations}). Close a conversation to like new profiles."
        )


class LLMError(KindredError):
    """Raised when the LLM provider cannot produce a completion."""


class LLMQuotaExceededError(LLMError):
    """Raised when the LLM provider reports a payment or quota failure."""


class LLMResponseError(LLMError):
    """Raised when the LLM output cannot be parsed into the expected shape."""


class EmbeddingError(KindredError):
    """Raised when an embedding cannot be generated."""


__all__ = [
    "ConversationLimitError",
    "EmbeddingError",
    "InvalidFilterError",
    "InvalidOperationError",
    "KindredError",
    "LLMError",
    "LLMQuotaExceededError",
    "LLMResponseError",
    "NotFoundError",
]
