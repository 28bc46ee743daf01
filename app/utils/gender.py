"""Canonical gender tokens shared by profiles and discovery filters."""

from __future__ import annotations

CANONICAL_GENDERS: frozenset[str] = frozenset({"male", "female", "other"})

_GENDER_ALIASES: dict[str, str] = {
    "male": "male",
    "homme": "male",
    "man": "male",
    "female": "female",
    "femme": "female",
    "woman": "female",
    "other": "other",
    "autre": "other",
}


def normalize_gender(value: object) -> str | None:
    """Map a locale or alias token onto ``male`` / ``female`` / ``other``.

    Returns ``None`` for unknown tokens.
    """
    if value is None:
        return None
    return _GENDER_ALIASES.get(str(value).strip().lower())


def normalize_gender_list(values) -> list[str]:
    """Normalise a preference list, dropping unknown tokens and duplicates."""
    normalized: list[str] = []
    for value in values or []:
        token = normalize_gender(value)
        if token is not None and token not in normalized:
            normalized.append(token)
    return normalized
