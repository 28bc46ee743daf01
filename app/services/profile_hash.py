"""
Kindred — Profile fingerprinting

Computes a stable SHA-256 digest over the subset of profile fields that
feed compatibility analysis:

    bio, interests (sorted), sexual_orientation, gender, age, ai_profile

Volatile fields (photos, location, last activity, preferences) are not part
of the digest, so editing them never invalidates cached compatibility.

The input may be an ORM ``User``, a dict (snake_case or camelCase keys, as
sent by clients on partial updates) or any object exposing the attributes.
Missing fields serialise as ``null`` (or ``[]`` for interests).
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping

# Relevant fields in digest order, with the camelCase alias accepted on input.
_FINGERPRINT_FIELDS: dict[str, str] = {
    "bio": "bio",
    "interests": "interests",
    "sexual_orientation": "sexualOrientation",
    "gender": "gender",
    "age": "age",
    "ai_profile": "aiProfile",
}


def _read_field(profile: Any, field: str, alias: str) -> Any:
    if isinstance(profile, Mapping):
        if field in profile:
            return profile[field]
        return profile.get(alias)
    value = getattr(profile, field, None)
    if value is None:
        value = getattr(profile, alias, None)
    return value


def _canonical_interests(interests: Any) -> list:
    if not interests:
        return []
    # Mixed-type lists sort by their string form rather than raising.
    return sorted(interests, key=lambda item: (str(type(item)), str(item)))


def _fingerprint_payload(profile: Any) -> dict[str, Any]:
    payload = {
        field: _read_field(profile, field, alias)
        for field, alias in _FINGERPRINT_FIELDS.items()
    }
    payload["interests"] = _canonical_interests(payload["interests"])
    return payload


def fingerprint(profile: Any) -> str:
    """Return the 64-character hex digest of a profile's matching fields.

    Pure and deterministic: permuting ``interests`` or changing any field
    outside the relevant set leaves the digest unchanged.
    """
    canonical = json.dumps(
        _fingerprint_payload(profile),
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def profile_has_changed(profile: Any, previous_digest: str | None) -> bool:
    """True when the profile's current digest differs from ``previous_digest``."""
    if previous_digest is None:
        return True
    return fingerprint(profile) != previous_digest


def profiles_are_equal(profile_a: Any, profile_b: Any) -> bool:
    return fingerprint(profile_a) == fingerprint(profile_b)
