"""Unit tests for profile fingerprinting."""
import copy
from types import SimpleNamespace

import pytest

from app.services.profile_hash import fingerprint, profile_has_changed, profiles_are_equal


class TestFingerprintDeterminism:

    def test_same_profile_same_digest(self, sample_profile):
        assert fingerprint(sample_profile) == fingerprint(copy.deepcopy(sample_profile))

    def test_interest_order_is_irrelevant(self, sample_profile):
        permuted = copy.deepcopy(sample_profile)
        permuted["interests"] = list(reversed(sample_profile["interests"]))
        assert fingerprint(permuted) == fingerprint(sample_profile)

    def test_digest_is_sha256_hex(self, sample_profile):
        digest = fingerprint(sample_profile)
        assert len(digest) == 64
        int(digest, 16)

    def test_camel_and_snake_case_agree(self, sample_profile):
        snake = {
            "bio": sample_profile["bio"],
            "interests": sample_profile["interests"],
            "sexual_orientation": sample_profile["sexualOrientation"],
            "gender": sample_profile["gender"],
            "age": sample_profile["age"],
            "ai_profile": sample_profile["aiProfile"],
        }
        assert fingerprint(snake) == fingerprint(sample_profile)

    def test_object_and_dict_agree(self, sample_profile):
        obj = SimpleNamespace(
            bio=sample_profile["bio"],
            interests=sample_profile["interests"],
            sexual_orientation=sample_profile["sexualOrientation"],
            gender=sample_profile["gender"],
            age=sample_profile["age"],
            ai_profile=sample_profile["aiProfile"],
            city="Paris",
        )
        assert fingerprint(obj) == fingerprint(sample_profile)

    def test_missing_interests_equal_empty_list(self):
        assert fingerprint({"bio": "x"}) == fingerprint({"bio": "x", "interests": []})


class TestFingerprintSensitivity:

    @pytest.mark.parametrize(
        "field,value",
        [
            ("bio", "Something else entirely."),
            ("interests", ["hiking", "cooking"]),
            ("gender", "male"),
            ("age", 30),
            ("sexualOrientation", "bisexual"),
        ],
    )
    def test_relevant_field_changes_digest(self, sample_profile, field, value):
        changed = copy.deepcopy(sample_profile)
        changed[field] = value
        assert fingerprint(changed) != fingerprint(sample_profile)

    def test_ai_profile_subfield_changes_digest(self, sample_profile):
        changed = copy.deepcopy(sample_profile)
        changed["aiProfile"]["love"] = "Words of affirmation"
        assert fingerprint(changed) != fingerprint(sample_profile)

    @pytest.mark.parametrize(
        "field,value",
        [
            ("photos", []),
            ("location", {"lat": 45.76, "lon": 4.83}),
            ("lastActiveAt", "2026-03-01T08:00:00Z"),
        ],
    )
    def test_volatile_field_keeps_digest(self, sample_profile, field, value):
        changed = copy.deepcopy(sample_profile)
        changed[field] = value
        assert fingerprint(changed) == fingerprint(sample_profile)


class TestHelpers:

    def test_profile_has_changed(self, sample_profile):
        digest = fingerprint(sample_profile)
        assert profile_has_changed(sample_profile, digest) is False
        assert profile_has_changed({**sample_profile, "age": 40}, digest) is True
        assert profile_has_changed(sample_profile, None) is True

    def test_profiles_are_equal(self, sample_profile):
        assert profiles_are_equal(sample_profile, {**sample_profile, "photos": []})
        assert not profiles_are_equal(sample_profile, {**sample_profile, "bio": "new"})
