"""Unit tests for the haversine helper and gender normalisation."""
import pytest

from app.utils.gender import normalize_gender, normalize_gender_list
from app.utils.geo import haversine_km


class TestHaversine:

    def test_paris_lyon(self):
        # ~392 km great-circle distance
        distance = haversine_km(48.8566, 2.3522, 45.7640, 4.8357)
        assert 385 <= distance <= 400

    def test_same_point_is_zero(self):
        assert haversine_km(48.85, 2.35, 48.85, 2.35) == 0

    def test_returns_int(self):
        assert isinstance(haversine_km(0.0, 0.0, 0.0, 1.0), int)

    @pytest.mark.parametrize(
        "coords",
        [
            (None, 2.35, 45.76, 4.83),
            (48.85, None, 45.76, 4.83),
            (48.85, 2.35, None, None),
            (91.0, 2.35, 45.76, 4.83),
            (48.85, 200.0, 45.76, 4.83),
            (float("nan"), 2.35, 45.76, 4.83),
        ],
    )
    def test_invalid_coordinates_give_none(self, coords):
        assert haversine_km(*coords) is None


class TestGenderNormalisation:

    @pytest.mark.parametrize(
        "raw,expected",
        [("male", "male"), ("Homme", "male"), ("femme", "female"), (" Woman ", "female"), ("autre", "other")],
    )
    def test_aliases(self, raw, expected):
        assert normalize_gender(raw) == expected

    def test_unknown_token(self):
        assert normalize_gender("unicorn") is None
        assert normalize_gender(None) is None

    def test_list_drops_unknown_and_duplicates(self):
        assert normalize_gender_list(["femme", "female", "x", "homme"]) == ["female", "male"]
        assert normalize_gender_list(None) == []
