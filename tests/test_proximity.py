"""
Unit Tests for proximity gating (geowhisper.proximity)
"""

import pytest

from geowhisper.errors import PermissionDeniedError, ValidationError
from geowhisper.proximity import DEFAULT_INTERACTION_RADIUS_M, ProximityGate
from geowhisper.spatial.geo import distance_between

from tests.conftest import ORIGIN, offset


@pytest.fixture
def gate():
    return ProximityGate()


class TestProximityCheck:

    def test_default_radius(self, gate):
        assert gate.interaction_radius_m == DEFAULT_INTERACTION_RADIUS_M == 500.0

    def test_nearby_user_allowed(self, gate):
        result = gate.check(ORIGIN, offset(ORIGIN, north_m=120))

        assert result.allowed
        assert result.distance_m == pytest.approx(120.0, abs=0.01)
        assert result.threshold_m == 500.0

    def test_far_user_denied(self, gate):
        result = gate.check(ORIGIN, offset(ORIGIN, north_m=750))

        assert not result.allowed
        assert result.distance_m == pytest.approx(750.0, abs=0.01)

    def test_boundary_is_inclusive(self, gate):
        user = offset(ORIGIN, north_m=300)
        exact = distance_between(user, ORIGIN)

        assert gate.check(ORIGIN, user, interaction_radius_m=exact).allowed
        assert not gate.check(ORIGIN, user, interaction_radius_m=exact - 1e-6).allowed

    def test_per_call_radius_overrides_default(self):
        gate = ProximityGate(interaction_radius_m=100)
        user = offset(ORIGIN, east_m=200)

        assert not gate.check(ORIGIN, user).allowed
        assert gate.check(ORIGIN, user, interaction_radius_m=250).allowed

    def test_invalid_inputs(self, gate):
        with pytest.raises(ValidationError):
            gate.check(ORIGIN, (120.0, 0.0))
        with pytest.raises(ValidationError):
            gate.check(ORIGIN, ORIGIN, interaction_radius_m=0)
        with pytest.raises(ValidationError):
            ProximityGate(interaction_radius_m=-1)


class TestProximityValidate:

    def test_allowed_returns_result(self, gate):
        result = gate.validate(ORIGIN, offset(ORIGIN, east_m=10), action="comment", tower_id="t1")
        assert result.allowed

    def test_denied_raises_with_details(self, gate):
        with pytest.raises(PermissionDeniedError) as exc_info:
            gate.validate(ORIGIN, offset(ORIGIN, north_m=800), action="like posts", tower_id="t1")

        error = exc_info.value
        assert error.distance_m == pytest.approx(800.0, abs=0.01)
        assert error.threshold_m == 500.0
        assert error.tower_id == "t1"
        assert str(error) == (
            "You must be within 500m of the tower to like posts. You are 800m away (view-only mode)."
        )
