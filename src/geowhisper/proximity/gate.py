"""
Distance-based permission checks for mutating tower actions.

Within the interaction radius of a tower's anchor a user may post, like,
comment and chat; beyond it the tower is view-only. The boundary is
inclusive.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..errors import PermissionDeniedError
from ..models import LatLng
from ..spatial.geo import distance_between, validate_location, validate_radius

logger = logging.getLogger(__name__)

DEFAULT_INTERACTION_RADIUS_M = 500.0


@dataclass(frozen=True)
class ProximityResult:
    allowed: bool
    distance_m: float
    threshold_m: float


class ProximityGate:
    """
    Stateless proximity checker.

    Args:
        interaction_radius_m: Default threshold when a call does not pass one
    """

    def __init__(self, interaction_radius_m: float = DEFAULT_INTERACTION_RADIUS_M):
        self.interaction_radius_m = validate_radius(interaction_radius_m, "interaction_radius_m")

    def check(
        self,
        anchor: LatLng,
        user_location: LatLng,
        interaction_radius_m: Optional[float] = None,
    ) -> ProximityResult:
        anchor = validate_location(anchor)
        user_location = validate_location(user_location)
        threshold = (
            self.interaction_radius_m
            if interaction_radius_m is None
            else validate_radius(interaction_radius_m, "interaction_radius_m")
        )

        distance = distance_between(user_location, anchor)
        return ProximityResult(allowed=distance <= threshold, distance_m=distance, threshold_m=threshold)

    def validate(
        self,
        anchor: LatLng,
        user_location: LatLng,
        interaction_radius_m: Optional[float] = None,
        action: str = "interact",
        tower_id: Optional[str] = None,
    ) -> ProximityResult:
        """
        Like :meth:`check` but raises when the user is too far away.

        Raises:
            PermissionDeniedError: carries the distance and threshold
        """
        result = self.check(anchor, user_location, interaction_radius_m)
        if not result.allowed:
            error = PermissionDeniedError(result.distance_m, result.threshold_m, action, tower_id)
            logger.warning("Permission denied for tower %s: %s", tower_id, error)
            raise error

        logger.debug(
            "Permission granted to %s at tower %s (%.1fm <= %.0fm)",
            action, tower_id, result.distance_m, result.threshold_m,
        )
        return result
