"""Proximity gating of mutating tower actions."""

from .gate import DEFAULT_INTERACTION_RADIUS_M, ProximityGate, ProximityResult

__all__ = [
    "DEFAULT_INTERACTION_RADIUS_M",
    "ProximityGate",
    "ProximityResult",
]
