"""
Error hierarchy for the tower engine.

Callers can catch :class:`GeoWhisperError` for anything raised on purpose by
this package; the subclasses map to how the caller is expected to react:

- ``NotFoundError``: surface to the user, never retry
- ``PermissionDeniedError``: expected outcome of a proximity check
- ``TransientStoreError``: reads may retry, writes must not
- ``ValidationError``: rejected before any store was touched
"""

from __future__ import annotations

from typing import Optional


class GeoWhisperError(Exception):
    """Base class for all engine errors."""


class ValidationError(GeoWhisperError, ValueError):
    """Invalid input (coordinates, radius, identifiers, batch size)."""


class NotFoundError(GeoWhisperError, LookupError):
    """A referenced tower or content item does not exist."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind.capitalize()} not found: {identifier}")


class PermissionDeniedError(GeoWhisperError):
    """
    User is too far from a tower to perform a mutating action.

    Carries the measured distance and the threshold so clients can render
    "you are Xm away, must be within Ym".
    """

    def __init__(
        self,
        distance_m: float,
        threshold_m: float,
        action: str = "interact",
        tower_id: Optional[str] = None,
    ):
        self.distance_m = distance_m
        self.threshold_m = threshold_m
        self.action = action
        self.tower_id = tower_id
        super().__init__(
            f"You must be within {threshold_m:.0f}m of the tower to {action}. "
            f"You are {distance_m:.0f}m away (view-only mode)."
        )


class TransientStoreError(GeoWhisperError):
    """Timeout or connection failure talking to a backing store."""


class TransactionConflictError(TransientStoreError):
    """Optimistic update kept losing the compare-and-set race."""

    def __init__(self, collection: str, doc_id: str, attempts: int):
        self.collection = collection
        self.doc_id = doc_id
        self.attempts = attempts
        super().__init__(
            f"Gave up updating {collection}/{doc_id} after {attempts} conflicting attempts"
        )
