"""
Great-circle distance helpers and coordinate validation.

``distance_m`` is the scalar haversine used for single comparisons (proximity
checks, tests). The numpy variants compute the same formula over arrays for
the linear tower scan and the pairwise clustering matrix.
"""

from __future__ import annotations

import math
from typing import Any, Mapping, Sequence, Tuple, Union

import h3
import numpy as np
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError
from ..models import LatLng

EARTH_RADIUS_M = 6_371_000.0

LocationLike = Union[LatLng, Tuple[float, float], Sequence[float], Mapping[str, Any]]


def distance_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Haversine distance in meters between two points (Earth radius 6371 km)."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)

    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    a = min(1.0, a)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def distance_between(a: LatLng, b: LatLng) -> float:
    return distance_m(a.lat, a.lng, b.lat, b.lng)


def distances_from(
    lat: float,
    lng: float,
    lats: np.ndarray,
    lngs: np.ndarray,
) -> np.ndarray:
    """Vectorized haversine from one point to many, in meters."""
    lats = np.asarray(lats, dtype=float)
    lngs = np.asarray(lngs, dtype=float)
    if lats.size == 0:
        return np.zeros(0, dtype=float)

    d_lat = np.radians(lats - lat)
    d_lng = np.radians(lngs - lng)
    a = (
        np.sin(d_lat / 2) ** 2
        + np.cos(np.radians(lat)) * np.cos(np.radians(lats)) * np.sin(d_lng / 2) ** 2
    )
    a = np.clip(a, 0.0, 1.0)
    return EARTH_RADIUS_M * 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))


def pairwise_distances(lats: np.ndarray, lngs: np.ndarray) -> np.ndarray:
    """
    Symmetric (n, n) haversine distance matrix in meters.

    The diagonal is exactly zero.
    """
    lats = np.asarray(lats, dtype=float)
    lngs = np.asarray(lngs, dtype=float)
    n = lats.size
    if n == 0:
        return np.zeros((0, 0), dtype=float)

    lat_r = np.radians(lats)
    d_lat = lat_r[:, None] - lat_r[None, :]
    d_lng = np.radians(lngs[:, None] - lngs[None, :])
    cos_lat = np.cos(lat_r)

    a = np.sin(d_lat / 2) ** 2 + np.outer(cos_lat, cos_lat) * np.sin(d_lng / 2) ** 2
    a = np.clip(a, 0.0, 1.0)
    dist = EARTH_RADIUS_M * 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))
    # enforce exact symmetry against rounding in the outer product
    dist = np.minimum(dist, dist.T)
    np.fill_diagonal(dist, 0.0)
    return dist


def validate_location(location: LocationLike) -> LatLng:
    """
    Coerce ``location`` into a :class:`LatLng`, rejecting bad coordinates.

    Accepts a ``LatLng``, a ``(lat, lng)`` pair or a mapping with
    ``lat``/``lng`` (or ``latitude``/``longitude``) keys.

    Raises:
        ValidationError: non-finite or out-of-range coordinates
    """
    if isinstance(location, LatLng):
        lat, lng = location.lat, location.lng
    elif isinstance(location, Mapping):
        lat = location.get("lat", location.get("latitude"))
        lng = location.get("lng", location.get("longitude"))
    else:
        try:
            lat, lng = location
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Cannot interpret {location!r} as a coordinate pair") from exc

    try:
        lat_f, lng_f = float(lat), float(lng)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Coordinates must be numeric, got ({lat!r}, {lng!r})") from exc

    if not (math.isfinite(lat_f) and math.isfinite(lng_f)):
        raise ValidationError(f"Coordinates must be finite, got ({lat_f}, {lng_f})")

    try:
        return LatLng(lat=lat_f, lng=lng_f)
    except PydanticValidationError as exc:
        raise ValidationError(
            f"Coordinates out of range: lat={lat_f} (must be -90..90), lng={lng_f} (must be -180..180)"
        ) from exc


def validate_radius(radius_m: float, name: str = "radius_m") -> float:
    try:
        value = float(radius_m)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{name} must be a number, got {radius_m!r}") from exc
    if not math.isfinite(value) or value <= 0:
        raise ValidationError(f"{name} must be a positive distance in meters, got {radius_m!r}")
    return value


def validate_identifier(value: str, name: str = "id") -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} must be a non-empty string")
    return value


def cell_for(lat: float, lng: float, res: int = 10) -> str:
    """H3 cell containing the point, used to bucket clusters on the map."""
    return h3.latlng_to_cell(lat, lng, res)
