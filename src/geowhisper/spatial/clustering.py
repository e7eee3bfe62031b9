"""
Ephemeral single-link (chain) clustering of content items.

This module provides:
1. Full-rebuild clustering over a bounded batch of content items
2. True centroids recomputed on every run (unlike persistent tower anchors)
3. H3 cell ids per cluster for map display
4. Diagnostics describing how far chains spread beyond the radius

Membership is transitive: an item joins a cluster when it lies within
``radius_m`` of *any* current member, not of the centroid. A long run of
closely spaced points therefore becomes one cluster spanning many radii.
Nothing here is persisted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ..errors import ValidationError
from ..models import ContentItem, LatLng
from .geo import cell_for, pairwise_distances, validate_radius

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITEMS = 500
DEFAULT_H3_RES = 10


@dataclass
class Cluster:
    """One ephemeral cluster."""

    cluster_id: int
    """Rank in the output (0 = largest)."""

    centroid: LatLng
    """Arithmetic mean of member coordinates."""

    members: List[ContentItem]
    """Members in input order."""

    hex_ids: List[str] = field(default_factory=list)
    """Distinct H3 cells covered by the members."""

    @property
    def member_count(self) -> int:
        return len(self.members)


@dataclass
class ClusteringDiagnostics:
    """Summary of a clustering run."""

    num_points: int
    num_clusters: int
    radius_m: float
    cluster_sizes: List[int] = field(default_factory=list)
    num_singletons: int = 0
    max_extent_m: float = 0.0
    """Largest member-to-member distance found inside any single cluster."""

    chained_clusters: int = 0
    """Clusters whose extent exceeds ``radius_m`` (linked through intermediate points)."""

    suggestions: List[str] = field(default_factory=list)


def chain_cluster_indices(distances: np.ndarray, radius_m: float) -> List[List[int]]:
    """
    Group row indices of a distance matrix into chain clusters.

    Seeds are taken in index order; each cluster grows pass by pass, adding
    every unprocessed index within ``radius_m`` of a member added in the
    previous pass, until a pass adds nothing.
    """
    n = distances.shape[0]
    adjacent = distances <= radius_m
    processed = np.zeros(n, dtype=bool)
    groups: List[List[int]] = []

    for seed in range(n):
        if processed[seed]:
            continue
        processed[seed] = True
        in_cluster = np.zeros(n, dtype=bool)
        in_cluster[seed] = True
        frontier = in_cluster.copy()

        while True:
            reachable = adjacent[frontier].any(axis=0) & ~processed
            if not reachable.any():
                break
            processed |= reachable
            in_cluster |= reachable
            frontier = reachable

        groups.append(np.flatnonzero(in_cluster).tolist())

    return groups


def _check_batch(items: Sequence, radius_m: float, max_items: Optional[int]) -> float:
    radius = validate_radius(radius_m)
    if max_items is not None and len(items) > max_items:
        raise ValidationError(
            f"Clustering is quadratic in the batch size; got {len(items)} items, "
            f"limit is {max_items}. Narrow the query before clustering."
        )
    return radius


def _run(
    items: Sequence[ContentItem],
    radius_m: float,
    max_items: Optional[int],
    h3_res: int,
) -> Tuple[List[Cluster], ClusteringDiagnostics, List[List[int]]]:
    radius = _check_batch(items, radius_m, max_items)

    if not items:
        return [], ClusteringDiagnostics(num_points=0, num_clusters=0, radius_m=radius), []

    lats = np.array([item.location.lat for item in items], dtype=float)
    lngs = np.array([item.location.lng for item in items], dtype=float)
    distances = pairwise_distances(lats, lngs)

    groups = chain_cluster_indices(distances, radius)
    # stable: equal sizes keep seed order
    groups.sort(key=len, reverse=True)

    clusters: List[Cluster] = []
    extents: List[float] = []
    for rank, idx in enumerate(groups):
        members = [items[i] for i in idx]
        hex_ids = list(dict.fromkeys(cell_for(lats[i], lngs[i], h3_res) for i in idx))
        clusters.append(Cluster(
            cluster_id=rank,
            centroid=LatLng(lat=float(lats[idx].mean()), lng=float(lngs[idx].mean())),
            members=members,
            hex_ids=hex_ids,
        ))
        extents.append(float(distances[np.ix_(idx, idx)].max()))

    diagnostics = ClusteringDiagnostics(
        num_points=len(items),
        num_clusters=len(clusters),
        radius_m=radius,
        cluster_sizes=[c.member_count for c in clusters],
        num_singletons=sum(1 for c in clusters if c.member_count == 1),
        max_extent_m=max(extents),
        chained_clusters=sum(1 for e in extents if e > radius),
    )

    if diagnostics.chained_clusters:
        diagnostics.suggestions.append(
            f"{diagnostics.chained_clusters} cluster(s) extend beyond the {radius:.0f}m radius "
            f"(widest spans {diagnostics.max_extent_m:.0f}m) through chains of nearby items. "
            "Use a smaller radius if tighter groups are wanted on the map."
        )
    if diagnostics.num_singletons == diagnostics.num_points and diagnostics.num_points > 1:
        diagnostics.suggestions.append(
            f"No two items are within {radius:.0f}m of each other; every item is its own cluster."
        )

    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            "Clustered %d items into %d clusters (radius=%.1fm, sizes=%s, max_extent=%.1fm)",
            diagnostics.num_points,
            diagnostics.num_clusters,
            radius,
            diagnostics.cluster_sizes[:10],
            diagnostics.max_extent_m,
        )

    return clusters, diagnostics, groups


def cluster_content(
    items: Sequence[ContentItem],
    radius_m: float,
    *,
    max_items: Optional[int] = DEFAULT_MAX_ITEMS,
    h3_res: int = DEFAULT_H3_RES,
) -> List[Cluster]:
    """
    Chain-cluster ``items`` and return clusters sorted by size, largest first.

    Args:
        items: Content items with locations (bounded batch)
        radius_m: Link distance in meters; must be positive
        max_items: Refuse batches larger than this (None = no limit)
        h3_res: Resolution for the per-cluster hex ids

    Returns:
        Clusters partitioning ``items``; every item appears exactly once

    Raises:
        ValidationError: non-positive radius or oversized batch
    """
    clusters, _diagnostics, _groups = _run(items, radius_m, max_items, h3_res)
    return clusters


def cluster_dataframe(
    df: pd.DataFrame,
    radius_m: float,
    *,
    max_items: Optional[int] = DEFAULT_MAX_ITEMS,
    h3_res: int = DEFAULT_H3_RES,
) -> Tuple[pd.DataFrame, List[Cluster], ClusteringDiagnostics]:
    """
    Chain-cluster a frame with ``id``, ``lat`` and ``lng`` columns.

    Returns:
        (df_with_clusters, clusters, diagnostics)

    The returned frame is a copy with a ``cluster`` column holding each row's
    cluster rank.
    """
    missing = {"id", "lat", "lng"} - set(df.columns)
    if missing:
        raise ValidationError(f"DataFrame is missing required columns: {sorted(missing)}")

    items = [
        ContentItem(id=str(row.id), location=LatLng(lat=float(row.lat), lng=float(row.lng)))
        for row in df.itertuples(index=False)
    ]
    clusters, diagnostics, groups = _run(items, radius_m, max_items, h3_res)

    labels = np.full(len(df), -1, dtype=int)
    for rank, idx in enumerate(groups):
        labels[idx] = rank

    out = df.copy()
    out["cluster"] = labels
    return out, clusters, diagnostics
