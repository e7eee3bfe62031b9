"""
geowhisper.spatial: distance math and ephemeral chain clustering.
"""

from .geo import (
    EARTH_RADIUS_M,
    cell_for,
    distance_between,
    distance_m,
    distances_from,
    pairwise_distances,
    validate_identifier,
    validate_location,
    validate_radius,
)
from .clustering import (
    Cluster,
    ClusteringDiagnostics,
    chain_cluster_indices,
    cluster_content,
    cluster_dataframe,
)

__all__ = [
    "EARTH_RADIUS_M",
    "cell_for",
    "distance_between",
    "distance_m",
    "distances_from",
    "pairwise_distances",
    "validate_identifier",
    "validate_location",
    "validate_radius",
    "Cluster",
    "ClusteringDiagnostics",
    "chain_cluster_indices",
    "cluster_content",
    "cluster_dataframe",
]
