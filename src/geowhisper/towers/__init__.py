"""Persistent towers: registry, assignment and maintenance."""

from .directory import TOWERS_COLLECTION, TowerDirectory
from .assignment import (
    CONTENT_COLLECTION,
    Assignment,
    assign_to_tower,
    claim_content,
    release_lost_claim,
    set_content_tower,
)
from .maintenance import MigrationStats, ReconciliationReport, TowerMaintenance

__all__ = [
    "TOWERS_COLLECTION",
    "TowerDirectory",
    "CONTENT_COLLECTION",
    "Assignment",
    "assign_to_tower",
    "claim_content",
    "release_lost_claim",
    "set_content_tower",
    "MigrationStats",
    "ReconciliationReport",
    "TowerMaintenance",
]
