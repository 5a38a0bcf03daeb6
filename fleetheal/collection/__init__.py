"""
Health collection: scope resolution, per-node collection, fleet scan.
"""

from .collector import DEFAULT_STALE_THRESHOLD, NodeHealthCollector, derive_status, is_stale
from .scanner import SCAN_DEADLINE_MESSAGE, FleetScanner
from .scope import InventoryScopeResolver

__all__ = [
    "DEFAULT_STALE_THRESHOLD",
    "NodeHealthCollector",
    "derive_status",
    "is_stale",
    "FleetScanner",
    "SCAN_DEADLINE_MESSAGE",
    "InventoryScopeResolver",
]
