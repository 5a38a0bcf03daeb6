"""
Issue classification and delta scan planning.
"""

from .classifier import IssueClassifier, classify_snapshot, classify_snapshots, flagged_nodes
from .delta_cache import DeltaCache

__all__ = [
    "IssueClassifier",
    "classify_snapshot",
    "classify_snapshots",
    "flagged_nodes",
    "DeltaCache",
]
