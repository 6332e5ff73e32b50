"""Unified index and its snapshot helpers."""

from .snapshot import restore_index, snapshot_index
from .unified import UnifiedIndex, merge_outcomes

__all__ = ["UnifiedIndex", "merge_outcomes", "snapshot_index", "restore_index"]
