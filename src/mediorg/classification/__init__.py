"""Classification pipeline: folder snapshots, response reconciliation and decisions."""

from .folders import FolderIndex
from .models import Decision
from .reconciler import (
    HierarchyConflict,
    detect_hierarchy_conflict,
    parse_response,
    remap_hierarchy_conflict,
)
from .service import ClassificationService, SessionFolders

__all__ = [
    "ClassificationService",
    "Decision",
    "FolderIndex",
    "HierarchyConflict",
    "SessionFolders",
    "detect_hierarchy_conflict",
    "parse_response",
    "remap_hierarchy_conflict",
]
