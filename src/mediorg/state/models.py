"""Persisted state models for scan runs and folder backups."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from mediorg.classification.models import Decision

ScanStatus = Literal["idle", "running", "completed", "cancelled", "failed"]
ScanMode = Literal["organize_unassigned", "reanalyze_all", "reorganize_all"]

SCAN_MODES: tuple[str, ...] = ("organize_unassigned", "reanalyze_all", "reorganize_all")
BACKUP_FORMAT_VERSION = "1.0"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ScanProgress(BaseModel):
    """Progress record for the current or most recent run.

    Attributes:
        status: Lifecycle state of the run.
        mode: Run mode, when a run has been started.
        dry_run: Whether the run previews decisions without applying them.
        total: Number of items in the run.
        processed: Number of items classified so far.
        results: Most recent decisions, newest last, for display only.
        applied: Decisions applied successfully.
        failed: Decisions that failed to apply.
        started_at: When the run started.
        completed_at: When the run finished or was cancelled.
        current_item: Item being classified right now.
        error: Setup failure that moved the run to `failed`.
    """

    status: ScanStatus = "idle"
    mode: Optional[ScanMode] = None
    dry_run: bool = False
    total: int = 0
    processed: int = 0
    results: List[Decision] = Field(default_factory=list)
    applied: int = 0
    failed: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    current_item: Optional[int] = None
    error: Optional[str] = None

    @property
    def percentage(self) -> int:
        """Return processed/total as a whole percentage capped at 100."""
        if self.total <= 0:
            return 0
        return min(100, round(self.processed / self.total * 100))


class ScanState(BaseModel):
    """Everything a run needs to resume from durable storage.

    Attributes:
        progress: Progress record.
        item_ids: Ordered item identifiers fixed when the run started.
        pending: Actionable decisions waiting to be applied (committed runs).
        dry_run_cache: Actionable decisions collected by preview runs.
        dry_run_mode: Mode of the preview run that filled the cache.
        session_folders: Folder paths proposed during the run.
    """

    progress: ScanProgress = Field(default_factory=ScanProgress)
    item_ids: List[int] = Field(default_factory=list)
    pending: List[Decision] = Field(default_factory=list)
    dry_run_cache: List[Decision] = Field(default_factory=list)
    dry_run_mode: Optional[ScanMode] = None
    session_folders: List[str] = Field(default_factory=list)


class BackupFolder(BaseModel):
    """Folder captured in a backup."""

    id: int
    name: str
    slug: str
    parent_id: Optional[int] = None
    sort_order: int = 0


class BackupAssignment(BaseModel):
    """Item-to-folder link captured in a backup."""

    item_id: int
    folder_id: int


class Backup(BaseModel):
    """Single-slot snapshot of the folder tree and its assignments."""

    folders: List[BackupFolder] = Field(default_factory=list)
    assignments: List[BackupAssignment] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=_now)
    format_version: str = BACKUP_FORMAT_VERSION


class BackupInfo(BaseModel):
    """Summary of the stored backup."""

    exists: bool
    timestamp: Optional[datetime] = None
    folder_count: int = 0
    assignment_count: int = 0
    format_version: Optional[str] = None


class RestoreResult(BaseModel):
    """Outcome of restoring a backup."""

    success: bool
    folders_restored: int = 0
    assignments_restored: int = 0
    error: Optional[str] = None


__all__ = [
    "BACKUP_FORMAT_VERSION",
    "SCAN_MODES",
    "Backup",
    "BackupAssignment",
    "BackupFolder",
    "BackupInfo",
    "RestoreResult",
    "ScanMode",
    "ScanProgress",
    "ScanState",
    "ScanStatus",
]
