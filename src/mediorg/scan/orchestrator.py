"""Resumable, cancellable scan runs driven by a task queue."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel

from mediorg.backends import BackendAdapter
from mediorg.backup import BackupService
from mediorg.classification import ClassificationService, Decision, SessionFolders
from mediorg.config.models import ScanOptions
from mediorg.library import LibraryError, MediaLibrary
from mediorg.state import StateError, StateRepository
from mediorg.state.models import SCAN_MODES, ScanProgress, ScanState

from .machine import (
    ALL_TASKS,
    APPLY_TASK,
    BATCH_TASK,
    CLEANUP_TASK,
    FINALIZE_TASK,
    TASK_GROUP,
    Task,
    batch_task,
    initial_task,
    next_task,
    plan_batch,
    record_decision,
)
from .queue import TaskQueue

LOGGER = logging.getLogger(__name__)

CompletionListener = Callable[[ScanProgress], None]

ALREADY_RUNNING = "A scan is already in progress. Please wait for it to complete or cancel it."
INVALID_MODE = "Invalid scan mode."
NO_BACKEND = "No AI provider configured. Please configure an AI provider in settings."
NO_ITEMS = "No media files found to process."
NOT_RUNNING = "No scan is currently running."
NO_CACHE = "No cached dry-run results to apply."


class ScanResult(BaseModel):
    """Outcome of a run-control operation."""

    success: bool
    message: str
    total: Optional[int] = None


class ApplyResult(BaseModel):
    """Outcome of applying cached dry-run decisions."""

    success: bool
    message: str
    applied: int = 0
    failed: int = 0


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ScanOrchestrator:
    """Own the scan state machine and bind it to a task queue.

    Every task handler starts by loading state from the repository; nothing
    carries over in memory between handlers.
    """

    def __init__(
        self,
        library: MediaLibrary,
        repository: StateRepository,
        queue: TaskQueue,
        settings: ScanOptions,
        backend: Optional[BackendAdapter] = None,
        *,
        backup: Optional[BackupService] = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            library: Item and folder store.
            repository: Persistence for scan state and backups.
            queue: Task queue that runs the scan steps.
            settings: Scan settings.
            backend: Selected AI backend, or None when none is configured.
            backup: Backup service; one bound to `library` is created when omitted.
        """
        self.library = library
        self.repository = repository
        self.queue = queue
        self.settings = settings
        self.backend = backend
        self.service = ClassificationService(library, backend, settings)
        self.backup = backup or BackupService(library, repository)
        self._listeners: List[CompletionListener] = []

    def register_tasks(self, queue: Optional[TaskQueue] = None) -> None:
        """Register the scan step handlers with a task queue."""
        target = queue or self.queue
        target.register(CLEANUP_TASK, self.cleanup_folders)
        target.register(BATCH_TASK, self.process_batch)
        target.register(APPLY_TASK, self.apply_assignments)
        target.register(FINALIZE_TASK, self.finalize_scan)

    def on_complete(self, listener: CompletionListener) -> None:
        """Call `listener` with the final progress whenever a run completes."""
        self._listeners.append(listener)

    # Run control ------------------------------------------------------

    def start_scan(self, mode: str, dry_run: bool = False) -> ScanResult:
        """Start a new run.

        Args:
            mode: One of `organize_unassigned`, `reanalyze_all`, `reorganize_all`.
            dry_run: Collect decisions without applying them.

        Returns:
            ScanResult: Whether the run started, with the item count.
        """
        state = self.repository.load_scan()
        if state.progress.status == "running":
            return ScanResult(success=False, message=ALREADY_RUNNING)
        if mode not in SCAN_MODES:
            return ScanResult(success=False, message=INVALID_MODE)
        if self.backend is None:
            return ScanResult(success=False, message=NO_BACKEND)

        item_ids = self.library.list_item_ids(unassigned_only=mode == "organize_unassigned")
        if not item_ids:
            return ScanResult(success=False, message=NO_ITEMS)

        state = ScanState(
            progress=ScanProgress(
                status="running",
                mode=mode,  # type: ignore[arg-type]
                dry_run=dry_run,
                total=len(item_ids),
                started_at=_now(),
            ),
            item_ids=sorted(item_ids),
            dry_run_mode=mode if dry_run else None,  # type: ignore[arg-type]
        )
        self.repository.save_scan(state)

        if mode == "reorganize_all" and not dry_run:
            try:
                self.backup.export()
            except (StateError, LibraryError, OSError) as exc:
                LOGGER.error("Backup before reorganize failed: %s", exc)
                self._fail(state, f"Backup failed: {exc}")
                return ScanResult(success=False, message=f"Scan setup failed: {exc}")

        self._schedule(initial_task(state, self.settings.batch_size))
        LOGGER.info("Started %s scan of %d items (dry_run=%s).", mode, len(item_ids), dry_run)
        return ScanResult(
            success=True,
            message=f"Started scanning {len(item_ids)} media files.",
            total=len(item_ids),
        )

    def cancel_scan(self) -> ScanResult:
        """Stop the active run and drop its queued tasks."""
        state = self.repository.load_scan()
        if state.progress.status != "running":
            return ScanResult(success=False, message=NOT_RUNNING)

        self._unschedule_all()
        state.progress.status = "cancelled"
        state.progress.completed_at = _now()
        state.progress.current_item = None
        state.item_ids = []
        state.pending = []
        self.repository.save_scan(state)
        LOGGER.info("Scan cancelled after %d items.", state.progress.processed)
        return ScanResult(success=True, message="Scan cancelled successfully.")

    def reset_progress(self) -> ScanResult:
        """Force the progress back to idle and clear cached and pending decisions."""
        self._unschedule_all()
        self.repository.save_scan(ScanState())
        return ScanResult(success=True, message="Scan progress has been reset.")

    # Task handlers ----------------------------------------------------

    def cleanup_folders(self, **_: Any) -> None:
        """Delete the whole folder tree before a committed reorganize run."""
        state = self.repository.load_scan()
        if state.progress.status != "running" or state.progress.mode != "reorganize_all":
            return

        self.backup.remove_all_folders()
        self.service.refresh_folders()
        state.session_folders = []
        self.repository.save_scan(state)
        self._schedule(batch_task(0, self.settings.batch_size, state.progress.dry_run))

    def process_batch(
        self,
        batch_offset: int = 0,
        batch_size: Optional[int] = None,
        dry_run: Optional[bool] = None,
    ) -> None:
        """Classify the next window of items.

        The window is derived from the persisted processed count; the
        `batch_offset` and `dry_run` arguments are informational only.

        Args:
            batch_offset: Offset the task was scheduled for.
            batch_size: Number of items per batch.
            dry_run: Preview flag the task was scheduled with.
        """
        state = self.repository.load_scan()
        if state.progress.status != "running" or not state.item_ids:
            return

        size = batch_size or self.settings.batch_size
        plan = plan_batch(state, size)
        if plan.offset != batch_offset:
            LOGGER.debug("Batch scheduled at %d resumes at %d.", batch_offset, plan.offset)
        if dry_run is not None and dry_run != state.progress.dry_run:
            LOGGER.debug("Ignoring stale dry_run=%s task argument.", dry_run)

        if not plan.exhausted:
            self.service.refresh_folders()
            self.service.session_store = SessionFolders(state.session_folders)
            for item_id in plan.item_ids:
                if not self._is_running():
                    LOGGER.info("Scan stopped before item %s.", item_id)
                    return
                state.progress.current_item = item_id
                try:
                    decision = self.service.classify(item_id)
                except Exception as exc:  # noqa: BLE001
                    LOGGER.exception("Classification of item %s failed", item_id)
                    decision = Decision.skip(f"Classification failed: {exc}", item_id=item_id)
                if not self._is_running():
                    LOGGER.info("Scan stopped while classifying item %s.", item_id)
                    return
                record_decision(state, decision, self.settings.results_limit)
                self.repository.save_scan(state)

            state.progress.current_item = None
            if not self._is_running():
                return
            self.repository.save_scan(state)

        self._schedule(next_task(state, size))

    def apply_assignments(self, **_: Any) -> None:
        """Apply pending decisions from a committed run."""
        state = self.repository.load_scan()
        if state.progress.status != "running":
            return

        applied, failed = self._apply(state.pending)
        state.progress.applied += applied
        state.progress.failed += failed
        state.pending = []
        self.repository.save_scan(state)
        self._schedule(Task(FINALIZE_TASK))

    def finalize_scan(self, **_: Any) -> None:
        """Mark the run completed and notify completion listeners."""
        state = self.repository.load_scan()
        if state.progress.status != "running":
            return

        state.progress.status = "completed"
        state.progress.completed_at = _now()
        state.progress.current_item = None
        state.item_ids = []
        state.pending = []
        state.session_folders = []
        self.repository.save_scan(state)
        LOGGER.info(
            "Scan completed: %d processed, %d applied, %d failed.",
            state.progress.processed,
            state.progress.applied,
            state.progress.failed,
        )
        self._notify(state.progress)

    # Dry-run cache ----------------------------------------------------

    def apply_cached_results(self, mode: Optional[str] = None) -> ApplyResult:
        """Commit decisions collected by a previous dry run.

        For `reorganize_all` the tree is backed up and wiped first; decisions
        that pointed at existing folders are replayed by path.

        Args:
            mode: Run mode to apply under; defaults to the dry run's mode.

        Returns:
            ApplyResult: Applied and failed counts.
        """
        state = self.repository.load_scan()
        if state.progress.status == "running":
            return ApplyResult(success=False, message=ALREADY_RUNNING)
        if not state.dry_run_cache:
            return ApplyResult(success=False, message=NO_CACHE)

        mode = mode or state.dry_run_mode or "organize_unassigned"
        if mode not in SCAN_MODES:
            return ApplyResult(success=False, message=INVALID_MODE)

        decisions = list(state.dry_run_cache)
        if mode == "reorganize_all":
            decisions = self._by_path(decisions)
            try:
                self.backup.export()
            except (StateError, LibraryError, OSError) as exc:
                LOGGER.error("Backup before reorganize failed: %s", exc)
                return ApplyResult(success=False, message=f"Backup failed: {exc}")
            self.backup.remove_all_folders()

        state.progress = ScanProgress(
            status="running",
            mode=mode,  # type: ignore[arg-type]
            dry_run=False,
            total=len(decisions),
            started_at=_now(),
        )
        self.repository.save_scan(state)

        applied, failed = self._apply(decisions)
        state.progress.processed = len(decisions)
        state.progress.applied = applied
        state.progress.failed = failed
        state.progress.results = decisions[-self.settings.results_limit :]
        state.progress.status = "completed"
        state.progress.completed_at = _now()
        state.dry_run_cache = []
        state.dry_run_mode = None
        self.repository.save_scan(state)
        self._notify(state.progress)

        return ApplyResult(
            success=True,
            message=f"Applied {applied} of {len(decisions)} cached results.",
            applied=applied,
            failed=failed,
        )

    def get_cached_results_count(self) -> int:
        return len(self.repository.load_scan().dry_run_cache)

    def get_cached_results(self) -> List[Decision]:
        return list(self.repository.load_scan().dry_run_cache)

    # Queries ----------------------------------------------------------

    def get_progress(self) -> Dict[str, Any]:
        """Return the progress record with the derived percentage."""
        progress = self.repository.load_scan().progress
        payload = progress.model_dump(mode="json")
        payload["percentage"] = progress.percentage
        return payload

    def analyze_single(self, item_id: int) -> Decision:
        """Classify one item outside any run, without applying the result."""
        service = ClassificationService(self.library, self.backend, self.settings)
        return service.classify(item_id)

    # Internal helpers -------------------------------------------------

    def _is_running(self) -> bool:
        return self.repository.load_scan().progress.status == "running"

    def _schedule(self, task: Task) -> None:
        self.queue.enqueue(task.name, task.args, TASK_GROUP)

    def _unschedule_all(self) -> None:
        for name in ALL_TASKS:
            self.queue.unschedule_all(name, TASK_GROUP)

    def _apply(self, decisions: List[Decision]) -> tuple[int, int]:
        self.service.refresh_folders()
        applied = failed = 0
        for decision in decisions:
            if self.service.apply_decision(decision):
                applied += 1
            else:
                failed += 1
        return applied, failed

    def _by_path(self, decisions: List[Decision]) -> List[Decision]:
        index = self.service.refresh_folders()
        converted: List[Decision] = []
        for decision in decisions:
            path = index.path_of(decision.folder_id) if decision.action == "assign" else None
            if path and decision.folder_id is not None:
                decision = decision.model_copy(
                    update={"action": "create", "folder_id": None, "new_folder_path": path}
                )
            converted.append(decision)
        return converted

    def _fail(self, state: ScanState, error: str) -> None:
        self._unschedule_all()
        state.progress.status = "failed"
        state.progress.error = error
        state.progress.completed_at = _now()
        state.item_ids = []
        state.pending = []
        self.repository.save_scan(state)

    def _notify(self, progress: ScanProgress) -> None:
        for listener in self._listeners:
            try:
                listener(progress)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Scan completion listener failed")


__all__ = ["ApplyResult", "CompletionListener", "ScanOrchestrator", "ScanResult"]
