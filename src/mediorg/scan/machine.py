"""Transition rules for scan runs, free of I/O.

The orchestrator loads :class:`ScanState` from storage, asks these functions
what to do next, and hands the resulting :class:`Task` to the queue.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

from mediorg.classification.models import Decision
from mediorg.state.models import ScanState

TASK_GROUP = "mediorg"
CLEANUP_TASK = "cleanup_folders"
BATCH_TASK = "process_batch"
APPLY_TASK = "apply_assignments"
FINALIZE_TASK = "finalize_scan"
ALL_TASKS: Tuple[str, ...] = (BATCH_TASK, APPLY_TASK, FINALIZE_TASK, CLEANUP_TASK)


@dataclass(frozen=True)
class Task:
    """Next unit of work to schedule."""

    name: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BatchPlan:
    """Items to classify in the next batch.

    Attributes:
        offset: Position of the first item, equal to the processed count.
        item_ids: Identifiers in the batch window.
        total: Number of items in the run.
    """

    offset: int
    item_ids: Tuple[int, ...]
    total: int

    @property
    def exhausted(self) -> bool:
        return not self.item_ids


def plan_batch(state: ScanState, batch_size: int) -> BatchPlan:
    """Compute the next batch window from the processed count.

    The window depends only on persisted state, so running the same batch
    handler twice without progress yields the same items.
    """
    offset = min(state.progress.processed, len(state.item_ids))
    window = state.item_ids[offset : offset + max(1, batch_size)]
    return BatchPlan(offset=offset, item_ids=tuple(window), total=len(state.item_ids))


def batch_task(offset: int, batch_size: int, dry_run: bool) -> Task:
    return Task(BATCH_TASK, {"batch_offset": offset, "batch_size": batch_size, "dry_run": dry_run})


def initial_task(state: ScanState, batch_size: int) -> Task:
    """Return the first task of a freshly started run."""
    progress = state.progress
    if progress.mode == "reorganize_all" and not progress.dry_run:
        return Task(CLEANUP_TASK)
    return batch_task(0, batch_size, progress.dry_run)


def next_task(state: ScanState, batch_size: int) -> Task:
    """Return the task that follows a finished batch."""
    progress = state.progress
    if progress.processed < len(state.item_ids):
        return batch_task(progress.processed, batch_size, progress.dry_run)
    if progress.dry_run:
        return Task(FINALIZE_TASK)
    return Task(APPLY_TASK)


def record_decision(state: ScanState, decision: Decision, results_limit: int) -> None:
    """Fold one decision into the state in place.

    Advances `processed`, appends to the bounded results list, and routes
    actionable decisions to the dry-run cache or the pending-apply list.
    """
    progress = state.progress
    progress.processed = min(progress.processed + 1, progress.total or progress.processed + 1)
    progress.results.append(decision)
    if len(progress.results) > results_limit:
        del progress.results[: len(progress.results) - results_limit]
    if decision.actionable:
        if progress.dry_run:
            state.dry_run_cache.append(decision)
        else:
            state.pending.append(decision)


__all__ = [
    "ALL_TASKS",
    "APPLY_TASK",
    "BATCH_TASK",
    "CLEANUP_TASK",
    "FINALIZE_TASK",
    "TASK_GROUP",
    "BatchPlan",
    "Task",
    "batch_task",
    "initial_task",
    "next_task",
    "plan_batch",
    "record_decision",
]
