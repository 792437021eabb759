"""Scan runs: task queue, transition rules and orchestration."""

from .machine import BatchPlan, Task, next_task, plan_batch
from .orchestrator import ApplyResult, ScanOrchestrator, ScanResult
from .queue import InlineTaskQueue, QueuedTask, TaskQueue

__all__ = [
    "ApplyResult",
    "BatchPlan",
    "InlineTaskQueue",
    "QueuedTask",
    "ScanOrchestrator",
    "ScanResult",
    "Task",
    "TaskQueue",
    "next_task",
    "plan_batch",
]
