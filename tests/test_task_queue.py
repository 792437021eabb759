"""Tests for the inline task queue."""

from __future__ import annotations

from pathlib import Path
from typing import Any, List

import pytest

from mediorg.scan import InlineTaskQueue
from mediorg.state import StateError


def test_tasks_run_in_fifo_order_including_follow_ups() -> None:
    queue = InlineTaskQueue()
    calls: List[Any] = []

    def first(step: int) -> None:
        calls.append(("first", step))
        if step < 2:
            queue.enqueue("first", {"step": step + 1})

    queue.register("first", first)
    queue.register("second", lambda: calls.append("second"))
    queue.enqueue("first", {"step": 0})
    queue.enqueue("second")

    ran = queue.run_pending()

    assert ran == 4
    assert calls == [("first", 0), "second", ("first", 1), ("first", 2)]
    assert queue.pending() == []


def test_run_pending_respects_limit() -> None:
    queue = InlineTaskQueue()
    queue.register("noop", lambda: None)
    for _ in range(3):
        queue.enqueue("noop")

    assert queue.run_pending(limit=2) == 2
    assert len(queue.pending()) == 1


def test_unschedule_all_matches_name_and_group() -> None:
    queue = InlineTaskQueue()
    queue.enqueue("batch", {"n": 1})
    queue.enqueue("batch", {"n": 2}, group="other")
    queue.enqueue("finalize")

    removed = queue.unschedule_all("batch")

    assert removed == 1
    assert [(task.name, task.group) for task in queue.pending()] == [
        ("batch", "other"),
        ("finalize", "mediorg"),
    ]


def test_failing_and_unknown_tasks_are_dropped() -> None:
    queue = InlineTaskQueue()
    calls: List[str] = []

    def broken() -> None:
        raise RuntimeError("boom")

    queue.register("broken", broken)
    queue.register("ok", lambda: calls.append("ok"))
    queue.enqueue("broken")
    queue.enqueue("ghost")
    queue.enqueue("ok")

    assert queue.run_pending() == 3
    assert calls == ["ok"]
    assert queue.pending() == []


def test_queue_persists_to_path(tmp_path: Path) -> None:
    """Tasks queued by one instance are visible to another bound to the same file.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    path = tmp_path / "queue.json"
    InlineTaskQueue(path).enqueue("batch", {"batch_offset": 4})
    calls: List[int] = []
    other = InlineTaskQueue(path)
    other.register("batch", lambda batch_offset: calls.append(batch_offset))

    assert [task.args for task in other.pending()] == [{"batch_offset": 4}]
    other.run_pending()

    assert calls == [4]
    assert InlineTaskQueue(path).pending() == []


def test_invalid_queue_file_raises(tmp_path: Path) -> None:
    path = tmp_path / "queue.json"
    path.write_text("{oops", encoding="utf-8")

    with pytest.raises(StateError):
        InlineTaskQueue(path).pending()
