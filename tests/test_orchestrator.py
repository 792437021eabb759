"""Tests for scan runs driven through the inline task queue."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, List

import pytest
from PIL import Image

from mediorg.config.models import ScanOptions
from mediorg.library import JsonMediaLibrary
from mediorg.scan import InlineTaskQueue, ScanOrchestrator
from mediorg.scan.orchestrator import (
    ALREADY_RUNNING,
    INVALID_MODE,
    NO_BACKEND,
    NO_CACHE,
    NO_ITEMS,
    NOT_RUNNING,
)
from mediorg.state import ScanProgress, StateRepository

PRODUCTS = '{"action": "existing", "folder_id": 3, "confidence": 0.9, "reason": "Product shot"}'
OUTDOOR = '{"action": "existing", "folder_id": 2, "confidence": 0.8, "reason": "Outside"}'
SKIP = '{"action": "skip", "reason": "Unclear"}'


@pytest.fixture
def repository(tmp_path: Path) -> StateRepository:
    return StateRepository(tmp_path / "state")


def _add_images(library: JsonMediaLibrary, count: int = 3) -> List[int]:
    return [library.add_item("image/jpeg", f"photo-{n}.jpg").id for n in range(count)]


def _orchestrator(
    library: JsonMediaLibrary,
    repository: StateRepository,
    backend: Any,
    **settings: Any,
) -> tuple[ScanOrchestrator, InlineTaskQueue]:
    queue = InlineTaskQueue()
    options = ScanOptions(**{"batch_size": 2, **settings})
    orchestrator = ScanOrchestrator(library, repository, queue, options, backend)
    orchestrator.register_tasks()
    return orchestrator, queue


def test_start_rejections(
    library: JsonMediaLibrary,
    repository: StateRepository,
    scripted_backend: Callable[..., Any],
) -> None:
    orchestrator, _ = _orchestrator(library, repository, scripted_backend(PRODUCTS))
    unconfigured, _ = _orchestrator(library, repository, None)

    assert orchestrator.start_scan("organize_unassigned").message == NO_ITEMS
    _add_images(library)
    assert orchestrator.start_scan("tidy_up").message == INVALID_MODE
    assert unconfigured.start_scan("organize_unassigned").message == NO_BACKEND

    started = orchestrator.start_scan("organize_unassigned")
    assert started.success is True
    assert started.total == 3
    assert started.message == "Started scanning 3 media files."

    again = orchestrator.start_scan("tidy_up")
    assert again.success is False
    assert again.message == ALREADY_RUNNING


def test_organize_unassigned_only_scans_unlinked_items(
    library: JsonMediaLibrary,
    repository: StateRepository,
    scripted_backend: Callable[..., Any],
) -> None:
    first, second, third = _add_images(library)
    library.link(second, 1)
    orchestrator, _ = _orchestrator(library, repository, scripted_backend(PRODUCTS))

    result = orchestrator.start_scan("organize_unassigned")

    assert result.total == 2
    assert repository.load_scan().item_ids == [first, third]


def test_committed_run_applies_pending_decisions(
    library: JsonMediaLibrary,
    repository: StateRepository,
    scripted_backend: Callable[..., Any],
) -> None:
    first, second, third = _add_images(library)
    backend = scripted_backend(PRODUCTS, SKIP, OUTDOOR)
    orchestrator, queue = _orchestrator(library, repository, backend)
    completed: List[ScanProgress] = []
    orchestrator.on_complete(completed.append)

    orchestrator.start_scan("reanalyze_all")
    queue.run_pending()

    state = repository.load_scan()
    assert state.progress.status == "completed"
    assert state.progress.processed == 3
    assert state.progress.applied == 2
    assert state.progress.failed == 0
    assert [d.action for d in state.progress.results] == ["assign", "skip", "assign"]
    assert state.pending == []
    assert state.item_ids == []
    assert library.item_folder_ids(first) == [3]
    assert library.item_folder_ids(second) == []
    assert library.item_folder_ids(third) == [2]
    assert len(completed) == 1
    assert completed[0].status == "completed"
    assert queue.pending() == []


def test_dry_run_caches_decisions_without_touching_library(
    library: JsonMediaLibrary,
    repository: StateRepository,
    scripted_backend: Callable[..., Any],
) -> None:
    _add_images(library)
    orchestrator, queue = _orchestrator(library, repository, scripted_backend(PRODUCTS, SKIP, OUTDOOR))
    completed: List[ScanProgress] = []
    orchestrator.on_complete(completed.append)

    orchestrator.start_scan("organize_unassigned", dry_run=True)
    queue.run_pending()

    state = repository.load_scan()
    assert state.progress.status == "completed"
    assert state.progress.dry_run is True
    assert state.progress.applied == 0
    assert state.dry_run_mode == "organize_unassigned"
    assert orchestrator.get_cached_results_count() == 2
    assert [d.folder_id for d in orchestrator.get_cached_results()] == [3, 2]
    assert library.list_links() == []
    assert len(completed) == 1


def test_batches_are_derived_from_processed_count(
    library: JsonMediaLibrary,
    repository: StateRepository,
    scripted_backend: Callable[..., Any],
) -> None:
    """Re-running a batch handler never classifies an item twice.

    Args:
        library: Seeded library fixture.
        repository: Temporary state repository.
        scripted_backend: Backend double factory.
    """
    _add_images(library)
    backend = scripted_backend(PRODUCTS)
    orchestrator, queue = _orchestrator(library, repository, backend)
    completed: List[ScanProgress] = []
    orchestrator.on_complete(completed.append)
    orchestrator.start_scan("organize_unassigned")

    queue.run_pending(limit=1)
    assert repository.load_scan().progress.processed == 2

    orchestrator.process_batch(batch_offset=0, batch_size=2)
    assert repository.load_scan().progress.processed == 3

    queue.run_pending()

    state = repository.load_scan()
    assert len(backend.requests) == 3
    assert state.progress.processed == state.progress.total == 3
    assert state.progress.applied == 3
    assert state.progress.status == "completed"
    assert len(completed) == 1


def test_progress_reports_percentage_mid_run(
    library: JsonMediaLibrary,
    repository: StateRepository,
    scripted_backend: Callable[..., Any],
) -> None:
    item_ids = _add_images(library)
    orchestrator, queue = _orchestrator(library, repository, scripted_backend(PRODUCTS))

    assert orchestrator.get_progress()["percentage"] == 0
    orchestrator.start_scan("organize_unassigned", dry_run=True)
    queue.run_pending(limit=1)

    progress = orchestrator.get_progress()
    assert progress["status"] == "running"
    assert progress["processed"] == 2
    assert progress["percentage"] == 67
    assert [entry["item_id"] for entry in progress["results"]] == item_ids[:2]
    assert [task.name for task in queue.pending()] == ["process_batch"]
    assert queue.pending()[0].args["batch_offset"] == 2


def test_cancel_during_classification_discards_the_decision(
    library: JsonMediaLibrary,
    repository: StateRepository,
    scripted_backend: Callable[..., Any],
) -> None:
    _add_images(library)
    backend = scripted_backend(PRODUCTS)
    orchestrator, queue = _orchestrator(library, repository, backend)
    backend.before_reply = lambda _request: orchestrator.cancel_scan()

    orchestrator.start_scan("organize_unassigned")
    queue.run_pending()

    state = repository.load_scan()
    assert state.progress.status == "cancelled"
    assert state.progress.processed == 0
    assert state.progress.completed_at is not None
    assert state.pending == []
    assert state.item_ids == []
    assert len(backend.requests) == 1
    assert library.list_links() == []
    assert queue.pending() == []


def test_cancel_requires_a_running_scan(
    library: JsonMediaLibrary,
    repository: StateRepository,
    scripted_backend: Callable[..., Any],
) -> None:
    _add_images(library)
    orchestrator, queue = _orchestrator(library, repository, scripted_backend(PRODUCTS))

    assert orchestrator.cancel_scan().message == NOT_RUNNING

    orchestrator.start_scan("organize_unassigned")
    cancelled = orchestrator.cancel_scan()
    queue.run_pending()

    assert cancelled.success is True
    assert repository.load_scan().progress.status == "cancelled"
    assert orchestrator.cancel_scan().message == NOT_RUNNING
    assert orchestrator.start_scan("organize_unassigned").success is True


def test_reorganize_backs_up_and_rebuilds_tree(
    library: JsonMediaLibrary,
    repository: StateRepository,
    scripted_backend: Callable[..., Any],
) -> None:
    first, second = _add_images(library, 2)
    library.link(first, 3)
    backend = scripted_backend(
        '{"action": "new", "new_folder_path": "Events/Outdoor", "confidence": 0.9}'
    )
    orchestrator, queue = _orchestrator(library, repository, backend, allow_new_folders=True)

    orchestrator.start_scan("reorganize_all")
    assert [task.name for task in queue.pending()] == ["cleanup_folders"]
    queue.run_pending()

    info = orchestrator.backup.get_backup_info()
    assert info.exists is True
    assert info.folder_count == 4
    assert info.assignment_count == 1
    assert backend.requests[0].folder_paths == {}
    assert sorted(library.folder_path(f.id) for f in library.list_folders()) == [
        "Events",
        "Events/Outdoor",
    ]
    for item_id in (first, second):
        (folder_id,) = library.item_folder_ids(item_id)
        assert library.folder_path(folder_id) == "Events/Outdoor"
    assert repository.load_scan().progress.applied == 2


def test_backup_failure_marks_run_failed(
    library: JsonMediaLibrary,
    repository: StateRepository,
    scripted_backend: Callable[..., Any],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _add_images(library)
    orchestrator, queue = _orchestrator(library, repository, scripted_backend(PRODUCTS))

    def broken_export() -> None:
        raise OSError("disk full")

    monkeypatch.setattr(orchestrator.backup, "export", broken_export)

    result = orchestrator.start_scan("reorganize_all")

    assert result.success is False
    assert result.message == "Scan setup failed: disk full"
    progress = repository.load_scan().progress
    assert progress.status == "failed"
    assert progress.error == "Backup failed: disk full"
    assert queue.pending() == []
    assert len(library.list_folders()) == 4


def test_item_that_fails_to_classify_does_not_halt_the_run(
    library: JsonMediaLibrary,
    repository: StateRepository,
    scripted_backend: Callable[..., Any],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    first, second = _add_images(library, 2)
    orchestrator, queue = _orchestrator(library, repository, scripted_backend(PRODUCTS))
    classify = orchestrator.service.classify

    def flaky(item_id: int) -> Any:
        if item_id == first:
            raise Image.DecompressionBombError("Image size exceeds limit")
        return classify(item_id)

    monkeypatch.setattr(orchestrator.service, "classify", flaky)

    orchestrator.start_scan("organize_unassigned", dry_run=True)
    queue.run_pending()

    state = repository.load_scan()
    assert state.progress.status == "completed"
    assert state.progress.processed == 2
    failed, assigned = state.progress.results
    assert failed.action == "skip"
    assert failed.item_id == first
    assert failed.reason == "Classification failed: Image size exceeds limit"
    assert assigned.item_id == second
    assert [d.item_id for d in orchestrator.get_cached_results()] == [second]
    assert queue.pending() == []


def test_apply_cached_results(
    library: JsonMediaLibrary,
    repository: StateRepository,
    scripted_backend: Callable[..., Any],
) -> None:
    first, second, third = _add_images(library)
    orchestrator, queue = _orchestrator(library, repository, scripted_backend(PRODUCTS, SKIP, OUTDOOR))
    completed: List[ScanProgress] = []
    orchestrator.on_complete(completed.append)

    assert orchestrator.apply_cached_results().message == NO_CACHE
    orchestrator.start_scan("organize_unassigned", dry_run=True)
    queue.run_pending()

    result = orchestrator.apply_cached_results()

    assert result.success is True
    assert result.applied == 2
    assert result.failed == 0
    assert result.message == "Applied 2 of 2 cached results."
    assert library.item_folder_ids(first) == [3]
    assert library.item_folder_ids(second) == []
    assert library.item_folder_ids(third) == [2]
    state = repository.load_scan()
    assert state.dry_run_cache == []
    assert state.dry_run_mode is None
    assert state.progress.status == "completed"
    assert state.progress.dry_run is False
    assert len(completed) == 2
    assert orchestrator.apply_cached_results().message == NO_CACHE


def test_apply_cached_results_counts_failures(
    library: JsonMediaLibrary,
    repository: StateRepository,
    scripted_backend: Callable[..., Any],
) -> None:
    _add_images(library, 2)
    orchestrator, queue = _orchestrator(library, repository, scripted_backend(PRODUCTS))
    orchestrator.start_scan("organize_unassigned", dry_run=True)
    queue.run_pending()
    library.delete_folder(3)

    result = orchestrator.apply_cached_results()

    assert result.applied == 0
    assert result.failed == 2
    assert repository.load_scan().progress.failed == 2


def test_apply_cached_reorganize_replays_by_path(
    library: JsonMediaLibrary,
    repository: StateRepository,
    scripted_backend: Callable[..., Any],
) -> None:
    first, second = _add_images(library, 2)
    library.link(first, 3)
    orchestrator, queue = _orchestrator(library, repository, scripted_backend(OUTDOOR))

    orchestrator.start_scan("reorganize_all", dry_run=True)
    assert [task.name for task in queue.pending()] == ["process_batch"]
    queue.run_pending()
    assert len(library.list_folders()) == 4
    assert library.item_folder_ids(first) == [3]

    result = orchestrator.apply_cached_results()

    assert result.applied == 2
    assert orchestrator.backup.has_backup() is True
    folders = library.list_folders()
    assert sorted(library.folder_path(f.id) for f in folders) == ["Events", "Events/Outdoor"]
    assert all(folder.id > 4 for folder in folders)
    for item_id in (first, second):
        (folder_id,) = library.item_folder_ids(item_id)
        assert library.folder_path(folder_id) == "Events/Outdoor"


def test_apply_cached_results_rejected_while_running(
    library: JsonMediaLibrary,
    repository: StateRepository,
    scripted_backend: Callable[..., Any],
) -> None:
    _add_images(library)
    orchestrator, _ = _orchestrator(library, repository, scripted_backend(PRODUCTS))
    orchestrator.start_scan("organize_unassigned")

    assert orchestrator.apply_cached_results().message == ALREADY_RUNNING
    assert orchestrator.apply_cached_results("bogus").message == ALREADY_RUNNING


def test_start_clears_previous_cache(
    library: JsonMediaLibrary,
    repository: StateRepository,
    scripted_backend: Callable[..., Any],
) -> None:
    _add_images(library)
    orchestrator, queue = _orchestrator(library, repository, scripted_backend(PRODUCTS))
    orchestrator.start_scan("organize_unassigned", dry_run=True)
    queue.run_pending()
    assert orchestrator.get_cached_results_count() == 3

    orchestrator.start_scan("organize_unassigned")

    state = repository.load_scan()
    assert state.dry_run_cache == []
    assert state.dry_run_mode is None
    assert state.session_folders == []


def test_reset_returns_to_idle(
    library: JsonMediaLibrary,
    repository: StateRepository,
    scripted_backend: Callable[..., Any],
) -> None:
    _add_images(library)
    orchestrator, queue = _orchestrator(library, repository, scripted_backend(PRODUCTS))
    orchestrator.start_scan("organize_unassigned", dry_run=True)
    queue.run_pending(limit=1)

    result = orchestrator.reset_progress()

    assert result.message == "Scan progress has been reset."
    state = repository.load_scan()
    assert state.progress.status == "idle"
    assert state.progress.processed == 0
    assert state.dry_run_cache == []
    assert queue.pending() == []


def test_listener_errors_do_not_break_completion(
    library: JsonMediaLibrary,
    repository: StateRepository,
    scripted_backend: Callable[..., Any],
) -> None:
    _add_images(library, 1)
    orchestrator, queue = _orchestrator(library, repository, scripted_backend(PRODUCTS))
    seen: List[str] = []

    def broken(_progress: ScanProgress) -> None:
        raise RuntimeError("listener exploded")

    orchestrator.on_complete(broken)
    orchestrator.on_complete(lambda progress: seen.append(progress.status))
    orchestrator.start_scan("organize_unassigned")
    queue.run_pending()

    assert seen == ["completed"]
    assert repository.load_scan().progress.status == "completed"


def test_session_folders_persist_across_batches(
    library: JsonMediaLibrary,
    repository: StateRepository,
    scripted_backend: Callable[..., Any],
) -> None:
    _add_images(library)
    backend = scripted_backend('{"action": "new", "new_folder_path": "Pets/Cats"}')
    orchestrator, queue = _orchestrator(
        library, repository, backend, allow_new_folders=True
    )

    orchestrator.start_scan("organize_unassigned", dry_run=True)
    queue.run_pending(limit=1)
    assert repository.load_scan().session_folders == ["Pets/Cats"]
    queue.run_pending()

    assert backend.requests[2].session_suggested_folders == ["Pets/Cats"]
    assert repository.load_scan().session_folders == []


def test_analyze_single_does_not_touch_state(
    library: JsonMediaLibrary,
    repository: StateRepository,
    scripted_backend: Callable[..., Any],
) -> None:
    (item_id,) = _add_images(library, 1)
    orchestrator, queue = _orchestrator(library, repository, scripted_backend(PRODUCTS))

    decision = orchestrator.analyze_single(item_id)

    assert decision.action == "assign"
    assert decision.folder_id == 3
    assert decision.folder_name == "Products"
    assert repository.load_scan().progress.status == "idle"
    assert library.list_links() == []
    assert queue.pending() == []
