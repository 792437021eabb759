"""State repository tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from mediorg.classification import Decision
from mediorg.state import (
    Backup,
    MissingStateError,
    ScanProgress,
    ScanState,
    StateError,
    StateRepository,
)
from mediorg.state.models import BackupFolder


def _state() -> ScanState:
    """Return a sample running scan state.

    Returns:
        ScanState: State with one pending decision and a partial progress record.
    """
    decision = Decision.assign(3, 0.9, "Product shot", item_id=7, filename="shoe.jpg")
    return ScanState(
        progress=ScanProgress(
            status="running", mode="reanalyze_all", total=4, processed=1, results=[decision]
        ),
        item_ids=[7, 8, 9, 10],
        pending=[decision],
        session_folders=["Products/Shoes"],
    )


def test_initialize_creates_directory(tmp_path: Path) -> None:
    """Ensure initialize prepares the state directory.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    repo = StateRepository(tmp_path / "state")

    directory = repo.initialize()

    assert directory == tmp_path / "state"
    assert directory.is_dir()
    assert repo.queue_path == directory / "queue.json"


def test_missing_scan_state_is_idle(tmp_path: Path) -> None:
    state = StateRepository(tmp_path).load_scan()

    assert state.progress.status == "idle"
    assert state.item_ids == []
    assert state.progress.percentage == 0


def test_save_and_load_round_trip(tmp_path: Path) -> None:
    """Ensure save followed by load returns the same scan state.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    repo = StateRepository(tmp_path)
    state = _state()

    repo.save_scan(state)
    loaded = repo.load_scan()

    assert loaded == state
    assert loaded.progress.percentage == 25
    assert not (tmp_path / "scan.json.tmp").exists()


def test_load_invalid_state_raises(tmp_path: Path) -> None:
    """Ensure invalid JSON and schema mismatches raise StateError.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    repo = StateRepository(tmp_path)
    (tmp_path / "scan.json").write_text("{not json", encoding="utf-8")

    with pytest.raises(StateError):
        repo.load_scan()

    (tmp_path / "scan.json").write_text('{"progress": {"status": "exploded"}}', encoding="utf-8")

    with pytest.raises(StateError):
        repo.load_scan()


def test_backup_lifecycle(tmp_path: Path) -> None:
    repo = StateRepository(tmp_path)

    assert repo.has_backup() is False
    with pytest.raises(MissingStateError):
        repo.load_backup()

    backup = Backup(folders=[BackupFolder(id=1, name="Events", slug="events")])
    repo.save_backup(backup)

    assert repo.has_backup() is True
    assert repo.load_backup().folders[0].name == "Events"
    assert repo.delete_backup() is True
    assert repo.delete_backup() is False


def test_percentage_is_capped() -> None:
    assert ScanProgress(total=3, processed=2).percentage == 67
    assert ScanProgress(total=2, processed=5).percentage == 100
