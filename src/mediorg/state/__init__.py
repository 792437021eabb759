"""State persistence helpers for mediorg runs and backups."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .errors import MissingStateError, StateError
from .models import Backup, BackupInfo, RestoreResult, ScanProgress, ScanState

DEFAULT_STATE_DIR = Path("~/.mediorg")
SCAN_FILENAME = "scan.json"
BACKUP_FILENAME = "backup.json"
QUEUE_FILENAME = "queue.json"


class StateRepository:
    """Persist scan state and the folder backup as JSON documents."""

    def __init__(self, directory: Path | None = None) -> None:
        """Initialize the repository.

        Args:
            directory: Directory that stores state artifacts.
        """
        self._directory = (directory or DEFAULT_STATE_DIR).expanduser()

    @property
    def directory(self) -> Path:
        """Return the directory that stores state artifacts.

        Returns:
            Path: State directory.
        """
        return self._directory

    @property
    def queue_path(self) -> Path:
        """Return the path used by the task queue for pending tasks."""
        return self._directory / QUEUE_FILENAME

    def initialize(self) -> Path:
        """Create the state directory if needed.

        Returns:
            Path: State directory.
        """
        self._directory.mkdir(parents=True, exist_ok=True)
        return self._directory

    def load_scan(self) -> ScanState:
        """Load the scan state, returning an idle state when none is stored.

        Returns:
            ScanState: Persisted or default scan state.

        Raises:
            StateError: If stored data cannot be parsed.
        """
        path = self._directory / SCAN_FILENAME
        if not path.exists():
            return ScanState()
        return self._validate(ScanState, path)

    def save_scan(self, state: ScanState) -> None:
        """Persist the scan state.

        Args:
            state: State to serialize.
        """
        self._write(self._directory / SCAN_FILENAME, state.model_dump(mode="json"))

    def has_backup(self) -> bool:
        return (self._directory / BACKUP_FILENAME).exists()

    def load_backup(self) -> Backup:
        """Load the stored backup.

        Returns:
            Backup: Stored snapshot.

        Raises:
            MissingStateError: If no backup is stored.
            StateError: If stored data cannot be parsed.
        """
        path = self._directory / BACKUP_FILENAME
        if not path.exists():
            raise MissingStateError(f"No backup found at {path}")
        return self._validate(Backup, path)

    def save_backup(self, backup: Backup) -> None:
        """Persist a backup, replacing any previous one."""
        self._write(self._directory / BACKUP_FILENAME, backup.model_dump(mode="json"))

    def delete_backup(self) -> bool:
        """Remove the stored backup.

        Returns:
            bool: True when a backup existed.
        """
        path = self._directory / BACKUP_FILENAME
        if not path.exists():
            return False
        path.unlink()
        return True

    def _read(self, path: Path) -> Any:
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise StateError(f"Invalid state data in {path.name}: {exc}") from exc

    def _validate(self, model: Any, path: Path) -> Any:
        try:
            return model.model_validate(self._read(path))
        except ValidationError as exc:
            raise StateError(f"Invalid state data in {path.name}: {exc}") from exc

    def _write(self, path: Path, payload: Any) -> None:
        self.initialize()
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2, sort_keys=False), encoding="utf-8")
        tmp.replace(path)


__all__ = [
    "StateRepository",
    "DEFAULT_STATE_DIR",
    "Backup",
    "BackupInfo",
    "RestoreResult",
    "ScanProgress",
    "ScanState",
    "StateError",
    "MissingStateError",
]
