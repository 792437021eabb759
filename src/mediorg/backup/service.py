"""Snapshot and restore the folder tree with its assignments."""

from __future__ import annotations

import logging
from collections import deque
from typing import Dict, List

from mediorg.library import LibraryError, MediaLibrary
from mediorg.state import MissingStateError, StateRepository
from mediorg.state.models import (
    Backup,
    BackupAssignment,
    BackupFolder,
    BackupInfo,
    RestoreResult,
)

LOGGER = logging.getLogger(__name__)


def parent_first(folders: List[BackupFolder]) -> List[BackupFolder]:
    """Order folders so that every parent precedes its children.

    Folders whose parent is missing from the snapshot are treated as roots.
    Folders caught in a parent cycle are emitted last, also as roots.
    """
    known = {folder.id for folder in folders}
    children: Dict[int, List[BackupFolder]] = {}
    queue: deque[BackupFolder] = deque()
    for folder in folders:
        if folder.parent_id is None or folder.parent_id not in known:
            queue.append(folder)
        else:
            children.setdefault(folder.parent_id, []).append(folder)

    ordered: List[BackupFolder] = []
    seen: set[int] = set()
    while queue:
        folder = queue.popleft()
        if folder.id in seen:
            continue
        seen.add(folder.id)
        ordered.append(folder)
        queue.extend(children.get(folder.id, []))

    ordered.extend(folder for folder in folders if folder.id not in seen)
    return ordered


class BackupService:
    """Single-slot backup of folders and item links."""

    def __init__(self, library: MediaLibrary, repository: StateRepository) -> None:
        self.library = library
        self.repository = repository

    def export(self) -> Backup:
        """Capture every folder and link, replacing any previous backup.

        Returns:
            Backup: The stored snapshot.
        """
        backup = Backup(
            folders=[
                BackupFolder(
                    id=folder.id,
                    name=folder.name,
                    slug=folder.slug,
                    parent_id=folder.parent_id,
                    sort_order=folder.sort_order,
                )
                for folder in self.library.list_folders()
            ],
            assignments=[
                BackupAssignment(item_id=link.item_id, folder_id=link.folder_id)
                for link in self.library.list_links()
            ],
        )
        self.repository.save_backup(backup)
        LOGGER.info(
            "Exported backup with %d folders and %d assignments.",
            len(backup.folders),
            len(backup.assignments),
        )
        return backup

    def restore(self) -> RestoreResult:
        """Replace the current tree with the stored backup.

        Folders are recreated parent-first, so identifiers change; links are
        remapped through the old-to-new identifier map and links pointing at
        folders that could not be recreated are skipped.

        Returns:
            RestoreResult: Counts of restored folders and assignments.
        """
        try:
            backup = self.repository.load_backup()
        except MissingStateError:
            return RestoreResult(success=False, error="No backup found.")

        self.remove_all_folders()

        id_map: Dict[int, int] = {}
        for folder in parent_first(backup.folders):
            parent_id = id_map.get(folder.parent_id) if folder.parent_id is not None else None
            try:
                created = self.library.create_folder(
                    folder.name, parent_id, slug=folder.slug, sort_order=folder.sort_order
                )
            except LibraryError as exc:
                LOGGER.warning("Could not restore folder %s (%s): %s", folder.id, folder.name, exc)
                continue
            id_map[folder.id] = created.id

        assignments_restored = 0
        for assignment in backup.assignments:
            new_id = id_map.get(assignment.folder_id)
            if new_id is None:
                continue
            try:
                self.library.link(assignment.item_id, new_id)
            except LibraryError as exc:
                LOGGER.warning("Could not restore link for item %s: %s", assignment.item_id, exc)
                continue
            assignments_restored += 1

        return RestoreResult(
            success=True,
            folders_restored=len(id_map),
            assignments_restored=assignments_restored,
        )

    def remove_all_folders(self) -> int:
        """Unlink every item and delete every folder.

        Returns:
            int: Number of folders deleted.
        """
        for item_id in sorted({link.item_id for link in self.library.list_links()}):
            self.library.unlink_all(item_id)

        count = 0
        for folder in self.library.list_folders():
            if self.library.delete_folder(folder.id):
                count += 1
        LOGGER.info("Removed %d folders.", count)
        return count

    def has_backup(self) -> bool:
        return self.repository.has_backup()

    def get_backup_info(self) -> BackupInfo:
        """Describe the stored backup without loading it into the tree."""
        try:
            backup = self.repository.load_backup()
        except MissingStateError:
            return BackupInfo(exists=False)
        return BackupInfo(
            exists=True,
            timestamp=backup.timestamp,
            folder_count=len(backup.folders),
            assignment_count=len(backup.assignments),
            format_version=backup.format_version,
        )

    def delete_backup(self) -> bool:
        return self.repository.delete_backup()


__all__ = ["BackupService", "parent_first"]
