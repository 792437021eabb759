"""Item and folder storage used by the organizer.

The organizer only talks to a library through :class:`MediaLibrary`. The
bundled :class:`JsonMediaLibrary` keeps everything in memory and, when given
a path, rewrites a single JSON document after each mutation.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Iterable, Optional, Protocol, runtime_checkable

from pydantic import ValidationError

from .errors import FolderNotFoundError, ItemNotFoundError, LibraryError
from .models import Folder, FolderLink, Item, LibrarySnapshot

LOGGER = logging.getLogger(__name__)


@runtime_checkable
class MediaLibrary(Protocol):
    """Operations the organizer needs from the host item/folder store."""

    def list_item_ids(self, unassigned_only: bool = False) -> list[int]: ...

    def get_item(self, item_id: int) -> Item: ...

    def read_content(self, item_id: int, rendition: Optional[str] = None) -> Optional[bytes]: ...

    def list_folders(self) -> list[Folder]: ...

    def get_folder(self, folder_id: int) -> Optional[Folder]: ...

    def find_folder(self, name: str, parent_id: Optional[int]) -> Optional[Folder]: ...

    def create_folder(
        self,
        name: str,
        parent_id: Optional[int] = None,
        *,
        slug: Optional[str] = None,
        sort_order: int = 0,
    ) -> Folder: ...

    def delete_folder(self, folder_id: int) -> bool: ...

    def link(self, item_id: int, folder_id: int) -> None: ...

    def unlink_all(self, item_id: int) -> None: ...

    def list_links(self) -> list[FolderLink]: ...

    def item_folder_ids(self, item_id: int) -> list[int]: ...


def slugify(value: str) -> str:
    """Return a lowercase, hyphenated slug for a folder name."""
    normalized = value.strip().lower()
    normalized = re.sub(r"[^\w\s-]+", "", normalized)
    normalized = re.sub(r"[\s_]+", "-", normalized).strip("-")
    return normalized or "folder"


def folder_paths(folders: Iterable[Folder]) -> dict[int, str]:
    """Compute `parent/child` display paths for every folder.

    Folders whose parent chain is broken are treated as roots; a chain that
    loops back on itself stops at the first repeated folder.
    """
    by_id = {folder.id: folder for folder in folders}
    paths: dict[int, str] = {}
    for folder in by_id.values():
        parts = [folder.name]
        seen = {folder.id}
        parent_id = folder.parent_id
        while parent_id is not None and parent_id in by_id and parent_id not in seen:
            parent = by_id[parent_id]
            parts.append(parent.name)
            seen.add(parent_id)
            parent_id = parent.parent_id
        paths[folder.id] = "/".join(reversed(parts))
    return paths


def create_folder_from_path(library: MediaLibrary, path: str) -> Optional[int]:
    """Create every missing segment of `path` and return the leaf folder id.

    Existing folders are reused segment by segment, so `Animals/Birds` reuses an
    existing `Animals` root and only creates `Birds` beneath it.

    Args:
        library: Library to create folders in.
        path: Slash-separated folder path.

    Returns:
        Optional[int]: Identifier of the leaf folder, or None when `path` has no
            usable segments.
    """
    parent_id: Optional[int] = None
    for raw_part in path.strip("/").split("/"):
        part = raw_part.strip()
        if not part:
            continue
        existing = library.find_folder(part, parent_id)
        if existing is None:
            existing = library.create_folder(part, parent_id)
        parent_id = existing.id
    return parent_id


class JsonMediaLibrary:
    """In-memory library optionally persisted to a JSON document."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path
        self._snapshot = LibrarySnapshot()
        if path is not None and path.exists():
            self._snapshot = self._read(path)

    @property
    def path(self) -> Path | None:
        """Return the JSON document backing this library, if any."""
        return self._path

    # Items ------------------------------------------------------------

    def add_item(self, mime_type: str, filename: str, **fields: object) -> Item:
        """Register a new item and return it with its assigned id."""
        item = Item(id=self._snapshot.next_item_id, mime_type=mime_type, filename=filename, **fields)
        self._snapshot.next_item_id += 1
        self._snapshot.items.append(item)
        self._save()
        return item

    def list_item_ids(self, unassigned_only: bool = False) -> list[int]:
        assigned = {link.item_id for link in self._snapshot.links}
        ids = [
            item.id
            for item in self._snapshot.items
            if not unassigned_only or item.id not in assigned
        ]
        return sorted(ids)

    def get_item(self, item_id: int) -> Item:
        for item in self._snapshot.items:
            if item.id == item_id:
                return item
        raise ItemNotFoundError(f"Item {item_id} does not exist.")

    def read_content(self, item_id: int, rendition: Optional[str] = None) -> Optional[bytes]:
        item = self.get_item(item_id)
        location = item.renditions.get(rendition) if rendition else item.file_path
        if not location:
            return None
        path = Path(location)
        if not path.is_absolute() and self._path is not None:
            path = self._path.parent / path
        try:
            return path.read_bytes()
        except OSError as exc:
            LOGGER.debug("Unable to read content for item %s from %s: %s", item_id, path, exc)
            return None

    # Folders ----------------------------------------------------------

    def list_folders(self) -> list[Folder]:
        return sorted(self._snapshot.folders, key=lambda folder: folder.id)

    def get_folder(self, folder_id: int) -> Optional[Folder]:
        for folder in self._snapshot.folders:
            if folder.id == folder_id:
                return folder
        return None

    def find_folder(self, name: str, parent_id: Optional[int]) -> Optional[Folder]:
        for folder in self._snapshot.folders:
            if folder.name == name and folder.parent_id == parent_id:
                return folder
        return None

    def folder_path(self, folder_id: int) -> str:
        """Return the display path of a folder."""
        paths = folder_paths(self._snapshot.folders)
        if folder_id not in paths:
            raise FolderNotFoundError(f"Folder {folder_id} does not exist.")
        return paths[folder_id]

    def create_folder(
        self,
        name: str,
        parent_id: Optional[int] = None,
        *,
        slug: Optional[str] = None,
        sort_order: int = 0,
    ) -> Folder:
        name = name.strip()
        if not name:
            raise LibraryError("Folder name cannot be empty.")
        if parent_id is not None and self.get_folder(parent_id) is None:
            raise FolderNotFoundError(f"Parent folder {parent_id} does not exist.")
        if self.find_folder(name, parent_id) is not None:
            raise LibraryError(f"Folder '{name}' already exists under parent {parent_id}.")

        folder = Folder(
            id=self._snapshot.next_folder_id,
            name=name,
            slug=self._unique_slug(slug or slugify(name)),
            parent_id=parent_id,
            sort_order=sort_order,
        )
        self._snapshot.next_folder_id += 1
        self._snapshot.folders.append(folder)
        self._save()
        return folder

    def delete_folder(self, folder_id: int) -> bool:
        """Delete a folder, drop its links and re-parent its children."""
        folder = self.get_folder(folder_id)
        if folder is None:
            return False
        self._snapshot.folders = [f for f in self._snapshot.folders if f.id != folder_id]
        for child in self._snapshot.folders:
            if child.parent_id == folder_id:
                child.parent_id = folder.parent_id
        self._snapshot.links = [
            link for link in self._snapshot.links if link.folder_id != folder_id
        ]
        self._save()
        return True

    # Links ------------------------------------------------------------

    def link(self, item_id: int, folder_id: int) -> None:
        self.get_item(item_id)
        if self.get_folder(folder_id) is None:
            raise FolderNotFoundError(f"Folder {folder_id} does not exist.")
        if any(
            link.item_id == item_id and link.folder_id == folder_id
            for link in self._snapshot.links
        ):
            return
        self._snapshot.links.append(FolderLink(item_id=item_id, folder_id=folder_id))
        self._save()

    def unlink_all(self, item_id: int) -> None:
        self._snapshot.links = [link for link in self._snapshot.links if link.item_id != item_id]
        self._save()

    def list_links(self) -> list[FolderLink]:
        return list(self._snapshot.links)

    def item_folder_ids(self, item_id: int) -> list[int]:
        return [link.folder_id for link in self._snapshot.links if link.item_id == item_id]

    # Persistence ------------------------------------------------------

    def _unique_slug(self, base: str) -> str:
        taken = {folder.slug for folder in self._snapshot.folders}
        candidate = base
        counter = 2
        while candidate in taken:
            candidate = f"{base}-{counter}"
            counter += 1
        return candidate

    def _read(self, path: Path) -> LibrarySnapshot:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return LibrarySnapshot.model_validate(data)
        except (json.JSONDecodeError, ValidationError) as exc:
            raise LibraryError(f"Invalid library data in {path}: {exc}") from exc

    def _save(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(self._snapshot.model_dump_json(indent=2), encoding="utf-8")


__all__ = [
    "MediaLibrary",
    "JsonMediaLibrary",
    "Item",
    "Folder",
    "FolderLink",
    "LibraryError",
    "ItemNotFoundError",
    "FolderNotFoundError",
    "create_folder_from_path",
    "folder_paths",
    "slugify",
]
