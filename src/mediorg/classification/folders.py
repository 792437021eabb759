"""Read-only snapshot of the folder tree used during classification."""

from __future__ import annotations

from typing import Iterable, Optional

from mediorg.library import Folder, MediaLibrary, folder_paths


def path_depth(path: str) -> int:
    """Return the number of segments in a slash-separated path."""
    return path.count("/") + 1


class FolderIndex:
    """Folder paths, names and identifiers captured at one point in time.

    Attributes:
        max_depth: Deepest level included in :meth:`prompt_paths`.
    """

    def __init__(self, folders: Iterable[Folder], max_depth: int = 3) -> None:
        self.max_depth = max_depth
        folder_list = list(folders)
        self._names = {folder.id: folder.name for folder in folder_list}
        by_id = folder_paths(folder_list)
        self._paths: dict[str, int] = {}
        for folder_id, path in sorted(by_id.items()):
            self._paths.setdefault(path, folder_id)
        self._path_by_id = by_id
        self._name_map: dict[str, list[str]] = {}
        for path in self._paths:
            for part in path.split("/"):
                bucket = self._name_map.setdefault(part.lower(), [])
                if path not in bucket:
                    bucket.append(path)

    @classmethod
    def from_library(cls, library: MediaLibrary, max_depth: int = 3) -> "FolderIndex":
        """Build an index from the current state of a library."""
        return cls(library.list_folders(), max_depth=max_depth)

    def __len__(self) -> int:
        return len(self._paths)

    @property
    def paths(self) -> dict[str, int]:
        """Return every folder path mapped to its identifier."""
        return dict(self._paths)

    def prompt_paths(self) -> dict[str, int]:
        """Return depth-bounded paths sorted case-insensitively for prompts."""
        visible = [
            (path, folder_id)
            for path, folder_id in self._paths.items()
            if path_depth(path) <= self.max_depth
        ]
        visible.sort(key=lambda entry: entry[0].lower())
        return dict(visible)

    def lookup(self, path: str) -> Optional[int]:
        """Return the identifier of an exactly matching path."""
        return self._paths.get(path)

    def lookup_casefold(self, path: str) -> Optional[int]:
        """Return the identifier of a path matching case-insensitively."""
        lowered = path.lower()
        for known, folder_id in self._paths.items():
            if known.lower() == lowered:
                return folder_id
        return None

    def find_by_name(self, name: str) -> tuple[Optional[str], Optional[int]]:
        """Locate a folder by name anywhere in the tree.

        Shallower paths win. At equal depth a path whose last segment is the
        requested name is preferred over one that merely contains it.

        Args:
            name: Folder name to search for, case-insensitively.

        Returns:
            tuple[Optional[str], Optional[int]]: Matching path and identifier, or
                `(None, None)` when nothing matches.
        """
        lowered = name.lower()
        candidates = sorted(self._name_map.get(lowered, []), key=path_depth)
        if not candidates:
            return None, None
        for path in candidates:
            if path.split("/")[-1].lower() == lowered:
                return path, self._paths[path]
        first = candidates[0]
        return first, self._paths[first]

    def has_id(self, folder_id: int) -> bool:
        return folder_id in self._path_by_id

    def name_of(self, folder_id: int) -> Optional[str]:
        return self._names.get(folder_id)

    def path_of(self, folder_id: int) -> Optional[str]:
        return self._path_by_id.get(folder_id)


__all__ = ["FolderIndex", "path_depth"]
