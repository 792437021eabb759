"""Library errors."""


class LibraryError(Exception):
    """Base exception for item/folder store operations."""


class ItemNotFoundError(LibraryError):
    """Raised when an item identifier is unknown."""


class FolderNotFoundError(LibraryError):
    """Raised when a folder identifier is unknown."""
