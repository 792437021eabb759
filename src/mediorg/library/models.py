"""Data models for media items and folders held by a library."""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class Item(BaseModel):
    """A media object that can be filed into folders.

    Attributes:
        id: Stable identifier assigned by the library.
        mime_type: MIME type of the stored file.
        filename: Display filename including extension.
        title: Optional title text.
        alt: Optional alternative text.
        caption: Optional caption text.
        description: Optional long description.
        exif: EXIF-like key/value pairs (camera, date, keywords, title).
        dimensions: Optional `WIDTHxHEIGHT` string for images.
        file_path: Location of the original binary content, if any.
        renditions: Named downsized renditions (e.g. `medium`) mapped to paths.
    """

    id: int
    mime_type: str
    filename: str
    title: str = ""
    alt: str = ""
    caption: str = ""
    description: str = ""
    exif: Dict[str, str] = Field(default_factory=dict)
    dimensions: Optional[str] = None
    file_path: Optional[str] = None
    renditions: Dict[str, str] = Field(default_factory=dict)

    def metadata(self) -> dict[str, object]:
        """Return the metadata mapping sent to AI backends."""
        data: dict[str, object] = {
            "filename": self.filename,
            "mime_type": self.mime_type,
            "title": self.title,
            "alt": self.alt,
            "caption": self.caption,
            "description": self.description,
        }
        if self.exif:
            data["exif"] = dict(self.exif)
        if self.dimensions:
            data["dimensions"] = self.dimensions
        return data


class Folder(BaseModel):
    """A node in the folder tree.

    Attributes:
        id: Identifier assigned by the library.
        name: Display name of the folder.
        slug: URL-safe identifier, unique per library.
        parent_id: Identifier of the parent folder, or None for root folders.
        sort_order: Manual ordering hint.
    """

    id: int
    name: str
    slug: str
    parent_id: Optional[int] = None
    sort_order: int = 0


class FolderLink(BaseModel):
    """Assignment of an item to a folder."""

    item_id: int
    folder_id: int


class LibrarySnapshot(BaseModel):
    """Serialized representation of a JSON-backed library."""

    next_item_id: int = 1
    next_folder_id: int = 1
    items: List[Item] = Field(default_factory=list)
    folders: List[Folder] = Field(default_factory=list)
    links: List[FolderLink] = Field(default_factory=list)


__all__ = ["Item", "Folder", "FolderLink", "LibrarySnapshot"]
