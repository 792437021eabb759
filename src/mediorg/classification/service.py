"""Classify single items and apply the resulting decisions."""

from __future__ import annotations

import base64
import io
import logging
from typing import List, Optional

from PIL import Image, UnidentifiedImageError

from mediorg.backends import AnalysisRequest, BackendAdapter, ImagePayload
from mediorg.config.models import ScanOptions
from mediorg.library import (
    FolderNotFoundError,
    Item,
    ItemNotFoundError,
    LibraryError,
    MediaLibrary,
    create_folder_from_path,
)

from .folders import FolderIndex
from .models import Decision
from .reconciler import parse_response, remap_hierarchy_conflict

LOGGER = logging.getLogger(__name__)

DOCUMENT_MIME_TYPES = frozenset(
    {
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        "application/rtf",
        "text/plain",
        "text/csv",
        "application/zip",
        "application/x-rar-compressed",
        "application/x-7z-compressed",
    }
)
VIDEO_MIME_TYPES = frozenset(
    {
        "video/mp4",
        "video/webm",
        "video/ogg",
        "video/quicktime",
        "video/x-msvideo",
        "video/x-ms-wmv",
        "video/mpeg",
        "video/3gpp",
        "video/x-flv",
    }
)
SUPPORTED_IMAGE_TYPES = frozenset({"image/jpeg", "image/png", "image/gif", "image/webp"})
RENDITION_PREFERENCE = ("medium_large", "medium", "large")

DOCUMENTS_FOLDER = "Documents"
VIDEOS_FOLDER = "Videos"

NO_BACKEND_REASON = "No AI provider configured. Please configure an AI provider in settings."
UNCONFIGURED_BACKEND_REASON = (
    "AI provider is not properly configured. Please check your API settings."
)


class SessionFolders:
    """Folder paths proposed during the current run, in first-seen order.

    The list passed in is mutated in place, so a caller can hand over the list
    stored on its own run state.
    """

    def __init__(self, folders: Optional[List[str]] = None) -> None:
        self.folders: List[str] = folders if folders is not None else []

    def remember(self, path: str) -> None:
        if path and path not in self.folders:
            self.folders.append(path)

    def clear(self) -> None:
        del self.folders[:]


def is_document(mime_type: str) -> bool:
    return mime_type in DOCUMENT_MIME_TYPES


def is_video(mime_type: str) -> bool:
    return mime_type in VIDEO_MIME_TYPES or mime_type.startswith("video/")


class ClassificationService:
    """Produce and apply folder decisions for individual items."""

    def __init__(
        self,
        library: MediaLibrary,
        backend: Optional[BackendAdapter],
        settings: ScanOptions,
        session_store: Optional[SessionFolders] = None,
    ) -> None:
        """Initialize the service.

        Args:
            library: Item and folder store.
            backend: Selected AI backend, or None when none is configured.
            settings: Scan settings (depth, new-folder policy, image limits).
            session_store: Folders proposed so far in the current run.
        """
        self.library = library
        self.backend = backend
        self.settings = settings
        self.session_store = session_store or SessionFolders()
        self._index: Optional[FolderIndex] = None
        self._backend_ready: Optional[bool] = None

    def folders(self) -> FolderIndex:
        """Return the cached folder snapshot, building it on first use."""
        if self._index is None:
            self._index = FolderIndex.from_library(self.library, self.settings.max_folder_depth)
        return self._index

    def refresh_folders(self) -> FolderIndex:
        """Rebuild the folder snapshot and forget the last backend probe."""
        self._index = None
        self._backend_ready = None
        return self.folders()

    def classify(self, item_id: int) -> Decision:
        """Decide where an item belongs.

        Documents and videos are routed by MIME type before any backend is
        consulted. Everything else needs a configured backend.

        Args:
            item_id: Identifier of the item to classify.

        Returns:
            Decision: Decision annotated with item id, filename and folder name.
        """
        try:
            item = self.library.get_item(item_id)
        except ItemNotFoundError:
            return Decision.skip(f"Item {item_id} not found.", item_id=item_id)

        index = self.folders()
        if is_document(item.mime_type):
            return self._route_to_type_folder(item, DOCUMENTS_FOLDER, index)
        if is_video(item.mime_type):
            return self._route_to_type_folder(item, VIDEOS_FOLDER, index)

        if self.backend is None:
            decision = Decision.skip(NO_BACKEND_REASON)
        elif not self.backend_ready():
            decision = Decision.skip(UNCONFIGURED_BACKEND_REASON)
        else:
            decision = self._ask_backend(self.backend, item, index)

        if decision.new_folder_path:
            self.session_store.remember(decision.new_folder_path)
        return self._annotate(decision, item, index)

    def backend_ready(self) -> bool:
        """Return whether the backend is usable, probing it once per folder refresh."""
        if self.backend is None:
            return False
        if self._backend_ready is None:
            self._backend_ready = self.backend.is_configured()
        return self._backend_ready

    def image_payload(self, item: Item) -> Optional[ImagePayload]:
        """Build the inline image sent to vision backends.

        A stored rendition is preferred over the original. Originals whose
        longest edge exceeds `image_max_edge` are downsized first.

        Args:
            item: Item whose image should be encoded.

        Returns:
            Optional[ImagePayload]: Encoded image, or None for unsupported,
                unreadable or oversized content.
        """
        if item.mime_type not in SUPPORTED_IMAGE_TYPES:
            return None

        content: Optional[bytes] = None
        for size in RENDITION_PREFERENCE:
            if size in item.renditions:
                content = self.library.read_content(item.id, size)
                if content:
                    break
        if not content:
            content = self.library.read_content(item.id)
            if not content:
                return None
            content = self._downsize(content)

        if len(content) > self.settings.max_image_mb * 1024 * 1024:
            LOGGER.debug("Image for item %s exceeds %s MB; sending metadata only.", item.id, self.settings.max_image_mb)
            return None
        return ImagePayload(base64=base64.b64encode(content).decode("ascii"), mime_type=item.mime_type)

    def apply_decision(self, decision: Decision) -> bool:
        """Apply a decision to the library.

        Args:
            decision: Decision to apply.

        Returns:
            bool: True when the item ended up linked to a folder.
        """
        if decision.item_id is None or not decision.actionable:
            return False
        try:
            self.library.get_item(decision.item_id)
            if decision.action == "assign":
                folder_id = decision.folder_id
                if folder_id is None or self.library.get_folder(folder_id) is None:
                    raise FolderNotFoundError(f"Folder {folder_id} does not exist.")
            else:
                folder_id = create_folder_from_path(self.library, decision.new_folder_path or "")
                self._index = None
                if folder_id is None:
                    raise LibraryError(f"Could not create folder '{decision.new_folder_path}'.")
            self.library.link(decision.item_id, folder_id)
        except LibraryError as exc:
            LOGGER.warning("Failed to apply decision for item %s: %s", decision.item_id, exc)
            return False
        return True

    # Internal helpers -------------------------------------------------

    def _ask_backend(self, backend: BackendAdapter, item: Item, index: FolderIndex) -> Decision:
        request = AnalysisRequest(
            metadata=item.metadata(),
            folder_paths=index.prompt_paths(),
            max_depth=self.settings.max_folder_depth,
            allow_new_folders=self.settings.allow_new_folders,
            image=self.image_payload(item),
            session_suggested_folders=list(self.session_store.folders),
        )
        try:
            response = backend.analyze(request)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Backend %s raised while analyzing item %s", backend.name, item.id)
            return Decision.skip(f"{backend.label} error: {exc}")

        if not response.success:
            return Decision.skip(response.error or f"{backend.label} request failed.")

        decision = parse_response(response.raw_text, index.paths)
        decision = remap_hierarchy_conflict(decision, index.paths)
        if decision.action == "create" and not self.settings.allow_new_folders:
            return Decision.skip(
                f"AI suggested new folder '{decision.new_folder_path}' but new folder creation is disabled.",
                visual_description=decision.visual_description,
            )
        return decision

    def _route_to_type_folder(self, item: Item, folder_name: str, index: FolderIndex) -> Decision:
        folder_id = index.lookup(folder_name)
        if folder_id is not None:
            decision = Decision.assign(
                folder_id, 1.0, f"File type automatically assigned to {folder_name} folder."
            )
            return self._annotate(decision, item, index, folder_name)

        path, folder_id = index.find_by_name(folder_name)
        if folder_id is not None:
            decision = Decision.assign(
                folder_id,
                1.0,
                f"File type automatically assigned to {folder_name} folder (found at {path}).",
            )
            return self._annotate(decision, item, index, folder_name)

        if self.settings.allow_new_folders:
            decision = Decision.create(
                folder_name, 1.0, f"File type requires {folder_name} folder (will be created)."
            )
            return self._annotate(decision, item, index, folder_name)

        decision = Decision.skip(
            f"{folder_name} folder does not exist and new folder creation is disabled."
        )
        return self._annotate(decision, item, index, "")

    def _annotate(
        self,
        decision: Decision,
        item: Item,
        index: FolderIndex,
        folder_name: Optional[str] = None,
    ) -> Decision:
        if folder_name is None:
            if decision.new_folder_path:
                folder_name = decision.new_folder_path
            elif decision.folder_id is not None:
                folder_name = index.name_of(decision.folder_id) or ""
            else:
                folder_name = ""
        return decision.model_copy(
            update={"item_id": item.id, "filename": item.filename, "folder_name": folder_name}
        )

    def _downsize(self, content: bytes) -> bytes:
        edge = self.settings.image_max_edge
        try:
            with Image.open(io.BytesIO(content)) as image:
                if max(image.size) <= edge or getattr(image, "is_animated", False):
                    return content
                image_format = image.format
                image.thumbnail((edge, edge))
                buffer = io.BytesIO()
                image.save(buffer, format=image_format)
                return buffer.getvalue()
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
            LOGGER.debug("Unable to downsize image: %s", exc)
            return content


__all__ = [
    "ClassificationService",
    "SessionFolders",
    "DOCUMENT_MIME_TYPES",
    "VIDEO_MIME_TYPES",
    "SUPPORTED_IMAGE_TYPES",
    "RENDITION_PREFERENCE",
    "NO_BACKEND_REASON",
    "UNCONFIGURED_BACKEND_REASON",
    "is_document",
    "is_video",
]
