"""Turn raw backend text into a :class:`Decision` against a folder snapshot.

The primary response shape uses `existing`/`new`/`skip` with a `folder_id`.
Older prompts produced `assign`/`create` with a `folder_path`; those responses
are decoded by :func:`decode_legacy`, kept separate as a compatibility shim.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .models import Decision
from .repair import recover_truncated, sanitize

LOGGER = logging.getLogger(__name__)

DEBUG_DUMP_LIMIT = 300
CONFLATED_CREATE_FACTOR = 0.95
PARTIAL_MATCH_FACTOR = 0.8
HIERARCHY_REMAP_FACTOR = 0.9

_CANONICAL_ACTIONS = ("existing", "new", "skip")
_ID_ANNOTATION_RE = re.compile(r"\s*\(ID:\s*\d+\)\s*$", re.IGNORECASE)

EMPTY_RESPONSE_REASON = "AI returned empty response."
NOT_AN_OBJECT_REASON = "AI response is not a valid JSON object."
DEFAULT_SKIP_REASON = "AI chose to skip this image."


@dataclass(frozen=True)
class HierarchyConflict:
    """Result of comparing a proposed path with the existing tree.

    Attributes:
        conflict: Whether the proposal inverts an existing hierarchy.
        existing_path: Path the proposal collides with, if any.
        message: Human-readable explanation when a conflict exists.
    """

    conflict: bool
    existing_path: Optional[str] = None
    message: Optional[str] = None


class _UnparsableResponse(Exception):
    def __init__(self, category: str) -> None:
        super().__init__(category)
        self.category = category


def parse_response(raw: str | bytes, folder_paths: Mapping[str, int]) -> Decision:
    """Decode backend output into a decision.

    Never raises: every failure mode degrades into a `skip` decision whose
    reason carries enough detail to debug the backend output.

    Args:
        raw: Raw text (or bytes) returned by a backend.
        folder_paths: Folder paths mapped to identifiers at the time of the call.

    Returns:
        Decision: Reconciled decision.
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            return _unparsable("Malformed UTF-8 characters", raw.decode("utf-8", "replace"))

    text = sanitize(raw or "")
    if not text:
        return Decision.skip(EMPTY_RESPONSE_REASON)

    try:
        data = _load(text)
    except _UnparsableResponse as exc:
        recovered = recover_truncated(text)
        if recovered is None:
            return _unparsable(exc.category, text)
        LOGGER.info("Recovered fields from truncated backend response.")
        data = recovered

    if not isinstance(data, dict):
        return Decision.skip(NOT_AN_OBJECT_REASON)

    if data.get("action") in _CANONICAL_ACTIONS:
        return decode_canonical(data, folder_paths)
    return decode_legacy(data, folder_paths)


def decode_canonical(data: Mapping[str, Any], folder_paths: Mapping[str, int]) -> Decision:
    """Decode the `existing`/`new`/`skip` response shape.

    Args:
        data: Parsed JSON object.
        folder_paths: Folder paths mapped to identifiers.

    Returns:
        Decision: Reconciled decision.
    """
    action = data.get("action")
    confidence = _as_float(data.get("confidence"), 0.5)
    reason = _as_text(data.get("reason"))
    visual = _as_text(data.get("visual_description")) or None
    new_path = _clean_path(data.get("new_folder_path"))

    if action == "existing":
        # Models sometimes pick "existing" while describing a brand new folder.
        if new_path:
            return Decision.create(
                new_path, confidence * CONFLATED_CREATE_FACTOR, reason, visual_description=visual
            )

        folder_id = _as_int(data.get("folder_id"))
        known_ids = set(folder_paths.values())
        if folder_id is not None and folder_id in known_ids:
            return Decision.assign(folder_id, confidence, reason, visual_description=visual)

        folder_path = _clean_path(data.get("folder_path"))
        if folder_path:
            matched = _match_path(folder_path, folder_paths)
            if matched is not None:
                return Decision.assign(matched, confidence, reason, visual_description=visual)
            if not folder_paths:
                return Decision.create(folder_path, confidence, reason, visual_description=visual)

        if folder_id is None:
            return Decision.skip(reason or "AI did not identify an existing folder.")
        return Decision.skip(f"Folder ID {folder_id} not found.")

    if action == "new":
        if not new_path:
            return Decision.skip(reason or "AI proposed a new folder without a path.")
        existing = _match_path(new_path, folder_paths)
        if existing is not None:
            return Decision.assign(existing, confidence, reason, visual_description=visual)
        return Decision.create(new_path, confidence, reason, visual_description=visual)

    return Decision.skip(reason or DEFAULT_SKIP_REASON, confidence, visual_description=visual)


def decode_legacy(data: Mapping[str, Any], folder_paths: Mapping[str, int]) -> Decision:
    """Decode the older `assign`/`create` + `folder_path` response shape.

    Args:
        data: Parsed JSON object.
        folder_paths: Folder paths mapped to identifiers.

    Returns:
        Decision: Reconciled decision.
    """
    action = _as_text(data.get("action")) or "assign"
    confidence = _as_float(data.get("confidence"), 0.5)
    reason = _as_text(data.get("reason"))
    visual = _as_text(data.get("visual_description")) or None
    folder_path = _clean_path(data.get("folder_path") or data.get("new_folder_path"))

    if not folder_path:
        return Decision.skip(f"AI did not suggest a folder. {reason}".strip())

    if action in ("assign", "create"):
        if action == "assign":
            matched = _match_path(folder_path, folder_paths)
            if matched is not None:
                return Decision.assign(matched, confidence, reason, visual_description=visual)
        return Decision.create(folder_path, confidence, reason, visual_description=visual)

    lowered = folder_path.lower()
    for path, folder_id in folder_paths.items():
        known = path.lower()
        if lowered in known or known in lowered:
            return Decision.assign(
                folder_id,
                confidence * PARTIAL_MATCH_FACTOR,
                f"{reason} (partial match)".strip(),
                visual_description=visual,
            )
    return Decision.create(folder_path, confidence, reason, visual_description=visual)


def detect_hierarchy_conflict(
    proposed_path: str, folder_paths: Mapping[str, int]
) -> HierarchyConflict:
    """Check whether a proposed path inverts an existing hierarchy.

    Only the segments shared by both paths are compared: `Outdoor/Events`
    conflicts with `Events/Outdoor` because the shared segments appear in a
    different relative order.

    Args:
        proposed_path: Slash-separated path suggested for creation.
        folder_paths: Existing folder paths mapped to identifiers.

    Returns:
        HierarchyConflict: Conflict details.
    """
    if proposed_path in folder_paths:
        return HierarchyConflict(conflict=False, existing_path=proposed_path)

    proposed_parts = [part.lower() for part in proposed_path.strip("/").split("/")]
    if len(proposed_parts) < 2:
        return HierarchyConflict(conflict=False)

    for existing_path in folder_paths:
        existing_parts = [part.lower() for part in existing_path.split("/")]
        common = [part for part in proposed_parts if part in existing_parts]
        if len(common) < 2:
            continue
        existing_order = [part for part in existing_parts if part in proposed_parts]
        if common != existing_order:
            return HierarchyConflict(
                conflict=True,
                existing_path=existing_path,
                message=(
                    f'Path "{proposed_path}" conflicts with existing hierarchy '
                    f'"{existing_path}" (inverted order).'
                ),
            )
    return HierarchyConflict(conflict=False)


def remap_hierarchy_conflict(decision: Decision, folder_paths: Mapping[str, int]) -> Decision:
    """Rewrite a `create` decision that would invert an existing hierarchy.

    Args:
        decision: Decision to inspect.
        folder_paths: Existing folder paths mapped to identifiers.

    Returns:
        Decision: The original decision, or an `assign` onto the conflicting folder.
    """
    if decision.action != "create" or not decision.new_folder_path:
        return decision
    result = detect_hierarchy_conflict(decision.new_folder_path, folder_paths)
    if not result.conflict or not result.existing_path:
        return decision
    folder_id = folder_paths.get(result.existing_path)
    if folder_id is None:
        return decision

    LOGGER.info(result.message)
    return decision.model_copy(
        update={
            "action": "assign",
            "folder_id": folder_id,
            "new_folder_path": None,
            "confidence": decision.confidence * HIERARCHY_REMAP_FACTOR,
            "reason": (
                f"{decision.reason} (Auto-remapped to existing folder: "
                f"{result.existing_path} to prevent hierarchy inversion)"
            ).strip(),
        }
    )


def strip_id_annotation(path: str) -> str:
    """Remove a trailing `(ID: N)` label echoed back from the folder listing."""
    return _ID_ANNOTATION_RE.sub("", path)


def _load(text: str) -> Any:
    try:
        return json.loads(text)
    except RecursionError as exc:
        raise _UnparsableResponse("Maximum stack depth exceeded") from exc
    except json.JSONDecodeError as exc:
        if exc.msg.startswith("Invalid control character"):
            raise _UnparsableResponse("Unexpected control character") from exc
        if exc.msg.startswith("Extra data"):
            raise _UnparsableResponse("Underflow or mode mismatch") from exc
        raise _UnparsableResponse("Syntax error, malformed JSON") from exc


def _unparsable(category: str, text: str) -> Decision:
    dump = text.replace("\r", "\\r").replace("\n", "\\n").replace("\t", "\\t")
    if len(dump) > DEBUG_DUMP_LIMIT:
        dump = dump[:DEBUG_DUMP_LIMIT] + "..."
    LOGGER.warning("Unable to parse backend response: %s", category)
    return Decision.skip(f"JSON error: {category}. SANITIZED: {dump}")


def _match_path(path: str, folder_paths: Mapping[str, int]) -> Optional[int]:
    if path in folder_paths:
        return folder_paths[path]
    lowered = path.lower()
    for known, folder_id in folder_paths.items():
        if known.lower() == lowered:
            return folder_id
    return None


def _clean_path(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return strip_id_annotation(value.strip()).strip().strip("/")


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _as_float(value: Any, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


__all__ = [
    "HierarchyConflict",
    "parse_response",
    "decode_canonical",
    "decode_legacy",
    "detect_hierarchy_conflict",
    "remap_hierarchy_conflict",
    "strip_id_annotation",
    "DEBUG_DUMP_LIMIT",
    "EMPTY_RESPONSE_REASON",
    "DEFAULT_SKIP_REASON",
]
