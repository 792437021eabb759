"""Repair passes applied to raw AI output before JSON decoding.

Each pass targets one way language models break JSON. Passes are independent
and run in the order listed in :data:`REPAIR_PASSES`; adding a new heuristic
means appending a function, not editing the existing ones.
"""

from __future__ import annotations

import re
from typing import Callable, Optional

RepairPass = Callable[[str], str]

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?```", re.DOTALL)
_OBJECT_RE = re.compile(r"(\{[\s\S]*\}|\[[\s\S]*\])")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_INVISIBLE_RE = re.compile(r"[\u00AD\u00A0\u200B-\u200D\uFEFF\u2028\u2029\u0080-\u009F]")
_STRING_RE = re.compile(r'"((?:[^"\\]|\\.)*)"', re.DOTALL)
_LINE_BREAK_RE = re.compile(r"(?<!\\)[\r\n]+")


def extract_payload(text: str) -> str:
    """Unwrap Markdown code fences or chatty prose around the JSON body.

    Models often answer with ```` ```json ... ``` ```` or with a sentence before
    the object. The fenced body wins; otherwise the widest `{...}`/`[...]` span.
    """
    fenced = _FENCE_RE.search(text)
    if fenced:
        return fenced.group(1).strip()
    embedded = _OBJECT_RE.search(text)
    if embedded:
        return embedded.group(1).strip()
    return text.strip()


def strip_control_characters(text: str) -> str:
    """Drop ASCII control characters other than tab, CR and LF.

    Stray NUL/ESC bytes make strict decoders reject otherwise valid output.
    """
    return _CONTROL_RE.sub("", text)


def strip_invisible_unicode(text: str) -> str:
    """Remove soft hyphens, NBSP, zero-width marks, BOM, line/paragraph separators and C1 controls.

    These survive copy-paste style generation and break tokens such as keys.
    """
    return _INVISIBLE_RE.sub("", text)


def escape_string_newlines(text: str) -> str:
    """Escape raw newlines and tabs found inside string literals.

    Models frequently emit multi-line `reason` values, which JSON forbids.
    """

    def _escape(match: re.Match[str]) -> str:
        content = match.group(1)
        content = content.replace("\r\n", "\\n").replace("\r", "\\n").replace("\n", "\\n")
        content = content.replace("\t", "\\t")
        return f'"{content}"'

    return _STRING_RE.sub(_escape, text)


def collapse_line_breaks(text: str) -> str:
    """Turn any line breaks left outside strings into single spaces.

    Catches unterminated strings that the previous pass could not pair up.
    """
    return _LINE_BREAK_RE.sub(" ", text)


REPAIR_PASSES: tuple[RepairPass, ...] = (
    extract_payload,
    strip_control_characters,
    strip_invisible_unicode,
    escape_string_newlines,
    collapse_line_breaks,
)


def sanitize(text: str) -> str:
    """Run every repair pass over `text` in order."""
    for repair in REPAIR_PASSES:
        text = repair(text)
    return text.strip()


_ACTION_RE = re.compile(r'"action"\s*:\s*"(existing|new|skip|assign|create)"')
_FOLDER_ID_RE = re.compile(r'"folder_id"\s*:\s*"?(\d+|null)')
_NEW_PATH_RE = re.compile(r'"new_folder_path"\s*:\s*"([^"]*)"')
_NEW_PATH_NULL_RE = re.compile(r'"new_folder_path"\s*:\s*null')
_FOLDER_PATH_RE = re.compile(r'"folder_path"\s*:\s*"([^"]*)"')
_CONFIDENCE_RE = re.compile(r'"confidence"\s*:\s*([\d.]+)')
_REASON_RE = re.compile(r'"reason"\s*:\s*"([^"]*)"?')

TRUNCATED_SUFFIX = "(response truncated)"
DEFAULT_RECOVERED_CONFIDENCE = 0.7


def recover_truncated(text: str) -> Optional[dict[str, object]]:
    """Pull known fields out of JSON that was cut off mid-object.

    Returns:
        Optional[dict[str, object]]: Recovered fields, or None when neither an
            action nor a folder target could be found.
    """
    data: dict[str, object] = {}
    action = _ACTION_RE.search(text)
    if action:
        data["action"] = action.group(1)

    folder_id = _FOLDER_ID_RE.search(text)
    if folder_id and folder_id.group(1) != "null":
        data["folder_id"] = int(folder_id.group(1))

    new_path = _NEW_PATH_RE.search(text)
    if new_path:
        data["new_folder_path"] = new_path.group(1)
    elif _NEW_PATH_NULL_RE.search(text):
        data["new_folder_path"] = None

    folder_path = _FOLDER_PATH_RE.search(text)
    if folder_path:
        data["folder_path"] = folder_path.group(1)

    confidence = _CONFIDENCE_RE.search(text)
    if confidence:
        try:
            data["confidence"] = float(confidence.group(1))
        except ValueError:
            pass

    has_target = any(data.get(key) for key in ("folder_id", "new_folder_path", "folder_path"))
    if "action" not in data or not has_target:
        return None

    reason_match = _REASON_RE.search(text)
    reason = reason_match.group(1).rstrip("\\").strip() if reason_match else ""
    data["reason"] = f"{reason} {TRUNCATED_SUFFIX}".strip()
    data.setdefault("confidence", DEFAULT_RECOVERED_CONFIDENCE)
    return data


__all__ = [
    "REPAIR_PASSES",
    "RepairPass",
    "TRUNCATED_SUFFIX",
    "DEFAULT_RECOVERED_CONFIDENCE",
    "extract_payload",
    "strip_control_characters",
    "strip_invisible_unicode",
    "escape_string_newlines",
    "collapse_line_breaks",
    "sanitize",
    "recover_truncated",
]
