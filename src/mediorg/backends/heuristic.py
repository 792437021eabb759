"""Network-free backend that scores folders by keyword overlap.

The heuristic answers in the older `assign`/`create` + `folder_path` shape,
so its output goes through the same reconciler as the AI backends.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Mapping, Optional

from .base import AnalysisRequest, BackendResponse

MATCH_THRESHOLD = 0.3
NEW_FOLDER_CONFIDENCE = 0.5

_MIME_CATEGORY_WORDS = {
    "image": ("images", "photos", "pictures", "graphics", "media"),
    "video": ("videos", "movies", "clips", "media"),
    "audio": ("audio", "music", "sounds", "podcasts", "media"),
    "application": ("documents", "files", "docs", "pdfs"),
}
_CONTENT_PATTERNS = {
    "screenshot": ("screenshots", "screen-captures", "screens"),
    "logo": ("logos", "branding", "brand"),
    "icon": ("icons", "ui", "interface"),
    "banner": ("banners", "headers", "hero"),
    "product": ("products", "shop", "store", "inventory"),
    "team": ("team", "staff", "people", "employees"),
    "event": ("events", "occasions", "gatherings"),
    "blog": ("blog", "posts", "articles"),
}
_BASE_FOLDERS = {
    "image": "Images",
    "video": "Videos",
    "audio": "Audio",
    "application": "Documents",
}
_SUBCATEGORIES = {
    "screenshot": "Screenshots",
    "logo": "Logos",
    "icon": "Icons",
    "banner": "Banners",
    "photo": "Photos",
    "product": "Products",
    "background": "Backgrounds",
}
_YEAR_RE = re.compile(r"\b(20\d{2})\b")


def score_folder(folder_path: str, text: str, mime_type: str) -> float:
    """Score how well a folder path fits the item text.

    Args:
        folder_path: Candidate folder path.
        text: Lower-cased filename, alt, caption and description.
        mime_type: MIME type of the item.

    Returns:
        float: Unbounded score; values of 0.3 and above count as a match.
    """
    score = 0.0
    path = folder_path.lower()
    leaf = path.rsplit("/", 1)[-1]

    if leaf and leaf in text:
        score += 0.5

    category = mime_type.split("/", 1)[0]
    if any(word in path for word in _MIME_CATEGORY_WORDS.get(category, ())):
        score += 0.3

    for pattern, folder_words in _CONTENT_PATTERNS.items():
        if pattern in text and any(word in path for word in folder_words):
            score += 0.4
            break

    year = _YEAR_RE.search(text)
    if year and year.group(1) in path:
        score += 0.3

    return score


def suggest_new_folder(metadata: Mapping[str, Any], max_depth: int) -> str:
    """Propose a folder from the MIME category, refined by filename keyword."""
    category = str(metadata.get("mime_type") or "").split("/", 1)[0]
    base = _BASE_FOLDERS.get(category, "Media")
    if max_depth <= 1:
        return base
    filename = str(metadata.get("filename") or "").lower()
    for pattern, subcategory in _SUBCATEGORIES.items():
        if pattern in filename:
            return f"{base}/{subcategory}"
    return base


class HeuristicBackend:
    """Pattern-matching fallback that never touches the network."""

    name = "heuristic"
    label = "Heuristic (Pattern Matching)"

    def is_configured(self) -> bool:
        return True

    def test(self) -> Optional[str]:
        return None

    def analyze(self, request: AnalysisRequest) -> BackendResponse:
        metadata = request.metadata
        text = " ".join(
            str(metadata.get(key) or "") for key in ("filename", "alt", "caption", "description")
        ).lower()
        mime_type = str(metadata.get("mime_type") or "")

        best_path: Optional[str] = None
        best_score = 0.0
        for path in request.folder_paths:
            score = score_folder(path, text, mime_type)
            if score > best_score:
                best_path, best_score = path, score

        if best_path is not None and best_score >= MATCH_THRESHOLD:
            payload: Dict[str, Any] = {
                "action": "assign",
                "folder_path": best_path,
                "confidence": min(best_score, 1.0),
                "reason": f'Matched folder "{best_path}" based on filename and metadata patterns.',
            }
        elif request.allow_new_folders:
            payload = {
                "action": "create",
                "folder_path": suggest_new_folder(metadata, request.max_depth),
                "confidence": NEW_FOLDER_CONFIDENCE,
                "reason": "Suggested new folder based on file type and content.",
            }
        else:
            payload = {
                "action": "skip",
                "folder_id": None,
                "new_folder_path": None,
                "confidence": 0.0,
                "reason": "No suitable folder match found.",
            }
        return BackendResponse.ok(json.dumps(payload))

    def available_models(self) -> Dict[str, str]:
        return {"heuristic": "Pattern Matching (Default)"}


__all__ = ["HeuristicBackend", "score_folder", "suggest_new_folder", "MATCH_THRESHOLD"]
