"""Contract shared by every AI backend."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, Field


class ImagePayload(BaseModel):
    """Inline image content sent to vision-capable backends.

    Attributes:
        base64: Base64-encoded image bytes.
        mime_type: MIME type of the encoded image.
    """

    base64: str
    mime_type: str

    def data_uri(self) -> str:
        """Return the payload as a `data:` URI."""
        return f"data:{self.mime_type};base64,{self.base64}"


class AnalysisRequest(BaseModel):
    """Everything a backend needs to classify one item.

    Attributes:
        metadata: Item metadata (filename, mime_type, alt, caption, description, exif).
        folder_paths: Folder paths visible to the model, mapped to identifiers.
        max_depth: Deepest folder level the model may propose.
        allow_new_folders: Whether the model may propose folders that do not exist.
        image: Optional inline image.
        session_suggested_folders: Paths already proposed during the current run.
    """

    metadata: Dict[str, Any] = Field(default_factory=dict)
    folder_paths: Dict[str, int] = Field(default_factory=dict)
    max_depth: int = 3
    allow_new_folders: bool = False
    image: Optional[ImagePayload] = None
    session_suggested_folders: List[str] = Field(default_factory=list)


class BackendResponse(BaseModel):
    """Outcome of a single backend call.

    Attributes:
        success: Whether the backend returned usable text.
        raw_text: Text returned by the model (empty on failure).
        error: Human-readable failure description.
    """

    success: bool
    raw_text: str = ""
    error: Optional[str] = None

    @classmethod
    def ok(cls, raw_text: str) -> "BackendResponse":
        return cls(success=True, raw_text=raw_text)

    @classmethod
    def failure(cls, error: str) -> "BackendResponse":
        return cls(success=False, error=error)


@runtime_checkable
class BackendAdapter(Protocol):
    """Interface implemented by each AI backend.

    Implementations never raise for network or HTTP failures; they return a
    failed :class:`BackendResponse` instead.
    """

    name: str
    label: str

    def is_configured(self) -> bool:
        """Return True when credentials exist or the local server answers a cheap probe."""
        ...

    def test(self) -> Optional[str]:
        """Run a minimal round trip and return an error message, or None on success."""
        ...

    def analyze(self, request: AnalysisRequest) -> BackendResponse:
        """Classify one item and return the model's raw text."""
        ...

    def available_models(self) -> Dict[str, str]:
        """Return known model identifiers mapped to display labels."""
        ...


def dig(data: Any, *path: Any) -> Any:
    """Walk nested dicts/lists, returning None when any step is missing."""
    current = data
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or len(current) <= key:
                return None
        elif not isinstance(current, dict):
            return None
        current = current[key] if isinstance(key, int) else current.get(key)
        if current is None:
            return None
    return current


__all__ = [
    "AnalysisRequest",
    "BackendAdapter",
    "BackendResponse",
    "ImagePayload",
    "dig",
]
