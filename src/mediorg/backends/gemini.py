"""Google Gemini backend."""

from __future__ import annotations

from typing import Any, Dict, Optional

from mediorg.config.models import BackendSettings

from .base import AnalysisRequest, BackendResponse, dig
from .http import HttpTransport
from .prompts import TEST_PROMPT, build_system_prompt, build_user_prompt

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"
GEMINI_MODELS = {
    "gemini-1.5-flash": "Gemini 1.5 Flash (Fast, Free Tier)",
    "gemini-1.5-flash-8b": "Gemini 1.5 Flash-8B (Fastest)",
    "gemini-1.5-pro": "Gemini 1.5 Pro (Powerful)",
    "gemini-2.0-flash": "Gemini 2.0 Flash (Latest)",
}


class GeminiBackend:
    """Classify items with Gemini models; the key travels as a query parameter."""

    name = "gemini"
    label = "Google Gemini"

    def __init__(self, settings: BackendSettings, transport: HttpTransport) -> None:
        self._settings = settings
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self._settings.gemini_key)

    def test(self) -> Optional[str]:
        if not self._settings.gemini_key:
            return "Gemini API key is required."
        result = self._transport.post_json(
            self._url(),
            {
                "contents": [{"parts": [{"text": TEST_PROMPT}]}],
                "generationConfig": {"maxOutputTokens": 10},
            },
            params={"key": self._settings.gemini_key},
            timeout=self._settings.request_timeout,
        )
        return None if result.success else result.error

    def analyze(self, request: AnalysisRequest) -> BackendResponse:
        if not self.is_configured():
            return BackendResponse.failure("Gemini API key not configured.")

        prompt = build_system_prompt(self._settings.language, request.max_depth)
        parts: list[Dict[str, Any]] = [{"text": f"{prompt}\n\n{build_user_prompt(request)}"}]
        if request.image is not None:
            parts.append(
                {
                    "inline_data": {
                        "mime_type": request.image.mime_type,
                        "data": request.image.base64,
                    }
                }
            )

        result = self._transport.post_json(
            self._url(),
            {
                "contents": [{"parts": parts}],
                "generationConfig": {
                    "maxOutputTokens": self._settings.max_tokens,
                    "temperature": self._settings.temperature,
                },
            },
            params={"key": self._settings.gemini_key or ""},
            timeout=self._settings.request_timeout,
        )
        if not result.success:
            return BackendResponse.failure(f"Gemini API error: {result.error}")
        text = dig(result.data, "candidates", 0, "content", "parts", 0, "text")
        return BackendResponse.ok(text if isinstance(text, str) else "")

    def available_models(self) -> Dict[str, str]:
        return dict(GEMINI_MODELS)

    def _url(self) -> str:
        model = self._settings.gemini_model or "gemini-1.5-flash"
        return f"{GEMINI_BASE_URL}/{model}:generateContent"


__all__ = ["GeminiBackend", "GEMINI_BASE_URL"]
