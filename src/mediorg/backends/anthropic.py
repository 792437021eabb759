"""Anthropic Messages API backend."""

from __future__ import annotations

from typing import Any, Dict, Optional

from mediorg.config.models import BackendSettings

from .base import AnalysisRequest, BackendResponse, dig
from .http import HttpTransport
from .prompts import TEST_PROMPT, build_system_prompt, build_user_prompt

ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
ANTHROPIC_MODELS = {
    "claude-3-haiku-20240307": "Claude 3 Haiku (Fast, Affordable)",
    "claude-3-sonnet-20240229": "Claude 3 Sonnet (Balanced)",
    "claude-3-opus-20240229": "Claude 3 Opus (Powerful)",
    "claude-3-5-sonnet-latest": "Claude 3.5 Sonnet (Latest)",
}


class AnthropicBackend:
    """Classify items with Claude models."""

    name = "anthropic"
    label = "Anthropic"

    def __init__(self, settings: BackendSettings, transport: HttpTransport) -> None:
        self._settings = settings
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self._settings.anthropic_key)

    def test(self) -> Optional[str]:
        if not self._settings.anthropic_key:
            return "Anthropic API key is required."
        result = self._transport.post_json(
            ANTHROPIC_URL,
            {
                "model": self._model(),
                "max_tokens": 10,
                "messages": [{"role": "user", "content": TEST_PROMPT}],
            },
            headers=self._headers(),
            timeout=self._settings.request_timeout,
        )
        return None if result.success else result.error

    def analyze(self, request: AnalysisRequest) -> BackendResponse:
        if not self.is_configured():
            return BackendResponse.failure("Anthropic API key not configured.")

        content: list[Dict[str, Any]] = []
        if request.image is not None:
            content.append(
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": request.image.mime_type,
                        "data": request.image.base64,
                    },
                }
            )
        content.append({"type": "text", "text": build_user_prompt(request)})

        result = self._transport.post_json(
            ANTHROPIC_URL,
            {
                "model": self._model(),
                "max_tokens": self._settings.max_tokens,
                "temperature": self._settings.temperature,
                "system": build_system_prompt(self._settings.language, request.max_depth),
                "messages": [{"role": "user", "content": content}],
            },
            headers=self._headers(),
            timeout=self._settings.request_timeout,
        )
        if not result.success:
            return BackendResponse.failure(f"Anthropic API error: {result.error}")
        text = dig(result.data, "content", 0, "text")
        return BackendResponse.ok(text if isinstance(text, str) else "")

    def available_models(self) -> Dict[str, str]:
        return dict(ANTHROPIC_MODELS)

    def _model(self) -> str:
        return self._settings.anthropic_model or "claude-3-haiku-20240307"

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self._settings.anthropic_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
        }


__all__ = ["AnthropicBackend", "ANTHROPIC_URL", "ANTHROPIC_VERSION"]
