"""Ollama backend for locally hosted models."""

from __future__ import annotations

from typing import Any, Dict, Optional

from mediorg.config.models import BackendSettings

from .base import AnalysisRequest, BackendResponse, dig
from .http import HttpTransport
from .prompts import build_system_prompt, build_user_prompt

PROBE_TIMEOUT = 2.0
TEST_TIMEOUT = 5.0
OLLAMA_MODELS = {
    "llama3.2": "Llama 3.2 (3B)",
    "llama3.2:1b": "Llama 3.2 (1B, Lightweight)",
    "llama3.1": "Llama 3.1 (8B)",
    "llava": "LLaVA (Vision)",
    "mistral": "Mistral (7B)",
    "phi3": "Phi-3 (3.8B)",
    "gemma2": "Gemma 2 (9B)",
    "qwen2.5": "Qwen 2.5 (7B)",
}


class OllamaBackend:
    """Classify items through an Ollama server's `/api/chat` endpoint."""

    name = "ollama"
    label = "Ollama (Local)"

    def __init__(self, settings: BackendSettings, transport: HttpTransport) -> None:
        self._settings = settings
        self._transport = transport

    @property
    def base_url(self) -> str:
        return (self._settings.ollama_url or "http://localhost:11434").rstrip("/")

    def is_configured(self) -> bool:
        probe = self._transport.get_json(f"{self.base_url}/api/tags", timeout=PROBE_TIMEOUT)
        return probe.success

    def test(self) -> Optional[str]:
        probe = self._transport.get_json(f"{self.base_url}/api/tags", timeout=TEST_TIMEOUT)
        if probe.status_code is None:
            return f"Cannot connect to Ollama at {self.base_url}. Is it running?"
        if not probe.success:
            return "Ollama is not responding correctly."

        model = self._model()
        models = [
            entry.get("name", "")
            for entry in (dig(probe.data, "models") or [])
            if isinstance(entry, dict)
        ]
        # Installed names carry tags such as ":latest".
        if models and not any(name.startswith(model) for name in models):
            return f'Model "{model}" not found. Available models: {", ".join(models)}'
        return None

    def analyze(self, request: AnalysisRequest) -> BackendResponse:
        user_message: Dict[str, Any] = {"role": "user", "content": build_user_prompt(request)}
        if request.image is not None and request.image.base64:
            user_message["images"] = [request.image.base64]

        result = self._transport.post_json(
            f"{self.base_url}/api/chat",
            {
                "model": self._model(),
                "messages": [
                    {
                        "role": "system",
                        "content": build_system_prompt(self._settings.language, request.max_depth),
                    },
                    user_message,
                ],
                "stream": False,
                "format": "json",
                "options": {"temperature": self._settings.temperature},
            },
            timeout=self._settings.ollama_timeout,
        )
        if not result.success:
            return BackendResponse.failure(f"Ollama error: {result.error}")
        content = dig(result.data, "message", "content")
        return BackendResponse.ok(content if isinstance(content, str) else "")

    def available_models(self) -> Dict[str, str]:
        return dict(OLLAMA_MODELS)

    def _model(self) -> str:
        return self._settings.ollama_model or "llama3.2"


__all__ = ["OllamaBackend"]
