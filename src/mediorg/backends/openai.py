"""Backends speaking the OpenAI chat-completions protocol (OpenAI, Grok, Exo)."""

from __future__ import annotations

from typing import Any, Dict, Optional

from mediorg.config.models import BackendSettings

from .base import AnalysisRequest, BackendResponse, dig
from .http import HttpTransport
from .prompts import TEST_PROMPT, build_system_prompt, build_user_prompt, decision_json_schema

OPENAI_URL = "https://api.openai.com/v1/chat/completions"
GROK_URL = "https://api.x.ai/v1/chat/completions"

OPENAI_MODELS = {
    "gpt-4o-mini": "GPT-4o Mini (Fast, Affordable)",
    "gpt-4o": "GPT-4o (Balanced)",
    "gpt-4-turbo": "GPT-4 Turbo (Powerful)",
    "gpt-3.5-turbo": "GPT-3.5 Turbo (Budget)",
}
GROK_MODELS = {
    "grok-beta": "Grok Beta",
    "grok-2": "Grok 2",
    "grok-2-mini": "Grok 2 Mini",
}
EXO_MODELS = {
    "llama-3.2-3b": "Llama 3.2 (3B)",
    "llama-3.2-1b": "Llama 3.2 (1B)",
    "llama-3.1-8b": "Llama 3.1 (8B)",
    "mistral-7b": "Mistral (7B)",
    "deepseek-r1": "DeepSeek R1",
}
EXO_PROBE_TIMEOUT = 2.0


class ChatCompletionsBackend:
    """Chat-completions client parameterized per vendor.

    Hosted vendors authenticate with a bearer key and count as configured when
    the key is present. Local servers (`api_key is None`) are probed through
    their `/v1/models` listing instead.
    """

    def __init__(
        self,
        *,
        name: str,
        label: str,
        url: str,
        model: str,
        transport: HttpTransport,
        api_key: Optional[str] = None,
        local: bool = False,
        timeout: float = 30.0,
        temperature: float = 0.3,
        max_tokens: int = 500,
        language: str = "en",
        models: Dict[str, str] | None = None,
        structured_output: bool = False,
    ) -> None:
        self.name = name
        self.label = label
        self._url = url
        self._model = model
        self._transport = transport
        self._api_key = api_key
        self._local = local
        self._timeout = timeout
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._language = language
        self._models = dict(models or {})
        self._structured_output = structured_output

    def is_configured(self) -> bool:
        if self._local:
            probe = self._transport.get_json(self._models_url(), timeout=EXO_PROBE_TIMEOUT)
            return probe.success
        return bool(self._api_key)

    def test(self) -> Optional[str]:
        if not self._local and not self._api_key:
            return f"{self.label} API key is required."
        result = self._transport.post_json(
            self._url,
            {
                "model": self._model,
                "messages": [{"role": "user", "content": TEST_PROMPT}],
                "max_tokens": 10,
            },
            headers=self._headers(),
            timeout=self._timeout,
        )
        if not result.success:
            return result.error
        return None

    def analyze(self, request: AnalysisRequest) -> BackendResponse:
        if not self._local and not self._api_key:
            return BackendResponse.failure(f"{self.label} API key not configured.")

        user_content: Any = build_user_prompt(request)
        if request.image is not None:
            user_content = [
                {"type": "text", "text": user_content},
                {"type": "image_url", "image_url": {"url": request.image.data_uri()}},
            ]

        body: Dict[str, Any] = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": build_system_prompt(self._language, request.max_depth)},
                {"role": "user", "content": user_content},
            ],
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
        }
        if self._structured_output:
            body["response_format"] = {
                "type": "json_schema",
                "json_schema": {
                    "name": "folder_decision",
                    "strict": True,
                    "schema": decision_json_schema(),
                },
            }

        result = self._transport.post_json(
            self._url, body, headers=self._headers(), timeout=self._timeout
        )
        if not result.success:
            return BackendResponse.failure(f"{self.label} API error: {result.error}")
        content = dig(result.data, "choices", 0, "message", "content")
        return BackendResponse.ok(content if isinstance(content, str) else "")

    def available_models(self) -> Dict[str, str]:
        return dict(self._models)

    def _headers(self) -> Dict[str, str]:
        if self._api_key:
            return {"Authorization": f"Bearer {self._api_key}"}
        return {}

    def _models_url(self) -> str:
        return self._url.rsplit("/chat/completions", 1)[0] + "/models"


def openai_backend(settings: BackendSettings, transport: HttpTransport) -> ChatCompletionsBackend:
    """Create the OpenAI backend from settings."""
    return ChatCompletionsBackend(
        name="openai",
        label="OpenAI",
        url=OPENAI_URL,
        model=settings.openai_model or "gpt-4o-mini",
        api_key=settings.openai_key,
        transport=transport,
        timeout=settings.request_timeout,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
        language=settings.language,
        models=OPENAI_MODELS,
        structured_output=True,
    )


def grok_backend(settings: BackendSettings, transport: HttpTransport) -> ChatCompletionsBackend:
    """Create the Grok (x.ai) backend from settings."""
    return ChatCompletionsBackend(
        name="grok",
        label="Grok",
        url=GROK_URL,
        model=settings.grok_model or "grok-beta",
        api_key=settings.grok_key,
        transport=transport,
        timeout=settings.request_timeout,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
        language=settings.language,
        models=GROK_MODELS,
    )


def exo_backend(settings: BackendSettings, transport: HttpTransport) -> ChatCompletionsBackend:
    """Create the Exo backend (local OpenAI-compatible cluster) from settings."""
    return ChatCompletionsBackend(
        name="exo",
        label="Exo",
        url=settings.exo_url.rstrip("/") + "/v1/chat/completions",
        model=settings.exo_model or "llama-3.2-3b",
        transport=transport,
        local=True,
        timeout=settings.exo_timeout,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
        language=settings.language,
        models=EXO_MODELS,
    )


__all__ = [
    "ChatCompletionsBackend",
    "OPENAI_URL",
    "GROK_URL",
    "openai_backend",
    "grok_backend",
    "exo_backend",
]
