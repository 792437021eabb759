"""Lookup table mapping backend names to factories."""

from __future__ import annotations

from typing import Callable, Dict, Optional

from mediorg.config.models import BackendSettings

from .anthropic import AnthropicBackend
from .base import BackendAdapter
from .gemini import GeminiBackend
from .heuristic import HeuristicBackend
from .http import HttpTransport
from .ollama import OllamaBackend
from .openai import exo_backend, grok_backend, openai_backend

BackendFactory = Callable[[BackendSettings, HttpTransport], BackendAdapter]

_FACTORIES: Dict[str, BackendFactory] = {
    "openai": openai_backend,
    "anthropic": AnthropicBackend,
    "gemini": GeminiBackend,
    "ollama": OllamaBackend,
    "grok": grok_backend,
    "exo": exo_backend,
    "heuristic": lambda settings, transport: HeuristicBackend(),
}


def register_backend(name: str, factory: BackendFactory) -> None:
    """Register or replace a backend factory."""
    _FACTORIES[name] = factory


def available_backends() -> list[str]:
    """Return the names of every registered backend."""
    return sorted(_FACTORIES)


def create_backend(
    name: str,
    settings: BackendSettings,
    transport: HttpTransport | None = None,
) -> Optional[BackendAdapter]:
    """Instantiate a backend by name.

    Args:
        name: Registered backend name; empty means no backend.
        settings: Backend settings section.
        transport: HTTP transport to share; a new one is created when omitted.

    Returns:
        Optional[BackendAdapter]: Backend instance, or None for an empty or
            unknown name.
    """
    factory = _FACTORIES.get(name) if name else None
    if factory is None:
        return None
    return factory(settings, transport or HttpTransport())


__all__ = ["BackendFactory", "available_backends", "create_backend", "register_backend"]
