"""Configuration models describing mediorg settings."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

ProviderName = Literal["", "openai", "anthropic", "gemini", "ollama", "grok", "exo", "heuristic"]

MAX_LOCAL_TIMEOUT_SECONDS = 600


class MediorgBaseModel(BaseModel):
    """Shared configuration for mediorg Pydantic models."""

    model_config = ConfigDict(extra="forbid")


class BackendSettings(MediorgBaseModel):
    """AI backend configuration options.

    Attributes:
        provider: Identifier of the selected backend; empty when none is configured.
        language: Language code that folder names must be written in.
        temperature: Sampling temperature for generative calls.
        max_tokens: Maximum number of tokens in classification responses.
        request_timeout: Timeout in seconds for hosted backends.
        openai_key: Credential for the OpenAI backend.
        openai_model: Model used by the OpenAI backend.
        anthropic_key: Credential for the Anthropic backend.
        anthropic_model: Model used by the Anthropic backend.
        gemini_key: Credential for the Gemini backend.
        gemini_model: Model used by the Gemini backend.
        grok_key: Credential for the Grok backend.
        grok_model: Model used by the Grok backend.
        ollama_url: Base URL of the local Ollama server.
        ollama_model: Model used by the Ollama backend.
        ollama_timeout: Timeout in seconds for Ollama calls.
        exo_url: Base URL of the local Exo cluster.
        exo_model: Model used by the Exo backend.
        exo_timeout: Timeout in seconds for Exo calls.
    """

    provider: ProviderName = ""
    language: str = "en"
    temperature: float = 0.3
    max_tokens: int = 500
    request_timeout: int = 30
    openai_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    anthropic_key: str | None = None
    anthropic_model: str = "claude-3-haiku-20240307"
    gemini_key: str | None = None
    gemini_model: str = "gemini-1.5-flash"
    grok_key: str | None = None
    grok_model: str = "grok-beta"
    ollama_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.2"
    ollama_timeout: int = 120
    exo_url: str = "http://localhost:52415"
    exo_model: str = "llama-3.2-3b"
    exo_timeout: int = 120

    @field_validator("ollama_timeout", "exo_timeout")
    @classmethod
    def _clamp_local_timeout(cls, value: int) -> int:
        return max(1, min(int(value), MAX_LOCAL_TIMEOUT_SECONDS))


class ScanOptions(MediorgBaseModel):
    """Settings that govern scan runs.

    Attributes:
        batch_size: Number of items classified per scheduled batch.
        max_folder_depth: Deepest folder level exposed to and created by the AI.
        allow_new_folders: Whether decisions may propose folders that do not exist.
        results_limit: Number of recent decisions kept in the progress record.
        max_image_mb: Ceiling for image payloads sent to vision backends.
        image_max_edge: Longest edge, in pixels, of downsized vision payloads.
    """

    batch_size: int = Field(default=20, ge=1)
    max_folder_depth: int = Field(default=3, ge=1)
    allow_new_folders: bool = False
    results_limit: int = Field(default=100, ge=1)
    max_image_mb: int = Field(default=10, ge=1)
    image_max_edge: int = Field(default=1024, ge=64)


class LoggingSettings(MediorgBaseModel):
    """Runtime logging configuration.

    Attributes:
        level: Logging verbosity level.
        max_size_mb: Maximum log size before rotation.
        backup_count: Number of historical log files to retain.
    """

    level: str = "INFO"
    max_size_mb: int = 10
    backup_count: int = 5


class CLIOptions(MediorgBaseModel):
    """CLI behavior defaults.

    Attributes:
        quiet_default: Whether commands suppress non-error output by default.
        watch_interval_seconds: Delay between refreshes in `scan status --watch`.
    """

    quiet_default: bool = False
    watch_interval_seconds: float = 1.0


class MediorgConfig(MediorgBaseModel):
    """Top-level configuration struct for mediorg.

    Attributes:
        backend: AI backend settings.
        scan: Scan run settings.
        logging: Logging configuration.
        cli: CLI presentation defaults.
    """

    backend: BackendSettings = Field(default_factory=BackendSettings)
    scan: ScanOptions = Field(default_factory=ScanOptions)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    cli: CLIOptions = Field(default_factory=CLIOptions)


__all__ = [
    "MAX_LOCAL_TIMEOUT_SECONDS",
    "MediorgBaseModel",
    "ProviderName",
    "BackendSettings",
    "ScanOptions",
    "LoggingSettings",
    "CLIOptions",
    "MediorgConfig",
]
