"""Unit tests for configuration management."""

from pathlib import Path

import pytest

from mediorg.config import (
    ConfigError,
    ConfigManager,
    MediorgConfig,
    flatten_for_env,
    resolve_with_precedence,
)


def _fresh_manager(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> ConfigManager:
    monkeypatch.setenv("HOME", str(tmp_path))
    return ConfigManager()


def test_ensure_exists_creates_default_file(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    manager = _fresh_manager(tmp_path, monkeypatch)

    path = manager.ensure_exists()

    assert path == tmp_path / ".mediorg" / "config.yaml"
    text = path.read_text(encoding="utf-8")
    assert "mediorg configuration file" in text
    assert "Last updated:" in text

    config = manager.load(include_env=False)
    assert isinstance(config, MediorgConfig)
    assert config.backend.provider == ""
    assert config.scan.batch_size == 20


def test_resolve_with_precedence_respects_order(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    manager = _fresh_manager(tmp_path, monkeypatch)
    manager.ensure_exists()

    manager.save({"backend": {"provider": "openai"}, "scan": {"batch_size": 5}})

    env = {"MEDIORG__BACKEND__TEMPERATURE": "0.7", "MEDIORG__SCAN__MAX_FOLDER_DEPTH": "2"}
    cli = {"backend.temperature": 0.2}

    config = manager.load(cli_overrides=cli, env_overrides=env)

    assert config.backend.provider == "openai"
    assert config.scan.batch_size == 5
    assert config.scan.max_folder_depth == 2
    # CLI overrides take precedence over environment
    assert config.backend.temperature == pytest.approx(0.2)


def test_invalid_yaml_raises_config_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    manager = _fresh_manager(tmp_path, monkeypatch)
    manager.ensure_exists()

    manager.config_path.write_text("- not-a-mapping", encoding="utf-8")

    with pytest.raises(ConfigError):
        manager.load()


def test_flatten_for_env_round_trips_defaults() -> None:
    flat = flatten_for_env(MediorgConfig())

    assert flat["MEDIORG__SCAN__BATCH_SIZE"] == "20"
    assert flat["MEDIORG__SCAN__ALLOW_NEW_FOLDERS"] == "false"
    assert flat["MEDIORG__BACKEND__OPENAI_KEY"] == "null"


def test_resolve_with_precedence_invalid_value_raises() -> None:
    with pytest.raises(ConfigError):
        resolve_with_precedence(
            defaults=MediorgConfig(),
            file_overrides={"scan": {"batch_size": "not-an-int"}},
        )


def test_unknown_provider_rejected() -> None:
    with pytest.raises(ConfigError):
        resolve_with_precedence(
            defaults=MediorgConfig(),
            cli_overrides={"backend.provider": "mystery"},
        )


def test_local_timeouts_are_clamped() -> None:
    config = resolve_with_precedence(
        defaults=MediorgConfig(),
        file_overrides={"backend": {"ollama_timeout": 5000, "exo_timeout": 0}},
    )

    assert config.backend.ollama_timeout == 600
    assert config.backend.exo_timeout == 1


def test_backend_string_settings_from_env_are_not_yaml_coerced(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    manager = _fresh_manager(tmp_path, monkeypatch)
    env = {
        "MEDIORG__BACKEND__LANGUAGE": "no",
        "MEDIORG__BACKEND__EXO_MODEL": "1.5",
        "MEDIORG__BACKEND__OPENAI_KEY": "12345",
        "MEDIORG__BACKEND__GROK_KEY": "null",
        "MEDIORG__BACKEND__MAX_TOKENS": "800",
    }

    config = manager.load(env_overrides=env)

    assert config.backend.language == "no"
    assert config.backend.exo_model == "1.5"
    assert config.backend.openai_key == "12345"
    assert config.backend.grok_key is None
    assert config.backend.max_tokens == 800
