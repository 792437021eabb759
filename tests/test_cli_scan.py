"""CLI tests for scan, analyze and backup commands."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner

from mediorg.backends import HttpTransport
from mediorg.cli import cli
from mediorg.library import JsonMediaLibrary


def _env(tmp_path: Path, provider: str | None = "heuristic") -> dict[str, Any]:
    env = {key: value for key, value in os.environ.items() if not key.startswith("MEDIORG__")}
    env["HOME"] = str(tmp_path)
    if provider is not None:
        env["MEDIORG__BACKEND__PROVIDER"] = provider
    return env


def _seed(tmp_path: Path) -> JsonMediaLibrary:
    """Create a library with two folders and three images.

    Args:
        tmp_path: Temporary directory provided by pytest.

    Returns:
        JsonMediaLibrary: Library persisted in the state directory.
    """
    library = JsonMediaLibrary(tmp_path / "state" / "library.json")
    library.create_folder("Products")
    library.create_folder("Logos")
    library.add_item("image/jpeg", "product-shoe.jpg")
    library.add_item("image/png", "company-logo.png")
    library.add_item("image/jpeg", "random.jpg")
    return library


def _invoke(tmp_path: Path, args: list[str], **kwargs: Any) -> Any:
    runner = CliRunner()
    env = kwargs.pop("env", None) or _env(tmp_path)
    return runner.invoke(cli, ["--state-dir", str(tmp_path / "state"), *args], env=env, **kwargs)


def test_cli_help_lists_command_groups(tmp_path: Path) -> None:
    result = _invoke(tmp_path, ["--help"])

    assert result.exit_code == 0
    assert "mediorg sorts a media library" in result.output
    for command in ("scan", "analyze", "backup", "backend", "config"):
        assert command in result.output


def test_dry_run_then_apply(tmp_path: Path) -> None:
    """Preview a run, inspect the cache and commit it.

    Args:
        tmp_path: Temporary directory provided by pytest.
    """
    _seed(tmp_path)

    started = _invoke(tmp_path, ["scan", "start", "--dry-run", "--json"])
    assert started.exit_code == 0, started.output
    payload = json.loads(started.output)
    assert payload["message"] == "Started scanning 3 media files."
    assert payload["progress"]["status"] == "completed"
    assert payload["progress"]["processed"] == 3
    assert payload["progress"]["percentage"] == 100

    results = _invoke(tmp_path, ["scan", "results", "--json"])
    assert results.exit_code == 0
    cached = json.loads(results.output)
    assert cached["count"] == 2
    assert {entry["filename"] for entry in cached["results"]} == {
        "product-shoe.jpg",
        "company-logo.png",
    }
    assert JsonMediaLibrary(tmp_path / "state" / "library.json").list_links() == []

    applied = _invoke(tmp_path, ["scan", "apply", "--yes", "--json"])
    assert applied.exit_code == 0, applied.output
    outcome = json.loads(applied.output)
    assert outcome["applied"] == 2
    assert outcome["failed"] == 0

    library = JsonMediaLibrary(tmp_path / "state" / "library.json")
    assert library.item_folder_ids(1) == [1]
    assert library.item_folder_ids(2) == [2]
    assert library.item_folder_ids(3) == []


def test_committed_run_and_status(tmp_path: Path) -> None:
    _seed(tmp_path)

    started = _invoke(tmp_path, ["scan", "start", "--mode", "reanalyze_all"])
    assert started.exit_code == 0, started.output
    assert "Started scanning 3 media files." in started.output

    status = _invoke(tmp_path, ["scan", "status", "--json"])
    progress = json.loads(status.output)
    assert progress["status"] == "completed"
    assert progress["applied"] == 2
    assert progress["mode"] == "reanalyze_all"

    rendered = _invoke(tmp_path, ["scan", "status"])
    assert "completed" in rendered.output
    assert "Recent results" in rendered.output


def test_queued_run_is_drained_by_status_watch(tmp_path: Path) -> None:
    _seed(tmp_path)

    started = _invoke(tmp_path, ["scan", "start", "--no-run"])
    assert started.exit_code == 0, started.output
    assert "Batches queued" in started.output

    _invoke(tmp_path, ["config", "set", "cli.watch_interval_seconds", "--value", "0"])
    watched = _invoke(tmp_path, ["scan", "status", "--watch", "--json"])

    assert watched.exit_code == 0, watched.output
    assert json.loads(watched.output)["status"] == "completed"


def test_cancel_queued_run(tmp_path: Path) -> None:
    _seed(tmp_path)
    _invoke(tmp_path, ["scan", "start", "--no-run"])

    cancelled = _invoke(tmp_path, ["scan", "cancel", "--json"])
    again = _invoke(tmp_path, ["scan", "cancel", "--json"])

    assert cancelled.exit_code == 0
    assert json.loads(cancelled.output)["message"] == "Scan cancelled successfully."
    assert again.exit_code == 1
    assert json.loads(again.output)["error"]["code"] == "not_running"


def test_start_without_backend_reports_json_error(tmp_path: Path) -> None:
    _seed(tmp_path)

    result = _invoke(tmp_path, ["scan", "start", "--json"], env=_env(tmp_path, provider=None))

    assert result.exit_code == 1
    payload = json.loads(result.output)
    assert payload["error"]["code"] == "scan_rejected"
    assert payload["error"]["message"] == (
        "No AI provider configured. Please configure an AI provider in settings."
    )


def test_model_requires_provider(tmp_path: Path) -> None:
    _seed(tmp_path)

    result = _invoke(tmp_path, ["scan", "start", "--model", "gpt-4o"])

    assert result.exit_code != 0
    assert "--model requires --provider" in result.output


def test_apply_without_cache_fails(tmp_path: Path) -> None:
    _seed(tmp_path)

    result = _invoke(tmp_path, ["scan", "apply", "--yes"])

    assert result.exit_code != 0
    assert "No cached dry-run results to apply." in result.output


def test_reset_requires_confirmation(tmp_path: Path) -> None:
    _seed(tmp_path)
    _invoke(tmp_path, ["scan", "start", "--no-run"])

    declined = _invoke(tmp_path, ["scan", "reset"], input="n\n")
    reset = _invoke(tmp_path, ["scan", "reset", "--yes"])
    status = _invoke(tmp_path, ["scan", "status", "--json"])

    assert declined.exit_code != 0
    assert reset.exit_code == 0
    assert "Scan progress has been reset." in reset.output
    assert json.loads(status.output)["status"] == "idle"


def test_analyze_single_item(tmp_path: Path) -> None:
    _seed(tmp_path)

    result = _invoke(tmp_path, ["analyze", "2", "--json"])

    assert result.exit_code == 0, result.output
    decision = json.loads(result.output)
    assert decision["action"] == "assign"
    assert decision["folder_id"] == 2
    assert decision["folder_name"] == "Logos"
    assert JsonMediaLibrary(tmp_path / "state" / "library.json").list_links() == []


def test_backup_commands(tmp_path: Path) -> None:
    library = _seed(tmp_path)
    library.link(1, 1)

    empty = _invoke(tmp_path, ["backup", "info", "--json"])
    assert json.loads(empty.output)["exists"] is False

    exported = _invoke(tmp_path, ["backup", "export"])
    assert exported.exit_code == 0
    assert "Backed up 2 folders and 1 assignments." in exported.output

    info = json.loads(_invoke(tmp_path, ["backup", "info", "--json"]).output)
    assert info["folder_count"] == 2
    assert info["assignment_count"] == 1

    restored = _invoke(tmp_path, ["backup", "restore", "--yes"])
    assert restored.exit_code == 0, restored.output
    assert "Restored 2 folders and 1 assignments." in restored.output
    reloaded = JsonMediaLibrary(tmp_path / "state" / "library.json")
    (folder_id,) = reloaded.item_folder_ids(1)
    assert reloaded.folder_path(folder_id) == "Products"

    deleted = _invoke(tmp_path, ["backup", "delete"])
    assert "Backup deleted." in deleted.output


def test_backend_list_and_test(tmp_path: Path) -> None:
    listed = _invoke(tmp_path, ["backend", "list"])
    assert listed.exit_code == 0
    assert "heuristic" in listed.output
    assert "openai" in listed.output

    tested = _invoke(tmp_path, ["backend", "test", "--json"])
    assert tested.exit_code == 0, tested.output
    assert json.loads(tested.output) == {"backend": "heuristic", "ok": True}

    missing_key = _invoke(tmp_path, ["backend", "test", "--provider", "openai", "--json"])
    assert missing_key.exit_code == 1
    assert json.loads(missing_key.output)["error"]["code"] == "backend_error"


def test_commands_close_their_http_transport(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    closed: list[HttpTransport] = []
    monkeypatch.setattr(HttpTransport, "close", lambda self: closed.append(self))
    _seed(tmp_path)

    status = _invoke(tmp_path, ["scan", "status", "--json"])
    tested = _invoke(tmp_path, ["backend", "test", "--json"])

    assert status.exit_code == 0
    assert tested.exit_code == 0
    assert len(closed) == 2
