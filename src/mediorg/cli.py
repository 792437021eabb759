"""Command line interface for mediorg."""

from __future__ import annotations

import difflib
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

import click
import yaml
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn
from rich.syntax import Syntax
from rich.table import Table

from mediorg.backends import HttpTransport, available_backends, create_backend
from mediorg.backup import BackupService
from mediorg.classification import Decision
from mediorg.config import ConfigError, ConfigManager, MediorgConfig, resolve_with_precedence
from mediorg.library import JsonMediaLibrary, LibraryError
from mediorg.log import configure_logging
from mediorg.scan import InlineTaskQueue, ScanOrchestrator
from mediorg.state import DEFAULT_STATE_DIR, StateError, StateRepository
from mediorg.state.models import SCAN_MODES

console = Console()

LIBRARY_FILENAME = "library.json"
CONFIG_FILENAME = "config.yaml"
RECENT_RESULTS = 10


def _handle_cli_error(
    message: str,
    *,
    code: str,
    json_output: bool,
    details: Any | None = None,
    original: Exception | None = None,
) -> None:
    """Emit a standardized error and terminate the command appropriately.

    Args:
        message: Human-readable error message.
        code: Machine-readable error identifier.
        json_output: Indicates whether JSON mode is active.
        details: Optional structured details to include in the payload.
        original: Original exception for chaining when not using JSON.

    Raises:
        SystemExit: When emitting JSON output to terminate the command.
        click.ClickException: For non-JSON flows to surface the error.
    """

    if json_output:
        payload: dict[str, Any] = {"error": {"code": code, "message": message}}
        if details is not None:
            payload["error"]["details"] = details
        console.print_json(data=payload)
        raise SystemExit(1)

    if isinstance(original, click.ClickException):
        raise original

    raise click.ClickException(message) from original


def _assign_nested(target: dict[str, Any], path: list[str], value: Any) -> None:
    """Assign a nested value within a dictionary for a dotted path.

    Args:
        target: Mapping to mutate in-place.
        path: Sequence of keys representing the nested location.
        value: Value to assign at the nested location.

    Raises:
        ConfigError: If a non-mapping value is encountered along the path.
    """

    node = target
    for segment in path[:-1]:
        existing = node.get(segment)
        if existing is None:
            existing = {}
            node[segment] = existing
        elif not isinstance(existing, dict):
            raise ConfigError(
                f"Cannot assign into '{segment}' because it is not a mapping in the config file."
            )
        node = existing
    node[path[-1]] = value


@dataclass
class Runtime:
    """Objects wired together for a single command invocation."""

    config: MediorgConfig
    repository: StateRepository
    library: JsonMediaLibrary
    queue: InlineTaskQueue
    orchestrator: ScanOrchestrator


@dataclass
class CLIContext:
    """Paths selected by the global options."""

    state_dir: Path
    library_path: Path
    config_path: Path

    def manager(self) -> ConfigManager:
        return ConfigManager(self.config_path)

    def runtime(self, overrides: dict[str, Any] | None = None) -> Runtime:
        """Load configuration and build the orchestrator.

        The HTTP transport is closed when the invoking command finishes.

        Args:
            overrides: Dotted-key configuration overrides from command options.

        Returns:
            Runtime: Wired collaborators.
        """
        config = self.manager().load(cli_overrides=overrides)
        repository = StateRepository(self.state_dir)
        configure_logging(config.logging, repository.initialize())

        library = JsonMediaLibrary(self.library_path)
        queue = InlineTaskQueue(repository.queue_path)
        transport = HttpTransport()
        click.get_current_context().call_on_close(transport.close)
        backend = create_backend(config.backend.provider, config.backend, transport)
        orchestrator = ScanOrchestrator(library, repository, queue, config.scan, backend)
        orchestrator.register_tasks()
        return Runtime(config, repository, library, queue, orchestrator)


def _model_override(provider: str | None, model: str | None) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if provider is not None:
        overrides["backend.provider"] = provider
    if model:
        if not provider:
            raise click.ClickException("--model requires --provider.")
        if provider == "heuristic":
            raise click.ClickException("The heuristic backend has no model setting.")
        overrides[f"backend.{provider}_model"] = model
    return overrides


def _decision_row(decision: Decision) -> list[str]:
    folder = decision.folder_name or decision.new_folder_path or ""
    return [
        "" if decision.item_id is None else str(decision.item_id),
        decision.filename or "",
        decision.action,
        folder,
        f"{decision.confidence:.2f}",
        decision.reason,
    ]


def _decisions_table(title: str, decisions: Iterable[Decision]) -> Table:
    table = Table(title=title)
    for column in ("Item", "File", "Action", "Folder", "Confidence", "Reason"):
        table.add_column(column, overflow="fold")
    for decision in decisions:
        table.add_row(*_decision_row(decision))
    return table


def _render_progress(progress: dict[str, Any]) -> None:
    summary = Table(show_header=False, box=None)
    summary.add_column("Field", style="bold")
    summary.add_column("Value")
    summary.add_row("Status", progress["status"])
    summary.add_row("Mode", progress.get("mode") or "-")
    summary.add_row("Dry run", "yes" if progress["dry_run"] else "no")
    summary.add_row(
        "Processed",
        f"{progress['processed']}/{progress['total']} ({progress['percentage']}%)",
    )
    summary.add_row("Applied", str(progress["applied"]))
    summary.add_row("Failed", str(progress["failed"]))
    if progress.get("started_at"):
        summary.add_row("Started", progress["started_at"])
    if progress.get("completed_at"):
        summary.add_row("Completed", progress["completed_at"])
    if progress.get("error"):
        summary.add_row("Error", f"[red]{progress['error']}[/red]")
    console.print(summary)

    recent = [Decision.model_validate(entry) for entry in progress["results"][-RECENT_RESULTS:]]
    if recent:
        console.print(_decisions_table("Recent results", recent))


def _drain(runtime: Runtime, *, show_progress: bool) -> None:
    """Run queued tasks until the queue is empty, optionally with a progress bar."""
    if not show_progress:
        runtime.queue.run_pending()
        return

    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        console=console,
        transient=True,
    ) as bar:
        task_id = bar.add_task("Classifying", total=None)
        while runtime.queue.run_pending(limit=1):
            progress = runtime.orchestrator.get_progress()
            bar.update(task_id, total=progress["total"] or None, completed=progress["processed"])


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="mediorg")
@click.option(
    "--state-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory holding scan state, backups, queue and logs.",
)
@click.option(
    "--library",
    "library_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Library JSON file (defaults to library.json in the state directory).",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Configuration file (defaults to config.yaml in the state directory).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    state_dir: Path | None,
    library_path: Path | None,
    config_path: Path | None,
) -> None:
    """mediorg sorts a media library into folders with help from an AI backend."""
    root = (state_dir or DEFAULT_STATE_DIR).expanduser()
    ctx.obj = CLIContext(
        state_dir=root,
        library_path=(library_path or root / LIBRARY_FILENAME).expanduser(),
        config_path=(config_path or root / CONFIG_FILENAME).expanduser(),
    )


@cli.group()
def scan() -> None:
    """Start, monitor and apply classification runs."""


@scan.command("start")
@click.option(
    "--mode",
    type=click.Choice(SCAN_MODES),
    default="organize_unassigned",
    show_default=True,
    help="Which items to classify.",
)
@click.option("--dry-run", is_flag=True, help="Collect decisions without changing folders.")
@click.option("--provider", type=click.Choice(available_backends()), help="Override the backend.")
@click.option("--model", type=str, help="Override the model of the selected backend.")
@click.option(
    "--run/--no-run",
    "run_now",
    default=True,
    help="Process the queued batches now instead of leaving them queued.",
)
@click.option("--json", "json_output", is_flag=True, help="Emit the final progress as JSON.")
@click.pass_obj
def scan_start(
    obj: CLIContext,
    mode: str,
    dry_run: bool,
    provider: str | None,
    model: str | None,
    run_now: bool,
    json_output: bool,
) -> None:
    """Start a scan run in MODE.

    Args:
        obj: Paths selected by the global options.
        mode: Run mode.
        dry_run: Preview decisions without applying them.
        provider: Backend override.
        model: Model override for the backend.
        run_now: Drain the task queue before returning.
        json_output: Emit JSON output.

    Raises:
        click.ClickException: If the run cannot be started.
    """
    try:
        runtime = obj.runtime(_model_override(provider, model))
        result = runtime.orchestrator.start_scan(mode, dry_run=dry_run)
        if not result.success:
            _handle_cli_error(result.message, code="scan_rejected", json_output=json_output)
            return

        if not json_output:
            console.print(f"[green]{result.message}[/green]")
        if run_now:
            _drain(runtime, show_progress=not json_output)

        progress = runtime.orchestrator.get_progress()
        if json_output:
            console.print_json(data={"message": result.message, "progress": progress})
            return
        if run_now:
            _render_progress(progress)
        else:
            console.print("Batches queued; run `mediorg scan status --watch` to process them.")
    except ConfigError as exc:
        _handle_cli_error(str(exc), code="config_error", json_output=json_output, original=exc)
    except (StateError, LibraryError) as exc:
        _handle_cli_error(str(exc), code="state_error", json_output=json_output, original=exc)


@scan.command("status")
@click.option("--watch", is_flag=True, help="Process queued tasks until the run finishes.")
@click.option("--json", "json_output", is_flag=True, help="Emit progress as JSON.")
@click.pass_obj
def scan_status(obj: CLIContext, watch: bool, json_output: bool) -> None:
    """Show the progress of the current or most recent run.

    Args:
        obj: Paths selected by the global options.
        watch: Drain pending tasks, refreshing between steps.
        json_output: Emit JSON output.
    """
    try:
        runtime = obj.runtime()
        if watch:
            interval = runtime.config.cli.watch_interval_seconds
            while runtime.queue.run_pending(limit=1):
                if not json_output:
                    progress = runtime.orchestrator.get_progress()
                    console.print(
                        f"{progress['status']}: {progress['processed']}/{progress['total']} "
                        f"({progress['percentage']}%)"
                    )
                if interval > 0 and runtime.queue.pending():
                    time.sleep(interval)

        progress = runtime.orchestrator.get_progress()
        if json_output:
            console.print_json(data=progress)
            return
        _render_progress(progress)
    except ConfigError as exc:
        _handle_cli_error(str(exc), code="config_error", json_output=json_output, original=exc)
    except (StateError, LibraryError) as exc:
        _handle_cli_error(str(exc), code="state_error", json_output=json_output, original=exc)


@scan.command("apply")
@click.option("--mode", type=click.Choice(SCAN_MODES), help="Mode to apply under.")
@click.option("--yes", is_flag=True, help="Apply without asking for confirmation.")
@click.option("--json", "json_output", is_flag=True, help="Emit the outcome as JSON.")
@click.pass_obj
def scan_apply(obj: CLIContext, mode: str | None, yes: bool, json_output: bool) -> None:
    """Apply the decisions cached by the last dry run."""
    try:
        runtime = obj.runtime()
        count = runtime.orchestrator.get_cached_results_count()
        if count and not yes and not json_output:
            effective = mode or runtime.repository.load_scan().dry_run_mode or "organize_unassigned"
            warning = ""
            if effective == "reorganize_all":
                warning = " Every folder is deleted first (a backup is taken)."
            click.confirm(f"Apply {count} cached results?{warning}", abort=True)

        result = runtime.orchestrator.apply_cached_results(mode)
        if not result.success:
            _handle_cli_error(result.message, code="apply_rejected", json_output=json_output)
            return
        if json_output:
            console.print_json(data=result.model_dump(mode="json"))
            return
        console.print(f"[green]{result.message}[/green]")
        if result.failed:
            console.print(f"[yellow]{result.failed} decisions could not be applied.[/yellow]")
    except ConfigError as exc:
        _handle_cli_error(str(exc), code="config_error", json_output=json_output, original=exc)
    except (StateError, LibraryError) as exc:
        _handle_cli_error(str(exc), code="state_error", json_output=json_output, original=exc)


@scan.command("cancel")
@click.option("--json", "json_output", is_flag=True, help="Emit the outcome as JSON.")
@click.pass_obj
def scan_cancel(obj: CLIContext, json_output: bool) -> None:
    """Cancel the running scan."""
    try:
        result = obj.runtime().orchestrator.cancel_scan()
    except (ConfigError, StateError) as exc:
        _handle_cli_error(str(exc), code="state_error", json_output=json_output, original=exc)
        return
    if not result.success:
        _handle_cli_error(result.message, code="not_running", json_output=json_output)
        return
    if json_output:
        console.print_json(data=result.model_dump(mode="json"))
        return
    console.print(f"[green]{result.message}[/green]")


@scan.command("reset")
@click.option("--yes", is_flag=True, help="Reset without asking for confirmation.")
@click.pass_obj
def scan_reset(obj: CLIContext, yes: bool) -> None:
    """Force the scan state back to idle, dropping cached and pending decisions."""
    if not yes:
        click.confirm("Reset scan progress and discard cached results?", abort=True)
    try:
        result = obj.runtime().orchestrator.reset_progress()
    except (ConfigError, StateError) as exc:
        raise click.ClickException(str(exc)) from exc
    console.print(f"[green]{result.message}[/green]")


@scan.command("results")
@click.option("--json", "json_output", is_flag=True, help="Emit cached decisions as JSON.")
@click.pass_obj
def scan_results(obj: CLIContext, json_output: bool) -> None:
    """List decisions cached by the last dry run."""
    try:
        decisions = obj.runtime().orchestrator.get_cached_results()
    except (ConfigError, StateError) as exc:
        _handle_cli_error(str(exc), code="state_error", json_output=json_output, original=exc)
        return
    if json_output:
        console.print_json(
            data={
                "count": len(decisions),
                "results": [decision.model_dump(mode="json") for decision in decisions],
            }
        )
        return
    if not decisions:
        console.print("[yellow]No cached dry-run results.[/yellow]")
        return
    console.print(_decisions_table(f"{len(decisions)} cached results", decisions))


@cli.command()
@click.argument("item_id", type=int)
@click.option("--provider", type=click.Choice(available_backends()), help="Override the backend.")
@click.option("--model", type=str, help="Override the model of the selected backend.")
@click.option("--json", "json_output", is_flag=True, help="Emit the decision as JSON.")
@click.pass_obj
def analyze(
    obj: CLIContext,
    item_id: int,
    provider: str | None,
    model: str | None,
    json_output: bool,
) -> None:
    """Classify ITEM_ID once without applying the result."""
    try:
        decision = obj.runtime(_model_override(provider, model)).orchestrator.analyze_single(item_id)
    except ConfigError as exc:
        _handle_cli_error(str(exc), code="config_error", json_output=json_output, original=exc)
        return
    except (StateError, LibraryError) as exc:
        _handle_cli_error(str(exc), code="state_error", json_output=json_output, original=exc)
        return
    if json_output:
        console.print_json(data=decision.model_dump(mode="json"))
        return
    console.print(_decisions_table(f"Item {item_id}", [decision]))
    if decision.visual_description:
        console.print(f"Visual description: {decision.visual_description}")


@cli.group()
def backup() -> None:
    """Export, inspect and restore the folder tree backup."""


def _backup_service(obj: CLIContext) -> BackupService:
    return obj.runtime().orchestrator.backup


@backup.command("export")
@click.pass_obj
def backup_export(obj: CLIContext) -> None:
    """Snapshot the folder tree and its assignments, replacing any previous backup."""
    try:
        snapshot = _backup_service(obj).export()
    except (ConfigError, StateError, LibraryError) as exc:
        raise click.ClickException(str(exc)) from exc
    console.print(
        f"[green]Backed up {len(snapshot.folders)} folders and "
        f"{len(snapshot.assignments)} assignments.[/green]"
    )


@backup.command("info")
@click.option("--json", "json_output", is_flag=True, help="Emit backup details as JSON.")
@click.pass_obj
def backup_info(obj: CLIContext, json_output: bool) -> None:
    """Describe the stored backup."""
    try:
        info = _backup_service(obj).get_backup_info()
    except (ConfigError, StateError) as exc:
        _handle_cli_error(str(exc), code="state_error", json_output=json_output, original=exc)
        return
    if json_output:
        console.print_json(data=info.model_dump(mode="json"))
        return
    if not info.exists:
        console.print("[yellow]No backup found.[/yellow]")
        return
    console.print(
        f"Backup from {info.timestamp.isoformat() if info.timestamp else 'unknown time'}: "
        f"{info.folder_count} folders, {info.assignment_count} assignments "
        f"(format {info.format_version})."
    )


@backup.command("restore")
@click.option("--yes", is_flag=True, help="Restore without asking for confirmation.")
@click.pass_obj
def backup_restore(obj: CLIContext, yes: bool) -> None:
    """Replace the current folder tree with the stored backup."""
    if not yes:
        click.confirm("Delete every current folder and restore the backup?", abort=True)
    try:
        result = _backup_service(obj).restore()
    except (ConfigError, StateError, LibraryError) as exc:
        raise click.ClickException(str(exc)) from exc
    if not result.success:
        raise click.ClickException(result.error or "Restore failed.")
    console.print(
        f"[green]Restored {result.folders_restored} folders and "
        f"{result.assignments_restored} assignments.[/green]"
    )


@backup.command("delete")
@click.pass_obj
def backup_delete(obj: CLIContext) -> None:
    """Delete the stored backup."""
    try:
        removed = _backup_service(obj).delete_backup()
    except (ConfigError, StateError) as exc:
        raise click.ClickException(str(exc)) from exc
    if removed:
        console.print("[green]Backup deleted.[/green]")
    else:
        console.print("[yellow]No backup found.[/yellow]")


@cli.group()
def backend() -> None:
    """Inspect and test AI backends."""


@backend.command("list")
@click.pass_obj
def backend_list(obj: CLIContext) -> None:
    """List the available backends and mark the selected one."""
    try:
        config = obj.manager().load()
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    table = Table(title="Backends")
    table.add_column("Name")
    table.add_column("Label")
    table.add_column("Selected")
    with HttpTransport() as transport:
        for name in available_backends():
            adapter = create_backend(name, config.backend, transport)
            label = adapter.label if adapter is not None else name
            table.add_row(name, label, "*" if name == config.backend.provider else "")
    console.print(table)


@backend.command("test")
@click.option("--provider", type=click.Choice(available_backends()), help="Backend to test.")
@click.option("--json", "json_output", is_flag=True, help="Emit the outcome as JSON.")
@click.pass_obj
def backend_test(obj: CLIContext, provider: str | None, json_output: bool) -> None:
    """Check that the selected backend is reachable and its credentials work."""
    try:
        config = obj.manager().load(cli_overrides=_model_override(provider, None))
    except ConfigError as exc:
        _handle_cli_error(str(exc), code="config_error", json_output=json_output, original=exc)
        return

    with HttpTransport() as transport:
        adapter = create_backend(config.backend.provider, config.backend, transport)
        if adapter is None:
            _handle_cli_error(
                "No AI provider configured. Set backend.provider first.",
                code="no_backend",
                json_output=json_output,
            )
            return
        error = adapter.test()

    if error:
        _handle_cli_error(error, code="backend_error", json_output=json_output)
        return
    if json_output:
        console.print_json(data={"backend": adapter.name, "ok": True})
        return
    console.print(f"[green]{adapter.label} connection OK.[/green]")


@cli.group()
def config() -> None:
    """Manage mediorg configuration files and overrides."""


@config.command("view")
@click.option("--no-env", is_flag=True, help="Ignore environment overrides when displaying output.")
@click.pass_obj
def config_view(obj: CLIContext, no_env: bool) -> None:
    """Display the effective configuration after applying precedence rules.

    Args:
        obj: Paths selected by the global options.
        no_env: If True, ignore environment-derived overrides.

    Raises:
        click.ClickException: If configuration cannot be loaded.
    """
    manager = obj.manager()
    try:
        manager.ensure_exists()
        loaded = manager.load(include_env=not no_env)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    yaml_text = yaml.safe_dump(loaded.model_dump(mode="python"), sort_keys=False)
    console.print(Syntax(yaml_text, "yaml", word_wrap=True))


@config.command("set")
@click.argument("key")
@click.option("--value", required=True, help="Value to assign to KEY.")
@click.pass_obj
def config_set(obj: CLIContext, key: str, value: str) -> None:
    """Persist a configuration value expressed as a dotted KEY.

    Args:
        obj: Paths selected by the global options.
        key: Dotted path describing the configuration field to update.
        value: YAML-literal value to write into the configuration file.

    Raises:
        click.ClickException: If parsing, assignment, or validation fails.
    """
    manager = obj.manager()
    manager.ensure_exists()

    before = manager.read_text().splitlines()
    segments = [segment.strip() for segment in key.split(".") if segment.strip()]
    if not segments:
        raise click.ClickException("KEY must specify a dotted path such as 'scan.batch_size'.")

    try:
        parsed_value = yaml.safe_load(value)
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Unable to parse value: {exc}") from exc

    file_data = manager.load_file_overrides()

    try:
        _assign_nested(file_data, segments, parsed_value)
        resolve_with_precedence(defaults=MediorgConfig(), file_overrides=file_data)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    manager.save(file_data)
    after = manager.read_text().splitlines()

    diff = [
        line
        for line in difflib.unified_diff(
            before,
            after,
            fromfile="config.yaml (before)",
            tofile="config.yaml (after)",
            lineterm="",
        )
        if not line.startswith(("-# Last updated", "+# Last updated"))
    ]

    if any(line.startswith(("-", "+")) and not line.startswith(("---", "+++")) for line in diff):
        console.print(Syntax("\n".join(diff), "diff", word_wrap=False))
    else:
        console.print("[yellow]No changes applied; value already up to date.[/yellow]")
        return

    console.print(f"[green]Updated {'.'.join(segments)}.[/green]")


def main() -> None:
    """Invoke the Click CLI as the console script entry point."""
    cli()


if __name__ == "__main__":
    main()
