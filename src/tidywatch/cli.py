"""Command line interface for tidywatch."""

from __future__ import annotations

import difflib
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

import click
import yaml
from click.core import ParameterSource
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from tidywatch.backup import BackupError
from tidywatch.config import ConfigError, ConfigManager, TidyConfig, resolve_with_precedence
from tidywatch.engine import Engine
from tidywatch.events import FileEvent, FileEventKind
from tidywatch.ingestion import normalize_path
from tidywatch.log import configure_logging
from tidywatch.organization import OrganizationError, OrganizationOutcome, OrganizationState
from tidywatch.state import (
    DEFAULT_TAG_COLOR,
    DuplicateTagError,
    FileRecord,
    MissingRecordError,
    StateError,
    StoreUnavailableError,
    Tag,
)
from tidywatch.watch import WatchError

console = Console()


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


def _error_code(exc: Exception) -> str:
    """Map domain exceptions to machine-readable error codes."""
    if isinstance(exc, ConfigError):
        return "config_error"
    if isinstance(exc, StoreUnavailableError):
        return "store_unavailable"
    if isinstance(exc, MissingRecordError):
        return "not_found"
    if isinstance(exc, DuplicateTagError):
        return "duplicate_tag"
    if isinstance(exc, OrganizationError):
        return "organize_failed"
    if isinstance(exc, WatchError):
        return "watch_error"
    if isinstance(exc, BackupError):
        return "backup_error"
    if isinstance(exc, ValueError):
        return "invalid_value"
    return "internal_error"


_DOMAIN_ERRORS = (ConfigError, StateError, OrganizationError, WatchError, BackupError, ValueError)


def _emit_message(message: Any, *, mode: str, quiet: bool, summary_only: bool) -> None:
    """Conditionally print CLI output according to quiet/summary settings.

    Args:
        message: Renderable or string to emit.
        mode: Output mode identifier (`detail`, `summary`, `warning`, or `error`).
        quiet: Whether quiet mode is active.
        summary_only: Whether only summary lines should be emitted.
    """

    if quiet and mode != "error":
        return

    important_modes = {"summary", "warning", "error"}
    if summary_only and mode not in important_modes:
        return

    console.print(message)


def _format_summary_line(command: str, root: Path | str, metrics: dict[str, Any]) -> str:
    parts = ", ".join(f"{key}={value}" for key, value in metrics.items())
    return f"[green]{command} summary for {root}: {parts}.[/green]"


def _assign_nested(target: dict[str, Any], path: list[str], value: Any) -> None:
    """Assign a nested value within a dictionary for a dotted path.

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


def _load_config(ctx: click.Context, *, json_output: bool) -> TidyConfig:
    """Load configuration and install logging for the running command."""
    try:
        manager = ConfigManager()
        manager.ensure_exists()
        config = manager.load()
    except ConfigError as exc:
        _handle_cli_error(str(exc), code="config_error", json_output=json_output, original=exc)
        raise  # pragma: no cover - _handle_cli_error always raises
    verbose = bool((ctx.find_root().obj or {}).get("verbose"))
    configure_logging(config.logging, verbose=verbose)
    return config


def _output_modes(
    ctx: click.Context,
    config: TidyConfig,
    *,
    quiet: bool,
    summary_mode: bool,
    json_output: bool,
) -> tuple[bool, bool]:
    """Resolve quiet/summary flags against configured CLI defaults."""
    explicit_quiet = ctx.get_parameter_source("quiet") == ParameterSource.COMMANDLINE
    explicit_summary = ctx.get_parameter_source("summary_mode") == ParameterSource.COMMANDLINE

    quiet_enabled = quiet if explicit_quiet else config.cli.quiet_default
    summary_only = summary_mode if explicit_summary else config.cli.summary_default

    if json_output:
        if quiet_enabled and explicit_quiet:
            raise click.ClickException("--json cannot be combined with --quiet.")
        if summary_only and explicit_summary:
            raise click.ClickException("--json cannot be combined with --summary.")
        return False, False

    if quiet_enabled and summary_only:
        raise click.ClickException(
            "Quiet and summary modes cannot both be enabled. Adjust CLI defaults or flags."
        )
    return quiet_enabled, summary_only


@contextmanager
def _open_engine(
    ctx: click.Context,
    *,
    json_output: bool,
    start_backup_worker: Optional[bool] = False,
) -> Iterator[Engine]:
    """Yield a started engine, translating domain errors into CLI errors."""
    config = _load_config(ctx, json_output=json_output)
    try:
        engine = Engine(config, start_backup_worker=start_backup_worker)
    except _DOMAIN_ERRORS as exc:
        _handle_cli_error(str(exc), code=_error_code(exc), json_output=json_output, original=exc)
        raise  # pragma: no cover - _handle_cli_error always raises
    try:
        yield engine
    except _DOMAIN_ERRORS as exc:
        _handle_cli_error(str(exc), code=_error_code(exc), json_output=json_output, original=exc)
    finally:
        engine.close()


def _resolve_file_id(engine: Engine, value: str) -> int:
    """Interpret VALUE as a record id or a tracked file path."""
    if value.isdigit():
        return int(value)
    record = engine.repository.get_file_by_path(normalize_path(Path(value)))
    if record is None:
        raise MissingRecordError(f"File {value} is not tracked.")
    return record.id


def _resolve_tag(engine: Engine, value: str) -> Tag:
    """Interpret VALUE as a tag id or a tag name."""
    tag = engine.repository.get_tag(int(value)) if value.isdigit() else None
    if tag is None:
        tag = engine.repository.get_tag_by_name(value)
    if tag is None:
        raise MissingRecordError(f"Tag '{value}' does not exist.")
    return tag


def _record_payload(record: FileRecord) -> dict[str, Any]:
    return record.model_dump(mode="json")


def _outcome_payload(outcome: OrganizationOutcome) -> dict[str, Any]:
    return outcome.model_dump(mode="json")


def _describe_outcome(outcome: OrganizationOutcome) -> str:
    if outcome.state is OrganizationState.FAILED:
        return f"[red]Failed {outcome.path}: {outcome.reason}[/red]"
    if outcome.destination is None or outcome.destination == outcome.path:
        return f"[cyan]Kept {outcome.path} in place.[/cyan]"
    suffix = " (renamed to avoid a collision)" if outcome.conflict_applied else ""
    return f"[green]Moved {outcome.path} -> {outcome.destination}{suffix}[/green]"


def _describe_event(event: FileEvent) -> tuple[str, str]:
    """Return a message and output mode for a published event."""
    kind = event.kind
    if kind is FileEventKind.MOVED:
        return f"[green]Moved {event.previous_path} -> {event.path}[/green]", "detail"
    if kind is FileEventKind.CREATED:
        return f"[cyan]Indexed {event.path}[/cyan]", "detail"
    if kind is FileEventKind.ORGANIZE_FAILED:
        return f"[red]Could not organize {event.path}: {event.reason}[/red]", "error"
    if kind is FileEventKind.WATCH_LOST:
        return f"[yellow]Stopped watching {event.path}: {event.reason}[/yellow]", "warning"
    if kind is FileEventKind.REMOVED:
        return f"[yellow]Forgot {event.path or event.file_id} (no longer on disk).[/yellow]", "detail"
    if kind is FileEventKind.BACKUP_FAILED:
        return f"[red]Backup of file {event.file_id} failed: {event.reason}[/red]", "error"
    return f"{kind.value}: {event.path or event.file_id}", "detail"


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="tidywatch")
@click.option("-v", "--verbose", is_flag=True, help="Mirror debug logging to stderr.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """tidywatch watches folders and files new arrivals by your rules."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


@cli.command()
@click.argument("paths", nargs=-1, type=click.Path(exists=True, file_okay=False, path_type=str))
@click.option("-r", "--recursive", is_flag=True, default=None, help="Include subdirectories for monitoring.")
@click.option("--debounce", type=float, help="Override debounce interval in seconds.")
@click.option("--once", is_flag=True, help="Organize current contents once and exit.")
@click.option("--json", "json_output", is_flag=True, help="Emit JSON describing results.")
@click.option("--summary", "summary_mode", is_flag=True, help="Only emit summary lines.")
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
@click.pass_context
def watch(
    ctx: click.Context,
    paths: tuple[str, ...],
    recursive: Optional[bool],
    debounce: float | None,
    once: bool,
    json_output: bool,
    summary_mode: bool,
    quiet: bool,
) -> None:
    """Monitor PATHS and organize files as they arrive.

    Without PATHS, the folders watched during the previous run are resumed.
    """

    if debounce is not None and debounce <= 0:
        raise click.ClickException("--debounce must be greater than zero.")

    with _open_engine(ctx, json_output=json_output, start_backup_worker=None) as engine:
        quiet_enabled, summary_only = _output_modes(
            ctx, engine.config, quiet=quiet, summary_mode=summary_mode, json_output=json_output
        )
        roots = [Path(path).expanduser().resolve() for path in paths] or engine.watched_folders()
        if not roots:
            raise click.ClickException("Provide at least one PATH to monitor.")

        if once:
            results = []
            for root in roots:
                outcomes = engine.process_once(root, recursive=recursive)
                results.append({"root": str(root), "outcomes": [_outcome_payload(o) for o in outcomes]})
                if json_output:
                    continue
                for outcome in outcomes:
                    mode = "error" if outcome.state is OrganizationState.FAILED else "detail"
                    _emit_message(
                        _describe_outcome(outcome), mode=mode, quiet=quiet_enabled, summary_only=summary_only
                    )
                failed = sum(1 for o in outcomes if o.state is OrganizationState.FAILED)
                moved = sum(
                    1 for o in outcomes if o.state is OrganizationState.INDEXED and o.destination != o.path
                )
                _emit_message(
                    _format_summary_line(
                        "Watch", root, {"processed": len(outcomes), "moved": moved, "failed": failed}
                    ),
                    mode="summary",
                    quiet=quiet_enabled,
                    summary_only=summary_only,
                )
            if json_output:
                console.print_json(data={"results": results})
            return

        subscription = engine.subscribe()
        for root in roots:
            engine.start_watching(root, debounce_seconds=debounce, recursive=recursive)
        if not json_output:
            monitored = ", ".join(str(path) for path in roots)
            _emit_message(
                f"[cyan]Watching {monitored}. Press Ctrl+C to stop.[/cyan]",
                mode="detail",
                quiet=quiet_enabled,
                summary_only=summary_only,
            )

        try:
            while engine.sessions():
                event = subscription.get(timeout=0.5)
                if event is None:
                    continue
                if json_output:
                    console.print_json(data=event.model_dump(mode="json"))
                    continue
                message, mode = _describe_event(event)
                _emit_message(message, mode=mode, quiet=quiet_enabled, summary_only=summary_only)
        except KeyboardInterrupt:
            if not json_output:
                _emit_message(
                    "[yellow]Watch stopped by user request.[/yellow]",
                    mode="summary",
                    quiet=quiet_enabled,
                    summary_only=summary_only,
                )
        finally:
            subscription.close()


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=str))
@click.option("--to", "destination", type=click.Path(file_okay=False, path_type=str), help="Destination folder; rules decide when omitted.")
@click.option("--json", "json_output", is_flag=True, help="Emit JSON describing the result.")
@click.pass_context
def organize(ctx: click.Context, path: str, destination: str | None, json_output: bool) -> None:
    """Organize the file at PATH now."""

    with _open_engine(ctx, json_output=json_output) as engine:
        outcome = engine.organize(Path(path), Path(destination) if destination else None)
        if json_output:
            console.print_json(data=_outcome_payload(outcome))
            return
        console.print(_describe_outcome(outcome))


@cli.command()
@click.option("--query", "-q", type=str, help="Case-insensitive substring of the file name.")
@click.option("--tag", "tags", multiple=True, help="Tag name or id; files carrying any given tag match.")
@click.option("--ext", "extension", type=str, help="File extension filter.")
@click.option("--limit", type=int, help="Maximum number of results.")
@click.option("--json", "json_output", is_flag=True, help="Emit JSON results.")
@click.pass_context
def search(
    ctx: click.Context,
    query: str | None,
    tags: tuple[str, ...],
    extension: str | None,
    limit: int | None,
    json_output: bool,
) -> None:
    """Search tracked files by name, tag, and extension."""

    with _open_engine(ctx, json_output=json_output) as engine:
        tag_ids = [_resolve_tag(engine, value).id for value in tags] if tags else None
        records = engine.search_files(query, tag_ids, extension, limit=limit)
        if json_output:
            console.print_json(data={"results": [_record_payload(record) for record in records]})
            return
        if not records:
            console.print("[yellow]No files matched.[/yellow]")
            return
        table = Table(title=f"{len(records)} file(s)")
        table.add_column("ID", justify="right")
        table.add_column("Name")
        table.add_column("Path", overflow="fold")
        table.add_column("Size", justify="right")
        table.add_column("Tags")
        for record in records:
            table.add_row(
                str(record.id),
                record.name,
                record.path,
                str(record.size_bytes),
                ", ".join(tag.name for tag in record.tags),
            )
        console.print(table)


@cli.group()
def tags() -> None:
    """Manage tags and their assignment to files."""


@tags.command("list")
@click.option("--json", "json_output", is_flag=True, help="Emit JSON output.")
@click.pass_context
def tags_list(ctx: click.Context, json_output: bool) -> None:
    """List every tag."""
    with _open_engine(ctx, json_output=json_output) as engine:
        all_tags = engine.get_tags()
        if json_output:
            console.print_json(data={"tags": [tag.model_dump(mode="json") for tag in all_tags]})
            return
        table = Table(title="Tags")
        table.add_column("ID", justify="right")
        table.add_column("Name")
        table.add_column("Color")
        for tag in all_tags:
            table.add_row(str(tag.id), tag.name, f"[{tag.color}]{tag.color}[/]")
        console.print(table)


@tags.command("create")
@click.argument("name")
@click.option("--color", default=DEFAULT_TAG_COLOR, show_default=True, help="Hex color of the tag.")
@click.pass_context
def tags_create(ctx: click.Context, name: str, color: str) -> None:
    """Create a tag called NAME."""
    with _open_engine(ctx, json_output=False) as engine:
        tag = engine.create_tag(name, color)
        console.print(f"[green]Created tag {tag.name} (id {tag.id}).[/green]")


@tags.command("delete")
@click.argument("tag")
@click.pass_context
def tags_delete(ctx: click.Context, tag: str) -> None:
    """Delete TAG (name or id); tagged files are left untouched."""
    with _open_engine(ctx, json_output=False) as engine:
        target = _resolve_tag(engine, tag)
        engine.delete_tag(target.id)
        console.print(f"[green]Deleted tag {target.name}.[/green]")


@tags.command("assign")
@click.argument("file")
@click.argument("tag")
@click.pass_context
def tags_assign(ctx: click.Context, file: str, tag: str) -> None:
    """Attach TAG to FILE (record id or path)."""
    with _open_engine(ctx, json_output=False) as engine:
        target = _resolve_tag(engine, tag)
        file_id = _resolve_file_id(engine, file)
        if engine.assign_tag(file_id, target.id):
            console.print(f"[green]Tagged file {file_id} with {target.name}.[/green]")
        else:
            console.print(f"[yellow]File {file_id} already carries {target.name}.[/yellow]")


@tags.command("unassign")
@click.argument("file")
@click.argument("tag")
@click.pass_context
def tags_unassign(ctx: click.Context, file: str, tag: str) -> None:
    """Detach TAG from FILE (record id or path)."""
    with _open_engine(ctx, json_output=False) as engine:
        target = _resolve_tag(engine, tag)
        file_id = _resolve_file_id(engine, file)
        if engine.unassign_tag(file_id, target.id):
            console.print(f"[green]Removed {target.name} from file {file_id}.[/green]")
        else:
            console.print(f"[yellow]File {file_id} does not carry {target.name}.[/yellow]")


@cli.group()
def rules() -> None:
    """Manage organization rules."""


@rules.command("list")
@click.option("--all", "include_inactive", is_flag=True, help="Include inactive rules.")
@click.option("--json", "json_output", is_flag=True, help="Emit JSON output.")
@click.pass_context
def rules_list(ctx: click.Context, include_inactive: bool, json_output: bool) -> None:
    """List rules in evaluation order."""
    with _open_engine(ctx, json_output=json_output) as engine:
        snapshot = engine.list_rules(include_inactive=include_inactive)
        if json_output:
            console.print_json(data={"rules": [rule.model_dump(mode="json") for rule in snapshot]})
            return
        table = Table(title="Rules")
        table.add_column("ID", justify="right")
        table.add_column("Priority", justify="right")
        table.add_column("Name")
        table.add_column("Pattern")
        table.add_column("Destination")
        table.add_column("Active")
        for rule in snapshot:
            table.add_row(
                str(rule.id),
                str(rule.priority),
                rule.name,
                rule.pattern,
                rule.destination_template,
                "yes" if rule.is_active else "no",
            )
        console.print(table)


@rules.command("add")
@click.argument("pattern")
@click.argument("destination")
@click.option("--name", type=str, help="Label for the rule; defaults to PATTERN.")
@click.option("--priority", type=int, default=100, show_default=True, help="Lower values are evaluated first.")
@click.option("--inactive", is_flag=True, help="Create the rule disabled.")
@click.pass_context
def rules_add(
    ctx: click.Context,
    pattern: str,
    destination: str,
    name: str | None,
    priority: int,
    inactive: bool,
) -> None:
    """Send files matching PATTERN to DESTINATION.

    PATTERN is a comma-separated list of extensions or name globs such as
    ``pdf,docx`` or ``invoice*``. DESTINATION is a folder template using the
    fields {category}, {extension}, {name}, {stem}, {year}, {month} and {day}.
    """
    if destination.startswith("~"):
        destination = str(Path(destination).expanduser())
    with _open_engine(ctx, json_output=False) as engine:
        rule = engine.add_rule(pattern, destination, name=name, priority=priority, is_active=not inactive)
        console.print(f"[green]Added rule {rule.id}: {rule.pattern} -> {rule.destination_template}.[/green]")


@rules.command("remove")
@click.argument("rule_id", type=int)
@click.pass_context
def rules_remove(ctx: click.Context, rule_id: int) -> None:
    """Delete the rule RULE_ID."""
    with _open_engine(ctx, json_output=False) as engine:
        engine.remove_rule(rule_id)
        console.print(f"[green]Removed rule {rule_id}.[/green]")


@cli.group()
def backup() -> None:
    """Queue and inspect remote backups."""


@backup.command("enqueue")
@click.argument("file")
@click.pass_context
def backup_enqueue(ctx: click.Context, file: str) -> None:
    """Schedule a backup of FILE (record id or path)."""
    with _open_engine(ctx, json_output=False) as engine:
        task = engine.enqueue_backup(_resolve_file_id(engine, file))
        console.print(f"[green]Backup of file {task.file_id} is {task.status.value}.[/green]")


@backup.command("status")
@click.argument("file", required=False)
@click.option("--json", "json_output", is_flag=True, help="Emit JSON output.")
@click.pass_context
def backup_status(ctx: click.Context, file: str | None, json_output: bool) -> None:
    """Show the backup state of FILE, or of every queued file."""
    with _open_engine(ctx, json_output=json_output) as engine:
        if file is not None:
            tasks = [engine.backup_status(_resolve_file_id(engine, file))]
        else:
            tasks = engine.list_backups()
        if json_output:
            console.print_json(data={"tasks": [task.model_dump(mode="json") for task in tasks]})
            return
        if not tasks:
            console.print("[yellow]No backups queued.[/yellow]")
            return
        table = Table(title="Backups")
        table.add_column("File", justify="right")
        table.add_column("Status")
        table.add_column("Attempts", justify="right")
        table.add_column("Next attempt")
        table.add_column("Last error", overflow="fold")
        for task in tasks:
            table.add_row(
                str(task.file_id),
                task.status.value,
                str(task.attempt_count),
                task.next_attempt_at.isoformat() if task.next_attempt_at else "",
                task.last_error or "",
            )
        console.print(table)


@backup.command("run")
@click.option("--json", "json_output", is_flag=True, help="Emit JSON output.")
@click.pass_context
def backup_run(ctx: click.Context, json_output: bool) -> None:
    """Attempt every due backup once."""
    with _open_engine(ctx, json_output=json_output) as engine:
        tasks = engine.run_backups()
        if json_output:
            console.print_json(data={"tasks": [task.model_dump(mode="json") for task in tasks]})
            return
        counts: dict[str, int] = {}
        for task in tasks:
            counts[task.status.value] = counts.get(task.status.value, 0) + 1
        settings = engine.config.backup
        target = settings.bucket or settings.directory or "remote"
        console.print(_format_summary_line("Backup", target, {"attempted": len(tasks), **counts}))


@backup.command("restore")
@click.argument("file")
@click.option("--to", "destination", type=click.Path(file_okay=False, path_type=str), help="Folder receiving the copy; defaults to the file's folder.")
@click.option("--json", "json_output", is_flag=True, help="Emit JSON output.")
@click.pass_context
def backup_restore(ctx: click.Context, file: str, destination: str | None, json_output: bool) -> None:
    """Download the backup of FILE (record id or path).

    Existing files are never replaced; the copy gets a numbered name instead.
    """
    with _open_engine(ctx, json_output=json_output) as engine:
        file_id = _resolve_file_id(engine, file)
        restored = engine.restore_backup(file_id, Path(destination) if destination else None)
        if json_output:
            console.print_json(data={"file_id": file_id, "path": str(restored)})
            return
        console.print(f"[green]Restored file {file_id} to {restored}.[/green]")


@cli.command()
@click.option("--json", "json_output", is_flag=True, help="Emit JSON output.")
@click.pass_context
def reconcile(ctx: click.Context, json_output: bool) -> None:
    """Repair records whose files were moved or deleted behind tidywatch's back."""
    with _open_engine(ctx, json_output=json_output) as engine:
        report = engine.reconcile()
        if json_output:
            console.print_json(data=report.model_dump(mode="json"))
            return
        console.print(
            _format_summary_line(
                "Reconcile",
                engine.repository.db_path,
                {
                    "checked": report.checked,
                    "removed": len(report.removed),
                    "repathed": len(report.repathed),
                    "skipped": len(report.skipped),
                },
            )
        )


@cli.group()
def config() -> None:
    """Manage tidywatch configuration files and overrides."""


@config.command("view")
@click.option("--no-env", is_flag=True, help="Ignore environment overrides when displaying output.")
def config_view(no_env: bool) -> None:
    """Display the effective configuration after applying precedence rules.

    Raises:
        click.ClickException: If configuration cannot be loaded.
    """
    manager = ConfigManager()
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
def config_set(key: str, value: str) -> None:
    """Persist a configuration value expressed as a dotted KEY.

    Raises:
        click.ClickException: If parsing, assignment, or validation fails.
    """
    manager = ConfigManager()
    manager.ensure_exists()

    before = manager.read_text().splitlines()
    segments = [segment.strip() for segment in key.split(".") if segment.strip()]
    if not segments:
        raise click.ClickException("KEY must specify a dotted path such as 'watch.debounce_seconds'.")

    try:
        parsed_value = yaml.safe_load(value)
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Unable to parse value: {exc}") from exc

    try:
        file_data = manager.load_file_overrides()
        _assign_nested(file_data, segments, parsed_value)
        resolve_with_precedence(defaults=TidyConfig(), file_overrides=file_data)
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
        if "# Last updated:" not in line
    ]

    changed = [line for line in diff if line[:1] in "+-" and not line.startswith(("+++", "---"))]
    if not changed:
        console.print("[yellow]No changes applied; value already up to date.[/yellow]")
        return

    console.print(Syntax("\n".join(diff), "diff", word_wrap=False))
    console.print(f"[green]Updated {'.'.join(segments)}.[/green]")


@config.command("edit")
def config_edit() -> None:
    """Open the configuration file in an interactive editor session.

    Raises:
        click.ClickException: If edited content is invalid or cannot be saved.
    """
    manager = ConfigManager()
    manager.ensure_exists()

    original = manager.read_text()
    edited = click.edit(original, extension=".yaml")

    if edited is None:
        console.print("[yellow]Edit cancelled; no changes applied.[/yellow]")
        return

    if edited == original:
        console.print("[yellow]No changes detected.[/yellow]")
        return

    try:
        parsed = yaml.safe_load(edited) or {}
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Invalid YAML: {exc}") from exc

    if not isinstance(parsed, dict):
        raise click.ClickException("Configuration file must contain a top-level mapping.")

    try:
        resolve_with_precedence(defaults=TidyConfig(), file_overrides=parsed)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    manager.save(parsed)
    console.print("[green]Configuration updated successfully.[/green]")


def main() -> None:
    """Invoke the Click CLI as the console script entry point."""
    cli()


if __name__ == "__main__":
    main()
