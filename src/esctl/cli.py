"""Typer-powered command line interface for ``esctl``.

``plan`` prints the action graph computed for an instance without touching
the host; ``apply`` executes it through the file and systemd providers.
"""
from __future__ import annotations

import json
import re
import textwrap
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .apply import ActionOutcome, ApplyError, GraphRunner
from .config import AppConfig, ConfigError, load_config
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger
from .providers import FileProvider, FileProviderError, SystemdProvider
from .reconcile import (
    ActionGraph,
    Ensure,
    ReconcileError,
    ServiceIntent,
    reconcile,
)
from .templates import UNIT_TEMPLATE, TemplateEngine, TemplateRenderError

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to esctl's YAML config file.",
)
ENSURE_OPTION = typer.Option(
    None,
    "--ensure",
    help="Whether the instance should be present or absent (defaults to config).",
)
STATUS_OPTION = typer.Option(
    None,
    "--status",
    help="Service status: enabled, disabled, running or unmanaged (defaults to config).",
)
SET_OPTION = typer.Option(
    None,
    "--set",
    "-s",
    help="Init defaults override as KEY=VALUE; may be repeated.",
)
DEFAULTS_FILE_OPTION = typer.Option(
    None,
    "--defaults-file",
    dir_okay=False,
    help="Install this file verbatim as the instance defaults file.",
)
UNIT_TEMPLATE_OPTION = typer.Option(
    None,
    "--unit-template",
    dir_okay=False,
    help="Jinja2 template used to render the instance unit file.",
)
BUILTIN_UNIT_OPTION = typer.Option(
    False,
    "--builtin-unit",
    help="Render the unit file from the built-in template.",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit machine-readable JSON instead of a table.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Elasticsearch instance service controller.

        Computes the defaults file, unit file, daemon reload and service
        state actions needed to bring a named instance to its declared
        state, and applies them through systemd.
        """
    ).strip(),
)
config_app = typer.Typer(help="Inspect the effective configuration.")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    templates: TemplateEngine
    file_provider: FileProvider
    systemd_provider: SystemdProvider


@dataclass(slots=True)
class PlanRequest:
    """Inputs gathered from the command line for ``plan``/``apply``."""

    name: str
    intent: ServiceIntent
    init_defaults: dict[str, str] | None
    init_defaults_file: Path | None
    init_template: bytes | None


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]Configuration error: {escape(str(exc))}[/red]")
        raise typer.Exit(code=ExitCode.ENVIRONMENT) from exc

    logger = StructuredLogger(config.logs_dir)
    templates = TemplateEngine.with_overrides(config.templates_dir)
    runtime = RuntimeContext(
        config=config,
        logger=logger,
        templates=templates,
        file_provider=FileProvider(templates=templates),
        systemd_provider=SystemdProvider(systemctl_bin=config.systemd.systemctl_bin),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the esctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"esctl {__version__}")
        raise typer.Exit(code=ExitCode.OK)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


def _validate_instance_name(name: str) -> str:
    """Validate and normalise an instance name."""
    normalised = name.strip()
    if not normalised:
        raise ValueError("Instance name must be a non-empty string.")
    if not re.fullmatch(r"[a-z0-9-]+", normalised):
        raise ValueError("Instance name must match [a-z0-9-]+.")
    return normalised


def _parse_assignments(raw: Sequence[str] | None) -> dict[str, str] | None:
    """Parse repeated ``KEY=VALUE`` options into an ordered mapping."""
    if not raw:
        return None
    parsed: dict[str, str] = {}
    for item in raw:
        key, sep, value = item.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ValueError(f"Invalid init default {item!r}; expected KEY=VALUE.")
        if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", key):
            raise ValueError(f"Invalid init default name {key!r}.")
        parsed[key] = value
    return parsed


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{escape(message)}[/red]")
    op.error(message, errors=list(errors or [message]), rc=int(rc))
    raise typer.Exit(code=int(rc))


def _gather_request(
    runtime: RuntimeContext,
    op: OperationScope,
    *,
    name: str,
    ensure: str | None,
    status: str | None,
    assignments: Sequence[str] | None,
    defaults_file: Path | None,
    unit_template: Path | None,
    builtin_unit: bool,
) -> PlanRequest:
    config = runtime.config
    try:
        validated = _validate_instance_name(name)
        overlay = _parse_assignments(assignments)
        ensure_value = Ensure(ensure) if ensure is not None else config.ensure
    except ValueError as exc:
        _command_error(op, str(exc))

    if unit_template is not None and builtin_unit:
        _command_error(op, "--unit-template and --builtin-unit are mutually exclusive.")

    template_bytes: bytes | None = None
    try:
        if unit_template is not None:
            template_bytes = unit_template.read_bytes()
        elif builtin_unit:
            template_bytes = runtime.templates.source_bytes(UNIT_TEMPLATE)
    except OSError as exc:
        _command_error(op, f"Cannot read unit template: {exc}", rc=ExitCode.ENVIRONMENT)
    except TemplateRenderError as exc:
        _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)

    if defaults_file is not None and not defaults_file.is_file():
        _command_error(
            op,
            f"Defaults file {defaults_file} does not exist.",
            rc=ExitCode.ENVIRONMENT,
        )
    if defaults_file is not None and overlay:
        console.print("[yellow]--defaults-file given; --set overrides are ignored.[/yellow]")

    return PlanRequest(
        name=validated,
        intent=ServiceIntent(ensure=ensure_value, status=status or config.status),
        init_defaults=overlay,
        init_defaults_file=defaults_file,
        init_template=template_bytes,
    )


def _build_graph(runtime: RuntimeContext, op: OperationScope, request: PlanRequest) -> ActionGraph:
    try:
        graph = reconcile(
            request.name,
            request.intent,
            runtime.config.service_settings(),
            init_defaults=request.init_defaults,
            init_defaults_file=request.init_defaults_file,
            init_template=request.init_template,
        )
    except ReconcileError as exc:
        _command_error(op, str(exc))
    op.add_step("reconcile.plan", detail=f"actions={len(graph)}")
    return graph


def _summarise_payload(payload: Mapping[str, object]) -> str:
    parts = []
    for key, value in payload.items():
        if value is None:
            continue
        if isinstance(value, dict):
            value = ", ".join(f"{k}={v}" for k, v in value.items())
        elif isinstance(value, list):
            value = " ".join(str(item) for item in value)
        parts.append(f"{key}: {value}")
    return "\n".join(parts)


def _render_graph(graph: ActionGraph) -> None:
    table = Table(show_header=True, header_style="bold magenta", title=f"Plan for {graph.instance}")
    table.add_column("Action", style="bold")
    table.add_column("Kind")
    table.add_column("Details")
    table.add_column("Edges")

    for action in graph:
        data = action.to_dict()
        payload = data["payload"]
        edges = []
        for edge in ("before", "require", "notify", "subscribe"):
            targets = data[edge]
            if isinstance(targets, list) and targets:
                edges.append(f"{edge}: {', '.join(targets)}")
        if action.refresh_only:
            edges.append("refresh-only")
        table.add_row(
            action.name,
            action.kind.value,
            escape(_summarise_payload(payload)) if isinstance(payload, dict) else "",
            "\n".join(edges),
        )
    console.print(table)


def _format_outcome(outcome: ActionOutcome) -> str:
    colour = {
        "changed": "green",
        "refreshed": "green",
        "unchanged": "dim",
        "skipped": "dim",
        "failed": "red",
    }.get(outcome.status, "white")
    detail = f" ({escape(outcome.detail)})" if outcome.detail else ""
    return f"[{colour}]{outcome.status:>9}[/{colour}] {outcome.name}{detail}"


@app.command()
def plan(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the instance."),
    ensure: str | None = ENSURE_OPTION,
    status: str | None = STATUS_OPTION,
    assignments: list[str] | None = SET_OPTION,
    defaults_file: Path | None = DEFAULTS_FILE_OPTION,
    unit_template: Path | None = UNIT_TEMPLATE_OPTION,
    builtin_unit: bool = BUILTIN_UNIT_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Show the actions that would bring an instance to its declared state."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "plan",
        args={
            "name": name,
            "ensure": ensure,
            "status": status,
            "set": list(assignments or []),
            "defaults_file": defaults_file,
            "unit_template": unit_template,
            "builtin_unit": builtin_unit,
            "json": json_output,
        },
        target={"kind": "instance", "name": name},
    ) as op:
        request = _gather_request(
            runtime,
            op,
            name=name,
            ensure=ensure,
            status=status,
            assignments=assignments,
            defaults_file=defaults_file,
            unit_template=unit_template,
            builtin_unit=builtin_unit,
        )
        graph = _build_graph(runtime, op, request)
        if json_output:
            console.print_json(data=graph.to_dict())
        else:
            _render_graph(graph)
        op.success("Planned instance actions.", changed=0, context={"actions": len(graph)})


@app.command()
def apply(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the instance."),
    ensure: str | None = ENSURE_OPTION,
    status: str | None = STATUS_OPTION,
    assignments: list[str] | None = SET_OPTION,
    defaults_file: Path | None = DEFAULTS_FILE_OPTION,
    unit_template: Path | None = UNIT_TEMPLATE_OPTION,
    builtin_unit: bool = BUILTIN_UNIT_OPTION,
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Report the actions that would be taken without applying changes.",
    ),
    json_output: bool = JSON_OPTION,
) -> None:
    """Bring an instance to its declared state."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "apply",
        args={
            "name": name,
            "ensure": ensure,
            "status": status,
            "set": list(assignments or []),
            "defaults_file": defaults_file,
            "unit_template": unit_template,
            "builtin_unit": builtin_unit,
            "dry_run": dry_run,
            "json": json_output,
        },
        target={"kind": "instance", "name": name},
    ) as op:
        request = _gather_request(
            runtime,
            op,
            name=name,
            ensure=ensure,
            status=status,
            assignments=assignments,
            defaults_file=defaults_file,
            unit_template=unit_template,
            builtin_unit=builtin_unit,
        )
        graph = _build_graph(runtime, op, request)

        def record(outcome: ActionOutcome) -> None:
            op.add_step(outcome.name, status=outcome.status, detail=outcome.detail)
            if not json_output:
                console.print(_format_outcome(outcome))

        runner = GraphRunner(
            files=runtime.file_provider,
            systemd=runtime.systemd_provider,
            on_outcome=record,
        )
        try:
            report = runner.run(graph, dry_run=dry_run)
        except ApplyError as exc:
            if json_output:
                console.print_json(data=exc.report.to_dict())
            rc = (
                ExitCode.ENVIRONMENT
                if isinstance(exc.__cause__, FileProviderError)
                else ExitCode.PROVIDER
            )
            _command_error(op, str(exc), rc=rc)

        if json_output:
            console.print_json(data=report.to_dict())
        elif dry_run:
            console.print(f"[yellow]Dry run[/yellow]: {report.changed} action(s) would change.")
        else:
            console.print(
                f"[green]Instance '{request.name}' applied "
                f"({report.changed} changed).[/green]"
            )
        op.success(
            "Dry run complete." if dry_run else "Instance applied.",
            changed=0 if dry_run else report.changed,
            context={"dry_run": dry_run},
        )


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit configuration as JSON instead of a table.",
    ),
) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


__all__ = ["app"]
