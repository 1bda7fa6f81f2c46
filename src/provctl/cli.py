"""Typer-powered command line interface for ``provctl``.

``provctl apply`` converges the host towards the configured manifest, ``plan``
shows what would change, ``validate`` checks a manifest without touching the
host and ``manifests`` lists the bundled declarations.
"""
from __future__ import annotations

import textwrap
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .converge import (
    ConvergenceEngine,
    Executor,
    OutcomeStatus,
    Prober,
    ReportEntry,
    RunReport,
)
from .errors import ValidationError
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger
from .manifest import Manifest, ManifestError, list_bundled, load_manifest
from .providers import build_providers
from .providers.commands import Runner, default_runner
from .templates import TemplateEngine, TemplateRenderError

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to provctl's YAML config file.",
)
MANIFEST_OPTION = typer.Option(
    None,
    "--manifest",
    "-m",
    dir_okay=False,
    help="Manifest to converge (defaults to the configured manifest path).",
)
BUNDLED_OPTION = typer.Option(
    None,
    "--bundled",
    "-b",
    help="Use a manifest shipped with provctl (see `provctl manifests`).",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit the full run report as JSON.",
)
DRY_RUN_OPTION = typer.Option(
    False,
    "--dry-run",
    help="Probe and reconcile but do not change the host.",
)

_OUTCOME_STYLE = {
    OutcomeStatus.SUCCESS: "[green]ok[/green]",
    OutcomeStatus.FAILED: "[red]failed[/red]",
    OutcomeStatus.SKIPPED: "[yellow]skipped[/yellow]",
}

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Convergent host provisioner.

        Reads a declarative manifest, probes the host, and applies only the
        changes needed to reach the declared state. Safe to re-run.
        """
    ).strip(),
)


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    templates: TemplateEngine
    runner: Runner = default_runner


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=int(ExitCode.VALIDATION)) from exc
    runtime = RuntimeContext(
        config=config,
        logger=StructuredLogger(config.logs_dir),
        templates=TemplateEngine.with_overrides(config.templates_dir),
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
        help="Show the provctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        runtime = _ensure_runtime(ctx, config_file)
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"provctl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = int(ExitCode.VALIDATION),
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{escape(message)}[/red]")
    op.error(message, errors=list(errors or [message]), rc=rc)
    raise typer.Exit(code=rc)


def _load(
    runtime: RuntimeContext,
    op: OperationScope,
    manifest: Path | None,
    bundled: str | None,
) -> Manifest:
    """Load the selected manifest, turning load problems into exit code 2."""
    if manifest is not None and bundled is not None:
        _command_error(op, "Cannot combine --manifest and --bundled.")
    try:
        loaded = load_manifest(
            manifest,
            bundled=bundled,
            config=runtime.config,
            templates=runtime.templates,
        )
    except ValidationError as exc:
        _command_error(op, str(exc), errors=exc.problems)
    except (ManifestError, TemplateRenderError) as exc:
        _command_error(op, str(exc))
    op.add_step(
        "manifest.load",
        detail=f"{loaded.source}: {len(loaded.resources)} resources",
    )
    return loaded


def _build_engine(runtime: RuntimeContext, *, dry_run: bool) -> ConvergenceEngine:
    providers = build_providers(runtime.config, runtime.runner)
    return ConvergenceEngine(Prober(providers), Executor(providers, dry_run=dry_run))


def _entry_detail(entry: ReportEntry) -> str:
    if entry.outcome.status is OutcomeStatus.SUCCESS:
        detail = entry.rationale or ""
    else:
        detail = entry.outcome.reason or ""
    if entry.steps and entry.outcome.status is not OutcomeStatus.FAILED:
        detail = f"{detail} (steps: {', '.join(entry.steps)})".strip()
    return escape(detail)


def _render_report(report: RunReport, *, title: str) -> None:
    """Render a run report as a Rich table followed by failures and a summary."""
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("Resource", style="bold")
    table.add_column("Action")
    table.add_column("Outcome")
    table.add_column("Detail")

    if not report.entries:
        table.add_row("(none)", "", "", "")
    for entry in report.entries:
        table.add_row(
            escape(entry.key),
            entry.action.value if entry.action is not None else "-",
            _OUTCOME_STYLE[entry.outcome.status],
            _entry_detail(entry),
        )
    console.print(table)

    for entry in report.entries:
        for note in entry.notes:
            console.print(f"[yellow]note[/yellow] {escape(entry.key)}: {escape(note)}")

    failures = report.failures()
    if failures:
        console.print()
        console.print("[red]Failures:[/red]")
        for entry in failures:
            category = entry.outcome.category.value if entry.outcome.category else "error"
            reason = escape(entry.outcome.reason or "")
            console.print(f"  - {escape(entry.key)} ({category}): {reason}")
            if entry.outcome.detail:
                console.print(f"      {escape(entry.outcome.detail)}")

    style = "red" if report.has_failures else "green"
    console.print(f"[{style}]{report.summary_line()}[/{style}]")


def _finish(op: OperationScope, report: RunReport, *, json_output: bool, title: str) -> None:
    """Print *report*, record the operation result and exit accordingly."""
    payload = report.to_dict()
    if json_output:
        console.print_json(data=payload)
    else:
        _render_report(report, title=title)

    summary = report.summary()
    context = {"summary": summary.to_dict(), "manifest": report.metadata.get("manifest")}
    if not report.has_failures:
        notes = [f"{entry.key}: {note}" for entry in report.entries for note in entry.notes]
        if notes:
            op.warning(
                report.summary_line(),
                warnings=notes,
                changed=summary.changed,
                context=context,
            )
            return
        op.success(report.summary_line(), changed=summary.changed, context=context)
        return
    op.error(
        report.summary_line(),
        rc=report.exit_code,
        errors=[entry.key for entry in report.failures()],
        changed=summary.changed,
        context=context,
    )
    raise typer.Exit(code=report.exit_code)


@app.command()
def apply(
    ctx: typer.Context,
    manifest: Path | None = MANIFEST_OPTION,
    bundled: str | None = BUNDLED_OPTION,
    json_output: bool = JSON_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
) -> None:
    """Converge the host to the declared state."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "apply",
        args={
            "manifest": manifest,
            "bundled": bundled,
            "json": json_output,
            "dry_run": dry_run,
        },
        target={"kind": "host", "scope": "converge"},
    ) as op:
        loaded = _load(runtime, op, manifest, bundled)
        engine = _build_engine(runtime, dry_run=dry_run)
        report = engine.run(loaded.resources, metadata={"manifest": loaded.source})
        op.add_step("converge", detail=report.summary_line())
        title = "Dry run" if dry_run else "Apply"
        _finish(op, report, json_output=json_output, title=f"{title}: {loaded.source}")


@app.command()
def plan(
    ctx: typer.Context,
    manifest: Path | None = MANIFEST_OPTION,
    bundled: str | None = BUNDLED_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Show the actions ``apply`` would take without changing the host."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "plan",
        args={"manifest": manifest, "bundled": bundled, "json": json_output},
        target={"kind": "host", "scope": "plan"},
    ) as op:
        loaded = _load(runtime, op, manifest, bundled)
        engine = _build_engine(runtime, dry_run=True)
        report = engine.plan(loaded.resources, metadata={"manifest": loaded.source})
        op.add_step("plan", detail=report.summary_line())
        _finish(op, report, json_output=json_output, title=f"Plan: {loaded.source}")


@app.command()
def validate(
    ctx: typer.Context,
    manifest: Path | None = MANIFEST_OPTION,
    bundled: str | None = BUNDLED_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Check a manifest for errors without probing the host."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "validate",
        args={"manifest": manifest, "bundled": bundled, "json": json_output},
        target={"kind": "manifest"},
    ) as op:
        loaded = _load(runtime, op, manifest, bundled)
        if json_output:
            console.print_json(
                data={
                    "manifest": loaded.source,
                    "valid": True,
                    "resources": [resource.key for resource in loaded.resources],
                    "dropped": list(loaded.dropped),
                }
            )
        else:
            console.print(
                f"[green]{loaded.source} is valid[/green]: "
                f"{len(loaded.resources)} resources"
            )
            for key in loaded.dropped:
                console.print(f"  skipped by condition: {key}")
        op.success("Manifest is valid.", changed=0, context={"manifest": loaded.source})


@app.command()
def manifests(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit bundled manifest names as JSON instead of a table.",
    ),
) -> None:
    """List the manifests bundled with provctl."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "manifests",
        args={"json": json_output},
        target={"kind": "manifests"},
    ) as op:
        names = list_bundled()
        if json_output:
            console.print_json(data={"manifests": names})
            op.success("Reported bundled manifests as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Manifest", style="bold")
        table.add_column("Usage")
        if not names:
            table.add_row("(none)", "")
        for name in names:
            table.add_row(name, f"provctl apply --bundled {name}")
        console.print(table)
        op.success("Reported bundled manifests.", changed=0)


__all__ = ["RuntimeContext", "app"]
