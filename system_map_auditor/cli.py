"""Typer-based CLI for the System Map Auditor."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import toml
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import LOCAL_CONFIG_NAME
from .config_manager import AuditConfig, load_config, save_config
from .context import AuditContext
from .dependency_analyzer import DependencyAnalyzer
from .errors import ConfigError, SystemMapError
from .indexer import CodebaseIndexer, index_project
from .orchestrator import ValidationOrchestrator
from .reporting import (
    feature_status_to_dict,
    render_feature_status,
    render_report,
    render_result,
    report_to_dict,
    report_to_json,
    result_to_json,
)
from .system_map import SystemMapLoader

console = Console()

EXIT_PASSED = 0
EXIT_FAILED = 1
EXIT_USAGE = 2

app = typer.Typer(
    help="🗺️  System Map Auditor: check a TypeScript codebase against its architecture maps.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


@dataclass
class CliState:
    root: Path
    config_path: Optional[Path] = None

    def config(self) -> AuditConfig:
        try:
            return load_config(self.config_path, cwd=self.root)
        except ConfigError as e:
            console.print(f"[red]✗[/red] {escape(str(e))}")
            raise typer.Exit(EXIT_USAGE)

    def context(self) -> AuditContext:
        return AuditContext.create(self.root, self.config())


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"System Map Auditor v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    root: Path = typer.Option(Path("."), "--root", "-r", file_okay=False, help="Project root to audit."),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="TOML configuration file."),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
):
    """Audit architecture documents against the code they describe."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    if not root.is_dir():
        console.print(f"[red]✗[/red] Project root not found: {root}")
        raise typer.Exit(EXIT_USAGE)
    ctx.obj = CliState(root=root.resolve(), config_path=config_path)


def _state(ctx: typer.Context) -> CliState:
    return ctx.obj


@app.command("audit")
def audit(
    ctx: typer.Context,
    maps: Optional[List[Path]] = typer.Argument(None, help="System map files. Discovered when omitted."),
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON."),
    no_timing: bool = typer.Option(False, "--no-timing", help="Leave execution times out of JSON output."),
):
    """Run every enabled check over the given (or discovered) system maps."""
    state = _state(ctx)
    orchestrator = ValidationOrchestrator(state.context())
    if not maps and not orchestrator.loader.discover():
        console.print(f"[yellow]⚠[/yellow] No system maps found under {state.root}")
        raise typer.Exit(EXIT_USAGE)

    report = orchestrator.run(maps or None)
    if as_json:
        typer.echo(report_to_json(report, include_timing=not no_timing))
    else:
        render_report(console, report)
    raise typer.Exit(EXIT_PASSED if report.passed else EXIT_FAILED)


@app.command("scan")
def scan(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Print the index as JSON."),
):
    """Index the project and list discovered files and endpoints."""
    state = _state(ctx)
    context = state.context()
    indexer = CodebaseIndexer(context.project_root, context.config.scanning, context.extractor)
    codebase = indexer.build()

    if as_json:
        payload = {
            "components": {
                path: {"exports": list(info.exports), "type": info.type}
                for path, info in codebase.components.items()
            },
            "apis": {
                key: {"handlerFile": info.handler_file, "handlerFunction": info.handler_function}
                for key, info in codebase.apis.items()
            },
            "skipped": [path for path, _ in indexer.skipped],
        }
        typer.echo(json.dumps(payload, indent=2))
        return

    table = Table(title=f"Endpoints in {context.project_root.name}", show_header=True)
    table.add_column("Endpoint", style="cyan")
    table.add_column("Handler")
    for key, info in codebase.apis.items():
        table.add_row(key, info.handler_file)
    console.print(table)
    console.print(
        f"Indexed [bold]{len(codebase.components)}[/bold] files and "
        f"[bold]{len(codebase.apis)}[/bold] endpoints using the {context.extractor.name} extractor."
    )
    for path, reason in indexer.skipped:
        console.print(f"[yellow]⚠[/yellow] skipped {escape(path)}: {escape(str(reason))}")


@app.command("parse")
def parse(
    ctx: typer.Context,
    map_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="System map file."),
    as_json: bool = typer.Option(False, "--json", help="Print the normalized summary as JSON."),
):
    """Load one system map and report its shape and contents."""
    state = _state(ctx)
    try:
        system_map = SystemMapLoader(state.root).load(map_path)
    except SystemMapError as e:
        console.print(f"[red]✗[/red] {escape(str(e))}")
        raise typer.Exit(EXIT_USAGE)

    summary = {
        "name": system_map.name,
        "shape": system_map.shape,
        "components": system_map.component_names(),
        "apis": [api.key for api in system_map.apis],
        "flows": [flow.name for flow in system_map.all_flows()],
        "features": sorted(system_map.features),
    }
    if as_json:
        typer.echo(json.dumps(summary, indent=2))
        return
    console.print(f"[green]✓[/green] {system_map.name} ({system_map.shape})")
    for key in ("components", "apis", "flows", "features"):
        console.print(f"  {key}: {len(summary[key])}")


@app.command("show-config")
def show_config(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Print as JSON instead of TOML."),
):
    """Print the effective configuration."""
    config = _state(ctx).config()
    if as_json:
        typer.echo(json.dumps(config.to_dict(), indent=2))
    else:
        typer.echo(toml.dumps(config.to_dict()))


@app.command("init-config")
def init_config(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing file."),
):
    """Write the default configuration to the project root."""
    path = _state(ctx).root / LOCAL_CONFIG_NAME
    if path.exists() and not force:
        console.print(f"[yellow]⚠[/yellow] {path} already exists (use --force to overwrite)")
        raise typer.Exit(EXIT_USAGE)
    save_config(AuditConfig(), path)
    console.print(f"[green]✓[/green] Wrote {path}")


@app.command("detect-circular")
def detect_circular(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Print cycles as JSON."),
):
    """Find circular imports between project files. Exits 1 when any exist."""
    context = _state(ctx).context()
    codebase = index_project(context.project_root, context.config.scanning, context.extractor)
    analyzer = DependencyAnalyzer(codebase, context)
    cycles = analyzer.find_cycles()

    if as_json:
        typer.echo(json.dumps({"cycles": cycles}, indent=2))
    elif cycles:
        render_result(console, "Circular dependencies", analyzer.validate())
    else:
        console.print("[green]✓[/green] No circular dependencies")
    raise typer.Exit(EXIT_FAILED if cycles else EXIT_PASSED)


@app.command("analyze-critical-paths")
def analyze_critical_paths(
    ctx: typer.Context,
    max_length: Optional[int] = typer.Option(
        None, "--max-length", min=1, help="Longest acceptable import chain. Defaults to the configured value."
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the paths as JSON."),
):
    """Report the longest import chain. Exits 1 when it is longer than the limit."""
    context = _state(ctx).context()
    codebase = index_project(context.project_root, context.config.scanning, context.extractor)
    analyzer = DependencyAnalyzer(codebase, context)
    limit = context.config.dependencies.critical_path_length if max_length is None else max_length
    critical = analyzer.critical_path()
    long_paths = analyzer.critical_paths(limit)

    if as_json:
        typer.echo(json.dumps({"criticalPath": critical, "maxLength": limit, "longPaths": long_paths}, indent=2))
    elif long_paths:
        console.print(f"[yellow]⚠[/yellow] Critical path has {len(critical)} files (limit {limit}):")
        for file_path in critical:
            console.print(f"  {escape(file_path)}")
    else:
        console.print(f"[green]✓[/green] Longest import chain has {len(critical)} files (limit {limit})")
    raise typer.Exit(EXIT_FAILED if long_paths else EXIT_PASSED)


@app.command("suggest-optimizations")
def suggest_optimizations(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Print the suggestions as JSON."),
):
    """Suggest cycle breaks, lazy loading and code splitting for the import graph."""
    context = _state(ctx).context()
    codebase = index_project(context.project_root, context.config.scanning, context.extractor)
    suggestions = DependencyAnalyzer(codebase, context).suggest_optimizations()

    if as_json:
        typer.echo(json.dumps({"suggestions": [s.to_dict() for s in suggestions]}, indent=2))
        return
    if not suggestions:
        console.print("[green]✓[/green] No optimizations to suggest")
        return
    table = Table(title="Dependency optimizations", show_header=True)
    table.add_column("Type", style="cyan")
    table.add_column("Target")
    table.add_column("Impact")
    table.add_column("Effort")
    for suggestion in suggestions:
        table.add_row(suggestion.type, escape(suggestion.target), suggestion.impact, suggestion.effort)
    console.print(table)


@app.command("feature")
def feature(
    ctx: typer.Context,
    map_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="System map file."),
    name: str = typer.Argument(..., help="Feature to audit."),
    as_json: bool = typer.Option(False, "--json", help="Print the results as JSON."),
):
    """Audit one feature and score its integration."""
    state = _state(ctx)
    orchestrator = ValidationOrchestrator(state.context())
    try:
        system_map = orchestrator.loader.load(map_path)
        system_map.restrict_to_feature(name)
    except SystemMapError as e:
        console.print(f"[red]✗[/red] {escape(str(e))}")
        raise typer.Exit(EXIT_USAGE)

    report = orchestrator.audit_feature(system_map, name)
    status = orchestrator.feature_status(system_map, name if name in system_map.features else None)
    if as_json:
        payload = {"report": report_to_dict(report), "integration": feature_status_to_dict(status)}
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))
    else:
        render_report(console, report)
        render_feature_status(console, status)
    raise typer.Exit(EXIT_PASSED if report.passed else EXIT_FAILED)


@app.command("check")
def check(
    ctx: typer.Context,
    map_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="System map file."),
    only: str = typer.Option(
        ..., "--only", help="One of: components, apis, flows, cache, ui-refresh, evidence."
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON."),
):
    """Run a single validator over one system map."""
    orchestrator = ValidationOrchestrator(_state(ctx).context())
    try:
        system_map = orchestrator.loader.load(map_path)
    except SystemMapError as e:
        console.print(f"[red]✗[/red] {escape(str(e))}")
        raise typer.Exit(EXIT_USAGE)

    runners = {
        "components": lambda: orchestrator.validate_components(system_map),
        "apis": lambda: orchestrator.validate_apis(system_map),
        "flows": lambda: orchestrator.validate_flows(system_map),
        "cache": lambda: orchestrator.validate_cache(system_map),
        "ui-refresh": orchestrator.validate_ui_refresh,
        "evidence": lambda: orchestrator.validate_evidence(system_map),
    }
    if only not in runners:
        console.print(f"[red]✗[/red] Unknown check '{only}'. Choose from: {', '.join(runners)}")
        raise typer.Exit(EXIT_USAGE)

    result = runners[only]()
    if as_json:
        typer.echo(result_to_json(result))
    else:
        render_result(console, f"{only} ({system_map.name})", result)
    raise typer.Exit(EXIT_PASSED if result.passed else EXIT_FAILED)


if __name__ == "__main__":
    app()
