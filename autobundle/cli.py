"""Typer-based CLI for autobundle."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Tuple

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .bundler import BuildReport
from .cli_watch import watch
from .config import CHUNK_PATTERN
from .errors import AutobundleError
from .pipeline import AutoBundle, HostRegistry, ProjectHost
from .settings import Settings, load_settings
from .tree import FileTree

console = Console()

app = typer.Typer(
    help="📦 autobundle: bundle third-party imports straight from application source.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.command("watch")(watch)

_hosts = HostRegistry()


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"autobundle v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Log debug output."),
):
    """autobundle: analyze, split and bundle external imports."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def open_project(
    root: Path,
    env: Optional[str] = None,
    settings_file: Optional[Path] = None,
    no_cache: bool = False,
) -> Tuple[ProjectHost, AutoBundle, Settings]:
    """Load settings, create the host and attach analyzers."""
    settings = load_settings(root, settings_file)
    if no_cache:
        settings.cache = False
    host = ProjectHost(root, env or settings.environment or "development")
    auto = _hosts.lookup(host, settings)
    auto.included(host)
    auto.analyze_project()
    return host, auto, settings


def _fail(exc: AutobundleError) -> None:
    console.print(f"[red]✗[/red] {exc}")
    raise typer.Exit(code=1)


def _print_report(report: BuildReport) -> None:
    table = Table(title="Bundles", show_header=True)
    table.add_column("Bundle", style="cyan")
    table.add_column("Eager", justify="right")
    table.add_column("Lazy chunks", justify="right")
    table.add_column("Status")
    for name, artifact in report.artifacts.items():
        status = "[dim]cached[/dim]" if name in report.cached else "[green]built[/green]"
        table.add_row(name, str(len(artifact.eager_specifiers)), str(len(artifact.lazy_chunks)), status)
    for unit in report.errors:
        table.add_row(unit, "-", "-", "[red]failed[/red]")
    console.print(table)
    for unit, error in report.errors.items():
        console.print(f"[red]✗[/red] {unit}: {error}")


ROOT_ARG = typer.Argument(Path("."), exists=True, file_okay=False, help="Application root.")
ENV_OPT = typer.Option(None, "--env", "-e", help="Build environment (overrides settings).")
SETTINGS_OPT = typer.Option(None, "--config", "-c", help="Settings file (default: autobundle.toml).")


@app.command("build")
def build(
    root: Path = ROOT_ARG,
    env: Optional[str] = ENV_OPT,
    settings_file: Optional[Path] = SETTINGS_OPT,
    input_dir: Optional[Path] = typer.Option(
        None, "--input", "-i", help="Host build output to merge into (default: <root>/public)."
    ),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output directory."),
    no_cache: bool = typer.Option(False, "--no-cache", help="Ignore the on-disk artifact cache."),
):
    """Run one build pass and write the merged output tree."""
    root = root.resolve()
    try:
        host, auto, settings = open_project(root, env, settings_file, no_cache)
    except AutobundleError as exc:
        _fail(exc)
        return
    try:
        source = input_dir or root / "public"
        app_tree = FileTree.from_directory(source) if source.is_dir() else FileTree()
        merged = host.postprocess("all", app_tree)
    except AutobundleError as exc:
        _fail(exc)
        return
    finally:
        auto.close()

    report = auto.last_report or BuildReport()
    out_dir = output or root / settings.output
    for stale in out_dir.glob(CHUNK_PATTERN):
        stale.unlink()
    written = merged.write_to(out_dir)
    _print_report(report)
    console.print(f"Wrote {written} files to {out_dir}")
    if not report.ok:
        raise typer.Exit(code=1)


@app.command("imports")
def imports(
    root: Path = ROOT_ARG,
    env: Optional[str] = ENV_OPT,
    settings_file: Optional[Path] = SETTINGS_OPT,
):
    """List every external import found in the application and its addons."""
    try:
        _, auto, _ = open_project(root.resolve(), env, settings_file)
        records, errors = auto.collect_records()
    except AutobundleError as exc:
        _fail(exc)
        return

    if not records and not errors:
        typer.echo("No external imports found.")
        raise typer.Exit(code=0)

    table = Table(title="External imports", show_header=True)
    table.add_column("Specifier", style="cyan")
    table.add_column("Package")
    table.add_column("File")
    table.add_column("Style")
    for record in records:
        table.add_row(
            record.specifier, record.package.name,
            f"{record.consuming_path}:{record.line}", record.style,
        )
    console.print(table)
    for unit, error in errors.items():
        console.print(f"[red]✗[/red] {unit}: {error}")
    if errors:
        raise typer.Exit(code=1)


@app.command("split")
def split(
    root: Path = ROOT_ARG,
    env: Optional[str] = ENV_OPT,
    settings_file: Optional[Path] = SETTINGS_OPT,
):
    """Show which bundle carries each dependency, and in which mode."""
    try:
        _, auto, _ = open_project(root.resolve(), env, settings_file)
        splitter, _ = auto.make_bundler()
        records, errors = auto.collect_records()
        assignments = splitter.compute_assignments(records)
    except AutobundleError as exc:
        _fail(exc)
        return

    table = Table(title="Assignments", show_header=True)
    table.add_column("Specifier", style="cyan")
    table.add_column("Package")
    table.add_column("Version")
    table.add_column("Bundles")
    table.add_column("Shared via")
    failed = False
    for assignment in assignments.values():
        version = assignment.resolved.version if assignment.resolved else "[red]unresolved[/red]"
        bundles = ", ".join(f"{name} ({mode})" for name, mode in assignment.modes)
        shared = ", ".join(f"{user} → {carrier}" for user, carrier in assignment.shared)
        table.add_row(assignment.specifier, assignment.package.name, version, bundles, shared)
        failed = failed or not assignment.ok
    console.print(table)
    for assignment in assignments.values():
        if assignment.error is not None:
            console.print(f"[red]✗[/red] {assignment.error}")
    for unit, error in errors.items():
        console.print(f"[red]✗[/red] {unit}: {error}")
    if failed or errors:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
