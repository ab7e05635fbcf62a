"""Watch mode: rebuild when application sources change."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Callable, Optional, Set

import typer
from rich.console import Console
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .config import CHUNK_PATTERN, SKIP_DIRS, SOURCE_EXTENSIONS

console = Console()

WATCHED_FILES = {"package.json", "autobundle.toml"}


class SourceChangeHandler:
    """Collect changed source files and trigger a rebuild after a quiet period."""

    def __init__(
        self,
        rebuild_callback: Callable[[Set[Path]], None],
        debounce_seconds: float = 1.0,
        root: Optional[Path] = None,
        ignore: Optional[Path] = None,
    ):
        self.rebuild_callback = rebuild_callback
        self.root = root
        self.ignore = ignore
        self.debounce_seconds = debounce_seconds
        self.last_change = 0.0
        self._pending: Set[Path] = set()

    def dispatch(self, event) -> None:
        if event.is_directory:
            return
        for attr in ("src_path", "dest_path"):
            path = getattr(event, attr, None)
            if path:
                self.record(Path(path))

    def record(self, file_path: Path) -> None:
        if file_path.suffix not in SOURCE_EXTENSIONS and file_path.name not in WATCHED_FILES:
            return
        if self.ignore is not None and file_path.is_relative_to(self.ignore):
            return
        parts = file_path.parts
        if self.root is not None and file_path.is_relative_to(self.root):
            parts = file_path.relative_to(self.root).parts
        if any(part in SKIP_DIRS or part.startswith(".") for part in parts[:-1]):
            return
        self._pending.add(file_path)
        self.last_change = time.monotonic()

    def flush(self, now: Optional[float] = None) -> bool:
        """Run the callback if changes are pending and the debounce elapsed."""
        now = time.monotonic() if now is None else now
        if not self._pending or now - self.last_change < self.debounce_seconds:
            return False
        files = set(self._pending)
        self._pending.clear()
        self.rebuild_callback(files)
        return True


def watch(
    root: Path = typer.Argument(Path("."), exists=True, file_okay=False, help="Application root."),
    env: Optional[str] = typer.Option(None, "--env", "-e", help="Build environment."),
    interval: float = typer.Option(1.0, "--interval", "-i", help="Debounce interval in seconds."),
):
    """👀 Rebuild on source changes.

    Unchanged files are not reparsed and unchanged bundles come from the
    artifact cache, so a rebuild only pays for what changed.

    Example:
      autobundle watch
      autobundle watch ./my-app --interval 2
    """
    from .cli import _print_report, open_project
    from .errors import AutobundleError
    from .tree import FileTree

    root = root.resolve()
    try:
        host, auto, settings = open_project(root, env)
    except AutobundleError as exc:
        console.print(f"[red]✗[/red] {exc}")
        raise typer.Exit(1)

    out_dir = root / settings.output
    rebuilds = 0

    def rebuild(changed: Set[Path]) -> None:
        nonlocal rebuilds
        if any(p.name in WATCHED_FILES for p in changed):
            for package in auto.registry:
                package.forget_resolutions()
        auto.refresh()
        source = root / "public"
        app_tree = FileTree.from_directory(source) if source.is_dir() else FileTree()
        try:
            merged = host.postprocess("all", app_tree)
        except AutobundleError as exc:
            console.print(f"  [red]✗[/red] {exc}")
            return
        for stale in out_dir.glob(CHUNK_PATTERN):
            stale.unlink()
        merged.write_to(out_dir)
        rebuilds += 1
        names = ", ".join(sorted(p.name for p in changed)) or "startup"
        console.print(f"  [green]✓[/green] Rebuilt ({names})")
        if auto.last_report is not None:
            _print_report(auto.last_report)

    console.print(f"\n[bold green]👀 Watching[/bold green] [cyan]{root}[/cyan] for changes...")
    console.print(f"[dim]  Debounce:  {interval}s")
    console.print(f"  Output:    {out_dir}")
    console.print("  Press Ctrl+C to stop[/dim]\n")

    rebuild(set())
    handler = SourceChangeHandler(rebuild, debounce_seconds=interval, root=root, ignore=out_dir)

    class WatchdogAdapter(FileSystemEventHandler):
        def on_modified(self, event):
            handler.dispatch(event)

        def on_created(self, event):
            handler.dispatch(event)

        def on_moved(self, event):
            handler.dispatch(event)

        def on_deleted(self, event):
            handler.dispatch(event)

    observer = Observer()
    observer.schedule(WatchdogAdapter(), str(root), recursive=True)
    observer.start()

    try:
        while True:
            time.sleep(0.25)
            handler.flush()
    except KeyboardInterrupt:
        observer.stop()
        console.print(f"\n[yellow]Stopped watching.[/yellow] Rebuilt {rebuilds} time(s).")

    observer.join()
    auto.close()
