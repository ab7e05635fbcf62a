"""Wiring between a host build and the analyzer → splitter → bundler core.

The host hands over source trees per package and an extension point for
post-processing the final application tree.  :class:`AutoBundle` owns one
build's packages and analyzers, runs the passes and merges the emitted files
back into the host's tree.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from .analyzer import Analyzer
from .bundle_config import BundleConfig, glob_match
from .bundler import Bundler, BuildReport
from .cache import ArtifactCache
from .config import CHUNK_DIR, CHUNK_PATTERN, ENTRYPOINT_DIR, LOADER_FILE, SOURCE_EXTENSIONS
from .errors import AutobundleError, ConfigurationError, ParseError
from .models import ImportRecord
from .package import Package, PackageHandle, PackageRegistry
from .settings import Settings
from .splitter import Splitter
from .tree import FileTree

logger = logging.getLogger(__name__)

TreeHook = Callable[[FileTree], FileTree]


# ===================================================================
# Host side
# ===================================================================

class ProjectHost:
    """A host build for a project on disk.

    Post-processing stages are registered explicitly and run in registration
    order by :meth:`postprocess`.
    """

    def __init__(
        self,
        root: Path,
        env: str,
        options: Optional[Dict[str, Any]] = None,
        write: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.root = root.resolve()
        self.env = env
        self.options: Dict[str, Any] = options if options is not None else {}
        self.write = write or (lambda message: logger.info("%s", message))
        self._stages: Dict[str, List[TreeHook]] = {}

    def register_postprocess(self, stage: str, hook: TreeHook) -> None:
        self._stages.setdefault(stage, []).append(hook)

    def postprocess(self, stage: str, tree: FileTree) -> FileTree:
        for hook in self._stages.get(stage, []):
            tree = hook(tree)
        return tree

    def source_tree(self, package_root: Path) -> FileTree:
        """Source files of one package, paths relative to the host root."""
        return FileTree.from_directory(
            package_root.resolve(), base=self.root, extensions=SOURCE_EXTENSIONS,
        )


class HostRegistry:
    """One :class:`AutoBundle` per host, keyed by host identity."""

    def __init__(self) -> None:
        self._instances: Dict[int, Tuple[Any, "AutoBundle"]] = {}

    def lookup(self, host: Any, settings: Optional[Settings] = None) -> "AutoBundle":
        entry = self._instances.get(id(host))
        if entry is not None and entry[0] is host:
            return entry[1]
        instance = AutoBundle(host, settings)
        self._instances[id(host)] = (host, instance)
        return instance

    def __len__(self) -> int:
        return len(self._instances)


# ===================================================================
# AutoBundle
# ===================================================================

class AutoBundle:
    def __init__(self, host: Any, settings: Optional[Settings] = None) -> None:
        self.host = host
        self.settings = settings or Settings()
        self.env: str = getattr(host, "env", "") or self.settings.environment
        if not self.env:
            raise ConfigurationError("did not discover environment")
        self.bundles: BundleConfig = self.settings.bundle_config()
        self.registry = PackageRegistry()
        self.analyzers: Dict[Analyzer, Package] = {}
        self.primary: Optional[Package] = None
        self._bundler: Optional[Bundler] = None
        self._splitter: Optional[Splitter] = None
        self.last_report: Optional[BuildReport] = None

    # -- packages ------------------------------------------------------

    def is_primary(self, handle: PackageHandle) -> bool:
        return self.primary is not None and handle in self.registry and (
            self.registry.lookup(handle) is self.primary
        )

    def analyze(self, tree: FileTree, handle: PackageHandle) -> Analyzer:
        package = self.registry.lookup(handle)
        if self.primary is None:
            self.primary = package
        analyzer = Analyzer(tree, package)
        package.analyzers.append(analyzer)
        self.analyzers[analyzer] = package
        logger.debug("Analyzer #%d attached to %s", len(self.analyzers), package.name)
        return analyzer

    def analyze_project(self) -> None:
        """Attach analyzers for the host root and every configured addon."""
        root = Path(self.host.root)
        addon_roots = [(root / addon).resolve() for addon in self.settings.addons]
        self.analyze(self._own_tree(root, addon_roots), root)
        for addon_root in addon_roots:
            self.analyze(self.host.source_tree(addon_root), addon_root)

    def _own_tree(self, root: Path, nested: List[Path]) -> FileTree:
        """Sources of *root* minus nested package directories and the output."""
        root = root.resolve()
        skip = [
            p.relative_to(root).as_posix() + "/"
            for p in nested
            if p.is_relative_to(root)
        ]
        skip.append(self.settings.output.strip("/") + "/")
        tree = self.host.source_tree(root)
        return FileTree({path: tree[path] for path in tree if not path.startswith(tuple(skip))})

    def refresh(self) -> None:
        """Re-read every analyzer's tree from disk (watch mode)."""
        root = Path(self.host.root)
        nested = [p.root for p in self.registry if p is not self.primary]
        for analyzer, package in self.analyzers.items():
            if package is self.primary:
                analyzer.update(self._own_tree(root, nested))
            else:
                analyzer.update(self.host.source_tree(package.root))

    # -- passes --------------------------------------------------------

    def make_bundler(self) -> Tuple[Splitter, Bundler]:
        if self._bundler is None or self._splitter is None:
            root = Path(getattr(self.host, "root", "."))
            self._splitter = Splitter(self.bundles)
            self._bundler = Bundler(
                self.bundles,
                transformer=self.settings.transformer.build(),
                cache=ArtifactCache(self.settings.resolved_cache_dir(root)),
                environment=self.env,
                public_asset_url=self.settings.public_asset_url,
            )
        return self._splitter, self._bundler

    def collect_records(self) -> Tuple[List[ImportRecord], Dict[str, AutobundleError]]:
        """Scan every analyzer; a package with a parse error contributes nothing."""
        records: Dict[Package, List[ImportRecord]] = {}
        errors: Dict[str, AutobundleError] = {}
        for analyzer, package in self.analyzers.items():
            unit = f"package:{package.name}"
            if unit in errors:
                continue
            try:
                records.setdefault(package, []).extend(analyzer.scan())
            except ParseError as exc:
                logger.error("%s", exc)
                errors[unit] = exc
                records.pop(package, None)
        complete = [
            r for package, recs in records.items()
            if f"package:{package.name}" not in errors
            for r in recs
        ]
        return complete, errors

    def build(self) -> BuildReport:
        splitter, bundler = self.make_bundler()
        records, errors = self.collect_records()
        assignments = splitter.compute_assignments(records)
        report = bundler.build(assignments)
        report.errors.update(errors)
        return report

    def add_to(self, app_tree: FileTree) -> Tuple[FileTree, BuildReport]:
        """Merge emitted files into *app_tree*.

        Every bundle entrypoint becomes: original entrypoint, loader shim,
        eager payload.  Lazy chunks are added under ``assets/``.
        """
        owned = [path for path in app_tree if glob_match(CHUNK_PATTERN, path)]
        if owned:
            raise ConfigurationError(
                f"application output {owned[0]} uses the reserved chunk name pattern {CHUNK_PATTERN}"
            )
        report = self.build()
        emitted = Bundler.output_tree(report)

        combined: Dict[str, bytes] = {}
        for bundle in self.bundles:
            if bundle.name not in report.artifacts:
                continue
            target = bundle.entrypoint
            parts = [app_tree[target]] if target in app_tree else []
            parts.append(emitted[LOADER_FILE])
            parts.append(emitted[f"{ENTRYPOINT_DIR}/{bundle.name}/autobundle.js"])
            combined[target] = b"\n".join(parts)

        chunks = emitted.filter([f"{CHUNK_DIR}/*"])
        return app_tree.merge(chunks, FileTree(combined), overwrite=True), report

    # -- host lifecycle ------------------------------------------------

    def included(self, host: Any) -> None:
        self.configure_fingerprints(host)
        host.register_postprocess("all", self._postprocess_all)

    def _postprocess_all(self, tree: FileTree) -> FileTree:
        merged, report = self.add_to(tree)
        self.last_report = report
        write = getattr(self.host, "write", None)
        if write is not None:
            for unit, error in report.errors.items():
                write(f"autobundle: {unit}: {error}")
        return merged

    def close(self) -> None:
        """Release the artifact cache; the next pass reopens it."""
        if self._bundler is not None:
            self._bundler.close()
        self._bundler = None
        self._splitter = None

    @staticmethod
    def configure_fingerprints(host: Any) -> None:
        # Chunk names are already content hashed and the loader refers to
        # them by name, so the host must not rename them.
        fingerprint = host.options.setdefault("fingerprint", {})
        exclude = fingerprint.setdefault("exclude", [])
        if CHUNK_PATTERN not in exclude:
            exclude.append(CHUNK_PATTERN)
