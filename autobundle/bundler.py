"""Turn assignments into per-bundle artifacts.

For every bundle the bundler collects the dependencies it carries, reads
their resolved entry files, asks the transformer to compile them and then
splits the result into:

- one eager payload, appended to the bundle's entrypoint
- lazy chunks, one file per lazily used specifier (``assets/chunk.<id>.js``)

Artifacts are cached by a hash of everything that went into them.  A bundle
that fails is reported in :attr:`BuildReport.errors` and has no artifact;
the remaining bundles build regardless.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from hashlib import blake2b
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Set, Tuple

from .bundle_config import Bundle, BundleConfig
from .cache import ArtifactCache
from .config import ENTRYPOINT_DIR, LOADER_FILE
from .errors import AutobundleError, BuildFailed, BundleCompilationError, TransformError
from .loader import chunk_registration, loader_shim
from .models import EAGER, LAZY, Assignment, BuildArtifact, ImportStyle, ResolvedDependency
from .splitter import AssignmentKey, by_bundle
from .transform import ModuleInput, TransformRequest, Transformer, WrappingTransformer
from .tree import FileTree

logger = logging.getLogger(__name__)


@dataclass
class BuildReport:
    artifacts: Dict[str, BuildArtifact] = field(default_factory=dict)
    errors: Dict[str, AutobundleError] = field(default_factory=dict)
    loader: str = ""
    cached: Set[str] = field(default_factory=set)

    @property
    def ok(self) -> bool:
        return not self.errors

    def raise_for_errors(self) -> None:
        if self.errors:
            raise BuildFailed(self.errors)


class Bundler:
    def __init__(
        self,
        bundles: BundleConfig,
        transformer: Optional[Transformer] = None,
        cache: Optional[ArtifactCache] = None,
        environment: str = "development",
        public_asset_url: str = "/",
    ) -> None:
        self.bundles = bundles
        self.transformer = transformer or WrappingTransformer()
        self.cache = cache or ArtifactCache()
        self.environment = environment
        self.public_asset_url = public_asset_url if public_asset_url.endswith("/") else public_asset_url + "/"
        self._fingerprints: Dict[Path, str] = {}

    def build(self, assignments: Mapping[AssignmentKey, Assignment]) -> BuildReport:
        report = BuildReport(loader=loader_shim())
        # installed files may have changed since the previous pass
        self._fingerprints.clear()
        for bundle in self.bundles:
            try:
                artifact, hit = self._build_bundle(bundle, by_bundle(assignments, bundle.name))
            except AutobundleError as exc:
                logger.error("Bundle %s failed: %s", bundle.name, exc)
                report.errors[bundle.name] = exc
                continue
            report.artifacts[bundle.name] = artifact
            if hit:
                report.cached.add(bundle.name)
        logger.info(
            "Built %d bundles (%d from cache, %d failed)",
            len(report.artifacts), len(report.cached), len(report.errors),
        )
        return report

    def close(self) -> None:
        self.cache.close()

    # ------------------------------------------------------------------
    # One bundle
    # ------------------------------------------------------------------

    def fingerprint(self, bundle: Bundle, resolved: ResolvedDependency) -> str:
        """Digest of the installed files a transformer reads for *resolved*.

        The entry file alone, or the whole installed package when the
        transformer follows imports.
        """
        whole = self.transformer.follows_imports
        target = resolved.root if whole else resolved.entry
        digest = self._fingerprints.get(target)
        if digest is None:
            try:
                if whole:
                    digest = FileTree.from_directory(target, skip_dirs={".git"}).digest()
                else:
                    digest = blake2b(target.read_bytes(), digest_size=16).hexdigest()
            except OSError as exc:
                raise BundleCompilationError(bundle.name, f"cannot read {target}: {exc}") from exc
            self._fingerprints[target] = digest
        return digest

    def _collect(
        self, bundle: Bundle, carried: List[Assignment],
    ) -> List[Tuple[Assignment, ImportStyle]]:
        """Deduplicate carried assignments by specifier, merging modes."""
        failures = [a.error for a in carried if not a.ok]
        if failures:
            for extra in failures[1:]:
                logger.error("Bundle %s: %s", bundle.name, extra)
            raise failures[0]

        chosen: Dict[str, Tuple[Assignment, ImportStyle]] = {}
        for assignment in carried:
            resolved = self._resolved(bundle, assignment)
            mode = assignment.mode_for(bundle.name) or EAGER
            previous = chosen.get(assignment.specifier)
            if previous is None:
                chosen[assignment.specifier] = (assignment, mode)
                continue
            first, _ = previous
            kept = self._resolved(bundle, first)
            if kept.identity != resolved.identity:
                raise BundleCompilationError(
                    bundle.name,
                    f"'{assignment.specifier}' resolves to "
                    f"{kept.package_name}@{kept.version} for {first.package.name} "
                    f"but to {resolved.package_name}@{resolved.version} "
                    f"for {assignment.package.name}",
                )
            if self.fingerprint(bundle, kept) != self.fingerprint(bundle, resolved):
                raise BundleCompilationError(
                    bundle.name,
                    f"'{assignment.specifier}' resolves to two different installs of "
                    f"{kept.package_name}@{kept.version}: {kept.root} for {first.package.name} "
                    f"and {resolved.root} for {assignment.package.name}",
                )
            if mode == EAGER:
                chosen[assignment.specifier] = (first, EAGER)
        return [chosen[spec] for spec in sorted(chosen)]

    @staticmethod
    def _resolved(bundle: Bundle, assignment: Assignment) -> ResolvedDependency:
        if assignment.resolved is None:
            raise BundleCompilationError(
                bundle.name,
                f"'{assignment.specifier}' was never resolved for {assignment.package.name}",
            )
        return assignment.resolved

    def _read(
        self, bundle: Bundle, modules: List[Tuple[Assignment, ImportStyle]],
    ) -> List[Tuple[ModuleInput, ImportStyle]]:
        inputs = []
        for assignment, mode in modules:
            resolved = self._resolved(bundle, assignment)
            try:
                source = resolved.entry.read_bytes()
            except OSError as exc:
                raise BundleCompilationError(
                    bundle.name, f"cannot read {resolved.entry}: {exc}",
                ) from exc
            module = ModuleInput(
                assignment.specifier, resolved, source, self.fingerprint(bundle, resolved),
            )
            inputs.append((module, mode))
        return inputs

    def artifact_key(self, bundle: str, inputs: List[Tuple[ModuleInput, ImportStyle]]) -> str:
        h = blake2b(digest_size=20)
        for part in (bundle, self.environment, self.transformer.identity(), self.public_asset_url):
            h.update(part.encode("utf-8"))
            h.update(b"\0")
        for module, mode in sorted(inputs, key=lambda item: item[0].specifier):
            digest = module.digest or blake2b(module.source, digest_size=16).hexdigest()
            for part in (
                module.specifier, mode, module.resolved.package_name, module.resolved.version, digest,
            ):
                h.update(part.encode("utf-8"))
                h.update(b"\0")
        return h.hexdigest()

    def _build_bundle(self, bundle: Bundle, carried: List[Assignment]) -> Tuple[BuildArtifact, bool]:
        inputs = self._read(bundle, self._collect(bundle, carried))
        key = self.artifact_key(bundle.name, inputs)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Bundle %s unchanged (%s)", bundle.name, key[:12])
            return cached, True

        request = TransformRequest(
            bundle=bundle.name,
            environment=self.environment,
            eager=[m for m, mode in inputs if mode == EAGER],
            lazy=[m for m, mode in inputs if mode == LAZY],
        )
        try:
            output = self.transformer.transform(request)
        except TransformError as exc:
            raise BundleCompilationError(bundle.name, exc.diagnostic) from exc

        eager_parts: List[str] = []
        for module in request.eager:
            code = output.eager.get(module.specifier)
            if code is None:
                raise BundleCompilationError(bundle.name, f"no output for '{module.specifier}'")
            eager_parts.append(code)

        lazy_chunks: Dict[str, str] = {}
        chunk_map: Dict[str, str] = {}
        for module in request.lazy:
            code = output.lazy.get(module.specifier)
            if code is None:
                raise BundleCompilationError(bundle.name, f"no output for '{module.specifier}'")
            chunk_id = self.chunk_id(module, code)
            lazy_chunks[chunk_id] = code
            chunk_map[module.specifier] = chunk_id
        if chunk_map:
            eager_parts.append(chunk_registration({
                spec: self.public_asset_url + BuildArtifact.chunk_path(chunk_id)
                for spec, chunk_id in chunk_map.items()
            }))

        artifact = BuildArtifact(
            bundle_name=bundle.name,
            key=key,
            eager_payload="".join(eager_parts),
            lazy_chunks=lazy_chunks,
            chunk_map=chunk_map,
            eager_specifiers=tuple(m.specifier for m in request.eager),
        )
        self.cache.put(artifact)
        pruned = self.cache.prune(bundle.name, key)
        if pruned:
            logger.debug("Bundle %s: dropped %d superseded artifacts", bundle.name, pruned)
        logger.debug(
            "Bundle %s: %d eager, %d lazy chunks (%s)",
            bundle.name, len(request.eager), len(lazy_chunks), key[:12],
        )
        return artifact, False

    @staticmethod
    def chunk_id(module: ModuleInput, code: str) -> str:
        h = blake2b(digest_size=10)
        for part in (module.specifier, module.resolved.version, code):
            h.update(part.encode("utf-8"))
            h.update(b"\0")
        return h.hexdigest()

    # ------------------------------------------------------------------
    # Output tree
    # ------------------------------------------------------------------

    @staticmethod
    def output_tree(report: BuildReport) -> FileTree:
        """Emitted files: loader, one eager payload per bundle, lazy chunks."""
        files: Dict[str, str] = {LOADER_FILE: report.loader}
        for name, artifact in report.artifacts.items():
            files[f"{ENTRYPOINT_DIR}/{name}/autobundle.js"] = artifact.eager_payload
            for chunk_id, code in artifact.lazy_chunks.items():
                files[BuildArtifact.chunk_path(chunk_id)] = code
        return FileTree(files)
