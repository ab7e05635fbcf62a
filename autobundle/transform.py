"""Interface to the tool that turns resolved dependencies into loadable code.

The bundler never transforms code itself.  It hands a
:class:`TransformRequest` to a :class:`Transformer` and receives compiled
module bodies back, one per specifier.
"""

from __future__ import annotations

import json
import logging
import subprocess
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .config import LOADER_PROTOCOL
from .errors import TransformError
from .models import ResolvedDependency

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModuleInput:
    specifier: str
    resolved: ResolvedDependency
    source: bytes
    digest: str = ""


@dataclass
class TransformRequest:
    bundle: str
    environment: str
    eager: List[ModuleInput] = field(default_factory=list)
    lazy: List[ModuleInput] = field(default_factory=list)


@dataclass
class TransformOutput:
    """Compiled code keyed by specifier, ready for loader registration."""

    eager: Dict[str, str] = field(default_factory=dict)
    lazy: Dict[str, str] = field(default_factory=dict)


def define_call(specifier: str, body: str) -> str:
    """Wrap a CommonJS-style module body in a loader registration."""
    return (
        f'globalThis[{json.dumps(LOADER_PROTOCOL)}].define({json.dumps(specifier)}, '
        "function (module, exports, require) {\n"
        f"{body.rstrip()}\n"
        "});\n"
    )


class Transformer(ABC):
    """Compiles every module of one bundle in a single invocation.

    A transformer that pulls in more than the entry file sets
    ``follows_imports`` so artifact keys cover the whole installed package.
    """

    name = "abstract"
    follows_imports = False

    @abstractmethod
    def transform(self, request: TransformRequest) -> TransformOutput:
        """Raise :class:`TransformError` with the tool's diagnostic on failure."""
        ...

    def identity(self) -> str:
        """Part of the artifact cache key: changing the tool invalidates artifacts."""
        return self.name


class WrappingTransformer(Transformer):
    """Registers each resolved entry file as-is.

    Suitable for dependencies that ship a self-contained build; nothing is
    followed transitively.
    """

    name = "wrap"

    def transform(self, request: TransformRequest) -> TransformOutput:
        output = TransformOutput()
        for target, modules in ((output.eager, request.eager), (output.lazy, request.lazy)):
            for module in modules:
                try:
                    body = module.source.decode("utf-8")
                except UnicodeDecodeError as exc:
                    raise TransformError(
                        f"{module.resolved.entry} is not valid UTF-8 ({module.specifier})"
                    ) from exc
                target[module.specifier] = define_call(module.specifier, body)
        return output


class CommandTransformer(Transformer):
    """Runs an external bundler once per bundle.

    *command* is an argument list; ``{entries}`` expands to every stub entry
    file, ``{outdir}`` to the output directory and ``{environment}`` to the
    build environment.  The default targets esbuild.  Each stub re-exports
    one resolved dependency; the tool must write ``<stub name>.js`` into the
    output directory.
    """

    name = "command"
    follows_imports = True
    DEFAULT_COMMAND = (
        "esbuild", "{entries}", "--bundle", "--format=cjs",
        "--platform=browser", "--outdir={outdir}",
    )

    def __init__(self, command: Optional[Sequence[str]] = None, timeout: float = 300.0) -> None:
        self.command = tuple(command or self.DEFAULT_COMMAND)
        self.timeout = timeout

    def identity(self) -> str:
        return f"{self.name}:{' '.join(self.command)}"

    def _argv(self, entries: List[Path], outdir: Path, environment: str) -> List[str]:
        argv: List[str] = []
        for arg in self.command:
            if arg == "{entries}":
                argv.extend(str(e) for e in entries)
            else:
                argv.append(arg.replace("{outdir}", str(outdir)).replace("{environment}", environment))
        return argv

    def transform(self, request: TransformRequest) -> TransformOutput:
        modules = [(m, False) for m in request.eager] + [(m, True) for m in request.lazy]
        output = TransformOutput()
        if not modules:
            return output
        with tempfile.TemporaryDirectory(prefix=f"autobundle-{request.bundle}-") as tmp:
            workdir = Path(tmp)
            srcdir = workdir / "src"
            outdir = workdir / "out"
            srcdir.mkdir()
            outdir.mkdir()
            entries = []
            for index, (module, _) in enumerate(modules):
                stub = srcdir / f"m{index}.js"
                stub.write_text(
                    f"module.exports = require({json.dumps(str(module.resolved.entry))});\n",
                    encoding="utf-8",
                )
                entries.append(stub)

            argv = self._argv(entries, outdir, request.environment)
            logger.debug("Running %s for bundle %s", argv[0], request.bundle)
            try:
                result = subprocess.run(
                    argv, capture_output=True, text=True, timeout=self.timeout,
                )
            except FileNotFoundError as exc:
                raise TransformError(f"transformation tool not found: {argv[0]}") from exc
            except subprocess.TimeoutExpired as exc:
                raise TransformError(f"{argv[0]} timed out after {self.timeout:.0f}s") from exc
            if result.returncode != 0:
                diagnostic = (result.stderr or result.stdout or "").strip()
                raise TransformError(diagnostic or f"{argv[0]} exited with {result.returncode}")

            for index, (module, is_lazy) in enumerate(modules):
                compiled = outdir / f"m{index}.js"
                if not compiled.is_file():
                    raise TransformError(f"{argv[0]} produced no output for '{module.specifier}'")
                code = define_call(module.specifier, compiled.read_text(encoding="utf-8"))
                (output.lazy if is_lazy else output.eager)[module.specifier] = code
        return output


def make_transformer(kind: str, command: Optional[Sequence[str]] = None) -> Transformer:
    if kind == "wrap":
        return WrappingTransformer()
    if kind == "command":
        return CommandTransformer(command)
    raise ValueError(f"unknown transformer kind: {kind}")
