"""Error taxonomy.

Every error names the smallest failing unit (package, file, specifier or
bundle) so a build failure can be traced to one import.
"""

from __future__ import annotations

from typing import Dict, Optional


class AutobundleError(Exception):
    """Base class for every failure raised by autobundle."""


class ConfigurationError(AutobundleError):
    """Bad or missing bundle / environment / manifest configuration."""

    def __init__(self, message: str, package: Optional[str] = None) -> None:
        self.package = package
        if package:
            message = f"{message} (package: {package})"
        super().__init__(message)


class ParseError(AutobundleError):
    """A source module could not be parsed."""

    def __init__(
        self,
        file_path: str,
        package: str,
        line: Optional[int] = None,
        detail: str = "",
    ) -> None:
        self.file_path = file_path
        self.package = package
        self.line = line
        self.detail = detail
        where = f"{file_path}:{line}" if line else file_path
        message = f"could not parse {where} in package '{package}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class UnresolvedImportError(AutobundleError):
    """A specifier is not resolvable from its owning package."""

    def __init__(self, specifier: str, consuming_file: str, package: str) -> None:
        self.specifier = specifier
        self.consuming_file = consuming_file
        self.package = package
        super().__init__(
            f"{package} tried to import '{specifier}' in '{consuming_file}' "
            f"but the package is not installed. Add '{specifier}' to the "
            f"dependencies of {package}."
        )


class BundleCompilationError(AutobundleError):
    """The transformation step failed for one bundle."""

    def __init__(self, bundle: str, diagnostic: str) -> None:
        self.bundle = bundle
        self.diagnostic = diagnostic
        super().__init__(f"failed to build bundle '{bundle}': {diagnostic}")


class TransformError(AutobundleError):
    """Raised by a transformer; wrapped into :class:`BundleCompilationError`."""

    def __init__(self, diagnostic: str) -> None:
        self.diagnostic = diagnostic
        super().__init__(diagnostic)


class BuildFailed(AutobundleError):
    """Aggregate of every unit that failed during one build pass."""

    def __init__(self, errors: Dict[str, AutobundleError]) -> None:
        self.errors = dict(errors)
        lines = [f"  {unit}: {err}" for unit, err in self.errors.items()]
        super().__init__("build failed:\n" + "\n".join(lines))
