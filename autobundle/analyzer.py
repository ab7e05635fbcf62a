"""Import discovery over JavaScript / TypeScript sources using Tree-sitter.

Tree-sitter gives a concrete syntax tree for every module, so static
``import`` / ``export ... from`` statements and ``import()`` calls can be
told apart without evaluating anything:

- static imports and re-exports are *eager* (evaluated when the module loads)
- ``import("x")`` with a literal argument is *lazy* (loaded on demand)

Only specifiers outside the owning package's namespace are reported.
"""

from __future__ import annotations

import logging
from hashlib import blake2b
from typing import Any, Dict, Iterator, List, Optional, Tuple

import tree_sitter_javascript
import tree_sitter_typescript
from tree_sitter import Language, Parser as TSParser

from .config import SOURCE_EXTENSIONS
from .errors import ParseError
from .models import EAGER, LAZY, ImportRecord, ImportStyle
from .package import Package
from .tree import FileTree

logger = logging.getLogger(__name__)

# (specifier, style, 1-based line)
RawImport = Tuple[str, ImportStyle, int]


class SourceSyntaxError(Exception):
    def __init__(self, line: int, detail: str) -> None:
        self.line = line
        self.detail = detail
        super().__init__(detail)


# ===================================================================
# Tree-sitter import extraction
# ===================================================================

class ImportParser:
    """Extract raw import references from one source file."""

    _GRAMMARS = {
        "javascript": lambda: tree_sitter_javascript.language(),
        "typescript": lambda: tree_sitter_typescript.language_typescript(),
        "tsx": lambda: tree_sitter_typescript.language_tsx(),
    }

    def __init__(self) -> None:
        self._parsers: Dict[str, Any] = {}

    def _parser_for(self, language: str) -> Any:
        parser = self._parsers.get(language)
        if parser is None:
            parser = TSParser(Language(self._GRAMMARS[language]()))
            self._parsers[language] = parser
            logger.debug("Loaded tree-sitter parser for %s", language)
        return parser

    def supports(self, path: str) -> bool:
        return _suffix(path) in SOURCE_EXTENSIONS

    def parse_imports(self, path: str, source: bytes) -> List[RawImport]:
        language = SOURCE_EXTENSIONS[_suffix(path)]
        tree = self._parser_for(language).parse(source)
        root = tree.root_node
        if root.has_error:
            bad = _first_error(root)
            line = bad.start_point[0] + 1 if bad is not None else 0
            detail = "missing token" if bad is not None and bad.is_missing else "syntax error"
            raise SourceSyntaxError(line, detail)

        found: List[RawImport] = []
        for node in _walk(root):
            if node.type == "import_statement":
                if _is_type_only(node):
                    continue
                specifier = _string_value(node.child_by_field_name("source"))
                if specifier:
                    found.append((specifier, EAGER, node.start_point[0] + 1))
            elif node.type == "export_statement":
                if _is_type_only(node):
                    continue
                specifier = _string_value(node.child_by_field_name("source"))
                if specifier:
                    found.append((specifier, EAGER, node.start_point[0] + 1))
            elif node.type == "call_expression":
                func = node.child_by_field_name("function")
                if func is None or func.type != "import":
                    continue
                args = node.child_by_field_name("arguments")
                first = args.named_children[0] if args is not None and args.named_children else None
                specifier = _string_value(first)
                if specifier:
                    found.append((specifier, LAZY, node.start_point[0] + 1))
                else:
                    logger.debug(
                        "Ignoring non-literal import() in %s:%d", path, node.start_point[0] + 1,
                    )
        return found


def _suffix(path: str) -> str:
    name = path.rsplit("/", 1)[-1]
    return name[name.rfind("."):] if "." in name else ""


def _walk(root: Any) -> Iterator[Any]:
    """Pre-order traversal in source order."""
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def _first_error(root: Any) -> Optional[Any]:
    for node in _walk(root):
        if node.type == "ERROR" or node.is_missing:
            return node
    return None


def _is_type_only(import_node: Any) -> bool:
    # ``import type { X } from "y"`` carries an anonymous ``type`` token.
    return any(child.type == "type" and not child.is_named for child in import_node.children)


def _string_value(node: Any) -> Optional[str]:
    if node is None:
        return None
    if node.type == "string":
        return node.text.decode("utf-8")[1:-1] or None
    if node.type == "template_string":
        if any(child.type == "template_substitution" for child in node.children):
            return None
        return node.text.decode("utf-8")[1:-1] or None
    return None


# ===================================================================
# Analyzer
# ===================================================================

def is_external(specifier: str, package: Package) -> bool:
    if specifier.startswith((".", "/")) or "://" in specifier:
        return False
    return not package.owns(specifier)


class Analyzer:
    """Scans one package's module tree for external imports.

    Per-file results are memoised by content digest, so rescanning a tree
    where only a few files changed only reparses those files.
    """

    def __init__(
        self,
        tree: FileTree,
        package: Package,
        parser: Optional[ImportParser] = None,
    ) -> None:
        self.tree = tree
        self.package = package
        self.parser = parser or ImportParser()
        self._memo: Dict[Tuple[str, str], List[ImportRecord]] = {}

    def update(self, tree: FileTree) -> None:
        """Point the analyzer at a new revision of its tree."""
        self.tree = tree

    def scan(self) -> List[ImportRecord]:
        records: List[ImportRecord] = []
        live = set()
        for path in self.tree:
            if not self.parser.supports(path):
                continue
            content = self.tree[path]
            key = (path, blake2b(content, digest_size=16).hexdigest())
            live.add(key)
            cached = self._memo.get(key)
            if cached is None:
                cached = self._scan_file(path, content)
                self._memo[key] = cached
            records.extend(cached)
        for stale in set(self._memo) - live:
            del self._memo[stale]
        logger.debug("%s: %d external imports", self.package.name, len(records))
        return records

    def _scan_file(self, path: str, content: bytes) -> List[ImportRecord]:
        try:
            raw = self.parser.parse_imports(path, content)
        except SourceSyntaxError as exc:
            raise ParseError(path, self.package.name, exc.line, exc.detail) from exc
        return [
            ImportRecord(
                specifier=specifier,
                consuming_path=path,
                package=self.package,
                style=style,
                line=line,
            )
            for specifier, style, line in raw
            if is_external(specifier, self.package)
        ]


def scan(tree: FileTree, package: Package) -> List[ImportRecord]:
    """One-shot scan without keeping an analyzer around."""
    return Analyzer(tree, package).scan()
