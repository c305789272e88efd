"""Tree-sitter grammar adapter.

Loads pre-built per-language grammar packages (``tree-sitter-python``,
``tree-sitter-rust``, ...) and exposes a small surface to the rest of the
package:

- ``parse`` turns source text into a ``ParsedFile`` or raises ``ParseError``
- ``matches`` runs a declarative query pattern against a syntax tree
- ``syntax_errors`` lists ERROR / MISSING nodes for the preflight validator

Tree-sitter ``Parser`` objects are not safe to share between threads, so each
worker thread gets its own parser instances.  Compiled ``Query`` objects are
shared.
"""

from __future__ import annotations

import importlib
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from tree_sitter import Language, Node, Parser, Query, QueryCursor, Tree

from .errors import ParseError, UnsupportedLanguage
from .languages import GRAMMAR_MODULES

logger = logging.getLogger(__name__)


@dataclass
class ParsedFile:
    """A successfully parsed source file."""

    path: str
    language: str
    source: str
    tree: Tree
    source_bytes: bytes = field(repr=False, default=b"")
    lines: List[str] = field(repr=False, default_factory=list)

    def __post_init__(self) -> None:
        if not self.source_bytes:
            self.source_bytes = self.source.encode("utf-8")
        if not self.lines:
            # Only "\n" ends a row for tree-sitter; str.splitlines also
            # breaks on form feeds, lone "\r" and unicode separators
            lines = self.source.split("\n")
            if lines and lines[-1] == "":
                lines.pop()
            self.lines = [line[:-1] if line.endswith("\r") else line for line in lines]

    @property
    def root(self) -> Node:
        return self.tree.root_node

    @property
    def line_count(self) -> int:
        return max(len(self.lines), 1)

    def node_text(self, node: Node) -> str:
        return self.source_bytes[node.start_byte:node.end_byte].decode("utf-8", errors="replace")

    def line_span(self, node: Node) -> Tuple[int, int]:
        """1-based inclusive line span of *node*, clamped to the file."""
        start = node.start_point[0] + 1
        end = node.end_point[0] + 1
        # A node ending right after a newline reports column 0 of the next row
        if node.end_point[1] == 0 and end > start:
            end -= 1
        return min(start, self.line_count), min(end, self.line_count)

    def lines_text(self, start: int, end: int) -> str:
        return "\n".join(self.lines[start - 1:end])


@dataclass(frozen=True)
class SyntaxIssue:
    message: str
    offset: int
    line: int
    column: int


class GrammarAdapter:
    """Error-reporting, multi-language parser built on Tree-sitter."""

    def __init__(self, languages: Optional[Sequence[str]] = None) -> None:
        self._requested_languages = list(languages or GRAMMAR_MODULES)
        self._languages: Dict[str, Language] = {}
        self._queries: Dict[Tuple[str, str], Query] = {}
        self._query_lock = threading.Lock()
        self._local = threading.local()
        self._init_languages()

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------

    def _init_languages(self) -> None:
        for lang in self._requested_languages:
            spec = GRAMMAR_MODULES.get(lang)
            if spec is None:
                logger.warning("No grammar module mapped for language '%s'", lang)
                continue
            try:
                mod = importlib.import_module(spec.module)
            except ImportError:
                logger.warning(
                    "Grammar package '%s' not installed for language '%s'. "
                    "Install with: pip install %s",
                    spec.module, lang, spec.module.replace("_", "-"),
                )
                continue
            # tree-sitter >=0.22 per-language packages expose a function
            # that returns the Language capsule.
            self._languages[lang] = Language(getattr(mod, spec.language_func)())
            logger.debug("Loaded tree-sitter grammar for %s", lang)

    def supports_language(self, language: str) -> bool:
        return language in self._languages

    @property
    def languages(self) -> List[str]:
        return sorted(self._languages)

    def _parser(self, language: str) -> Parser:
        parsers: Dict[str, Parser] = getattr(self._local, "parsers", None)
        if parsers is None:
            parsers = {}
            self._local.parsers = parsers
        parser = parsers.get(language)
        if parser is None:
            parser = Parser(self._languages[language])
            parsers[language] = parser
        return parser

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def parse_tree(self, source: Union[str, bytes], language: str, path: str = "<snippet>") -> Tree:
        """Parse without rejecting trees that contain errors."""
        if language not in self._languages:
            raise UnsupportedLanguage(path, language)
        source_bytes = source.encode("utf-8") if isinstance(source, str) else source
        return self._parser(language).parse(source_bytes)

    def parse(self, source: Union[str, bytes], language: str, path: str = "<snippet>") -> ParsedFile:
        """Parse *source*, failing the whole file on any syntax error."""
        if isinstance(source, bytes):
            try:
                text = source.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise ParseError(path, f"not valid UTF-8 ({exc.reason} at byte {exc.start})") from exc
        else:
            text = source

        tree = self.parse_tree(text, language, path)
        if tree.root_node.has_error:
            first = next(iter(syntax_errors(tree.root_node)), None)
            if first is None:
                raise ParseError(path, "syntax error")
            raise ParseError(path, first.message, first.line, first.column)
        return ParsedFile(path=path, language=language, source=text, tree=tree)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def query(self, language: str, pattern: str) -> Query:
        """Compile and cache a query pattern for *language*."""
        cache_key = (language, pattern)
        with self._query_lock:
            compiled = self._queries.get(cache_key)
            if compiled is None:
                compiled = Query(self._languages[language], pattern)
                self._queries[cache_key] = compiled
        return compiled

    def matches(self, language: str, pattern: str, node: Node) -> List[Dict[str, Node]]:
        """Execute a query and return captures grouped by match."""
        cursor = QueryCursor(self.query(language, pattern))
        results: List[Dict[str, Node]] = []
        # matches() returns (pattern_index, {capture_name: [nodes]}) tuples
        for _pattern_idx, captures in cursor.matches(node):
            match = {name: nodes[0] for name, nodes in captures.items() if nodes}
            if match:
                results.append(match)
        return results


def syntax_errors(root: Node) -> Iterator[SyntaxIssue]:
    """Yield ERROR and MISSING nodes below *root* in document order."""
    stack: List[Node] = [root]
    while stack:
        node = stack.pop()
        if node.is_missing:
            yield _issue(node, f"missing '{node.type}'")
            continue
        if node.is_error:
            yield _issue(node, "unexpected syntax")
            continue
        if node.has_error:
            stack.extend(reversed(node.children))


def _issue(node: Node, message: str) -> SyntaxIssue:
    row, column = node.start_point[0], node.start_point[1]
    return SyntaxIssue(message=message, offset=node.start_byte, line=row + 1, column=column + 1)


def iter_nodes(nodes: Iterable[Node]) -> Iterator[Node]:
    """Depth-first walk over *nodes* and all their descendants."""
    stack = list(reversed(list(nodes)))
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def node_info(node: Node) -> Dict[str, Any]:
    """Plain ``(node_kind, start_line, end_line, children)`` view of a node."""
    return {
        "node_kind": node.type,
        "start_line": node.start_point[0] + 1,
        "end_line": node.end_point[0] + 1,
        "children": len(node.children),
    }
