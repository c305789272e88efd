"""Rule-driven entity extraction over a parsed syntax tree.

Runs every ``ExtractionRule`` of the file's language, then merges the matches:
several rules firing on the same definition node (a method is also matched
by the generic function rule) collapse to one candidate, keeping the kind
that ranks first in ``KIND_SPECIFICITY``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Dict, List, Optional, Tuple

from tree_sitter import Node

from .keys import interface_signature, make_key
from .languages import LanguageRules, rules_for
from .models import Entity, EntityClass, EntityKind, LineRange, kind_rank
from .parser import GrammarAdapter, ParsedFile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Candidate:
    """One deduplicated definition found in a file."""

    kind: EntityKind
    name: str
    line_range: LineRange
    node: Node

    @property
    def span(self) -> Tuple[int, int]:
        return (self.node.start_byte, self.node.end_byte)


class EntityExtractor:
    """Turns a ``ParsedFile`` into entities using the language's rules."""

    def __init__(self, adapter: GrammarAdapter) -> None:
        self.adapter = adapter

    def candidates(self, parsed: ParsedFile, rules: Optional[LanguageRules] = None) -> List[Candidate]:
        """Non-duplicate ``(kind, name, span)`` candidates, in source order."""
        rules = rules or rules_for(parsed.language)
        by_span: Dict[Tuple[int, int], Candidate] = {}

        for rule in rules.entities:
            for match in self.adapter.matches(parsed.language, rule.pattern, parsed.root):
                definition = match.get("definition")
                name_node = match.get("name")
                if definition is None or name_node is None:
                    continue
                name = parsed.node_text(name_node)
                if not name:
                    continue
                start, end = parsed.line_span(definition)
                candidate = Candidate(rule.kind, name, LineRange(start, end), definition)
                existing = by_span.get(candidate.span)
                if existing is None or kind_rank(candidate.kind) < kind_rank(existing.kind):
                    by_span[candidate.span] = candidate

        return sorted(
            by_span.values(),
            key=lambda c: (
                c.line_range.start, c.line_range.end, kind_rank(c.kind), c.name, c.node.start_byte,
            ),
        )

    def extract(self, parsed: ParsedFile) -> List[Entity]:
        """Build keyed entities (current state only) for *parsed*."""
        entities: List[Entity] = []
        occurrences: Dict[str, int] = {}
        for cand in self.candidates(parsed):
            code = parsed.lines_text(cand.line_range.start, cand.line_range.end)
            key = make_key(parsed.language, cand.kind, cand.name, parsed.path, cand.line_range)
            # Overloads sharing one line: second and later get "name#n" keys
            occurrences[key] = occurrences.get(key, 0) + 1
            if occurrences[key] > 1:
                key = make_key(
                    parsed.language, cand.kind, f"{cand.name}#{occurrences[key]}",
                    parsed.path, cand.line_range,
                )
            entities.append(Entity(
                key=key,
                language=parsed.language,
                entity_kind=cand.kind,
                name=cand.name,
                file_path=parsed.path,
                line_range=cand.line_range,
                interface_signature=interface_signature(
                    cand.node, parsed.source_bytes, cand.name, parsed.language,
                ),
                entity_class=classify_entity(cand, parsed),
                current_code=code,
                future_code=None,
                current_ind=True,
                future_ind=True,
                future_action=None,
            ))
        logger.debug("Extracted %d entities from %s", len(entities), parsed.path)
        return entities


# ===================================================================
# Test / code classification
# ===================================================================

_CALLABLE = (EntityKind.FUNCTION, EntityKind.METHOD)


def _is_test_file(path: str, language: str) -> bool:
    p = PurePosixPath(path)
    name = p.name
    if "tests" in p.parts[:-1] or "test" in p.parts[:-1]:
        return True
    if language == "python":
        return name.startswith("test_") or name.endswith("_test.py")
    if language == "go":
        return name.endswith("_test.go")
    if language in ("javascript", "typescript"):
        return ".test." in name or ".spec." in name
    if language == "java":
        return name.endswith("Test.java")
    return False


def _preceding_attributes(node: Node) -> List[str]:
    texts: List[str] = []
    sibling = node.prev_named_sibling
    while sibling is not None and sibling.type in ("attribute_item", "line_comment"):
        if sibling.type == "attribute_item" and sibling.text:
            texts.append(sibling.text.decode("utf-8"))
        sibling = sibling.prev_named_sibling
    return texts


def classify_entity(cand: Candidate, parsed: ParsedFile) -> EntityClass:
    """TEST for test functions and everything in test files, CODE otherwise."""
    if _is_test_file(parsed.path, parsed.language):
        return EntityClass.TEST
    if cand.kind not in _CALLABLE:
        return EntityClass.CODE

    if parsed.language == "python" and cand.name.startswith("test"):
        return EntityClass.TEST
    if parsed.language == "rust":
        # #[test], #[tokio::test], #[rstest] ...
        if any("test" in attr for attr in _preceding_attributes(cand.node)):
            return EntityClass.TEST
    if parsed.language == "java":
        for child in cand.node.children:
            if child.type == "modifiers" and child.text and b"@Test" in child.text:
                return EntityClass.TEST
    return EntityClass.CODE
