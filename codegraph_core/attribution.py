"""Dependency attribution: which entity does each reference belong to?

Second pass over a file, run once the file's complete entity list is known.
Every node matched by a ``ReferenceRule`` is attributed to the entity whose
line range contains the node's start line and which is most specific:

1. smallest span width (``end - start``)
2. on a tie, the kind that ranks first in ``KIND_SPECIFICITY``
   (method/function before impl/struct before module)
3. on a further tie, the lowest key, reported as ``AttributionAmbiguity``

A call inside a method nested in an impl block therefore belongs to the
method, never to the block.  References outside every entity belong to the
file placeholder key.  Targets are resolved by name against the whole
ingestion scope; anything unresolved points at an ``external`` placeholder
so no edge is ever dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from tree_sitter import Node

from .errors import AttributionAmbiguity
from .keys import external_key, file_placeholder_key
from .languages import LanguageRules, rules_for
from .models import Edge, EdgeType, Entity, EntityKind, kind_rank
from .parser import GrammarAdapter, ParsedFile

logger = logging.getLogger(__name__)

# Entity kinds a reference of each edge type may resolve to
_TARGET_KINDS: Dict[EdgeType, Tuple[EntityKind, ...]] = {
    EdgeType.CALLS: (EntityKind.FUNCTION, EntityKind.METHOD, EntityKind.STRUCT),
    EdgeType.IMPLEMENTS: (EntityKind.TRAIT, EntityKind.STRUCT),
    EdgeType.DEPENDS_ON: (EntityKind.MODULE,),
}


@dataclass(frozen=True)
class Reference:
    """A reference/call site found in a file."""

    name: str
    line: int
    edge_type: EdgeType
    target_kind: EntityKind


@dataclass
class AttributionResult:
    edges: List[Edge] = field(default_factory=list)
    diagnostics: List[AttributionAmbiguity] = field(default_factory=list)


class SymbolIndex:
    """Name lookup over every entity of one ingestion scope."""

    def __init__(self, entities: Iterable[Entity] = ()) -> None:
        self._by_name: Dict[Tuple[str, str], List[Entity]] = {}
        for entity in entities:
            self.add(entity)

    def add(self, entity: Entity) -> None:
        self._by_name.setdefault((entity.language, entity.name), []).append(entity)

    def resolve(self, ref: Reference, language: str, from_path: str) -> Optional[str]:
        """Key of the best matching entity, or None if nothing matches.

        Same-file definitions win, then the most specific kind, then the
        lowest key, so resolution is deterministic.
        """
        allowed = _TARGET_KINDS.get(ref.edge_type, ())
        candidates = [
            e for e in self._by_name.get((language, ref.name), [])
            if e.entity_kind in allowed
        ]
        if not candidates:
            return None
        best = min(
            candidates,
            key=lambda e: (e.file_path != from_path, kind_rank(e.entity_kind), e.key),
        )
        return best.key


class DependencyAttributor:
    """Emits directed edges for every reference in a parsed file."""

    def __init__(self, adapter: GrammarAdapter) -> None:
        self.adapter = adapter

    # ------------------------------------------------------------------
    # Reference discovery
    # ------------------------------------------------------------------

    def references(self, parsed: ParsedFile, rules: Optional[LanguageRules] = None) -> List[Reference]:
        rules = rules or rules_for(parsed.language)
        refs: List[Reference] = []
        for rule in rules.references:
            for match in self.adapter.matches(parsed.language, rule.pattern, parsed.root):
                site: Optional[Node] = match.get("reference")
                ref_node: Optional[Node] = match.get("ref")
                if site is None or ref_node is None:
                    continue
                name = _reference_name(parsed.node_text(ref_node))
                if not name:
                    continue
                refs.append(Reference(
                    name=name,
                    line=site.start_point[0] + 1,
                    edge_type=rule.edge_type,
                    target_kind=rule.target_kind,
                ))
        refs.sort(key=lambda r: (r.line, r.edge_type.value, r.name))
        return refs

    # ------------------------------------------------------------------
    # Containment
    # ------------------------------------------------------------------

    @staticmethod
    def containing_entity(
        entities: Sequence[Entity],
        line: int,
        path: str,
        language: str,
        line_count: int,
    ) -> Tuple[str, Optional[AttributionAmbiguity]]:
        """Most specific entity containing *line*.

        Returns the chosen key and, when the choice was not unique, the
        diagnostic describing it.
        """
        placeholder = file_placeholder_key(language, path)
        if line < 1 or line > line_count:
            return placeholder, AttributionAmbiguity(path, line, [], placeholder)

        containing = [e for e in entities if e.line_range is not None and e.line_range.contains(line)]
        if not containing:
            return placeholder, None
        if len(containing) == 1:
            return containing[0].key, None

        def specificity(e: Entity) -> Tuple[int, int]:
            return (e.line_range.width, kind_rank(e.entity_kind))

        best = min(containing, key=lambda e: (specificity(e), e.key))
        tied = sorted(e.key for e in containing if specificity(e) == specificity(best))
        if len(tied) > 1:
            return best.key, AttributionAmbiguity(path, line, tied, best.key)
        return best.key, None

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def attribute(
        self,
        parsed: ParsedFile,
        entities: Sequence[Entity],
        index: Optional[SymbolIndex] = None,
    ) -> AttributionResult:
        """Dependency and containment edges for one file.

        *entities* must be the file's complete entity list; *index* covers
        the whole ingestion scope (defaults to this file only).
        """
        if index is None:
            index = SymbolIndex(entities)
        result = AttributionResult()
        seen: Dict[Tuple[str, str, EdgeType], Edge] = {}

        for ref in self.references(parsed):
            from_key, diagnostic = self.containing_entity(
                entities, ref.line, parsed.path, parsed.language, parsed.line_count,
            )
            if diagnostic is not None:
                logger.warning("%s", diagnostic)
                result.diagnostics.append(diagnostic)

            to_key = index.resolve(ref, parsed.language, parsed.path)
            if to_key is None:
                to_key = external_key(parsed.language, ref.target_kind, ref.name)

            edge = Edge(from_key, to_key, ref.edge_type, f"{parsed.path}:{ref.line}")
            seen.setdefault((edge.from_key, edge.to_key, edge.edge_type), edge)

        for edge in containment_edges(entities):
            seen.setdefault((edge.from_key, edge.to_key, edge.edge_type), edge)

        result.edges = sorted(
            seen.values(), key=lambda e: (e.from_key, e.edge_type.value, e.to_key),
        )
        return result


def _encloses(outer: Entity, inner: Entity) -> bool:
    o, i = outer.line_range, inner.line_range
    if o is None or i is None or outer.key == inner.key:
        return False
    if not (o.contains(i.start) and o.contains(i.end)):
        return False
    # Same span: the less specific kind is the container (one-line impl + fn)
    return o != i or kind_rank(outer.entity_kind) > kind_rank(inner.entity_kind)


def containment_edges(entities: Sequence[Entity]) -> List[Edge]:
    """``contains`` edges from each entity's nearest enclosing entity."""
    edges: List[Edge] = []
    for inner in entities:
        parents = [outer for outer in entities if _encloses(outer, inner)]
        if not parents:
            continue
        parent = min(
            parents,
            key=lambda e: (e.line_range.width, kind_rank(e.entity_kind), e.key),
        )
        edges.append(Edge(
            parent.key, inner.key, EdgeType.CONTAINS,
            f"{inner.file_path}:{inner.line_range.start}",
        ))
    return edges


def _reference_name(text: str) -> str:
    """Normalise captured reference text (quoted import paths, multi-line use lists)."""
    name = " ".join(text.split())
    if len(name) >= 2 and name[0] == name[-1] and name[0] in "\"'`":
        name = name[1:-1]
    return name
