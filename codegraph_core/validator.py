"""Preflight validator: syntax-check proposed code before it is diffed.

Every entity pending Create or Edit has its ``future_code`` dedented and
re-parsed with the same grammar adapter used at ingestion.  Entities are
checked independently on a thread pool; one broken snippet never stops
the others.

This is a syntax check only.  Types, imports and cross-entity consistency
are left to the language's own build once the change is applied.
"""

from __future__ import annotations

import logging
import textwrap
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from . import config
from .errors import CodeGraphError, ValidationError
from .models import Entity, EntityKind, FutureAction
from .parser import GrammarAdapter, syntax_errors
from .storage import TemporalGraphStore

logger = logging.getLogger(__name__)

# Members that are not valid at the top level of a file in these languages
# are checked inside a throwaway class body.
_MEMBER_WRAPPERS: Dict[str, Tuple[str, str]] = {
    "java": ("class __Preflight {\n", "\n}"),
    "javascript": ("class __Preflight {\n", "\n}"),
    "typescript": ("class __Preflight {\n", "\n}"),
}
_MEMBER_KINDS = (EntityKind.METHOD, EntityKind.FIELD)


@dataclass
class EntityValidation:
    """Outcome for one entity."""

    key: str
    errors: List[ValidationError] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def __str__(self) -> str:
        if self.valid:
            return f"{self.key}: valid"
        return f"{self.key}: " + "; ".join(str(e) for e in self.errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "valid": self.valid,
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class ValidationReport:
    """Per-entity outcomes, keyed and ordered by entity key."""

    results: Dict[str, EntityValidation] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return all(r.valid for r in self.results.values())

    @property
    def failures(self) -> List[EntityValidation]:
        return [r for r in self.results.values() if not r.valid]

    def __len__(self) -> int:
        return len(self.results)

    def __getitem__(self, key: str) -> EntityValidation:
        return self.results[key]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "results": [r.to_dict() for r in self.results.values()],
        }


class PreflightValidator:
    """Re-parses proposed code in isolation."""

    def __init__(self, adapter: GrammarAdapter, workers: Optional[int] = None) -> None:
        self.adapter = adapter
        self.workers = max(1, workers or config.VALIDATOR_WORKERS)

    def validate(self, store: TemporalGraphStore) -> ValidationReport:
        """Validate every pending Create/Edit in *store*."""
        targets = [
            e for e in store.pending()
            if e.future_action in (FutureAction.CREATE, FutureAction.EDIT)
        ]
        return self.validate_entities(targets)

    def validate_entities(self, entities: List[Entity]) -> ValidationReport:
        outcomes: Dict[str, EntityValidation] = {}
        if entities:
            with ThreadPoolExecutor(max_workers=self.workers) as pool:
                for outcome in pool.map(self.validate_entity, entities):
                    outcomes[outcome.key] = outcome

        report = ValidationReport({key: outcomes[key] for key in sorted(outcomes)})
        if report.failures:
            logger.warning(
                "Preflight validation: %d of %d proposal(s) failed",
                len(report.failures), len(report),
            )
        else:
            logger.info("Preflight validation: %d proposal(s) passed", len(report))
        return report

    def validate_entity(self, entity: Entity) -> EntityValidation:
        if entity.future_code is None:
            return EntityValidation(entity.key, [
                ValidationError(entity.key, "no proposed code to validate"),
            ])
        try:
            errors = self.validate_code(
                entity.future_code, entity.language, key=entity.key, kind=entity.entity_kind,
            )
        except CodeGraphError as exc:
            errors = [ValidationError(entity.key, str(exc))]
        return EntityValidation(entity.key, errors)

    def validate_code(
        self,
        code: str,
        language: str,
        key: str = "<snippet>",
        kind: Optional[EntityKind] = None,
    ) -> List[ValidationError]:
        """Syntax errors in *code*; empty when it parses cleanly.

        Offsets, lines and columns are relative to the dedented snippet.
        """
        snippet = textwrap.dedent(code)
        prefix, suffix = "", ""
        if kind in _MEMBER_KINDS and language in _MEMBER_WRAPPERS:
            prefix, suffix = _MEMBER_WRAPPERS[language]

        tree = self.adapter.parse_tree(prefix + snippet + suffix, language, key)
        if not tree.root_node.has_error:
            return []

        prefix_bytes = len(prefix.encode("utf-8"))
        prefix_lines = prefix.count("\n")
        snippet_len = len(snippet.encode("utf-8"))
        last_line = snippet.count("\n") + 1

        errors: List[ValidationError] = []
        for issue in syntax_errors(tree.root_node):
            offset = min(max(issue.offset - prefix_bytes, 0), snippet_len)
            line = issue.line - prefix_lines
            if line < 1:
                line, column = 1, 1
            elif line > last_line:
                line, column = last_line, 1
            else:
                column = issue.column
            errors.append(ValidationError(key, issue.message, offset, line, column))
        if not errors:
            errors.append(ValidationError(key, "syntax error"))
        return errors
