"""Change sets between current and proposed state.

``DiffGenerator.generate`` reads the pending entities of a store, ascending
by key, and returns a ``CodeDiff``.  Its JSON form is the hand-off format for
whatever applies the changes to disk, so field names and the
``Create`` / ``Edit`` / ``Delete`` vocabulary do not change.  Serialising the
same store state twice yields byte-identical JSON (sorted keys, no
timestamps).
"""

from __future__ import annotations

import difflib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .models import Entity, FutureAction, LineRange
from .storage import TemporalGraphStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeRecord:
    key: str
    operation: FutureAction
    file_path: str
    line_range: Optional[LineRange]
    interface_signature: str = ""
    current_code: Optional[str] = None
    future_code: Optional[str] = None

    @classmethod
    def from_entity(cls, entity: Entity) -> "ChangeRecord":
        if entity.future_action is None:
            raise ValueError(f"{entity.key} has no pending change")
        entity.check_invariants()
        op = entity.future_action
        return cls(
            key=entity.key,
            operation=op,
            file_path=entity.file_path,
            line_range=entity.line_range,
            interface_signature=entity.interface_signature,
            current_code=None if op is FutureAction.CREATE else entity.current_code,
            future_code=None if op is FutureAction.DELETE else entity.future_code,
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "key": self.key,
            "operation": self.operation.value,
            "file_path": self.file_path,
            "line_range": self.line_range.to_dict() if self.line_range else None,
            "interface_signature": self.interface_signature,
        }
        if self.operation is not FutureAction.CREATE:
            payload["current_code"] = self.current_code
        if self.operation is not FutureAction.DELETE:
            payload["future_code"] = self.future_code
        return payload

    def unified_diff(self) -> str:
        """Unified diff of current vs future code for this entity."""
        original = (self.current_code or "").splitlines(keepends=True)
        modified = (self.future_code or "").splitlines(keepends=True)
        diff = difflib.unified_diff(
            original,
            modified,
            fromfile=f"a/{self.file_path}",
            tofile=f"b/{self.file_path}",
            lineterm="",
        )
        return "\n".join(line.rstrip("\n") for line in diff)


@dataclass
class CodeDiff:
    changes: List[ChangeRecord] = field(default_factory=list)
    # Keys whose stored state could not be turned into a change record
    skipped: List[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.changes)

    @property
    def is_empty(self) -> bool:
        return not self.changes

    @property
    def metadata(self) -> Dict[str, int]:
        counts = {action: 0 for action in FutureAction}
        for change in self.changes:
            counts[change.operation] += 1
        return {
            "total_changes": len(self.changes),
            "create_count": counts[FutureAction.CREATE],
            "edit_count": counts[FutureAction.EDIT],
            "delete_count": counts[FutureAction.DELETE],
        }

    def by_file(self) -> Dict[str, List[ChangeRecord]]:
        """Changes grouped per file, files in path order."""
        grouped: Dict[str, List[ChangeRecord]] = {}
        for change in self.changes:
            grouped.setdefault(change.file_path, []).append(change)
        return {path: grouped[path] for path in sorted(grouped)}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "changes": [c.to_dict() for c in self.changes],
            "metadata": self.metadata,
        }

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True, ensure_ascii=False)


class DiffGenerator:
    """Builds a ``CodeDiff`` from a store without modifying it."""

    def generate(self, store: TemporalGraphStore) -> CodeDiff:
        diff = CodeDiff()
        for entity in store.pending():
            try:
                diff.changes.append(ChangeRecord.from_entity(entity))
            except ValueError as exc:
                logger.warning("Skipping %s in diff: %s", entity.key, exc)
                diff.skipped.append(entity.key)
        logger.debug("Generated diff with %d change(s)", len(diff.changes))
        return diff
