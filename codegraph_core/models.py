"""Core data models shared by extraction, storage, validation and diffing."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class EntityKind(str, Enum):
    """Fixed entity taxonomy.

    ``STRUCT`` covers structs and classes, ``TRAIT`` covers traits and
    interfaces, ``IMPL`` is an implementation block.
    """

    FUNCTION = "function"
    METHOD = "method"
    STRUCT = "struct"
    ENUM = "enum"
    TRAIT = "trait"
    MODULE = "module"
    IMPL = "impl"
    TYPE_ALIAS = "type_alias"
    FIELD = "field"
    OTHER = "other"


# Most specific first.  Used both to deduplicate overlapping extraction
# matches and to break width ties during attribution.
KIND_SPECIFICITY: Tuple[EntityKind, ...] = (
    EntityKind.METHOD,
    EntityKind.FUNCTION,
    EntityKind.IMPL,
    EntityKind.STRUCT,
    EntityKind.ENUM,
    EntityKind.TRAIT,
    EntityKind.TYPE_ALIAS,
    EntityKind.FIELD,
    EntityKind.MODULE,
    EntityKind.OTHER,
)

_KIND_RANK: Dict[EntityKind, int] = {kind: idx for idx, kind in enumerate(KIND_SPECIFICITY)}


def kind_rank(kind: EntityKind) -> int:
    """Lower is more specific."""
    return _KIND_RANK[kind]


class FutureAction(str, Enum):
    CREATE = "Create"
    EDIT = "Edit"
    DELETE = "Delete"


class EntityState(str, Enum):
    UNCHANGED = "Unchanged"
    PENDING_CREATE = "PendingCreate"
    PENDING_EDIT = "PendingEdit"
    PENDING_DELETE = "PendingDelete"


class EntityClass(str, Enum):
    CODE = "CODE"
    TEST = "TEST"


class EdgeType(str, Enum):
    CALLS = "calls"
    DEPENDS_ON = "depends_on"
    IMPLEMENTS = "implements"
    CONTAINS = "contains"


# (current_ind, future_ind) each pending action requires
_ACTION_INDICATORS: Dict[FutureAction, Tuple[bool, bool]] = {
    FutureAction.CREATE: (False, True),
    FutureAction.EDIT: (True, True),
    FutureAction.DELETE: (True, False),
}


@dataclass(frozen=True)
class LineRange:
    """Inclusive, 1-based line span."""

    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start < 1 or self.end < 1:
            raise ValueError(f"Line numbers are 1-based: start={self.start}, end={self.end}")
        if self.start > self.end:
            raise ValueError(f"Line range start must be <= end: start={self.start}, end={self.end}")

    @property
    def width(self) -> int:
        return self.end - self.start

    def contains(self, line: int) -> bool:
        return self.start <= line <= self.end

    def strictly_contains(self, other: "LineRange") -> bool:
        return self.contains(other.start) and self.contains(other.end) and self != other

    def __str__(self) -> str:
        return f"{self.start}-{self.end}"

    def to_dict(self) -> Dict[str, int]:
        return {"start": self.start, "end": self.end}


@dataclass
class Entity:
    key: str
    language: str
    entity_kind: EntityKind
    name: str
    file_path: str
    line_range: Optional[LineRange]
    interface_signature: str = ""
    entity_class: EntityClass = EntityClass.CODE
    current_code: Optional[str] = None
    future_code: Optional[str] = None
    current_ind: bool = True
    future_ind: bool = True
    future_action: Optional[FutureAction] = None
    version: int = 0

    @property
    def state(self) -> EntityState:
        if self.future_action is FutureAction.CREATE:
            return EntityState.PENDING_CREATE
        if self.future_action is FutureAction.EDIT:
            return EntityState.PENDING_EDIT
        if self.future_action is FutureAction.DELETE:
            return EntityState.PENDING_DELETE
        return EntityState.UNCHANGED

    @property
    def is_pending(self) -> bool:
        return self.future_action is not None

    def check_invariants(self) -> None:
        """Raise ``ValueError`` if the temporal fields are inconsistent."""
        if not self.current_ind and not self.future_ind:
            raise ValueError(f"{self.key}: current_ind and future_ind cannot both be false")

        if self.future_action is None:
            if self.current_ind != self.future_ind:
                raise ValueError(f"{self.key}: indicators differ but no future action is set")
            if self.future_code is not None:
                raise ValueError(f"{self.key}: future_code set without a future action")
            return

        expected = _ACTION_INDICATORS[self.future_action]
        if (self.current_ind, self.future_ind) != expected:
            raise ValueError(
                f"{self.key}: invalid indicators current={self.current_ind} "
                f"future={self.future_ind} for action {self.future_action.value}"
            )
        if self.future_action is FutureAction.DELETE:
            if self.future_code is not None:
                raise ValueError(f"{self.key}: Delete must clear future_code")
        elif self.future_code is None:
            raise ValueError(f"{self.key}: {self.future_action.value} requires future_code")

    def to_record(self) -> Dict[str, Any]:
        """Flat attribute mapping used by the predicate evaluator."""
        return {
            "key": self.key,
            "language": self.language,
            "entity_kind": self.entity_kind.value,
            "name": self.name,
            "file_path": self.file_path,
            "start_line": self.line_range.start if self.line_range else None,
            "end_line": self.line_range.end if self.line_range else None,
            "interface_signature": self.interface_signature,
            "entity_class": self.entity_class.value,
            "current_code": self.current_code,
            "future_code": self.future_code,
            "current_ind": self.current_ind,
            "future_ind": self.future_ind,
            "future_action": self.future_action.value if self.future_action else None,
            "state": self.state.value,
            "version": self.version,
        }


ENTITY_FIELDS = frozenset(
    [
        "key", "language", "entity_kind", "name", "file_path", "start_line",
        "end_line", "interface_signature", "entity_class", "current_code",
        "future_code", "current_ind", "future_ind", "future_action", "state",
        "version",
    ]
)


@dataclass(frozen=True)
class Edge:
    from_key: str
    to_key: str
    edge_type: EdgeType
    source_location: str = ""

    def to_record(self) -> Dict[str, Any]:
        return {
            "from_key": self.from_key,
            "to_key": self.to_key,
            "edge_type": self.edge_type.value,
            "source_location": self.source_location,
        }


EDGE_FIELDS = frozenset(["from_key", "to_key", "edge_type", "source_location"])


@dataclass
class FileExtraction:
    """Everything ingestion learned about one file, ready to merge."""

    file_path: str
    language: str
    entities: List[Entity] = field(default_factory=list)
    edges: List[Edge] = field(default_factory=list)


@dataclass(frozen=True)
class PromotionResult:
    created: int = 0
    edited: int = 0
    deleted: int = 0

    @property
    def total(self) -> int:
        return self.created + self.edited + self.deleted
