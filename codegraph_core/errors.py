"""Error types for ingestion, the temporal store and queries."""

from __future__ import annotations

from typing import List, Optional, Sequence


class CodeGraphError(Exception):
    """Base error for code graph operations."""

    pass


class ParseError(CodeGraphError):
    """A file could not be parsed; nothing from it is extracted."""

    def __init__(
        self,
        path: str,
        reason: str,
        line: Optional[int] = None,
        column: Optional[int] = None,
    ) -> None:
        location = path
        if line is not None:
            location = f"{path}:{line}"
            if column is not None:
                location = f"{location}:{column}"
        super().__init__(f"Failed to parse {location}: {reason}")
        self.path = path
        self.reason = reason
        self.line = line
        self.column = column


class UnsupportedLanguage(ParseError):
    """No grammar is available for the file's language."""

    def __init__(self, path: str, language: Optional[str] = None) -> None:
        reason = f"no grammar available for language '{language}'" if language else "unsupported file type"
        super().__init__(path, reason)
        self.language = language


class AttributionAmbiguity(CodeGraphError):
    """A reference could not be attributed to a single most specific entity.

    Recoverable: the attributor records it as a diagnostic and carries on.
    """

    def __init__(self, path: str, line: int, candidates: Sequence[str], chosen: str) -> None:
        if candidates:
            detail = f"{len(candidates)} equally specific candidates ({', '.join(candidates)})"
        else:
            detail = "no containing entity even at file scope"
        super().__init__(f"Ambiguous attribution at {path}:{line}: {detail}; using {chosen}")
        self.path = path
        self.line = line
        self.candidates: List[str] = list(candidates)
        self.chosen = chosen


class KeyCollision(CodeGraphError):
    """Two extracted entities produced the same key within one batch."""

    def __init__(self, key: str, locations: Sequence[str]) -> None:
        super().__init__(f"Key collision for {key} ({', '.join(locations)})")
        self.key = key
        self.locations = list(locations)


class InvalidTransition(CodeGraphError):
    """A proposal is not allowed from the entity's current temporal state."""

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"Invalid transition for {key}: {reason}")
        self.key = key
        self.reason = reason


class ValidationError(CodeGraphError):
    """Syntax error found in an entity's proposed code."""

    def __init__(
        self,
        key: str,
        message: str,
        offset: int = 0,
        line: int = 1,
        column: int = 1,
    ) -> None:
        super().__init__(f"{key}: {message} (line {line}, column {column})")
        self.key = key
        self.message = message
        self.offset = offset
        self.line = line
        self.column = column

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "offset": self.offset,
            "line": self.line,
            "column": self.column,
        }


class QueryError(CodeGraphError):
    """Malformed predicate string."""

    def __init__(self, predicate: str, reason: str) -> None:
        super().__init__(f"Invalid predicate {predicate!r}: {reason}")
        self.predicate = predicate
        self.reason = reason
