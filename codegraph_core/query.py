"""Small predicate language for filtering entities and edges.

Grammar::

    predicate := group (';' group)*        any group may hold
    group     := term (',' term)*          all terms must hold
    term      := field op value
    op        := '=' | '!=' | '~'

``~`` is a substring match; a pattern containing ``*`` or ``?`` is matched
as a glob against the whole value instead.  Values may be wrapped in single
or double quotes to include separators or surrounding spaces.  ``null``
matches a missing value and ``true`` / ``false`` match booleans.

Predicates are parsed into ``Or`` / ``And`` / ``Compare`` nodes and evaluated
in Python against plain attribute mappings, so they never depend on the
backing store's own query language.
"""

from __future__ import annotations

import fnmatch
import re
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from .errors import QueryError

_TERM_RE = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_]*)\s*(!=|=|~)\s*(.*?)\s*$", re.DOTALL)


class _Null(str):
    """Marker value: compares equal only to missing attributes."""


_NULL = _Null("")


@dataclass(frozen=True)
class Compare:
    field: str
    op: str
    value: str

    def evaluate(self, record: Mapping[str, Any]) -> bool:
        if isinstance(self.value, _Null):
            missing = record.get(self.field) is None
            return missing if self.op == "=" else not missing
        actual = _as_text(record.get(self.field))
        if self.op == "=":
            return actual == self.value
        if self.op == "!=":
            return actual != self.value
        if actual is None:
            return False
        if any(ch in self.value for ch in "*?"):
            return fnmatch.fnmatchcase(actual, self.value)
        return self.value in actual


@dataclass(frozen=True)
class And:
    terms: Tuple[Compare, ...]

    def evaluate(self, record: Mapping[str, Any]) -> bool:
        return all(term.evaluate(record) for term in self.terms)


@dataclass(frozen=True)
class Or:
    groups: Tuple[And, ...]

    def evaluate(self, record: Mapping[str, Any]) -> bool:
        # An empty predicate has no groups and matches everything
        return not self.groups or any(group.evaluate(record) for group in self.groups)


MATCH_ALL = Or(())


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _split_unquoted(text: str, sep: str) -> List[str]:
    """Split on *sep* outside single/double quotes."""
    parts: List[str] = []
    buf: List[str] = []
    quote: Optional[str] = None
    for ch in text:
        if quote:
            buf.append(ch)
            if ch == quote:
                quote = None
        elif ch in "\"'":
            quote = ch
            buf.append(ch)
        elif ch == sep:
            parts.append("".join(buf))
            buf = []
        else:
            buf.append(ch)
    if quote:
        raise ValueError(f"unterminated {quote} quote")
    parts.append("".join(buf))
    return parts


def _parse_term(predicate: str, text: str, allowed: Optional[Iterable[str]]) -> Compare:
    m = _TERM_RE.match(text)
    if not m:
        raise QueryError(predicate, f"malformed term {text.strip()!r}")
    field_name, op, raw = m.groups()
    if allowed is not None and field_name not in allowed:
        raise QueryError(predicate, f"unknown field {field_name!r}")
    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in "\"'":
        value: Optional[str] = raw[1:-1]
    elif raw == "null":
        value = None
    else:
        value = raw
    if value is None:
        if op == "~":
            raise QueryError(predicate, "'~' cannot be used with null")
        return Compare(field_name, op, _NULL)
    return Compare(field_name, op, value)


def parse_predicate(predicate: str, allowed_fields: Optional[Iterable[str]] = None) -> Or:
    """Parse *predicate* into an expression tree.

    Raises ``QueryError`` for malformed terms or unknown fields, before any
    data is scanned.
    """
    if predicate is None or not predicate.strip():
        return MATCH_ALL
    allowed = frozenset(allowed_fields) if allowed_fields is not None else None
    try:
        group_texts = _split_unquoted(predicate, ";")
        groups: List[And] = []
        for group_text in group_texts:
            term_texts = _split_unquoted(group_text, ",")
            terms = tuple(_parse_term(predicate, t, allowed) for t in term_texts)
            groups.append(And(terms))
    except ValueError as exc:
        raise QueryError(predicate, str(exc)) from exc
    return Or(tuple(groups))


def evaluate(expr: Or, record: Mapping[str, Any]) -> bool:
    return expr.evaluate(record)
