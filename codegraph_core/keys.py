"""Semantic key generation and interface signatures.

Key format::

    language:kind:name:normalized_path:start-end

``name`` and ``normalized_path`` are percent-escaped for ``%`` and ``:`` so
the five fields can always be split back apart, which keeps the mapping
injective.  Two placeholder shapes share the format:

* ``language:kind:name:external:0`` for a referenced symbol with no entity
  in the ingestion scope
* ``language:file:__file__:normalized_path:0-0`` for references made at
  file scope, outside every entity
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Optional, Union

from tree_sitter import Node

from .models import EntityKind, LineRange

EXTERNAL_PATH = "external"
FILE_KIND = "file"
FILE_NAME = "__file__"


def _escape(value: str) -> str:
    return value.replace("%", "%25").replace(":", "%3A")


def _unescape(value: str) -> str:
    return value.replace("%3A", ":").replace("%25", "%")


def normalize_path(path: Union[str, Path], root: Optional[Union[str, Path]] = None) -> str:
    """Relative, ``/``-separated path independent of host path syntax."""
    if root is not None:
        try:
            path = Path(path).resolve().relative_to(Path(root).resolve())
        except ValueError:
            pass
    text = str(path).replace("\\", "/")
    normalized = PurePosixPath(text).as_posix()
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized


def make_key(
    language: str,
    kind: EntityKind,
    name: str,
    normalized_path: str,
    line_range: LineRange,
) -> str:
    return ":".join(
        [language, kind.value, _escape(name), _escape(normalized_path), str(line_range)]
    )


def external_key(language: str, kind: EntityKind, name: str) -> str:
    return ":".join([language, kind.value, _escape(name), EXTERNAL_PATH, "0"])


def file_placeholder_key(language: str, normalized_path: str) -> str:
    return ":".join([language, FILE_KIND, FILE_NAME, _escape(normalized_path), "0-0"])


def new_entity_key(
    language: str,
    kind: EntityKind,
    name: str,
    normalized_path: str,
    salt: str = "",
) -> str:
    """Key for an entity proposed with Create before it has a location.

    The line-range field carries ``h`` plus the first eight hex digits of a
    sha256 over the inputs, so the same request always yields the same key.
    """
    digest = hashlib.sha256(
        "\0".join([language, kind.value, name, normalized_path, salt]).encode("utf-8")
    ).hexdigest()
    return ":".join([language, kind.value, _escape(name), _escape(normalized_path), f"h{digest[:8]}"])


@dataclass(frozen=True)
class KeyParts:
    language: str
    kind: str
    name: str
    file_path: str
    line_range: Optional[LineRange]

    @property
    def is_external(self) -> bool:
        return self.file_path == EXTERNAL_PATH

    @property
    def is_file_placeholder(self) -> bool:
        return self.kind == FILE_KIND


def parse_key(key: str) -> KeyParts:
    """Split a semantic key back into its fields.

    Raises ``ValueError`` when *key* does not have five fields.
    """
    parts = key.split(":")
    if len(parts) != 5:
        raise ValueError(f"Malformed key {key!r}: expected 5 ':'-separated fields")
    language, kind, name, path, span = parts
    line_range: Optional[LineRange] = None
    start, sep, end = span.partition("-")
    if sep and start.isdigit() and end.isdigit() and int(start) >= 1:
        line_range = LineRange(int(start), int(end))
    return KeyParts(language, kind, _unescape(name), _unescape(path), line_range)


# ===================================================================
# Interface signatures
# ===================================================================

_MAX_SIGNATURE = 300


def visibility(node: Node, name: str, language: str) -> str:
    """Best-effort visibility of a definition node."""
    if language == "python":
        if name.startswith("__") and name.endswith("__"):
            return "public"
        return "private" if name.startswith("_") else "public"
    if language == "rust":
        for child in node.children:
            if child.type == "visibility_modifier":
                text = child.text.decode("utf-8") if child.text else ""
                return "public" if text == "pub" else "crate"
        return "private"
    if language == "go":
        return "public" if name[:1].isupper() else "private"
    if language in ("java", "typescript", "javascript"):
        for child in node.children:
            if child.type in ("modifiers", "accessibility_modifier"):
                text = child.text.decode("utf-8") if child.text else ""
                for level in ("private", "protected", "public"):
                    if level in text.split():
                        return level
        if name.startswith("#"):
            return "private"
        return "package" if language == "java" else "public"
    return "public"


def interface_signature(node: Node, source_bytes: bytes, name: str, language: str) -> str:
    """Declaration header of *node* (text up to its body) with visibility.

    Computed once at extraction time from the syntax tree; whitespace is
    collapsed so reformatting inside the header does not matter.
    """
    body = node.child_by_field_name("body")
    end = body.start_byte if body is not None and body.start_byte > node.start_byte else node.end_byte
    header = source_bytes[node.start_byte:end].decode("utf-8", errors="replace")
    header = " ".join(header.split()).rstrip("{:").rstrip()
    if len(header) > _MAX_SIGNATURE:
        header = header[:_MAX_SIGNATURE] + "..."
    return f"{visibility(node, name, language)} {header}"
