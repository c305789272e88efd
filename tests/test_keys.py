"""Tests for semantic key generation and interface signatures."""

import pytest

from codegraph_core.keys import (
    external_key,
    file_placeholder_key,
    make_key,
    new_entity_key,
    normalize_path,
    parse_key,
)
from codegraph_core.models import EntityKind, LineRange


class TestMakeKey:
    """Tests for make_key / parse_key."""

    def test_key_format(self):
        key = make_key("rust", EntityKind.METHOD, "grow", "src/lib.rs", LineRange(10, 12))
        assert key == "rust:method:grow:src/lib.rs:10-12"

    def test_deterministic(self):
        args = ("python", EntityKind.FUNCTION, "hello", "greetings.py", LineRange(1, 2))
        assert make_key(*args) == make_key(*args)

    def test_distinct_inputs_give_distinct_keys(self):
        base = make_key("python", EntityKind.FUNCTION, "f", "a.py", LineRange(1, 2))
        assert base != make_key("python", EntityKind.METHOD, "f", "a.py", LineRange(1, 2))
        assert base != make_key("python", EntityKind.FUNCTION, "f", "b.py", LineRange(1, 2))
        assert base != make_key("python", EntityKind.FUNCTION, "f", "a.py", LineRange(1, 3))

    def test_colons_are_escaped(self):
        """A ':' inside a name cannot shift the other fields."""
        a = make_key("rust", EntityKind.MODULE, "a:b", "c.rs", LineRange(1, 1))
        b = make_key("rust", EntityKind.MODULE, "a", "b:c.rs", LineRange(1, 1))
        assert a != b
        assert len(a.split(":")) == 5

    def test_parse_round_trip(self):
        key = make_key("java", EntityKind.METHOD, "run%now", "pkg/a:b.java", LineRange(3, 9))
        parts = parse_key(key)
        assert parts.language == "java"
        assert parts.kind == "method"
        assert parts.name == "run%now"
        assert parts.file_path == "pkg/a:b.java"
        assert parts.line_range == LineRange(3, 9)

    def test_parse_rejects_malformed(self):
        with pytest.raises(ValueError):
            parse_key("python:function:hello")


class TestPlaceholders:
    """Tests for external, file-scope and new-entity keys."""

    def test_external_key(self):
        key = external_key("python", EntityKind.FUNCTION, "print")
        assert key == "python:function:print:external:0"
        parts = parse_key(key)
        assert parts.is_external
        assert parts.line_range is None

    def test_file_placeholder_key(self):
        key = file_placeholder_key("python", "app/service.py")
        assert key == "python:file:__file__:app/service.py:0-0"
        assert parse_key(key).is_file_placeholder

    def test_new_entity_key_is_stable(self):
        a = new_entity_key("python", EntityKind.FUNCTION, "wave", "greetings.py")
        b = new_entity_key("python", EntityKind.FUNCTION, "wave", "greetings.py")
        assert a == b
        assert a.startswith("python:function:wave:greetings.py:h")
        assert len(a.rsplit(":", 1)[1]) == 9

    def test_new_entity_key_salt(self):
        a = new_entity_key("python", EntityKind.FUNCTION, "wave", "greetings.py")
        b = new_entity_key("python", EntityKind.FUNCTION, "wave", "greetings.py", salt="2")
        assert a != b


class TestNormalizePath:
    """Tests for host-independent path normalisation."""

    def test_backslashes(self):
        assert normalize_path("src\\pkg\\mod.rs") == "src/pkg/mod.rs"

    def test_leading_dot_slash(self):
        assert normalize_path("./a/b.py") == "a/b.py"

    def test_relative_to_root(self, temp_dir):
        target = temp_dir / "pkg" / "mod.py"
        assert normalize_path(target, temp_dir) == "pkg/mod.py"


class TestInterfaceSignature:
    """Signatures are derived from the syntax tree at extraction time."""

    def test_python_signature(self, adapter):
        from codegraph_core.extractor import EntityExtractor

        parsed = adapter.parse("def _area(w: int, h: int) -> int:\n    return w * h\n", "python", "geo.py")
        (entity,) = EntityExtractor(adapter).extract(parsed)
        assert entity.interface_signature == "private def _area(w: int, h: int) -> int"

    def test_rust_signature(self, adapter):
        from codegraph_core.extractor import EntityExtractor

        parsed = adapter.parse("pub fn area(w: u32, h: u32) -> u32 {\n    w * h\n}\n", "rust", "geo.rs")
        (entity,) = EntityExtractor(adapter).extract(parsed)
        assert entity.interface_signature == "public pub fn area(w: u32, h: u32) -> u32"
