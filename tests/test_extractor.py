"""Tests for the grammar adapter and entity extraction."""

import pytest

from codegraph_core.errors import ParseError, UnsupportedLanguage
from codegraph_core.extractor import EntityExtractor
from codegraph_core.models import EntityClass, EntityKind, EntityState, LineRange
from codegraph_core.parser import iter_nodes, node_info


class TestGrammarAdapter:
    """Tests for parsing through tree-sitter."""

    def test_supported_languages(self, adapter):
        assert adapter.supports_language("python")
        assert adapter.supports_language("rust")
        assert not adapter.supports_language("cobol")

    def test_parse_valid_source(self, adapter, greetings_source):
        parsed = adapter.parse(greetings_source, "python", "greetings.py")
        assert parsed.path == "greetings.py"
        assert parsed.line_count == 14
        assert not parsed.root.has_error

    def test_syntax_error_fails_whole_file(self, adapter):
        with pytest.raises(ParseError) as exc_info:
            adapter.parse("def ok():\n    pass\n\ndef broken(:\n    pass\n", "python", "bad.py")
        assert exc_info.value.path == "bad.py"
        assert exc_info.value.line is not None
        assert exc_info.value.column is not None

    def test_undecodable_bytes(self, adapter):
        with pytest.raises(ParseError) as exc_info:
            adapter.parse(b"def f():\n    return '\xff\xfe'\n", "python", "latin.py")
        assert "UTF-8" in exc_info.value.reason

    def test_line_table_counts_newlines_only(self, adapter):
        """Form feeds and other separators do not start a new line."""
        parsed = adapter.parse("a = 1  # \x0c page break\nc = 2\n", "python", "sep.py")
        assert parsed.line_count == 2
        assert parsed.lines_text(2, 2) == "c = 2"

    def test_unsupported_language(self, adapter):
        with pytest.raises(UnsupportedLanguage):
            adapter.parse("x", "cobol", "a.cob")

    def test_node_enumeration(self, adapter, rust_source):
        parsed = adapter.parse(rust_source, "rust", "src/lib.rs")
        infos = [node_info(n) for n in iter_nodes([parsed.root])]
        assert infos[0]["node_kind"] == "source_file"
        impl = next(i for i in infos if i["node_kind"] == "impl_item")
        assert (impl["start_line"], impl["end_line"]) == (9, 13)
        assert impl["children"] > 0


class TestPythonExtraction:
    """Tests for the Python rule set."""

    def test_four_functions(self, adapter, greetings_source):
        parsed = adapter.parse(greetings_source, "python", "greetings.py")
        entities = EntityExtractor(adapter).extract(parsed)

        assert [e.name for e in entities] == ["hello", "goodbye", "good_morning", "good_night"]
        assert all(e.entity_kind is EntityKind.FUNCTION for e in entities)
        assert [e.line_range for e in entities] == [
            LineRange(1, 2), LineRange(5, 6), LineRange(9, 10), LineRange(13, 14),
        ]
        assert all(e.state is EntityState.UNCHANGED for e in entities)
        assert entities[0].current_code == 'def hello():\n    print("hello")'

    def test_form_feed_keeps_code_aligned(self, adapter):
        source = "def a():\n    return 1\n\x0c\ndef b():\n    return 2\n"
        entities = EntityExtractor(adapter).extract(adapter.parse(source, "python", "ff.py"))
        code = {e.name: (e.line_range, e.current_code) for e in entities}
        assert code["a"] == (LineRange(1, 2), "def a():\n    return 1")
        assert code["b"] == (LineRange(4, 5), "def b():\n    return 2")

    def test_crlf_line_endings(self, adapter):
        source = "def a():\r\n    return 1\r\n"
        (entity,) = EntityExtractor(adapter).extract(adapter.parse(source, "python", "crlf.py"))
        assert entity.line_range == LineRange(1, 2)
        assert entity.current_code == "def a():\n    return 1"

    def test_methods_deduplicated_by_specificity(self, adapter):
        """The generic function rule and the method rule match the same node once."""
        source = (
            "class Box:\n"
            "    def open(self):\n"
            "        return 1\n"
            "\n"
            "    @property\n"
            "    def size(self):\n"
            "        return 2\n"
        )
        parsed = adapter.parse(source, "python", "box.py")
        entities = EntityExtractor(adapter).extract(parsed)

        kinds = {e.name: e.entity_kind for e in entities}
        assert kinds == {
            "Box": EntityKind.STRUCT,
            "open": EntityKind.METHOD,
            "size": EntityKind.METHOD,
        }
        assert len({e.key for e in entities}) == len(entities)

    def test_nested_function_is_function(self, adapter):
        source = "def outer():\n    def inner():\n        return 1\n    return inner\n"
        parsed = adapter.parse(source, "python", "nest.py")
        entities = EntityExtractor(adapter).extract(parsed)
        outer, inner = entities
        assert outer.name == "outer" and inner.name == "inner"
        assert outer.line_range.strictly_contains(inner.line_range)

    def test_extraction_is_idempotent(self, adapter, greetings_source):
        extractor = EntityExtractor(adapter)
        first = extractor.extract(adapter.parse(greetings_source, "python", "greetings.py"))
        second = extractor.extract(adapter.parse(greetings_source, "python", "greetings.py"))
        assert [e.key for e in first] == [e.key for e in second]
        assert [e.interface_signature for e in first] == [e.interface_signature for e in second]

    def test_test_classification(self, adapter):
        source = "def test_math():\n    assert helper() == 1\n\n\ndef helper():\n    return 1\n"
        parsed = adapter.parse(source, "python", "calc.py")
        classes = {e.name: e.entity_class for e in EntityExtractor(adapter).extract(parsed)}
        assert classes == {"test_math": EntityClass.TEST, "helper": EntityClass.CODE}

    def test_test_directory_classification(self, adapter):
        parsed = adapter.parse("def helper():\n    return 1\n", "python", "tests/helpers.py")
        (entity,) = EntityExtractor(adapter).extract(parsed)
        assert entity.entity_class is EntityClass.TEST


class TestRustExtraction:
    """Tests for the Rust rule set."""

    def test_impl_block_and_method(self, adapter, rust_source):
        parsed = adapter.parse(rust_source, "rust", "src/lib.rs")
        entities = EntityExtractor(adapter).extract(parsed)
        by_key = {e.key: e for e in entities}

        assert set(by_key) == {
            "rust:function:helper:src/lib.rs:1-3",
            "rust:struct:Widget:src/lib.rs:5-7",
            "rust:field:size:src/lib.rs:6-6",
            "rust:impl:Widget:src/lib.rs:9-13",
            "rust:method:grow:src/lib.rs:10-12",
        }
        block = by_key["rust:impl:Widget:src/lib.rs:9-13"]
        method = by_key["rust:method:grow:src/lib.rs:10-12"]
        assert block.line_range.strictly_contains(method.line_range)

    def test_rust_test_attribute(self, adapter):
        source = "#[test]\nfn it_works() {\n    assert!(true);\n}\n\nfn plain() {}\n"
        parsed = adapter.parse(source, "rust", "src/lib.rs")
        classes = {e.name: e.entity_class for e in EntityExtractor(adapter).extract(parsed)}
        assert classes == {"it_works": EntityClass.TEST, "plain": EntityClass.CODE}

    def test_keys_unique(self, adapter, rust_source):
        parsed = adapter.parse(rust_source, "rust", "src/lib.rs")
        entities = EntityExtractor(adapter).extract(parsed)
        assert len({e.key for e in entities}) == len(entities)
