"""Extraction and attribution for the JavaScript, TypeScript, Go and Java rule sets."""

import textwrap

import pytest

from codegraph_core.ingest import Ingestor
from codegraph_core.languages import RULES
from codegraph_core.models import EdgeType, EntityKind
from codegraph_core.parser import GrammarAdapter

JS_SOURCE = textwrap.dedent("""\
    import { helper } from "./util";

    class Base {}

    class Widget extends Base {
      render() {
        return helper();
      }
    }

    function main() {
      return new Widget();
    }
""")

TS_SOURCE = textwrap.dedent("""\
    import { Logger } from "./log";

    interface Shape {
      area(): number;
    }

    class Square implements Shape {
      area(): number {
        return compute();
      }
    }
""")

GO_SOURCE = textwrap.dedent("""\
    package shapes

    import "fmt"

    type Shape interface {
    \tArea() float64
    }

    type Square struct {
    \tside float64
    }

    func (s Square) Area() float64 {
    \treturn compute(s.side)
    }

    func Describe(s Shape) {
    \tfmt.Println(s.Area())
    }
""")

JAVA_SOURCE = textwrap.dedent("""\
    import java.util.List;

    interface Shape {
        double area();
    }

    class Square implements Shape {
        public double area() {
            return compute();
        }
    }
""")

# path, source, {key: kind}, (caller, callee), (implementor, implemented), import target
LANGUAGE_CASES = {
    "javascript": (
        "app.js",
        JS_SOURCE,
        {
            "javascript:struct:Base:app.js:3-3": EntityKind.STRUCT,
            "javascript:struct:Widget:app.js:5-9": EntityKind.STRUCT,
            "javascript:method:render:app.js:6-8": EntityKind.METHOD,
            "javascript:function:main:app.js:11-13": EntityKind.FUNCTION,
        },
        ("javascript:method:render:app.js:6-8", "javascript:function:helper:external:0"),
        ("javascript:struct:Widget:app.js:5-9", "javascript:struct:Base:app.js:3-3"),
        "javascript:module:./util:external:0",
    ),
    "typescript": (
        "shapes.ts",
        TS_SOURCE,
        {
            "typescript:trait:Shape:shapes.ts:3-5": EntityKind.TRAIT,
            "typescript:struct:Square:shapes.ts:7-11": EntityKind.STRUCT,
            "typescript:method:area:shapes.ts:8-10": EntityKind.METHOD,
        },
        ("typescript:method:area:shapes.ts:8-10", "typescript:function:compute:external:0"),
        ("typescript:struct:Square:shapes.ts:7-11", "typescript:trait:Shape:shapes.ts:3-5"),
        "typescript:module:./log:external:0",
    ),
    "go": (
        "shapes.go",
        GO_SOURCE,
        {
            "go:trait:Shape:shapes.go:5-7": EntityKind.TRAIT,
            "go:struct:Square:shapes.go:9-11": EntityKind.STRUCT,
            "go:method:Area:shapes.go:13-15": EntityKind.METHOD,
            "go:function:Describe:shapes.go:17-19": EntityKind.FUNCTION,
        },
        ("go:function:Describe:shapes.go:17-19", "go:method:Area:shapes.go:13-15"),
        None,
        "go:module:fmt:external:0",
    ),
    "java": (
        "Shapes.java",
        JAVA_SOURCE,
        {
            "java:trait:Shape:Shapes.java:3-5": EntityKind.TRAIT,
            "java:struct:Square:Shapes.java:7-11": EntityKind.STRUCT,
            "java:method:area:Shapes.java:8-10": EntityKind.METHOD,
        },
        ("java:method:area:Shapes.java:8-10", "java:method:compute:external:0"),
        ("java:struct:Square:Shapes.java:7-11", "java:trait:Shape:Shapes.java:3-5"),
        "java:module:java.util.List:external:0",
    ),
}


@pytest.fixture(scope="module")
def all_languages() -> GrammarAdapter:
    """Grammar adapter with every supported grammar loaded."""
    return GrammarAdapter(list(RULES))


@pytest.fixture
def polyglot_ingestor(store, all_languages) -> Ingestor:
    return Ingestor(store, all_languages, workers=2, languages=list(RULES))


def _targets(store, from_key, edge_type):
    return {e.to_key for e in store.forward_dependencies(from_key, [edge_type])}


class TestLanguageRules:
    """Each language's rules compile, extract and attribute on a small sample."""

    @pytest.mark.parametrize("language", sorted(LANGUAGE_CASES))
    def test_grammar_loaded(self, all_languages, language):
        assert all_languages.supports_language(language)

    @pytest.mark.parametrize("language", sorted(LANGUAGE_CASES))
    def test_extract_and_attribute(self, polyglot_ingestor, store, language):
        path, source, kinds, call, implements, module = LANGUAGE_CASES[language]

        report = polyglot_ingestor.ingest_source(source, path)

        assert report.ok
        assert report.diagnostics == []
        entities = {e.key: e.entity_kind for e in store.read()}
        for key, kind in kinds.items():
            assert entities.get(key) is kind, key

        caller, callee = call
        assert callee in _targets(store, caller, EdgeType.CALLS)

        if implements is not None:
            implementor, implemented = implements
            assert _targets(store, implementor, EdgeType.IMPLEMENTS) == {implemented}

        placeholder = f"{language}:file:__file__:{path}:0-0"
        assert module in _targets(store, placeholder, EdgeType.DEPENDS_ON)

    def test_member_call_belongs_to_method_not_class(self, polyglot_ingestor, store):
        polyglot_ingestor.ingest_source(JAVA_SOURCE, "Shapes.java")
        compute = "java:method:compute:external:0"
        assert compute in _targets(store, "java:method:area:Shapes.java:8-10", EdgeType.CALLS)
        assert compute not in _targets(store, "java:struct:Square:Shapes.java:7-11", EdgeType.CALLS)
        assert "java:method:area:Shapes.java:8-10" in _targets(
            store, "java:struct:Square:Shapes.java:7-11", EdgeType.CONTAINS,
        )


class TestOverloads:
    """Overloads on one line get distinct keys instead of colliding."""

    def test_same_line_overloads(self, polyglot_ingestor, store):
        report = polyglot_ingestor.ingest_source("class A { void f() {} void f(int x) {} }\n", "A.java")

        assert report.ok
        methods = [e for e in store.read() if e.entity_kind is EntityKind.METHOD]
        assert [e.key for e in methods] == [
            "java:method:f#2:A.java:1-1",
            "java:method:f:A.java:1-1",
        ]
        assert {e.name for e in methods} == {"f"}
