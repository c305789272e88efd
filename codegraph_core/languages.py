"""Per-language grammar wiring and declarative extraction rules.

Every language contributes two ordered rule lists, both written as
tree-sitter query patterns:

* ``ExtractionRule``: a pattern with an ``@definition`` capture (the node
  whose span becomes the entity span) and a ``@name`` capture.
* ``ReferenceRule``: a pattern with a ``@reference`` capture (the node whose
  start line is attributed) and a ``@ref`` capture (the referenced name).

Rules may overlap.  A generic rule firing on a node that a more specific
rule also matched is resolved by the extractor through ``KIND_SPECIFICITY``,
never by the order rules appear in here.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Dict, Optional, Tuple

from .models import EdgeType, EntityKind

# ---------------------------------------------------------------------------
# Language <-> file-extension mapping (extensible)
# ---------------------------------------------------------------------------
LANGUAGE_MAP: Dict[str, str] = {
    ".py": "python",
    ".rs": "rust",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".ts": "typescript",
    ".go": "go",
    ".java": "java",
}


@dataclass(frozen=True)
class GrammarSpec:
    module: str
    language_func: str = "language"


# Map language name -> module that provides the tree-sitter Language
GRAMMAR_MODULES: Dict[str, GrammarSpec] = {
    "python": GrammarSpec("tree_sitter_python"),
    "rust": GrammarSpec("tree_sitter_rust"),
    "javascript": GrammarSpec("tree_sitter_javascript"),
    "typescript": GrammarSpec("tree_sitter_typescript", "language_typescript"),
    "go": GrammarSpec("tree_sitter_go"),
    "java": GrammarSpec("tree_sitter_java"),
}


@dataclass(frozen=True)
class ExtractionRule:
    pattern: str
    kind: EntityKind


@dataclass(frozen=True)
class ReferenceRule:
    pattern: str
    edge_type: EdgeType
    # Kind used for the placeholder key when the target stays unresolved
    target_kind: EntityKind = EntityKind.FUNCTION


@dataclass(frozen=True)
class LanguageRules:
    entities: Tuple[ExtractionRule, ...]
    references: Tuple[ReferenceRule, ...]


# ===================================================================
# Python
# ===================================================================

_PYTHON = LanguageRules(
    entities=(
        ExtractionRule("(function_definition name: (identifier) @name) @definition", EntityKind.FUNCTION),
        ExtractionRule(
            "(class_definition body: (block (function_definition name: (identifier) @name) @definition))",
            EntityKind.METHOD,
        ),
        ExtractionRule(
            "(class_definition body: (block (decorated_definition"
            " definition: (function_definition name: (identifier) @name) @definition)))",
            EntityKind.METHOD,
        ),
        ExtractionRule("(class_definition name: (identifier) @name) @definition", EntityKind.STRUCT),
    ),
    references=(
        ReferenceRule(
            "(call function: [(identifier) @ref (attribute attribute: (identifier) @ref)]) @reference",
            EdgeType.CALLS,
        ),
        ReferenceRule(
            "(import_statement name: [(dotted_name) @ref (aliased_import name: (dotted_name) @ref)]) @reference",
            EdgeType.DEPENDS_ON,
            EntityKind.MODULE,
        ),
        ReferenceRule(
            "(import_from_statement module_name: (dotted_name) @ref) @reference",
            EdgeType.DEPENDS_ON,
            EntityKind.MODULE,
        ),
        ReferenceRule(
            "(class_definition superclasses: (argument_list"
            " [(identifier) @ref (attribute attribute: (identifier) @ref)])) @reference",
            EdgeType.IMPLEMENTS,
            EntityKind.STRUCT,
        ),
    ),
)


# ===================================================================
# Rust
# ===================================================================

_RUST = LanguageRules(
    entities=(
        ExtractionRule("(function_item name: (identifier) @name) @definition", EntityKind.FUNCTION),
        ExtractionRule(
            "(impl_item body: (declaration_list (function_item name: (identifier) @name) @definition))",
            EntityKind.METHOD,
        ),
        ExtractionRule(
            "(trait_item body: (declaration_list (function_item name: (identifier) @name) @definition))",
            EntityKind.METHOD,
        ),
        ExtractionRule("(struct_item name: (type_identifier) @name) @definition", EntityKind.STRUCT),
        ExtractionRule("(enum_item name: (type_identifier) @name) @definition", EntityKind.ENUM),
        ExtractionRule("(trait_item name: (type_identifier) @name) @definition", EntityKind.TRAIT),
        ExtractionRule(
            "(impl_item type: [(type_identifier) @name"
            " (generic_type type: (type_identifier) @name)"
            " (scoped_type_identifier name: (type_identifier) @name)]) @definition",
            EntityKind.IMPL,
        ),
        ExtractionRule("(mod_item name: (identifier) @name) @definition", EntityKind.MODULE),
        ExtractionRule("(type_item name: (type_identifier) @name) @definition", EntityKind.TYPE_ALIAS),
        ExtractionRule("(field_declaration name: (field_identifier) @name) @definition", EntityKind.FIELD),
    ),
    references=(
        ReferenceRule(
            "(call_expression function: [(identifier) @ref"
            " (field_expression field: (field_identifier) @ref)"
            " (scoped_identifier name: (identifier) @ref)]) @reference",
            EdgeType.CALLS,
        ),
        ReferenceRule(
            "(impl_item trait: [(type_identifier) @ref"
            " (scoped_type_identifier name: (type_identifier) @ref)"
            " (generic_type type: (type_identifier) @ref)]) @reference",
            EdgeType.IMPLEMENTS,
            EntityKind.TRAIT,
        ),
        ReferenceRule(
            "(use_declaration argument: (_) @ref) @reference",
            EdgeType.DEPENDS_ON,
            EntityKind.MODULE,
        ),
    ),
)


# ===================================================================
# JavaScript / TypeScript
# ===================================================================

_JS_ENTITIES: Tuple[ExtractionRule, ...] = (
    ExtractionRule("(function_declaration name: (identifier) @name) @definition", EntityKind.FUNCTION),
    ExtractionRule("(generator_function_declaration name: (identifier) @name) @definition", EntityKind.FUNCTION),
    ExtractionRule(
        "(variable_declarator name: (identifier) @name value: [(arrow_function) (function_expression)]) @definition",
        EntityKind.FUNCTION,
    ),
    ExtractionRule("(class_declaration name: (_) @name) @definition", EntityKind.STRUCT),
    ExtractionRule("(method_definition name: (_) @name) @definition", EntityKind.METHOD),
)

_JS_REFERENCES: Tuple[ReferenceRule, ...] = (
    ReferenceRule(
        "(call_expression function: [(identifier) @ref"
        " (member_expression property: (property_identifier) @ref)]) @reference",
        EdgeType.CALLS,
    ),
    ReferenceRule("(new_expression constructor: (identifier) @ref) @reference", EdgeType.CALLS, EntityKind.STRUCT),
    ReferenceRule(
        "(import_statement source: (string) @ref) @reference",
        EdgeType.DEPENDS_ON,
        EntityKind.MODULE,
    ),
)

_JAVASCRIPT = LanguageRules(
    entities=_JS_ENTITIES,
    references=_JS_REFERENCES + (
        ReferenceRule(
            "(class_declaration (class_heritage (identifier) @ref)) @reference",
            EdgeType.IMPLEMENTS,
            EntityKind.STRUCT,
        ),
    ),
)

_TYPESCRIPT = LanguageRules(
    entities=_JS_ENTITIES + (
        ExtractionRule("(abstract_class_declaration name: (_) @name) @definition", EntityKind.STRUCT),
        ExtractionRule("(interface_declaration name: (_) @name) @definition", EntityKind.TRAIT),
        ExtractionRule("(type_alias_declaration name: (_) @name) @definition", EntityKind.TYPE_ALIAS),
        ExtractionRule("(enum_declaration name: (_) @name) @definition", EntityKind.ENUM),
    ),
    references=_JS_REFERENCES + (
        ReferenceRule(
            "(class_declaration (class_heritage (implements_clause (type_identifier) @ref))) @reference",
            EdgeType.IMPLEMENTS,
            EntityKind.TRAIT,
        ),
        ReferenceRule(
            "(class_declaration (class_heritage (extends_clause (identifier) @ref))) @reference",
            EdgeType.IMPLEMENTS,
            EntityKind.STRUCT,
        ),
    ),
)


# ===================================================================
# Go
# ===================================================================

_GO = LanguageRules(
    entities=(
        ExtractionRule("(function_declaration name: (identifier) @name) @definition", EntityKind.FUNCTION),
        ExtractionRule("(method_declaration name: (field_identifier) @name) @definition", EntityKind.METHOD),
        ExtractionRule(
            "(type_declaration (type_spec name: (type_identifier) @name type: (struct_type)) @definition)",
            EntityKind.STRUCT,
        ),
        ExtractionRule(
            "(type_declaration (type_spec name: (type_identifier) @name type: (interface_type)) @definition)",
            EntityKind.TRAIT,
        ),
        # Generic "any named type" rule; struct/interface specs win over it.
        ExtractionRule(
            "(type_declaration (type_spec name: (type_identifier) @name) @definition)",
            EntityKind.TYPE_ALIAS,
        ),
    ),
    references=(
        ReferenceRule(
            "(call_expression function: [(identifier) @ref"
            " (selector_expression field: (field_identifier) @ref)]) @reference",
            EdgeType.CALLS,
        ),
        ReferenceRule(
            "(import_spec path: (interpreted_string_literal) @ref) @reference",
            EdgeType.DEPENDS_ON,
            EntityKind.MODULE,
        ),
    ),
)


# ===================================================================
# Java
# ===================================================================

_JAVA = LanguageRules(
    entities=(
        ExtractionRule("(class_declaration name: (identifier) @name) @definition", EntityKind.STRUCT),
        ExtractionRule("(interface_declaration name: (identifier) @name) @definition", EntityKind.TRAIT),
        ExtractionRule("(enum_declaration name: (identifier) @name) @definition", EntityKind.ENUM),
        ExtractionRule("(method_declaration name: (identifier) @name) @definition", EntityKind.METHOD),
        ExtractionRule("(constructor_declaration name: (identifier) @name) @definition", EntityKind.METHOD),
    ),
    references=(
        ReferenceRule("(method_invocation name: (identifier) @ref) @reference", EdgeType.CALLS, EntityKind.METHOD),
        ReferenceRule(
            "(object_creation_expression type: (type_identifier) @ref) @reference",
            EdgeType.CALLS,
            EntityKind.STRUCT,
        ),
        ReferenceRule(
            "(import_declaration (scoped_identifier) @ref) @reference",
            EdgeType.DEPENDS_ON,
            EntityKind.MODULE,
        ),
        ReferenceRule(
            "(class_declaration interfaces: (super_interfaces (type_list (type_identifier) @ref))) @reference",
            EdgeType.IMPLEMENTS,
            EntityKind.TRAIT,
        ),
        ReferenceRule(
            "(class_declaration superclass: (superclass (type_identifier) @ref)) @reference",
            EdgeType.IMPLEMENTS,
            EntityKind.STRUCT,
        ),
    ),
)


RULES: Dict[str, LanguageRules] = {
    "python": _PYTHON,
    "rust": _RUST,
    "javascript": _JAVASCRIPT,
    "typescript": _TYPESCRIPT,
    "go": _GO,
    "java": _JAVA,
}


def language_for_path(path: str) -> Optional[str]:
    """Return the language name for *path* based on its extension."""
    return LANGUAGE_MAP.get(PurePosixPath(path.replace("\\", "/")).suffix.lower())


def rules_for(language: str) -> LanguageRules:
    return RULES[language]
