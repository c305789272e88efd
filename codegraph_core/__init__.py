"""Temporal code graph: entities, dependency edges and proposed changes.

Typical flow::

    store = TemporalGraphStore.open(":memory:")
    Ingestor(store).ingest_path("src/")
    store.propose(key, "Edit", new_code)
    PreflightValidator(adapter).validate(store)
    DiffGenerator().generate(store).to_json()
    store.promote_all()
"""

from .diff import ChangeRecord, CodeDiff, DiffGenerator
from .errors import (
    AttributionAmbiguity,
    CodeGraphError,
    InvalidTransition,
    KeyCollision,
    ParseError,
    QueryError,
    UnsupportedLanguage,
    ValidationError,
)
from .ingest import IngestionReport, Ingestor
from .models import Edge, EdgeType, Entity, EntityKind, EntityState, FutureAction, LineRange
from .parser import GrammarAdapter
from .storage import TemporalGraphStore
from .validator import PreflightValidator, ValidationReport

__version__ = "0.1.0"
