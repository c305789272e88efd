"""Pytest configuration and fixtures for code graph core tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest

from codegraph_core.ingest import Ingestor
from codegraph_core.parser import GrammarAdapter
from codegraph_core.storage import TemporalGraphStore

TEST_LANGUAGES = ["python", "rust"]


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path_factory, monkeypatch):
    """Keep tests away from the user's ~/.codegraph/config.toml."""
    home = tmp_path_factory.mktemp("codegraph_home")
    monkeypatch.setattr("codegraph_core.config_manager.CONFIG_FILE", home / "config.toml")
    monkeypatch.setattr("codegraph_core.config.BASE_DIR", home)
    monkeypatch.setattr("codegraph_core.config.STORE_PATH", home / "graph.db")
    monkeypatch.setattr("codegraph_core.config.EXTRA_SKIP_DIRS", frozenset())


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def sample_project_path() -> Path:
    """Get path to sample test project."""
    return Path(__file__).parent / "fixtures" / "sample_project"


@pytest.fixture(scope="session")
def adapter() -> GrammarAdapter:
    """Grammar adapter with the Python and Rust grammars loaded."""
    return GrammarAdapter(TEST_LANGUAGES)


@pytest.fixture
def store() -> Generator[TemporalGraphStore, None, None]:
    """Empty in-memory graph store."""
    graph = TemporalGraphStore.open(":memory:")
    yield graph
    graph.close()


@pytest.fixture
def ingestor(store: TemporalGraphStore, adapter: GrammarAdapter) -> Ingestor:
    return Ingestor(store, adapter, workers=2, languages=TEST_LANGUAGES)


@pytest.fixture
def greetings_source() -> str:
    """Four top-level functions at known line ranges."""
    return (Path(__file__).parent / "fixtures" / "sample_project" / "greetings.py").read_text(
        encoding="utf-8"
    )


@pytest.fixture
def rust_source() -> str:
    """A free function, a struct and an impl block whose method calls the function."""
    return (Path(__file__).parent / "fixtures" / "sample_project" / "src" / "lib.rs").read_text(
        encoding="utf-8"
    )


@pytest.fixture
def greetings_store(store: TemporalGraphStore, ingestor: Ingestor, greetings_source: str) -> TemporalGraphStore:
    """Store holding the ingested greetings module."""
    report = ingestor.ingest_source(greetings_source, "greetings.py")
    assert report.ok
    return store

