"""Ingestion pipeline: source files -> entities + edges -> store.

Two passes over a batch of files:

1. parse and extract entities, one task per file on a thread pool
2. attribute references, again per file, once every entity list of the
   batch is known (names resolve across the whole batch plus whatever the
   store already holds for other files)

The batch is then merged into the store in one transaction.  A file that
fails to read or parse is reported in ``IngestionReport.errors``; the other
files still go through.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from . import config
from .attribution import DependencyAttributor, SymbolIndex
from .errors import AttributionAmbiguity, ParseError, UnsupportedLanguage
from .extractor import EntityExtractor
from .keys import normalize_path
from .languages import LANGUAGE_MAP, language_for_path
from .models import Entity, FileExtraction
from .parser import GrammarAdapter, ParsedFile
from .storage import TemporalGraphStore

logger = logging.getLogger(__name__)

# Returns (normalized path, language, raw bytes) for one file
_Loader = Callable[[], Tuple[str, Optional[str], bytes]]


@dataclass
class IngestionReport:
    """Outcome of one ingestion batch."""

    files: List[str] = field(default_factory=list)
    entities: int = 0
    edges: int = 0
    errors: List[ParseError] = field(default_factory=list)
    diagnostics: List[AttributionAmbiguity] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class Ingestor:
    """Parses, extracts and attributes a batch of files into a store."""

    def __init__(
        self,
        store: TemporalGraphStore,
        adapter: Optional[GrammarAdapter] = None,
        workers: Optional[int] = None,
        languages: Optional[Sequence[str]] = None,
    ) -> None:
        self.store = store
        self.adapter = adapter or GrammarAdapter(languages or config.INGEST_LANGUAGES or None)
        self.workers = max(1, workers or config.INGEST_WORKERS)
        self.languages = tuple(languages or config.INGEST_LANGUAGES or self.adapter.languages)
        self.extractor = EntityExtractor(self.adapter)
        self.attributor = DependencyAttributor(self.adapter)

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def discover(self, root: Path) -> List[Path]:
        """Source files under *root* in a language we can parse."""
        root = Path(root)
        skip = config.skip_dirs()
        found: List[Path] = []
        for ext, lang in LANGUAGE_MAP.items():
            if lang not in self.languages or not self.adapter.supports_language(lang):
                continue
            for file_path in root.rglob(f"*{ext}"):
                rel_parts = file_path.relative_to(root).parts
                if any(part in skip or part.endswith(".egg-info") for part in rel_parts[:-1]):
                    continue
                if file_path.is_file():
                    found.append(file_path)
        return sorted(set(found))

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def ingest_path(self, root: Union[str, Path]) -> IngestionReport:
        """Ingest every supported file under *root*."""
        root = Path(root)
        files = self.discover(root)
        logger.info("Discovered %d source file(s) under %s", len(files), root)
        return self.ingest_files(files, root)

    def ingest_files(self, paths: Iterable[Union[str, Path]], root: Union[str, Path]) -> IngestionReport:
        """Ingest *paths*, keyed relative to *root*."""
        jobs: List[Tuple[str, Path]] = []
        for path in paths:
            path = Path(path)
            if not path.is_absolute():
                path = Path(root) / path
            jobs.append((normalize_path(path, root), path))

        def load(job: Tuple[str, Path]) -> Tuple[str, Optional[str], bytes]:
            rel, path = job
            try:
                data = path.read_bytes()
            except OSError as exc:
                raise ParseError(rel, f"cannot read file ({exc.strerror or exc})") from exc
            return rel, language_for_path(rel), data

        return self._run([(job[0], lambda job=job: load(job)) for job in jobs])

    def ingest_source(
        self,
        source: Union[str, bytes],
        rel_path: str,
        language: Optional[str] = None,
    ) -> IngestionReport:
        """Ingest one in-memory source text as if it lived at *rel_path*."""
        rel = normalize_path(rel_path)
        lang = language or language_for_path(rel)
        data = source.encode("utf-8") if isinstance(source, str) else source
        return self._run([(rel, lambda: (rel, lang, data))])

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _parse_and_extract(self, loader: _Loader) -> Tuple[ParsedFile, List[Entity]]:
        rel, lang, data = loader()
        if lang is None or not self.adapter.supports_language(lang):
            raise UnsupportedLanguage(rel, lang)
        parsed = self.adapter.parse(data, lang, rel)
        return parsed, self.extractor.extract(parsed)

    def _run(self, loaders: List[Tuple[str, _Loader]]) -> IngestionReport:
        report = IngestionReport()
        parsed_files: Dict[str, Tuple[ParsedFile, List[Entity]]] = {}

        # -- Pass 1: parse + extract ---------------------------------------
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            futures = {pool.submit(self._parse_and_extract, loader): rel for rel, loader in loaders}
            for future in as_completed(futures):
                rel = futures[future]
                try:
                    parsed_files[rel] = future.result()
                except ParseError as exc:
                    logger.warning("%s", exc)
                    report.errors.append(exc)

        report.errors.sort(key=lambda e: e.path)
        if not parsed_files:
            return report

        # -- Pass 2: attribution -------------------------------------------
        index = SymbolIndex(
            e for e in self.store.read()
            if e.file_path not in parsed_files and e.current_ind
        )
        for _parsed, entities in parsed_files.values():
            for entity in entities:
                index.add(entity)

        batch: Dict[str, FileExtraction] = {}
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            futures = {
                pool.submit(self.attributor.attribute, parsed, entities, index): rel
                for rel, (parsed, entities) in parsed_files.items()
            }
            for future in as_completed(futures):
                rel = futures[future]
                parsed, entities = parsed_files[rel]
                result = future.result()
                report.diagnostics.extend(result.diagnostics)
                batch[rel] = FileExtraction(
                    file_path=rel,
                    language=parsed.language,
                    entities=entities,
                    edges=result.edges,
                )

        ordered = [batch[rel] for rel in sorted(batch)]
        self.store.merge_batch(ordered)

        report.files = [r.file_path for r in ordered]
        report.entities = sum(len(r.entities) for r in ordered)
        report.edges = sum(len(r.edges) for r in ordered)
        report.diagnostics.sort(key=lambda d: (d.path, d.line))
        logger.info(
            "Ingested %d file(s): %d entities, %d edges, %d error(s)",
            len(report.files), report.entities, report.edges, len(report.errors),
        )
        return report
