"""Temporal graph store: entities with current/future state, plus edges.

Architecture:
- **SQLite** holds two tables, ``entities`` and ``edges``.  Each call to
  ``merge_batch`` or ``promote_all`` is a single transaction.
- A re-entrant store lock serialises writers and readers, so a reader
  sees the graph either before or after a batch, never halfway through.

State machine per entity (``current_ind``, ``future_ind``, ``future_action``)::

    Unchanged      (T, T, None)   --propose Edit-->    PendingEdit   (T, T, Edit)
    Unchanged      (T, T, None)   --propose Delete-->  PendingDelete (T, F, Delete)
    <absent>                      --propose Create-->  PendingCreate (F, T, Create)
    Pending*                      --promote_all-->     Unchanged / removed
    Pending*                      --revert-->          Unchanged / removed

Callers hold an explicit store handle; there is no module-level instance.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections import deque
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from . import config
from .errors import InvalidTransition, KeyCollision, QueryError
from .keys import external_key, new_entity_key, parse_key
from .models import (
    EDGE_FIELDS,
    ENTITY_FIELDS,
    Edge,
    EdgeType,
    Entity,
    EntityClass,
    EntityKind,
    EntityState,
    FileExtraction,
    FutureAction,
    LineRange,
    PromotionResult,
)
from .query import parse_predicate

logger = logging.getLogger(__name__)

MEMORY = ":memory:"

_ENTITY_COLUMNS = (
    "key", "language", "entity_kind", "name", "file_path", "start_line",
    "end_line", "interface_signature", "entity_class", "current_code",
    "future_code", "current_ind", "future_ind", "future_action", "version",
)


class TemporalGraphStore:
    """SQLite-backed owner of every entity and edge of one graph.

    Use ``TemporalGraphStore.open(path)`` (or ``":memory:"``) and close it
    when done, or use it as a context manager.
    """

    def __init__(self, db_path: Union[str, Path] = MEMORY) -> None:
        self.db_path = str(db_path)
        self._lock = threading.RLock()
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._closed = False
        self._init_schema()

    @classmethod
    def open(cls, path: Optional[Union[str, Path]] = None) -> "TemporalGraphStore":
        """Open (creating if needed) the store at *path*.

        Defaults to the configured store path under ``CODEGRAPH_HOME``.
        """
        if path is None:
            config.ensure_base_dirs()
            path = config.STORE_PATH
        if str(path) != MEMORY:
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        store = cls(path)
        logger.debug("Opened graph store at %s", store.db_path)
        return store

    def close(self) -> None:
        with self._lock:
            if not self._closed:
                self.conn.close()
                self._closed = True

    def __enter__(self) -> "TemporalGraphStore":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _init_schema(self) -> None:
        cur = self.conn.cursor()
        cur.execute("""
            CREATE TABLE IF NOT EXISTS entities (
                key                 TEXT PRIMARY KEY,
                language            TEXT NOT NULL,
                entity_kind         TEXT NOT NULL,
                name                TEXT NOT NULL,
                file_path           TEXT NOT NULL,
                start_line          INTEGER,
                end_line            INTEGER,
                interface_signature TEXT NOT NULL DEFAULT '',
                entity_class        TEXT NOT NULL DEFAULT 'CODE',
                current_code        TEXT,
                future_code         TEXT,
                current_ind         INTEGER NOT NULL,
                future_ind          INTEGER NOT NULL,
                future_action       TEXT,
                version             INTEGER NOT NULL DEFAULT 0
            )
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS edges (
                from_key        TEXT NOT NULL,
                to_key          TEXT NOT NULL,
                edge_type       TEXT NOT NULL,
                source_location TEXT NOT NULL DEFAULT '',
                origin_file     TEXT NOT NULL DEFAULT '',
                UNIQUE (from_key, to_key, edge_type)
            )
        """)
        cur.execute("CREATE INDEX IF NOT EXISTS idx_entities_file ON entities(file_path)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_entities_action ON entities(future_action)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_edges_from ON edges(from_key)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_edges_to ON edges(to_key)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_edges_origin ON edges(origin_file)")
        self.conn.commit()

    # ------------------------------------------------------------------
    # Row conversion
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_entity(row: sqlite3.Row) -> Entity:
        line_range = None
        if row["start_line"] is not None and row["end_line"] is not None:
            line_range = LineRange(row["start_line"], row["end_line"])
        action = row["future_action"]
        return Entity(
            key=row["key"],
            language=row["language"],
            entity_kind=EntityKind(row["entity_kind"]),
            name=row["name"],
            file_path=row["file_path"],
            line_range=line_range,
            interface_signature=row["interface_signature"],
            entity_class=EntityClass(row["entity_class"]),
            current_code=row["current_code"],
            future_code=row["future_code"],
            current_ind=bool(row["current_ind"]),
            future_ind=bool(row["future_ind"]),
            future_action=FutureAction(action) if action else None,
            version=row["version"],
        )

    @staticmethod
    def _entity_values(entity: Entity) -> Tuple[Any, ...]:
        lr = entity.line_range
        return (
            entity.key,
            entity.language,
            entity.entity_kind.value,
            entity.name,
            entity.file_path,
            lr.start if lr else None,
            lr.end if lr else None,
            entity.interface_signature,
            entity.entity_class.value,
            entity.current_code,
            entity.future_code,
            int(entity.current_ind),
            int(entity.future_ind),
            entity.future_action.value if entity.future_action else None,
            entity.version,
        )

    @staticmethod
    def _row_to_edge(row: sqlite3.Row) -> Edge:
        return Edge(
            from_key=row["from_key"],
            to_key=row["to_key"],
            edge_type=EdgeType(row["edge_type"]),
            source_location=row["source_location"],
        )

    def _write_entity(self, entity: Entity) -> None:
        entity.check_invariants()
        placeholders = ", ".join("?" * len(_ENTITY_COLUMNS))
        self.conn.execute(
            f"INSERT OR REPLACE INTO entities ({', '.join(_ENTITY_COLUMNS)}) VALUES ({placeholders})",
            self._entity_values(entity),
        )

    def _delete_entities(self, keys: Sequence[str]) -> None:
        """Remove entity rows and every edge touching them (no commit)."""
        if not keys:
            return
        keys = list(keys)
        placeholders = ",".join("?" * len(keys))
        self.conn.execute(
            f"DELETE FROM edges WHERE from_key IN ({placeholders}) OR to_key IN ({placeholders})",
            keys + keys,
        )
        self.conn.execute(f"DELETE FROM entities WHERE key IN ({placeholders})", keys)

    # ------------------------------------------------------------------
    # Ingestion merge
    # ------------------------------------------------------------------

    def merge_batch(self, batch: Sequence[FileExtraction]) -> None:
        """Merge one ingestion batch atomically.

        Raises ``KeyCollision`` before writing anything when two entities of
        the batch share a key.  Otherwise, per file: entities are upserted
        (pending future fields survive), stale keys for the file and the
        edges touching them are removed, and the file's edges are replaced.
        """
        _check_collisions(batch)

        with self._lock, self.conn:
            for result in batch:
                self._merge_file(result)

        logger.info(
            "Merged %d file(s): %d entities, %d edges",
            len(batch),
            sum(len(r.entities) for r in batch),
            sum(len(r.edges) for r in batch),
        )

    def _merge_file(self, result: FileExtraction) -> None:
        existing = {
            row["key"]: self._row_to_entity(row)
            for row in self.conn.execute(
                "SELECT * FROM entities WHERE file_path = ?", (result.file_path,),
            )
        }
        fresh_keys = {e.key for e in result.entities}

        # Pending creates stay: they have not been written to the file yet
        stale = sorted(
            key for key, ent in existing.items()
            if key not in fresh_keys and ent.future_action is not FutureAction.CREATE
        )
        inbound: List[sqlite3.Row] = []
        if stale:
            logger.debug("Removing %d stale entities from %s", len(stale), result.file_path)
            placeholders = ",".join("?" * len(stale))
            inbound = self.conn.execute(
                f"SELECT * FROM edges WHERE to_key IN ({placeholders}) AND origin_file != ?",
                stale + [result.file_path],
            ).fetchall()
            self._delete_entities(stale)

        for entity in result.entities:
            previous = existing.get(entity.key)
            self._write_entity(_refresh(previous, entity) if previous else entity)

        self.conn.execute("DELETE FROM edges WHERE origin_file = ?", (result.file_path,))
        self.conn.executemany(
            """
            INSERT OR IGNORE INTO edges (from_key, to_key, edge_type, source_location, origin_file)
            VALUES (?, ?, ?, ?, ?)
            """,
            [
                (e.from_key, e.to_key, e.edge_type.value, e.source_location, result.file_path)
                for e in result.edges
            ],
        )
        if inbound:
            self._repoint_inbound(inbound, existing, result.entities)

    def _repoint_inbound(
        self,
        rows: Sequence[sqlite3.Row],
        previous: Dict[str, Entity],
        fresh: Sequence[Entity],
    ) -> None:
        """Aim other files' edges at the entity that replaced a stale key.

        The replacement is the fresh entity with the same language, kind and
        name (nearest start line wins); without one the edge falls back to
        the external placeholder so it is never lost.
        """
        targets: Dict[str, str] = {}
        for old_key in {row["to_key"] for row in rows}:
            old = previous[old_key]
            candidates = [
                e for e in fresh
                if (e.language, e.entity_kind, e.name) == (old.language, old.entity_kind, old.name)
            ]
            if candidates:
                old_start = old.line_range.start if old.line_range else 0
                best = min(
                    candidates,
                    key=lambda e: (abs(e.line_range.start - old_start) if e.line_range else 0, e.key),
                )
                targets[old_key] = best.key
            else:
                targets[old_key] = external_key(old.language, old.entity_kind, old.name)

        logger.debug("Re-pointing %d inbound edge(s) at replaced keys", len(rows))
        self.conn.executemany(
            """
            INSERT OR IGNORE INTO edges (from_key, to_key, edge_type, source_location, origin_file)
            VALUES (?, ?, ?, ?, ?)
            """,
            [
                (row["from_key"], targets[row["to_key"]], row["edge_type"],
                 row["source_location"], row["origin_file"])
                for row in rows
            ],
        )

    # ------------------------------------------------------------------
    # Proposals
    # ------------------------------------------------------------------

    def propose(
        self,
        key: str,
        action: Union[FutureAction, str],
        new_code: Optional[str] = None,
        *,
        override: bool = False,
        expected_version: Optional[int] = None,
    ) -> Optional[Entity]:
        """Record a proposed change for *key*.

        Edit and Delete need an existing entity; Create needs the key to be
        absent.  A pending entity is only touched with ``override=True``.
        When *expected_version* is given it must equal the stored version.

        Returns the updated entity, or None when an override Delete
        withdrew a pending Create.

        Raises:
            InvalidTransition: if the proposal is not allowed.
        """
        try:
            action = FutureAction(action)
        except ValueError:
            raise InvalidTransition(key, f"unknown action {action!r}") from None
        if action is not FutureAction.DELETE and new_code is None:
            raise InvalidTransition(key, f"{action.value} requires new code")

        with self._lock, self.conn:
            entity = self._get(key)
            if entity is not None and expected_version is not None and entity.version != expected_version:
                raise InvalidTransition(
                    key, f"version mismatch (expected {expected_version}, found {entity.version})",
                )

            if entity is None:
                if action is not FutureAction.CREATE:
                    raise InvalidTransition(key, f"cannot {action.value} an entity that does not exist")
                if expected_version not in (None, 0):
                    raise InvalidTransition(key, f"version mismatch (expected {expected_version}, entity absent)")
                entity = _new_entity(key)
                entity.future_code = new_code
                self._write_entity(entity)
                logger.debug("Proposed Create for %s", key)
                return entity

            if entity.is_pending and not override:
                raise InvalidTransition(
                    key, f"already {entity.state.value}; pass override=True to replace the proposal",
                )

            if entity.state is EntityState.PENDING_CREATE:
                # Only the proposal itself exists; edit it or withdraw it
                if action is FutureAction.DELETE:
                    self._delete_entities([key])
                    logger.debug("Withdrew pending Create for %s", key)
                    return None
                entity.future_code = new_code
            elif action is FutureAction.CREATE:
                raise InvalidTransition(key, "cannot Create an entity that already exists")
            elif action is FutureAction.EDIT:
                entity.future_code = new_code
                entity.future_ind = True
                entity.future_action = FutureAction.EDIT
            else:
                entity.future_code = None
                entity.future_ind = False
                entity.future_action = FutureAction.DELETE

            entity.version += 1
            self._write_entity(entity)
            logger.debug("Proposed %s for %s", action.value, key)
            return entity

    def propose_new(
        self,
        language: str,
        kind: EntityKind,
        name: str,
        file_path: str,
        code: str,
        salt: str = "",
    ) -> Entity:
        """Propose a brand-new entity that has no location yet.

        The key comes from ``new_entity_key`` so repeating the request gives
        the same key (and therefore ``InvalidTransition`` on the second try).
        """
        key = new_entity_key(language, kind, name, file_path, salt)
        entity = self.propose(key, FutureAction.CREATE, code)
        assert entity is not None
        return entity

    def revert(self, key: str) -> bool:
        """Drop the pending proposal on *key*.

        Returns True if anything changed.  Raises ``InvalidTransition`` when
        the key does not exist.
        """
        with self._lock, self.conn:
            entity = self._get(key)
            if entity is None:
                raise InvalidTransition(key, "cannot revert an entity that does not exist")
            return self._revert(entity)

    def revert_all(self) -> int:
        with self._lock, self.conn:
            reverted = sum(1 for entity in self._pending() if self._revert(entity))
        if reverted:
            logger.info("Reverted %d pending change(s)", reverted)
        return reverted

    def _revert(self, entity: Entity) -> bool:
        if not entity.is_pending:
            return False
        if entity.future_action is FutureAction.CREATE:
            self._delete_entities([entity.key])
            return True
        entity.future_code = None
        entity.future_ind = entity.current_ind
        entity.future_action = None
        entity.version += 1
        self._write_entity(entity)
        return True

    # ------------------------------------------------------------------
    # Promotion
    # ------------------------------------------------------------------

    def promote_all(self) -> PromotionResult:
        """Commit every pending future state into current state.

        One transaction: either every pending entity is promoted or, on
        error, none is.  PendingDelete entities are removed with their edges.
        Line ranges of edited entities are left as they were until the file
        is re-ingested.
        """
        created = edited = deleted = 0
        with self._lock, self.conn:
            doomed: List[str] = []
            for entity in self._pending():
                if entity.future_action is FutureAction.DELETE:
                    doomed.append(entity.key)
                    deleted += 1
                    continue
                if entity.future_action is FutureAction.CREATE:
                    created += 1
                else:
                    edited += 1
                entity.current_code = entity.future_code
                entity.future_code = None
                entity.current_ind = True
                entity.future_ind = True
                entity.future_action = None
                entity.version += 1
                self._write_entity(entity)
            self._delete_entities(doomed)

        result = PromotionResult(created=created, edited=edited, deleted=deleted)
        logger.info(
            "Promoted %d change(s): %d created, %d edited, %d deleted",
            result.total, created, edited, deleted,
        )
        return result

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def _get(self, key: str) -> Optional[Entity]:
        row = self.conn.execute("SELECT * FROM entities WHERE key = ?", (key,)).fetchone()
        return self._row_to_entity(row) if row else None

    def _pending(self) -> List[Entity]:
        rows = self.conn.execute(
            "SELECT * FROM entities WHERE future_action IS NOT NULL ORDER BY key",
        ).fetchall()
        return [self._row_to_entity(r) for r in rows]

    def get_entity(self, key: str) -> Optional[Entity]:
        with self._lock:
            return self._get(key)

    def pending(self) -> List[Entity]:
        """Entities with a proposed change, ascending by key."""
        with self._lock:
            return self._pending()

    def read(self, predicate: str = "", relation: str = "entities") -> List[Any]:
        """Entities (or edges) matching *predicate*; see ``codegraph_core.query``.

        The predicate is parsed before any row is scanned, so a malformed
        one raises ``QueryError`` without touching the store.
        """
        if relation == "entities":
            expr = parse_predicate(predicate, ENTITY_FIELDS)
            with self._lock:
                rows = self.conn.execute("SELECT * FROM entities ORDER BY key").fetchall()
                entities = [self._row_to_entity(r) for r in rows]
            return [e for e in entities if expr.evaluate(e.to_record())]
        if relation == "edges":
            expr = parse_predicate(predicate, EDGE_FIELDS)
            with self._lock:
                rows = self.conn.execute(
                    "SELECT * FROM edges ORDER BY from_key, edge_type, to_key",
                ).fetchall()
                edges = [self._row_to_edge(r) for r in rows]
            return [e for e in edges if expr.evaluate(e.to_record())]
        raise QueryError(predicate, f"unknown relation {relation!r}")

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            entity_count = self.conn.execute("SELECT COUNT(*) FROM entities").fetchone()[0]
            edge_count = self.conn.execute("SELECT COUNT(*) FROM edges").fetchone()[0]
            file_count = self.conn.execute("SELECT COUNT(DISTINCT file_path) FROM entities").fetchone()[0]
            kinds = self.conn.execute(
                "SELECT entity_kind, COUNT(*) FROM entities GROUP BY entity_kind ORDER BY entity_kind",
            ).fetchall()
            actions = self.conn.execute(
                "SELECT future_action, COUNT(*) FROM entities "
                "WHERE future_action IS NOT NULL GROUP BY future_action ORDER BY future_action",
            ).fetchall()
        return {
            "entities": entity_count,
            "edges": edge_count,
            "files": file_count,
            "by_kind": {row[0]: row[1] for row in kinds},
            "pending": {row[0]: row[1] for row in actions},
        }

    # ------------------------------------------------------------------
    # Graph traversal
    # ------------------------------------------------------------------

    def forward_dependencies(
        self, key: str, edge_types: Optional[Iterable[EdgeType]] = None,
    ) -> List[Edge]:
        """Edges leaving *key* (what it depends on)."""
        return self._adjacent("from_key", key, edge_types)

    def reverse_dependencies(
        self, key: str, edge_types: Optional[Iterable[EdgeType]] = None,
    ) -> List[Edge]:
        """Edges arriving at *key* (who depends on it)."""
        return self._adjacent("to_key", key, edge_types)

    def _adjacent(self, column: str, key: str, edge_types: Optional[Iterable[EdgeType]]) -> List[Edge]:
        with self._lock:
            rows = self.conn.execute(
                f"SELECT * FROM edges WHERE {column} = ? ORDER BY from_key, edge_type, to_key",
                (key,),
            ).fetchall()
        edges = [self._row_to_edge(r) for r in rows]
        if edge_types is not None:
            wanted = {EdgeType(t) for t in edge_types}
            edges = [e for e in edges if e.edge_type in wanted]
        return edges

    def blast_radius(
        self,
        key: str,
        max_hops: int = 3,
        edge_types: Optional[Iterable[EdgeType]] = None,
    ) -> List[Tuple[str, int]]:
        """Entities that transitively depend on *key*, with their hop count.

        Breadth-first over reverse edges with a visited set, so dependency
        cycles terminate.  ``contains`` edges are skipped unless listed in
        *edge_types*.  Sorted by distance, then key; *key* itself excluded.
        """
        if max_hops < 1:
            raise ValueError(f"max_hops must be >= 1, got {max_hops}")
        if edge_types is None:
            edge_types = [t for t in EdgeType if t is not EdgeType.CONTAINS]
        wanted = list(edge_types)

        visited: Set[str] = {key}
        found: Dict[str, int] = {}
        frontier = deque([(key, 0)])
        while frontier:
            current, depth = frontier.popleft()
            if depth >= max_hops:
                continue
            for edge in self.reverse_dependencies(current, wanted):
                if edge.from_key in visited:
                    continue
                visited.add(edge.from_key)
                found[edge.from_key] = depth + 1
                frontier.append((edge.from_key, depth + 1))

        return sorted(found.items(), key=lambda item: (item[1], item[0]))


# ===================================================================
# Helpers
# ===================================================================

def _check_collisions(batch: Sequence[FileExtraction]) -> None:
    seen: Dict[str, List[str]] = {}
    for result in batch:
        for entity in result.entities:
            seen.setdefault(entity.key, []).append(f"{entity.file_path}:{entity.line_range}")
    for key in sorted(seen):
        if len(seen[key]) > 1:
            raise KeyCollision(key, seen[key])


def _refresh(previous: Entity, fresh: Entity) -> Entity:
    """Fresh current-state fields with *previous*'s pending proposal kept."""
    merged = Entity(
        key=fresh.key,
        language=fresh.language,
        entity_kind=fresh.entity_kind,
        name=fresh.name,
        file_path=fresh.file_path,
        line_range=fresh.line_range,
        interface_signature=fresh.interface_signature,
        entity_class=fresh.entity_class,
        current_code=fresh.current_code,
        version=previous.version,
    )
    if previous.future_action in (FutureAction.EDIT, FutureAction.CREATE):
        # A pending Create whose key now shows up in source has been applied
        # with different surroundings; keep it as an edit of what is there
        merged.future_code = previous.future_code
        merged.future_action = FutureAction.EDIT
    elif previous.future_action is FutureAction.DELETE:
        merged.future_ind = False
        merged.future_action = FutureAction.DELETE

    changed = (
        merged.current_code != previous.current_code
        or merged.interface_signature != previous.interface_signature
        or merged.entity_class != previous.entity_class
        or merged.future_action != previous.future_action
        or not previous.current_ind
    )
    if changed:
        merged.version += 1
    return merged


def _new_entity(key: str) -> Entity:
    """Empty PendingCreate row whose metadata is recovered from *key*."""
    try:
        parts = parse_key(key)
        kind = EntityKind(parts.kind)
    except ValueError as exc:
        raise InvalidTransition(key, f"cannot Create from malformed key ({exc})") from None
    if parts.is_external or parts.is_file_placeholder:
        raise InvalidTransition(key, "placeholder keys cannot be created")
    return Entity(
        key=key,
        language=parts.language,
        entity_kind=kind,
        name=parts.name,
        file_path=parts.file_path,
        line_range=parts.line_range,
        current_code=None,
        current_ind=False,
        future_ind=True,
        future_action=FutureAction.CREATE,
        version=1,
    )
