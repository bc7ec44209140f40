"""SQLite-backed memory store with write-time deduplication and ranked recall."""

from __future__ import annotations

import json
import sqlite3
import threading
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from typing import Any

from distill.memory_models import (
    AlreadyExpiredError,
    CacheBoundaryHint,
    Conflict,
    DecayLevel,
    ExpireRequest,
    ExpireResult,
    ForgetRequest,
    ForgetResult,
    InvalidQueryError,
    MemoryConfig,
    MemoryEvent,
    MemoryEventType,
    MemoryStats,
    NotFoundError,
    RecalledMemory,
    RecallRequest,
    RecallResult,
    RecallStats,
    SensitiveChunk,
    StoreClosedError,
    StoreRequest,
    StoreResult,
    SupersedeRequest,
    SupersedeResult,
    decode_embedding,
    encode_embedding,
    estimate_tokens,
    generate_id,
)
from distill.vectors import cosine_distance

MemoryEventHandler = Callable[[MemoryEvent], None]
Classifier = Callable[[str], int]

DEFAULT_MAX_RESULTS = 10
DEFAULT_CONFLICT_THRESHOLD = 0.35
STABLE_RELEVANCE = 0.7
BOOST_TAG_BONUS = 0.1
TASK_CONTEXT_BONUS = 0.05

_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS memories (
    id              TEXT PRIMARY KEY,
    text            TEXT NOT NULL,
    embedding       BLOB,
    source          TEXT DEFAULT '',
    session_id      TEXT DEFAULT '',
    metadata        TEXT DEFAULT '{}',
    decay_level     INTEGER DEFAULT 0,
    sensitivity     INTEGER DEFAULT 0,
    created_at      TEXT NOT NULL,
    last_referenced TEXT NOT NULL,
    access_count    INTEGER DEFAULT 0,
    expired         INTEGER DEFAULT 0,
    expired_at      TEXT DEFAULT '',
    superseded_by   TEXT DEFAULT '',
    expires_at      TEXT DEFAULT ''
);
CREATE TABLE IF NOT EXISTS memory_tags (
    memory_id TEXT NOT NULL,
    tag       TEXT NOT NULL,
    PRIMARY KEY (memory_id, tag),
    FOREIGN KEY (memory_id) REFERENCES memories(id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_memory_tags_tag ON memory_tags(tag);
CREATE INDEX IF NOT EXISTS idx_memories_decay ON memories(decay_level);
CREATE INDEX IF NOT EXISTS idx_memories_created ON memories(created_at);
CREATE INDEX IF NOT EXISTS idx_memories_referenced ON memories(last_referenced);
CREATE INDEX IF NOT EXISTS idx_memories_expired ON memories(expired);
"""

_ADDED_COLUMNS = (
    ("expired", "INTEGER DEFAULT 0"),
    ("expired_at", "TEXT DEFAULT ''"),
    ("superseded_by", "TEXT DEFAULT ''"),
    ("expires_at", "TEXT DEFAULT ''"),
    ("sensitivity", "INTEGER DEFAULT 0"),
)


def _format_time(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime(_TIME_FORMAT)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(text: str | None) -> datetime | None:
    if not text:
        return None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _placeholders(values: Sequence[Any]) -> str:
    return ",".join("?" * len(values))


class SQLiteStore:
    """A persistent memory store on SQLite.

    Use ``":memory:"`` for an in-memory database or a file path to persist.
    An optional ``classifier`` maps text to a sensitivity level for entries
    stored with ``auto_classify``.
    """

    def __init__(
        self,
        dsn: str = ":memory:",
        config: MemoryConfig | None = None,
        classifier: Classifier | None = None,
    ) -> None:
        self.config = config if config is not None else MemoryConfig()
        self._classifier = classifier
        self._handlers: list[MemoryEventHandler] = []
        self._lock = threading.RLock()
        connection = sqlite3.connect(
            dsn or ":memory:", isolation_level=None, check_same_thread=False
        )
        try:
            connection.execute("PRAGMA journal_mode=WAL")
            connection.execute("PRAGMA foreign_keys = ON")
            self._migrate(connection)
        except sqlite3.Error:
            connection.close()
            raise
        self._db: sqlite3.Connection | None = connection

    @staticmethod
    def _migrate(connection: sqlite3.Connection) -> None:
        connection.executescript(_SCHEMA)
        for name, definition in _ADDED_COLUMNS:
            try:
                connection.execute(f"ALTER TABLE memories ADD COLUMN {name} {definition}")
            except sqlite3.OperationalError:
                pass

    @property
    def _conn(self) -> sqlite3.Connection:
        if self._db is None:
            raise StoreClosedError()
        return self._db

    def __enter__(self) -> SQLiteStore:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the database; later calls raise :class:`StoreClosedError`."""
        with self._lock:
            if self._db is not None:
                self._db.close()
                self._db = None

    def on_lifecycle_event(self, handler: MemoryEventHandler) -> None:
        """Register a handler called synchronously, in order, on lifecycle transitions."""
        self._handlers.append(handler)

    def _emit(self, event: MemoryEvent) -> None:
        for handler in self._handlers:
            handler(event)

    def _count(self, sql: str = "SELECT COUNT(*) FROM memories", params: Sequence[Any] = ()) -> int:
        return int(self._conn.execute(sql, params).fetchone()[0])

    def store(self, request: StoreRequest) -> StoreResult:
        """Add entries, skipping empty text and semantic duplicates.

        A duplicate refreshes the existing memory instead. Entries close to
        existing ones are stored and reported as conflicts.
        """
        with self._lock:
            conn = self._conn
            result = StoreResult()
            for entry in request.entries:
                if not entry.text:
                    continue

                if entry.embedding:
                    duplicate, similar = self._find_similar(entry.embedding)
                    if duplicate is not None:
                        conn.execute(
                            "UPDATE memories SET last_referenced = ?, "
                            "access_count = access_count + 1 WHERE id = ?",
                            (_format_time(_now()), duplicate),
                        )
                        result.deduplicated += 1
                        continue
                    result.conflicts.extend(
                        Conflict(
                            new_text=entry.text,
                            existing_id=existing_id,
                            existing_text=existing_text,
                            distance=distance,
                        )
                        for existing_id, existing_text, distance in similar
                    )

                memory_id = generate_id()
                now = _format_time(_now())
                expires_at = _format_time(entry.expires_at) if entry.expires_at else ""
                level = int(entry.sensitivity)
                if entry.auto_classify and self._classifier is not None:
                    level = max(level, int(self._classifier(entry.text)))

                conn.execute(
                    "INSERT INTO memories (id, text, embedding, source, session_id, metadata, "
                    "decay_level, sensitivity, created_at, last_referenced, access_count, "
                    "expires_at) VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?, ?, 0, ?)",
                    (
                        memory_id,
                        entry.text,
                        encode_embedding(entry.embedding),
                        entry.source,
                        request.session_id,
                        json.dumps(entry.metadata, default=str),
                        level,
                        now,
                        now,
                        expires_at,
                    ),
                )
                conn.executemany(
                    "INSERT OR IGNORE INTO memory_tags (memory_id, tag) VALUES (?, ?)",
                    [(memory_id, tag) for tag in entry.tags],
                )

                for conflict in result.conflicts:
                    if not conflict.new_id:
                        conflict.new_id = memory_id
                result.stored += 1

            result.total_memories = self._count()
            return result

    def _find_similar(
        self, embedding: Sequence[float]
    ) -> tuple[str | None, list[tuple[str, str, float]]]:
        """Return the ID of a duplicate (if any) and the conflicting memories."""
        conflict_threshold = self.config.conflict_threshold
        if conflict_threshold <= 0:
            conflict_threshold = DEFAULT_CONFLICT_THRESHOLD

        rows = self._conn.execute(
            "SELECT id, text, embedding FROM memories WHERE embedding IS NOT NULL AND expired = 0"
        ).fetchall()
        similar: list[tuple[str, str, float]] = []
        for memory_id, text, blob in rows:
            existing = decode_embedding(blob)
            if not existing:
                continue
            distance = cosine_distance(embedding, existing)
            if distance < self.config.dedup_threshold:
                return memory_id, []
            if distance < conflict_threshold:
                similar.append((memory_id, text, distance))
        return None, similar

    def _load_tags(self, memory_id: str) -> list[str]:
        rows = self._conn.execute(
            "SELECT tag FROM memory_tags WHERE memory_id = ?", (memory_id,)
        ).fetchall()
        return [tag for (tag,) in rows]

    def recall(self, request: RecallRequest) -> RecallResult:
        """Return memories ranked by similarity and recency within the request's limits."""
        if not request.query and not request.query_embedding:
            raise InvalidQueryError()

        max_results = request.max_results if request.max_results > 0 else DEFAULT_MAX_RESULTS
        recency_weight = min(1.0, max(0.0, request.recency_weight))

        sql = (
            "SELECT m.id, m.text, m.embedding, m.source, m.decay_level, m.sensitivity, "
            "m.last_referenced FROM memories m"
        )
        conditions: list[str] = []
        args: list[Any] = []
        if not request.include_expired:
            conditions.append("m.expired = 0")
            conditions.append("(m.expires_at = '' OR m.expires_at > ?)")
            args.append(_format_time(_now()))
        if request.tags:
            conditions.append(
                "m.id IN (SELECT memory_id FROM memory_tags WHERE tag IN "
                f"({_placeholders(request.tags)}))"
            )
            args.extend(request.tags)
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)

        with self._lock:
            rows = self._conn.execute(sql, args).fetchall()
            boost_tags = set(request.boost_tags)
            task_context = request.task_context.lower()
            now = _now()
            candidates: list[RecalledMemory] = []

            for memory_id, text, blob, source, decay_level, sensitivity, ref_text in rows:
                tags = self._load_tags(memory_id)
                last_ref = _parse_time(ref_text)

                similarity = 0.0
                if request.query_embedding:
                    existing = decode_embedding(blob)
                    if existing:
                        similarity = 1.0 - cosine_distance(request.query_embedding, existing)

                if last_ref is None:
                    recency = 0.0
                else:
                    age_hours = (now - last_ref).total_seconds() / 3600.0
                    recency = 1.0 / (1.0 + age_hours / 24.0) if age_hours > 0 else 1.0

                relevance = (1.0 - recency_weight) * similarity + recency_weight * recency
                if boost_tags and any(tag in boost_tags for tag in tags):
                    relevance += BOOST_TAG_BONUS
                if task_context:
                    if source and source.lower() in task_context:
                        relevance += TASK_CONTEXT_BONUS
                    if task_context in text.lower():
                        relevance += TASK_CONTEXT_BONUS
                relevance = min(relevance, 1.0)

                if request.min_relevance > 0 and relevance < request.min_relevance:
                    continue

                candidates.append(
                    RecalledMemory(
                        id=memory_id,
                        text=text,
                        relevance=relevance,
                        source=source or "",
                        tags=tags,
                        decay_level=DecayLevel(decay_level),
                        sensitivity=int(sensitivity or 0),
                        last_referenced=last_ref,
                    )
                )

            candidates.sort(key=lambda memory: -memory.relevance)

            results: list[RecalledMemory] = []
            token_count = 0
            for memory in candidates:
                if len(results) >= max_results:
                    break
                tokens = estimate_tokens(memory.text)
                if request.max_tokens > 0 and token_count + tokens > request.max_tokens:
                    break
                results.append(memory)
                token_count += tokens

            if results:
                self._touch([memory.id for memory in results])

        max_sensitivity = max((m.sensitivity for m in results), default=0)
        return RecallResult(
            memories=results,
            stats=RecallStats(
                candidates=len(candidates),
                deduplicated=len(candidates) - len(results),
                returned=len(results),
                token_count=token_count,
            ),
            cache_hint=_cache_boundary_hint(results),
            max_sensitivity=max(max_sensitivity, 0),
            sensitive_chunks=[
                SensitiveChunk(chunk_id=m.id, sensitivity=m.sensitivity)
                for m in results
                if m.sensitivity > 0
            ],
        )

    def _touch(self, ids: Sequence[str]) -> None:
        self._conn.execute(
            "UPDATE memories SET last_referenced = ?, access_count = access_count + 1 "
            f"WHERE id IN ({_placeholders(ids)})",
            [_format_time(_now()), *ids],
        )

    def forget(self, request: ForgetRequest) -> ForgetResult:
        """Delete memories matching every given criterion; none given deletes nothing."""
        conditions: list[str] = []
        args: list[Any] = []
        if request.ids:
            conditions.append(f"id IN ({_placeholders(request.ids)})")
            args.extend(request.ids)
        if request.tags:
            conditions.append(
                "id IN (SELECT memory_id FROM memory_tags WHERE tag IN "
                f"({_placeholders(request.tags)}))"
            )
            args.extend(request.tags)
        if request.older_than is not None:
            conditions.append("created_at < ?")
            args.append(_format_time(request.older_than))
        if not conditions:
            return ForgetResult()

        with self._lock:
            cursor = self._conn.execute(
                "DELETE FROM memories WHERE " + " AND ".join(conditions), args
            )
            return ForgetResult(removed=cursor.rowcount, total_memories=self._count())

    def expire(self, request: ExpireRequest) -> ExpireResult:
        """Mark memories as expired and emit an expired event for each requested ID."""
        if not request.ids:
            return ExpireResult()
        with self._lock:
            cursor = self._conn.execute(
                "UPDATE memories SET expired = 1, expired_at = ? "
                f"WHERE expired = 0 AND id IN ({_placeholders(request.ids)})",
                [_format_time(_now()), *request.ids],
            )
            affected = cursor.rowcount
        for memory_id in request.ids:
            self._emit(MemoryEvent(type=MemoryEventType.EXPIRED, entry_id=memory_id))
        return ExpireResult(expired=affected)

    def supersede(self, request: SupersedeRequest) -> SupersedeResult:
        """Expire ``old_id`` and record ``new_id`` as its replacement.

        Raises :class:`NotFoundError` if the memory does not exist and
        :class:`AlreadyExpiredError` if it is already expired.
        """
        if not request.old_id:
            raise NotFoundError()
        with self._lock:
            cursor = self._conn.execute(
                "UPDATE memories SET expired = 1, expired_at = ?, superseded_by = ? "
                "WHERE id = ? AND expired = 0",
                (_format_time(_now()), request.new_id, request.old_id),
            )
            if cursor.rowcount == 0:
                exists = self._count(
                    "SELECT COUNT(*) FROM memories WHERE id = ?", (request.old_id,)
                )
                if exists == 0:
                    raise NotFoundError()
                raise AlreadyExpiredError()
        self._emit(MemoryEvent(type=MemoryEventType.EXPIRED, entry_id=request.old_id))
        return SupersedeResult(superseded=True)

    def stats(self) -> MemoryStats:
        """Return counts by state, decay level and source, and the creation range."""
        with self._lock:
            conn = self._conn
            stats = MemoryStats(
                total_memories=self._count(),
                expired_count=self._count("SELECT COUNT(*) FROM memories WHERE expired = 1"),
            )
            stats.active_count = stats.total_memories - stats.expired_count
            stats.by_decay_level = {
                int(level): int(count)
                for level, count in conn.execute(
                    "SELECT decay_level, COUNT(*) FROM memories GROUP BY decay_level"
                )
            }
            stats.by_source = {
                source: int(count)
                for source, count in conn.execute(
                    "SELECT source, COUNT(*) FROM memories WHERE source != '' GROUP BY source"
                )
            }
            oldest, newest = conn.execute(
                "SELECT MIN(created_at), MAX(created_at) FROM memories"
            ).fetchone()
            stats.oldest_memory = _parse_time(oldest)
            stats.newest_memory = _parse_time(newest)
            return stats

    def evict_before(self, cutoff: datetime) -> int:
        """Delete keyword-level memories last referenced before ``cutoff``.

        Emits an evicted event for each one and returns how many were removed.
        """
        with self._lock:
            rows = self._conn.execute(
                "SELECT id, text FROM memories WHERE last_referenced < ? AND decay_level >= ?",
                (_format_time(cutoff), int(DecayLevel.KEYWORDS)),
            ).fetchall()
            for memory_id, _ in rows:
                self._conn.execute("DELETE FROM memories WHERE id = ?", (memory_id,))
        for memory_id, text in rows:
            self._emit(
                MemoryEvent(
                    type=MemoryEventType.EVICTED,
                    entry_id=memory_id,
                    tokens_before=estimate_tokens(text),
                    tokens_after=0,
                )
            )
        return len(rows)

    def compress_before(
        self,
        cutoff: datetime,
        from_level: DecayLevel,
        to_level: DecayLevel,
        transform: Callable[[str], str],
    ) -> int:
        """Rewrite memories at ``from_level`` last referenced before ``cutoff``.

        Each text is replaced by ``transform(text)`` and moved to ``to_level``;
        a compressed event is emitted for each. Returns how many were changed.
        """
        with self._lock:
            rows = self._conn.execute(
                "SELECT id, text FROM memories WHERE last_referenced < ? AND decay_level = ?",
                (_format_time(cutoff), int(from_level)),
            ).fetchall()
            changes = []
            for memory_id, text in rows:
                compressed = transform(text)
                self._conn.execute(
                    "UPDATE memories SET text = ?, decay_level = ? WHERE id = ?",
                    (compressed, int(to_level), memory_id),
                )
                changes.append((memory_id, text, compressed))
        for memory_id, text, compressed in changes:
            self._emit(
                MemoryEvent(
                    type=MemoryEventType.COMPRESSED,
                    entry_id=memory_id,
                    tokens_before=estimate_tokens(text),
                    tokens_after=estimate_tokens(compressed),
                    compression_level=DecayLevel(to_level),
                )
            )
        return len(changes)


def _cache_boundary_hint(memories: Sequence[RecalledMemory]) -> CacheBoundaryHint | None:
    if not memories:
        return None
    stable = [m.id for m in memories if m.relevance >= STABLE_RELEVANCE]
    if not stable:
        return None
    total = sum(m.relevance for m in memories)
    return CacheBoundaryHint(stable_entry_ids=stable, confidence_score=total / len(memories))