"""Data types, errors and encoding helpers shared by the memory store."""

from __future__ import annotations

import os
import struct
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum, IntEnum
from typing import Any


class MemoryStoreError(Exception):
    """Base class for errors raised by memory stores."""

    default_message = "memory store error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class NotFoundError(MemoryStoreError):
    """The requested memory does not exist."""

    default_message = "memory not found"


class EmptyTextError(MemoryStoreError):
    """An entry was given without text."""

    default_message = "entry text is empty"


class StoreClosedError(MemoryStoreError):
    """The store has been closed."""

    default_message = "memory store is closed"


class InvalidQueryError(MemoryStoreError):
    """A recall was made with neither query text nor query embedding."""

    default_message = "query text is empty"


class AlreadyExpiredError(MemoryStoreError):
    """The memory has already been expired."""

    default_message = "memory is already expired"


class DecayLevel(IntEnum):
    """How compressed a memory is: full text, then summary, then keywords."""

    FULL = 0
    SUMMARY = 1
    KEYWORDS = 2


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Entry:
    """A single memory held by the store."""

    id: str
    text: str
    embedding: list[float] = field(default_factory=list)
    source: str = ""
    tags: list[str] = field(default_factory=list)
    session_id: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    decay_level: DecayLevel = DecayLevel.FULL
    sensitivity: int = 0
    created_at: datetime = field(default_factory=_utcnow)
    last_referenced: datetime = field(default_factory=_utcnow)
    access_count: int = 0
    expired: bool = False
    expired_at: datetime | None = None
    superseded_by: str = ""
    expires_at: datetime | None = None


@dataclass
class StoreEntry:
    """One entry of a store request.

    ``sensitivity`` is a numeric level (0 means none); with ``auto_classify``
    the store may raise it from the text.
    """

    text: str
    embedding: list[float] = field(default_factory=list)
    source: str = ""
    tags: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    expires_at: datetime | None = None
    sensitivity: int = 0
    auto_classify: bool = False


@dataclass
class StoreRequest:
    """Entries to store, optionally tied to a session."""

    entries: list[StoreEntry] = field(default_factory=list)
    session_id: str = ""


@dataclass
class Conflict:
    """A newly stored entry that is close to, but not a duplicate of, an existing one."""

    new_text: str
    existing_id: str
    existing_text: str
    distance: float
    new_id: str = ""


@dataclass
class StoreResult:
    """Outcome of a store operation."""

    stored: int = 0
    merged: int = 0
    deduplicated: int = 0
    total_memories: int = 0
    conflicts: list[Conflict] = field(default_factory=list)


@dataclass
class RecallRequest:
    """Parameters of a recall.

    ``max_results`` of 0 means the store default; ``max_tokens`` and
    ``min_relevance`` of 0 disable those limits.
    """

    query: str = ""
    query_embedding: list[float] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    max_tokens: int = 0
    max_results: int = 0
    recency_weight: float = 0.0
    include_expired: bool = False
    task_context: str = ""
    boost_tags: list[str] = field(default_factory=list)
    min_relevance: float = 0.0


@dataclass
class SensitiveChunk:
    """A recalled memory with non-zero sensitivity."""

    chunk_id: str
    sensitivity: int


@dataclass
class RecalledMemory:
    """A memory returned by recall."""

    id: str
    text: str
    relevance: float
    source: str = ""
    tags: list[str] = field(default_factory=list)
    decay_level: DecayLevel = DecayLevel.FULL
    sensitivity: int = 0
    last_referenced: datetime | None = None


@dataclass
class RecallStats:
    """Metrics of a recall."""

    candidates: int = 0
    deduplicated: int = 0
    returned: int = 0
    token_count: int = 0


class MemoryEventType(str, Enum):
    """Kind of lifecycle transition of a memory entry."""

    STABILIZED = "stabilized"
    COMPRESSED = "compressed"
    EVICTED = "evicted"
    EXPIRED = "expired"


@dataclass
class MemoryEvent:
    """A single lifecycle transition of a memory entry."""

    type: MemoryEventType
    entry_id: str
    tokens_before: int = 0
    tokens_after: int = 0
    compression_level: DecayLevel = DecayLevel.FULL
    occurred_at: datetime = field(default_factory=_utcnow)


@dataclass
class CacheBoundaryHint:
    """Entries likely stable this turn, with the mean recall score (0-1)."""

    stable_entry_ids: list[str] = field(default_factory=list)
    confidence_score: float = 0.0


@dataclass
class RecallResult:
    """Outcome of a recall."""

    memories: list[RecalledMemory] = field(default_factory=list)
    stats: RecallStats = field(default_factory=RecallStats)
    cache_hint: CacheBoundaryHint | None = None
    max_sensitivity: int = 0
    sensitive_chunks: list[SensitiveChunk] = field(default_factory=list)


@dataclass
class ForgetRequest:
    """Criteria for removing memories; all given criteria must match."""

    ids: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    older_than: datetime | None = None


@dataclass
class ForgetResult:
    """Outcome of a forget operation."""

    removed: int = 0
    total_memories: int = 0


@dataclass
class ExpireRequest:
    """Memories to mark as expired."""

    ids: list[str] = field(default_factory=list)


@dataclass
class ExpireResult:
    """Outcome of an expire operation."""

    expired: int = 0


@dataclass
class SupersedeRequest:
    """Marks ``old_id`` as replaced by ``new_id`` (which may be empty)."""

    old_id: str
    new_id: str = ""


@dataclass
class SupersedeResult:
    """Outcome of a supersede operation."""

    superseded: bool = False


@dataclass
class MemoryStats:
    """Aggregate statistics of a memory store."""

    total_memories: int = 0
    expired_count: int = 0
    active_count: int = 0
    by_decay_level: dict[int, int] = field(default_factory=dict)
    by_source: dict[str, int] = field(default_factory=dict)
    oldest_memory: datetime | None = None
    newest_memory: datetime | None = None


@dataclass
class MemoryConfig:
    """Memory store settings.

    Distances below ``dedup_threshold`` are duplicates; those below
    ``conflict_threshold`` are conflicts. A zero age disables that decay step.
    """

    dedup_threshold: float = 0.15
    conflict_threshold: float = 0.35
    decay_enabled: bool = True
    decay_interval: timedelta = timedelta(hours=1)
    summary_age: timedelta = timedelta(hours=24)
    keywords_age: timedelta = timedelta(hours=168)
    evict_age: timedelta = timedelta(hours=720)


def generate_id() -> str:
    """Return a 24-character hex ID: a 4-byte timestamp then 8 random bytes."""
    timestamp = int(time.time()) & 0xFFFFFFFF
    return (timestamp.to_bytes(4, "big") + os.urandom(8)).hex()


def encode_embedding(embedding: list[float]) -> bytes | None:
    """Pack an embedding as little-endian float32; None for an empty one."""
    if not embedding:
        return None
    return struct.pack(f"<{len(embedding)}f", *embedding)


def decode_embedding(blob: bytes | None) -> list[float]:
    """Unpack little-endian float32 values; empty for missing or malformed data."""
    if not blob or len(blob) % 4 != 0:
        return []
    return list(struct.unpack(f"<{len(blob) // 4}f", blob))


def estimate_tokens(text: str) -> int:
    """Return a rough token count: about four bytes of UTF-8 per token."""
    return (len(text.encode("utf-8")) + 3) // 4