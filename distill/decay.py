"""Periodic compression of aging memories: full text, then summary, then keywords, then eviction."""

from __future__ import annotations

import logging
import math
import re
import threading
from collections import Counter
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from distill.memory_models import DecayLevel, MemoryConfig
from distill.memory_store import SQLiteStore

_log = logging.getLogger(__name__)

MAX_KEYWORDS = 20
MIN_KEYWORD_BYTES = 4
SUMMARY_KEEP_RATIO = 0.2
MIN_SUMMARY_LENGTH = 20

_TRIM_CHARS = ".,;:!?\"'()[]{}"
_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")
_WORD = re.compile(r"[A-Za-z0-9]+")

_STOP_WORDS = frozenset(
    {
        "that", "this", "with", "from",
        "have", "been", "were", "they",
        "their", "which", "would", "there",
        "about", "could", "other", "into",
        "more", "some", "than", "them",
        "very", "when", "what", "your",
        "also", "each", "does", "will",
        "just", "should", "because", "these",
    }
)


def is_stop_word(word: str) -> bool:
    """Return True for common English stop words (lower case)."""
    return word in _STOP_WORDS


def extract_keywords(text: str) -> str:
    """Return up to 20 distinct significant words, lower-cased and comma separated.

    Words shorter than four bytes and stop words are dropped.
    """
    keywords: list[str] = []
    seen: set[str] = set()
    for word in text.split():
        lower = word.strip(_TRIM_CHARS).lower()
        if len(lower.encode("utf-8")) < MIN_KEYWORD_BYTES:
            continue
        if is_stop_word(lower) or lower in seen:
            continue
        seen.add(lower)
        keywords.append(lower)
    return ", ".join(keywords[:MAX_KEYWORDS])


def _extract_summary(text: str) -> str:
    """Keep about a fifth of the sentences, chosen by content-word frequency, in order."""
    if len(text) < MIN_SUMMARY_LENGTH:
        return text
    sentences = [s for s in _SENTENCE_BREAK.split(text.strip()) if s]
    if len(sentences) <= 1:
        return text

    def content_words(sentence: str) -> list[str]:
        return [
            w
            for w in (m.lower() for m in _WORD.findall(sentence))
            if len(w) >= MIN_KEYWORD_BYTES and not is_stop_word(w)
        ]

    frequencies = Counter(w for s in sentences for w in content_words(s))

    def score(sentence: str) -> float:
        words = content_words(sentence)
        if not words:
            return 0.0
        return sum(frequencies[w] for w in words) / math.sqrt(len(words))

    keep = max(1, round(len(sentences) * SUMMARY_KEEP_RATIO))
    ranked = sorted(range(len(sentences)), key=lambda i: (-score(sentences[i]), i))
    chosen = sorted(ranked[:keep])
    summary = " ".join(sentences[i] for i in chosen)
    return summary or text


class DecayWorker:
    """Compresses and evicts aging memories of a store.

    Each pass evicts keyword-level memories older than ``evict_age``, turns
    summaries older than ``keywords_age`` into keywords and full texts older
    than ``summary_age`` into summaries. A zero age disables that step.
    """

    def __init__(
        self,
        store: SQLiteStore,
        config: MemoryConfig | None = None,
        summarize: Callable[[str], str] | None = None,
    ) -> None:
        self.store = store
        self.config = config if config is not None else MemoryConfig()
        self._summarize = summarize if summarize is not None else _extract_summary
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Run decay passes in a background thread every ``decay_interval``."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="memory-decay", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the background thread and wait for it to finish."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def _run(self) -> None:
        interval = max(self.config.decay_interval.total_seconds(), 0.001)
        while not self._stop.wait(interval):
            try:
                self.run_once()
            except Exception:  # keep the loop alive; the next pass retries
                _log.exception("memory decay pass failed")

    def run_once(self) -> None:
        """Execute a single decay pass."""
        now = datetime.now(timezone.utc)
        zero = timedelta(0)
        if self.config.evict_age > zero:
            self.store.evict_before(now - self.config.evict_age)
        if self.config.keywords_age > zero:
            self.store.compress_before(
                now - self.config.keywords_age,
                DecayLevel.SUMMARY,
                DecayLevel.KEYWORDS,
                extract_keywords,
            )
        if self.config.summary_age > zero:
            self.store.compress_before(
                now - self.config.summary_age,
                DecayLevel.FULL,
                DecayLevel.SUMMARY,
                self._summarize,
            )