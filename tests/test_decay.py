import time
from datetime import timedelta

import pytest

from distill.decay import DecayWorker, extract_keywords, is_stop_word
from distill.memory_models import (
    DecayLevel,
    MemoryConfig,
    MemoryEventType,
    RecallRequest,
    StoreEntry,
    StoreRequest,
)
from distill.memory_store import SQLiteStore

LONG_TEXT = (
    "The authentication service uses JWT tokens with RS256 signing. "
    "It validates tokens on every request. The token expiry is set to 24 hours. "
    "Refresh tokens are stored in Redis with a 7-day TTL. "
    "The service also supports OAuth2 for third-party integrations."
)
SHORT_TEXT = (
    "The authentication service uses JWT tokens with RS256 signing. "
    "It validates tokens on every request. The token expiry is set to 24 hours."
)

TINY = timedelta(milliseconds=1)


def make_config(summary=TINY, keywords=TINY, evict=timedelta(0)):
    return MemoryConfig(
        dedup_threshold=0.15,
        summary_age=summary,
        keywords_age=keywords,
        evict_age=evict,
        decay_interval=timedelta(milliseconds=20),
    )


@pytest.fixture
def make_store():
    stores = []

    def build(config):
        store = SQLiteStore(":memory:", config)
        stores.append(store)
        return store

    yield build
    for store in stores:
        store.close()


def store_text(store, text):
    store.store(StoreRequest(entries=[StoreEntry(text=text)]))
    time.sleep(0.02)


def test_decay_worker_full_to_summary_to_keywords(make_store):
    config = make_config()
    store = make_store(config)
    store_text(store, LONG_TEXT)

    worker = DecayWorker(store, config)
    worker.run_once()
    assert store.stats().by_decay_level.get(int(DecayLevel.SUMMARY)) == 1

    worker.run_once()
    assert store.stats().by_decay_level.get(int(DecayLevel.KEYWORDS)) == 1


def test_compression_event(make_store):
    config = make_config()
    store = make_store(config)
    events = []
    store.on_lifecycle_event(events.append)
    store_text(store, SHORT_TEXT)

    DecayWorker(store, config).run_once()

    assert events
    assert events[0].type == MemoryEventType.COMPRESSED
    assert events[0].tokens_before > events[0].tokens_after
    assert events[0].compression_level == DecayLevel.SUMMARY


def test_summary_keeps_an_original_sentence(make_store):
    config = make_config(keywords=timedelta(0))
    store = make_store(config)
    store_text(store, LONG_TEXT)

    DecayWorker(store, config).run_once()

    recall = store.recall(RecallRequest(query="auth", max_results=5))
    assert len(recall.memories) == 1
    summary = recall.memories[0].text
    assert len(summary) < len(LONG_TEXT)
    assert summary in LONG_TEXT


def test_eviction_event(make_store):
    config = make_config(evict=TINY)
    store = make_store(config)
    events = []
    store.on_lifecycle_event(events.append)
    store_text(store, "Old keywords-level memory that should be evicted soon.")

    worker = DecayWorker(store, config)
    worker.run_once()
    worker.run_once()
    worker.run_once()

    evicted = [e for e in events if e.type == MemoryEventType.EVICTED]
    assert len(evicted) == 1
    assert evicted[0].tokens_after == 0
    assert evicted[0].tokens_before > 0
    assert store.stats().total_memories == 0


def test_zero_ages_disable_decay(make_store):
    config = make_config(summary=timedelta(0), keywords=timedelta(0), evict=timedelta(0))
    store = make_store(config)
    store_text(store, LONG_TEXT)

    DecayWorker(store, config).run_once()

    assert store.stats().by_decay_level == {int(DecayLevel.FULL): 1}


def test_recent_memories_are_not_decayed(make_store):
    config = make_config(summary=timedelta(hours=24), keywords=timedelta(hours=168))
    store = make_store(config)
    store_text(store, LONG_TEXT)

    DecayWorker(store, config).run_once()

    assert store.stats().by_decay_level == {int(DecayLevel.FULL): 1}


def test_custom_summarizer(make_store):
    config = make_config(keywords=timedelta(0))
    store = make_store(config)
    store_text(store, LONG_TEXT)

    DecayWorker(store, config, summarize=lambda text: "short form").run_once()

    recall = store.recall(RecallRequest(query="auth", max_results=5))
    assert [m.text for m in recall.memories] == ["short form"]
    assert recall.memories[0].decay_level == DecayLevel.SUMMARY


def test_start_and_stop_runs_in_background(make_store):
    config = make_config(keywords=timedelta(0))
    store = make_store(config)
    store_text(store, LONG_TEXT)

    worker = DecayWorker(store, config)
    worker.start()
    try:
        deadline = time.monotonic() + 5
        while time.monotonic() < deadline:
            if store.stats().by_decay_level.get(int(DecayLevel.SUMMARY)) == 1:
                break
            time.sleep(0.01)
    finally:
        worker.stop()

    assert store.stats().by_decay_level.get(int(DecayLevel.SUMMARY)) == 1


def test_extract_keywords_filters_short_and_stop_words():
    result = extract_keywords("The quick brown fox jumps over the lazy dog")
    assert result == "quick, brown, jumps, over, lazy"


def test_extract_keywords_deduplicates_and_trims_punctuation():
    assert extract_keywords("Redis, redis; (REDIS) which should matter!") == "redis, matter"


def test_extract_keywords_limits_to_twenty():
    words = [f"word{i:02d}" for i in range(30)]
    result = extract_keywords(" ".join(words)).split(", ")
    assert result == words[:20]


def test_extract_keywords_empty():
    assert extract_keywords("a an the of") == ""


@pytest.mark.parametrize(
    ("word", "expected"),
    [("that", True), ("because", True), ("these", True), ("redis", False), ("That", False)],
)
def test_is_stop_word(word, expected):
    assert is_stop_word(word) is expected