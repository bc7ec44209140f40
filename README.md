# distill

A library of building blocks for keeping LLM context small and relevant:

- `distill.memory_store`: `SQLiteStore`, a SQLite-backed memory store with
  write-time semantic deduplication, conflict reporting, tag filtering,
  expiry and supersession, and recall ranked by similarity and recency under
  a result and token budget.
- `distill.memory_models`: the request, result, event and configuration
  dataclasses used by the store, its errors, and helpers such as
  `generate_id`, `encode_embedding`, `decode_embedding` and `estimate_tokens`.
- `distill.decay`: `DecayWorker`, which compresses ageing memories
  (full text → summary → keywords → evicted), plus `extract_keywords`.
- `distill.embedding`: the `Provider` interface, a `CachedProvider`
  wrapper and a factory registry (`register_factory`, `new_provider`,
  `supported_providers`).
- `distill.ollama_provider`, `distill.openai_provider`,
  `distill.cohere_provider`: HTTP clients for those embedding services.
- `distill.vectors`: cosine, Euclidean and dot-product helpers, normalising,
  adding, scaling and averaging vectors.
- `distill.graph`: a dependency graph with blast-radius queries and a
  builder that reads Go import statements.
- `distill.logsetup`: structured logging in JSON or key=value text.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Memory store

```python
from distill.memory_models import MemoryConfig, StoreRequest, StoreEntry, RecallRequest
from distill.memory_store import SQLiteStore

with SQLiteStore(":memory:", MemoryConfig()) as store:
    store.store(StoreRequest(entries=[
        StoreEntry(text="Auth uses JWT with RS256", embedding=[1.0, 0.0], tags=["auth"]),
    ]))
    result = store.recall(RecallRequest(query="auth", query_embedding=[1.0, 0.0]))
    for memory in result.memories:
        print(memory.relevance, memory.text)
```

Pass a file path instead of `":memory:"` to persist the store.

- `store` skips entries with empty text. An entry whose cosine distance to an
  existing, unexpired memory is below `dedup_threshold` (default 0.15) is not
  stored; the existing memory is refreshed and counted in `deduplicated`.
  Entries closer than `conflict_threshold` (default 0.35) are stored and
  listed in `conflicts`.
- `recall` needs a `query` or a `query_embedding`, otherwise it raises
  `InvalidQueryError`. Relevance mixes similarity and recency by
  `recency_weight`, adds 0.1 for a matching `boost_tags` entry and 0.05 for
  each `task_context` match on source or text, and is capped at 1.0. Results
  obey `max_results` (default 10), `max_tokens` and `min_relevance`. Expired
  memories and those past `expires_at` are left out unless
  `include_expired` is set. The result carries a `cache_hint` listing entries
  with relevance of at least 0.7, and the highest sensitivity returned.
- `forget` deletes memories matching all given `ids`, `tags` and
  `older_than`; with no criteria it deletes nothing.
- `expire` marks memories expired; `supersede` expires one and records its
  replacement, raising `NotFoundError` or `AlreadyExpiredError`.
- `stats` returns counts by state, decay level and source.
- `on_lifecycle_event` registers handlers that receive `MemoryEvent`s on
  expiry, compression and eviction.

Entries stored with `auto_classify` get a sensitivity level from the
`classifier` callable given to `SQLiteStore`, if any; the package ships no
classifier of its own.

## Decay

```python
from distill.decay import DecayWorker

worker = DecayWorker(store, MemoryConfig())
worker.run_once()   # a single pass
worker.start()      # passes every decay_interval in a background thread
worker.stop()
```

Each pass evicts keyword-level memories not referenced for `evict_age`,
turns summaries older than `keywords_age` into up to 20 keywords, and turns
full texts older than `summary_age` into summaries. A zero age disables that
step. The default summariser keeps about a fifth of the sentences, chosen by
word frequency; pass `summarize=` to use your own.

## Embedding providers

```python
from distill.embedding import ProviderConfig, ProviderType, new_provider
import distill.ollama_provider  # registers the "ollama" factory

provider = new_provider(ProviderConfig(type=ProviderType.OLLAMA))
vector = provider.embed("hello world")
```

Importing a provider module registers its factory; `new_provider` raises
`LookupError` for a built-in type whose module has not been imported and
`ValueError` for an empty or unknown type. Custom providers subclass
`Provider` and are registered with `register_factory`. Providers are wrapped
in a `CachedProvider` unless `cache_size` is negative (0 means 10000
entries). Provider failures raise `EmbeddingError` or one of its subclasses
(`EmptyInputError`, `RateLimitedError`, `InvalidAPIKeyError`,
`ContextTooLongError`).

## Dependency graph

```python
from distill.graph import build_from_go_files

graph = build_from_go_files("path/to/repo")
print(graph.blast_radius(["pkg/util/util.go"], 0).summary())
```

`blast_radius` walks dependents breadth-first (a `max_depth` of 0 means no
limit) and ranks affected nodes by an impact score that halves per level.
`stats` reports counts, maximum degrees and the five most depended-upon nodes.

## Logging

```python
from distill.logsetup import LogConfig, LogFormat, new_logger, with_component

logger = with_component(new_logger(LogConfig(level="debug", format=LogFormat.TEXT)), "dedup")
logger.info("request completed", path="/v1/dedupe", latency_ms=14)
```

## What this package does not do

It is a library only: it has no command-line program, no HTTP server, and no
upload to external vector databases. Storage is limited to the local SQLite
memory store.