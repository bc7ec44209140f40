import pytest

import distill.ollama_provider  # noqa: F401  registers the ollama factory
from distill import embedding
from distill.embedding import (
    CachedProvider,
    EmbeddingError,
    Provider,
    ProviderConfig,
    ProviderType,
    new_provider,
    register_factory,
    supported_providers,
)


class MockProvider(Provider):
    def __init__(self, dim=4):
        self.dim = dim
        self.embed_calls = []
        self.batch_calls = []

    def embed(self, text):
        self.embed_calls.append(text)
        return [float(len(text))] * self.dim

    def embed_batch(self, texts):
        self.batch_calls.append(list(texts))
        return [[float(len(t))] * self.dim for t in texts]

    def dimension(self):
        return self.dim

    def model_name(self):
        return "mock"


class FailingProvider(MockProvider):
    def embed(self, text):
        raise EmbeddingError("boom")

    def embed_batch(self, texts):
        raise EmbeddingError("boom")


def test_register_factory_custom_provider():
    register_factory("mock", lambda cfg: MockProvider(dim=128))
    provider = new_provider(ProviderConfig(type="mock", cache_size=-1))
    assert provider.dimension() == 128
    assert not isinstance(provider, CachedProvider)


def test_new_provider_unknown_type():
    with pytest.raises(ValueError):
        new_provider(ProviderConfig(type="nonexistent"))


def test_new_provider_empty_type():
    with pytest.raises(ValueError):
        new_provider(ProviderConfig())


def test_new_provider_ollama_registered():
    provider = new_provider(ProviderConfig(type=ProviderType.OLLAMA, cache_size=-1))
    assert provider.model_name() == "nomic-embed-text"


def test_new_provider_builtin_type_case_insensitive():
    provider = new_provider(ProviderConfig(type="OLLAMA", cache_size=-1))
    assert provider.model_name() == "nomic-embed-text"


def test_new_provider_builtin_not_registered(monkeypatch):
    monkeypatch.delitem(embedding._FACTORIES, "cohere", raising=False)
    with pytest.raises(LookupError):
        new_provider(ProviderConfig(type=ProviderType.COHERE))


def test_supported_providers():
    assert supported_providers() == ["openai", "ollama", "cohere"]


def test_cached_provider_wraps_when_cache_size_positive():
    register_factory("mock2", lambda cfg: MockProvider(dim=64))
    provider = new_provider(ProviderConfig(type="mock2", cache_size=100))
    assert isinstance(provider, CachedProvider)
    assert provider.dimension() == 64
    assert provider.max_size == 100


def test_default_cache_size_when_zero():
    register_factory("mock3", lambda cfg: MockProvider())
    provider = new_provider(ProviderConfig(type="mock3"))
    assert isinstance(provider, CachedProvider)
    assert provider.max_size == 10000


def test_cached_embed_calls_provider_once():
    inner = MockProvider()
    cached = CachedProvider(inner, 10)
    first = cached.embed("hello")
    second = cached.embed("hello")
    assert first == second == [5.0] * 4
    assert inner.embed_calls == ["hello"]
    assert cached.cache_size() == 1


def test_cached_embed_returns_copy():
    cached = CachedProvider(MockProvider(), 10)
    result = cached.embed("abc")
    result[0] = 99.0
    assert cached.embed("abc") == [3.0] * 4


def test_cache_respects_max_size():
    inner = MockProvider()
    cached = CachedProvider(inner, 2)
    for text in ["a", "bb", "ccc"]:
        cached.embed(text)
    assert cached.cache_size() == 2
    cached.embed("ccc")
    assert inner.embed_calls == ["a", "bb", "ccc", "ccc"]


def test_cached_embed_batch_uses_cache():
    inner = MockProvider(dim=2)
    cached = CachedProvider(inner, 10)
    cached.embed("xy")
    results = cached.embed_batch(["xy", "abc", "z"])
    assert results == [[2.0, 2.0], [3.0, 3.0], [1.0, 1.0]]
    assert inner.batch_calls == [["abc", "z"]]
    assert cached.cache_size() == 3


def test_cached_embed_batch_all_cached_skips_provider():
    inner = MockProvider(dim=1)
    cached = CachedProvider(inner, 10)
    cached.embed_batch(["a", "b"])
    assert cached.embed_batch(["b", "a"]) == [[1.0], [1.0]]
    assert len(inner.batch_calls) == 1


def test_clear_cache():
    inner = MockProvider()
    cached = CachedProvider(inner, 10)
    cached.embed("a")
    cached.clear_cache()
    assert cached.cache_size() == 0
    cached.embed("a")
    assert inner.embed_calls == ["a", "a"]


def test_errors_propagate_and_are_not_cached():
    cached = CachedProvider(FailingProvider(), 10)
    with pytest.raises(EmbeddingError):
        cached.embed("a")
    with pytest.raises(EmbeddingError):
        cached.embed_batch(["a"])
    assert cached.cache_size() == 0


def test_cached_provider_delegates_model_name():
    assert CachedProvider(MockProvider()).model_name() == "mock"