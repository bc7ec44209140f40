"""Text embedding providers: the provider interface, an in-memory cache and a registry."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum

DEFAULT_CACHE_SIZE = 10000


class EmbeddingError(Exception):
    """Base class for errors raised by embedding providers."""


class EmptyInputError(EmbeddingError):
    """The input text was empty."""

    def __init__(self, message: str = "empty input text") -> None:
        super().__init__(message)


class RateLimitedError(EmbeddingError):
    """The provider rejected the request because of rate limiting."""

    def __init__(self, message: str = "rate limited by embedding provider") -> None:
        super().__init__(message)


class InvalidAPIKeyError(EmbeddingError):
    """The provider rejected the API key."""

    def __init__(self, message: str = "invalid API key") -> None:
        super().__init__(message)


class ModelNotFoundError(EmbeddingError):
    """The requested embedding model does not exist."""

    def __init__(self, message: str = "embedding model not found") -> None:
        super().__init__(message)


class ContextTooLongError(EmbeddingError):
    """The input text exceeds the model's context length."""

    def __init__(self, message: str = "input text exceeds model context length") -> None:
        super().__init__(message)


class Provider(ABC):
    """A text embedding service."""

    @abstractmethod
    def embed(self, text: str) -> list[float]:
        """Return the embedding of a single text."""

    @abstractmethod
    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Return the embeddings of several texts, in order."""

    @abstractmethod
    def dimension(self) -> int:
        """Return the embedding dimension."""

    @abstractmethod
    def model_name(self) -> str:
        """Return the name of the embedding model."""


class CachedProvider(Provider):
    """Wraps a provider with an in-memory cache keyed by text.

    Once ``max_size`` entries are held, new embeddings are no longer cached.
    """

    def __init__(self, provider: Provider, max_size: int = DEFAULT_CACHE_SIZE) -> None:
        self.provider = provider
        self.max_size = max_size if max_size > 0 else DEFAULT_CACHE_SIZE
        self._cache: dict[str, list[float]] = {}

    def _remember(self, text: str, embedding: Sequence[float]) -> None:
        if len(self._cache) < self.max_size:
            self._cache[text] = list(embedding)

    def embed(self, text: str) -> list[float]:
        cached = self._cache.get(text)
        if cached is not None:
            return list(cached)
        embedding = self.provider.embed(text)
        self._remember(text, embedding)
        return embedding

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        results: list[list[float] | None] = [None] * len(texts)
        uncached: list[str] = []
        uncached_positions: list[int] = []

        for position, text in enumerate(texts):
            cached = self._cache.get(text)
            if cached is not None:
                results[position] = list(cached)
            else:
                uncached.append(text)
                uncached_positions.append(position)

        if uncached:
            embeddings = self.provider.embed_batch(uncached)
            for text, position, embedding in zip(uncached, uncached_positions, embeddings):
                results[position] = embedding
                self._remember(text, embedding)

        return results  # type: ignore[return-value]

    def dimension(self) -> int:
        return self.provider.dimension()

    def model_name(self) -> str:
        return self.provider.model_name()

    def cache_size(self) -> int:
        """Return the number of cached embeddings."""
        return len(self._cache)

    def clear_cache(self) -> None:
        """Drop every cached embedding."""
        self._cache = {}


class ProviderType(str, Enum):
    """Built-in embedding backends."""

    OPENAI = "openai"
    OLLAMA = "ollama"
    COHERE = "cohere"


@dataclass
class ProviderConfig:
    """Settings for building any supported provider.

    ``cache_size`` of 0 means the default cache size; a negative value
    disables the cache.
    """

    type: ProviderType | str = ""
    api_key: str = ""
    model: str = ""
    base_url: str = ""
    cache_size: int = 0


ProviderFactory = Callable[[ProviderConfig], Provider]

_FACTORIES: dict[str, ProviderFactory] = {}

_BUILTIN_MODULES = {
    ProviderType.OPENAI.value: "distill.openai_provider",
    ProviderType.OLLAMA.value: "distill.ollama_provider",
    ProviderType.COHERE.value: "distill.cohere_provider",
}


def _key(provider_type: ProviderType | str) -> str:
    if isinstance(provider_type, ProviderType):
        return provider_type.value
    return str(provider_type)


def register_factory(provider_type: ProviderType | str, factory: ProviderFactory) -> None:
    """Register ``factory`` to build providers of ``provider_type``."""
    _FACTORIES[_key(provider_type)] = factory


def _maybe_cache(provider: Provider, cache_size: int) -> Provider:
    if cache_size < 0:
        return provider
    return CachedProvider(provider, cache_size or DEFAULT_CACHE_SIZE)


def new_provider(config: ProviderConfig) -> Provider:
    """Build a provider from ``config``, wrapped in a cache unless disabled.

    Registered factories are looked up first, so they may override built-ins.
    Built-in types are matched case-insensitively but must have been
    registered by importing their module.
    """
    if not config.type:
        raise ValueError("embedding provider type is required")

    key = _key(config.type)
    factory = _FACTORIES.get(key)
    if factory is None:
        builtin = key.lower()
        if builtin not in _BUILTIN_MODULES:
            raise ValueError(
                f"unknown embedding provider {key!r}; supported: openai, ollama, cohere"
            )
        factory = _FACTORIES.get(builtin)
        if factory is None:
            raise LookupError(
                f"{builtin} provider not registered; import {_BUILTIN_MODULES[builtin]}"
            )

    return _maybe_cache(factory(config), config.cache_size)


def supported_providers() -> list[str]:
    """Return the names of the built-in provider types."""
    return [p.value for p in ProviderType]