"""Embedding provider backed by a local Ollama server."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace

import requests

from distill.embedding import (
    EmbeddingError,
    EmptyInputError,
    Provider,
    ProviderConfig,
    ProviderType,
    register_factory,
)

DEFAULT_BASE_URL = "http://localhost:11434"
DEFAULT_MODEL = "nomic-embed-text"
DEFAULT_TIMEOUT = 60.0


@dataclass
class OllamaConfig:
    """Ollama client settings; ``timeout`` is in seconds."""

    base_url: str = ""
    model: str = ""
    timeout: float = 0.0


class OllamaClient(Provider):
    """Embeds text through the Ollama HTTP API."""

    def __init__(self, config: OllamaConfig | None = None) -> None:
        config = replace(config) if config is not None else OllamaConfig()
        if not config.base_url:
            config.base_url = DEFAULT_BASE_URL
        if not config.model:
            config.model = DEFAULT_MODEL
        if config.timeout <= 0:
            config.timeout = DEFAULT_TIMEOUT
        self.config = config

    def embed(self, text: str) -> list[float]:
        if not text:
            raise EmptyInputError()

        try:
            response = requests.post(
                f"{self.config.base_url}/api/embeddings",
                json={"model": self.config.model, "prompt": text},
                timeout=self.config.timeout,
            )
        except requests.RequestException as err:
            raise EmbeddingError(f"ollama request: {err}") from err

        if response.status_code != 200:
            raise EmbeddingError(f"ollama {response.status_code}: {response.text}")

        try:
            payload = response.json()
            values = payload.get("embedding") or []
            embedding = [float(v) for v in values]
        except (ValueError, TypeError, AttributeError) as err:
            raise EmbeddingError(f"decode response: {err}") from err

        if not embedding:
            raise EmbeddingError("ollama returned empty embedding")
        return embedding

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed texts one at a time; Ollama has no batch endpoint."""
        results = []
        for index, text in enumerate(texts):
            try:
                results.append(self.embed(text))
            except EmbeddingError as err:
                raise EmbeddingError(f"embed[{index}]: {err}") from err
        return results

    def dimension(self) -> int:
        """Return 0: the dimension depends on the model and is known only at runtime."""
        return 0

    def model_name(self) -> str:
        return self.config.model


def factory(config: ProviderConfig) -> OllamaClient:
    """Build an Ollama client from a generic provider configuration."""
    return OllamaClient(OllamaConfig(base_url=config.base_url, model=config.model))


register_factory(ProviderType.OLLAMA, factory)