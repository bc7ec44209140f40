"""Embedding provider backed by the Cohere embed API."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace
from enum import Enum

import requests

from distill.embedding import (
    EmbeddingError,
    EmptyInputError,
    InvalidAPIKeyError,
    Provider,
    ProviderConfig,
    ProviderType,
    RateLimitedError,
    register_factory,
)

DEFAULT_BASE_URL = "https://api.cohere.ai/v1"
DEFAULT_MODEL = "embed-english-v3.0"
DEFAULT_TIMEOUT = 30.0

MODEL_DIMENSIONS = {
    "embed-english-v3.0": 1024,
    "embed-multilingual-v3.0": 1024,
    "embed-english-light-v3.0": 384,
}


class InputType(str, Enum):
    """How Cohere treats the input for retrieval tasks."""

    SEARCH_DOCUMENT = "search_document"
    SEARCH_QUERY = "search_query"
    CLASSIFICATION = "classification"
    CLUSTERING = "clustering"


@dataclass
class CohereConfig:
    """Cohere client settings; ``timeout`` is in seconds."""

    api_key: str = ""
    model: str = ""
    input_type: InputType | str = ""
    timeout: float = 0.0


class CohereClient(Provider):
    """Embeds text through the Cohere HTTP API."""

    def __init__(self, config: CohereConfig) -> None:
        if not config.api_key:
            raise ValueError("cohere API key is required")
        config = replace(config)
        if not config.model:
            config.model = DEFAULT_MODEL
        if not config.input_type:
            config.input_type = InputType.SEARCH_DOCUMENT
        if config.timeout <= 0:
            config.timeout = DEFAULT_TIMEOUT
        self.config = config
        self._dimension = MODEL_DIMENSIONS.get(config.model, 0)

    def embed(self, text: str) -> list[float]:
        if not text:
            raise EmptyInputError()
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed ``texts`` in a single request."""
        if len(texts) == 0:
            return []

        input_type = self.config.input_type
        if isinstance(input_type, InputType):
            input_type = input_type.value

        try:
            response = requests.post(
                f"{DEFAULT_BASE_URL}/embed",
                json={"texts": list(texts), "model": self.config.model, "input_type": input_type},
                headers={"Authorization": f"Bearer {self.config.api_key}"},
                timeout=self.config.timeout,
            )
        except requests.RequestException as err:
            raise EmbeddingError(f"cohere request: {err}") from err

        if response.status_code == 429:
            raise RateLimitedError()
        if response.status_code == 401:
            raise InvalidAPIKeyError()
        if response.status_code != 200:
            raise EmbeddingError(f"cohere {response.status_code}: {response.text}")

        try:
            payload = response.json()
            embeddings = [[float(v) for v in row] for row in payload.get("embeddings") or []]
        except (ValueError, TypeError, AttributeError) as err:
            raise EmbeddingError(f"decode response: {err}") from err

        if len(embeddings) != len(texts):
            raise EmbeddingError(f"expected {len(texts)} embeddings, got {len(embeddings)}")
        return embeddings

    def dimension(self) -> int:
        """Return the dimension of the configured model, or 0 if unknown."""
        return self._dimension

    def model_name(self) -> str:
        return self.config.model


def factory(config: ProviderConfig) -> CohereClient:
    """Build a Cohere client from a generic provider configuration."""
    return CohereClient(CohereConfig(api_key=config.api_key, model=config.model))


register_factory(ProviderType.COHERE, factory)