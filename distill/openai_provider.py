"""Embedding provider backed by the OpenAI embeddings API."""

from __future__ import annotations

import time
from collections.abc import Sequence
from dataclasses import dataclass, replace
from typing import Any

import requests

from distill.embedding import (
    ContextTooLongError,
    EmbeddingError,
    EmptyInputError,
    InvalidAPIKeyError,
    Provider,
    ProviderConfig,
    ProviderType,
    RateLimitedError,
    register_factory,
)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "text-embedding-3-small"
DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_DIMENSION = 1536

MODEL_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


@dataclass
class OpenAIConfig:
    """OpenAI client settings; ``timeout`` is in seconds."""

    api_key: str = ""
    model: str = ""
    base_url: str = ""
    timeout: float = 0.0
    max_retries: int = 0


class OpenAIClient(Provider):
    """Embeds text through the OpenAI HTTP API, retrying transient failures."""

    def __init__(self, config: OpenAIConfig) -> None:
        if not config.api_key:
            raise ValueError("API key is required")
        config = replace(config)
        if not config.model:
            config.model = DEFAULT_MODEL
        if not config.base_url:
            config.base_url = DEFAULT_BASE_URL
        if config.timeout <= 0:
            config.timeout = DEFAULT_TIMEOUT
        if config.max_retries <= 0:
            config.max_retries = DEFAULT_MAX_RETRIES
        self.config = config
        self._dimension = MODEL_DIMENSIONS.get(config.model, DEFAULT_DIMENSION)

    def embed(self, text: str) -> list[float]:
        if not text:
            raise EmptyInputError()
        embeddings = self.embed_batch([text])
        if not embeddings:
            raise EmbeddingError("no embedding returned")
        return embeddings[0]

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed ``texts`` in one request; empty texts get zero vectors."""
        if len(texts) == 0:
            raise EmptyInputError()

        valid = [(position, text) for position, text in enumerate(texts) if text]
        if not valid:
            raise EmptyInputError()

        body = {"input": [text for _, text in valid], "model": self.config.model}

        last_error: EmbeddingError | None = None
        for attempt in range(self.config.max_retries + 1):
            if attempt > 0:
                time.sleep(attempt * attempt * 0.1)
            try:
                data = self._request(body)
                break
            except (InvalidAPIKeyError, ContextTooLongError):
                raise
            except EmbeddingError as err:
                last_error = err
        else:
            assert last_error is not None
            raise last_error

        results: list[list[float]] = [[] for _ in texts]
        for index, embedding in data:
            if 0 <= index < len(valid):
                results[valid[index][0]] = embedding

        for position, text in enumerate(texts):
            if not text:
                results[position] = [0.0] * self._dimension
        return results

    def _request(self, body: dict[str, Any]) -> list[tuple[int, list[float]]]:
        try:
            response = requests.post(
                f"{self.config.base_url}/embeddings",
                json=body,
                headers={"Authorization": f"Bearer {self.config.api_key}"},
                timeout=self.config.timeout,
            )
        except requests.RequestException as err:
            raise EmbeddingError(f"request failed: {err}") from err

        if response.status_code != 200:
            raise self._error_for(response)

        try:
            payload = response.json()
            items = payload.get("data") or []
            return [
                (int(item.get("index", 0)), [float(v) for v in item.get("embedding") or []])
                for item in items
            ]
        except (ValueError, TypeError, AttributeError) as err:
            raise EmbeddingError(f"failed to parse response: {err}") from err

    @staticmethod
    def _error_for(response: requests.Response) -> EmbeddingError:
        status = response.status_code
        try:
            payload = response.json()
        except ValueError:
            return EmbeddingError(f"API error: status {status}")
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            return EmbeddingError(f"API error: status {status}")
        error = payload.get("error") or {}
        if not isinstance(error, dict):
            return EmbeddingError(f"API error: status {status}")

        if status == 401:
            return InvalidAPIKeyError()
        if status == 429:
            return RateLimitedError()
        if status == 400 and error.get("code") == "context_length_exceeded":
            return ContextTooLongError()
        return EmbeddingError(f"API error: {error.get('message', '')}")

    def dimension(self) -> int:
        return self._dimension

    def model_name(self) -> str:
        return self.config.model


def factory(config: ProviderConfig) -> OpenAIClient:
    """Build an OpenAI client from a generic provider configuration."""
    return OpenAIClient(
        OpenAIConfig(api_key=config.api_key, model=config.model, base_url=config.base_url)
    )


register_factory(ProviderType.OPENAI, factory)