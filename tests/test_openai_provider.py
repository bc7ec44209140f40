import json

import pytest
import responses

from distill.embedding import (
    ContextTooLongError,
    EmbeddingError,
    EmptyInputError,
    InvalidAPIKeyError,
    ProviderConfig,
    RateLimitedError,
    new_provider,
)
from distill.openai_provider import (
    DEFAULT_BASE_URL,
    DEFAULT_MODEL,
    OpenAIClient,
    OpenAIConfig,
)

BASE = "https://api.example.com/v1"
URL = f"{BASE}/embeddings"


@pytest.fixture
def rsps():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as mock:
        yield mock


def make_client(**kwargs):
    return OpenAIClient(OpenAIConfig(api_key="placeholder", base_url=BASE, **kwargs))


def test_missing_api_key_raises():
    with pytest.raises(ValueError):
        OpenAIClient(OpenAIConfig())


def test_defaults():
    client = OpenAIClient(OpenAIConfig(api_key="placeholder"))
    assert client.model_name() == DEFAULT_MODEL == "text-embedding-3-small"
    assert client.config.base_url == DEFAULT_BASE_URL
    assert client.config.max_retries == 3
    assert client.dimension() == 1536


@pytest.mark.parametrize(
    "model,dim",
    [("text-embedding-3-large", 3072), ("text-embedding-ada-002", 1536), ("unknown-model", 1536)],
)
def test_model_dimensions(model, dim):
    assert make_client(model=model).dimension() == dim


def test_embed_success_and_request(rsps):
    rsps.add(responses.POST, URL, json={"data": [{"index": 0, "embedding": [0.5, 0.25]}]})
    client = make_client()
    assert client.embed("hello") == [0.5, 0.25]
    request = rsps.calls[0].request
    assert request.headers["Authorization"] == "Bearer placeholder"
    body = json.loads(request.body)
    assert body == {"input": ["hello"], "model": DEFAULT_MODEL}


def test_embed_empty_input():
    with pytest.raises(EmptyInputError):
        make_client().embed("")


def test_embed_batch_empty_inputs():
    client = make_client()
    with pytest.raises(EmptyInputError):
        client.embed_batch([])
    with pytest.raises(EmptyInputError):
        client.embed_batch(["", ""])


def test_embed_batch_preserves_order_and_fills_empty(rsps):
    rsps.add(
        responses.POST,
        URL,
        json={
            "data": [
                {"index": 1, "embedding": [2.0]},
                {"index": 0, "embedding": [1.0]},
            ]
        },
    )
    client = make_client()
    results = client.embed_batch(["a", "", "b"])
    assert results[0] == [1.0]
    assert results[2] == [2.0]
    assert len(results[1]) == client.dimension()
    assert all(v == 0.0 for v in results[1])
    assert json.loads(rsps.calls[0].request.body)["input"] == ["a", "b"]


def test_invalid_key_not_retried(rsps):
    rsps.add(responses.POST, URL, status=401, json={"error": {"message": "bad key"}})
    with pytest.raises(InvalidAPIKeyError):
        make_client().embed("hello")
    assert len(rsps.calls) == 1


def test_context_too_long_not_retried(rsps):
    rsps.add(
        responses.POST,
        URL,
        status=400,
        json={"error": {"message": "too long", "code": "context_length_exceeded"}},
    )
    with pytest.raises(ContextTooLongError):
        make_client().embed("hello")
    assert len(rsps.calls) == 1


def test_rate_limited_retried_then_raised(rsps):
    rsps.add(responses.POST, URL, status=429, json={"error": {"message": "slow down"}})
    with pytest.raises(RateLimitedError):
        make_client(max_retries=1).embed("hello")
    assert len(rsps.calls) == 2


def test_api_error_message(rsps):
    rsps.add(responses.POST, URL, status=500, json={"error": {"message": "boom"}})
    with pytest.raises(EmbeddingError, match="API error: boom"):
        make_client(max_retries=1).embed("hello")


def test_api_error_non_json(rsps):
    rsps.add(responses.POST, URL, status=502, body="gateway")
    with pytest.raises(EmbeddingError, match="status 502"):
        make_client(max_retries=1).embed("hello")


def test_retry_then_success(rsps):
    rsps.add(responses.POST, URL, status=500, json={"error": {"message": "boom"}})
    rsps.add(responses.POST, URL, json={"data": [{"index": 0, "embedding": [0.75]}]})
    assert make_client(max_retries=1).embed("hello") == [0.75]
    assert len(rsps.calls) == 2


def test_invalid_json_response(rsps):
    rsps.add(responses.POST, URL, body="{invalid", status=200)
    with pytest.raises(EmbeddingError, match="failed to parse response"):
        make_client(max_retries=1).embed("hello")


def test_connection_error_wrapped(rsps):
    with pytest.raises(EmbeddingError, match="request failed"):
        make_client(max_retries=1).embed("hello")


def test_factory_through_registry():
    provider = new_provider(
        ProviderConfig(type="openai", api_key="placeholder", base_url=BASE, cache_size=-1)
    )
    assert isinstance(provider, OpenAIClient)
    assert provider.config.base_url == BASE
    assert provider.model_name() == DEFAULT_MODEL


def test_factory_without_key_raises():
    with pytest.raises(ValueError):
        new_provider(ProviderConfig(type="openai", cache_size=-1))