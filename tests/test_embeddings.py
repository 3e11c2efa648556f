import asyncio
import json
import os

import httpx

os.environ.setdefault("DB_BACKEND", "sqlite")
os.environ.setdefault("VECTOR_BACKEND", "none")

from core.services.memory_embeddings import EmbeddingCircuitBreaker, OpenAIEmbeddingProvider


def _provider(handler) -> OpenAIEmbeddingProvider:
    return OpenAIEmbeddingProvider(
        "sk-test",
        transport=httpx.MockTransport(handler),
        breaker=EmbeddingCircuitBreaker(failure_threshold=3, cooldown_seconds=60),
    )


def test_async_client_is_pooled_and_closed():
    inputs = []

    def handler(request):
        assert request.headers["Authorization"] == "Bearer sk-test"
        inputs.append(json.loads(request.content)["input"])
        return httpx.Response(200, json={"data": [{"embedding": [0.1, 0.2, 0.3]}]})

    provider = _provider(handler)

    async def run():
        first = await provider.embed("apple")
        client = provider._async_client
        second = await provider.embed("banana")
        assert provider._async_client is client
        await provider.aclose()
        return first, second, client

    first, second, client = asyncio.run(run())

    assert first.available and second.available
    assert first.vector == [0.1, 0.2, 0.3]
    assert inputs == ["apple", "banana"]
    assert client.is_closed
    assert provider._async_client is None


def test_client_error_is_unavailable_not_raised():
    provider = _provider(lambda request: httpx.Response(400, json={"error": "bad"}))

    async def run():
        try:
            return await provider.embed("apple")
        finally:
            await provider.aclose()

    result = asyncio.run(run())

    assert not result.available
    assert result.reason == "status 400"
    assert provider._breaker.status()["consecutive_failures"] == 1


def test_sync_embedding_uses_pooled_client():
    provider = _provider(
        lambda request: httpx.Response(200, json={"data": [{"embedding": [1.0, 0.0]}]})
    )

    assert provider.embed_sync("apple").vector == [1.0, 0.0]
    client = provider._client
    assert provider.embed_sync("banana").available
    assert provider._client is client

    provider.close()
    assert client.is_closed


def test_malformed_response_is_unavailable():
    provider = _provider(lambda request: httpx.Response(200, json={"data": []}))

    result = provider.embed_sync("apple")

    assert not result.available
    assert result.reason == "malformed response"
    provider.close()
