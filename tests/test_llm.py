from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from utterflow.llm import LLMError, OllamaClient


def test_generate_posts_non_streaming_request() -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        assert request.url.path == "/api/generate"
        return httpx.Response(200, json={"response": "  cleaned text  ", "eval_count": 3})

    client = OllamaClient("http://ollama.test/", "llama3.2", transport=httpx.MockTransport(handler))

    text = asyncio.run(client.generate("clean this", num_predict=64))

    assert text == "cleaned text"
    assert seen[0]["stream"] is False
    assert seen[0]["keep_alive"] == 0
    assert seen[0]["options"] == {"num_predict": 64}
    assert seen[0]["model"] == "llama3.2"


def test_generate_raises_on_http_error() -> None:
    client = OllamaClient(
        "http://ollama.test",
        transport=httpx.MockTransport(lambda request: httpx.Response(500, text="boom")),
    )

    with pytest.raises(LLMError):
        asyncio.run(client.generate("hi"))


def test_generate_raises_on_malformed_body() -> None:
    client = OllamaClient(
        "http://ollama.test",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"unexpected": True})),
    )

    with pytest.raises(LLMError):
        asyncio.run(client.generate("hi"))


def test_is_available() -> None:
    up = OllamaClient(
        "http://ollama.test",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"models": []})),
    )

    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    down = OllamaClient("http://ollama.test", transport=httpx.MockTransport(refuse))

    assert asyncio.run(up.is_available()) is True
    assert asyncio.run(down.is_available()) is False
