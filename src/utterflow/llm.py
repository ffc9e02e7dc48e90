"""Text-in/text-out LLM client backed by a local Ollama server."""

from __future__ import annotations

import logging
import time
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)


class LLMError(RuntimeError):
    """Raised when a generation request fails or returns an unusable payload."""


class TextGenerator(Protocol):
    async def generate(self, prompt: str, *, num_predict: int = 512) -> str:
        ...


class OllamaClient:
    """Wraps the Ollama REST API; the model is unloaded after every call."""

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "llama3.2",
        *,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self._timeout, transport=self._transport)

    async def generate(self, prompt: str, *, num_predict: int = 512) -> str:
        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "keep_alive": 0,
            "options": {"num_predict": num_predict},
        }
        started = time.monotonic()
        try:
            async with self._client() as client:
                response = await client.post("/api/generate", json=payload)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise LLMError(f"Ollama request failed: {exc}") from exc

        try:
            body = response.json()
            text = body["response"]
        except (ValueError, KeyError, TypeError) as exc:
            raise LLMError("Ollama returned an unparseable response") from exc

        logger.info(
            "Ollama generation finished",
            extra={
                "model": self.model,
                "elapsed": round(time.monotonic() - started, 2),
                "input_tokens": body.get("prompt_eval_count", 0),
                "output_tokens": body.get("eval_count", 0),
            },
        )
        return str(text).strip()

    async def is_available(self) -> bool:
        try:
            async with self._client() as client:
                response = await client.get("/api/tags")
        except httpx.HTTPError:
            return False
        return response.status_code == 200


__all__ = ["LLMError", "OllamaClient", "TextGenerator"]
