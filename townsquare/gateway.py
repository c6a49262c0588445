"""Gateway to an OpenAI-compatible chat completion and embedding API.

The gateway owns request shaping, timing, and response validation. It does
not retry: a failed call surfaces as :class:`ProviderError` and the caller
(ultimately the scheduler) decides what to do with the tick.
"""

from __future__ import annotations

import asyncio
import http.client
import json
import re
import time
from typing import Any, Iterable, Mapping, Sequence, Union
from urllib import error, request

from .config import Config
from .errors import ConfigurationError, ProviderError
from .logging_utils import debug_enabled, log_llm, preview
from .schemas import (
    ChatMessage,
    CompletionOptions,
    CompletionResult,
    EmbeddingBatchResult,
    EmbeddingResult,
    TokenUsage,
)

_CHAT_ENDPOINT = "/chat/completions"
_EMBEDDINGS_ENDPOINT = "/embeddings"
# Extra time granted to the worker thread beyond the socket timeout
_TIMEOUT_GRACE_SECONDS = 5.0
_NEWLINES = re.compile(r"\r?\n")

MessageLike = Union[ChatMessage, Mapping[str, Any]]


def _perform_request(
    url: str,
    payload: dict[str, Any],
    api_key: str,
    timeout: float,
) -> dict[str, Any]:
    """Execute the blocking HTTP POST and return the decoded JSON body."""

    data = json.dumps(payload).encode("utf-8")
    req = request.Request(
        url,
        data=data,
        headers={
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        },
        method="POST",
    )

    try:
        with request.urlopen(req, timeout=timeout) as resp:
            raw = resp.read().decode("utf-8")
    except error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="ignore") if exc.fp else ""
        raise ProviderError(
            f"Unexpected result from provider: {exc.code} {exc.reason}",
            status=exc.code,
            body=body,
        ) from exc
    except error.URLError as exc:
        raise ProviderError(f"Could not reach provider at {url}: {exc.reason}") from exc
    except TimeoutError as exc:
        raise ProviderError(f"Provider request to {url} timed out after {timeout}s") from exc
    except (OSError, http.client.HTTPException) as exc:
        # Connection resets and truncated reads surface mid-response
        raise ProviderError(f"Connection to {url} failed: {exc!r}") from exc
    except UnicodeDecodeError as exc:
        raise ProviderError("Provider returned a body that is not UTF-8.") from exc

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ProviderError("Provider returned non-JSON response.", body=raw[:500]) from exc

    if not isinstance(parsed, dict):
        raise ProviderError("Provider returned an unexpected JSON document.", body=raw[:500])
    return parsed


def normalize_embedding_input(text: str) -> str:
    """Collapse literal newlines to spaces; embeddings are sensitive to them."""

    return _NEWLINES.sub(" ", text)


def _parse_usage(raw: Any) -> TokenUsage:
    if not isinstance(raw, dict):
        return TokenUsage()
    return TokenUsage(
        prompt_tokens=int(raw.get("prompt_tokens") or 0),
        completion_tokens=int(raw.get("completion_tokens") or 0),
        total_tokens=int(raw.get("total_tokens") or 0),
    )


def _elapsed_ms(start: float) -> int:
    return max(int((time.perf_counter() - start) * 1000), 0)


class LLMGateway:
    """Chat completion and embedding client.

    Every argument falls back to :class:`Config`. The credential is checked
    on each call rather than at construction so a gateway can be built before
    the environment is complete (tests, dry runs).
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        chat_model: str | None = None,
        embedding_model: str | None = None,
        embedding_dimension: int | None = None,
        timeout: float | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else Config.OPENAI_API_KEY
        self.base_url = (base_url or Config.OPENAI_BASE_URL).rstrip("/")
        self.chat_model = chat_model or Config.CHAT_MODEL
        self.embedding_model = embedding_model or Config.EMBEDDING_MODEL
        self.embedding_dimension = embedding_dimension or Config.EMBEDDING_DIMENSION
        self.timeout = timeout or Config.LLM_TIMEOUT_SECONDS

    async def _post(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        if not self.api_key:
            raise ConfigurationError(
                "Missing OPENAI_API_KEY in environment variables. "
                "Set it in the environment or a .env file."
            )

        url = f"{self.base_url}{endpoint}"
        if debug_enabled("DEBUG_LLM"):
            print(f"\n{'='*80}")
            print(f"[LLM REQUEST] POST {url}")
            print(f"{'-'*80}")
            print(json.dumps(payload, indent=2)[:2000])
            print(f"{'='*80}\n")

        try:
            # The socket timeout bounds the request; wait_for bounds the thread hop
            # in case the transport hangs somewhere the socket timeout cannot see.
            return await asyncio.wait_for(
                asyncio.to_thread(_perform_request, url, payload, self.api_key, self.timeout),
                timeout=self.timeout + _TIMEOUT_GRACE_SECONDS,
            )
        except asyncio.TimeoutError as exc:
            raise ProviderError(
                f"Provider call to {endpoint} timed out after {int(self.timeout)}s"
            ) from exc

    async def complete(
        self,
        messages: Sequence[MessageLike],
        options: CompletionOptions | None = None,
    ) -> CompletionResult:
        """Generate one assistant message for ``messages``.

        Raises:
            ConfigurationError: no credential configured
            ProviderError: non-success status, transport failure, or a
                response without generated content
        """

        chat = [
            message if isinstance(message, ChatMessage) else ChatMessage.model_validate(message)
            for message in messages
        ]
        if not chat:
            raise ValueError("A completion request needs at least one message.")

        payload: dict[str, Any] = (options or CompletionOptions()).model_dump(exclude_none=True)
        payload["model"] = payload.get("model") or self.chat_model
        payload["messages"] = [message.model_dump() for message in chat]

        log_llm(f"[Gateway] Chat completion via {payload['model']} ({len(chat)} messages)...")
        start = time.perf_counter()
        raw = await self._post(_CHAT_ENDPOINT, payload)
        latency_ms = _elapsed_ms(start)

        choices = raw.get("choices")
        content = None
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            message = choices[0].get("message") or {}
            if isinstance(message, dict):
                content = message.get("content")
        if not isinstance(content, str) or not content:
            raise ProviderError(
                "Unexpected result from provider: completion has no content",
                body=json.dumps(raw)[:500],
            )

        if debug_enabled("DEBUG_LLM"):
            print(f"[LLM RESPONSE] ({latency_ms} ms) {preview(content, 200)}\n")

        return CompletionResult(
            content=content,
            usage=_parse_usage(raw.get("usage")),
            latency_ms=latency_ms,
        )

    async def embed_batch(self, texts: Iterable[str]) -> EmbeddingBatchResult:
        """Embed ``texts`` in one request; result *i* belongs to input *i*.

        Providers tag each vector with its input index and are free to return
        them in any order, so the response is sorted by index and checked to
        cover exactly ``0..N-1`` before it is handed back.
        """

        inputs = [normalize_embedding_input(text) for text in texts]
        if not inputs:
            return EmbeddingBatchResult(embeddings=[], latency_ms=0)

        log_llm(f"[Gateway] Embedding {len(inputs)} text(s) via {self.embedding_model}...")
        start = time.perf_counter()
        raw = await self._post(
            _EMBEDDINGS_ENDPOINT,
            {"model": self.embedding_model, "input": inputs},
        )
        latency_ms = _elapsed_ms(start)

        data = raw.get("data")
        if not isinstance(data, list) or len(data) != len(inputs):
            received = len(data) if isinstance(data, list) else 0
            raise ProviderError(
                f"Unexpected number of embeddings: expected {len(inputs)}, got {received}",
                body=json.dumps(raw)[:500],
            )

        try:
            ordered = sorted(data, key=lambda item: item["index"])
        except (KeyError, TypeError) as exc:
            raise ProviderError("Embedding response items are missing their index") from exc

        indices = [item["index"] for item in ordered]
        if indices != list(range(len(inputs))):
            raise ProviderError(f"Embedding response has invalid indices: {indices}")

        embeddings: list[list[float]] = []
        for item in ordered:
            vector = item.get("embedding")
            if not isinstance(vector, list) or len(vector) != self.embedding_dimension:
                size = len(vector) if isinstance(vector, list) else 0
                raise ProviderError(
                    f"Embedding {item['index']} has dimension {size}, "
                    f"expected {self.embedding_dimension}"
                )
            try:
                embeddings.append([float(value) for value in vector])
            except (TypeError, ValueError) as exc:
                raise ProviderError(
                    f"Embedding {item['index']} contains a non-numeric value"
                ) from exc

        return EmbeddingBatchResult(
            embeddings=embeddings,
            usage=_parse_usage(raw.get("usage")),
            latency_ms=latency_ms,
        )

    async def embed_one(self, text: str) -> EmbeddingResult:
        """Embed a single text."""

        batch = await self.embed_batch([text])
        return EmbeddingResult(
            embedding=batch.embeddings[0],
            usage=batch.usage,
            latency_ms=batch.latency_ms,
        )


__all__ = ["LLMGateway", "normalize_embedding_input"]
