# src/aicoder/llm/ollama.py

"""Ollama completion client (native /api/chat streaming over httpx)."""

from __future__ import annotations

import json
import logging
import time

import httpx

from ..core.ports import ChatMessage, PartialSink
from ..errors import ErrorKind, ProviderError, ProviderUnavailableError
from ..tasks.task_models import AbortToken
from .types import CompletionResult, CompletionStatus, Provider, RequestConfig, TokenUsage, count_tokens

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:11434"


def _read_timeout(default: float, deadline: float | None) -> float:
    """Never wait on the socket past the task deadline."""
    if deadline is None:
        return default
    return max(0.05, min(default, deadline - time.monotonic()))


class OllamaClient:
    provider = Provider.OLLAMA

    def __init__(
            self,
            *,
            base_url: str = DEFAULT_BASE_URL,
            connect_timeout: float = 3.0,
            read_timeout: float = 120.0,
            transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self._connect_timeout = connect_timeout
        self._read_timeout = read_timeout
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(read_timeout, connect=connect_timeout),
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    @staticmethod
    def _error_body(response: httpx.Response, limit: int = 200) -> str:
        try:
            body = response.read()
            if body:
                return body.decode("utf-8", errors="replace")[:limit]
        except httpx.HTTPError:
            pass
        return "<could not read error body>"

    def list_models(self, deadline: float | None = None) -> list[str]:
        """Installed models, from GET /api/tags."""
        timeout = httpx.Timeout(_read_timeout(self._read_timeout, deadline), connect=self._connect_timeout)
        try:
            response = self._client.get("/api/tags", timeout=timeout)
        except httpx.ConnectError as e:
            raise ProviderUnavailableError(
                f"Ollama not available at {self.base_url} (is it running?). Start it with 'ollama serve'. ({e})"
            ) from e
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(f"Ollama model list failed: {e}") from e

        if response.is_error:
            raise ProviderError(
                f"Ollama API returned error status: {response.status_code} - {self._error_body(response)}"
            )
        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(f"Failed to parse Ollama model list: {e}") from e

        models = data.get("models") if isinstance(data, dict) else None
        return sorted(str(m["name"]) for m in models or [] if isinstance(m, dict) and m.get("name"))

    def _stream(
            self,
            payload: dict,
            abort_token: AbortToken,
            deadline: float | None,
            on_partial: PartialSink | None,
    ) -> CompletionResult:
        timeout = httpx.Timeout(_read_timeout(self._read_timeout, deadline), connect=self._connect_timeout)
        pieces: list[str] = []
        usage: TokenUsage | None = None

        with self._client.stream("POST", "/api/chat", json=payload, timeout=timeout) as response:
            if response.is_error:
                raise ProviderError(
                    f"Ollama API returned error status: {response.status_code} - {self._error_body(response)}"
                )

            for line in response.iter_lines():
                if abort_token.is_set():
                    return CompletionResult.cancelled()
                if deadline is not None and time.monotonic() >= deadline:
                    return CompletionResult.timed_out()
                if not line.strip():
                    continue
                try:
                    data = json.loads(line)
                except json.JSONDecodeError:
                    logger.debug("Skipping malformed Ollama line: %.200s", line)
                    continue

                if data.get("error"):
                    raise ProviderError(f"Ollama error: {data['error']}")

                text = (data.get("message") or {}).get("content") or ""
                if text:
                    pieces.append(text)
                    if on_partial is not None:
                        on_partial(text)

                if data.get("done"):
                    usage = TokenUsage(
                        prompt_tokens=int(data.get("prompt_eval_count") or 0),
                        completion_tokens=int(data.get("eval_count") or 0),
                    )
                    break

        full = "".join(pieces)
        return CompletionResult.success(full, usage)

    def request(
            self,
            model: str,
            messages: list[ChatMessage],
            config: RequestConfig,
            abort_token: AbortToken,
            deadline: float | None = None,
            on_partial: PartialSink | None = None,
    ) -> CompletionResult:
        if abort_token.is_set():
            return CompletionResult.cancelled()

        payload = {
            "model": model,
            "messages": messages,
            "stream": True,
            "options": {
                "temperature": config.temperature,
                "num_predict": config.max_tokens,
            },
        }

        logger.info("Ollama: model=%s messages=%d", model, len(messages))
        t0 = time.monotonic()
        try:
            result = self._stream(payload, abort_token, deadline, on_partial)
        except httpx.ConnectError as e:
            return CompletionResult.failed(
                f"Ollama not available at {self.base_url} (is it running?). "
                f"Start it with 'ollama serve'. ({e})",
                ErrorKind.PROVIDER_UNAVAILABLE,
            )
        except httpx.TimeoutException as e:
            if deadline is not None and time.monotonic() >= deadline:
                return CompletionResult.timed_out()
            return CompletionResult.failed(f"Ollama request timed out ({model}): {e}", ErrorKind.PROVIDER_UNAVAILABLE)
        except httpx.TransportError as e:
            return CompletionResult.failed(f"Ollama stream interrupted ({model}): {e}", ErrorKind.PROVIDER_UNAVAILABLE)
        except ProviderError as e:
            return CompletionResult.failed(str(e), e.kind)

        if result.status is not CompletionStatus.SUCCESS:
            return result

        usage = result.usage
        if usage is None or usage.total_tokens == 0:
            prompt_text = " ".join(m.get("content", "") for m in messages)
            usage = TokenUsage(prompt_tokens=count_tokens(prompt_text), completion_tokens=count_tokens(result.text))
        logger.info("Ollama: completed model=%s in %.2fs (%d tokens)", model, time.monotonic() - t0, usage.total_tokens)
        return CompletionResult.success(result.text, usage)
