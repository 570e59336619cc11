# src/aicoder/llm/client.py

from __future__ import annotations

import logging
import time
from typing import Any

import httpx
import openai
from openai import OpenAI

from ..core.ports import ChatMessage, PartialSink
from ..errors import AicoderError, ErrorKind, ProviderError, ProviderUnavailableError
from ..tasks.task_models import AbortToken
from .types import CompletionResult, Provider, RequestConfig, TokenUsage, count_tokens

logger = logging.getLogger(__name__)

# Local OpenAI-compatible servers accept any key, but the SDK insists on one.
_PLACEHOLDER_KEYS = {Provider.LMSTUDIO: "lm-studio"}


def _is_auth_error(exc: Exception) -> bool:
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return True
    return exc.__class__.__name__ in {
        "AuthenticationError",
        "PermissionDeniedError",
        "UnauthorizedError",
    }


def _is_rate_limit_error(exc: Exception) -> bool:
    if isinstance(exc, openai.RateLimitError):
        return True
    return exc.__class__.__name__ in {"RateLimitError", "TooManyRequestsError"}


def _is_timeout_error(exc: Exception) -> bool:
    if isinstance(exc, (openai.APITimeoutError, httpx.TimeoutException)):
        return True
    return exc.__class__.__name__ in {"Timeout", "ConnectTimeout", "ReadTimeout", "WriteTimeout"}


def _is_connection_error(exc: Exception) -> bool:
    if isinstance(exc, (openai.APIConnectionError, httpx.TransportError)):
        return True
    return exc.__class__.__name__ in {"APIConnectionError", "ConnectError"}


def _is_not_found_error(exc: Exception) -> bool:
    # OpenAI-compatible SDK often uses NotFoundError for HTTP 404
    return isinstance(exc, openai.NotFoundError) or exc.__class__.__name__ == "NotFoundError"


def _make_timeout(connect_s: float, read_s: float, deadline: float | None) -> httpx.Timeout:
    if deadline is not None:
        read_s = max(0.05, min(read_s, deadline - time.monotonic()))
    return httpx.Timeout(connect=connect_s, read=read_s, write=10.0, pool=connect_s)


def _close_stream(stream: Any) -> None:
    """
    Best-effort close for streaming responses.
    Not all SDK versions expose close().
    """
    close = getattr(stream, "close", None)
    if not callable(close):
        return
    try:
        close()
    except Exception:
        logger.debug("Closing completion stream failed", exc_info=True)


def _chunk_text(chunk: Any) -> str:
    try:
        delta = getattr(chunk.choices[0], "delta", None)
    except (AttributeError, IndexError, TypeError):
        return ""
    content = getattr(delta, "content", None) if delta is not None else None
    return content or ""


def _chunk_usage(chunk: Any) -> TokenUsage | None:
    usage = getattr(chunk, "usage", None)
    if usage is None:
        return None
    return TokenUsage(
        prompt_tokens=int(getattr(usage, "prompt_tokens", 0) or 0),
        completion_tokens=int(getattr(usage, "completion_tokens", 0) or 0),
    )


def friendly_llm_error_message(err: Exception, *, provider: Provider, model: str) -> CompletionResult:
    """Classify an SDK/transport error into a FAILED result with a readable reason."""
    if isinstance(err, AicoderError):
        return CompletionResult.failed(str(err), err.kind)
    if _is_auth_error(err):
        return CompletionResult.failed(
            f"{provider.value}: authentication failed. Check your API key (AICODER_API_KEY).",
            ErrorKind.PROVIDER_ERROR,
        )
    if _is_not_found_error(err):
        return CompletionResult.failed(f"{provider.value}: model not available: {model}", ErrorKind.PROVIDER_ERROR)
    if _is_rate_limit_error(err):
        return CompletionResult.failed(f"{provider.value}: rate-limited. Try again later.", ErrorKind.PROVIDER_ERROR)
    if _is_timeout_error(err):
        return CompletionResult.failed(
            f"{provider.value}: network timeout. Try again later or change models.",
            ErrorKind.PROVIDER_UNAVAILABLE,
        )
    if _is_connection_error(err):
        return CompletionResult.failed(
            f"{provider.value}: cannot connect to the API ({err.__class__.__name__}).",
            ErrorKind.PROVIDER_UNAVAILABLE,
        )
    msg = str(err).strip() or err.__class__.__name__
    return CompletionResult.failed(f"{provider.value}: {msg}", ErrorKind.PROVIDER_ERROR)


class OpenAICompatibleClient:
    """
    Streaming chat completions for OpenAI-compatible endpoints
    (OpenAI, LM Studio, OpenRouter).

    IMPORTANT:
    - No secrets required at construction; the SDK client is created lazily.
    - Automatic SDK retries are disabled: a task gets exactly one attempt.
    """

    def __init__(
            self,
            *,
            provider: Provider,
            base_url: str,
            api_key: str | None,
            extra_headers: dict[str, str] | None = None,
            connect_timeout: float = 5.0,
            read_timeout: float = 60.0,
            client: Any = None,
    ) -> None:
        self.provider = provider
        self.base_url = base_url
        self._api_key = api_key or _PLACEHOLDER_KEYS.get(provider)
        self._extra_headers = dict(extra_headers or {})
        self._connect_timeout = connect_timeout
        self._read_timeout = read_timeout
        self._client = client

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client

        if not self._api_key or not str(self._api_key).strip():
            raise ProviderError(f"{self.provider.value}: API key is not set. Set AICODER_API_KEY in your .env.")
        if not (self.base_url or "").strip():
            raise ProviderUnavailableError(f"{self.provider.value}: base URL is not set. Set AICODER_BASE_URL.")

        self._client = OpenAI(
            base_url=self.base_url,
            api_key=str(self._api_key),
            timeout=_make_timeout(self._connect_timeout, self._read_timeout, None),
            max_retries=0,
        )
        return self._client

    def list_models(self, deadline: float | None = None) -> list[str]:
        """Model ids from the /models endpoint."""
        try:
            client = self._get_client()
            page = client.models.list(timeout=_make_timeout(self._connect_timeout, self._read_timeout, deadline))
            return sorted(str(m.id) for m in page)
        except AicoderError:
            raise
        except Exception as e:
            logger.info("LLM: model list failed (%s)", e.__class__.__name__)
            failure = friendly_llm_error_message(e, provider=self.provider, model="-")
            if failure.error_kind is ErrorKind.PROVIDER_UNAVAILABLE:
                raise ProviderUnavailableError(failure.reason) from e
            raise ProviderError(failure.reason) from e

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

        pieces: list[str] = []
        usage: TokenUsage | None = None
        stream = None
        t0 = time.monotonic()

        logger.info("LLM: provider=%s model=%s messages=%d", self.provider.value, model, len(messages))
        try:
            client = self._get_client()
            stream = client.chat.completions.create(
                model=model,
                messages=messages,
                stream=True,
                # Ask for the trailing usage chunk (empty `choices`).
                stream_options={"include_usage": True},
                temperature=config.temperature,
                max_tokens=config.max_tokens,
                extra_headers=self._extra_headers or None,
                timeout=_make_timeout(self._connect_timeout, self._read_timeout, deadline),
            )

            for chunk in stream:
                if abort_token.is_set():
                    logger.info("LLM: aborted mid-stream after %.2fs", time.monotonic() - t0)
                    return CompletionResult.cancelled()
                if deadline is not None and time.monotonic() >= deadline:
                    return CompletionResult.timed_out()

                usage = _chunk_usage(chunk) or usage
                content = _chunk_text(chunk)
                if content:
                    if not pieces:
                        logger.info("LLM: first token from model=%s (%.2fs)", model, time.monotonic() - t0)
                    pieces.append(content)
                    if on_partial is not None:
                        on_partial(content)

        except Exception as e:
            if abort_token.is_set():
                return CompletionResult.cancelled()
            if deadline is not None and time.monotonic() >= deadline:
                return CompletionResult.timed_out()
            logger.info("LLM: error on model=%s (%s)", model, e.__class__.__name__)
            return friendly_llm_error_message(e, provider=self.provider, model=model)

        finally:
            if stream is not None:
                _close_stream(stream)

        text = "".join(pieces)
        if not text:
            return CompletionResult.failed(f"Model returned no content: {model}", ErrorKind.PROVIDER_ERROR)

        if usage is None or usage.total_tokens == 0:
            prompt_text = " ".join(m.get("content", "") for m in messages)
            usage = TokenUsage(prompt_tokens=count_tokens(prompt_text), completion_tokens=count_tokens(text))

        logger.debug("LLM: completed with model=%s", model)
        return CompletionResult.success(text, usage)
