# tests/test_openai_client.py

from __future__ import annotations

from types import SimpleNamespace

import httpx
import openai
import pytest

from aicoder.errors import ErrorKind, ProviderError, ProviderUnavailableError
from aicoder.llm.client import OpenAICompatibleClient
from aicoder.llm.types import CompletionStatus, Provider, RequestConfig, TokenUsage
from aicoder.tasks.task_models import AbortToken

MESSAGES = [{"role": "system", "content": "be brief"}, {"role": "user", "content": "hi there"}]


def _chunk(content: str | None = None, usage: TokenUsage | None = None) -> SimpleNamespace:
    choices = [] if content is None else [SimpleNamespace(delta=SimpleNamespace(content=content))]
    raw_usage = None
    if usage is not None:
        raw_usage = SimpleNamespace(prompt_tokens=usage.prompt_tokens, completion_tokens=usage.completion_tokens)
    return SimpleNamespace(choices=choices, usage=raw_usage)


class FakeStream:
    def __init__(self, chunks: list[SimpleNamespace]) -> None:
        self._chunks = chunks
        self.closed = False

    def __iter__(self):
        return iter(self._chunks)

    def close(self) -> None:
        self.closed = True


class FakeCompletions:
    def __init__(self, chunks: list[SimpleNamespace] | None = None, exc: Exception | None = None) -> None:
        self.stream = FakeStream(chunks or [])
        self.exc = exc
        self.kwargs: dict | None = None

    def create(self, **kwargs):
        self.kwargs = kwargs
        if self.exc is not None:
            raise self.exc
        return self.stream


def _client(completions: FakeCompletions, provider: Provider = Provider.OPENAI) -> OpenAICompatibleClient:
    sdk = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return OpenAICompatibleClient(provider=provider, base_url="http://api.test/v1", api_key="k", client=sdk)


def test_streams_chunks_and_closes_stream() -> None:
    completions = FakeCompletions([_chunk("Hel"), _chunk("lo"), _chunk(usage=TokenUsage(9, 2))])
    pieces: list[str] = []

    result = _client(completions).request(
        "gpt-test", MESSAGES, RequestConfig(temperature=0.5, max_tokens=10), AbortToken(), on_partial=pieces.append
    )

    assert result.status is CompletionStatus.SUCCESS
    assert result.text == "Hello"
    assert pieces == ["Hel", "lo"]
    assert result.usage == TokenUsage(9, 2)
    assert completions.stream.closed
    assert completions.kwargs is not None
    assert completions.kwargs["model"] == "gpt-test"
    assert completions.kwargs["stream"] is True
    assert completions.kwargs["temperature"] == 0.5
    assert completions.kwargs["max_tokens"] == 10
    assert completions.kwargs["stream_options"] == {"include_usage": True}


def test_usage_falls_back_to_word_counts() -> None:
    result = _client(FakeCompletions([_chunk("a b c")])).request("m", MESSAGES, RequestConfig(), AbortToken())

    assert result.usage == TokenUsage(prompt_tokens=4, completion_tokens=3)


def test_empty_reply_is_failure() -> None:
    result = _client(FakeCompletions([_chunk("")])).request("m", MESSAGES, RequestConfig(), AbortToken())

    assert result.status is CompletionStatus.FAILED
    assert result.error_kind is ErrorKind.PROVIDER_ERROR


def test_abort_mid_stream_cancels_and_closes() -> None:
    completions = FakeCompletions([_chunk("a"), _chunk("b"), _chunk("c")])
    token = AbortToken()

    result = _client(completions).request("m", MESSAGES, RequestConfig(), token, on_partial=lambda _: token.set())

    assert result.status is CompletionStatus.CANCELLED
    assert completions.stream.closed


def test_connection_error_is_provider_unavailable() -> None:
    exc = openai.APIConnectionError(request=httpx.Request("POST", "http://api.test/v1/chat/completions"))
    result = _client(FakeCompletions(exc=exc)).request("m", MESSAGES, RequestConfig(), AbortToken())

    assert result.status is CompletionStatus.FAILED
    assert result.error_kind is ErrorKind.PROVIDER_UNAVAILABLE


def test_auth_error_is_recognised_by_name() -> None:
    class AuthenticationError(Exception):
        pass

    result = _client(FakeCompletions(exc=AuthenticationError("401"))).request(
        "m", MESSAGES, RequestConfig(), AbortToken()
    )

    assert result.error_kind is ErrorKind.PROVIDER_ERROR
    assert "authentication failed" in result.reason


def test_missing_api_key_is_reported_without_network() -> None:
    client = OpenAICompatibleClient(provider=Provider.OPENROUTER, base_url="https://openrouter.test", api_key=None)

    result = client.request("m", MESSAGES, RequestConfig(), AbortToken())

    assert result.status is CompletionStatus.FAILED
    assert "AICODER_API_KEY" in result.reason


def test_passed_deadline_before_first_chunk_is_timed_out() -> None:
    result = _client(FakeCompletions([_chunk("late")])).request(
        "m", MESSAGES, RequestConfig(), AbortToken(), deadline=0.0
    )

    assert result.status is CompletionStatus.TIMED_OUT


class FakeModels:
    def __init__(self, ids: list[str] | None = None, exc: Exception | None = None) -> None:
        self.ids = ids or []
        self.exc = exc
        self.kwargs: dict | None = None

    def list(self, **kwargs):
        self.kwargs = kwargs
        if self.exc is not None:
            raise self.exc
        return [SimpleNamespace(id=model_id) for model_id in self.ids]


def _models_client(models: FakeModels) -> OpenAICompatibleClient:
    sdk = SimpleNamespace(models=models)
    return OpenAICompatibleClient(provider=Provider.LMSTUDIO, base_url="http://lm.test/v1", api_key=None, client=sdk)


def test_list_models_returns_sorted_ids() -> None:
    models = FakeModels(["gpt-b", "gpt-a"])

    assert _models_client(models).list_models(deadline=None) == ["gpt-a", "gpt-b"]
    assert models.kwargs is not None and "timeout" in models.kwargs


def test_list_models_errors_are_classified() -> None:
    refused = openai.APIConnectionError(request=httpx.Request("GET", "http://lm.test/v1/models"))

    class AuthenticationError(Exception):
        pass

    with pytest.raises(ProviderUnavailableError, match="cannot connect"):
        _models_client(FakeModels(exc=refused)).list_models()
    with pytest.raises(ProviderError, match="authentication failed"):
        _models_client(FakeModels(exc=AuthenticationError("401"))).list_models()


def test_list_models_without_api_key_fails_fast() -> None:
    client = OpenAICompatibleClient(provider=Provider.OPENAI, base_url="https://api.test/v1", api_key=None)

    with pytest.raises(ProviderError, match="AICODER_API_KEY"):
        client.list_models()
