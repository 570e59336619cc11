# src/aicoder/llm/factory.py

from __future__ import annotations

import logging
from typing import Any

from ..config import DEFAULT_BASE_URLS
from ..core.ports import CompletionClient
from .client import OpenAICompatibleClient
from .offline import OfflineClient
from .ollama import OllamaClient
from .types import Provider

logger = logging.getLogger(__name__)


def _openrouter_headers(app_name: str) -> dict[str, str]:
    # OpenRouter uses these for attribution; they are optional.
    return {"X-Title": app_name}


def create_completion_client(settings, **overrides: Any) -> CompletionClient:
    """
    Build the completion client for settings.provider.

    `overrides` (e.g. provider/base_url switched with /config) take precedence
    over the matching settings attributes.
    Raises ValueError for an unknown provider name.
    """

    def get(name: str, default: Any = None) -> Any:
        if name in overrides:
            return overrides[name]
        return getattr(settings, name, default)

    provider = Provider.parse(get("provider"))
    base_url = str(get("base_url", "") or DEFAULT_BASE_URLS.get(provider.value, ""))
    read_timeout = float(get("request_timeout_seconds", 120.0) or 120.0)

    client: CompletionClient
    if provider is Provider.OLLAMA:
        client = OllamaClient(base_url=base_url, read_timeout=read_timeout)
    elif provider is Provider.OFFLINE:
        client = OfflineClient()
    else:
        client = OpenAICompatibleClient(
            provider=provider,
            base_url=base_url,
            api_key=get("api_key"),
            extra_headers=_openrouter_headers(str(get("app_name", "aicoder"))) if provider is Provider.OPENROUTER else None,
            read_timeout=read_timeout,
        )

    logger.info("Completion client: provider=%s base_url=%s", provider.value, base_url or "-")
    return client
