"""
omnia.adapters — Model provider adapter registry.

Provides a ``create_adapter()`` factory that returns the adapter serving a
streaming endpoint.

Supported providers:
    - ``anthropic``: Claude Sonnet 4.5 / Haiku 4.5 (``POST /api/claude``)
    - ``google``: Gemini 2.5 Flash (``POST /api/gemini``)
"""

from __future__ import annotations

import httpx

from omnia.adapters.base import BaseAdapter, EventTranslator


# ---- Default endpoint per provider ---------------------------------------
PROVIDER_BASE_URLS: dict[str, str] = {
    "anthropic": "https://api.anthropic.com",
    "google": "https://generativelanguage.googleapis.com",
}


def create_adapter(
    provider: str,
    api_key: str = "",
    base_url: str = "",
    client: httpx.AsyncClient | None = None,
) -> BaseAdapter:
    """
    Factory function that returns the correct adapter for the given provider.

    Parameters
    ----------
    provider :
        One of ``"anthropic"``, ``"google"``.
    api_key :
        API key for the provider.  A missing key is reported per turn as a
        non-retryable configuration error.
    base_url :
        Optional base URL override.
    client :
        Pre-built ``httpx.AsyncClient`` (tests use a ``MockTransport``).
    """
    provider = provider.lower().strip()
    default_url = PROVIDER_BASE_URLS.get(provider)
    if default_url is None:
        raise ValueError(
            f"Unknown provider: '{provider}'. "
            f"Supported: {', '.join(PROVIDER_BASE_URLS)}"
        )

    base_url = base_url or default_url

    if provider == "anthropic":
        from omnia.adapters.anthropic import AnthropicAdapter

        return AnthropicAdapter(api_key=api_key, base_url=base_url, client=client)

    from omnia.adapters.google import GoogleAdapter

    return GoogleAdapter(api_key=api_key, base_url=base_url, client=client)


__all__ = ["BaseAdapter", "EventTranslator", "PROVIDER_BASE_URLS", "create_adapter"]
