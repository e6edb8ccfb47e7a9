"""
omnia.adapters.base — Abstract base classes for model provider adapters.

An adapter owns everything vendor specific about one turn: it builds the
request body, opens the upstream byte stream and supplies a translator that
maps the vendor's native stream records onto the shared
``BlockStart`` / ``BlockDelta`` / ``BlockStop`` vocabulary.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, AsyncIterator

import httpx

from omnia.core.errors import ConfigurationError, UpstreamServiceError
from omnia.core.models import Provider
from omnia.streaming.events import ProviderEvent

if TYPE_CHECKING:
    from omnia.relay.orchestrator import RequestContext

logger = logging.getLogger("omnia.adapters.base")

STREAM_TIMEOUT = httpx.Timeout(connect=10.0, read=300.0, write=30.0, pool=10.0)


def describe_http_error(status: int, body: str) -> str:
    """Human-readable message for an upstream HTTP failure."""
    if status == 429:
        return "Too many requests. Please try again in a moment."
    if status in (503, 529):
        return "Server unavailable, please try again later."
    try:
        detail = json.loads(body).get("error", {})
    except (ValueError, AttributeError):
        detail = {}
    message = detail.get("message") if isinstance(detail, dict) else None
    return f"HTTP {status}: {message or body[:300]}"


class EventTranslator(ABC):
    """Per-turn mapping of native stream records onto provider events."""

    @abstractmethod
    def translate(self, record: dict[str, Any]) -> list[ProviderEvent]:
        """Translate one framed record.  Raises ``UpstreamServiceError`` for in-band errors."""
        ...

    def finish(self) -> list[ProviderEvent]:
        """Events needed to close whatever the stream left open."""
        return []


class BaseAdapter(ABC):
    """
    Interface contract for all provider adapters.

    Subclasses implement ``build_body()``, ``_stream_request()`` and
    ``translator()``; ``open_stream()`` is shared.
    """

    provider: Provider

    def __init__(
        self,
        api_key: str,
        base_url: str,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=STREAM_TIMEOUT)

    @abstractmethod
    def build_body(self, context: "RequestContext") -> dict[str, Any]:
        ...

    @abstractmethod
    def _stream_request(self, context: "RequestContext") -> dict[str, Any]:
        """Keyword arguments for ``httpx.AsyncClient.stream`` (url, headers, params)."""
        ...

    @abstractmethod
    def translator(self) -> EventTranslator:
        ...

    def resolve_model(self, model_id: str | None) -> str:
        return model_id or ""

    async def open_stream(self, context: "RequestContext") -> AsyncIterator[bytes]:
        """Yield raw upstream bytes; raises ``UpstreamServiceError`` on an HTTP failure."""
        if not self._api_key:
            raise ConfigurationError(f"{self.provider.value} API key not configured")

        body = self.build_body(context)
        async with self._client.stream("POST", json=body, **self._stream_request(context)) as resp:
            if resp.is_error:
                await resp.aread()
                logger.error(
                    "[%s] %s HTTP %d: %s",
                    context.request_id, self.provider.value, resp.status_code, resp.text[:1000],
                )
                raise UpstreamServiceError(
                    describe_http_error(resp.status_code, resp.text), status=resp.status_code
                )
            async for chunk in resp.aiter_bytes():
                yield chunk

    async def close(self) -> None:
        """Release any held resources (HTTP clients, etc.)."""
        await self._client.aclose()


# ---------------------------------------------------------------------------
# System prompt fragments shared by both providers
# ---------------------------------------------------------------------------

SUMMARY_HEADER = (
    "# CONVERSATION HISTORY SUMMARY\n\n"
    "The following is a summary of your previous conversation with the user. "
    "Use this context to maintain continuity and remember important details:\n\n"
)

OWNER_NOTE = (
    "# OWNER PRIVILEGES\n\n"
    "NOTE: This user is the application owner. Provide full technical "
    "assistance and be direct and technical when system-level detail is requested."
)
