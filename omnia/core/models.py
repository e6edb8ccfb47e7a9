"""
omnia.core.models — Pydantic schemas for the relay.

Three families live here:

* ``RelayConfig``: runtime configuration resolved from overrides and the
  environment.
* Inbound schemas: the chat turn the browser POSTs (``ChatRequest``).
* Outbound events: the provider-agnostic NDJSON vocabulary streamed back to
  the browser.  Every event carries the originating ``request_id`` so a
  client can discard events that belong to a superseded turn.
"""

from __future__ import annotations

import os
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Literal
from urllib.parse import urlparse

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


DEFAULT_SYSTEM_PROMPT = (
    "You are Elora, a helpful and friendly assistant. Answer clearly, match "
    "the user's language and use the available tools when they help."
)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Provider(StrEnum):
    ANTHROPIC = "anthropic"
    GOOGLE = "google"


class PermissionTier(StrEnum):
    USER = "user"
    OWNER = "owner"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def _first_env(*names: str, default: str = "") -> str:
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return default


class RelayConfig(BaseModel):
    """Runtime configuration for the relay service."""

    anthropic_api_key: str = ""
    google_api_key: str = ""
    anthropic_base_url: str = "https://api.anthropic.com"
    gemini_base_url: str = "https://generativelanguage.googleapis.com"

    supabase_url: str = ""
    supabase_service_key: str = ""
    storage_bucket: str = "generated-images"
    pdf_service_url: str = ""

    default_system_prompt: str = DEFAULT_SYSTEM_PROMPT
    max_tokens: int = 8000

    host: str = "127.0.0.1"
    port: int = 8000

    def api_key_for(self, provider: Provider | str) -> str:
        if provider == Provider.ANTHROPIC:
            return self.anthropic_api_key
        if provider == Provider.GOOGLE:
            return self.google_api_key
        return ""

    @classmethod
    def from_env(cls, **overrides: Any) -> "RelayConfig":
        """
        Build a config from the environment.

        Resolution order (highest priority first):
          1. Explicit ``overrides`` keyword arguments
          2. Environment variables (ANTHROPIC_API_KEY, OMNIA_PORT, …)
          3. Built-in defaults
        """
        values: dict[str, Any] = {
            "anthropic_api_key": _first_env("ANTHROPIC_API_KEY", "CLAUDE_API_KEY"),
            "google_api_key": _first_env("GOOGLE_API_KEY", "GEMINI_API_KEY"),
            "anthropic_base_url": _first_env(
                "OMNIA_ANTHROPIC_BASE_URL", default="https://api.anthropic.com"
            ),
            "gemini_base_url": _first_env(
                "OMNIA_GEMINI_BASE_URL",
                default="https://generativelanguage.googleapis.com",
            ),
            "supabase_url": _first_env("SUPABASE_URL").rstrip("/"),
            "supabase_service_key": _first_env(
                "SUPABASE_SERVICE_ROLE_KEY", "SUPABASE_SERVICE_KEY"
            ),
            "storage_bucket": _first_env("OMNIA_STORAGE_BUCKET", default="generated-images"),
            "pdf_service_url": _first_env("OMNIA_PDF_SERVICE_URL"),
            "default_system_prompt": _first_env(
                "OMNIA_DEFAULT_SYSTEM_PROMPT", default=DEFAULT_SYSTEM_PROMPT
            ),
            "max_tokens": int(_first_env("OMNIA_MAX_TOKENS", default="8000")),
            "host": _first_env("OMNIA_HOST", default="127.0.0.1"),
            "port": int(_first_env("OMNIA_PORT", default="8000")),
        }
        values.update(overrides)
        return cls(**values)


# ---------------------------------------------------------------------------
# Inbound request schemas
# ---------------------------------------------------------------------------

class Attachment(BaseModel):
    """A file the user attached to a message (already uploaded to storage)."""
    model_config = ConfigDict(extra="ignore")

    name: str = ""
    type: str = ""
    url: str = Field(
        default="",
        validation_alias=AliasChoices("url", "supabaseUrl", "storageUrl", "previewUrl"),
    )
    file_id: str | None = Field(
        default=None, validation_alias=AliasChoices("file_id", "claudeFileId")
    )

    @property
    def is_image(self) -> bool:
        return self.type.startswith("image/")


class FunctionCall(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = ""
    name: str
    input: dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("input", "args")
    )


class FunctionResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    response: Any = None


class HistoryMessage(BaseModel):
    """One entry of the conversation history as the browser stores it."""
    model_config = ConfigDict(extra="ignore")

    sender: str  # "user" | "bot"; anything else is dropped before the upstream call
    text: str = Field(default="", validation_alias=AliasChoices("aiText", "text", "content"))
    attachments: list[Attachment] = Field(default_factory=list)
    function_call: FunctionCall | None = Field(
        default=None, validation_alias=AliasChoices("function_call", "functionCall")
    )
    function_response: FunctionResponse | None = Field(
        default=None,
        validation_alias=AliasChoices("function_response", "functionResponse"),
    )


class ChatRequest(BaseModel):
    """Body of ``POST /api/claude`` and ``POST /api/gemini``."""
    model_config = ConfigDict(extra="ignore")

    request_id: str = Field(default="", validation_alias=AliasChoices("request_id", "requestId"))
    messages: list[HistoryMessage] = Field(default_factory=list)
    system: str | None = Field(default=None, validation_alias=AliasChoices("system", "systemPrompt"))
    summary: str | None = Field(
        default=None, validation_alias=AliasChoices("summary", "conversationSummary")
    )
    model_id: str | None = Field(default=None, validation_alias=AliasChoices("model_id", "modelId"))
    image_mode: bool = Field(default=False, validation_alias=AliasChoices("image_mode", "imageMode"))
    deep_reasoning: bool = Field(
        default=False, validation_alias=AliasChoices("deep_reasoning", "deepReasoning")
    )
    max_tokens: int | None = Field(default=None, validation_alias=AliasChoices("max_tokens", "maxTokens"))


class SummarizeRequest(BaseModel):
    """Body of ``POST /api/summarize``."""
    model_config = ConfigDict(extra="ignore")

    previous_summary: str | None = Field(
        default=None, validation_alias=AliasChoices("previous_summary", "previousSummary")
    )
    messages: list[HistoryMessage] = Field(default_factory=list)


@dataclass(frozen=True)
class Caller:
    """Identity resolved from the bearer token."""
    user_id: str
    tier: PermissionTier = PermissionTier.USER


# ---------------------------------------------------------------------------
# Domain values surfaced to the client
# ---------------------------------------------------------------------------

def extract_domain(url: str) -> str:
    """Display domain for a url: lower-cased host with any ``www.`` prefix removed."""
    if url and "://" not in url:
        url = "https://" + url
    try:
        host = urlparse(url).hostname or ""
    except ValueError:
        host = ""
    if not host:
        return "Unknown"
    host = host.lower()
    return host[4:] if host.startswith("www.") else host


class Source(BaseModel):
    """A web-search citation.  Identity is the full ``url`` string."""
    title: str = "Untitled"
    url: str
    domain: str = ""
    timestamp: float = Field(default_factory=time.time)

    @classmethod
    def from_candidate(cls, url: str, title: str | None = None) -> "Source":
        return cls(title=title or "Untitled", url=url, domain=extract_domain(url))


class GeneratedAsset(BaseModel):
    """A persisted image produced by an image tool invocation."""
    asset_id: str
    storage_url: str
    model: str
    operation: Literal["generate", "edit"]
    prompt: str
    timestamp: str
    mime_type: str = "image/png"
    original_url: str | None = None


# ---------------------------------------------------------------------------
# Outbound event vocabulary
# ---------------------------------------------------------------------------

class OutboundEvent(BaseModel):
    """Base of every NDJSON line written to the browser."""
    type: str
    request_id: str = ""

    def to_line(self) -> bytes:
        return (self.model_dump_json(exclude_none=True) + "\n").encode("utf-8")


class TextDelta(OutboundEvent):
    type: Literal["text_delta"] = "text_delta"
    content: str
    is_thinking: bool = False


class ThinkingSignal(OutboundEvent):
    type: Literal["thinking"] = "thinking"
    started: bool


class ToolPreparing(OutboundEvent):
    type: Literal["tool_preparing"] = "tool_preparing"
    tool: str
    label: str


class SearchStarted(OutboundEvent):
    type: Literal["search_started"] = "search_started"
    message: str = "Searching the web..."


class SearchCompleted(OutboundEvent):
    type: Literal["search_completed"] = "search_completed"
    sources: list[Source] = Field(default_factory=list)
    message: str = ""


class ToolResult(OutboundEvent):
    type: Literal["tool_result"] = "tool_result"
    tool: str
    tool_call_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)


class TurnCompleted(OutboundEvent):
    type: Literal["completed"] = "completed"
    sources: list[Source] = Field(default_factory=list)
    web_search_used: bool = False


class ErrorEvent(OutboundEvent):
    type: Literal["error"] = "error"
    message: str
    retryable: bool = False
    code: str = "internal"
    tool: str | None = None
    tool_call_id: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.tool_call_id is None and self.tool is None
