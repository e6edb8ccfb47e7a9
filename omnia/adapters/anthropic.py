"""
omnia.adapters.anthropic — Claude Messages API adapter.

Builds a streaming ``/v1/messages`` request with prompt caching on the system
blocks and tool definitions, the provider-native web search tool, and an
optional extended-thinking budget.  The translator maps Claude's SSE events
(``content_block_start`` / ``_delta`` / ``_stop`` keyed by ``index``) almost
one to one onto provider events.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

import httpx

from omnia.adapters.base import (
    OWNER_NOTE,
    SUMMARY_HEADER,
    BaseAdapter,
    EventTranslator,
)
from omnia.core.errors import UpstreamServiceError
from omnia.core.models import HistoryMessage, PermissionTier, Provider
from omnia.streaming.decoder import ToolName
from omnia.streaming.events import (
    BlockDelta,
    BlockKind,
    BlockStart,
    BlockStop,
    ProviderEvent,
)
from omnia.tools.definitions import to_anthropic_tools

if TYPE_CHECKING:
    from omnia.relay.orchestrator import RequestContext

logger = logging.getLogger("omnia.adapters.anthropic")

ANTHROPIC_VERSION = "2023-06-01"
ANTHROPIC_BETA = "files-api-2025-04-14"

# Frontend model ids → Claude API model ids
MODEL_MAP: dict[str, str] = {
    "claude-sonnet-4.5": "claude-sonnet-4-5-20250929",
    "claude-haiku-4.5": "claude-haiku-4-5-20251001",
}
DEFAULT_MODEL_ID = "claude-sonnet-4.5"

THINKING_BUDGET = 5000
WEB_SEARCH_MAX_USES = 5

_EPHEMERAL = {"type": "ephemeral"}


class AnthropicAdapter(BaseAdapter):
    """Streams Claude turns over SSE."""

    provider = Provider.ANTHROPIC

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.anthropic.com",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(api_key, base_url, client)

    def resolve_model(self, model_id: str | None) -> str:
        if model_id in MODEL_MAP:
            return MODEL_MAP[model_id]
        if model_id and model_id in MODEL_MAP.values():
            return model_id
        if model_id:
            logger.warning("Unknown Claude model id '%s', using %s", model_id, DEFAULT_MODEL_ID)
        return MODEL_MAP[DEFAULT_MODEL_ID]

    # ------------------------------------------------------------------
    # Request
    # ------------------------------------------------------------------

    def build_body(self, context: "RequestContext") -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.resolve_model(context.model_id),
            "max_tokens": context.max_tokens,
            "system": self._system_blocks(context),
            "messages": prepare_messages(context.messages),
            "tools": [
                *to_anthropic_tools(),
                {
                    "type": "web_search_20250305",
                    "name": ToolName.WEB_SEARCH.value,
                    "max_uses": WEB_SEARCH_MAX_USES,
                },
            ],
            "stream": True,
        }
        if context.deep_reasoning:
            body["thinking"] = {"type": "enabled", "budget_tokens": THINKING_BUDGET}
            body["max_tokens"] = max(context.max_tokens, THINKING_BUDGET + 1024)
        else:
            body["thinking"] = {"type": "disabled"}
        return body

    def _stream_request(self, context: "RequestContext") -> dict[str, Any]:
        return {
            "url": "/v1/messages",
            "headers": {
                "x-api-key": self._api_key,
                "anthropic-version": ANTHROPIC_VERSION,
                "anthropic-beta": ANTHROPIC_BETA,
                "content-type": "application/json",
            },
        }

    @staticmethod
    def _system_blocks(context: "RequestContext") -> list[dict[str, Any]]:
        blocks: list[dict[str, Any]] = [
            {"type": "text", "text": context.system_prompt, "cache_control": _EPHEMERAL},
        ]
        if context.summary:
            blocks.append({
                "type": "text",
                "text": SUMMARY_HEADER + context.summary,
                "cache_control": _EPHEMERAL,
            })
        if context.caller is not None and context.caller.tier is PermissionTier.OWNER:
            blocks.append({"type": "text", "text": OWNER_NOTE})
        return blocks

    def translator(self) -> "AnthropicTranslator":
        return AnthropicTranslator()


# ---------------------------------------------------------------------------
# Conversation history
# ---------------------------------------------------------------------------

def _attachment_blocks(message: HistoryMessage) -> list[dict[str, Any]]:
    blocks: list[dict[str, Any]] = []
    for att in message.attachments:
        kind = "image" if att.is_image else "document"
        if att.file_id:
            blocks.append({"type": kind, "source": {"type": "file", "file_id": att.file_id}})
        elif att.url.startswith("http"):
            blocks.append({"type": kind, "source": {"type": "url", "url": att.url}})
        else:
            logger.warning("Attachment %s has neither file id nor URL", att.name or "unnamed")
    return blocks


def _image_reference_text(message: HistoryMessage) -> str | None:
    images = [a for a in message.attachments if a.is_image]
    if not images:
        return None
    lines = []
    for i, att in enumerate(images, 1):
        line = f"{i}. {att.name or 'unnamed'}"
        if att.url:
            line += f" ({att.url})"
        if att.file_id:
            line += f" [file_id: {att.file_id}]"
        lines.append(line)
    return "--- ATTACHED IMAGES ---\n" + "\n".join(lines)


def prepare_messages(history: list[HistoryMessage]) -> list[dict[str, Any]]:
    """
    Convert browser history into Claude ``messages``.

    Image URLs are listed as text so ``edit_image`` can reference them; vision
    and document blocks are attached for the last user message only.  A stored
    ``function_call`` becomes a ``tool_use`` block followed by a user
    ``tool_result`` message.  Consecutive same-role messages are merged and
    the list always starts and ends with a user message.
    """
    relevant = [m for m in history if m.sender in ("user", "bot")]
    converted: list[dict[str, Any]] = []

    for pos, msg in enumerate(relevant):
        role = "user" if msg.sender == "user" else "assistant"
        content: list[dict[str, Any]] = []

        reference = _image_reference_text(msg)
        if reference:
            content.append({"type": "text", "text": reference})
        if msg.text.strip():
            content.append({"type": "text", "text": msg.text})
        if role == "user" and pos == len(relevant) - 1:
            content.extend(_attachment_blocks(msg))
        if role == "assistant" and msg.function_call is not None:
            content.append({
                "type": "tool_use",
                "id": msg.function_call.id,
                "name": msg.function_call.name,
                "input": msg.function_call.input,
            })

        if not content:
            continue
        converted.append({"role": role, "content": content})

        if role == "assistant" and msg.function_call is not None and msg.function_response is not None:
            converted.append({
                "role": "user",
                "content": [{
                    "type": "tool_result",
                    "tool_use_id": msg.function_call.id,
                    "content": json.dumps(msg.function_response.response),
                }],
            })

    merged: list[dict[str, Any]] = []
    for msg in converted:
        if merged and merged[-1]["role"] == msg["role"]:
            merged[-1]["content"].extend(msg["content"])
        else:
            merged.append(msg)

    if merged and merged[0]["role"] == "assistant":
        merged.pop(0)
    if merged and merged[-1]["role"] == "assistant":
        merged.pop()
    return merged


# ---------------------------------------------------------------------------
# Stream translation
# ---------------------------------------------------------------------------

class AnthropicTranslator(EventTranslator):
    """Maps Claude SSE records onto provider events."""

    def __init__(self) -> None:
        self._ignored: set[int] = set()

    def translate(self, record: dict[str, Any]) -> list[ProviderEvent]:
        kind = record.get("type", "")

        if kind == "content_block_start":
            return self._block_start(record.get("index", 0), record.get("content_block") or {})

        if kind == "content_block_delta":
            index = record.get("index", 0)
            if index in self._ignored:
                return []
            delta = record.get("delta") or {}
            delta_type = delta.get("type")
            if delta_type == "text_delta":
                return [BlockDelta(index, delta.get("text", ""))]
            if delta_type == "thinking_delta":
                return [BlockDelta(index, delta.get("thinking", ""))]
            if delta_type == "input_json_delta":
                return [BlockDelta(index, delta.get("partial_json", ""))]
            if delta_type not in ("signature_delta", "citations_delta"):
                logger.debug("Unknown delta type %s on block %d", delta_type, index)
            return []

        if kind == "content_block_stop":
            index = record.get("index", 0)
            if index in self._ignored:
                return []
            return [BlockStop(index)]

        if kind == "message_start":
            usage = (record.get("message") or {}).get("usage") or {}
            logger.debug(
                "Claude usage: input=%s cache_read=%s",
                usage.get("input_tokens"), usage.get("cache_read_input_tokens"),
            )
        elif kind == "message_delta":
            stop_reason = (record.get("delta") or {}).get("stop_reason")
            if stop_reason:
                logger.info("Claude stop reason: %s", stop_reason)
        elif kind == "error":
            error = record.get("error") or {}
            message = error.get("message") or "Claude API error"
            if error.get("type") == "overloaded_error":
                message = "Server unavailable, please try again later."
            raise UpstreamServiceError(message)
        return []

    def _block_start(self, index: int, block: dict[str, Any]) -> list[ProviderEvent]:
        block_type = block.get("type")

        if block_type == "text":
            events: list[ProviderEvent] = [BlockStart(index, BlockKind.TEXT)]
            if block.get("text"):
                events.append(BlockDelta(index, block["text"]))
            return events

        if block_type in ("thinking", "redacted_thinking"):
            return [BlockStart(index, BlockKind.THINKING)]

        if block_type in ("tool_use", "server_tool_use"):
            return [BlockStart(
                index,
                BlockKind.TOOL,
                tool_name=block.get("name", ""),
                tool_call_id=block.get("id", ""),
                provider_executed=block_type == "server_tool_use",
            )]

        if block_type == "web_search_tool_result":
            content = block.get("content")
            results = content if isinstance(content, list) else []
            sources = [
                {"url": r.get("url"), "title": r.get("title")}
                for r in results
                if isinstance(r, dict) and r.get("type") == "web_search_result"
            ]
            if not isinstance(content, list):
                logger.warning("Web search returned an error block: %s", content)
            return [BlockStart(index, BlockKind.SEARCH_RESULT, sources=sources)]

        logger.debug("Ignoring content block %d of type %s", index, block_type)
        self._ignored.add(index)
        return []
