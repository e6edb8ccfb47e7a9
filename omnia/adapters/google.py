"""
omnia.adapters.google — Gemini ``streamGenerateContent`` adapter.

Gemini streams whole ``GenerateContentResponse`` objects rather than indexed
content blocks, so the translator synthesizes block indexes itself:

- consecutive text parts share one text block, consecutive ``thought`` parts
  share one thinking block;
- every ``functionCall`` part becomes a complete tool block (start, one delta
  carrying the JSON arguments, stop);
- the first ``groundingMetadata.webSearchQueries`` becomes a provider-executed
  ``web_search`` tool block;
- newly seen grounding chunks become a search-result block.

Gemini cannot combine search grounding with function calling, so image mode
offers the image tools and every other turn gets ``google_search``.
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
from omnia.tools.definitions import image_tools, to_google_tools

if TYPE_CHECKING:
    from omnia.relay.orchestrator import RequestContext

logger = logging.getLogger("omnia.adapters.google")

DEFAULT_MODEL = "gemini-2.5-flash"
THINKING_BUDGET = 5000

LANGUAGE_INSTRUCTION = (
    "**CRITICAL:** Always respond in the EXACT same language the user writes in. "
    "Match their language perfectly."
)


class GoogleAdapter(BaseAdapter):
    """Streams Gemini turns over SSE (``alt=sse``)."""

    provider = Provider.GOOGLE

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://generativelanguage.googleapis.com",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(api_key, base_url, client)

    def resolve_model(self, model_id: str | None) -> str:
        if model_id and model_id.startswith("gemini-"):
            return model_id
        return DEFAULT_MODEL

    # ------------------------------------------------------------------
    # Request
    # ------------------------------------------------------------------

    def build_body(self, context: "RequestContext") -> dict[str, Any]:
        generation_config: dict[str, Any] = {
            "maxOutputTokens": context.max_tokens,
            "temperature": 0.8,
            "topP": 0.95,
            "topK": 30,
        }
        if context.deep_reasoning:
            generation_config["thinkingConfig"] = {
                "includeThoughts": True,
                "thinkingBudget": THINKING_BUDGET,
            }

        if context.image_mode:
            tools = to_google_tools(image_tools())
        else:
            tools = [{"google_search": {}}]

        return {
            "systemInstruction": {"parts": [{"text": self._system_instruction(context)}]},
            "contents": prepare_contents(context.messages),
            "tools": tools,
            "generationConfig": generation_config,
        }

    def _stream_request(self, context: "RequestContext") -> dict[str, Any]:
        model = self.resolve_model(context.model_id)
        return {
            "url": f"/v1beta/models/{model}:streamGenerateContent",
            "params": {"alt": "sse", "key": self._api_key},
        }

    @staticmethod
    def _system_instruction(context: "RequestContext") -> str:
        text = context.system_prompt + "\n\n" + LANGUAGE_INSTRUCTION
        if context.summary:
            text += "\n\n" + SUMMARY_HEADER + context.summary
        if context.caller is not None and context.caller.tier is PermissionTier.OWNER:
            text += "\n\n" + OWNER_NOTE
        return text

    def translator(self) -> "GeminiTranslator":
        return GeminiTranslator()


# ---------------------------------------------------------------------------
# Conversation history
# ---------------------------------------------------------------------------

def prepare_contents(history: list[HistoryMessage]) -> list[dict[str, Any]]:
    """Convert browser history into Gemini ``contents`` with strict user/model alternation."""
    contents: list[dict[str, Any]] = []
    for msg in history:
        if msg.sender not in ("user", "bot"):
            continue
        role = "user" if msg.sender == "user" else "model"
        parts: list[dict[str, Any]] = []
        if msg.text:
            parts.append({"text": msg.text})
        if msg.function_call is not None:
            parts.append({"functionCall": {"name": msg.function_call.name, "args": msg.function_call.input}})
        if parts:
            contents.append({"role": role, "parts": parts})

        if msg.function_response is not None:
            response = msg.function_response.response
            if not isinstance(response, dict):
                response = {"result": response}
            contents.append({
                "role": "user",
                "parts": [{"functionResponse": {"name": msg.function_response.name, "response": response}}],
            })
    return _merge_contents(contents)


def _merge_contents(contents: list[dict[str, Any]]) -> list[dict[str, Any]]:
    if not contents:
        return contents
    merged = [contents[0]]
    for content in contents[1:]:
        if content["role"] == merged[-1]["role"]:
            merged[-1]["parts"].extend(content["parts"])
        else:
            merged.append(content)
    return merged


def extract_sources(grounding: dict[str, Any]) -> list[dict[str, Any]]:
    """Cited web sources of a grounding payload, in citation order, unique by url."""
    chunks = grounding.get("groundingChunks") or []
    indices: list[int] = []
    for support in grounding.get("groundingSupports") or []:
        indices.extend(support.get("groundingChunkIndices") or [])
    if not indices:
        indices = list(range(len(chunks)))

    sources: list[dict[str, Any]] = []
    seen: set[str] = set()
    for i in indices:
        if not 0 <= i < len(chunks):
            continue
        web = chunks[i].get("web") or {}
        url = web.get("uri")
        if url and url not in seen:
            seen.add(url)
            sources.append({"url": url, "title": web.get("title")})
    return sources


# ---------------------------------------------------------------------------
# Stream translation
# ---------------------------------------------------------------------------

class GeminiTranslator(EventTranslator):
    """Synthesizes indexed content blocks from Gemini response chunks."""

    def __init__(self) -> None:
        self._next_index = 0
        self._run: tuple[int, BlockKind] | None = None
        self._search_announced = False
        self._seen_urls: set[str] = set()
        self._calls = 0

    def translate(self, record: dict[str, Any]) -> list[ProviderEvent]:
        if "error" in record:
            error = record["error"] or {}
            raise UpstreamServiceError(
                error.get("message") or "Gemini API error", status=error.get("code")
            )

        candidates = record.get("candidates") or []
        if not candidates:
            return []
        candidate = candidates[0]
        grounding = candidate.get("groundingMetadata") or {}
        events: list[ProviderEvent] = []

        queries = grounding.get("webSearchQueries") or []
        if queries and not self._search_announced:
            self._search_announced = True
            events.extend(self._whole_tool_block(
                ToolName.WEB_SEARCH.value, {"queries": queries}, provider_executed=True
            ))

        for part in (candidate.get("content") or {}).get("parts") or []:
            if "functionCall" in part:
                events.extend(self._close_run())
                call = part["functionCall"] or {}
                events.extend(self._whole_tool_block(
                    call.get("name", ""), call.get("args") or {}, call_id=call.get("id")
                ))
            elif part.get("text"):
                kind = BlockKind.THINKING if part.get("thought") else BlockKind.TEXT
                events.extend(self._ensure_run(kind))
                events.append(BlockDelta(self._run[0], part["text"]))

        if grounding:
            new_sources = [s for s in extract_sources(grounding) if s["url"] not in self._seen_urls]
            if new_sources:
                self._seen_urls.update(s["url"] for s in new_sources)
                index = self._allocate()
                events.append(BlockStart(index, BlockKind.SEARCH_RESULT, sources=new_sources))
                events.append(BlockStop(index))

        finish_reason = candidate.get("finishReason")
        if finish_reason and finish_reason != "STOP":
            logger.warning("Gemini finished with reason %s", finish_reason)
        return events

    def finish(self) -> list[ProviderEvent]:
        return self._close_run()

    def _allocate(self) -> int:
        index = self._next_index
        self._next_index += 1
        return index

    def _ensure_run(self, kind: BlockKind) -> list[ProviderEvent]:
        if self._run is not None and self._run[1] is kind:
            return []
        events = self._close_run()
        index = self._allocate()
        self._run = (index, kind)
        events.append(BlockStart(index, kind))
        return events

    def _close_run(self) -> list[ProviderEvent]:
        if self._run is None:
            return []
        index = self._run[0]
        self._run = None
        return [BlockStop(index)]

    def _whole_tool_block(
        self,
        name: str,
        args: dict[str, Any],
        call_id: str | None = None,
        provider_executed: bool = False,
    ) -> list[ProviderEvent]:
        index = self._allocate()
        self._calls += 1
        return [
            BlockStart(
                index,
                BlockKind.TOOL,
                tool_name=name,
                tool_call_id=call_id or f"call_{self._calls}",
                provider_executed=provider_executed,
            ),
            BlockDelta(index, json.dumps(args)),
            BlockStop(index),
        ]
