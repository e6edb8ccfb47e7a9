"""
omnia.collaborators.summaries — Rolling conversation summaries via Gemini Flash-Lite.

The browser keeps the summary and sends it back with every chat turn as
``summary``; this module produces it from the previous summary plus the
messages that have accumulated since.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from omnia.adapters.base import describe_http_error
from omnia.collaborators.base import ConversationSummary, Summarizer
from omnia.core.errors import ConfigurationError, UpstreamServiceError
from omnia.core.models import HistoryMessage

logger = logging.getLogger("omnia.collaborators.summaries")

SUMMARY_MODEL = "gemini-2.5-flash-lite"
SUMMARY_WORD_LIMIT = 500

SUMMARIZATION_PROMPT = (
    "You maintain the long-term memory of a chat assistant. Compress the "
    "conversation into a plain-text summary the assistant can rely on in later "
    "turns: who the user is, what they are working on, decisions made, open "
    "questions and preferences. Write in the language of the conversation. "
    "Drop small talk. Never invent facts."
)

GENERATION_CONFIG = {
    "maxOutputTokens": 2000,
    "temperature": 0.3,
    "topP": 0.8,
    "topK": 40,
}


def conversation_text(messages: list[HistoryMessage]) -> str:
    """Render history as ``Role: text`` lines."""
    return "\n".join(
        f"{'User' if m.sender == 'user' else 'Assistant'}: {m.text}" for m in messages
    )


def summary_request_text(conversation: str, previous_summary: str | None) -> str:
    limit = f"Maximum {SUMMARY_WORD_LIMIT} words, plain text only."
    if previous_summary:
        return (
            f"Previous summary:\n{previous_summary}\n\n"
            f"New messages:\n{conversation}\n\n"
            "Create a new summary that compresses the previous summary and adds "
            f"information from the new messages. {limit}"
        )
    return f"Conversation:\n{conversation}\n\nCreate a summary. {limit}"


def _response_text(data: dict[str, Any]) -> str:
    for candidate in data.get("candidates") or []:
        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(p.get("text", "") for p in parts if not p.get("thought"))
        if text.strip():
            return text.strip()
    return ""


class GeminiSummarizer(Summarizer):
    """Calls ``generateContent`` on Flash-Lite with a low temperature."""

    model = SUMMARY_MODEL

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://generativelanguage.googleapis.com",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(connect=10.0, read=60.0, write=30.0, pool=10.0),
        )

    async def summarize(
        self, messages: list[HistoryMessage], previous_summary: str | None = None
    ) -> ConversationSummary:
        if not self._api_key:
            raise ConfigurationError("Gemini API key not configured")

        conversation = conversation_text(messages)
        logger.info(
            "Summarizing %d message(s), previous summary: %s", len(messages), bool(previous_summary)
        )
        body = {
            "systemInstruction": {"parts": [{"text": SUMMARIZATION_PROMPT}]},
            "contents": [{
                "role": "user",
                "parts": [{"text": summary_request_text(conversation, previous_summary)}],
            }],
            "generationConfig": GENERATION_CONFIG,
        }
        try:
            resp = await self._client.post(
                f"/v1beta/models/{self.model}:generateContent",
                params={"key": self._api_key},
                json=body,
            )
        except httpx.HTTPError as exc:
            raise UpstreamServiceError(f"Summary request failed: {exc}") from exc
        if resp.is_error:
            logger.error("Flash-Lite HTTP %d: %s", resp.status_code, resp.text[:500])
            raise UpstreamServiceError(
                describe_http_error(resp.status_code, resp.text), status=resp.status_code
            )

        try:
            summary = _response_text(resp.json())
        except (ValueError, AttributeError) as exc:
            raise UpstreamServiceError("Unreadable summary response") from exc
        if not summary:
            raise UpstreamServiceError("No summary returned from the model")

        result = ConversationSummary(
            summary=summary,
            message_count=len(messages),
            original_length=len(conversation),
            had_previous_summary=bool(previous_summary),
        )
        logger.info(
            "Summary created: %d chars from %d (%d%% smaller)",
            len(summary), len(conversation), result.compression_ratio,
        )
        return result

    async def close(self) -> None:
        await self._client.aclose()
