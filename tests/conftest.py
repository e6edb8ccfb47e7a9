"""Shared test doubles: fake collaborators and canned upstream streams."""

from __future__ import annotations

import json
from typing import Any, Callable

import httpx

from omnia.adapters.anthropic import AnthropicAdapter
from omnia.adapters.google import GoogleAdapter
from omnia.collaborators.base import (
    AuthResolver,
    Collaborators,
    ImageCollaborator,
    ImageData,
    PdfCollaborator,
    PdfDocument,
    ConversationSummary,
    StorageCollaborator,
    Summarizer,
)
from omnia.collaborators.documents import HtmlArtifactBuilder
from omnia.core.errors import ToolExecutionError, Unauthenticated, UpstreamServiceError
from omnia.core.models import Caller, HistoryMessage, PermissionTier


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------

class FakeAuth(AuthResolver):
    def __init__(self, caller: Caller | None = None, error: Exception | None = None) -> None:
        self.caller = caller or Caller(user_id="user-1", tier=PermissionTier.USER)
        self.error = error
        self.tokens: list[str | None] = []

    async def resolve(self, token: str | None) -> Caller:
        self.tokens.append(token)
        if self.error is not None:
            raise self.error
        if not token:
            raise Unauthenticated("Authorization token required")
        return self.caller


class FakeImages(ImageCollaborator):
    model = "fake-image-model"

    def __init__(self, fail_prompts: tuple[str, ...] = ()) -> None:
        self.fail_prompts = fail_prompts
        self.generate_calls: list[tuple[str, int, str]] = []
        self.edit_calls: list[tuple[str, str]] = []

    async def generate(self, prompt: str, count: int, aspect_ratio: str) -> list[ImageData]:
        self.generate_calls.append((prompt, count, aspect_ratio))
        if prompt in self.fail_prompts:
            raise ToolExecutionError("image model exploded")
        return [ImageData(data=f"png-{i}".encode()) for i in range(count)]

    async def edit(self, source_url: str, instruction: str) -> ImageData:
        self.edit_calls.append((source_url, instruction))
        return ImageData(data=b"edited", mime_type="image/jpeg")


class FakeStorage(StorageCollaborator):
    def __init__(self) -> None:
        self.uploads: list[tuple[str, str]] = []

    async def upload(self, data: bytes, filename: str, mime_type: str) -> str:
        self.uploads.append((filename, mime_type))
        return f"https://storage.test/public/{filename}"


class FakePdf(PdfCollaborator):
    def __init__(self, fallback: bool = False) -> None:
        self.fallback = fallback

    async def render(self, title: str, content: str, document_type: str) -> PdfDocument:
        if self.fallback:
            return PdfDocument(title=title, filename=f"{title}.pdf", html=f"<h1>{title}</h1>")
        return PdfDocument(title=title, filename=f"{title}.pdf", data=b"%PDF-1.4 fake")


class FakeSummarizer(Summarizer):
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[tuple[int, str | None]] = []

    async def summarize(
        self, messages: list[HistoryMessage], previous_summary: str | None = None
    ) -> ConversationSummary:
        self.calls.append((len(messages), previous_summary))
        if self.fail:
            raise UpstreamServiceError("Server unavailable, please try again later.", status=503)
        return ConversationSummary(
            summary="Summary so far.",
            message_count=len(messages),
            original_length=100,
            had_previous_summary=bool(previous_summary),
        )

def make_collaborators(**overrides: Any) -> Collaborators:
    services: dict[str, Any] = {
        "auth": FakeAuth(),
        "images": FakeImages(),
        "storage": FakeStorage(),
        "pdf": FakePdf(),
        "artifacts": HtmlArtifactBuilder(),
        "summarizer": FakeSummarizer(),
    }
    services.update(overrides)
    return Collaborators(**services)


# ---------------------------------------------------------------------------
# Upstream streams
# ---------------------------------------------------------------------------

def anthropic_sse(*records: dict[str, Any]) -> bytes:
    """Encode records the way Claude's Messages API streams them."""
    return "".join(
        f"event: {r['type']}\ndata: {json.dumps(r)}\n\n" for r in records
    ).encode("utf-8")


def gemini_sse(*records: dict[str, Any]) -> bytes:
    """Encode records the way ``streamGenerateContent?alt=sse`` streams them."""
    return "".join(f"data: {json.dumps(r)}\r\n\r\n" for r in records).encode("utf-8")


def text_block(index: int, *parts: str) -> list[dict[str, Any]]:
    return [
        {"type": "content_block_start", "index": index, "content_block": {"type": "text", "text": ""}},
        *(
            {"type": "content_block_delta", "index": index, "delta": {"type": "text_delta", "text": p}}
            for p in parts
        ),
        {"type": "content_block_stop", "index": index},
    ]


def tool_block(
    index: int, name: str, call_id: str, *fragments: str, server: bool = False
) -> list[dict[str, Any]]:
    return [
        {
            "type": "content_block_start",
            "index": index,
            "content_block": {
                "type": "server_tool_use" if server else "tool_use",
                "id": call_id,
                "name": name,
                "input": {},
            },
        },
        *(
            {"type": "content_block_delta", "index": index, "delta": {"type": "input_json_delta", "partial_json": f}}
            for f in fragments
        ),
        {"type": "content_block_stop", "index": index},
    ]


MESSAGE_START = {"type": "message_start", "message": {"id": "msg_1", "usage": {"input_tokens": 12}}}
MESSAGE_STOP = {"type": "message_stop"}


# The canonical "draw a cat" turn: one text block followed by an image tool call.
DRAW_A_CAT = anthropic_sse(
    MESSAGE_START,
    *text_block(0, "Sure, ", "here's a cat."),
    *tool_block(1, "generate_image", "toolu_1", '{"prompt": "a ca', 't"}'),
    {"type": "message_delta", "delta": {"stop_reason": "tool_use"}},
    MESSAGE_STOP,
)


def mock_client(
    handler: Callable[[httpx.Request], httpx.Response],
    base_url: str = "https://upstream.test",
) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=base_url)


def streaming_handler(body: bytes, status: int = 200, calls: list | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        return httpx.Response(status, content=body, headers={"content-type": "text/event-stream"})

    return handler


def anthropic_adapter(body: bytes, status: int = 200, calls: list | None = None, api_key: str = "sk-test"):
    return AnthropicAdapter(api_key=api_key, client=mock_client(streaming_handler(body, status, calls)))


def google_adapter(body: bytes, status: int = 200, calls: list | None = None, api_key: str = "g-test"):
    return GoogleAdapter(api_key=api_key, client=mock_client(streaming_handler(body, status, calls)))
