"""
omnia.tools.coordinator — Executes the tool invocations of a finished turn.

Invocations run one at a time, in the order the model emitted them, and every
outbound event is yielded before the next invocation starts.  A failing
invocation yields a scoped error event and the rest still run.

Image invocations are special: the browser keeps a single tool-result message
per tool name per turn, so every asset produced by ``generate_image`` and
``edit_image`` calls is collected and reported in one aggregated result after
all invocations have been processed.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable

from omnia.collaborators.base import Collaborators, ImageData
from omnia.core.errors import ToolArgumentError
from omnia.core.models import ErrorEvent, GeneratedAsset, OutboundEvent, ToolResult
from omnia.streaming.decoder import ToolName
from omnia.streaming.events import ToolInvocation
from omnia.tools.definitions import ARTIFACT_TYPES, ASPECT_RATIOS, DOCUMENT_TYPES

logger = logging.getLogger("omnia.tools.coordinator")

MIN_IMAGES_PER_CALL = 1
MAX_IMAGES_PER_CALL = 3

_EXTENSIONS = {"image/png": "png", "image/jpeg": "jpg", "image/webp": "webp"}

Handler = Callable[[ToolInvocation], Awaitable[OutboundEvent | None]]


def _require(invocation: ToolInvocation, *names: str) -> list[str]:
    values = []
    for name in names:
        value = invocation.arguments.get(name)
        if not isinstance(value, str) or not value.strip():
            raise ToolArgumentError(f"missing required argument '{name}'")
        values.append(value)
    return values


def clamp_image_count(raw: Any) -> int:
    try:
        count = int(raw)
    except (TypeError, ValueError):
        count = MIN_IMAGES_PER_CALL
    return max(MIN_IMAGES_PER_CALL, min(count, MAX_IMAGES_PER_CALL))


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ToolExecutionCoordinator:
    """
    Runs one turn's tool invocations against the collaborators.

    One instance per turn; it owns the turn's shared asset list.
    ``is_cancelled`` is polled before each invocation so no new work starts
    once the client has gone away.
    """

    def __init__(
        self,
        collaborators: Collaborators,
        request_id: str = "",
        is_cancelled: Callable[[], bool] | None = None,
    ) -> None:
        self._collab = collaborators
        self._request_id = request_id
        self._is_cancelled = is_cancelled or (lambda: False)
        self.assets: list[GeneratedAsset] = []
        self._image_calls: list[dict[str, Any]] = []
        self._handlers: dict[str, Handler] = {
            ToolName.GENERATE_IMAGE: self._generate_image,
            ToolName.EDIT_IMAGE: self._edit_image,
            ToolName.GENERATE_PDF: self._generate_pdf,
            ToolName.CREATE_ARTIFACT: self._create_artifact,
            ToolName.WEB_SEARCH: self._provider_executed,
        }

    async def execute(self, invocations: list[ToolInvocation]) -> AsyncIterator[OutboundEvent]:
        for invocation in invocations:
            if self._is_cancelled():
                logger.info(
                    "[%s] Client gone, skipping remaining %s tool calls",
                    self._request_id, invocation.tool_name,
                )
                return

            handler = self._handlers.get(invocation.tool_name)
            if handler is None:
                logger.warning(
                    "[%s] No executor for tool '%s', ignoring", self._request_id, invocation.tool_name
                )
                continue

            logger.info("[%s] Executing %s (%s)", self._request_id, invocation.tool_name, invocation.tool_call_id)
            try:
                event = await handler(invocation)
            except Exception as exc:
                logger.error(
                    "[%s] Tool %s failed: %s", self._request_id, invocation.tool_name, exc, exc_info=True
                )
                yield ErrorEvent(
                    request_id=self._request_id,
                    message=f"Tool {invocation.tool_name} failed: {exc}",
                    retryable=False,
                    code="tool",
                    tool=invocation.tool_name,
                    tool_call_id=invocation.tool_call_id,
                )
                continue

            if event is not None:
                yield event

        if self.assets:
            yield self._aggregated_image_result()

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    async def _generate_image(self, invocation: ToolInvocation) -> None:
        (prompt,) = _require(invocation, "prompt")
        count = clamp_image_count(invocation.arguments.get("imageCount", 1))
        aspect_ratio = invocation.arguments.get("aspectRatio") or "1:1"
        if aspect_ratio not in ASPECT_RATIOS:
            logger.warning("[%s] Unsupported aspect ratio %r, using 1:1", self._request_id, aspect_ratio)
            aspect_ratio = "1:1"

        images = await self._collab.images.generate(prompt, count, aspect_ratio)
        stamp = int(time.time() * 1000)
        uploads = await asyncio.gather(*(
            self._store(image, f"generated-{stamp}-{len(self.assets) + i}")
            for i, image in enumerate(images)
        ))

        for image, url in zip(images, uploads):
            self.assets.append(GeneratedAsset(
                asset_id=f"img_{stamp}_{len(self.assets)}",
                storage_url=url,
                model=self._collab.images.model,
                operation="generate",
                prompt=prompt,
                timestamp=_now_iso(),
                mime_type=image.mime_type,
            ))
        self._record_image_call(invocation, prompt, len(images))
        return None

    async def _edit_image(self, invocation: ToolInvocation) -> None:
        image_url, prompt = _require(invocation, "image_url", "prompt")
        image = await self._collab.images.edit(image_url, prompt)
        stamp = int(time.time() * 1000)
        url = await self._store(image, f"edited-{stamp}-{len(self.assets)}")

        self.assets.append(GeneratedAsset(
            asset_id=f"img_{stamp}_edited_{len(self.assets)}",
            storage_url=url,
            model=self._collab.images.model,
            operation="edit",
            prompt=prompt,
            timestamp=_now_iso(),
            mime_type=image.mime_type,
            original_url=image_url,
        ))
        self._record_image_call(invocation, prompt, 1)
        return None

    async def _store(self, image: ImageData, stem: str) -> str:
        ext = _EXTENSIONS.get(image.mime_type, "png")
        return await self._collab.storage.upload(image.data, f"{stem}.{ext}", image.mime_type)

    def _record_image_call(self, invocation: ToolInvocation, prompt: str, produced: int) -> None:
        self._image_calls.append({
            "tool": invocation.tool_name,
            "tool_call_id": invocation.tool_call_id,
            "prompt": prompt,
            "image_count": produced,
        })
        logger.info(
            "[%s] %s produced %d image(s), %d collected this turn",
            self._request_id, invocation.tool_name, produced, len(self.assets),
        )

    def _aggregated_image_result(self) -> ToolResult:
        return ToolResult(
            request_id=self._request_id,
            tool=ToolName.GENERATE_IMAGE,
            tool_call_id=self._image_calls[0]["tool_call_id"] if self._image_calls else None,
            payload={
                "success": True,
                "image_count": len(self.assets),
                "assets": [a.model_dump(exclude_none=True) for a in self.assets],
                "calls": list(self._image_calls),
            },
        )

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def _generate_pdf(self, invocation: ToolInvocation) -> ToolResult:
        title, content = _require(invocation, "title", "content")
        document_type = invocation.arguments.get("documentType") or "document"
        if document_type not in DOCUMENT_TYPES:
            document_type = "document"

        document = await self._collab.pdf.render(title, content, document_type)
        if document.is_fallback:
            payload = {"success": True, "title": title, "fallback": True, "html": document.html or ""}
        else:
            payload = {
                "success": True,
                "title": title,
                "filename": document.filename,
                "base64": base64.b64encode(document.data or b"").decode("ascii"),
            }
        return ToolResult(
            request_id=self._request_id,
            tool=invocation.tool_name,
            tool_call_id=invocation.tool_call_id,
            payload=payload,
        )

    async def _create_artifact(self, invocation: ToolInvocation) -> ToolResult:
        title, html = _require(invocation, "title", "html_content")
        artifact_type = invocation.arguments.get("artifact_type") or "app"
        if artifact_type not in ARTIFACT_TYPES:
            artifact_type = "app"

        artifact = await self._collab.artifacts.create(title, html, artifact_type)
        return ToolResult(
            request_id=self._request_id,
            tool=invocation.tool_name,
            tool_call_id=invocation.tool_call_id,
            payload={"success": True, "artifact": artifact.to_payload()},
        )

    # ------------------------------------------------------------------
    # Provider-executed
    # ------------------------------------------------------------------

    async def _provider_executed(self, invocation: ToolInvocation) -> None:
        logger.debug(
            "[%s] %s already executed by the provider", self._request_id, invocation.tool_name
        )
        return None
