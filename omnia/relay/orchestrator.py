"""
omnia.relay.orchestrator — Drives one chat turn from bearer token to terminal event.

    AUTHENTICATING → STREAMING_UPSTREAM → (TOOL_EXECUTION) → COMPLETED
                 ╲              ╲                 ╲
                  ╰──────────────┴─────────────────┴──→ ERRORED

Every path ends in exactly one terminal event (``completed`` or a terminal
``error``) followed by closing the emitter.  No exception leaves ``run()``.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import StrEnum
from typing import AsyncIterable

from omnia.adapters.base import BaseAdapter, EventTranslator
from omnia.collaborators.base import Collaborators
from omnia.core.errors import RelayError, Unauthenticated
from omnia.core.models import (
    Caller,
    ChatRequest,
    ErrorEvent,
    HistoryMessage,
    Provider,
    RelayConfig,
    SearchCompleted,
    SearchStarted,
    TextDelta,
    ThinkingSignal,
    ToolPreparing,
    TurnCompleted,
)
from omnia.relay.emitter import NDJSONEmitter
from omnia.streaming.assembler import BlockAssembler
from omnia.streaming.decoder import ToolName
from omnia.streaming.events import BlockDelta, BlockKind, BlockStart, BlockStop, ProviderEvent
from omnia.streaming.framing import LineFramer
from omnia.streaming.sources import SourceAggregator
from omnia.tools.coordinator import ToolExecutionCoordinator
from omnia.tools.definitions import preparing_label

logger = logging.getLogger("omnia.relay.orchestrator")


class TurnState(StrEnum):
    AUTHENTICATING = "authenticating"
    STREAMING_UPSTREAM = "streaming_upstream"
    TOOL_EXECUTION = "tool_execution"
    COMPLETED = "completed"
    ERRORED = "errored"


@dataclass
class RequestContext:
    """All mutable state of one turn.  Created per request, discarded at turn end."""

    request_id: str
    provider: Provider
    messages: list[HistoryMessage]
    system_prompt: str
    summary: str | None = None
    model_id: str | None = None
    deep_reasoning: bool = False
    image_mode: bool = False
    max_tokens: int = 8000
    caller: Caller | None = None

    state: TurnState = TurnState.AUTHENTICATING
    assembler: BlockAssembler = field(init=False)
    sources: SourceAggregator = field(default_factory=SourceAggregator)
    text_emitted: bool = False

    def __post_init__(self) -> None:
        self.assembler = BlockAssembler(self.request_id)

    @classmethod
    def from_request(
        cls, request: ChatRequest, provider: Provider, config: RelayConfig
    ) -> "RequestContext":
        return cls(
            request_id=request.request_id,
            provider=provider,
            messages=request.messages,
            system_prompt=request.system or config.default_system_prompt,
            summary=request.summary,
            model_id=request.model_id,
            deep_reasoning=request.deep_reasoning,
            image_mode=request.image_mode,
            max_tokens=request.max_tokens or config.max_tokens,
        )


class TurnOrchestrator:
    """
    Runs one turn: authenticate, pump the upstream stream, execute the tools
    the model invoked, then emit the terminal event.

    Designed to run as its own task while the HTTP response drains the
    emitter; once the emitter reports a disconnect the upstream read stops
    and no new tool work starts.
    """

    def __init__(
        self,
        adapter: BaseAdapter,
        collaborators: Collaborators | None,
        emitter: NDJSONEmitter,
    ) -> None:
        self._adapter = adapter
        self._collab = collaborators
        self._emitter = emitter

    async def run(self, context: RequestContext, token: str | None) -> None:
        assert self._collab is not None
        rid = context.request_id
        try:
            context.state = TurnState.AUTHENTICATING
            context.caller = await self._collab.auth.resolve(token)
            logger.info("[%s] Caller %s (%s)", rid, context.caller.user_id, context.caller.tier)

            context.state = TurnState.STREAMING_UPSTREAM
            await self._stream_upstream(context)
            if self._emitter.disconnected:
                logger.info("[%s] Turn abandoned by client", rid)
                return

            invocations = context.assembler.invocations
            if invocations:
                context.state = TurnState.TOOL_EXECUTION
                logger.info("[%s] Executing %d tool call(s)", rid, len(invocations))
                coordinator = ToolExecutionCoordinator(
                    self._collab, rid, is_cancelled=lambda: self._emitter.disconnected
                )
                async for event in coordinator.execute(invocations):
                    self._emitter.emit(event)

            context.state = TurnState.COMPLETED
            self._emitter.emit(TurnCompleted(
                sources=context.sources.sources,
                web_search_used=len(context.sources) > 0,
            ))
            logger.info(
                "[%s] Turn completed: %d chars, %d source(s)",
                rid, len(context.assembler.text()), len(context.sources),
            )
        except RelayError as exc:
            self._fail(context, str(exc), exc.retryable, exc.code)
        except Exception as exc:
            if context.state is TurnState.AUTHENTICATING:
                logger.error("[%s] Auth resolver failed: %s", rid, exc, exc_info=True)
                self._fail(context, "Authentication failed", False, Unauthenticated.code)
                return
            # Fatal stream failure: retrying is only safe before any text reached the client.
            logger.error("[%s] Stream aborted in %s: %s", rid, context.state, exc, exc_info=True)
            self._fail(context, f"Stream interrupted: {exc}", not context.text_emitted, "stream")
        finally:
            self._emitter.close()

    def _fail(self, context: RequestContext, message: str, retryable: bool, code: str) -> None:
        logger.warning(
            "[%s] Turn failed in %s: %s (retryable=%s)", context.request_id, context.state, message, retryable
        )
        context.state = TurnState.ERRORED
        self._emitter.emit(ErrorEvent(message=message, retryable=retryable, code=code))

    # ------------------------------------------------------------------
    # Upstream
    # ------------------------------------------------------------------

    async def _stream_upstream(self, context: RequestContext) -> None:
        """
        Run ``pump()`` as a child task that a client disconnect cancels.

        A silent upstream never hands control back to the pump loop, so the
        disconnect has to interrupt the pending read itself.  The callback is
        released before tool execution starts; running tools are not cancelled.
        """
        if self._emitter.disconnected:
            return
        pump = asyncio.create_task(self.pump(context, self._adapter.open_stream(context)))
        release = self._emitter.on_disconnect(pump.cancel)
        try:
            await pump
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if not self._emitter.disconnected or (current is not None and current.cancelling()):
                raise
            logger.info("[%s] Client gone, upstream stream released", context.request_id)
        finally:
            release()

    async def pump(self, context: RequestContext, chunks: AsyncIterable[bytes]) -> None:
        """Feed upstream bytes through framer, translator and assembler, emitting live events."""
        framer = LineFramer()
        translator = self._adapter.translator()

        async with aclosing(chunks) as stream:
            async for chunk in stream:
                if self._emitter.disconnected:
                    logger.info("[%s] Client gone, releasing upstream stream", context.request_id)
                    return
                for record in framer.feed(chunk):
                    self._dispatch(context, translator, record)

        for record in framer.flush():
            self._dispatch(context, translator, record)
        for event in translator.finish():
            self._apply(context, event)

    def _dispatch(self, context: RequestContext, translator: EventTranslator, record: dict) -> None:
        for event in translator.translate(record):
            self._apply(context, event)

    def _apply(self, context: RequestContext, event: ProviderEvent) -> None:
        block = context.assembler.apply(event)
        if block is None:
            return

        if isinstance(event, BlockStart):
            if block.kind is BlockKind.THINKING:
                self._emitter.emit(ThinkingSignal(started=True))
            elif block.kind is BlockKind.TOOL:
                if block.tool_name == ToolName.WEB_SEARCH:
                    self._emitter.emit(SearchStarted())
                else:
                    self._emitter.emit(ToolPreparing(
                        tool=block.tool_name, label=preparing_label(block.tool_name)
                    ))

        elif isinstance(event, BlockDelta):
            if block.kind is BlockKind.TEXT and event.text:
                context.text_emitted = True
                self._emitter.emit(TextDelta(content=event.text))

        elif isinstance(event, BlockStop):
            if block.kind is BlockKind.THINKING:
                self._emitter.emit(ThinkingSignal(started=False))
            elif block.kind is BlockKind.SEARCH_RESULT:
                sources = context.sources.add(block.sources)
                self._emitter.emit(SearchCompleted(
                    sources=sources, message=f"Found {len(sources)} sources"
                ))
