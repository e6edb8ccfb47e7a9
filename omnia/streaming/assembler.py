"""
omnia.streaming.assembler — Per-index content block state machine.

Providers interleave text, thinking and tool-argument deltas across several
block indexes.  The assembler keeps an explicit ``index → ContentBlock`` map
with three legal transitions:

    absent → OPEN      (BlockStart: kind and tool metadata captured)
    OPEN   → OPEN      (BlockDelta: text appended, or argument fragment appended)
    OPEN   → CLOSED    (BlockStop: tool fragment decoded into an invocation)

``CLOSED`` is terminal.  Anything else is a protocol violation: it is logged
and ignored so a misbehaving stream can never abort the turn.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from omnia.streaming.decoder import ArgumentDecodeError, decode_tool_invocation
from omnia.streaming.events import (
    BlockDelta,
    BlockKind,
    BlockStart,
    BlockStop,
    ProviderEvent,
    ToolInvocation,
)

logger = logging.getLogger("omnia.streaming.assembler")


class BlockState(StrEnum):
    OPEN = "open"
    CLOSED = "closed"


@dataclass
class ContentBlock:
    index: int
    kind: BlockKind
    state: BlockState = BlockState.OPEN
    text: str = ""
    fragment: str = ""
    tool_name: str = ""
    tool_call_id: str = ""
    provider_executed: bool = False
    sources: list[dict[str, Any]] = field(default_factory=list)
    invocation: ToolInvocation | None = None


class BlockAssembler:
    """Reconstructs the content blocks of one turn."""

    def __init__(self, request_id: str = "") -> None:
        self._request_id = request_id
        self._blocks: dict[int, ContentBlock] = {}
        self.invocations: list[ToolInvocation] = []
        self.dropped: list[ContentBlock] = []

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def apply(self, event: ProviderEvent) -> ContentBlock | None:
        """Apply one provider event; returns the affected block, or ``None`` if ignored."""
        if isinstance(event, BlockStart):
            return self.start(event)
        if isinstance(event, BlockDelta):
            return self.delta(event)
        if isinstance(event, BlockStop):
            return self.stop(event)
        raise TypeError(f"Unsupported provider event: {event!r}")

    def start(self, event: BlockStart) -> ContentBlock | None:
        if event.index in self._blocks:
            logger.warning(
                "[%s] Duplicate start for block %d ignored", self._request_id, event.index
            )
            return None
        block = ContentBlock(
            index=event.index,
            kind=event.kind,
            tool_name=event.tool_name,
            tool_call_id=event.tool_call_id,
            provider_executed=event.provider_executed,
            sources=list(event.sources),
        )
        self._blocks[event.index] = block
        logger.debug("[%s] Block %d opened (%s)", self._request_id, event.index, event.kind)
        return block

    def delta(self, event: BlockDelta) -> ContentBlock | None:
        block = self._open_block(event.index, "delta")
        if block is None:
            return None
        if block.kind is BlockKind.TOOL:
            block.fragment += event.text
        else:
            block.text += event.text
        return block

    def stop(self, event: BlockStop) -> ContentBlock | None:
        block = self._open_block(event.index, "stop")
        if block is None:
            return None
        block.state = BlockState.CLOSED

        if block.kind is BlockKind.TOOL:
            try:
                block.invocation = decode_tool_invocation(block)
            except ArgumentDecodeError as exc:
                logger.warning(
                    "[%s] Dropping tool call %s (%s): unparseable arguments: %s",
                    self._request_id, block.tool_call_id, block.tool_name, exc,
                )
                self.dropped.append(block)
            else:
                self.invocations.append(block.invocation)
                logger.info(
                    "[%s] Tool call finalized: %s %s",
                    self._request_id, block.tool_name, block.invocation.arguments,
                )
        return block

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def block(self, index: int) -> ContentBlock | None:
        return self._blocks.get(index)

    @property
    def blocks(self) -> list[ContentBlock]:
        return [self._blocks[i] for i in sorted(self._blocks)]

    def open_indexes(self) -> list[int]:
        return sorted(i for i, b in self._blocks.items() if b.state is BlockState.OPEN)

    def text(self) -> str:
        """Concatenated visible text of the turn, in index order."""
        return "".join(b.text for b in self.blocks if b.kind is BlockKind.TEXT)

    def _open_block(self, index: int, what: str) -> ContentBlock | None:
        block = self._blocks.get(index)
        if block is None:
            logger.warning("[%s] %s for unopened block %d ignored", self._request_id, what, index)
            return None
        if block.state is BlockState.CLOSED:
            logger.warning("[%s] %s for closed block %d ignored", self._request_id, what, index)
            return None
        return block
