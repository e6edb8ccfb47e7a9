"""
omnia.streaming.events — The shared provider event vocabulary.

Each provider adapter translates its native wire records into these three
variants before anything reaches the assembler.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class BlockKind(StrEnum):
    TEXT = "text"
    THINKING = "thinking"
    TOOL = "tool"
    SEARCH_RESULT = "search_result"


@dataclass
class BlockStart:
    """A content block opens at ``index``.

    ``tool_name``/``tool_call_id`` are set for ``TOOL`` blocks, ``sources``
    (``{"url", "title"}`` candidates) for ``SEARCH_RESULT`` blocks.
    ``provider_executed`` marks tools the provider runs itself (web search).
    """
    index: int
    kind: BlockKind
    tool_name: str = ""
    tool_call_id: str = ""
    provider_executed: bool = False
    sources: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class BlockDelta:
    """An incremental fragment: text/thinking content or partial tool JSON."""
    index: int
    text: str = ""


@dataclass
class BlockStop:
    index: int


ProviderEvent = BlockStart | BlockDelta | BlockStop


@dataclass
class ToolInvocation:
    """A finalized request from the model to run a named tool."""
    tool_call_id: str
    tool_name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    provider_executed: bool = False
