"""
omnia.streaming — Provider-agnostic stream reconstruction.

Line framing, per-index content block assembly, tool invocation decoding and
web-search source aggregation.  Nothing in this package performs I/O.
"""

from omnia.streaming.assembler import BlockAssembler, BlockState, ContentBlock
from omnia.streaming.decoder import ToolName, decode_tool_invocation
from omnia.streaming.events import (
    BlockDelta,
    BlockKind,
    BlockStart,
    BlockStop,
    ProviderEvent,
    ToolInvocation,
)
from omnia.streaming.framing import LineFramer
from omnia.streaming.sources import SourceAggregator

__all__ = [
    "BlockAssembler",
    "BlockDelta",
    "BlockKind",
    "BlockStart",
    "BlockState",
    "BlockStop",
    "ContentBlock",
    "LineFramer",
    "ProviderEvent",
    "SourceAggregator",
    "ToolInvocation",
    "ToolName",
    "decode_tool_invocation",
]
