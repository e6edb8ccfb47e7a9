"""
omnia.streaming.decoder — Closed tool block → ``ToolInvocation``.

Pure functions, no I/O.  Unknown tool names are preserved; the coordinator
routes them to a no-op branch.
"""

from __future__ import annotations

import json
from enum import StrEnum
from typing import TYPE_CHECKING

from omnia.streaming.events import ToolInvocation

if TYPE_CHECKING:
    from omnia.streaming.assembler import ContentBlock


class ToolName(StrEnum):
    GENERATE_IMAGE = "generate_image"
    EDIT_IMAGE = "edit_image"
    GENERATE_PDF = "generate_pdf"
    CREATE_ARTIFACT = "create_artifact"
    WEB_SEARCH = "web_search"

    @classmethod
    def known(cls, name: str) -> bool:
        return name in cls._value2member_map_


class ArgumentDecodeError(ValueError):
    """The accumulated argument fragment is not a JSON object."""


def parse_arguments(fragment: str) -> dict:
    """Parse a tool's concatenated argument fragments.

    An empty fragment means the model invoked the tool without arguments and
    yields ``{}``.
    """
    if not fragment.strip():
        return {}
    try:
        value = json.loads(fragment)
    except json.JSONDecodeError as exc:
        raise ArgumentDecodeError(str(exc)) from exc
    if not isinstance(value, dict):
        raise ArgumentDecodeError(f"expected a JSON object, got {type(value).__name__}")
    return value


def decode_tool_invocation(block: "ContentBlock") -> ToolInvocation:
    """Build the invocation for a closed tool block.

    Raises ``ArgumentDecodeError`` when the fragment does not parse.
    """
    return ToolInvocation(
        tool_call_id=block.tool_call_id or f"call_{block.index}",
        tool_name=block.tool_name,
        arguments=parse_arguments(block.fragment),
        provider_executed=block.provider_executed,
    )
