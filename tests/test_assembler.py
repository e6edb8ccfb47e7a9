"""Tests for the content block assembler and argument decoding."""

from __future__ import annotations

import pytest

from omnia.streaming.assembler import BlockAssembler, BlockState
from omnia.streaming.decoder import (
    ArgumentDecodeError,
    ToolName,
    decode_tool_invocation,
    parse_arguments,
)
from omnia.streaming.events import BlockDelta, BlockKind, BlockStart, BlockStop


class TestBlockAssembler:
    """Tests for per-index block state transitions."""

    def test_interleaved_indexes_accumulate_independently(self) -> None:
        """Deltas for different open blocks never mix."""
        asm = BlockAssembler("req-1")
        for event in [
            BlockStart(0, BlockKind.TEXT),
            BlockStart(1, BlockKind.TOOL, tool_name="generate_image", tool_call_id="toolu_1"),
            BlockDelta(0, "Hello "),
            BlockDelta(1, '{"prompt": '),
            BlockDelta(0, "world"),
            BlockDelta(1, '"a cat"}'),
            BlockStop(1),
            BlockStop(0),
        ]:
            asm.apply(event)

        assert asm.text() == "Hello world"
        assert asm.block(1).fragment == '{"prompt": "a cat"}'
        assert [i.arguments for i in asm.invocations] == [{"prompt": "a cat"}]
        assert asm.open_indexes() == []

    def test_tool_without_deltas_yields_empty_arguments(self) -> None:
        """A tool block closed with no argument fragments decodes to {}."""
        asm = BlockAssembler()
        asm.apply(BlockStart(0, BlockKind.TOOL, tool_name="create_artifact", tool_call_id="t0"))
        asm.apply(BlockStop(0))

        assert len(asm.invocations) == 1
        assert asm.invocations[0].arguments == {}

    def test_unparseable_arguments_are_dropped(self) -> None:
        """A tool block whose JSON never parses produces no invocation."""
        asm = BlockAssembler()
        asm.apply(BlockStart(0, BlockKind.TOOL, tool_name="generate_image", tool_call_id="t0"))
        asm.apply(BlockDelta(0, '{"prompt": "a c'))
        block = asm.apply(BlockStop(0))

        assert asm.invocations == []
        assert asm.dropped == [block]
        assert block.state is BlockState.CLOSED

    def test_delta_for_unopened_block_is_ignored(self) -> None:
        """A delta with no prior start is a protocol violation and changes nothing."""
        asm = BlockAssembler()
        assert asm.apply(BlockDelta(3, "orphan")) is None
        assert asm.blocks == []

    def test_delta_after_stop_is_ignored(self) -> None:
        """Closed blocks are terminal."""
        asm = BlockAssembler()
        asm.apply(BlockStart(0, BlockKind.TEXT))
        asm.apply(BlockDelta(0, "done"))
        asm.apply(BlockStop(0))

        assert asm.apply(BlockDelta(0, " more")) is None
        assert asm.apply(BlockStop(0)) is None
        assert asm.text() == "done"

    def test_duplicate_start_is_ignored(self) -> None:
        """Restarting an index keeps the original block."""
        asm = BlockAssembler()
        asm.apply(BlockStart(0, BlockKind.TEXT))
        asm.apply(BlockDelta(0, "kept"))

        assert asm.apply(BlockStart(0, BlockKind.TOOL, tool_name="generate_pdf")) is None
        assert asm.block(0).kind is BlockKind.TEXT
        assert asm.text() == "kept"

    def test_text_joins_blocks_in_index_order(self) -> None:
        """Thinking text is kept on its block but excluded from the visible text."""
        asm = BlockAssembler()
        asm.apply(BlockStart(1, BlockKind.TEXT))
        asm.apply(BlockStart(0, BlockKind.THINKING))
        asm.apply(BlockStart(2, BlockKind.TEXT))
        asm.apply(BlockDelta(2, "second"))
        asm.apply(BlockDelta(0, "pondering"))
        asm.apply(BlockDelta(1, "first "))

        assert asm.text() == "first second"
        assert asm.block(0).text == "pondering"
        assert asm.open_indexes() == [0, 1, 2]

    def test_provider_executed_flag_carried_to_invocation(self) -> None:
        asm = BlockAssembler()
        asm.apply(BlockStart(0, BlockKind.TOOL, tool_name="web_search", tool_call_id="srv_1", provider_executed=True))
        asm.apply(BlockDelta(0, '{"query": "weather"}'))
        asm.apply(BlockStop(0))

        assert asm.invocations[0].provider_executed is True

    def test_rejects_foreign_event_types(self) -> None:
        with pytest.raises(TypeError):
            BlockAssembler().apply({"index": 0})


class TestArgumentDecoding:
    """Tests for parse_arguments and decode_tool_invocation."""

    @pytest.mark.parametrize("fragment", ["", "   ", "\n"])
    def test_blank_fragment_is_empty_object(self, fragment: str) -> None:
        assert parse_arguments(fragment) == {}

    def test_parses_object(self) -> None:
        assert parse_arguments('{"prompt": "a cat", "imageCount": 2}') == {"prompt": "a cat", "imageCount": 2}

    @pytest.mark.parametrize("fragment", ['{"prompt": ', "[1, 2]", '"text"', "42"])
    def test_rejects_incomplete_or_non_object_json(self, fragment: str) -> None:
        with pytest.raises(ArgumentDecodeError):
            parse_arguments(fragment)

    def test_missing_call_id_falls_back_to_index(self) -> None:
        """A block without a provider id gets a stable synthetic one."""
        asm = BlockAssembler()
        block = asm.apply(BlockStart(4, BlockKind.TOOL, tool_name="generate_pdf"))
        invocation = decode_tool_invocation(block)

        assert invocation.tool_call_id == "call_4"
        assert invocation.tool_name == "generate_pdf"

    def test_known_tool_names(self) -> None:
        assert ToolName.known("edit_image")
        assert not ToolName.known("launch_rocket")
