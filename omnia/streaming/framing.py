"""
omnia.streaming.framing — Byte stream → JSON records.

Both upstream providers speak SSE over HTTP.  Chunk boundaries from the
network line up with neither line boundaries nor UTF-8 code points, so the
framer decodes incrementally and carries any trailing partial line over to
the next chunk.
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import Any

logger = logging.getLogger("omnia.streaming.framing")

COMMENT_SENTINEL = ":"
DATA_PREFIX = "data:"
DONE_MARKER = "[DONE]"

# SSE fields that carry nothing the assembler needs; the record type is
# repeated inside every data payload.
_IGNORED_FIELDS = ("event:", "id:", "retry:")


class LineFramer:
    """
    Incremental framer for one upstream stream.

    ``feed()`` returns the JSON records completed by a chunk; ``flush()``
    frames whatever is left once the stream ends.  A malformed line is logged
    and skipped, never raised.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._carry = ""
        self.skipped_lines = 0

    def feed(self, chunk: bytes) -> list[dict[str, Any]]:
        text = self._carry + self._decoder.decode(chunk)
        lines = text.split("\n")
        self._carry = lines.pop()
        return self._frame(lines)

    def flush(self) -> list[dict[str, Any]]:
        tail = self._carry + self._decoder.decode(b"", final=True)
        self._carry = ""
        return self._frame([tail])

    def _frame(self, lines: list[str]) -> list[dict[str, Any]]:
        records: list[dict[str, Any]] = []
        for raw in lines:
            record = self._parse_line(raw.rstrip("\r"))
            if record is not None:
                records.append(record)
        return records

    def _parse_line(self, line: str) -> dict[str, Any] | None:
        if not line.strip() or line.startswith(COMMENT_SENTINEL):
            return None
        if line.startswith(_IGNORED_FIELDS):
            return None

        payload = line
        if line.startswith(DATA_PREFIX):
            payload = line[len(DATA_PREFIX):].lstrip()
        if payload.strip() == DONE_MARKER:
            return None

        try:
            record = json.loads(payload)
        except json.JSONDecodeError:
            self.skipped_lines += 1
            logger.warning("Skipping malformed stream line: %.200s", payload)
            return None

        if not isinstance(record, dict):
            self.skipped_lines += 1
            logger.warning("Skipping non-object stream record: %.200s", payload)
            return None
        return record
