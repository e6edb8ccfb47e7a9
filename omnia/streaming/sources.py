"""
omnia.streaming.sources — Web-search citation aggregation for one turn.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from omnia.core.models import Source

logger = logging.getLogger("omnia.streaming.sources")

MAX_SOURCES_PER_BLOCK = 5
MAX_SOURCES_PER_TURN = 20


class SourceAggregator:
    """
    Deduplicates and caps the sources surfaced during a turn.

    ``add()`` is called once per closed search-result block.  Of each batch
    at most ``MAX_SOURCES_PER_BLOCK`` candidates with a url are accepted; the
    full url string is the dedup key and the first-seen title wins.  The
    cumulative list never exceeds ``MAX_SOURCES_PER_TURN`` and keeps the
    order in which urls first appeared.
    """

    def __init__(
        self,
        per_block: int = MAX_SOURCES_PER_BLOCK,
        cap: int = MAX_SOURCES_PER_TURN,
    ) -> None:
        self._per_block = per_block
        self._cap = cap
        self._sources: dict[str, Source] = {}

    def add(self, candidates: Iterable[Any]) -> list[Source]:
        accepted = 0
        for candidate in candidates:
            if accepted >= self._per_block:
                break
            source = self._coerce(candidate)
            if source is None:
                continue
            accepted += 1
            if source.url not in self._sources and len(self._sources) < self._cap:
                self._sources[source.url] = source
        logger.debug("Source list now holds %d entries", len(self._sources))
        return self.sources

    @property
    def sources(self) -> list[Source]:
        return list(self._sources.values())

    def __len__(self) -> int:
        return len(self._sources)

    @staticmethod
    def _coerce(candidate: Any) -> Source | None:
        if isinstance(candidate, Source):
            return candidate
        if isinstance(candidate, dict):
            url = candidate.get("url") or candidate.get("uri")
            if not url:
                return None
            return Source.from_candidate(url, candidate.get("title"))
        return None
