"""Tests for citation aggregation and domain extraction."""

from __future__ import annotations

import pytest

from omnia.core.models import Source, extract_domain
from omnia.streaming.sources import SourceAggregator


def candidates(n: int, start: int = 0) -> list[dict]:
    return [{"url": f"https://site{i}.example/page", "title": f"Site {i}"} for i in range(start, start + n)]


class TestSourceAggregator:
    """Tests for dedup, per-block and per-turn caps."""

    def test_duplicate_urls_keep_first_occurrence(self) -> None:
        """Sources A, A, B yield A, B with A's first title."""
        agg = SourceAggregator()
        sources = agg.add([
            {"url": "https://a.example", "title": "First A"},
            {"url": "https://a.example", "title": "Second A"},
            {"url": "https://b.example", "title": "B"},
        ])

        assert [s.url for s in sources] == ["https://a.example", "https://b.example"]
        assert sources[0].title == "First A"

    def test_duplicates_across_blocks(self) -> None:
        agg = SourceAggregator()
        agg.add([{"url": "https://a.example", "title": "A"}])
        agg.add([{"url": "https://a.example", "title": "A again"}, {"url": "https://c.example"}])

        assert [s.url for s in agg.sources] == ["https://a.example", "https://c.example"]
        assert agg.sources[1].title == "Untitled"

    def test_per_block_limit(self) -> None:
        """Only the first five candidates of one search result are considered."""
        agg = SourceAggregator()
        agg.add(candidates(8))
        assert len(agg) == 5
        assert agg.sources[-1].url == "https://site4.example/page"

    def test_turn_cap(self) -> None:
        """Twenty-five distinct sources across blocks are capped at twenty, in first-seen order."""
        agg = SourceAggregator()
        for block in range(5):
            agg.add(candidates(5, start=block * 5))

        assert len(agg) == 20
        assert agg.sources[0].url == "https://site0.example/page"
        assert agg.sources[-1].url == "https://site19.example/page"

    def test_candidates_without_url_are_skipped(self) -> None:
        """Url-less candidates do not count towards the per-block limit."""
        agg = SourceAggregator()
        agg.add([{"title": "no url"}, {"url": ""}, "junk", *candidates(5)])
        assert len(agg) == 5

    def test_accepts_gemini_uri_key_and_source_objects(self) -> None:
        agg = SourceAggregator()
        agg.add([{"uri": "https://g.example/x", "title": "G"}, Source.from_candidate("https://s.example")])
        assert [s.url for s in agg.sources] == ["https://g.example/x", "https://s.example"]


class TestExtractDomain:
    """Tests for extract_domain."""

    @pytest.mark.parametrize(
        "url, expected",
        [
            ("https://www.Example.com/path?q=1", "example.com"),
            ("http://news.bbc.co.uk/story", "news.bbc.co.uk"),
            ("example.org/page", "example.org"),
            ("https://sub.www.example.com", "sub.www.example.com"),
        ],
    )
    def test_domains(self, url: str, expected: str) -> None:
        assert extract_domain(url) == expected

    @pytest.mark.parametrize("url", ["", "https://", "://"])
    def test_unknown_when_no_host(self, url: str) -> None:
        assert extract_domain(url) == "Unknown"

    def test_source_from_candidate(self) -> None:
        source = Source.from_candidate("https://www.python.org/doc/", None)
        assert source.title == "Untitled"
        assert source.domain == "python.org"
        assert source.timestamp > 0
