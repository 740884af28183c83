"""Tests for sector classification."""

import pytest

from ccmemory.memory.classifier import SECTOR_PRIORITY, classify_sector, score_sectors
from ccmemory.memory.schema import Sector


class TestClassifySector:
    """Tests for classify_sector."""

    @pytest.mark.parametrize(
        "content,expected",
        [
            ("I am so frustrated with this flaky build", Sector.EMOTIONAL),
            ("Learned that retries hide the real failure", Sector.REFLECTIVE),
            ("User wanted dark mode in the settings page", Sector.EPISODIC),
            ("First run the migrations, then restart the worker", Sector.PROCEDURAL),
            ("The config is located in settings.py", Sector.SEMANTIC),
        ],
    )
    def test_clear_signals(self, content, expected):
        """Test content with an unambiguous winner."""
        assert classify_sector(content) == expected

    def test_empty_content_is_semantic(self):
        assert classify_sector("") == Sector.SEMANTIC

    def test_no_signals_is_semantic(self):
        assert classify_sector("qwerty zxcv") == Sector.SEMANTIC

    def test_deterministic(self):
        """Test that repeated classification of the same text agrees."""
        content = "We discussed how to deploy the service and I prefer blue-green"
        results = {classify_sector(content) for _ in range(10)}
        assert len(results) == 1

    @pytest.mark.parametrize(
        "content,expected",
        [
            # emotional beats reflective
            ("I prefer this pattern", Sector.EMOTIONAL),
            # reflective beats episodic
            ("I noticed earlier", Sector.REFLECTIVE),
            # episodic beats procedural
            ("The user asked how to", Sector.EPISODIC),
            # procedural beats semantic
            ("workflow for the function", Sector.PROCEDURAL),
            # episodic beats semantic
            ("User asked about a file", Sector.EPISODIC),
        ],
    )
    def test_ties_follow_priority_order(self, content, expected):
        """Test that equal match counts resolve by sector priority."""
        scores = score_sectors(content)
        top = max(scores.values())
        tied = [sector for sector in SECTOR_PRIORITY if scores[sector] == top]
        assert len(tied) == 2
        assert classify_sector(content) == expected

    def test_more_matches_beat_priority(self):
        """Test that a lower-priority sector wins with strictly more signals."""
        content = "I prefer to run the tests first, then deploy"
        scores = score_sectors(content)
        assert scores[Sector.PROCEDURAL] > scores[Sector.EMOTIONAL]
        assert classify_sector(content) == Sector.PROCEDURAL

    def test_case_insensitive(self):
        assert classify_sector("FRUSTRATED") == Sector.EMOTIONAL

    def test_always_returns_a_sector(self):
        for content in ["", " ", "!!!", "a" * 10000, "日本語のテキスト"]:
            assert isinstance(classify_sector(content), Sector)


class TestScoreSectors:
    """Tests for score_sectors."""

    def test_counts_every_sector(self):
        scores = score_sectors("anything")
        assert set(scores) == set(Sector)

    def test_counts_repeated_matches(self):
        scores = score_sectors("then then then")
        assert scores[Sector.PROCEDURAL] == 3
