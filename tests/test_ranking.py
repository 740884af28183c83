"""Tests for hybrid scoring."""

import math
from datetime import timedelta

import pytest
from pydantic import ValidationError

from ccmemory.memory.schema import Memory, Sector, utc_now
from ccmemory.search.ranking import (
    DEFAULT_WEIGHTS,
    RankingWeights,
    Scored,
    compute_score,
    normalize_keyword_rank,
    normalize_scores,
    recency_score,
)


def make_memory(**overrides) -> Memory:
    now = utc_now()
    data = {
        "id": "m1",
        "project_id": "p",
        "content": "fact",
        "created_at": now,
        "updated_at": now,
        "last_accessed": now,
    }
    data.update(overrides)
    return Memory(**data)


class TestRankingWeights:
    def test_defaults(self):
        assert DEFAULT_WEIGHTS.semantic == 0.40
        assert DEFAULT_WEIGHTS.keyword == 0.25
        assert DEFAULT_WEIGHTS.salience == 0.20
        assert DEFAULT_WEIGHTS.recency == 0.15
        assert DEFAULT_WEIGHTS.sector_boost[Sector.REFLECTIVE] == 1.2
        assert DEFAULT_WEIGHTS.sector_boost[Sector.EPISODIC] == 0.8

    def test_rejects_weights_over_one(self):
        with pytest.raises(ValidationError):
            RankingWeights(semantic=0.9, keyword=0.5)


class TestComputeScore:
    """Tests for compute_score."""

    def test_formula(self):
        now = utc_now()
        memory = make_memory(salience=0.5, sector=Sector.PROCEDURAL, created_at=now - timedelta(days=10))

        score = compute_score(memory, semantic_sim=0.8, fts_rank=5.0, now=now)

        expected = 0.40 * 0.8 + 0.25 * 0.5 + 0.20 * 0.5 + 0.15 * math.exp(-0.5)
        assert score == pytest.approx(expected)

    def test_sector_boost(self):
        now = utc_now()
        semantic = compute_score(make_memory(sector=Sector.SEMANTIC, salience=0.3), 0.2, 0.0, now=now)
        episodic = compute_score(make_memory(sector=Sector.EPISODIC, salience=0.3), 0.2, 0.0, now=now)
        assert semantic / episodic == pytest.approx(1.1 / 0.8)

    def test_superseded_penalty(self):
        now = utc_now()
        current = make_memory(salience=0.5)
        superseded = make_memory(salience=0.5, valid_until=now)
        assert compute_score(superseded, 0.5, 2.0, now=now) == pytest.approx(
            compute_score(current, 0.5, 2.0, now=now) * 0.5
        )

    def test_keyword_rank_sign_is_ignored(self):
        memory = make_memory()
        now = utc_now()
        assert compute_score(memory, 0.0, -4.0, now=now) == compute_score(memory, 0.0, 4.0, now=now)

    @pytest.mark.parametrize("sector", list(Sector))
    @pytest.mark.parametrize("semantic_sim", [-1.0, 0.0, 0.5, 1.0, 3.0])
    @pytest.mark.parametrize("fts_rank", [0.0, 1.0, 50.0, -50.0])
    def test_score_in_unit_interval(self, sector, semantic_sim, fts_rank):
        memory = make_memory(sector=sector, salience=1.0)
        score = compute_score(memory, semantic_sim, fts_rank)
        assert 0.0 <= score <= 1.0

    def test_future_created_at_is_fresh(self):
        now = utc_now()
        assert recency_score(now + timedelta(days=1), now) == 1.0


def test_normalize_keyword_rank():
    assert normalize_keyword_rank(0.0) == 0.0
    assert normalize_keyword_rank(5.0) == 0.5
    assert normalize_keyword_rank(25.0) == 1.0


def test_normalize_scores():
    results = normalize_scores([Scored(score=0.5), Scored(score=0.25)])
    assert [r.score for r in results] == [1.0, 0.5]
    assert normalize_scores([]) == []
    assert [r.score for r in normalize_scores([Scored(score=0.0)])] == [0.0]
