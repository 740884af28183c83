"""Hybrid scoring of a memory from similarity, keyword rank, salience and recency."""

import math
from datetime import datetime
from typing import Dict, List, Optional, TypeVar

from pydantic import BaseModel, Field, model_validator

from ccmemory.memory.schema import Memory, Sector, utc_now

SUPERSEDED_PENALTY = 0.5
RECENCY_DECAY_PER_DAY = 0.05
KEYWORD_RANK_SCALE = 10.0


class RankingWeights(BaseModel):
    """Weights of the four ranking signals plus per-sector multipliers.

    The four base weights must sum to at most 1; the sector boost applied
    afterwards may exceed 1.
    """

    semantic: float = Field(default=0.40, ge=0.0)
    keyword: float = Field(default=0.25, ge=0.0)
    salience: float = Field(default=0.20, ge=0.0)
    recency: float = Field(default=0.15, ge=0.0)
    sector_boost: Dict[Sector, float] = Field(
        default_factory=lambda: {
            Sector.REFLECTIVE: 1.2,
            Sector.SEMANTIC: 1.1,
            Sector.PROCEDURAL: 1.0,
            Sector.EMOTIONAL: 0.9,
            Sector.EPISODIC: 0.8,
        }
    )

    @model_validator(mode="after")
    def check_total(self):
        total = self.semantic + self.keyword + self.salience + self.recency
        if total > 1.0 + 1e-9:
            raise ValueError(f"ranking weights must sum to at most 1.0, got {total:.3f}")
        return self


DEFAULT_WEIGHTS = RankingWeights()


def normalize_keyword_rank(fts_rank: float) -> float:
    if not fts_rank:
        return 0.0
    return min(1.0, abs(fts_rank) / KEYWORD_RANK_SCALE)


def recency_score(created_at: datetime, now: Optional[datetime] = None) -> float:
    now = now or utc_now()
    days = max(0.0, (now - created_at).total_seconds() / 86400)
    return math.exp(-RECENCY_DECAY_PER_DAY * days)


def compute_score(
    memory: Memory,
    semantic_sim: float,
    fts_rank: float,
    weights: RankingWeights = DEFAULT_WEIGHTS,
    now: Optional[datetime] = None,
) -> float:
    """Score a memory for a query.

    Args:
        memory: Candidate memory
        semantic_sim: Vector similarity to the query (0-1)
        fts_rank: Raw full-text rank; only its magnitude matters
        weights: Signal weights and sector boosts
        now: Evaluation time for recency

    Returns:
        Score in [0, 1]. Superseded memories are halved, not dropped.
    """
    semantic = max(0.0, min(1.0, semantic_sim or 0.0))

    score = (
        weights.semantic * semantic
        + weights.keyword * normalize_keyword_rank(fts_rank)
        + weights.salience * memory.salience
        + weights.recency * recency_score(memory.created_at, now)
    )

    score *= weights.sector_boost.get(memory.sector, 1.0)

    if memory.valid_until is not None:
        score *= SUPERSEDED_PENALTY

    return min(1.0, max(0.0, score))


class Scored(BaseModel):
    score: float


S = TypeVar("S", bound=Scored)


def normalize_scores(results: List[S]) -> List[S]:
    """Rescale scores so the best result is 1.0."""
    if not results:
        return results

    max_score = max(r.score for r in results)
    if max_score == 0:
        return results

    return [r.model_copy(update={"score": r.score / max_score}) for r in results]
