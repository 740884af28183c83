"""Hybrid keyword and vector search over memories."""

from ccmemory.search.ranking import DEFAULT_WEIGHTS, RankingWeights, compute_score
from ccmemory.search.service import (
    SearchOptions,
    SearchResult,
    SearchService,
    SessionContext,
    SessionSummary,
    TimelineResult,
)

__all__ = [
    "DEFAULT_WEIGHTS",
    "RankingWeights",
    "SearchOptions",
    "SearchResult",
    "SearchService",
    "SessionContext",
    "SessionSummary",
    "TimelineResult",
    "compute_score",
]
