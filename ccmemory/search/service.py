"""Hybrid search and timeline reconstruction over the memory store."""

import logging
import time
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from ccmemory.db import Database
from ccmemory.memory.embeddings import EmbeddingProvider
from ccmemory.memory.schema import Memory, Sector, Tier, UsageType
from ccmemory.memory.store import MemoryStore
from ccmemory.search.keyword import KeywordIndex, build_snippet
from ccmemory.search.ranking import DEFAULT_WEIGHTS, RankingWeights, compute_score
from ccmemory.search.vector import search_vector

logger = logging.getLogger(__name__)

RECALL_REINFORCE_AMOUNT = 0.02
SUPERSEDED_PREVIEW_CHARS = 200

SearchMode = Literal["hybrid", "semantic", "keyword"]
MatchType = Literal["semantic", "keyword", "both"]


class SearchOptions(BaseModel):
    limit: int = Field(default=10, gt=0)
    sector: Optional[Sector] = None
    tier: Optional[Tier] = None
    min_salience: float = 0.0
    include_superseded: bool = False
    session_id: Optional[str] = None
    mode: SearchMode = "hybrid"
    weights: RankingWeights = DEFAULT_WEIGHTS


class SessionSummary(BaseModel):
    id: str
    project_id: str
    started_at: datetime
    ended_at: Optional[datetime] = None
    summary: Optional[str] = None


class SupersedingRef(BaseModel):
    id: str
    content: str
    created_at: datetime


class SearchResult(BaseModel):
    memory: Memory
    score: float
    match_type: MatchType
    is_superseded: bool
    superseded_by: Optional[SupersedingRef] = None
    source_session: Optional[SessionSummary] = None
    related_memory_count: int = 0
    # Content excerpts with keyword matches wrapped in <mark></mark>
    highlights: List[str] = Field(default_factory=list)


class SessionContext(BaseModel):
    session: SessionSummary
    memories_in_session: int
    usage_type: UsageType


class TimelineResult(BaseModel):
    anchor: Memory
    before: List[Memory] = Field(default_factory=list)
    after: List[Memory] = Field(default_factory=list)
    session_id: Optional[str] = None
    sessions: Dict[str, SessionSummary] = Field(default_factory=dict)

    @property
    def memories(self) -> List[Memory]:
        """Before, anchor and after in chronological order."""
        return self.before + [self.anchor] + self.after


class _Candidate(BaseModel):
    fts_rank: float = 0.0
    similarity: float = 0.0


def _placeholders(values: List[str]) -> str:
    return ", ".join("?" for _ in values)


class SearchService:
    """Merges keyword and vector candidates and ranks them."""

    def __init__(
        self,
        db: Database,
        store: MemoryStore,
        embedding_provider: Optional[EmbeddingProvider] = None,
    ):
        self.db = db
        self.store = store
        self.embedding_provider = embedding_provider
        self.keyword_index = KeywordIndex(db)

    def search(
        self,
        query: str,
        project_id: Optional[str] = None,
        options: Optional[SearchOptions] = None,
    ) -> List[SearchResult]:
        """Rank memories for a query.

        Superseded memories are excluded unless options.include_superseded is
        set, in which case they are returned flagged and ranked at half score.
        Returned memories count as recalled: they are reinforced slightly and,
        with a session id, linked to that session.
        """
        options = options or SearchOptions()
        mode = options.mode

        if self.embedding_provider is None and mode != "keyword":
            logger.warning("No embedding provider available, falling back to keyword search")
            mode = "keyword"

        start = time.monotonic()
        candidate_limit = options.limit * 2
        candidates: Dict[str, _Candidate] = {}

        current_only = not options.include_superseded

        if mode != "semantic":
            for hit in self.keyword_index.search(query, project_id, candidate_limit, current_only):
                candidates.setdefault(hit.memory_id, _Candidate()).fts_rank = hit.rank

        if mode != "keyword":
            vector_hits = search_vector(
                self.db, query, self.embedding_provider, project_id, candidate_limit, current_only
            )
            for hit in vector_hits:
                candidates.setdefault(hit.memory_id, _Candidate()).similarity = hit.similarity

        memories = self._load_memories(list(candidates))
        session_members = self._session_members(options.session_id) if options.session_id else None

        scored = []
        for memory in memories:
            if options.sector and memory.sector != options.sector:
                continue
            if options.tier and memory.tier != options.tier:
                continue
            if memory.salience < options.min_salience:
                continue
            if memory.valid_until is not None and not options.include_superseded:
                continue
            if session_members is not None and memory.id not in session_members:
                continue

            data = candidates[memory.id]
            score = compute_score(memory, data.similarity, data.fts_rank, options.weights)
            scored.append((memory, data, score))

        # Ties: newer first, then id for a stable order
        scored.sort(key=lambda item: item[0].id)
        scored.sort(key=lambda item: (item[2], item[0].created_at), reverse=True)
        top = scored[: options.limit]

        ids = [memory.id for memory, _, _ in top]
        sessions = self._source_sessions(ids)
        superseding = self._superseding_refs(ids)
        related_counts = self._related_counts(ids)

        results = []
        for memory, data, score in top:
            if data.similarity > 0 and data.fts_rank:
                match_type = "both"
            elif data.similarity > 0:
                match_type = "semantic"
            else:
                match_type = "keyword"

            highlights = []
            if data.fts_rank:
                snippet = build_snippet(memory.content, query)
                if snippet:
                    highlights.append(snippet)

            results.append(
                SearchResult(
                    memory=memory,
                    score=score,
                    match_type=match_type,
                    is_superseded=memory.valid_until is not None,
                    superseded_by=superseding.get(memory.id),
                    source_session=sessions.get(memory.id),
                    related_memory_count=related_counts.get(memory.id, 0),
                    highlights=highlights,
                )
            )

        for result in results:
            self.store.reinforce(result.memory.id, RECALL_REINFORCE_AMOUNT)
            if options.session_id:
                self.store.link_to_session(result.memory.id, options.session_id, UsageType.RECALLED)

        logger.info(
            "Search %r (%s) returned %d of %d candidates in %.1fms",
            query[:50],
            mode,
            len(results),
            len(candidates),
            (time.monotonic() - start) * 1000,
        )
        return results

    def _load_memories(self, ids: List[str]) -> List[Memory]:
        if not ids:
            return []
        rows = self.db.query(
            f"SELECT * FROM memories WHERE id IN ({_placeholders(ids)}) AND is_deleted = FALSE",
            ids,
        )
        return [Memory.model_validate(row) for row in rows]

    def _session_members(self, session_id: str) -> set:
        rows = self.db.execute("SELECT DISTINCT memory_id FROM session_memories WHERE session_id = ?", [session_id])
        return {row[0] for row in rows}

    def _source_sessions(self, ids: List[str]) -> Dict[str, SessionSummary]:
        if not ids:
            return {}
        rows = self.db.query(
            f"""
            SELECT sm.memory_id, s.id, s.project_id, s.started_at, s.ended_at, s.summary
            FROM session_memories sm
            JOIN sessions s ON sm.session_id = s.id
            WHERE sm.memory_id IN ({_placeholders(ids)}) AND sm.usage_type = 'created'
        """,
            ids,
        )
        return {row.pop("memory_id"): SessionSummary.model_validate(row) for row in rows}

    def _superseding_refs(self, ids: List[str]) -> Dict[str, SupersedingRef]:
        if not ids:
            return {}
        rows = self.db.query(
            f"""
            SELECT r.target_memory_id, m.id, m.content, m.created_at
            FROM memory_relationships r
            JOIN memories m ON r.source_memory_id = m.id
            WHERE r.target_memory_id IN ({_placeholders(ids)})
              AND r.relationship_type = 'SUPERSEDES'
              AND r.valid_until IS NULL
              AND m.is_deleted = FALSE
            ORDER BY r.created_at ASC
        """,
            ids,
        )
        refs: Dict[str, SupersedingRef] = {}
        for row in rows:
            # Later rows are newer edges and overwrite older ones
            refs[row["target_memory_id"]] = SupersedingRef(
                id=row["id"],
                content=row["content"][:SUPERSEDED_PREVIEW_CHARS],
                created_at=row["created_at"],
            )
        return refs

    def _related_counts(self, ids: List[str]) -> Dict[str, int]:
        if not ids:
            return {}
        placeholders = _placeholders(ids)
        rows = self.db.execute(
            f"""
            SELECT memory_id, COUNT(*) FROM (
                SELECT source_memory_id AS memory_id FROM memory_relationships
                WHERE source_memory_id IN ({placeholders}) AND valid_until IS NULL
                UNION ALL
                SELECT target_memory_id AS memory_id FROM memory_relationships
                WHERE target_memory_id IN ({placeholders}) AND valid_until IS NULL
            ) edges
            GROUP BY memory_id
        """,
            ids + ids,
        )
        return {memory_id: count for memory_id, count in rows}

    def get_session_context(self, memory_id: str) -> Optional[SessionContext]:
        """The session a memory was most recently used in, with its size and usage."""
        row = self.db.query_one(
            """
            SELECT s.id, s.project_id, s.started_at, s.ended_at, s.summary, sm.usage_type,
                   (SELECT COUNT(DISTINCT memory_id) FROM session_memories WHERE session_id = s.id) AS memory_count
            FROM session_memories sm
            JOIN sessions s ON sm.session_id = s.id
            WHERE sm.memory_id = ?
            ORDER BY sm.created_at DESC
            LIMIT 1
        """,
            [memory_id],
        )
        if row is None:
            return None

        usage_type = row.pop("usage_type")
        memory_count = row.pop("memory_count")
        return SessionContext(
            session=SessionSummary.model_validate(row),
            memories_in_session=memory_count,
            usage_type=usage_type,
        )

    def timeline(self, anchor_id: str, depth_before: int = 5, depth_after: int = 5) -> TimelineResult:
        """Memories created just before and after an anchor.

        Neighbours come from the session the anchor was created in, or from
        the anchor's project when it was captured outside any session.

        Raises:
            NotFoundError: If the anchor is missing or deleted
        """
        anchor = self.store.get(anchor_id)

        source = self._source_sessions([anchor.id]).get(anchor.id)
        if source is not None:
            scope_sql = "id IN (SELECT memory_id FROM session_memories WHERE session_id = ? AND usage_type = 'created')"
            scope_param = source.id
        else:
            scope_sql = "project_id = ?"
            scope_param = anchor.project_id

        before_rows = self.db.query(
            f"""
            SELECT * FROM memories
            WHERE {scope_sql} AND is_deleted = FALSE AND id != ?
              AND (created_at < ? OR (created_at = ? AND id < ?))
            ORDER BY created_at DESC, id DESC
            LIMIT ?
        """,
            [scope_param, anchor.id, anchor.created_at, anchor.created_at, anchor.id, depth_before],
        )
        after_rows = self.db.query(
            f"""
            SELECT * FROM memories
            WHERE {scope_sql} AND is_deleted = FALSE AND id != ?
              AND (created_at > ? OR (created_at = ? AND id > ?))
            ORDER BY created_at ASC, id ASC
            LIMIT ?
        """,
            [scope_param, anchor.id, anchor.created_at, anchor.created_at, anchor.id, depth_after],
        )

        before = [Memory.model_validate(row) for row in reversed(before_rows)]
        after = [Memory.model_validate(row) for row in after_rows]

        result = TimelineResult(
            anchor=anchor,
            before=before,
            after=after,
            session_id=source.id if source else None,
        )

        for memory in result.memories:
            context = self.get_session_context(memory.id)
            if context and context.session.id not in result.sessions:
                result.sessions[context.session.id] = context.session

        logger.debug("Timeline for %s: %d before, %d after", anchor_id, len(before), len(after))
        return result
