"""Keyword candidates: DuckDB full-text BM25, or token matching without the fts extension."""

import logging
import re
from typing import List, Optional

import duckdb
from pydantic import BaseModel

from ccmemory.db import Database

logger = logging.getLogger(__name__)

_QUOTES = re.compile(r"['\"]")
_WORD_EDGES = re.compile(r"^\W+|\W+$")
_SUFFIXES = ("ing", "ed", "es", "s")

SNIPPET_WORDS = 32
MARK_OPEN = "<mark>"
MARK_CLOSE = "</mark>"
ELLIPSIS = "..."


class KeywordHit(BaseModel):
    memory_id: str
    rank: float


def prepare_tokens(query: str) -> List[str]:
    """Lowercased query tokens longer than one character, quotes stripped."""
    tokens = []
    for raw in query.split():
        token = _QUOTES.sub("", raw).lower()
        if len(token) > 1 and token not in tokens:
            tokens.append(token)
    return tokens


def _stem(token: str) -> str:
    for suffix in _SUFFIXES:
        if token.endswith(suffix) and len(token) - len(suffix) >= 3:
            return token[: -len(suffix)]
    return token


def build_snippet(content: str, query: str, max_words: int = SNIPPET_WORDS) -> Optional[str]:
    """Excerpt of content around the first query match, with matches marked.

    Matching words are wrapped in <mark></mark>; an excerpt cut from a longer
    text is prefixed or suffixed with "...". Returns None when no query token
    occurs in the content (the match came from the summary or tags).
    """
    stems = [_stem(token) for token in prepare_tokens(query)]
    words = content.split()
    if not stems or not words:
        return None

    def is_match(word: str) -> bool:
        normalized = _WORD_EDGES.sub("", word).lower()
        return any(stem in normalized for stem in stems)

    first = next((i for i, word in enumerate(words) if is_match(word)), None)
    if first is None:
        return None

    start = max(0, min(first - max_words // 4, len(words) - max_words))
    end = min(len(words), start + max_words)

    snippet = " ".join(f"{MARK_OPEN}{w}{MARK_CLOSE}" if is_match(w) else w for w in words[start:end])
    if start > 0:
        snippet = ELLIPSIS + snippet
    if end < len(words):
        snippet += ELLIPSIS
    return snippet


class KeywordIndex:
    """Ranks memories by keyword relevance against content, summary, tags and concepts."""

    def __init__(self, db: Database):
        self.db = db

    def _refresh_fts_index(self) -> None:
        # DuckDB's fts index does not follow table writes; rebuild when stale
        if not self.db.fts_dirty:
            return
        self.db.execute(
            """
            PRAGMA create_fts_index(
                'memories', 'id', 'content', 'summary', 'keywords',
                stemmer = 'english', stopwords = 'english', overwrite = 1
            )
        """
        )
        self.db.fts_dirty = False
        logger.debug("Rebuilt memories fts index")

    def search(
        self,
        query: str,
        project_id: Optional[str] = None,
        limit: int = 20,
        current_only: bool = False,
    ) -> List[KeywordHit]:
        """Best keyword matches, excluding deleted memories.

        With current_only, superseded memories are left out before the limit
        is applied.
        """
        tokens = prepare_tokens(query)
        if not tokens:
            logger.debug("Empty keyword query: %r", query)
            return []

        if self.db.fts_available:
            try:
                return self._search_bm25(" ".join(tokens), project_id, limit, current_only)
            except duckdb.Error as e:
                logger.warning("BM25 search failed, falling back to token matching: %s", e)

        return self._search_tokens(tokens, project_id, limit, current_only)

    def _search_bm25(self, query: str, project_id: Optional[str], limit: int, current_only: bool) -> List[KeywordHit]:
        self._refresh_fts_index()

        filter_sql = "is_deleted = FALSE"
        if current_only:
            filter_sql += " AND valid_until IS NULL"

        where_sql = "WHERE rank IS NOT NULL"
        params: list = [query]
        if project_id:
            where_sql += " AND project_id = ?"
            params.append(project_id)
        params.append(limit)

        rows = self.db.execute(
            f"""
            SELECT id, rank FROM (
                SELECT id, project_id, fts_main_memories.match_bm25(id, ?) AS rank
                FROM memories
                WHERE {filter_sql}
            ) scored
            {where_sql}
            ORDER BY rank DESC, id
            LIMIT ?
        """,
            params,
        )
        return [KeywordHit(memory_id=row[0], rank=float(row[1])) for row in rows]

    def _search_tokens(
        self, tokens: List[str], project_id: Optional[str], limit: int, current_only: bool
    ) -> List[KeywordHit]:
        """Rank by number of query tokens contained in the searchable text."""
        match_terms = " + ".join(["CASE WHEN contains(haystack, ?) THEN 1 ELSE 0 END"] * len(tokens))
        params: list = list(tokens)

        where_sql = "WHERE is_deleted = FALSE"
        if current_only:
            where_sql += " AND valid_until IS NULL"
        if project_id:
            where_sql += " AND project_id = ?"
            params.append(project_id)
        params.append(limit)

        rows = self.db.execute(
            f"""
            SELECT id, rank FROM (
                SELECT id, {match_terms} AS rank FROM (
                    SELECT id,
                           lower(content || ' ' || coalesce(summary, '') || ' ' || coalesce(keywords, '')) AS haystack
                    FROM memories
                    {where_sql}
                ) candidates
            ) scored
            WHERE rank > 0
            ORDER BY rank DESC, id
            LIMIT ?
        """,
            params,
        )
        return [KeywordHit(memory_id=row[0], rank=float(row[1])) for row in rows]
