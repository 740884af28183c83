"""Tests for hybrid search and timelines."""

import logging
from unittest.mock import patch

import duckdb
import pytest

from ccmemory.config import Config
from ccmemory.exceptions import NotFoundError
from ccmemory.memory.relationships import RelationshipType
from ccmemory.memory.schema import MemoryInput, MemoryUpdate, Sector, Tier, UsageType
from ccmemory.memory.store import MemoryStore
from ccmemory.search.keyword import KeywordIndex, build_snippet, prepare_tokens
from ccmemory.search.service import SearchOptions, SearchService
from ccmemory.system import MemorySystem

PROJECT = "/home/dev/project"


@pytest.fixture
def system(temp_dir, fake_provider):
    memory_system = MemorySystem(
        temp_dir / "search.duckdb",
        config=Config(fts_enabled=False),
        embedding_provider=fake_provider,
    )
    try:
        yield memory_system
    finally:
        memory_system.close()


@pytest.fixture
def keyword_search(db, store):
    return SearchService(db, store)


def remember(system, content, session_id=None, project_id=PROJECT, **kwargs):
    return system.remember(MemoryInput(content=content, **kwargs), project_id, session_id)


def add(store, content, project_id=PROJECT, **kwargs):
    return store.create(MemoryInput(content=content, **kwargs), project_id)


class TestKeywordIndex:
    """Tests for keyword candidate ranking without the fts extension."""

    def test_prepare_tokens(self):
        assert prepare_tokens('Find "Redis" cache a') == ["find", "redis", "cache"]
        assert prepare_tokens("   ") == []

    def test_ranks_by_matched_tokens(self, db, store):
        both = add(store, "Redis cache settings")
        one = add(store, "Redis cluster layout")
        add(store, "Postgres vacuum schedule")

        hits = KeywordIndex(db).search("redis cache", PROJECT)

        assert [h.memory_id for h in hits] == [both.id, one.id]
        assert hits[0].rank == 2.0

    def test_matches_tags(self, db, store):
        tagged = add(store, "Use the staging cluster", tags=["kubernetes"])
        hits = KeywordIndex(db).search("kubernetes", PROJECT)
        assert [h.memory_id for h in hits] == [tagged.id]

    def test_empty_query(self, db, store):
        add(store, "anything")
        assert KeywordIndex(db).search("", PROJECT) == []

    def test_bm25_failure_falls_back_to_token_matching(self, db, store, caplog):
        memory = add(store, "Redis cache settings")
        db.fts_available = True

        with patch.object(KeywordIndex, "_search_bm25", side_effect=duckdb.Error("fts index missing")):
            with caplog.at_level(logging.WARNING, logger="ccmemory.search.keyword"):
                hits = KeywordIndex(db).search("redis", PROJECT)

        assert [h.memory_id for h in hits] == [memory.id]
        assert "falling back to token matching" in caplog.text

    def test_current_only_skips_superseded(self, db, store, graph):
        old = add(store, "Redis runs on port 6379")
        new = add(store, "Redis runs on port 6380")
        graph.supersede(old.id, new.id)

        index = KeywordIndex(db)
        assert {h.memory_id for h in index.search("redis", PROJECT)} == {old.id, new.id}
        assert [h.memory_id for h in index.search("redis", PROJECT, current_only=True)] == [new.id]


class TestBM25Keywords:
    """Tests for keyword ranking through DuckDB's fts extension."""

    @pytest.fixture
    def fts_store(self, fts_db):
        store = MemoryStore(fts_db)
        for content in ["Postgres vacuum schedule", "Nightly backup to S3", "Lint with ruff"]:
            add(store, content)
        return store

    def test_more_matching_terms_rank_first(self, fts_db, fts_store):
        both = add(fts_store, "Redis cache settings")
        one = add(fts_store, "Redis cluster layout")

        hits = KeywordIndex(fts_db).search("redis cache", PROJECT)

        assert [h.memory_id for h in hits] == [both.id, one.id]
        assert hits[0].rank > hits[1].rank

    def test_index_follows_writes(self, fts_db, fts_store):
        index = KeywordIndex(fts_db)
        first = add(fts_store, "Redis cache settings")
        assert [h.memory_id for h in index.search("redis", PROJECT)] == [first.id]
        assert fts_db.fts_dirty is False

        created = add(fts_store, "Sentinel handles failover")
        assert fts_db.fts_dirty is True
        assert [h.memory_id for h in index.search("sentinel", PROJECT)] == [created.id]

        fts_store.update(first.id, MemoryUpdate(content="Memcached cache settings"))
        assert [h.memory_id for h in index.search("memcached", PROJECT)] == [first.id]

        fts_store.delete(created.id, hard=True)
        assert fts_db.fts_dirty is True
        assert index.search("sentinel", PROJECT) == []

    def test_search_service_highlights(self, fts_db, fts_store):
        memory = add(fts_store, "Deploys run through GitHub Actions")

        results = SearchService(fts_db, fts_store).search("deploys", PROJECT)

        assert [r.memory.id for r in results] == [memory.id]
        assert results[0].match_type == "keyword"
        assert results[0].highlights == ["<mark>Deploys</mark> run through GitHub Actions"]


class TestBuildSnippet:
    def test_marks_matches(self):
        snippet = build_snippet("Deploys run through GitHub Actions", "deploy actions")
        assert snippet == "<mark>Deploys</mark> run through GitHub <mark>Actions</mark>"

    def test_long_content_is_windowed(self):
        words = [f"w{i}" for i in range(100)]
        words[50] = "redis"

        snippet = build_snippet(" ".join(words), "redis", max_words=32)

        assert snippet.startswith("...w42 ")
        assert snippet.endswith(" w73...")
        assert "<mark>redis</mark>" in snippet
        assert len(snippet.strip(".").split()) == 32

    def test_no_match(self):
        assert build_snippet("Use the staging cluster", "kubernetes") is None
        assert build_snippet("anything", "") is None


class TestKeywordOnlySearch:
    """Tests for SearchService without an embedding provider."""

    def test_falls_back_to_keyword_with_warning(self, keyword_search, store, caplog):
        add(store, "Deploys run through GitHub Actions")

        with caplog.at_level(logging.WARNING, logger="ccmemory.search.service"):
            results = keyword_search.search("deploys", PROJECT)

        assert len(results) == 1
        assert results[0].match_type == "keyword"
        assert "falling back to keyword search" in caplog.text

    def test_excludes_deleted(self, keyword_search, store):
        memory = add(store, "Deploys run through GitHub Actions")
        store.delete(memory.id)
        assert keyword_search.search("deploys", PROJECT) == []

    def test_project_scope(self, keyword_search, store):
        add(store, "Deploys run through GitHub Actions", project_id="other")
        assert keyword_search.search("deploys", PROJECT) == []
        assert len(keyword_search.search("deploys")) == 1

    def test_filters(self, keyword_search, store):
        emotional = add(store, "I hate how slow deploys are")
        add(store, "Deploys are located in the ops repo")
        faded = add(store, "Deploys used to be manual")
        store.deemphasize(faded.id, 1.0)

        by_sector = keyword_search.search("deploys", PROJECT, SearchOptions(sector=Sector.EMOTIONAL))
        assert [r.memory.id for r in by_sector] == [emotional.id]

        by_salience = keyword_search.search("deploys", PROJECT, SearchOptions(min_salience=0.5))
        assert faded.id not in {r.memory.id for r in by_salience}
        assert len(by_salience) == 2

        by_tier = keyword_search.search("deploys", PROJECT, SearchOptions(tier=Tier.SESSION))
        assert by_tier == []

    def test_limit_and_order(self, keyword_search, store):
        for i in range(5):
            add(store, f"Deploy note number {i}")
        results = keyword_search.search("deploy note", PROJECT, SearchOptions(limit=3))

        assert len(results) == 3
        scores = [r.score for r in results]
        assert scores == sorted(scores, reverse=True)
        # Equal scores: newest first
        assert results[0].memory.content == "Deploy note number 4"

    def test_results_are_reinforced(self, keyword_search, store):
        memory = store.deemphasize(add(store, "Deploys run through GitHub Actions").id, 0.5)

        keyword_search.search("deploys", PROJECT)

        after = store.get(memory.id)
        assert after.salience == pytest.approx(memory.salience + 0.02 * (1 - memory.salience))
        assert after.access_count == memory.access_count + 1

    def test_superseded_rows_do_not_crowd_out_current_matches(self, keyword_search, store, graph):
        current = add(store, "How to deploy the API")
        replacement = add(store, "Release runbook moved to the wiki")
        for i in range(6):
            old = add(store, f"deploy deploy note v{i}")
            graph.supersede(old.id, replacement.id)

        results = keyword_search.search("deploy note", PROJECT, SearchOptions(limit=1))

        assert [r.memory.id for r in results] == [current.id]

    def test_highlights(self, keyword_search, store):
        add(store, "Deploys run through GitHub Actions")
        add(store, "Use the staging cluster", tags=["deploys"])

        results = {r.memory.content: r for r in keyword_search.search("deploys", PROJECT)}

        assert results["Deploys run through GitHub Actions"].highlights == [
            "<mark>Deploys</mark> run through GitHub Actions"
        ]
        assert results["Use the staging cluster"].highlights == []

    def test_scores_within_unit_interval(self, keyword_search, store):
        for content in ["I learned deploys need a lock", "Deploys run hourly", "User asked about deploys"]:
            add(store, content)
        for result in keyword_search.search("deploys lock hourly asked", PROJECT):
            assert 0.0 <= result.score <= 1.0


class TestHybridSearch:
    """Tests for SearchService with an embedding provider."""

    def test_match_types(self, system):
        keyword_and_vector = remember(system, "Redis cache eviction policy is allkeys-lru")
        vector_only = remember(system, "Postgres connection pool size")

        results = system.search.search("redis cache", PROJECT, SearchOptions(limit=10))
        by_id = {r.memory.id: r for r in results}

        assert by_id[keyword_and_vector.id].match_type == "both"
        assert by_id[vector_only.id].match_type == "semantic"
        assert by_id[vector_only.id].highlights == []
        assert results[0].memory.id == keyword_and_vector.id

    def test_semantic_mode_skips_keywords(self, system):
        remember(system, "Redis cache eviction policy")
        results = system.search.search("redis", PROJECT, SearchOptions(mode="semantic"))
        assert results
        assert all(r.match_type == "semantic" for r in results)

    def test_keyword_mode_skips_vectors(self, system, fake_provider):
        remember(system, "Redis cache eviction policy")
        fake_provider.calls.clear()

        results = system.search.search("redis", PROJECT, SearchOptions(mode="keyword"))

        assert [r.match_type for r in results] == ["keyword"]
        assert fake_provider.calls == []

    def test_session_filter_and_recall_link(self, system):
        in_session = remember(system, "Redis cache notes from today", session_id="s1")
        remember(system, "Redis cache notes from last week")

        results = system.search.search("redis cache", PROJECT, SearchOptions(session_id="s1"))

        assert [r.memory.id for r in results] == [in_session.id]
        assert system.sessions.get_stats("s1").memories_recalled == 1

    def test_source_session_and_related_count(self, system):
        a = remember(system, "Queue workers use Celery", session_id="s1")
        b = remember(system, "Celery beat schedules the nightly report")
        system.graph.create_relationship(b.id, a.id, RelationshipType.BUILDS_ON)

        results = {r.memory.id: r for r in system.search.search("celery", PROJECT)}

        assert results[a.id].source_session.id == "s1"
        assert results[b.id].source_session is None
        assert results[a.id].related_memory_count == 1
        assert results[b.id].related_memory_count == 1

    def test_superseded_api_endpoint_documentation(self, system):
        """Outdated API docs are hidden by default and flagged on request."""
        old = remember(system, "Use GET /api/users to list users")
        new = remember(system, "Use GET /api/v2/users to list users; /api/users is deprecated")
        system.graph.supersede(old.id, new.id)

        default = system.search.search("list users", PROJECT)
        assert [r.memory.id for r in default] == [new.id]
        assert not default[0].is_superseded
        assert default[0].superseded_by is None

        flagged = system.search.search("list users", PROJECT, SearchOptions(include_superseded=True))
        by_id = {r.memory.id: r for r in flagged}

        assert set(by_id) == {old.id, new.id}
        assert flagged[0].memory.id == new.id
        assert by_id[old.id].is_superseded
        assert by_id[old.id].superseded_by.id == new.id
        assert by_id[old.id].superseded_by.content.startswith("Use GET /api/v2/users")
        assert by_id[old.id].score < by_id[new.id].score
        assert system.graph.get_superseding_memory(old.id).id == new.id
        assert system.graph.get_superseding_memory(new.id) is None


class TestTimeline:
    """Tests for SearchService.timeline."""

    def test_session_scoped(self, system):
        a = remember(system, "Started refactoring the parser", session_id="s1")
        b = remember(system, "Parser now uses a token stream", session_id="s1")
        c = remember(system, "Added parser error recovery", session_id="s1")
        remember(system, "Unrelated note outside the session")

        result = system.search.timeline(b.id)

        assert result.session_id == "s1"
        assert [m.id for m in result.before] == [a.id]
        assert [m.id for m in result.after] == [c.id]
        assert [m.id for m in result.memories] == [a.id, b.id, c.id]
        assert set(result.sessions) == {"s1"}

    def test_session_scope_ignores_reinforced_memories(self, system):
        """Memories only reinforced or recalled in the session are not its neighbours."""
        older = remember(system, "Redis runs on port 6380")
        note = remember(system, "Cache warmup happens on deploy", session_id="s1")
        duplicate = remember(system, "Redis runs on port 6380", session_id="s1")
        assert duplicate.id == older.id

        result = system.search.timeline(note.id)

        assert result.session_id == "s1"
        assert result.before == []
        assert result.after == []

    def test_project_scoped(self, store, db):
        service = SearchService(db, store)
        x = add(store, "first project note")
        y = add(store, "second project note")
        z = add(store, "third project note")
        add(store, "other project note", project_id="other")

        result = service.timeline(y.id)

        assert result.session_id is None
        assert [m.id for m in result.memories] == [x.id, y.id, z.id]
        assert result.sessions == {}

    def test_depth(self, store, db):
        service = SearchService(db, store)
        memories = [add(store, f"note number {i}") for i in range(6)]

        result = service.timeline(memories[3].id, depth_before=2, depth_after=1)

        assert [m.id for m in result.before] == [memories[1].id, memories[2].id]
        assert [m.id for m in result.after] == [memories[4].id]

    def test_skips_deleted_neighbours(self, store, db):
        service = SearchService(db, store)
        a = add(store, "first note")
        b = add(store, "second note")
        c = add(store, "third note")
        store.delete(a.id)

        result = service.timeline(b.id)
        assert result.before == []
        assert [m.id for m in result.after] == [c.id]

    def test_deleted_anchor(self, store, db):
        service = SearchService(db, store)
        memory = add(store, "note")
        store.delete(memory.id)
        with pytest.raises(NotFoundError):
            service.timeline(memory.id)


def test_session_context(system):
    memory = remember(system, "Redis cache notes", session_id="s1")
    remember(system, "Another note in the session", session_id="s1")

    context = system.search.get_session_context(memory.id)
    assert context.session.id == "s1"
    assert context.usage_type == UsageType.CREATED
    assert context.memories_in_session == 2

    system.search.search("redis cache", PROJECT, SearchOptions(session_id="s1"))
    assert system.search.get_session_context(memory.id).usage_type == UsageType.RECALLED

    unlinked = remember(system, "No session here")
    assert system.search.get_session_context(unlinked.id) is None
