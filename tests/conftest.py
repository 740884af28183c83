"""Test configuration and fixtures."""

import hashlib
import json
import math
import shutil
import tempfile
from pathlib import Path
from typing import Generator, List

import pytest

from ccmemory.db import Database
from ccmemory.memory.embeddings import EmbeddingProvider
from ccmemory.memory.relationships import RelationshipGraph
from ccmemory.memory.sessions import SessionManager
from ccmemory.memory.store import MemoryStore

PROJECT = "/home/dev/project"


class FakeEmbeddingProvider(EmbeddingProvider):
    """Deterministic bag-of-words embeddings.

    Each lowercased token is hashed into one of `dimensions` buckets; the last
    bucket is a constant bias so no text embeds to the zero vector.
    """

    name = "fake"

    def __init__(self, model: str = "bag-of-words", dimensions: int = 32):
        super().__init__(model, dimensions)
        self.calls: List[str] = []

    def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        vector = [0.0] * self.dimensions
        for token in text.lower().split():
            token = token.strip(".,:;!?'\"()`")
            if not token:
                continue
            bucket = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % (self.dimensions - 1)
            vector[bucket] += 1.0
        vector[-1] = 0.5
        norm = math.sqrt(sum(x * x for x in vector))
        return [x / norm for x in vector]


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def db(temp_dir) -> Generator[Database, None, None]:
    """Fresh on-disk database without the fts extension (token-match keyword ranking)."""
    database = Database(temp_dir / "test.duckdb", enable_fts=False)
    try:
        yield database
    finally:
        database.close()


@pytest.fixture
def fts_db(temp_dir) -> Generator[Database, None, None]:
    """Fresh database with the fts extension loaded (BM25 keyword ranking)."""
    database = Database(temp_dir / "fts.duckdb")
    if not database.fts_available:
        database.close()
        pytest.skip("DuckDB fts extension not available")
    try:
        yield database
    finally:
        database.close()


@pytest.fixture
def store(db) -> MemoryStore:
    return MemoryStore(db)


@pytest.fixture
def graph(db) -> RelationshipGraph:
    return RelationshipGraph(db)


@pytest.fixture
def sessions(db) -> SessionManager:
    return SessionManager(db)


@pytest.fixture
def fake_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def make_provider():
    """Factory for extra fake providers with their own model name or size."""
    return FakeEmbeddingProvider


@pytest.fixture
def isolated_xdg(temp_dir, monkeypatch) -> Path:
    """Point XDG config and data dirs into the temp dir, with fts disabled in config."""
    config_home = temp_dir / "config"
    data_home = temp_dir / "data"
    monkeypatch.setenv("XDG_CONFIG_HOME", str(config_home))
    monkeypatch.setenv("XDG_DATA_HOME", str(data_home))
    monkeypatch.delenv("CCMEMORY_DB", raising=False)
    monkeypatch.setenv("CCMEMORY_PROJECT", PROJECT)

    config_file = config_home / "ccmemory" / "config.json"
    config_file.parent.mkdir(parents=True)
    config_file.write_text(json.dumps({"fts_enabled": False}))
    return temp_dir


@pytest.fixture
def cli_runner():
    """Create a CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()


@pytest.fixture(autouse=True)
def reset_memory_system_singleton():
    """Close any MemorySystem a CLI test opened."""
    yield
    from ccmemory.system import reset_memory_system

    reset_memory_system()
