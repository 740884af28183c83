"""Wires the database and services together from configuration."""

import logging
from pathlib import Path
from typing import Optional, Union

from ccmemory.config import Config, load_config
from ccmemory.db import Database
from ccmemory.memory.decay import DecayEngine
from ccmemory.memory.embeddings import EmbeddingProvider, FastEmbedProvider, VectorStore
from ccmemory.memory.relationships import RelationshipGraph
from ccmemory.memory.schema import Memory, MemoryInput
from ccmemory.memory.sessions import SessionManager
from ccmemory.memory.store import MemoryStore
from ccmemory.search.service import SearchService

logger = logging.getLogger(__name__)

_memory_system: Optional["MemorySystem"] = None
_memory_config: Optional[Config] = None


class MemorySystem:
    """All memory services sharing one database connection."""

    def __init__(
        self,
        db_path: Union[Path, str] = ":memory:",
        config: Optional[Config] = None,
        embedding_provider: Optional[EmbeddingProvider] = None,
    ):
        self.config = config or Config()

        if isinstance(db_path, Path):
            db_path.parent.mkdir(parents=True, exist_ok=True)

        self.db = Database(db_path, enable_fts=self.config.fts_enabled)
        self.store = MemoryStore(
            self.db,
            dedup_enabled=self.config.dedup_enabled,
            near_duplicate_threshold=self.config.near_duplicate_threshold,
        )
        self.graph = RelationshipGraph(self.db)
        self.sessions = SessionManager(self.db, promotion_threshold=self.config.promotion_threshold)
        self.vectors = VectorStore(self.db)
        self.embedding_provider = embedding_provider
        if embedding_provider is not None:
            self.vectors.register_model(embedding_provider)
        self.search = SearchService(self.db, self.store, embedding_provider)
        self.decay = DecayEngine(
            self.db,
            interval=self.config.decay_interval_seconds,
            batch_size=self.config.decay_batch_size,
            enabled=self.config.decay_enabled,
        )

    def remember(self, input: MemoryInput, project_id: str, session_id: Optional[str] = None) -> Memory:
        """Create a memory, opening its session and embedding it when possible."""
        if session_id:
            self.sessions.get_or_create_session(session_id, project_id)

        memory = self.store.create(input, project_id, session_id)

        if self.embedding_provider is not None:
            self.vectors.embed_memory(memory.id, memory.content, self.embedding_provider)

        return memory

    def close(self) -> None:
        self.db.close()


def open_memory_system(config: Optional[Config] = None) -> MemorySystem:
    """Build a MemorySystem from config, loading fastembed if embeddings are enabled."""
    config = config or load_config()

    provider = None
    if config.embeddings_enabled:
        provider = FastEmbedProvider(config.embedding_model, config.embedding_dimension)

    db_path = config.resolved_db_path()
    logger.info("Opening memory database at %s", db_path)
    return MemorySystem(db_path, config=config, embedding_provider=provider)


def configure_memory_system(config: Config) -> None:
    """Use this config when the singleton is next opened."""
    global _memory_config
    reset_memory_system()
    _memory_config = config


def get_memory_system() -> MemorySystem:
    """Get the singleton MemorySystem instance, opening it on first use."""
    global _memory_system

    if _memory_system is None:
        _memory_system = open_memory_system(_memory_config)

    return _memory_system


def reset_memory_system() -> None:
    """Reset the singleton (for testing or reconfiguration)."""
    global _memory_system, _memory_config
    if _memory_system is not None:
        _memory_system.close()
        _memory_system = None
    _memory_config = None
