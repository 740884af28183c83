"""Embedding providers and per-model vector storage."""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from ccmemory.db import Database
from ccmemory.exceptions import DimensionMismatchError, NotFoundError
from ccmemory.memory.schema import utc_now

logger = logging.getLogger(__name__)

# Known dimensions to avoid loading a model just to ask for its size
KNOWN_DIMENSIONS = {
    "BAAI/bge-small-en-v1.5": 384,
    "BAAI/bge-base-en-v1.5": 768,
    "all-MiniLM-L6-v2": 384,
    "sentence-transformers/all-MiniLM-L6-v2": 384,
    "nomic-ai/nomic-embed-text-v1.5": 768,
}


class EmbeddingModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    provider: str
    dimensions: int
    is_active: bool = False


class EmbeddingProvider(ABC):
    """Produces fixed-dimension vectors for text."""

    name: str = "provider"

    def __init__(self, model: str, dimensions: int):
        self.model = model
        self.dimensions = dimensions

    @property
    def model_id(self) -> str:
        return f"{self.name}:{self.model}"

    @abstractmethod
    def embed(self, text: str) -> List[float]:
        """Embed a single text."""


class FastEmbedProvider(EmbeddingProvider):
    """Local embeddings via fastembed, loaded on first use."""

    name = "fastembed"

    def __init__(self, model: str = "BAAI/bge-small-en-v1.5", dimensions: Optional[int] = None):
        super().__init__(model, dimensions or KNOWN_DIMENSIONS.get(model, 0))
        self._embedding_model = None

    def _load(self):
        if self._embedding_model is None:
            try:
                from fastembed import TextEmbedding
            except ImportError as e:
                raise ImportError(
                    "fastembed is required for memory embeddings. Install with: pip install fastembed"
                ) from e
            self._embedding_model = TextEmbedding(model_name=self.model)
        return self._embedding_model

    def embed(self, text: str) -> List[float]:
        vector = list(self._load().embed([text]))[0].tolist()
        if not self.dimensions:
            self.dimensions = len(vector)
        return vector


class VectorStore:
    """Stores at most one vector per memory per embedding model."""

    def __init__(self, db: Database):
        self.db = db

    def register_model(self, provider: EmbeddingProvider) -> EmbeddingModel:
        """Record the provider's model and make it the only active one."""
        with self.db.transaction() as conn:
            existing = conn.execute("SELECT dimensions FROM embedding_models WHERE id = ?", [provider.model_id]).fetchall()
            if existing and existing[0][0] != provider.dimensions:
                raise DimensionMismatchError(provider.model_id, existing[0][0], provider.dimensions)
            if not existing:
                conn.execute(
                    """
                    INSERT INTO embedding_models (id, name, provider, dimensions, is_active)
                    VALUES (?, ?, ?, ?, FALSE)
                """,
                    [provider.model_id, provider.model, provider.name, provider.dimensions],
                )
            conn.execute("UPDATE embedding_models SET is_active = (id = ?)", [provider.model_id])

        logger.info("Embedding model %s active (%d dimensions)", provider.model_id, provider.dimensions)
        return self.get_model(provider.model_id)

    def get_model(self, model_id: str) -> EmbeddingModel:
        row = self.db.query_one("SELECT * FROM embedding_models WHERE id = ?", [model_id])
        if row is None:
            raise NotFoundError("embedding model", model_id)
        return EmbeddingModel.model_validate(row)

    def get_active_model(self) -> Optional[EmbeddingModel]:
        row = self.db.query_one("SELECT * FROM embedding_models WHERE is_active = TRUE LIMIT 1")
        return EmbeddingModel.model_validate(row) if row else None

    def store_vector(self, memory_id: str, model_id: str, vector: List[float]) -> None:
        """Store (or replace) a memory's vector for a model.

        Raises:
            NotFoundError: Unknown model or memory
            DimensionMismatchError: Vector length differs from the model's dimensions
        """
        model = self.get_model(model_id)
        if len(vector) != model.dimensions:
            raise DimensionMismatchError(model_id, model.dimensions, len(vector))

        with self.db.transaction() as conn:
            found = conn.execute(
                "UPDATE memories SET embedding_model_id = ? WHERE id = ? AND is_deleted = FALSE RETURNING id",
                [model_id, memory_id],
            ).fetchall()
            if not found:
                raise NotFoundError("memory", memory_id)
            conn.execute("DELETE FROM memory_vectors WHERE memory_id = ? AND model_id = ?", [memory_id, model_id])
            conn.execute(
                """
                INSERT INTO memory_vectors (memory_id, model_id, vector, dim, created_at)
                VALUES (?, ?, ?, ?, ?)
            """,
                [memory_id, model_id, [float(x) for x in vector], len(vector), utc_now()],
            )

        logger.debug("Stored %d-dim vector for memory %s (%s)", len(vector), memory_id, model_id)

    def get_vector(self, memory_id: str, model_id: str) -> Optional[List[float]]:
        rows = self.db.execute(
            "SELECT vector FROM memory_vectors WHERE memory_id = ? AND model_id = ?", [memory_id, model_id]
        )
        return list(rows[0][0]) if rows else None

    def embed_memory(self, memory_id: str, content: str, provider: EmbeddingProvider) -> None:
        """Embed content with the provider and store it under the provider's model."""
        vector = provider.embed(content)
        self.store_vector(memory_id, provider.model_id, vector)
