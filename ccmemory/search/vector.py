"""Vector candidates: cosine similarity over the active model's stored vectors."""

import logging
from typing import List, Optional

from pydantic import BaseModel

from ccmemory.db import Database
from ccmemory.exceptions import DimensionMismatchError
from ccmemory.memory.embeddings import EmbeddingProvider

logger = logging.getLogger(__name__)


class VectorHit(BaseModel):
    memory_id: str
    similarity: float


def search_vector(
    db: Database,
    query: str,
    provider: EmbeddingProvider,
    project_id: Optional[str] = None,
    limit: int = 20,
    current_only: bool = False,
) -> List[VectorHit]:
    """Embed the query and return the most similar memories for the provider's model.

    Only vectors stored under the same model and dimensionality are compared.
    With current_only, superseded memories are skipped before the limit.

    Raises:
        DimensionMismatchError: If the provider returns a vector of the wrong size
    """
    query_vector = provider.embed(query)
    if len(query_vector) != provider.dimensions:
        raise DimensionMismatchError(provider.model_id, provider.dimensions, len(query_vector))

    sql = """
        SELECT mv.memory_id,
               list_cosine_similarity(mv.vector, ?::FLOAT[]) AS similarity
        FROM memory_vectors mv
        JOIN memories m ON mv.memory_id = m.id
        WHERE mv.model_id = ?
          AND mv.dim = ?
          AND m.is_deleted = FALSE
    """
    params: list = [[float(x) for x in query_vector], provider.model_id, len(query_vector)]

    if current_only:
        sql += " AND m.valid_until IS NULL"
    if project_id:
        sql += " AND m.project_id = ?"
        params.append(project_id)

    sql += " ORDER BY similarity DESC, mv.memory_id LIMIT ?"
    params.append(limit)

    rows = db.execute(sql, params)
    hits = [VectorHit(memory_id=row[0], similarity=float(row[1])) for row in rows if row[1] is not None]

    logger.debug("Vector search returned %d hits for model %s", len(hits), provider.model_id)
    return hits
