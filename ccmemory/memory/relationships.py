"""Typed, temporally scoped relationships between memories."""

import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional, Union

import duckdb
from pydantic import BaseModel, ConfigDict, Field

from ccmemory.db import Database
from ccmemory.exceptions import AtomicWriteFailedError, InvalidRelationshipTypeError, NotFoundError
from ccmemory.memory.schema import Memory, utc_now

logger = logging.getLogger(__name__)


class RelationshipType(str, Enum):
    SUPERSEDES = "SUPERSEDES"
    CONTRADICTS = "CONTRADICTS"
    RELATED_TO = "RELATED_TO"
    BUILDS_ON = "BUILDS_ON"
    CONFIRMS = "CONFIRMS"
    APPLIES_TO = "APPLIES_TO"
    DEPENDS_ON = "DEPENDS_ON"
    ALTERNATIVE_TO = "ALTERNATIVE_TO"


class ExtractedBy(str, Enum):
    """Who asserted a relationship."""

    USER = "user"
    LLM = "llm"
    SYSTEM = "system"


class MemoryRelationship(BaseModel):
    """A directed edge; active while valid_until is unset."""

    model_config = ConfigDict(extra="ignore")

    id: str
    source_memory_id: str
    target_memory_id: str
    relationship_type: RelationshipType
    created_at: datetime
    valid_from: datetime
    valid_until: Optional[datetime] = None
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    extracted_by: ExtractedBy = ExtractedBy.SYSTEM

    @property
    def is_active(self) -> bool:
        return self.valid_until is None


def parse_relationship_type(value: Union[str, RelationshipType]) -> RelationshipType:
    """Coerce a string to a RelationshipType.

    Raises:
        InvalidRelationshipTypeError: If the value is not one of the fixed types
    """
    if isinstance(value, RelationshipType):
        return value
    try:
        return RelationshipType(str(value).upper())
    except ValueError as e:
        raise InvalidRelationshipTypeError(str(value)) from e


class RelationshipGraph:
    """Relationship edges stored alongside memories in the shared database."""

    def __init__(self, db: Database):
        self.db = db

    def _require_live_memory(self, memory_id: str) -> None:
        rows = self.db.execute("SELECT 1 FROM memories WHERE id = ? AND is_deleted = FALSE", [memory_id])
        if not rows:
            raise NotFoundError("memory", memory_id)

    def _insert_edge(
        self,
        conn: duckdb.DuckDBPyConnection,
        source_id: str,
        target_id: str,
        relationship_type: RelationshipType,
        extracted_by: ExtractedBy,
        confidence: float,
    ) -> MemoryRelationship:
        relationship = MemoryRelationship(
            id=str(uuid.uuid4()),
            source_memory_id=source_id,
            target_memory_id=target_id,
            relationship_type=relationship_type,
            created_at=utc_now(),
            valid_from=utc_now(),
            confidence=confidence,
            extracted_by=extracted_by,
        )
        conn.execute(
            """
            INSERT INTO memory_relationships (
                id, source_memory_id, target_memory_id, relationship_type,
                created_at, valid_from, confidence, extracted_by
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
            [
                relationship.id,
                source_id,
                target_id,
                relationship_type.value,
                relationship.created_at,
                relationship.valid_from,
                confidence,
                extracted_by.value,
            ],
        )
        return relationship

    def create_relationship(
        self,
        source_id: str,
        target_id: str,
        relationship_type: Union[str, RelationshipType],
        extracted_by: Union[str, ExtractedBy] = ExtractedBy.SYSTEM,
        confidence: float = 1.0,
    ) -> MemoryRelationship:
        """Insert an active edge from source to target.

        Raises:
            InvalidRelationshipTypeError: Unknown relationship type
            NotFoundError: Either endpoint is missing or deleted
            ValueError: Confidence outside [0, 1] or unknown originator
        """
        rel_type = parse_relationship_type(relationship_type)
        originator = ExtractedBy(extracted_by)
        if not 0.0 <= confidence <= 1.0:
            raise ValueError(f"confidence must be between 0 and 1, got {confidence}")

        self._require_live_memory(source_id)
        self._require_live_memory(target_id)

        relationship = self._insert_edge(self.db.conn, source_id, target_id, rel_type, originator, confidence)
        logger.info("Relationship %s created: %s -[%s]-> %s", relationship.id, source_id, rel_type.value, target_id)
        return relationship

    def get_relationship(self, relationship_id: str) -> MemoryRelationship:
        row = self.db.query_one("SELECT * FROM memory_relationships WHERE id = ?", [relationship_id])
        if row is None:
            raise NotFoundError("relationship", relationship_id)
        return MemoryRelationship.model_validate(row)

    def get_relationships(self, memory_id: str) -> List[MemoryRelationship]:
        """Active edges touching the memory in either direction, newest first."""
        rows = self.db.query(
            """
            SELECT * FROM memory_relationships
            WHERE (source_memory_id = ? OR target_memory_id = ?)
              AND valid_until IS NULL
            ORDER BY created_at DESC, id
        """,
            [memory_id, memory_id],
        )
        return [MemoryRelationship.model_validate(row) for row in rows]

    def get_related_memories(
        self,
        memory_id: str,
        relationship_type: Optional[Union[str, RelationshipType]] = None,
    ) -> List[Memory]:
        """Resolve active edges to their live memory endpoints."""
        sql = """
            SELECT m.* FROM memories m
            JOIN memory_relationships r ON (
                (r.source_memory_id = ? AND r.target_memory_id = m.id) OR
                (r.target_memory_id = ? AND r.source_memory_id = m.id)
            )
            WHERE r.valid_until IS NULL
              AND m.is_deleted = FALSE
        """
        params: list = [memory_id, memory_id]

        if relationship_type is not None:
            sql += " AND r.relationship_type = ?"
            params.append(parse_relationship_type(relationship_type).value)

        sql += " ORDER BY r.created_at DESC, m.id"

        return [Memory.model_validate(row) for row in self.db.query(sql, params)]

    def count_active(self, memory_id: str) -> int:
        rows = self.db.execute(
            """
            SELECT COUNT(*) FROM memory_relationships
            WHERE (source_memory_id = ? OR target_memory_id = ?) AND valid_until IS NULL
        """,
            [memory_id, memory_id],
        )
        return rows[0][0]

    def invalidate_relationship(self, relationship_id: str) -> MemoryRelationship:
        """End an edge's validity without deleting it. Repeat calls keep the first cutoff."""
        rows = self.db.execute(
            """
            UPDATE memory_relationships SET valid_until = COALESCE(valid_until, ?)
            WHERE id = ?
            RETURNING id
        """,
            [utc_now(), relationship_id],
        )
        if not rows:
            raise NotFoundError("relationship", relationship_id)
        logger.info("Relationship %s invalidated", relationship_id)
        return self.get_relationship(relationship_id)

    def supersede(self, old_id: str, new_id: str) -> Optional[MemoryRelationship]:
        """Mark old_id as superseded by new_id.

        Sets valid_until on the old memory (first writer wins) and adds a
        SUPERSEDES edge new -> old, both in one transaction.

        Returns:
            The new edge, or None when an active edge for this pair already existed

        Raises:
            NotFoundError: Either memory is missing or deleted
            AtomicWriteFailedError: The transaction failed and was rolled back
        """
        if old_id == new_id:
            raise ValueError("A memory cannot supersede itself")

        self._require_live_memory(old_id)
        self._require_live_memory(new_id)

        now = utc_now()
        relationship = None
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    """
                    UPDATE memories SET valid_until = ?, updated_at = ?
                    WHERE id = ? AND valid_until IS NULL
                """,
                    [now, now, old_id],
                )
                existing = conn.execute(
                    """
                    SELECT id FROM memory_relationships
                    WHERE source_memory_id = ? AND target_memory_id = ?
                      AND relationship_type = 'SUPERSEDES' AND valid_until IS NULL
                """,
                    [new_id, old_id],
                ).fetchall()
                if not existing:
                    relationship = self._insert_edge(
                        conn, new_id, old_id, RelationshipType.SUPERSEDES, ExtractedBy.SYSTEM, 1.0
                    )
        except duckdb.Error as e:
            logger.error("Supersede %s -> %s rolled back: %s", new_id, old_id, e)
            raise AtomicWriteFailedError("supersede", str(e)) from e

        logger.info("Memory %s superseded by %s", old_id, new_id)
        return relationship

    def get_superseding_memory(self, memory_id: str) -> Optional[Memory]:
        """The live memory that most recently superseded memory_id, if any."""
        row = self.db.query_one(
            """
            SELECT m.* FROM memories m
            JOIN memory_relationships r ON r.source_memory_id = m.id
            WHERE r.target_memory_id = ?
              AND r.relationship_type = 'SUPERSEDES'
              AND r.valid_until IS NULL
              AND m.is_deleted = FALSE
            ORDER BY r.created_at DESC
            LIMIT 1
        """,
            [memory_id],
        )
        if row is None:
            return None
        return Memory.model_validate(row)
