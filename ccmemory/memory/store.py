"""Memory record store: creation, lookup, salience mutation and deletion."""

import logging
import re
import uuid
from typing import List, Optional

from ccmemory.db import Database
from ccmemory.exceptions import NotFoundError
from ccmemory.memory.classifier import classify_sector
from ccmemory.memory.dedup import compute_content_hash, compute_simhash, is_near_duplicate
from ccmemory.memory.schema import (
    SALIENCE_CEILING,
    SALIENCE_FLOOR,
    ListOptions,
    Memory,
    MemoryInput,
    MemoryUpdate,
    Tier,
    UsageType,
    encode_json_list,
    utc_now,
)

logger = logging.getLogger(__name__)

DEFAULT_IMPORTANCE = 0.5
DEFAULT_REINFORCE_AMOUNT = 0.1
DEFAULT_DEEMPHASIZE_AMOUNT = 0.2
DUPLICATE_REINFORCE_AMOUNT = 0.1

MAX_CONCEPTS = 20

_CONCEPT_PATTERNS = [
    re.compile(r"`([^`]+)`"),
    re.compile(r"\b([A-Z][a-z]+[A-Z][a-zA-Z]*)\b"),
    re.compile(r"\b([a-z]+_[a-z_]+)\b"),
    re.compile(r"/([\w\-./]+\.\w+)"),
]


def extract_concepts(content: str) -> List[str]:
    """Pull code-like identifiers (backticked names, CamelCase, snake_case, paths)."""
    concepts: List[str] = []
    for pattern in _CONCEPT_PATTERNS:
        for match in pattern.finditer(content):
            concept = match.group(1)
            if 2 < len(concept) < 50 and concept not in concepts:
                concepts.append(concept)
    return concepts[:MAX_CONCEPTS]


def _keywords(tags: List[str], concepts: List[str]) -> str:
    return " ".join(tags + concepts)


def _check_amount(amount: float) -> None:
    if not 0.0 <= amount <= 1.0:
        raise ValueError(f"amount must be between 0 and 1, got {amount}")


class MemoryStore:
    """Owns the lifecycle of memory rows."""

    def __init__(
        self,
        db: Database,
        dedup_enabled: bool = True,
        near_duplicate_threshold: Optional[int] = None,
    ):
        """Initialize the store.

        Args:
            db: Shared database handle
            dedup_enabled: Merge exact duplicates (same content hash) into the existing memory
            near_duplicate_threshold: Also merge memories whose simhash is within this
                Hamming distance; None disables near-duplicate merging
        """
        self.db = db
        self.dedup_enabled = dedup_enabled
        self.near_duplicate_threshold = near_duplicate_threshold

    def create(self, input: MemoryInput, project_id: str, session_id: Optional[str] = None) -> Memory:
        """Store a new memory, or reinforce an existing duplicate.

        Args:
            input: Content and optional metadata
            project_id: Owning project
            session_id: Session the memory was captured in; makes the memory session-tier

        Returns:
            The created memory, or the reinforced duplicate
        """
        content_hash = compute_content_hash(input.content)
        simhash = compute_simhash(input.content)

        if self.dedup_enabled:
            existing = self._find_duplicate(project_id, content_hash, simhash)
            if existing is not None:
                logger.info("Duplicate of memory %s detected, reinforcing existing", existing.id)
                reinforced = self.reinforce(existing.id, DUPLICATE_REINFORCE_AMOUNT)
                if session_id:
                    self.link_to_session(existing.id, session_id, UsageType.REINFORCED)
                return reinforced

        memory_id = str(uuid.uuid4())
        now = utc_now()
        sector = input.sector or classify_sector(input.content)
        if input.tier is not None:
            tier = input.tier
        else:
            tier = Tier.SESSION if session_id else Tier.PROJECT
        importance = input.importance if input.importance is not None else DEFAULT_IMPORTANCE
        concepts = input.concepts or extract_concepts(input.content)

        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO memories (
                    id, project_id, content, summary, content_hash, simhash, sector, tier,
                    importance, salience, access_count, created_at, updated_at, last_accessed,
                    valid_from, is_deleted, tags, concepts, files, keywords
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                [
                    memory_id,
                    project_id,
                    input.content,
                    input.summary,
                    content_hash,
                    simhash,
                    sector.value,
                    tier.value,
                    importance,
                    SALIENCE_CEILING,
                    0,
                    now,
                    now,
                    now,
                    input.valid_from or now,
                    False,
                    encode_json_list(input.tags),
                    encode_json_list(concepts),
                    encode_json_list(input.files),
                    _keywords(input.tags, concepts),
                ],
            )
            if session_id:
                self.link_to_session(memory_id, session_id, UsageType.CREATED)

        self.db.mark_content_changed()
        logger.info("Memory %s created (sector=%s, tier=%s)", memory_id, sector.value, tier.value)
        return self.get(memory_id)

    def _find_duplicate(self, project_id: str, content_hash: str, simhash: str) -> Optional[Memory]:
        row = self.db.query_one(
            """
            SELECT * FROM memories
            WHERE project_id = ? AND content_hash = ? AND is_deleted = FALSE
            ORDER BY created_at DESC
            LIMIT 1
        """,
            [project_id, content_hash],
        )
        if row is not None:
            return Memory.model_validate(row)

        if self.near_duplicate_threshold is None:
            return None

        rows = self.db.query(
            """
            SELECT * FROM memories
            WHERE project_id = ? AND is_deleted = FALSE AND simhash IS NOT NULL
            ORDER BY created_at DESC
        """,
            [project_id],
        )
        for row in rows:
            if is_near_duplicate(simhash, row["simhash"], self.near_duplicate_threshold):
                return Memory.model_validate(row)
        return None

    def get(self, memory_id: str, include_deleted: bool = False) -> Memory:
        """Get a memory by ID.

        Raises:
            NotFoundError: If the memory does not exist or is soft-deleted
        """
        row = self.db.query_one("SELECT * FROM memories WHERE id = ?", [memory_id])
        if row is None or (row["is_deleted"] and not include_deleted):
            raise NotFoundError("memory", memory_id)
        return Memory.model_validate(row)

    def exists(self, memory_id: str) -> bool:
        rows = self.db.execute("SELECT 1 FROM memories WHERE id = ? AND is_deleted = FALSE", [memory_id])
        return bool(rows)

    def update(self, memory_id: str, updates: MemoryUpdate) -> Memory:
        """Apply a partial update, re-fingerprinting when the content changes."""
        current = self.get(memory_id)

        set_clauses = []
        params: list = []

        concepts = current.concepts
        tags = current.tags

        if updates.content is not None:
            concepts = extract_concepts(updates.content)
            set_clauses += ["content = ?", "content_hash = ?", "simhash = ?", "concepts = ?"]
            params += [
                updates.content,
                compute_content_hash(updates.content),
                compute_simhash(updates.content),
                encode_json_list(concepts),
            ]

        if updates.summary is not None:
            set_clauses.append("summary = ?")
            params.append(updates.summary)

        if updates.sector is not None:
            set_clauses.append("sector = ?")
            params.append(updates.sector.value)

        if updates.importance is not None:
            set_clauses.append("importance = ?")
            params.append(updates.importance)

        if updates.tags is not None:
            tags = updates.tags
            set_clauses.append("tags = ?")
            params.append(encode_json_list(tags))

        if updates.files is not None:
            set_clauses.append("files = ?")
            params.append(encode_json_list(updates.files))

        set_clauses += ["keywords = ?", "updated_at = ?"]
        params += [_keywords(tags, concepts), utc_now(), memory_id]

        self.db.execute(f"UPDATE memories SET {', '.join(set_clauses)} WHERE id = ?", params)
        self.db.mark_content_changed()

        logger.info("Memory %s updated", memory_id)
        return self.get(memory_id)

    def list(self, options: Optional[ListOptions] = None) -> List[Memory]:
        """List memories matching the given filters."""
        options = options or ListOptions()

        where_clauses = []
        params: list = []

        if options.project_id:
            where_clauses.append("project_id = ?")
            params.append(options.project_id)

        if not options.include_deleted:
            where_clauses.append("is_deleted = FALSE")

        if options.sector:
            where_clauses.append("sector = ?")
            params.append(options.sector.value)

        if options.tier:
            where_clauses.append("tier = ?")
            params.append(options.tier.value)

        if options.min_salience is not None:
            where_clauses.append("salience >= ?")
            params.append(options.min_salience)

        where_sql = ""
        if where_clauses:
            where_sql = "WHERE " + " AND ".join(where_clauses)

        # order_by and order are Literal-validated, safe to interpolate
        sql = f"SELECT * FROM memories {where_sql} ORDER BY {options.order_by} {options.order.upper()}, id"

        if options.limit is not None:
            sql += " LIMIT ?"
            params.append(options.limit)

        if options.offset is not None:
            sql += " OFFSET ?"
            params.append(options.offset)

        return [Memory.model_validate(row) for row in self.db.query(sql, params)]

    def touch(self, memory_id: str) -> None:
        """Record a retrieval: bump last_accessed and the access count."""
        rows = self.db.execute(
            """
            UPDATE memories SET last_accessed = ?, access_count = access_count + 1
            WHERE id = ? AND is_deleted = FALSE
            RETURNING id
        """,
            [utc_now(), memory_id],
        )
        if not rows:
            raise NotFoundError("memory", memory_id)
        logger.debug("Touched memory %s", memory_id)

    def reinforce(self, memory_id: str, amount: float = DEFAULT_REINFORCE_AMOUNT) -> Memory:
        """Raise salience with diminishing returns: s + amount * (1 - s).

        Gains shrink as salience approaches 1.0 and the result never exceeds it.
        Counts as an access.
        """
        _check_amount(amount)
        now = utc_now()

        rows = self.db.execute(
            """
            UPDATE memories
            SET salience = LEAST(?, salience + ? * (1.0 - salience)),
                last_accessed = ?,
                access_count = access_count + 1,
                updated_at = ?
            WHERE id = ? AND is_deleted = FALSE
            RETURNING id
        """,
            [SALIENCE_CEILING, amount, now, now, memory_id],
        )
        if not rows:
            raise NotFoundError("memory", memory_id)

        logger.debug("Reinforced memory %s by %.3f", memory_id, amount)
        return self.get(memory_id)

    def deemphasize(self, memory_id: str, amount: float = DEFAULT_DEEMPHASIZE_AMOUNT) -> Memory:
        """Lower salience toward the floor, proportionally to its distance above it."""
        _check_amount(amount)

        rows = self.db.execute(
            """
            UPDATE memories
            SET salience = GREATEST(?, salience - ? * (salience - ?)),
                updated_at = ?
            WHERE id = ? AND is_deleted = FALSE
            RETURNING id
        """,
            [SALIENCE_FLOOR, amount, SALIENCE_FLOOR, utc_now(), memory_id],
        )
        if not rows:
            raise NotFoundError("memory", memory_id)

        logger.debug("De-emphasized memory %s by %.3f", memory_id, amount)
        return self.get(memory_id)

    def delete(self, memory_id: str, hard: bool = False) -> None:
        """Delete a memory.

        Soft delete flags the row and hides it from every query. Hard delete
        removes the row with its relationships, vectors and session links in
        one transaction.

        Raises:
            NotFoundError: If no row with this id exists
        """
        now = utc_now()

        if not hard:
            rows = self.db.execute(
                """
                UPDATE memories
                SET is_deleted = TRUE, deleted_at = COALESCE(deleted_at, ?), updated_at = ?
                WHERE id = ?
                RETURNING id
            """,
                [now, now, memory_id],
            )
            if not rows:
                raise NotFoundError("memory", memory_id)
            logger.info("Memory %s soft-deleted", memory_id)
            return

        with self.db.transaction() as conn:
            conn.execute(
                "DELETE FROM memory_relationships WHERE source_memory_id = ? OR target_memory_id = ?",
                [memory_id, memory_id],
            )
            conn.execute("DELETE FROM memory_vectors WHERE memory_id = ?", [memory_id])
            conn.execute("DELETE FROM session_memories WHERE memory_id = ?", [memory_id])
            rows = conn.execute("DELETE FROM memories WHERE id = ? RETURNING id", [memory_id]).fetchall()
            if not rows:
                raise NotFoundError("memory", memory_id)

        self.db.mark_content_changed()
        logger.info("Memory %s hard-deleted", memory_id)

    def restore(self, memory_id: str) -> Memory:
        """Undo a soft delete."""
        rows = self.db.execute(
            """
            UPDATE memories SET is_deleted = FALSE, deleted_at = NULL, updated_at = ?
            WHERE id = ?
            RETURNING id
        """,
            [utc_now(), memory_id],
        )
        if not rows:
            raise NotFoundError("memory", memory_id)
        logger.info("Memory %s restored", memory_id)
        return self.get(memory_id)

    def link_to_session(self, memory_id: str, session_id: str, usage_type: UsageType) -> None:
        """Record that a memory was used in a session (one row per usage type)."""
        self.db.execute(
            """
            INSERT OR IGNORE INTO session_memories (session_id, memory_id, created_at, usage_type)
            VALUES (?, ?, ?, ?)
        """,
            [session_id, memory_id, utc_now(), UsageType(usage_type).value],
        )
        logger.debug("Linked memory %s to session %s (%s)", memory_id, session_id, usage_type)

    def get_by_session(self, session_id: str) -> List[Memory]:
        """Live memories linked to a session, most recently linked first."""
        rows = self.db.query(
            """
            SELECT m.* FROM memories m
            JOIN (
                SELECT memory_id, MAX(created_at) AS linked_at
                FROM session_memories
                WHERE session_id = ?
                GROUP BY memory_id
            ) sm ON sm.memory_id = m.id
            WHERE m.is_deleted = FALSE
            ORDER BY sm.linked_at DESC, m.created_at DESC
        """,
            [session_id],
        )
        return [Memory.model_validate(row) for row in rows]

    def count(self, project_id: Optional[str] = None) -> int:
        """Count live memories."""
        if project_id is not None:
            rows = self.db.execute(
                "SELECT COUNT(*) FROM memories WHERE project_id = ? AND is_deleted = FALSE", [project_id]
            )
        else:
            rows = self.db.execute("SELECT COUNT(*) FROM memories WHERE is_deleted = FALSE")
        return rows[0][0] if rows else 0
