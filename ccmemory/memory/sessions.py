"""Sessions and session-to-project tier promotion."""

import json
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ccmemory.db import Database
from ccmemory.exceptions import NotFoundError
from ccmemory.memory.schema import Memory, UsageType, utc_now

logger = logging.getLogger(__name__)

DEFAULT_PROMOTION_THRESHOLD = 0.7
DEFAULT_SESSION_MAX_AGE = timedelta(hours=6)
DEFAULT_MIN_USAGE_COUNT = 2


class Session(BaseModel):
    """A bounded interaction window within a project."""

    model_config = ConfigDict(extra="ignore")

    id: str
    project_id: str
    started_at: datetime
    ended_at: Optional[datetime] = None
    summary: Optional[str] = None
    user_prompt: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("context", mode="before")
    @classmethod
    def decode_context(cls, v):
        if v is None or v == "":
            return {}
        if isinstance(v, str):
            try:
                parsed = json.loads(v)
            except json.JSONDecodeError:
                return {}
            return parsed if isinstance(parsed, dict) else {}
        return v

    @property
    def is_active(self) -> bool:
        return self.ended_at is None


class SessionStats(BaseModel):
    memories_created: int = 0
    memories_recalled: int = 0
    memories_updated: int = 0
    memories_reinforced: int = 0
    total_memories: int = 0


class SessionEndResult(BaseModel):
    session: Session
    promoted_ids: List[str] = Field(default_factory=list)

    @property
    def promoted_count(self) -> int:
        return len(self.promoted_ids)


class SessionManager:
    """Creates, ends and inspects sessions.

    Ending a session is the automatic path from session tier to project
    tier: linked session-tier memories with salience above the promotion
    threshold survive the session. promote_session_memories promotes by
    repeated use instead.
    """

    def __init__(self, db: Database, promotion_threshold: float = DEFAULT_PROMOTION_THRESHOLD):
        self.db = db
        self.promotion_threshold = promotion_threshold

    def _insert(self, session: Session) -> None:
        self.db.execute(
            """
            INSERT INTO sessions (id, project_id, started_at, user_prompt, context)
            VALUES (?, ?, ?, ?, ?)
        """,
            [session.id, session.project_id, session.started_at, session.user_prompt, json.dumps(session.context)],
        )

    def create(
        self,
        project_id: str,
        user_prompt: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> Session:
        session = Session(
            id=str(uuid.uuid4()),
            project_id=project_id,
            started_at=utc_now(),
            user_prompt=user_prompt,
            context=context or {},
        )
        self._insert(session)
        logger.info("Session %s created for project %s", session.id, project_id)
        return session

    def get(self, session_id: str) -> Session:
        row = self.db.query_one("SELECT * FROM sessions WHERE id = ?", [session_id])
        if row is None:
            raise NotFoundError("session", session_id)
        return Session.model_validate(row)

    def get_or_create_session(self, session_id: str, project_id: str) -> Session:
        """Return the session with this id, creating it if needed.

        Creating a session ends any other open session of the same project.
        """
        row = self.db.query_one("SELECT * FROM sessions WHERE id = ?", [session_id])
        if row is not None:
            return Session.model_validate(row)

        now = utc_now()
        session = Session(id=session_id, project_id=project_id, started_at=now)

        with self.db.transaction() as conn:
            ended = conn.execute(
                """
                UPDATE sessions SET ended_at = ?
                WHERE project_id = ? AND ended_at IS NULL AND id != ?
                RETURNING id
            """,
                [now, project_id, session_id],
            ).fetchall()
            self._insert(session)

        if ended:
            logger.info("Ended %d previous active session(s) for project %s", len(ended), project_id)
        logger.info("Session %s created for project %s", session_id, project_id)
        return session

    def get_active_session(self, project_id: str) -> Optional[Session]:
        row = self.db.query_one(
            """
            SELECT * FROM sessions
            WHERE project_id = ? AND ended_at IS NULL
            ORDER BY started_at DESC
            LIMIT 1
        """,
            [project_id],
        )
        return Session.model_validate(row) if row else None

    def end_session(self, session_id: str, summary: Optional[str] = None) -> SessionEndResult:
        """Close a session and promote its high-salience session-tier memories.

        Safe to call repeatedly: memories already at project tier are skipped
        and the original end time is kept.

        Raises:
            NotFoundError: If the session does not exist
        """
        self.get(session_id)
        now = utc_now()

        logger.info("Ending session %s", session_id)

        with self.db.transaction() as conn:
            conn.execute(
                """
                UPDATE sessions
                SET ended_at = COALESCE(ended_at, ?), summary = COALESCE(?, summary)
                WHERE id = ?
            """,
                [now, summary, session_id],
            )
            promoted = conn.execute(
                """
                UPDATE memories
                SET tier = 'project', updated_at = ?
                WHERE tier = 'session'
                  AND salience > ?
                  AND is_deleted = FALSE
                  AND id IN (SELECT memory_id FROM session_memories WHERE session_id = ?)
                RETURNING id
            """,
                [now, self.promotion_threshold, session_id],
            ).fetchall()

        promoted_ids = sorted(row[0] for row in promoted)
        if promoted_ids:
            logger.info("Promoted %d memories from session %s", len(promoted_ids), session_id)

        return SessionEndResult(session=self.get(session_id), promoted_ids=promoted_ids)

    def promote_session_memories(self, session_id: str, min_usage_count: int = DEFAULT_MIN_USAGE_COUNT) -> List[str]:
        """Promote session-tier memories used in at least min_usage_count ways in a session.

        Usage count is the number of distinct usage types (created, recalled,
        updated, reinforced) linking the memory to the session. Independent of
        salience and of whether the session has ended.

        Returns:
            Ids of the memories moved to project tier

        Raises:
            NotFoundError: If the session does not exist
            ValueError: If min_usage_count is below 1
        """
        if min_usage_count < 1:
            raise ValueError(f"min_usage_count must be at least 1, got {min_usage_count}")
        self.get(session_id)

        logger.info("Promoting memories of session %s used at least %d times", session_id, min_usage_count)
        rows = self.db.execute(
            """
            UPDATE memories
            SET tier = 'project', updated_at = ?
            WHERE tier = 'session'
              AND is_deleted = FALSE
              AND id IN (
                  SELECT memory_id FROM session_memories
                  WHERE session_id = ?
                  GROUP BY memory_id
                  HAVING COUNT(*) >= ?
              )
            RETURNING id
        """,
            [utc_now(), session_id, min_usage_count],
        )

        promoted_ids = sorted(row[0] for row in rows)
        if promoted_ids:
            logger.info("Promoted %d memories from session %s", len(promoted_ids), session_id)
        return promoted_ids

    def get_stats(self, session_id: str) -> SessionStats:
        rows = self.db.execute(
            """
            SELECT usage_type, COUNT(*) FROM session_memories
            WHERE session_id = ?
            GROUP BY usage_type
        """,
            [session_id],
        )
        counts = {usage: count for usage, count in rows}

        stats = SessionStats(
            memories_created=counts.get(UsageType.CREATED.value, 0),
            memories_recalled=counts.get(UsageType.RECALLED.value, 0),
            memories_updated=counts.get(UsageType.UPDATED.value, 0),
            memories_reinforced=counts.get(UsageType.REINFORCED.value, 0),
        )
        stats.total_memories = (
            stats.memories_created + stats.memories_recalled + stats.memories_updated + stats.memories_reinforced
        )
        return stats

    def get_session_memories(self, session_id: str) -> List[Memory]:
        rows = self.db.query(
            """
            SELECT m.* FROM memories m
            WHERE m.is_deleted = FALSE
              AND m.id IN (SELECT memory_id FROM session_memories WHERE session_id = ?)
            ORDER BY m.created_at ASC, m.id
        """,
            [session_id],
        )
        return [Memory.model_validate(row) for row in rows]

    def cleanup_stale_sessions(self, max_age: timedelta = DEFAULT_SESSION_MAX_AGE) -> int:
        """End sessions left open longer than max_age. Returns how many were ended."""
        now = utc_now()
        rows = self.db.execute(
            """
            UPDATE sessions SET ended_at = ?
            WHERE ended_at IS NULL AND started_at < ?
            RETURNING id
        """,
            [now, now - max_age],
        )
        if rows:
            logger.info("Ended %d stale session(s)", len(rows))
        return len(rows)
