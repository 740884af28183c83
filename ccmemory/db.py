"""DuckDB store handle shared by every memory component."""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

import duckdb

logger = logging.getLogger(__name__)

# Outcome of the first attempt to load the fts extension in this process
_fts_loadable: Optional[bool] = None

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS memories (
        id VARCHAR PRIMARY KEY,
        project_id VARCHAR NOT NULL,
        content VARCHAR NOT NULL,
        summary VARCHAR,
        content_hash VARCHAR,
        simhash VARCHAR,
        sector VARCHAR NOT NULL DEFAULT 'semantic',
        tier VARCHAR NOT NULL DEFAULT 'project',
        importance DOUBLE NOT NULL DEFAULT 0.5,
        salience DOUBLE NOT NULL DEFAULT 1.0,
        access_count INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMP NOT NULL,
        updated_at TIMESTAMP NOT NULL,
        last_accessed TIMESTAMP NOT NULL,
        valid_from TIMESTAMP,
        valid_until TIMESTAMP,
        is_deleted BOOLEAN NOT NULL DEFAULT FALSE,
        deleted_at TIMESTAMP,
        embedding_model_id VARCHAR,
        tags VARCHAR DEFAULT '[]',  -- JSON array
        concepts VARCHAR DEFAULT '[]',  -- JSON array
        files VARCHAR DEFAULT '[]',  -- JSON array
        keywords VARCHAR DEFAULT ''  -- tags and concepts joined, for keyword search
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sessions (
        id VARCHAR PRIMARY KEY,
        project_id VARCHAR NOT NULL,
        started_at TIMESTAMP NOT NULL,
        ended_at TIMESTAMP,
        summary VARCHAR,
        user_prompt VARCHAR,
        context VARCHAR DEFAULT '{}'  -- JSON object
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS session_memories (
        session_id VARCHAR NOT NULL,
        memory_id VARCHAR NOT NULL,
        created_at TIMESTAMP NOT NULL,
        usage_type VARCHAR NOT NULL,
        PRIMARY KEY (session_id, memory_id, usage_type)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS memory_relationships (
        id VARCHAR PRIMARY KEY,
        source_memory_id VARCHAR NOT NULL,
        target_memory_id VARCHAR NOT NULL,
        relationship_type VARCHAR NOT NULL,
        created_at TIMESTAMP NOT NULL,
        valid_from TIMESTAMP NOT NULL,
        valid_until TIMESTAMP,
        confidence DOUBLE NOT NULL DEFAULT 1.0,
        extracted_by VARCHAR NOT NULL DEFAULT 'system'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS embedding_models (
        id VARCHAR PRIMARY KEY,
        name VARCHAR NOT NULL,
        provider VARCHAR NOT NULL,
        dimensions INTEGER NOT NULL,
        is_active BOOLEAN NOT NULL DEFAULT FALSE
    )
    """,
    # No key on memory_vectors: re-embedding is a delete + insert inside one transaction
    """
    CREATE TABLE IF NOT EXISTS memory_vectors (
        memory_id VARCHAR NOT NULL,
        model_id VARCHAR NOT NULL,
        vector FLOAT[] NOT NULL,
        dim INTEGER NOT NULL,
        created_at TIMESTAMP NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_memories_project ON memories(project_id)",
    "CREATE INDEX IF NOT EXISTS idx_relationships_source ON memory_relationships(source_memory_id)",
    "CREATE INDEX IF NOT EXISTS idx_relationships_target ON memory_relationships(target_memory_id)",
    "CREATE INDEX IF NOT EXISTS idx_session_memories_memory ON session_memories(memory_id)",
]


class Database:
    """Owns the DuckDB connection, the schema and the transaction primitive.

    A single connection is shared by every component built on top of it;
    pass the same instance to the store, graph, session manager, search
    service and decay engine.
    """

    def __init__(self, db_path: Union[Path, str] = ":memory:", enable_fts: bool = True):
        """Open (and create if needed) a memory database.

        Args:
            db_path: Path to the DuckDB file, or ":memory:" for a throwaway store
            enable_fts: Try to load DuckDB's fts extension for BM25 keyword ranking
        """
        self.db_path = db_path
        if str(db_path) != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self.conn = duckdb.connect(str(db_path))
        self._transaction_depth = 0
        self.fts_available = self._load_fts() if enable_fts else False
        # The fts index is a snapshot; content writes mark it stale
        self.fts_dirty = True
        self._init_schema()

    def _init_schema(self) -> None:
        for statement in SCHEMA_STATEMENTS:
            self.conn.execute(statement)

    def _load_fts(self) -> bool:
        global _fts_loadable

        if _fts_loadable is False:
            return False

        try:
            self.conn.execute("LOAD fts")
        except duckdb.Error:
            try:
                self.conn.execute("INSTALL fts")
                self.conn.execute("LOAD fts")
            except duckdb.Error as e:
                logger.warning("DuckDB fts extension unavailable, using token-match keyword ranking: %s", e)
                _fts_loadable = False
                return False

        _fts_loadable = True
        return True

    @contextmanager
    def transaction(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """Run a group of statements as one all-or-nothing batch.

        Nested use joins the outer transaction.

        Usage:
            with db.transaction() as conn:
                conn.execute("UPDATE memories SET ...")
                conn.execute("INSERT INTO memory_relationships ...")
        """
        if self._transaction_depth > 0:
            self._transaction_depth += 1
            try:
                yield self.conn
            finally:
                self._transaction_depth -= 1
            return

        self.conn.begin()
        self._transaction_depth = 1
        try:
            yield self.conn
        except BaseException:
            self._transaction_depth = 0
            self.conn.rollback()
            raise
        self._transaction_depth = 0
        self.conn.commit()

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[tuple]:
        """Execute a statement and return all result rows as tuples."""
        return self.conn.execute(sql, list(params or [])).fetchall()

    def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        """Execute a query and return rows as column-name dicts."""
        cursor = self.conn.execute(sql, list(params or []))
        columns = [d[0] for d in cursor.description]
        return [dict(zip(columns, row)) for row in cursor.fetchall()]

    def query_one(self, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[Dict[str, Any]]:
        rows = self.query(sql, params)
        return rows[0] if rows else None

    def mark_content_changed(self) -> None:
        self.fts_dirty = True

    def close(self) -> None:
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
