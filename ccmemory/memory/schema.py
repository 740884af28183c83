"""Memory data structures."""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

SALIENCE_FLOOR = 0.05
SALIENCE_CEILING = 1.0


def utc_now() -> datetime:
    """Naive UTC timestamp, matching DuckDB's TIMESTAMP columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def clamp_salience(value: float) -> float:
    return max(SALIENCE_FLOOR, min(SALIENCE_CEILING, value))


def decode_json_list(value: Any) -> List[str]:
    """Decode a JSON-array text column into a list of strings."""
    if value is None:
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value) if value else []
        except json.JSONDecodeError:
            return []
    if not isinstance(value, (list, tuple)):
        return []
    return [item for item in value if isinstance(item, str)]


def encode_json_list(values: Optional[List[str]]) -> str:
    return json.dumps(list(values or []))


class Sector(str, Enum):
    """Semantic category a memory belongs to."""

    EPISODIC = "episodic"
    SEMANTIC = "semantic"
    PROCEDURAL = "procedural"
    EMOTIONAL = "emotional"
    REFLECTIVE = "reflective"


class Tier(str, Enum):
    """Lifespan scope of a memory."""

    SESSION = "session"
    PROJECT = "project"


class UsageType(str, Enum):
    """How a memory was used within a session."""

    CREATED = "created"
    RECALLED = "recalled"
    UPDATED = "updated"
    REINFORCED = "reinforced"


class Memory(BaseModel):
    """A stored memory.

    List fields are JSON text in the database and typed lists here; the
    validators below are the only place that decoding happens.
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    project_id: str
    content: str
    summary: Optional[str] = None
    content_hash: Optional[str] = None
    simhash: Optional[str] = None

    sector: Sector = Sector.SEMANTIC
    tier: Tier = Tier.PROJECT
    importance: float = Field(default=0.5, ge=0.0, le=1.0)

    salience: float = 1.0
    access_count: int = 0

    created_at: datetime
    updated_at: datetime
    last_accessed: datetime
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None

    is_deleted: bool = False
    deleted_at: Optional[datetime] = None

    embedding_model_id: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    concepts: List[str] = Field(default_factory=list)
    files: List[str] = Field(default_factory=list)

    @field_validator("salience", mode="before")
    @classmethod
    def clamp(cls, v):
        return clamp_salience(float(v))

    @field_validator("tags", "concepts", "files", mode="before")
    @classmethod
    def decode_lists(cls, v):
        return decode_json_list(v)

    @property
    def is_superseded(self) -> bool:
        return self.valid_until is not None


class MemoryInput(BaseModel):
    """Caller-supplied fields for a new memory."""

    model_config = ConfigDict(str_strip_whitespace=True)

    content: str = Field(..., min_length=1)
    summary: Optional[str] = None
    sector: Optional[Sector] = None
    tier: Optional[Tier] = None
    importance: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    tags: List[str] = Field(default_factory=list)
    concepts: List[str] = Field(default_factory=list)
    files: List[str] = Field(default_factory=list)
    valid_from: Optional[datetime] = None


class MemoryUpdate(BaseModel):
    """Partial update for an existing memory; unset fields are left alone."""

    content: Optional[str] = Field(default=None, min_length=1)
    summary: Optional[str] = None
    sector: Optional[Sector] = None
    importance: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    tags: Optional[List[str]] = None
    files: Optional[List[str]] = None


class ListOptions(BaseModel):
    """Filters and ordering for listing memories."""

    project_id: Optional[str] = None
    limit: Optional[int] = Field(default=None, gt=0)
    offset: Optional[int] = Field(default=None, ge=0)
    sector: Optional[Sector] = None
    tier: Optional[Tier] = None
    min_salience: Optional[float] = None
    include_deleted: bool = False
    order_by: Literal["created_at", "salience", "last_accessed"] = "created_at"
    order: Literal["asc", "desc"] = "desc"
