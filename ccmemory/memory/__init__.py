"""Memory lifecycle: records, sectors, decay, relationships and sessions."""

from ccmemory.memory.classifier import classify_sector
from ccmemory.memory.decay import DecayEngine, calculate_decay, estimate_time_to_decay
from ccmemory.memory.relationships import ExtractedBy, MemoryRelationship, RelationshipGraph, RelationshipType
from ccmemory.memory.schema import ListOptions, Memory, MemoryInput, MemoryUpdate, Sector, Tier, UsageType
from ccmemory.memory.sessions import Session, SessionManager
from ccmemory.memory.store import MemoryStore

__all__ = [
    "DecayEngine",
    "ExtractedBy",
    "ListOptions",
    "Memory",
    "MemoryInput",
    "MemoryRelationship",
    "MemoryStore",
    "MemoryUpdate",
    "RelationshipGraph",
    "RelationshipType",
    "Sector",
    "Session",
    "SessionManager",
    "Tier",
    "UsageType",
    "calculate_decay",
    "classify_sector",
    "estimate_time_to_decay",
]
