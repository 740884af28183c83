"""Salience decay: the pure formula and the periodic batch engine."""

import asyncio
import logging
import math
from datetime import datetime
from typing import Dict, List, Optional

from ccmemory.db import Database
from ccmemory.memory.schema import SALIENCE_FLOOR, Memory, Sector, clamp_salience, utc_now

logger = logging.getLogger(__name__)

# Per-day base rates: emotional memories fade slowest, episodic fastest
SECTOR_DECAY_RATES: Dict[Sector, float] = {
    Sector.EMOTIONAL: 0.003,
    Sector.SEMANTIC: 0.005,
    Sector.REFLECTIVE: 0.008,
    Sector.PROCEDURAL: 0.01,
    Sector.EPISODIC: 0.02,
}

DEFAULT_INTERVAL_SECONDS = 60 * 60
DEFAULT_BATCH_SIZE = 100

ACCESS_PROTECTION_CAP = 0.1
ACCESS_PROTECTION_WEIGHT = 0.02

SECONDS_PER_DAY = 24 * 60 * 60


def get_decay_rate(sector: Sector) -> float:
    return SECTOR_DECAY_RATES[Sector(sector)]


def effective_decay_rate(memory: Memory) -> float:
    """Sector rate slowed by importance."""
    return get_decay_rate(memory.sector) / (memory.importance + 0.1)


def access_protection(access_count: int) -> float:
    """Small salience bonus for frequently accessed memories, capped at 0.1."""
    return min(ACCESS_PROTECTION_CAP, math.log1p(max(0, access_count)) * ACCESS_PROTECTION_WEIGHT)


def calculate_decay(memory: Memory, now: Optional[datetime] = None) -> float:
    """Compute a memory's decayed salience at `now`.

    Args:
        memory: Memory to decay
        now: Evaluation time (defaults to the current UTC time)

    Returns:
        New salience, clamped to [0.05, 1.0]
    """
    now = now or utc_now()
    days_since_access = max(0.0, (now - memory.last_accessed).total_seconds() / SECONDS_PER_DAY)

    decayed = memory.salience * math.exp(-effective_decay_rate(memory) * days_since_access)
    return clamp_salience(decayed + access_protection(memory.access_count))


def estimate_time_to_decay(memory: Memory, target_salience: float) -> float:
    """Days until a memory's salience decays to target_salience.

    Returns:
        0.0 if salience is already at or below the target, math.inf if the
        access-protection bonus alone keeps it at or above the target
    """
    if memory.salience <= target_salience:
        return 0.0

    adjusted_target = target_salience - access_protection(memory.access_count)
    if adjusted_target <= 0:
        return math.inf

    return math.log(memory.salience / adjusted_target) / effective_decay_rate(memory)


class DecayEngine:
    """Recomputes salience for the least recently updated memories in batches.

    `run_once` performs a single tick synchronously. `start` launches the
    periodic loop as an asyncio task, running each tick in a worker thread,
    and `stop` ends it after any in-flight tick completes.
    """

    def __init__(
        self,
        db: Database,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        batch_size: int = DEFAULT_BATCH_SIZE,
        enabled: bool = True,
    ):
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")

        self.db = db
        self.interval = interval
        self.batch_size = batch_size
        self.enabled = enabled
        self._running = False
        self._wakeup = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.last_run: Optional[datetime] = None
        self.last_error: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def get_candidates(self, batch_size: Optional[int] = None) -> List[Memory]:
        """Live memories above the salience floor, oldest update first."""
        rows = self.db.query(
            """
            SELECT * FROM memories
            WHERE salience > ? AND is_deleted = FALSE
            ORDER BY updated_at ASC, id
            LIMIT ?
        """,
            [SALIENCE_FLOOR, batch_size or self.batch_size],
        )
        return [Memory.model_validate(row) for row in rows]

    def apply(self, memories: List[Memory], now: Optional[datetime] = None) -> int:
        """Write decayed salience for every memory in one transaction."""
        if not memories:
            return 0

        now = now or utc_now()
        logger.debug("Applying decay to %d memories", len(memories))

        with self.db.transaction() as conn:
            for memory in memories:
                conn.execute(
                    "UPDATE memories SET salience = ?, updated_at = ? WHERE id = ?",
                    [calculate_decay(memory, now), now, memory.id],
                )

        logger.info("Decay applied to %d memories", len(memories))
        return len(memories)

    def run_once(self, now: Optional[datetime] = None) -> int:
        """Decay one batch. Returns the number of memories updated."""
        memories = self.get_candidates()
        count = self.apply(memories, now)
        self.last_run = now or utc_now()
        return count

    def _tick(self) -> None:
        try:
            self.run_once()
            self.last_error = None
        except Exception as e:
            logger.error("Decay run failed: %s", e)
            self.last_error = str(e)

    async def _main_loop(self) -> None:
        while self._running:
            # DuckDB calls block; keep them off the event loop
            await asyncio.to_thread(self._tick)
            self._wakeup.clear()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    def start(self) -> Optional[asyncio.Task]:
        """Launch the periodic loop on the running event loop.

        The first tick runs immediately. Returns the loop task, or None when
        decay is disabled.
        """
        if not self.enabled:
            logger.info("Decay process disabled")
            return None
        if self.is_running:
            return self._task

        self._running = True
        self._wakeup = asyncio.Event()
        self._task = asyncio.create_task(self._main_loop())
        logger.info("Decay process started (interval=%ss, batch_size=%d)", self.interval, self.batch_size)
        return self._task

    async def stop(self) -> None:
        """Stop the loop and wait for the current tick to finish."""
        self._running = False
        self._wakeup.set()
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        logger.info("Decay process stopped")
