"""Keyword-signal classification of memory content into sectors."""

import re
from typing import Dict, List, Pattern, Tuple

from ccmemory.memory.schema import Sector


def _compile(*patterns: str) -> List[Pattern[str]]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


SECTOR_PATTERNS: Tuple[Tuple[Sector, List[Pattern[str]]], ...] = (
    (
        Sector.EMOTIONAL,
        _compile(
            r"\b(frustrated|annoyed|happy|satisfied|confused|angry|upset)\b",
            r"\b(love|hate|prefer|dislike)\b",
            r"\b(pain point|struggle|enjoy|frustrating)\b",
            r"\b(feel|feeling|feels)\b",
        ),
    ),
    (
        Sector.REFLECTIVE,
        _compile(
            r"\b(learned|realized|noticed|insight|pattern)\b",
            r"\b(better to|should have|next time)\b",
            r"\b(observation|conclusion|takeaway)\b",
            r"\b(this codebase|this project|in general)\b",
        ),
    ),
    (
        Sector.EPISODIC,
        _compile(
            r"\b(asked|said|mentioned|discussed|talked about)\b",
            r"\b(session|conversation|earlier|just now)\b",
            r"\buser (wanted|requested|asked for)\b",
        ),
    ),
    (
        Sector.PROCEDURAL,
        _compile(
            r"\b(how to|steps to|process for|workflow|procedure)\b",
            r"\b(first|then|next|finally|step \d+)\b",
            r"\b(run the|execute the|to build|to deploy|to test)\b",
            r"\b(command:|script:|recipe)\b",
        ),
    ),
    (
        Sector.SEMANTIC,
        _compile(
            r"\b(is located|are located|was located|were located)\b",
            r"\b(located (at|in)|defined in|implemented in)\b",
            r"\b(file|function|class|module|component|endpoint)\b",
            r"\b(fact|information|knowledge)\b",
            r"\b(has|have|contains|returns)\b",
        ),
    ),
)

# Tie-break order: earlier wins when match counts are equal
SECTOR_PRIORITY: Tuple[Sector, ...] = (
    Sector.EMOTIONAL,
    Sector.REFLECTIVE,
    Sector.EPISODIC,
    Sector.PROCEDURAL,
    Sector.SEMANTIC,
)

DEFAULT_SECTOR = Sector.SEMANTIC


def score_sectors(content: str) -> Dict[Sector, int]:
    """Count pattern matches per sector."""
    scores = {sector: 0 for sector in SECTOR_PRIORITY}
    for sector, patterns in SECTOR_PATTERNS:
        for pattern in patterns:
            scores[sector] += sum(1 for _ in pattern.finditer(content))
    return scores


def classify_sector(content: str) -> Sector:
    """Classify content into the sector with the most keyword signals.

    Ties go to the sector listed first in SECTOR_PRIORITY; content with no
    signals at all is semantic.

    Args:
        content: Raw memory text

    Returns:
        The winning sector
    """
    if not content:
        return DEFAULT_SECTOR

    scores = score_sectors(content)

    best = DEFAULT_SECTOR
    best_score = 0
    for sector in SECTOR_PRIORITY:
        if scores[sector] > best_score:
            best = sector
            best_score = scores[sector]
    return best
