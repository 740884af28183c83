"""Content fingerprints for exact and near-duplicate detection."""

import hashlib
import re
from typing import List

SIMHASH_BITS = 64
EMPTY_SIMHASH = "0" * 16

_FNV_OFFSET = 14695981039346656037
_FNV_PRIME = 1099511628211
_MASK_64 = (1 << 64) - 1

_NON_WORD = re.compile(r"[^\w\s]")


def compute_content_hash(text: str) -> str:
    """SHA-256 hex digest of the content, used for exact-duplicate suppression."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _fnv1a64(token: str) -> int:
    h = _FNV_OFFSET
    for ch in token:
        h ^= ord(ch)
        h = (h * _FNV_PRIME) & _MASK_64
    return h


def tokenize(text: str) -> List[str]:
    cleaned = _NON_WORD.sub("", text.lower())
    return [t for t in cleaned.split() if len(t) > 2]


def compute_simhash(text: str) -> str:
    """64-bit simhash of the content's tokens as 16 hex characters.

    Texts sharing most of their tokens land a few bits apart regardless of
    punctuation, case or word order.
    """
    tokens = tokenize(text)
    if not tokens:
        return EMPTY_SIMHASH

    weights = [0] * SIMHASH_BITS
    for token in tokens:
        h = _fnv1a64(token)
        for i in range(SIMHASH_BITS):
            if (h >> i) & 1:
                weights[i] += 1
            else:
                weights[i] -= 1

    result = 0
    for i, weight in enumerate(weights):
        if weight > 0:
            result |= 1 << i

    return f"{result:016x}"


def hamming_distance(hash1: str, hash2: str) -> int:
    return bin(int(hash1, 16) ^ int(hash2, 16)).count("1")


def is_near_duplicate(hash1: str, hash2: str, threshold: int = 3) -> bool:
    return hamming_distance(hash1, hash2) <= threshold
