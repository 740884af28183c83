"""Tests for content fingerprints."""

from ccmemory.memory.dedup import (
    EMPTY_SIMHASH,
    compute_content_hash,
    compute_simhash,
    hamming_distance,
    is_near_duplicate,
    tokenize,
)


class TestContentHash:
    def test_stable_sha256(self):
        digest = compute_content_hash("hello")
        assert digest == compute_content_hash("hello")
        assert len(digest) == 64

    def test_sensitive_to_any_change(self):
        assert compute_content_hash("hello") != compute_content_hash("hello ")


class TestSimhash:
    """Tests for simhash fingerprints."""

    def test_format(self):
        value = compute_simhash("The API returns JSON responses")
        assert len(value) == 16
        int(value, 16)

    def test_ignores_case_and_punctuation(self):
        assert compute_simhash("The API returns JSON!") == compute_simhash("the api returns json")

    def test_ignores_word_order(self):
        assert compute_simhash("alpha beta gamma") == compute_simhash("gamma alpha beta")

    def test_short_tokens_only_is_empty(self):
        """Test that text with no tokens longer than two chars hashes to zero."""
        assert compute_simhash("a b to") == EMPTY_SIMHASH
        assert compute_simhash("") == EMPTY_SIMHASH

    def test_different_texts_differ(self):
        a = compute_simhash("database migrations run on deploy")
        b = compute_simhash("frontend uses react with typescript strict mode")
        assert hamming_distance(a, b) > 3


class TestHamming:
    def test_identical(self):
        assert hamming_distance("00ff00ff00ff00ff", "00ff00ff00ff00ff") == 0

    def test_counts_bits(self):
        assert hamming_distance(EMPTY_SIMHASH, "f000000000000000") == 4
        assert hamming_distance(EMPTY_SIMHASH, "ffffffffffffffff") == 64

    def test_near_duplicate_threshold(self):
        assert is_near_duplicate(EMPTY_SIMHASH, "7000000000000000", threshold=3)
        assert not is_near_duplicate(EMPTY_SIMHASH, "f000000000000000", threshold=3)


def test_tokenize_strips_punctuation_and_short_words():
    assert tokenize("Hello, World! It is ok.") == ["hello", "world"]
