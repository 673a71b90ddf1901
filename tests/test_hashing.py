from scipy.stats import chisquare

from utils.hashing import hash_fraction, stable_hash64


def test_hash_is_stable_and_seeded():
    assert stable_hash64("user-1:test-1", 42) == stable_hash64("user-1:test-1", 42)
    assert stable_hash64("user-1:test-1", 42) != stable_hash64("user-1:test-1", 43)
    assert 0 <= stable_hash64("x", 1) < 2 ** 64


def test_hash_fraction_range():
    for i in range(1000):
        value = hash_fraction(f"u{i}", 7)
        assert 0.0 <= value < 1.0


def test_short_identifiers_are_uniform():
    # sequential short ids are the worst case for weak string hashes
    bins = 20
    counts = [0] * bins
    for i in range(20000):
        counts[int(hash_fraction(str(i), 20240611) * bins)] += 1

    _, p_value = chisquare(counts)
    assert p_value > 0.001
    assert min(counts) > 850 and max(counts) < 1150
