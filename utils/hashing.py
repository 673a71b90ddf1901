import hashlib

HASH_BUCKETS = 10000


def stable_hash64(value: str, seed: int) -> int:
    """Seeded 64-bit BLAKE2b hash of ``value``.

    Identical across processes, platforms and interpreter runs, unlike the
    builtin ``hash``.
    """
    key = (seed & 0xFFFFFFFFFFFFFFFF).to_bytes(8, "little")
    digest = hashlib.blake2b(value.encode("utf-8"), digest_size=8, key=key).digest()
    return int.from_bytes(digest, "little")


def hash_fraction(value: str, seed: int) -> float:
    """Map ``value`` into [0, 1) in steps of 1/HASH_BUCKETS."""
    return (stable_hash64(value, seed) % HASH_BUCKETS) / HASH_BUCKETS
