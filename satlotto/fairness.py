"""
Fairness primitives for the commit-reveal draw.

Everything here is pure and deterministic so that an outside auditor holding
the revealed seed, the resolving block hash and the committed ticket list can
reproduce the winner with nothing but this module.

Construction
------------
- ``content_hash`` is SHA-256 and is shared by leaves, inner nodes, the seed
  commitment and the mixed shuffle seed.
- ``merkle_root`` hashes UTF-8 ticket ids as leaves, pairs nodes left to right,
  duplicates the last node of an odd level and returns lowercase hex. An empty
  list yields ``ZERO_ROOT``.
- ``seeded_shuffle`` is a Fisher-Yates pass where ``j = seed[i % len] % (i+1)``.
  Seed bytes are reused cyclically once the list is longer than the seed.
- ``mix_seed`` XORs the secret seed with the block hash (block hash reused
  cyclically) and hashes the result.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import List, Sequence, Tuple, TypeVar, Union

T = TypeVar("T")

DIGEST_SIZE = 32
ZERO_ROOT = "00" * DIGEST_SIZE
DEFAULT_PRIZE_SHARE_PERCENT = 99


def content_hash(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def _leaf_bytes(leaf: Union[str, bytes]) -> bytes:
    if isinstance(leaf, (bytes, bytearray)):
        return bytes(leaf)
    return str(leaf).encode("utf-8")


def merkle_root(leaves: Sequence[Union[str, bytes]]) -> str:
    if len(leaves) == 0:
        return ZERO_ROOT
    level = [content_hash(_leaf_bytes(leaf)) for leaf in leaves]
    while len(level) > 1:
        parents = []
        for i in range(0, len(level), 2):
            left = level[i]
            right = level[i + 1] if i + 1 < len(level) else left
            parents.append(content_hash(left + right))
        level = parents
    return level[0].hex()


def seeded_shuffle(items: Sequence[T], seed: bytes) -> List[T]:
    """Return a permutation of ``items`` fully determined by ``seed``."""
    if len(seed) == 0:
        raise ValueError("shuffle seed must not be empty")
    arr = list(items)
    for i in range(len(arr) - 1, 0, -1):
        j = seed[i % len(seed)] % (i + 1)
        arr[i], arr[j] = arr[j], arr[i]
    return arr


def mix_seed(seed: bytes, block_hash: bytes) -> bytes:
    if len(block_hash) == 0:
        raise ValueError("block hash must not be empty")
    combined = bytes(b ^ block_hash[i % len(block_hash)] for i, b in enumerate(seed))
    return content_hash(combined)


def derive_winner(seed: bytes, block_hash: bytes, ticket_ids: Sequence[str]) -> str:
    if len(ticket_ids) == 0:
        raise ValueError("cannot draw a winner from an empty ticket list")
    return seeded_shuffle(ticket_ids, mix_seed(seed, block_hash))[0]


def split_pool(pool: int, prize_share_percent: int = DEFAULT_PRIZE_SHARE_PERCENT) -> Tuple[int, int]:
    # Integer floor of pool * share / 100; a float product drifts for large pools.
    if pool < 0:
        raise ValueError("pool must not be negative")
    if not 0 <= prize_share_percent <= 100:
        raise ValueError("prize share must be between 0 and 100 percent")
    prize = (pool * prize_share_percent) // 100
    return prize, pool - prize


def verify_seed_commitment(seed: bytes, seed_hash: str) -> bool:
    return hmac.compare_digest(content_hash(seed).hex(), seed_hash.lower())
