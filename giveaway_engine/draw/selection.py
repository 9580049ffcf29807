"""Deterministic building blocks of the provably-fair draw.

Nothing in this module touches the database, so a third party holding the
published draw record can recompute every step.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import secrets
from datetime import datetime
from typing import Callable, Iterable, Protocol, Sequence

from ..db.utils import as_utc

SEED_BYTES = 32

PositionSeedFn = Callable[[bytes, str, int], bytes]
"""``(draw_seed, giveaway_id, position) -> per-position seed``."""


class SnapshotEntry(Protocol):
    id: int
    created_at: datetime


def order_snapshot(entries: Iterable[SnapshotEntry]) -> list[SnapshotEntry]:
    """Sort entries into the single total order used by draws and rerolls.

    ``created_at`` ascending, ties broken by entry id ascending.
    """
    return sorted(entries, key=lambda e: (as_utc(e.created_at), int(e.id)))


def encode_snapshot(entry_ids: Sequence[int]) -> bytes:
    """Canonical byte form of an ordered id list that the commitment hashes.

    The ids are joined as a compact JSON array of decimal strings so that
    adjacent ids cannot run together (``[1, 23]`` vs ``[12, 3]``).
    """
    return json.dumps([str(i) for i in entry_ids], separators=(",", ":")).encode(
        "utf-8"
    )


def commit_snapshot(entry_ids: Sequence[int]) -> tuple[str, int]:
    """Return ``(input_hash, input_size)`` committing to ``entry_ids``."""
    return hashlib.sha256(encode_snapshot(entry_ids)).hexdigest(), len(entry_ids)


def generate_seed() -> bytes:
    """Fresh 256-bit secret from the OS CSPRNG."""
    return secrets.token_bytes(SEED_BYTES)


def hmac_position_seed(draw_seed: bytes, giveaway_id: str, position: int) -> bytes:
    """HMAC-SHA256 keyed by the draw seed over ``"<giveaway_id>:<position>"``."""
    message = f"{giveaway_id}:{position}".encode("utf-8")
    return hmac.new(draw_seed, message, hashlib.sha256).digest()


def index_for(seed: bytes, pool_size: int) -> int:
    """Map a seed onto ``range(pool_size)`` by big-endian integer modulo."""
    if pool_size <= 0:
        raise ValueError("pool_size must be positive")
    return int.from_bytes(seed, "big") % pool_size


def select_winners(
    entry_ids: Sequence[int],
    draw_seed: bytes,
    giveaway_id: str,
    count: int,
    *,
    seed_fn: PositionSeedFn = hmac_position_seed,
) -> list[tuple[int, int, bytes]]:
    """Pick up to ``count`` distinct winners by sequential elimination.

    Position ``p`` draws from whatever remains after positions ``0..p-1``
    removed their picks, so positions cannot be computed independently.

    Parameters
    ----------
    entry_ids : Sequence[int]
        Snapshot ids in draw order.
    draw_seed : bytes
        Secret revealed with the draw.
    giveaway_id : str
        Giveaway id as it appears in the HMAC message.
    count : int
        Maximum number of winners; capped at ``len(entry_ids)``.
    seed_fn : PositionSeedFn, default: hmac_position_seed
        Per-position seed derivation. Replaceable for unit tests.

    Returns
    -------
    list[tuple[int, int, bytes]]
        ``(position, entry_id, position_seed)`` per filled slot.
    """
    remaining = list(entry_ids)
    picks: list[tuple[int, int, bytes]] = []
    for position in range(min(max(count, 0), len(remaining))):
        seed = seed_fn(draw_seed, giveaway_id, position)
        chosen = remaining.pop(index_for(seed, len(remaining)))
        picks.append((position, chosen, seed))
    return picks


__all__ = [
    "SEED_BYTES",
    "PositionSeedFn",
    "order_snapshot",
    "encode_snapshot",
    "commit_snapshot",
    "generate_seed",
    "hmac_position_seed",
    "index_for",
    "select_winners",
]
