"""Independent verification of a published draw record."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence

from ..errors import VerificationError
from ..models.proofs import DrawProof, RerollProof, WinnerProof
from .selection import (
    PositionSeedFn,
    commit_snapshot,
    hmac_position_seed,
    index_for,
    select_winners,
)


@dataclass
class VerificationReport:
    """Outcome of :func:`verify_draw`.

    Attributes
    ----------
    input_hash : str
        Recomputed commitment over the supplied entrant list.
    verified_positions : list[int]
        Positions whose proof was reproduced exactly.
    skipped_positions : list[int]
        Reroll positions that could not be checked (no pool supplied).
    """

    input_hash: str
    verified_positions: list[int] = field(default_factory=list)
    skipped_positions: list[int] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.skipped_positions


def verify_draw(
    giveaway_id: int,
    draw_seed: str,
    ordered_entry_ids: Sequence[int],
    proofs: Sequence[WinnerProof],
    *,
    input_hash: Optional[str] = None,
    input_size: Optional[int] = None,
    reroll_pools: Optional[dict[int, Sequence[int]]] = None,
    seed_fn: PositionSeedFn = hmac_position_seed,
) -> VerificationReport:
    """Recompute a draw from public data and compare it with the stored proofs.

    Parameters
    ----------
    giveaway_id : int
        Giveaway the draw belongs to.
    draw_seed : str
        Hex encoded seed revealed by the draw.
    ordered_entry_ids : Sequence[int]
        Entrant ids in snapshot order.
    proofs : Sequence[WinnerProof]
        Stored proofs, one per position.
    input_hash, input_size : Optional
        Published commitment; checked against ``ordered_entry_ids`` when given.
    reroll_pools : Optional[dict[int, Sequence[int]]]
        Restricted candidate pools for rerolled positions, keyed by position.
        Rerolled positions without a pool are reported as skipped.
    seed_fn : PositionSeedFn, default: hmac_position_seed
        Per-position seed derivation used by the draw.

    Raises
    ------
    VerificationError
        On any mismatch between the recomputation and the proofs.
    """
    computed_hash, computed_size = commit_snapshot(list(ordered_entry_ids))
    if input_hash is not None and input_hash != computed_hash:
        raise VerificationError(
            f"Input hash mismatch: published={input_hash} recomputed={computed_hash}"
        )
    if input_size is not None and input_size != computed_size:
        raise VerificationError(
            f"Input size mismatch: published={input_size} recomputed={computed_size}"
        )

    try:
        seed_bytes = bytes.fromhex(draw_seed)
    except ValueError as exc:
        raise VerificationError("draw seed is not valid hex") from exc

    # Replay the whole sequential elimination; rerolls only change their own slot.
    expected = select_winners(
        list(ordered_entry_ids),
        seed_bytes,
        str(giveaway_id),
        len(proofs),
        seed_fn=seed_fn,
    )
    if len(expected) != len(proofs):
        raise VerificationError(
            f"Winner count mismatch: stored={len(proofs)} recomputed={len(expected)}"
        )

    report = VerificationReport(input_hash=computed_hash)
    pools = reroll_pools or {}
    for (position, entry_id, seed), proof in zip(expected, proofs):
        if proof.position != position:
            raise VerificationError(
                f"Proof order mismatch: expected position {position}, got {proof.position}"
            )
        if isinstance(proof, RerollProof):
            pool = pools.get(position)
            if pool is None:
                report.skipped_positions.append(position)
                continue
            _verify_reroll(proof, pool)
            report.verified_positions.append(position)
            continue
        if isinstance(proof, DrawProof) and proof.input_hash != computed_hash:
            raise VerificationError(f"Position {position} commits to a different snapshot")
        if proof.seed != seed.hex():
            raise VerificationError(f"Seed mismatch at position {position}")
        if proof.entry_id != entry_id:
            raise VerificationError(
                f"Winner mismatch at position {position}: "
                f"stored={proof.entry_id} recomputed={entry_id}"
            )
        report.verified_positions.append(position)
    return report


def _verify_reroll(proof: WinnerProof, pool: Sequence[int]) -> None:
    pool_hash, pool_size = commit_snapshot(list(pool))
    if pool_hash != proof.input_hash or pool_size != proof.input_size:
        raise VerificationError(
            f"Reroll pool for position {proof.position} does not match its commitment"
        )
    chosen = pool[index_for(bytes.fromhex(proof.seed), len(pool))]
    if chosen != proof.entry_id:
        raise VerificationError(
            f"Reroll winner mismatch at position {proof.position}: "
            f"stored={proof.entry_id} recomputed={chosen}"
        )


__all__ = ["VerificationReport", "verify_draw"]
