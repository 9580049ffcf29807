"""Winner proof value objects.

A proof is either produced by the original draw (its seed is derivable from
the giveaway's ``drawSeed``) or by a reroll (its seed is fresh randomness).
Both shapes share the same fields; ``kind`` tells them apart when persisted.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar, Mapping

from ..db.utils import as_utc, dt_iso


@dataclass(frozen=True)
class WinnerProof:
    """Record allowing independent verification of one winner position.

    Attributes
    ----------
    position : int
        0-based winner slot.
    entry_id : int
        Entry selected for the slot.
    seed : str
        Hex encoded per-position secret used to derive the selection index.
    input_hash : str
        SHA-256 commitment over the candidate snapshot used for this slot.
    input_size : int
        Number of candidates in that snapshot.
    at : datetime
        When the slot was filled.
    """

    kind: ClassVar[str] = "draw"

    position: int
    entry_id: int
    seed: str
    input_hash: str
    input_size: int
    at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "position": self.position,
            "entryId": self.entry_id,
            "seed": self.seed,
            "inputHash": self.input_hash,
            "inputSize": self.input_size,
            "at": dt_iso(self.at),
        }

    @property
    def seed_int(self) -> int:
        return int(self.seed, 16)


@dataclass(frozen=True)
class DrawProof(WinnerProof):
    """Slot filled by the original draw; ``seed`` = HMAC(drawSeed, id:position)."""

    kind: ClassVar[str] = "draw"


@dataclass(frozen=True)
class RerollProof(WinnerProof):
    """Slot overridden by a reroll; ``seed`` is independent randomness."""

    kind: ClassVar[str] = "reroll"


_PROOF_TYPES: dict[str, type[WinnerProof]] = {
    DrawProof.kind: DrawProof,
    RerollProof.kind: RerollProof,
}


def proof_from_dict(data: Mapping[str, Any]) -> WinnerProof:
    """Rebuild a proof from its persisted form, dispatching on ``kind``."""
    kind = data.get("kind", DrawProof.kind)
    try:
        proof_cls = _PROOF_TYPES[kind]
    except KeyError as exc:
        raise ValueError(f"Unknown winner proof kind '{kind}'") from exc
    at = data["at"]
    if isinstance(at, str):
        at = datetime.fromisoformat(at)
    return proof_cls(
        position=int(data["position"]),
        entry_id=int(data["entryId"]),
        seed=str(data["seed"]),
        input_hash=str(data["inputHash"]),
        input_size=int(data["inputSize"]),
        at=as_utc(at),
    )


__all__ = ["WinnerProof", "DrawProof", "RerollProof", "proof_from_dict"]
