"""Provably-fair winner selection for giveaways."""

from .engine import DrawEngine, DrawOutcome, RerollEngine
from .selection import (
    commit_snapshot,
    generate_seed,
    hmac_position_seed,
    order_snapshot,
    select_winners,
)
from .verify import VerificationReport, verify_draw

__all__ = [
    "DrawEngine",
    "DrawOutcome",
    "RerollEngine",
    "VerificationReport",
    "commit_snapshot",
    "generate_seed",
    "hmac_position_seed",
    "order_snapshot",
    "select_winners",
    "verify_draw",
]
