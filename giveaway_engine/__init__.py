"""Giveaway engine: entry admission, eligibility gating and provably-fair draws."""

from .errors import (
    ClosedError,
    ConcurrencyConflict,
    DuplicateError,
    GiveawayError,
    LoginRequired,
    NoAlternativeCandidates,
    NotFound,
    ValidationError,
)
from .identity import Identity

__all__ = [
    "ClosedError",
    "ConcurrencyConflict",
    "DuplicateError",
    "GiveawayError",
    "Identity",
    "LoginRequired",
    "NoAlternativeCandidates",
    "NotFound",
    "ValidationError",
]
