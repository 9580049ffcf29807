"""Domain errors raised by the giveaway engine.

Each error carries the HTTP status the boundary layer reports for it, so the
mapping lives next to the taxonomy rather than in every route.
"""

from __future__ import annotations


class GiveawayError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500
    code: str = "giveaway_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class NotFound(GiveawayError, LookupError):
    """A giveaway or entry does not exist."""

    status_code = 404
    code = "not_found"


class ValidationError(GiveawayError, ValueError):
    """Caller input is invalid (terms not accepted, bad position, ...)."""

    status_code = 400
    code = "validation_error"


class ClosedError(GiveawayError):
    """The eligibility gate rejects new entries."""

    status_code = 403
    code = "closed"


class LoginRequired(ClosedError):
    """The giveaway only admits authenticated users."""

    code = "login_required"


class DuplicateError(GiveawayError):
    """The identity already holds an entry for this giveaway."""

    status_code = 409
    code = "duplicate"


class NoAlternativeCandidates(GiveawayError):
    """A reroll found no entry outside the current winners."""

    status_code = 422
    code = "no_alternative_candidates"


class ConcurrencyConflict(GiveawayError):
    """Another draw or reroll holds the giveaway, or its row changed underneath us."""

    status_code = 503
    code = "concurrency_conflict"


class VerificationError(GiveawayError):
    """Recomputing a draw from public data did not reproduce the stored proofs."""

    status_code = 422
    code = "verification_failed"


__all__ = [
    "GiveawayError",
    "NotFound",
    "ValidationError",
    "ClosedError",
    "LoginRequired",
    "DuplicateError",
    "NoAlternativeCandidates",
    "ConcurrencyConflict",
    "VerificationError",
]
