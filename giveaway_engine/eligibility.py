"""Eligibility gate: decides whether a giveaway currently accepts entries.

Two timing modes exist. An *absolute window* giveaway has a fixed ``end_at``.
A *countdown* giveaway has no ``end_at``; it stays open for ``remaining_s``
seconds counted from ``start_at``, which the operator stamps when activating
it. Pausing folds the elapsed time back into ``remaining_s``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from .db.utils import as_utc
from .errors import LoginRequired, ValidationError
from .identity import Identity
from .models.giveaway import (
    ACTIVE,
    CANCELLED,
    PAUSED,
    STATUSES,
    TERMINAL_STATUSES,
    Giveaway,
)


@dataclass(frozen=True)
class JoinRequirements:
    """Consent flags the client must collect before submitting an entry."""

    must_be_logged_in: bool
    require_photo_usage_consent: bool
    require_profile_public: bool


def _now(now: Optional[datetime]) -> datetime:
    return as_utc(now) if now is not None else datetime.now(timezone.utc)


def _positive(value: Optional[float]) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
        and value > 0
    )


def is_open(giveaway: Giveaway, now: Optional[datetime] = None) -> bool:
    """Return ``True`` when ``giveaway`` accepts new entries at ``now``.

    Rules, in order:

    1. ``closed``/``cancelled`` giveaways are closed.
    2. Only ``active`` giveaways are ever open; ``draft`` and ``paused`` are not.
    3. With ``end_at`` set, open iff ``now < end_at``.
    4. Otherwise open iff ``remaining_s > 0``, ``start_at`` is set and
       ``now < start_at + remaining_s``.

    The giveaway is never mutated.
    """
    current = _now(now)
    if giveaway.status in TERMINAL_STATUSES:
        return False
    if giveaway.status != ACTIVE:
        return False

    end_at = as_utc(giveaway.end_at)
    if end_at is not None:
        return current < end_at

    remaining = giveaway.remaining_s
    start_at = as_utc(giveaway.start_at)
    if not _positive(remaining) or start_at is None:
        return False
    deadline = start_at + timedelta(seconds=remaining)
    return current < deadline


def seconds_remaining(
    giveaway: Giveaway, now: Optional[datetime] = None
) -> Optional[int]:
    """Whole seconds left before the giveaway closes by timing.

    Returns ``None`` when no timing is configured. Paused and draft countdowns
    report their frozen ``remaining_s``.
    """
    current = _now(now)
    end_at = as_utc(giveaway.end_at)
    if end_at is not None:
        return max(0, int((end_at - current).total_seconds()))
    if giveaway.remaining_s is None:
        return None
    start_at = as_utc(giveaway.start_at)
    if giveaway.status == ACTIVE and start_at is not None:
        elapsed = max(0, math.floor((current - start_at).total_seconds()))
        return max(0, int(giveaway.remaining_s) - elapsed)
    return max(0, int(giveaway.remaining_s))


def closed_by_timing(giveaway: Giveaway, now: Optional[datetime] = None) -> bool:
    """Whether the timing configuration alone has run out.

    Unlike :func:`is_open` this ignores status, so a paused countdown with
    time left is not considered closed.
    """
    current = _now(now)
    end_at = as_utc(giveaway.end_at)
    if end_at is not None:
        return current >= end_at
    if not _positive(giveaway.remaining_s):
        return True
    start_at = as_utc(giveaway.start_at)
    if giveaway.status == ACTIVE and start_at is not None:
        return start_at + timedelta(seconds=giveaway.remaining_s) <= current
    return False


def check_join_requirements(
    giveaway: Giveaway, identity: Optional[Identity]
) -> JoinRequirements:
    """Validate who is joining against the giveaway's requirement flags.

    Consent flags are only reported back; third-party consent state is not
    verified here.

    Raises
    ------
    ValidationError
        If no identity at all was supplied.
    LoginRequired
        If the giveaway requires login and ``identity`` is anonymous.
    """
    if identity is None:
        raise ValidationError("An anonymous id or a signed-in user is required")
    if giveaway.must_be_logged_in and not identity.is_authenticated:
        raise LoginRequired("Authentication required")
    return JoinRequirements(
        must_be_logged_in=bool(giveaway.must_be_logged_in),
        require_photo_usage_consent=bool(giveaway.require_photo_usage_consent),
        require_profile_public=bool(giveaway.require_profile_public),
    )


def _pause(giveaway: Giveaway, current: datetime) -> None:
    remaining = seconds_remaining(giveaway, current)
    giveaway.status = PAUSED
    giveaway.remaining_s = remaining
    giveaway.start_at = None


def apply_status_change(
    giveaway: Giveaway, status: str, now: Optional[datetime] = None
) -> None:
    """Move ``giveaway`` to ``status``, keeping countdown timing consistent.

    For countdown giveaways, activating stamps ``start_at = now`` and keeps
    the remaining time (initialised from ``duration_s``); pausing an active
    countdown subtracts the elapsed seconds from ``remaining_s`` and clears
    ``start_at``.

    Raises
    ------
    ValidationError
        For unknown statuses, leaving ``cancelled``, or reopening a giveaway
        that has already been drawn.
    """
    if status not in STATUSES:
        raise ValidationError(f"Unknown giveaway status '{status}'")
    if giveaway.status == CANCELLED and status != CANCELLED:
        raise ValidationError("A cancelled giveaway cannot change status")
    if giveaway.is_drawn and status not in TERMINAL_STATUSES:
        raise ValidationError("A drawn giveaway cannot be reopened")

    current = _now(now)
    countdown = giveaway.end_at is None and giveaway.duration_s is not None
    if not countdown:
        giveaway.status = status
        return

    if status == ACTIVE:
        if giveaway.status == ACTIVE and giveaway.start_at is not None:
            return
        remaining = giveaway.remaining_s
        giveaway.remaining_s = remaining if remaining is not None else giveaway.duration_s
        giveaway.start_at = current
        giveaway.status = ACTIVE
    elif status == PAUSED:
        _pause(giveaway, current)
    else:
        if giveaway.status == ACTIVE and giveaway.start_at is not None:
            _pause(giveaway, current)
        giveaway.status = status


def configure_timing(
    giveaway: Giveaway,
    *,
    end_at: Optional[datetime] = None,
    duration_s: Optional[float] = None,
    status: Optional[str] = None,
    now: Optional[datetime] = None,
) -> None:
    """Switch ``giveaway`` to absolute-window or countdown mode.

    Supplying ``end_at`` clears any countdown fields. Supplying ``duration_s``
    clears ``end_at`` and restarts the countdown from the full duration. An
    optional ``status`` is applied afterwards via :func:`apply_status_change`.

    Raises
    ------
    ValidationError
        If both ``end_at`` and ``duration_s`` are supplied, or the duration is
        negative.
    """
    if end_at is not None and duration_s is not None:
        raise ValidationError(
            "Invalid configuration: endAt and durationS cannot both be set"
        )
    current = _now(now)
    if end_at is not None:
        giveaway.end_at = as_utc(end_at)
        giveaway.duration_s = None
        giveaway.remaining_s = None
        giveaway.start_at = None
        if giveaway.status == ACTIVE:
            giveaway.start_at = current
    elif duration_s is not None:
        if duration_s < 0:
            raise ValidationError("durationS must not be negative")
        seconds = int(math.floor(duration_s))
        giveaway.end_at = None
        giveaway.duration_s = seconds
        giveaway.remaining_s = seconds
        giveaway.start_at = current if giveaway.status == ACTIVE else None

    if status is not None:
        apply_status_change(giveaway, status, current)


__all__ = [
    "JoinRequirements",
    "is_open",
    "seconds_remaining",
    "closed_by_timing",
    "check_join_requirements",
    "apply_status_change",
    "configure_timing",
]
