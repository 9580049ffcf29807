"""Session-level entry points combining the ledger, gate and draw engines."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .draw import DrawEngine, DrawOutcome, RerollEngine
from .eligibility import apply_status_change, closed_by_timing, configure_timing
from .errors import NotFound, ValidationError
from .identity import Identity
from .ledger import EntryLedger
from .locks import GiveawayLocks
from .models import Giveaway, GiveawayEntry, User
from .models.giveaway import CANCELLED, CLOSED, DRAFT
from .notifier import CountNotifier

_PLAIN_FIELDS = {
    "title": "title",
    "description": "description",
    "mustBeLoggedIn": "must_be_logged_in",
    "requirePhotoUsageConsent": "require_photo_usage_consent",
    "requireProfilePublic": "require_profile_public",
    "deviceFingerprinting": "device_fingerprinting",
    "maxWinners": "max_winners",
}


def _get_giveaway(session: Session, giveaway_id: int) -> Giveaway:
    giveaway = Giveaway.get(session, giveaway_id)
    if giveaway is None:
        raise NotFound(f"Giveaway {giveaway_id} not found")
    return giveaway


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValidationError(f"Invalid datetime '{value}'") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _validate_max_winners(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError("maxWinners must be an integer >= 1")
    return value


def create_giveaway(session: Session, data: Mapping[str, Any]) -> Giveaway:
    """Create a ``draft`` giveaway from camelCase input fields.

    Raises
    ------
    ValidationError
        If the title is missing, ``maxWinners`` is invalid or both ``endAt``
        and ``durationS`` are given.
    """
    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required")
    end_at = _parse_dt(data.get("endAt"))
    duration_s = data.get("durationS")
    if end_at is not None and duration_s:
        raise ValidationError(
            "Invalid configuration: endAt and durationS cannot both be set"
        )
    if duration_s is not None and duration_s < 0:
        raise ValidationError("durationS must not be negative")

    giveaway = Giveaway(
        title=title,
        description=data.get("description"),
        must_be_logged_in=bool(data.get("mustBeLoggedIn", True)),
        require_photo_usage_consent=bool(data.get("requirePhotoUsageConsent", False)),
        require_profile_public=bool(data.get("requireProfilePublic", False)),
        device_fingerprinting=bool(data.get("deviceFingerprinting", False)),
        max_winners=_validate_max_winners(data.get("maxWinners", 1)),
        start_at=_parse_dt(data.get("startAt")),
        end_at=end_at,
        duration_s=int(duration_s) if duration_s is not None else None,
        remaining_s=int(duration_s) if duration_s is not None else None,
        status=DRAFT,
    )
    session.add(giveaway)
    session.flush()
    return giveaway


def update_giveaway(
    session: Session,
    giveaway_id: int,
    data: Mapping[str, Any],
    *,
    now: Optional[datetime] = None,
) -> Giveaway:
    """Apply an operator update, including timing mode and status changes.

    ``endAt`` switches to an absolute window, ``durationS`` to a countdown
    restarted from its full length. A ``status`` change follows the
    countdown rules of :func:`~giveaway_engine.eligibility.apply_status_change`.
    """
    giveaway = _get_giveaway(session, giveaway_id)

    for key, attr in _PLAIN_FIELDS.items():
        if key not in data:
            continue
        value = data[key]
        if key == "maxWinners":
            value = _validate_max_winners(value)
            if giveaway.is_drawn and value < len(giveaway.winners or []):
                raise ValidationError("maxWinners is below the number of drawn winners")
        setattr(giveaway, attr, value)

    end_at = _parse_dt(data["endAt"]) if data.get("endAt") else None
    duration_s = data.get("durationS") or None
    status = data.get("status")
    if end_at is not None or duration_s is not None:
        configure_timing(
            giveaway, end_at=end_at, duration_s=duration_s, status=status, now=now
        )
    elif status is not None:
        apply_status_change(giveaway, status, now)

    session.flush()
    return giveaway


def delete_giveaway(session: Session, giveaway_id: int) -> None:
    """Delete a giveaway together with all of its entries."""
    giveaway = _get_giveaway(session, giveaway_id)
    session.delete(giveaway)
    session.flush()


def join_giveaway(
    session: Session,
    giveaway_id: int,
    identity: Optional[Identity],
    *,
    accepted_terms: bool,
    confirmations: Optional[Mapping[str, Any]] = None,
    device_fingerprint: Optional[str] = None,
    notifier: Optional[CountNotifier] = None,
    now: Optional[datetime] = None,
) -> GiveawayEntry:
    """Admit a participant; thin wrapper around :meth:`EntryLedger.try_join`."""
    ledger = EntryLedger(session, notifier=notifier)
    return ledger.try_join(
        giveaway_id,
        identity,
        accepted_terms,
        confirmations,
        device_fingerprint=device_fingerprint,
        now=now,
    )


def draw_winners(
    session: Session,
    giveaway_id: int,
    *,
    locks: Optional[GiveawayLocks] = None,
    commit: bool = True,
) -> DrawOutcome:
    """Run the one-time draw for ``giveaway_id`` (idempotent).

    The session is committed before the giveaway lock is released, so a
    concurrent caller sees the stored result. Pass ``commit=False`` only when
    the caller holds its own lock around the surrounding transaction.
    """
    return DrawEngine(session, locks=locks).draw(giveaway_id, commit=commit)


def reroll_winner(
    session: Session,
    giveaway_id: int,
    position: int,
    *,
    locks: Optional[GiveawayLocks] = None,
    commit: bool = True,
) -> DrawOutcome:
    """Replace the winner at ``position`` with a fresh independent pick.

    Commits under the giveaway lock, like :func:`draw_winners`.
    """
    return RerollEngine(session, locks=locks).reroll(
        giveaway_id, position, commit=commit
    )


def get_winners_with_details(session: Session, giveaway_id: int) -> dict[str, Any]:
    """Draw record plus one public detail row per winner.

    Detail rows carry the entry id and either the winning user's display
    fields or the anonymous id.
    """
    giveaway = _get_giveaway(session, giveaway_id)
    winner_ids = [int(w) for w in giveaway.winners or []]

    entries: dict[int, GiveawayEntry] = {}
    if winner_ids:
        rows = session.scalars(
            select(GiveawayEntry).where(GiveawayEntry.id.in_(winner_ids))
        ).all()
        entries = {e.id: e for e in rows}
    users = User.get_many(
        session, [e.user_id for e in entries.values() if e.user_id is not None]
    )

    details: list[dict[str, Any]] = []
    for entry_id in winner_ids:
        entry = entries.get(entry_id)
        detail: dict[str, Any] = {
            "entryId": str(entry_id),
            "userId": None,
            "anonId": None,
        }
        if entry is not None:
            detail["anonId"] = entry.anon_id
            if entry.user_id is not None:
                detail["userId"] = str(entry.user_id)
                user = users.get(entry.user_id)
                if user is not None:
                    detail.update(user.public_json())
        details.append(detail)

    return {**giveaway.draw_record_json(), "winnersDetails": details}


def list_user_participations(
    session: Session, user_id: int, *, now: Optional[datetime] = None
) -> list[dict[str, Any]]:
    """Giveaways ``user_id`` entered that are still running, newest entry first.

    Draft, closed and cancelled giveaways and those closed by timing are
    left out.
    """
    stmt = (
        select(GiveawayEntry, Giveaway)
        .join(Giveaway, Giveaway.id == GiveawayEntry.giveaway_id)
        .where(GiveawayEntry.user_id == user_id)
        .order_by(GiveawayEntry.created_at.desc(), GiveawayEntry.id.desc())
    )
    out: list[dict[str, Any]] = []
    for entry, giveaway in session.execute(stmt).all():
        if giveaway.status in (DRAFT, CLOSED, CANCELLED):
            continue
        if closed_by_timing(giveaway, now):
            continue
        out.append(
            {
                "giveaway": giveaway.to_public_json(),
                "entry": {"id": str(entry.id), "createdAt": entry.to_json()["createdAt"]},
            }
        )
    return out


__all__ = [
    "create_giveaway",
    "update_giveaway",
    "delete_giveaway",
    "join_giveaway",
    "draw_winners",
    "reroll_winner",
    "get_winners_with_details",
    "list_user_participations",
]
