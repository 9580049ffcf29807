"""Entry ledger: append-only participation records with per-identity uniqueness."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional

from sqlalchemy import event, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .eligibility import check_join_requirements, is_open
from .errors import ClosedError, DuplicateError, NotFound, ValidationError
from .identity import Identity
from .models import Giveaway, GiveawayEntry
from .notifier import CountNotifier

logger = logging.getLogger(__name__)

_PENDING_COUNTS = "giveaway_engine.pending_counts"


def _publish_pending_counts(session: Session) -> None:
    pending = session.info.pop(_PENDING_COUNTS, None) or {}
    for (notifier, giveaway_id), count in pending.items():
        notifier.publish_count(giveaway_id, count)


def _drop_pending_counts(session: Session) -> None:
    session.info.pop(_PENDING_COUNTS, None)


class EntryLedger:
    """Create and query :class:`GiveawayEntry` rows for one session.

    The ledger never commits. Count notifications queued by :meth:`try_join`
    and :meth:`disqualify` are published once the surrounding transaction
    commits and dropped if it rolls back.
    """

    def __init__(
        self, session: Session, *, notifier: Optional[CountNotifier] = None
    ) -> None:
        self._session = session
        self._notifier = notifier

    def try_join(
        self,
        giveaway_id: int,
        identity: Optional[Identity],
        accepted_terms: bool,
        confirmations: Optional[Mapping[str, Any]] = None,
        *,
        device_fingerprint: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> GiveawayEntry:
        """Admit ``identity`` to the giveaway.

        Parameters
        ----------
        giveaway_id : int
            Giveaway to join.
        identity : Optional[Identity]
            Who is joining. ``None`` is only useful to get a validation error.
        accepted_terms : bool
            Whether the participant accepted the terms.
        confirmations : Optional[Mapping[str, Any]], default: None
            Photo/profile consents as declared by the participant. Stored on
            the entry so later policy changes cannot alter them.
        device_fingerprint : Optional[str], default: None
            Opaque client fingerprint, kept only for giveaways that ask for it.
        now : Optional[datetime], default: None
            Evaluation time for the eligibility gate.

        Returns
        -------
        GiveawayEntry
            The flushed entry with its ``id`` populated.

        Raises
        ------
        ValidationError
            If terms were not accepted or no identity was supplied.
        NotFound
            If the giveaway does not exist.
        ClosedError
            If the gate rejects entries (``LoginRequired`` for anonymous
            joins of login-only giveaways).
        DuplicateError
            If the identity already has an entry. A concurrent insert that
            wins the race also surfaces here via the unique constraint; the
            session must then be rolled back by the caller.
        """
        if not accepted_terms:
            raise ValidationError("Terms not accepted")

        giveaway = Giveaway.get(self._session, giveaway_id)
        if giveaway is None:
            raise NotFound(f"Giveaway {giveaway_id} not found")
        if not is_open(giveaway, now):
            raise ClosedError("Giveaway is closed")
        check_join_requirements(giveaway, identity)
        assert identity is not None

        if self.find(giveaway_id, identity) is not None:
            raise DuplicateError("Already registered")

        entry = GiveawayEntry(
            giveaway_id=giveaway_id,
            identity=identity,
            final_confirmations=dict(confirmations or {}),
            device_fingerprint=(
                device_fingerprint if giveaway.device_fingerprinting else None
            ),
            created_at=now,
        )
        self._session.add(entry)
        try:
            self._session.flush()
        except IntegrityError as exc:
            logger.info(
                f"Concurrent duplicate entry for giveaway {giveaway_id} rejected by constraint"
            )
            raise DuplicateError("Already registered") from exc

        logger.debug(f"Entry {entry.id} created for giveaway {giveaway_id}")
        self._queue_count(giveaway_id)
        return entry

    def find(self, giveaway_id: int, identity: Identity) -> Optional[GiveawayEntry]:
        stmt = select(GiveawayEntry).where(GiveawayEntry.giveaway_id == giveaway_id)
        if identity.is_authenticated:
            stmt = stmt.where(GiveawayEntry.user_id == identity.user_id)
        else:
            stmt = stmt.where(GiveawayEntry.anon_id == identity.anon_id)
        return self._session.scalar(stmt)

    def is_registered(self, giveaway_id: int, identity: Optional[Identity]) -> bool:
        """Whether ``identity`` holds an entry (disqualified entries included)."""
        if identity is None:
            return False
        return self.find(giveaway_id, identity) is not None

    def count(self, giveaway_id: int) -> int:
        """Number of non-disqualified entries."""
        stmt = (
            select(func.count())
            .select_from(GiveawayEntry)
            .where(
                GiveawayEntry.giveaway_id == giveaway_id,
                GiveawayEntry.disqualified.is_(False),
            )
        )
        return int(self._session.scalar(stmt) or 0)

    def list_entries(self, giveaway_id: int) -> list[GiveawayEntry]:
        """All entries, newest first."""
        stmt = (
            select(GiveawayEntry)
            .where(GiveawayEntry.giveaway_id == giveaway_id)
            .order_by(GiveawayEntry.created_at.desc(), GiveawayEntry.id.desc())
        )
        return list(self._session.scalars(stmt).all())

    def snapshot(
        self, giveaway_id: int, *, exclude: Iterable[int] = ()
    ) -> list[GiveawayEntry]:
        """Non-disqualified entries in draw order: ``created_at`` then ``id``."""
        stmt = (
            select(GiveawayEntry)
            .where(
                GiveawayEntry.giveaway_id == giveaway_id,
                GiveawayEntry.disqualified.is_(False),
            )
            .order_by(GiveawayEntry.created_at.asc(), GiveawayEntry.id.asc())
        )
        excluded = set(exclude)
        if excluded:
            stmt = stmt.where(GiveawayEntry.id.not_in(excluded))
        return list(self._session.scalars(stmt).all())

    def disqualify(self, entry_id: int) -> GiveawayEntry:
        """Exclude an entry from future draws and rerolls."""
        entry = self._session.get(GiveawayEntry, entry_id)
        if entry is None:
            raise NotFound(f"Entry {entry_id} not found")
        if not entry.disqualified:
            entry.disqualified = True
            self._session.flush()
            logger.info(f"Entry {entry_id} of giveaway {entry.giveaway_id} disqualified")
            self._queue_count(entry.giveaway_id)
        return entry

    def _queue_count(self, giveaway_id: int) -> None:
        if self._notifier is None:
            return
        pending = self._session.info.setdefault(_PENDING_COUNTS, {})
        pending[(self._notifier, giveaway_id)] = self.count(giveaway_id)
        if not event.contains(self._session, "after_commit", _publish_pending_counts):
            event.listen(self._session, "after_commit", _publish_pending_counts)
            event.listen(self._session, "after_rollback", _drop_pending_counts)


__all__ = ["EntryLedger"]
