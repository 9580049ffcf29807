"""Draw and reroll engines operating on a giveaway's persisted draw record."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..errors import (
    ConcurrencyConflict,
    NoAlternativeCandidates,
    NotFound,
    ValidationError,
)
from ..ledger import EntryLedger
from ..locks import DEFAULT_LOCKS, GiveawayLocks
from ..models import DrawProof, Giveaway, RerollProof, WinnerProof
from ..models.giveaway import CANCELLED, CLOSED
from .selection import (
    PositionSeedFn,
    commit_snapshot,
    generate_seed,
    hmac_position_seed,
    index_for,
    order_snapshot,
    select_winners,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
SeedSource = Callable[[], bytes]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class DrawOutcome:
    """Winners and proofs of a giveaway after a draw or reroll.

    Attributes
    ----------
    giveaway : Giveaway
        The giveaway holding the persisted draw record.
    winners : list[int]
        Winning entry ids ordered by position.
    proofs : list[WinnerProof]
        One proof per position.
    performed : bool
        ``False`` when the call returned an existing result without selecting.
    """

    giveaway: Giveaway
    winners: list[int]
    proofs: list[WinnerProof]
    performed: bool = True

    @classmethod
    def stored(cls, giveaway: Giveaway, performed: bool) -> "DrawOutcome":
        return cls(
            giveaway=giveaway,
            winners=[int(w) for w in giveaway.winners or []],
            proofs=giveaway.proofs,
            performed=performed,
        )


class _LockedEngine:
    def __init__(
        self,
        session: Session,
        *,
        locks: Optional[GiveawayLocks] = None,
        seed_source: SeedSource = generate_seed,
        clock: Clock = _utcnow,
    ) -> None:
        self._session = session
        self._locks = locks or DEFAULT_LOCKS
        self._seed_source = seed_source
        self._clock = clock

    def _load(self, giveaway_id: int, *, for_update: bool = False) -> Giveaway:
        giveaway = Giveaway.get(self._session, giveaway_id, for_update=for_update)
        if giveaway is None:
            raise NotFound(f"Giveaway {giveaway_id} not found")
        return giveaway

    def _persist(self, giveaway_id: int, commit: bool) -> None:
        try:
            if commit:
                self._session.commit()
            else:
                self._session.flush()
        except StaleDataError as exc:
            raise ConcurrencyConflict(
                f"Giveaway {giveaway_id} was modified concurrently"
            ) from exc


class DrawEngine(_LockedEngine):
    """Select winners once per giveaway with a commit-reveal proof.

    The engine commits to the ordered snapshot of eligible entries
    (``input_hash``/``input_size``), then draws a fresh ``draw_seed`` and
    derives each position's seed as HMAC-SHA256(draw_seed, "<id>:<position>").
    """

    def __init__(
        self,
        session: Session,
        *,
        locks: Optional[GiveawayLocks] = None,
        seed_source: SeedSource = generate_seed,
        seed_fn: PositionSeedFn = hmac_position_seed,
        clock: Clock = _utcnow,
    ) -> None:
        super().__init__(session, locks=locks, seed_source=seed_source, clock=clock)
        self._seed_fn = seed_fn

    def draw(self, giveaway_id: int, *, commit: bool = False) -> DrawOutcome:
        """Run the draw, or return the stored result if it already happened.

        Parameters
        ----------
        giveaway_id : int
            Giveaway to draw.
        commit : bool, default: False
            Commit the session while still holding the giveaway lock. When
            ``False`` the result is only flushed and the caller commits.

        Returns
        -------
        DrawOutcome
            Stored winners and proofs. ``performed`` is ``False`` for a
            repeated call.

        Raises
        ------
        NotFound
            If the giveaway does not exist.
        ValidationError
            If the giveaway was cancelled.
        ConcurrencyConflict
            If the lock times out or the row changed underneath the draw.
        """
        giveaway = self._load(giveaway_id)
        if giveaway.is_drawn:
            return DrawOutcome.stored(giveaway, performed=False)

        with self._locks.hold(giveaway_id):
            giveaway = self._load(giveaway_id, for_update=True)
            if giveaway.is_drawn:
                return DrawOutcome.stored(giveaway, performed=False)
            if giveaway.status == CANCELLED:
                raise ValidationError("A cancelled giveaway cannot be drawn")

            snapshot = order_snapshot(EntryLedger(self._session).snapshot(giveaway_id))
            entry_ids = [int(e.id) for e in snapshot]

            # Commit to the entrant set before any randomness exists.
            input_hash, input_size = commit_snapshot(entry_ids)
            draw_seed = self._seed_source()
            now = self._clock()

            picks = select_winners(
                entry_ids,
                draw_seed,
                str(giveaway_id),
                giveaway.max_winners,
                seed_fn=self._seed_fn,
            )
            proofs: list[WinnerProof] = [
                DrawProof(
                    position=position,
                    entry_id=entry_id,
                    seed=seed.hex(),
                    input_hash=input_hash,
                    input_size=input_size,
                    at=now,
                )
                for position, entry_id, seed in picks
            ]

            giveaway.draw_seed = draw_seed.hex()
            giveaway.draw_input_hash = input_hash
            giveaway.draw_input_size = input_size
            giveaway.draw_at = now
            giveaway.set_results([p.entry_id for p in proofs], proofs)
            giveaway.status = CLOSED
            self._persist(giveaway_id, commit)

        logger.info(
            f"Giveaway {giveaway_id} drawn: {len(proofs)} winner(s) from "
            f"{input_size} entries, input hash {input_hash}"
        )
        return DrawOutcome(
            giveaway=giveaway,
            winners=[p.entry_id for p in proofs],
            proofs=proofs,
        )


class RerollEngine(_LockedEngine):
    """Replace one winner with an independently randomised pick.

    The candidate pool excludes every current winner, the rerolled occupant
    included, and gets its own snapshot commitment. The seed is fresh
    randomness, so a reroll is not reproducible from ``draw_seed``.
    """

    def reroll(
        self, giveaway_id: int, position: int, *, commit: bool = False
    ) -> DrawOutcome:
        """Reroll ``position`` and return the updated winners and proofs.

        Raises
        ------
        NotFound
            If the giveaway does not exist.
        ValidationError
            If no draw happened yet or ``position`` has no winner.
        NoAlternativeCandidates
            If every eligible entry already holds a winner slot.
        ConcurrencyConflict
            If the lock times out or the row changed underneath the reroll.
        """
        if isinstance(position, bool) or not isinstance(position, int):
            raise ValidationError("position must be an integer")
        self._load(giveaway_id)

        with self._locks.hold(giveaway_id):
            giveaway = self._load(giveaway_id, for_update=True)
            if not giveaway.is_drawn:
                raise ValidationError("Giveaway has not been drawn yet")
            if not 0 <= position < len(giveaway.winner_proofs or []):
                raise ValidationError(f"Invalid position {position}")

            previous = int(giveaway.winners[position])
            excluded = {int(w) for w in giveaway.winners}
            pool = order_snapshot(
                EntryLedger(self._session).snapshot(giveaway_id, exclude=excluded)
            )
            if not pool:
                raise NoAlternativeCandidates(
                    f"No eligible entries left to reroll position {position}"
                )
            pool_ids = [int(e.id) for e in pool]
            input_hash, input_size = commit_snapshot(pool_ids)
            seed = self._seed_source()
            chosen = pool_ids[index_for(seed, len(pool_ids))]

            proof = RerollProof(
                position=position,
                entry_id=chosen,
                seed=seed.hex(),
                input_hash=input_hash,
                input_size=input_size,
                at=self._clock(),
            )
            giveaway.replace_position(position, proof)
            self._persist(giveaway_id, commit)

        logger.info(
            f"Giveaway {giveaway_id} position {position} rerolled: entry "
            f"{previous} -> {chosen} from {input_size} candidates"
        )
        return DrawOutcome.stored(giveaway, performed=True)


__all__ = ["DrawEngine", "RerollEngine", "DrawOutcome"]
