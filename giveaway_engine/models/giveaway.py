"""Giveaway aggregate: configuration, lifecycle status and the draw record."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional, Sequence

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from ..db.utils import dt_iso
from .proofs import WinnerProof, proof_from_dict
from .base import Base, ID_TYPE

if TYPE_CHECKING:
    from .entry import GiveawayEntry

DRAFT = "draft"
ACTIVE = "active"
PAUSED = "paused"
CLOSED = "closed"
CANCELLED = "cancelled"
STATUSES = (DRAFT, ACTIVE, PAUSED, CLOSED, CANCELLED)
TERMINAL_STATUSES = (CLOSED, CANCELLED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Giveaway(Base):
    """A giveaway with its entry requirements, timing and draw results.

    Timing is either an absolute window (``start_at``/``end_at``) or a
    countdown (``start_at`` + ``remaining_s`` out of ``duration_s``). The draw
    record (``draw_*``, ``winners``, ``winner_proofs``) is written once by the
    draw engine; rerolls only replace single positions of ``winners`` and
    ``winner_proofs``.
    """

    __tablename__ = "giveaways"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    """Primary key."""

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    must_be_logged_in: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    """Reject anonymous entries when set."""

    require_photo_usage_consent: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    """Informational; the client collects consent before submitting."""

    require_profile_public: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    """Informational; the client collects consent before submitting."""

    device_fingerprinting: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    """Whether entrants are asked for a device fingerprint."""

    max_winners: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    start_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    end_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    duration_s: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Configured countdown length in seconds."""

    remaining_s: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Seconds left on the countdown as of ``start_at``."""

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=DRAFT)

    draw_seed: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    """Hex encoded draw secret; revealed together with the snapshot commitment."""

    draw_input_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    draw_input_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    draw_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    """Set iff a draw has happened."""

    winners: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    """Winning entry ids ordered by position."""

    winner_proofs: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    """Serialized :class:`~giveaway_engine.models.proofs.WinnerProof` per position."""

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    """Optimistic lock counter maintained by SQLAlchemy."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    entries: Mapped[list["GiveawayEntry"]] = relationship(
        back_populates="giveaway",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("max_winners >= 1", name="max_winners_positive"),
        CheckConstraint(
            "status IN ('draft','active','paused','closed','cancelled')",
            name="status_enum",
        ),
        Index("ix_giveaways_status_window", "status", "start_at", "end_at"),
    )

    def __init__(
        self,
        *,
        title: str,
        description: Optional[str] = None,
        must_be_logged_in: bool = True,
        require_photo_usage_consent: bool = False,
        require_profile_public: bool = False,
        device_fingerprinting: bool = False,
        max_winners: int = 1,
        start_at: Optional[datetime] = None,
        end_at: Optional[datetime] = None,
        duration_s: Optional[int] = None,
        remaining_s: Optional[int] = None,
        status: str = DRAFT,
        created_at: Optional[datetime] = None,
    ) -> None:
        if max_winners < 1:
            raise ValueError("max_winners must be at least 1")
        if status not in STATUSES:
            raise ValueError(f"Unknown giveaway status '{status}'")
        self.title = title
        self.description = description
        self.must_be_logged_in = must_be_logged_in
        self.require_photo_usage_consent = require_photo_usage_consent
        self.require_profile_public = require_profile_public
        self.device_fingerprinting = device_fingerprinting
        self.max_winners = max_winners
        self.start_at = start_at
        self.end_at = end_at
        self.duration_s = duration_s
        self.remaining_s = remaining_s
        self.status = status
        self.winners = []
        self.winner_proofs = []
        if created_at is not None:
            self.created_at = created_at

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<Giveaway(id={id}, title={title}, status={status}, drawn={drawn})>".format(
            id=self.id,
            title=self.title,
            status=self.status,
            drawn=self.draw_at is not None,
        )

    @classmethod
    def get(
        cls, session: Session, giveaway_id: int, *, for_update: bool = False
    ) -> Optional["Giveaway"]:
        """Load a giveaway, optionally row-locked and refreshed from the database."""
        stmt = select(cls).where(cls.id == giveaway_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return session.scalar(stmt)

    @property
    def is_drawn(self) -> bool:
        return self.draw_at is not None

    @property
    def proofs(self) -> list[WinnerProof]:
        return [proof_from_dict(p) for p in self.winner_proofs or []]

    def set_results(
        self, winners: Sequence[int], proofs: Sequence[WinnerProof]
    ) -> None:
        """Replace the winners/proofs lists.

        New list objects are assigned so the JSON columns are flagged dirty.
        """
        if len(winners) != len(proofs):
            raise ValueError("winners and proofs must have the same length")
        if len(winners) > self.max_winners:
            raise ValueError("more winners than max_winners")
        self.winners = [int(w) for w in winners]
        self.winner_proofs = [p.to_dict() for p in proofs]

    def replace_position(self, position: int, proof: WinnerProof) -> None:
        """Overwrite one winner slot, leaving every other stored proof untouched."""
        if not 0 <= position < len(self.winner_proofs or []):
            raise IndexError(f"No winner at position {position}")
        winners = list(self.winners)
        stored = list(self.winner_proofs)
        winners[position] = int(proof.entry_id)
        stored[position] = proof.to_dict()
        self.winners = winners
        self.winner_proofs = stored

    def to_public_json(self) -> dict[str, Any]:
        """Fields a participant needs before joining."""
        return {
            "id": str(self.id),
            "title": self.title,
            "description": self.description,
            "mustBeLoggedIn": bool(self.must_be_logged_in),
            "requirePhotoUsageConsent": bool(self.require_photo_usage_consent),
            "requireProfilePublic": bool(self.require_profile_public),
            "deviceFingerprinting": bool(self.device_fingerprinting),
            "startAt": dt_iso(self.start_at),
            "endAt": dt_iso(self.end_at),
            "durationS": self.duration_s,
            "remainingS": self.remaining_s,
            "status": self.status,
        }

    def draw_record_json(self) -> dict[str, Any]:
        return {
            "winners": [str(w) for w in self.winners or []],
            "winnerProofs": [
                {**p, "entryId": str(p["entryId"])} for p in self.winner_proofs or []
            ],
            "drawSeed": self.draw_seed,
            "drawInputHash": self.draw_input_hash,
            "drawInputSize": self.draw_input_size,
            "drawAt": dt_iso(self.draw_at),
        }

    def to_json(self) -> dict[str, Any]:
        """Full admin projection including the draw record."""
        data = self.to_public_json()
        data.update(
            {
                "maxWinners": self.max_winners,
                "createdAt": dt_iso(self.created_at),
                "updatedAt": dt_iso(self.updated_at),
                **self.draw_record_json(),
            }
        )
        return data


__all__ = [
    "Giveaway",
    "DRAFT",
    "ACTIVE",
    "PAUSED",
    "CLOSED",
    "CANCELLED",
    "STATUSES",
    "TERMINAL_STATUSES",
]
