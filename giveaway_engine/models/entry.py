"""Participation records for giveaways."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..db.utils import dt_iso
from ..identity import Identity
from .base import Base, ID_TYPE

if TYPE_CHECKING:
    from .giveaway import Giveaway
    from .user import User


class GiveawayEntry(Base):
    """One identity's participation in one giveaway.

    Exactly one of ``user_id``/``anon_id`` is set. The unique constraints on
    ``(giveaway_id, user_id)`` and ``(giveaway_id, anon_id)`` are the
    authoritative duplicate guard; NULLs never collide, so each identity kind
    is deduplicated independently.
    """

    __tablename__ = "giveaway_entries"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    giveaway_id: Mapped[int] = mapped_column(
        ID_TYPE,
        ForeignKey("giveaways.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("users.id", ondelete="CASCADE"), nullable=True
    )
    anon_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    device_fingerprint: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    disqualified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    final_confirmations: Mapped[dict] = mapped_column(
        JSON, nullable=False, default=dict
    )
    """Consents as declared at join time; never rewritten afterwards."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    giveaway: Mapped["Giveaway"] = relationship(back_populates="entries")
    user: Mapped[Optional["User"]] = relationship("User")

    __table_args__ = (
        UniqueConstraint("giveaway_id", "user_id", name="uq_giveaway_entry_user"),
        UniqueConstraint("giveaway_id", "anon_id", name="uq_giveaway_entry_anon"),
        CheckConstraint(
            "(user_id IS NULL) <> (anon_id IS NULL)", name="one_identity"
        ),
        Index("ix_giveaway_entries_snapshot", "giveaway_id", "created_at", "id"),
    )

    def __init__(
        self,
        *,
        giveaway_id: int,
        identity: Identity,
        final_confirmations: Optional[dict] = None,
        device_fingerprint: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> None:
        self.giveaway_id = giveaway_id
        self.user_id = identity.user_id
        self.anon_id = identity.anon_id
        self.final_confirmations = dict(final_confirmations or {})
        self.device_fingerprint = device_fingerprint
        self.disqualified = False
        if created_at is not None:
            self.created_at = created_at

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            f"<GiveawayEntry(id={self.id}, giveaway_id={self.giveaway_id}, "
            f"identity={self.identity}, disqualified={self.disqualified})>"
        )

    @property
    def identity(self) -> Identity:
        if self.user_id is not None:
            return Identity.user(self.user_id)
        return Identity.anonymous(self.anon_id or "")

    def to_json(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "giveawayId": str(self.giveaway_id),
            "userId": str(self.user_id) if self.user_id is not None else None,
            "anonId": self.anon_id,
            "disqualified": bool(self.disqualified),
            "finalConfirmations": dict(self.final_confirmations or {}),
            "createdAt": dt_iso(self.created_at),
        }
