from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, String, func, select
from sqlalchemy.orm import Mapped, Session, mapped_column

from .base import Base, ID_TYPE


class User(Base):
    """Read-side projection of a community member.

    Accounts are owned by the identity collaborator; the giveaway engine only
    reads these columns to show who won.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    image: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __init__(
        self,
        display_name: Optional[str] = None,
        name: Optional[str] = None,
        image: Optional[str] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ):
        self.display_name = display_name
        self.name = name
        self.image = image
        if created_at is not None:
            self.created_at = created_at
        if updated_at is not None:
            self.updated_at = updated_at

    def __repr__(self) -> str:
        return f"<User(id={self.id}, display_name='{self.display_name}')>"

    @classmethod
    def get_many(cls, session: Session, ids: list[int]) -> dict[int, "User"]:
        """Return users keyed by id; unknown ids are simply absent."""
        if not ids:
            return {}
        users = session.scalars(select(cls).where(cls.id.in_(ids))).all()
        return {u.id: u for u in users}

    def public_json(self) -> dict[str, Any]:
        return {
            "userId": str(self.id),
            "displayName": self.display_name,
            "name": self.name,
            "image": self.image,
        }
