"""Participant identity used for entry deduplication."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

USER = "user"
ANONYMOUS = "anonymous"


@dataclass(frozen=True)
class Identity:
    """Who is entering: an authenticated user id or a client-generated anon id.

    Two identities are equal only when both the discriminant and the value
    match, so ``Identity.user(5)`` never equals ``Identity.anonymous("5")``.
    """

    kind: str
    value: str

    def __post_init__(self) -> None:
        if self.kind not in (USER, ANONYMOUS):
            raise ValueError(f"Unknown identity kind '{self.kind}'")
        if not self.value:
            raise ValueError("identity value must not be empty")

    @classmethod
    def user(cls, user_id: int) -> "Identity":
        return cls(USER, str(user_id))

    @classmethod
    def anonymous(cls, anon_id: str) -> "Identity":
        return cls(ANONYMOUS, anon_id.strip())

    @classmethod
    def resolve(
        cls, user_id: Optional[int], anon_id: Optional[str]
    ) -> Optional["Identity"]:
        """Build an identity, preferring the authenticated user when present."""
        if user_id is not None:
            return cls.user(user_id)
        if anon_id is not None and anon_id.strip():
            return cls.anonymous(anon_id)
        return None

    @property
    def is_authenticated(self) -> bool:
        return self.kind == USER

    @property
    def user_id(self) -> Optional[int]:
        return int(self.value) if self.kind == USER else None

    @property
    def anon_id(self) -> Optional[str]:
        return self.value if self.kind == ANONYMOUS else None

    def __str__(self) -> str:
        return f"{self.kind}:{self.value}"


__all__ = ["Identity", "USER", "ANONYMOUS"]
