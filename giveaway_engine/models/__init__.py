from .base import Base

# import models so Alembic/autoloaders can discover mappers
from .user import User  # noqa: F401
from .giveaway import Giveaway  # noqa: F401
from .entry import GiveawayEntry  # noqa: F401
from .proofs import DrawProof, RerollProof, WinnerProof, proof_from_dict  # noqa: F401

__all__ = [
    "Base",
    "User",
    "Giveaway",
    "GiveawayEntry",
    "WinnerProof",
    "DrawProof",
    "RerollProof",
    "proof_from_dict",
]
