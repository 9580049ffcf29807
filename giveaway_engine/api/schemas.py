from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


class CreateEntryIn(BaseModel):
    acceptTerms: bool = False
    finalConfirmations: dict[str, Any] = Field(default_factory=dict)
    anonId: Optional[str] = None
    deviceFingerprint: Optional[str] = None


class CreateEntryOut(BaseModel):
    ok: bool
    id: str


class RegisteredOut(BaseModel):
    registered: bool


class CountOut(BaseModel):
    count: int


class RerollIn(BaseModel):
    """Winner slot to replace; numeric strings such as ``"1"`` are coerced."""

    position: int = Field(ge=0)

    @field_validator("position", mode="before")
    @classmethod
    def _reject_bool(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("position must be a number")
        return value


class GiveawayInput(BaseModel):
    """Operator input; omitted fields are left unchanged on update."""

    title: Optional[str] = None
    description: Optional[str] = None
    mustBeLoggedIn: Optional[bool] = None
    requirePhotoUsageConsent: Optional[bool] = None
    requireProfilePublic: Optional[bool] = None
    deviceFingerprinting: Optional[bool] = None
    maxWinners: Optional[int] = None
    startAt: Optional[str] = None
    endAt: Optional[str] = None
    durationS: Optional[float] = None
    status: Optional[str] = None
