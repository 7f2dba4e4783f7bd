from typing import Any, Optional

from pydantic import BaseModel, Field

from markit.schemas.session import CurrentSession
from markit.schemas.user import RosterUser

SETTING_NAMES = ("signOutEnabled", "checkoutEnabled")


class CardCreate(BaseModel):
    name: str = Field(min_length=1)


class CardSettings(BaseModel):
    signOutEnabled: bool = False
    checkoutEnabled: bool = False


class Card(BaseModel):
    id: str
    cardName: str
    hostId: str
    createdAt: Optional[str] = None
    settings: CardSettings = Field(default_factory=CardSettings)
    current: Optional[CurrentSession] = None
    code: Optional[str] = None
    codeExpiresAt: Optional[int] = None
    users: dict[str, RosterUser] = Field(default_factory=dict)
    # Log records are validated one by one when queried.
    logs: dict[str, Any] = Field(default_factory=dict)

    class Config:
        from_attributes = True

    @classmethod
    def from_store(cls, card_id: str, raw: dict) -> "Card":
        return cls.model_validate({**raw, "id": card_id})

    @property
    def active_session(self) -> Optional[CurrentSession]:
        if self.current is not None and self.current.active:
            return self.current
        return None


class CardSummary(BaseModel):
    id: str
    cardName: str
    createdAt: Optional[str] = None
    active: bool = False
    users: int = 0
