from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


class Identity(BaseModel):
    """Caller identity resolved from the identity provider (Clerk claims)."""
    model_config = ConfigDict(frozen=True)

    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    image: Optional[str] = None


class UserCredit(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    amount: int
    created_at: datetime


class User(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    image: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    def differs_from(self, identity: Identity) -> bool:
        """True when provider-side attributes changed since the last sync."""
        return (
            self.email != identity.email
            or self.name != identity.name
            or self.image != identity.image
        )
