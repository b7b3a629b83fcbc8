from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict


class SessionStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class InterviewSession(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    pack_id: str
    order_id: Optional[str] = None
    status: SessionStatus
    is_practice: bool = False
    started_at: Optional[datetime] = None
    created_at: datetime
