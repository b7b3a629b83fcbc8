"""
mockinterview/models/pack.py

Interview pack catalog model.

A pack is read-only reference data: role, level, duration and price of one
kind of mock interview.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


class InterviewPack(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    role: str
    level: str
    duration_minutes: int
    price: int
    description: Optional[str] = None
    created_at: Optional[datetime] = None
