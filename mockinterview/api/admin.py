"""
Admin API routes.

GET /v1/admin/overview: user, order, revenue and session counts.
Callers must be on the ADMIN_EMAILS allow-list.
"""
from typing import Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from mockinterview.core.admin_auth import require_admin
from mockinterview.features.admin.service import get_overview
from mockinterview.models.user import User


router = APIRouter(prefix="/v1/admin", tags=["admin"])


class AdminOverviewResponse(BaseModel):
    total_users: int
    active_users: int
    total_orders: int
    total_revenue: int
    total_sessions: int
    sessions_by_status: Dict[str, int]


@router.get("/overview", response_model=AdminOverviewResponse)
def admin_overview(admin: User = Depends(require_admin)):
    return get_overview()
