"""Admin overview aggregates."""

from typing import Any, Dict
from sqlalchemy import select, func

from mockinterview.core.database import get_db_session, users, orders, interview_sessions
from mockinterview.models.interview_session import SessionStatus
from mockinterview.models.order import OrderStatus


def get_overview() -> Dict[str, Any]:
    with get_db_session() as session:
        total_users = session.execute(select(func.count()).select_from(users)).scalar_one()
        total_orders = session.execute(
            select(func.count()).select_from(orders).where(orders.c.status == OrderStatus.PURCHASED.value)
        ).scalar_one()
        revenue = session.execute(
            select(func.coalesce(func.sum(orders.c.amount), 0)).where(orders.c.status == OrderStatus.PURCHASED.value)
        ).scalar_one()
        status_rows = session.execute(
            select(interview_sessions.c.status, func.count()).group_by(interview_sessions.c.status)
        ).fetchall()
        active_users = session.execute(
            select(func.count(func.distinct(interview_sessions.c.user_id)))
            .where(interview_sessions.c.status == SessionStatus.COMPLETED.value)
        ).scalar_one()

    sessions_by_status = {status.value: 0 for status in SessionStatus}
    for status, count in status_rows:
        sessions_by_status[status] = count

    return {
        "total_users": total_users,
        "active_users": active_users,
        "total_orders": total_orders,
        "total_revenue": int(revenue or 0),
        "sessions_by_status": sessions_by_status,
        "total_sessions": sum(sessions_by_status.values()),
    }
