"""
mockinterview/features/entitlements/repository.py

Persistence port for the entitlement flow plus its SQLAlchemy adapter.

Every method that writes more than one row runs inside a single
get_db_session() block, so the writes commit together or roll back together.
Attempt reservation and consumption are conditional UPDATEs guarded by the
attempt cap, so concurrent callers cannot oversell an order.
"""

from abc import ABC, abstractmethod
from typing import List, Optional
from uuid import uuid4
import logging

from sqlalchemy import select, insert, update, and_

from mockinterview.core.database import (
    get_db_session,
    users,
    orders,
    interview_sessions,
    utc_now,
)
from mockinterview.core.errors import ConflictError
from mockinterview.features.packs import service as packs_service
from mockinterview.models.interview_session import InterviewSession, SessionStatus
from mockinterview.models.order import Order, OrderStatus
from mockinterview.models.pack import InterviewPack


logger = logging.getLogger(__name__)


class EntitlementRepository(ABC):
    """Port for entitlement persistence."""

    @abstractmethod
    def user_exists(self, user_id: str) -> bool:
        ...

    @abstractmethod
    def get_pack(self, pack_id: str) -> Optional[InterviewPack]:
        ...

    @abstractmethod
    def list_packs(self) -> List[InterviewPack]:
        ...

    @abstractmethod
    def find_eligible_orders(self, user_id: str, pack_id: str) -> List[Order]:
        """Orders for (user, pack) that are PURCHASED with attempts_used below the cap, oldest first."""
        ...

    @abstractmethod
    def find_pending_session(self, order: Order) -> Optional[InterviewSession]:
        """Oldest unstarted session holding a reservation on `order`."""
        ...

    @abstractmethod
    def list_orders(self, user_id: str) -> List[Order]:
        ...

    @abstractmethod
    def create_order_and_session(
        self, user_id: str, pack: InterviewPack, attempts_total: int
    ) -> tuple[Order, InterviewSession]:
        """Insert a PURCHASED order and its first PENDING session atomically."""
        ...

    @abstractmethod
    def reserve_attempt_and_create_session(self, order: Order) -> Optional[InterviewSession]:
        """Reserve one attempt on `order` and insert a PENDING session.

        Returns None when the order no longer has a free attempt.
        """
        ...

    @abstractmethod
    def get_session(self, session_id: str) -> Optional[InterviewSession]:
        ...

    @abstractmethod
    def consume_attempt(self, session: InterviewSession, is_practice: bool) -> InterviewSession:
        """Move a PENDING session to IN_PROGRESS and settle its reservation."""
        ...


def _row_to_order(row) -> Order:
    return Order(
        id=row.id,
        user_id=row.user_id,
        pack_id=row.pack_id,
        amount=row.amount,
        status=OrderStatus(row.status),
        attempts_used=row.attempts_used,
        attempts_total=row.attempts_total,
        attempts_reserved=row.attempts_reserved,
        created_at=row.created_at,
    )


def _row_to_session(row) -> InterviewSession:
    return InterviewSession(
        id=row.id,
        user_id=row.user_id,
        pack_id=row.pack_id,
        order_id=row.order_id,
        status=SessionStatus(row.status),
        is_practice=bool(row.is_practice),
        started_at=row.started_at,
        created_at=row.created_at,
    )


# Free-attempt predicate shared by lookup and the conditional reserve
_HAS_FREE_ATTEMPT = (orders.c.attempts_used + orders.c.attempts_reserved) < orders.c.attempts_total


class SqlEntitlementRepository(EntitlementRepository):
    """SQLAlchemy Core implementation of EntitlementRepository."""

    def user_exists(self, user_id: str) -> bool:
        with get_db_session() as session:
            row = session.execute(select(users.c.id).where(users.c.id == user_id)).first()
            return row is not None

    def get_pack(self, pack_id: str) -> Optional[InterviewPack]:
        return packs_service.get_pack(pack_id)

    def list_packs(self) -> List[InterviewPack]:
        return packs_service.list_packs()

    def find_eligible_orders(self, user_id: str, pack_id: str) -> List[Order]:
        with get_db_session() as session:
            rows = session.execute(
                select(orders)
                .where(
                    and_(
                        orders.c.user_id == user_id,
                        orders.c.pack_id == pack_id,
                        orders.c.status == OrderStatus.PURCHASED.value,
                        orders.c.attempts_used < orders.c.attempts_total,
                    )
                )
                # Oldest first, same FIFO order used when consuming legacy sessions
                .order_by(orders.c.created_at, orders.c.id)
            ).fetchall()
        return [_row_to_order(r) for r in rows]

    def find_pending_session(self, order: Order) -> Optional[InterviewSession]:
        with get_db_session() as session:
            row = session.execute(
                select(interview_sessions)
                .where(
                    and_(
                        interview_sessions.c.order_id == order.id,
                        interview_sessions.c.user_id == order.user_id,
                        interview_sessions.c.status == SessionStatus.PENDING.value,
                    )
                )
                .order_by(interview_sessions.c.created_at, interview_sessions.c.id)
            ).first()
            return _row_to_session(row) if row else None

    def list_orders(self, user_id: str) -> List[Order]:
        with get_db_session() as session:
            rows = session.execute(
                select(orders)
                .where(orders.c.user_id == user_id)
                .order_by(orders.c.created_at, orders.c.id)
            ).fetchall()
        return [_row_to_order(r) for r in rows]

    def create_order_and_session(
        self, user_id: str, pack: InterviewPack, attempts_total: int
    ) -> tuple[Order, InterviewSession]:
        now = utc_now()
        order = Order(
            id=str(uuid4()),
            user_id=user_id,
            pack_id=pack.id,
            amount=pack.price,
            status=OrderStatus.PURCHASED,
            attempts_used=0,
            attempts_total=attempts_total,
            attempts_reserved=1,
            created_at=now,
        )
        interview = InterviewSession(
            id=str(uuid4()),
            user_id=user_id,
            pack_id=pack.id,
            order_id=order.id,
            status=SessionStatus.PENDING,
            is_practice=False,
            created_at=now,
        )
        with get_db_session() as session:
            session.execute(
                insert(orders).values(
                    id=order.id,
                    user_id=order.user_id,
                    pack_id=order.pack_id,
                    amount=order.amount,
                    status=order.status.value,
                    attempts_used=order.attempts_used,
                    attempts_total=order.attempts_total,
                    attempts_reserved=order.attempts_reserved,
                    created_at=order.created_at,
                )
            )
            self._insert_session(session, interview)
        return order, interview

    def reserve_attempt_and_create_session(self, order: Order) -> Optional[InterviewSession]:
        interview = InterviewSession(
            id=str(uuid4()),
            user_id=order.user_id,
            pack_id=order.pack_id,
            order_id=order.id,
            status=SessionStatus.PENDING,
            is_practice=False,
            created_at=utc_now(),
        )
        with get_db_session() as session:
            result = session.execute(
                update(orders)
                .where(
                    and_(
                        orders.c.id == order.id,
                        orders.c.status == OrderStatus.PURCHASED.value,
                        _HAS_FREE_ATTEMPT,
                    )
                )
                .values(attempts_reserved=orders.c.attempts_reserved + 1)
            )
            if result.rowcount != 1:
                return None
            self._insert_session(session, interview)
        return interview

    def get_session(self, session_id: str) -> Optional[InterviewSession]:
        with get_db_session() as session:
            row = session.execute(
                select(interview_sessions).where(interview_sessions.c.id == session_id)
            ).first()
            return _row_to_session(row) if row else None

    def consume_attempt(self, interview: InterviewSession, is_practice: bool) -> InterviewSession:
        started_at = utc_now()
        with get_db_session() as session:
            moved = session.execute(
                update(interview_sessions)
                .where(
                    and_(
                        interview_sessions.c.id == interview.id,
                        interview_sessions.c.status == SessionStatus.PENDING.value,
                    )
                )
                .values(
                    status=SessionStatus.IN_PROGRESS.value,
                    started_at=started_at,
                    is_practice=is_practice,
                )
            )
            if moved.rowcount != 1:
                raise ConflictError(f"Session {interview.id} has already been started")

            order_id = interview.order_id
            if order_id:
                self._settle_reservation(session, order_id, is_practice)
            elif not is_practice:
                order_id = self._consume_oldest_order(session, interview)

        return interview.model_copy(
            update={
                "status": SessionStatus.IN_PROGRESS,
                "started_at": started_at,
                "is_practice": is_practice,
                "order_id": order_id,
            }
        )

    @staticmethod
    def _insert_session(session, interview: InterviewSession) -> None:
        session.execute(
            insert(interview_sessions).values(
                id=interview.id,
                user_id=interview.user_id,
                pack_id=interview.pack_id,
                order_id=interview.order_id,
                status=interview.status.value,
                is_practice=interview.is_practice,
                created_at=interview.created_at,
            )
        )

    @staticmethod
    def _settle_reservation(session, order_id: str, is_practice: bool) -> None:
        if is_practice:
            values = {"attempts_reserved": orders.c.attempts_reserved - 1}
            guard = orders.c.attempts_reserved > 0
        else:
            values = {
                "attempts_used": orders.c.attempts_used + 1,
                "attempts_reserved": orders.c.attempts_reserved - 1,
            }
            guard = and_(orders.c.attempts_reserved > 0, orders.c.attempts_used < orders.c.attempts_total)

        result = session.execute(
            update(orders).where(and_(orders.c.id == order_id, guard)).values(**values)
        )
        if result.rowcount != 1:
            raise ConflictError(f"Order {order_id} has no reserved attempt to settle")

    @staticmethod
    def _open_order_ids(session, interview: InterviewSession) -> List[str]:
        rows = session.execute(
            select(orders.c.id)
            .where(
                and_(
                    orders.c.user_id == interview.user_id,
                    orders.c.pack_id == interview.pack_id,
                    orders.c.status == OrderStatus.PURCHASED.value,
                    _HAS_FREE_ATTEMPT,
                )
            )
            .order_by(orders.c.created_at, orders.c.id)
        ).fetchall()
        return [r.id for r in rows]

    @classmethod
    def _consume_oldest_order(cls, session, interview: InterviewSession) -> str:
        """Sessions created before reservations existed draw from the oldest open order.

        Raises ConflictError (rolling back the start) when no order has a
        free attempt left at update time.
        """
        for order_id in cls._open_order_ids(session, interview):
            result = session.execute(
                update(orders)
                .where(and_(orders.c.id == order_id, _HAS_FREE_ATTEMPT))
                .values(attempts_used=orders.c.attempts_used + 1)
            )
            if result.rowcount != 1:
                # Filled by a concurrent start since the lookup
                continue
            session.execute(
                update(interview_sessions)
                .where(interview_sessions.c.id == interview.id)
                .values(order_id=order_id)
            )
            return order_id

        logger.warning(
            "[entitlements] no open order for unlinked session",
            extra={"session_id": interview.id, "user_id": interview.user_id, "pack_id": interview.pack_id},
        )
        raise ConflictError("No attempts remaining for this pack")
