"""
mockinterview/features/entitlements/service.py

Entitlement manager: the lifecycle of a user's right to take an interview.

Handles:
- purchase: one order + first session, atomically
- start_new_attempt: reserve or resume an attempt on an existing order, or re-sell
- consume_attempt: starting a session turns its reservation into a used attempt
- get_entitlements: per-pack view of remaining attempts for a user

Navigation (redirect to the session start page) is left to the caller;
every operation returns data only.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
import logging

from mockinterview.core.errors import NotFoundError, UnauthorizedError, ConflictError
from mockinterview.features.audit.service import record_audit_event
from mockinterview.features.entitlements.repository import (
    EntitlementRepository,
    SqlEntitlementRepository,
)
from mockinterview.models.interview_session import InterviewSession, SessionStatus
from mockinterview.models.order import ATTEMPTS_PER_ORDER, Order
from mockinterview.models.pack import InterviewPack


logger = logging.getLogger(__name__)

AuditSink = Callable[..., None]


@dataclass(frozen=True)
class EntitlementResult:
    session_id: str
    order_id: str
    created_order: bool
    created_session: bool = True

    @property
    def next_path(self) -> str:
        return f"/interview/{self.session_id}/start"


class PackAction(str, Enum):
    """What the dashboard should offer for a pack."""
    START_ATTEMPT = "START_ATTEMPT"
    PURCHASE = "PURCHASE"


@dataclass(frozen=True)
class PackEntitlement:
    pack: InterviewPack
    attempts_remaining: int
    action: PackAction
    order_id: Optional[str] = None


class EntitlementManager:
    """Purchase, attempt reservation and attempt consumption for interview packs."""

    def __init__(
        self,
        repository: Optional[EntitlementRepository] = None,
        audit_sink: Optional[AuditSink] = None,
        attempts_per_order: int = ATTEMPTS_PER_ORDER,
    ):
        self.repository = repository or SqlEntitlementRepository()
        self.audit_sink = audit_sink or record_audit_event
        self.attempts_per_order = attempts_per_order

    # ---------------------------------------------------------------- helpers

    def _require_user(self, user_id: Optional[str]) -> str:
        if not user_id or not self.repository.user_exists(user_id):
            raise UnauthorizedError("Unauthorized")
        return user_id

    def _audit(self, action: str, user_id: str, metadata: Dict[str, Any]) -> None:
        """Fire-and-forget audit record. Never raises."""
        try:
            self.audit_sink(action=action, user_id=user_id, metadata=metadata)
        except Exception:
            logger.warning(
                "[entitlements] audit write failed",
                exc_info=True,
                extra={"user_id": user_id, "event_type": action},
            )

    def get_owned_session(self, user_id: str, session_id: str) -> InterviewSession:
        """Return the session if it exists and belongs to user_id, else NotFoundError."""
        interview = self.repository.get_session(session_id)
        if interview is None or interview.user_id != user_id:
            raise NotFoundError("Session not found")
        return interview

    # ------------------------------------------------------------- operations

    def purchase(self, user_id: Optional[str], pack_id: str) -> EntitlementResult:
        """
        Buy a pack: create one PURCHASED order and its first PENDING session.

        Raises:
            UnauthorizedError: user_id does not resolve to an existing user
            NotFoundError: pack does not exist
        """
        user_id = self._require_user(user_id)
        pack = self.repository.get_pack(pack_id)
        if pack is None:
            raise NotFoundError(f"Pack {pack_id} not found")

        order, interview = self.repository.create_order_and_session(user_id, pack, self.attempts_per_order)

        logger.info(
            "[entitlements] purchased",
            extra={"user_id": user_id, "pack_id": pack.id, "order_id": order.id, "session_id": interview.id},
        )
        self._audit(
            "interview.purchased",
            user_id,
            {"pack_id": pack.id, "pack_title": pack.title, "amount": order.amount, "order_id": order.id},
        )
        return EntitlementResult(session_id=interview.id, order_id=order.id, created_order=True)

    def start_new_attempt(self, user_id: Optional[str], pack_id: str) -> EntitlementResult:
        """
        Open a session against the oldest order with an unused attempt.

        - Free (unreserved) attempt: reserve it and create a new PENDING session.
        - Every unused attempt already held by a pending session: hand back
          the oldest of those sessions, so repeated clicks never re-sell
          attempts the user has not used.
        - No order with an unused attempt: purchase().

        attempts_used is not touched here.
        """
        user_id = self._require_user(user_id)

        for order in self.repository.find_eligible_orders(user_id, pack_id):
            interview = None
            if order.attempts_free > 0:
                interview = self.repository.reserve_attempt_and_create_session(order)
            if interview is None:
                pending = self.repository.find_pending_session(order)
                if pending is not None:
                    logger.info(
                        "[entitlements] resuming pending session",
                        extra={"user_id": user_id, "pack_id": pack_id, "order_id": order.id, "session_id": pending.id},
                    )
                    return EntitlementResult(
                        session_id=pending.id, order_id=order.id, created_order=False, created_session=False
                    )
                logger.info(
                    "[entitlements] no attempt left on order after lookup",
                    extra={"user_id": user_id, "pack_id": pack_id, "order_id": order.id},
                )
                continue

            logger.info(
                "[entitlements] attempt reserved",
                extra={"user_id": user_id, "pack_id": pack_id, "order_id": order.id, "session_id": interview.id},
            )
            self._audit(
                "interview.attempt_reserved",
                user_id,
                {"pack_id": pack_id, "order_id": order.id, "session_id": interview.id},
            )
            return EntitlementResult(session_id=interview.id, order_id=order.id, created_order=False)

        logger.info(
            "[entitlements] no open order, purchasing",
            extra={"user_id": user_id, "pack_id": pack_id},
        )
        return self.purchase(user_id, pack_id)

    def consume_attempt(
        self, user_id: Optional[str], session_id: str, *, is_practice: bool = False
    ) -> InterviewSession:
        """
        Start a PENDING session.

        A real attempt moves the order's reservation into attempts_used; a
        practice run only releases the reservation.

        Raises:
            UnauthorizedError, NotFoundError, ConflictError (already started)
        """
        user_id = self._require_user(user_id)
        interview = self.get_owned_session(user_id, session_id)
        if interview.status != SessionStatus.PENDING:
            raise ConflictError(f"Session {session_id} has already been started")

        started = self.repository.consume_attempt(interview, is_practice)

        logger.info(
            "[entitlements] attempt started",
            extra={"user_id": user_id, "session_id": session_id, "order_id": started.order_id},
        )
        self._audit(
            "interview.started",
            user_id,
            {"pack_id": started.pack_id, "session_id": session_id, "is_practice": is_practice},
        )
        return started

    def get_entitlements(self, user_id: Optional[str]) -> List[PackEntitlement]:
        user_id = self._require_user(user_id)
        open_orders: Dict[str, List[Order]] = {}
        for order in self.repository.list_orders(user_id):
            if order.is_eligible:
                open_orders.setdefault(order.pack_id, []).append(order)

        result = []
        for pack in self.repository.list_packs():
            candidates = open_orders.get(pack.id, [])
            if candidates:
                result.append(
                    PackEntitlement(
                        pack=pack,
                        attempts_remaining=sum(o.attempts_remaining for o in candidates),
                        action=PackAction.START_ATTEMPT,
                        order_id=candidates[0].id,
                    )
                )
            else:
                result.append(PackEntitlement(pack=pack, attempts_remaining=0, action=PackAction.PURCHASE))
        return result
