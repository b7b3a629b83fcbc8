"""
mockinterview/models/order.py

Order model: one purchase of a pack, granting a bounded number of attempts.
"""

from datetime import datetime
from enum import Enum
from pydantic import BaseModel, ConfigDict


# Attempts granted per purchase. Global policy, not per pack or per user.
ATTEMPTS_PER_ORDER = 2


class OrderStatus(str, Enum):
    # Only status written by the entitlement flow; refunds are not modelled
    PURCHASED = "PURCHASED"


class Order(BaseModel):
    """
    Order represents a single purchase.

    Attempt accounting:
    - attempts_used: sessions under this order that were actually started
    - attempts_reserved: sessions issued but not yet started
    - attempts_total: cap fixed at purchase time (ATTEMPTS_PER_ORDER)

    attempts_used + attempts_reserved <= attempts_total always holds.

    An order is eligible for a new attempt while attempts_used is below the
    cap. When every unused attempt is already reserved, the new attempt
    resumes one of the order's pending sessions instead of reserving.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    pack_id: str
    amount: int
    status: OrderStatus
    attempts_used: int = 0
    attempts_total: int = ATTEMPTS_PER_ORDER
    attempts_reserved: int = 0
    created_at: datetime

    @property
    def attempts_remaining(self) -> int:
        """Attempts not yet consumed, including those held by pending sessions."""
        return max(0, self.attempts_total - self.attempts_used)

    @property
    def attempts_free(self) -> int:
        """Attempts neither consumed nor reserved."""
        return max(0, self.attempts_total - self.attempts_used - self.attempts_reserved)

    @property
    def is_eligible(self) -> bool:
        return self.status == OrderStatus.PURCHASED and self.attempts_remaining > 0
