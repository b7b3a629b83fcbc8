"""
Admin authorization by email allow-list.

The allow-list is resolved once at startup (from ADMIN_EMAILS) into an
AdminPolicy stored on app.state and passed explicitly to the check.
Business logic never reads the environment for it.
"""
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional

from fastapi import Depends, Request

from mockinterview.core.auth import get_current_user
from mockinterview.core.config import parse_admin_emails
from mockinterview.core.errors import PermissionError
from mockinterview.models.user import User


@dataclass(frozen=True)
class AdminPolicy:
    emails: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def from_raw(cls, raw: Optional[str]) -> "AdminPolicy":
        return cls(emails=frozenset(parse_admin_emails(raw)))

    @classmethod
    def from_emails(cls, emails: Iterable[str]) -> "AdminPolicy":
        return cls(emails=frozenset(e.strip().lower() for e in emails if e and e.strip()))


def is_admin_email(email: Optional[str], policy: AdminPolicy) -> bool:
    if not email:
        return False
    return email.strip().lower() in policy.emails


def get_admin_policy(request: Request) -> AdminPolicy:
    return getattr(request.app.state, "admin_policy", None) or AdminPolicy()


def require_admin(
    user: User = Depends(get_current_user),
    policy: AdminPolicy = Depends(get_admin_policy),
) -> User:
    """
    FastAPI dependency: require an allow-listed admin.

    Usage:
        @router.get("/v1/admin/overview")
        def overview(admin: User = Depends(require_admin)):
            ...
    """
    if not is_admin_email(user.email, policy):
        raise PermissionError("Admin access required")
    return user
