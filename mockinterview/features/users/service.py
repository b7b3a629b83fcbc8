"""
User domain service.
- sync_user(identity): create on first sight, refresh provider attributes after
- get_user(user_id)
- get_user_credits(user_id)
"""

import logging
from typing import List, Optional
from uuid import uuid4
from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from mockinterview.core.database import get_db_session, users, user_credits, utc_now
from mockinterview.models.user import Identity, User, UserCredit


logger = logging.getLogger(__name__)

# Bonus credits granted when an account is created
SIGNUP_CREDIT_AMOUNT = 3


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        image=row.image,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def get_user(user_id: str) -> Optional[User]:
    with get_db_session() as session:
        row = session.execute(select(users).where(users.c.id == user_id)).first()
        return _row_to_user(row) if row else None


def get_user_credits(user_id: str) -> List[UserCredit]:
    with get_db_session() as session:
        rows = session.execute(
            select(user_credits)
            .where(user_credits.c.user_id == user_id)
            .order_by(user_credits.c.created_at)
        ).fetchall()
    return [
        UserCredit(id=r.id, user_id=r.user_id, amount=r.amount, created_at=r.created_at)
        for r in rows
    ]


def sync_user(identity: Identity) -> User:
    """Create the user on first sign-in, otherwise refresh changed attributes.

    The signup credit grant is written in the same transaction as the user row.
    """
    existing = get_user(identity.id)
    if existing is None:
        now = utc_now()
        try:
            with get_db_session() as session:
                session.execute(
                    insert(users).values(
                        id=identity.id,
                        email=identity.email,
                        name=identity.name,
                        image=identity.image,
                        created_at=now,
                        updated_at=now,
                    )
                )
                session.execute(
                    insert(user_credits).values(
                        id=str(uuid4()),
                        user_id=identity.id,
                        amount=SIGNUP_CREDIT_AMOUNT,
                        created_at=now,
                    )
                )
        except IntegrityError:
            # Concurrent first sign-in already created the row
            existing = get_user(identity.id)
            if existing is None:
                raise
        else:
            logger.info("[users] created", extra={"user_id": identity.id})
            return User(
                id=identity.id,
                email=identity.email,
                name=identity.name,
                image=identity.image,
                created_at=now,
                updated_at=now,
            )

    if not existing.differs_from(identity):
        return existing

    now = utc_now()
    with get_db_session() as session:
        session.execute(
            update(users)
            .where(users.c.id == identity.id)
            .values(email=identity.email, name=identity.name, image=identity.image, updated_at=now)
        )
    logger.info("[users] synced provider attributes", extra={"user_id": identity.id})
    return existing.model_copy(
        update={"email": identity.email, "name": identity.name, "image": identity.image, "updated_at": now}
    )
