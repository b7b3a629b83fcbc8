"""
mockinterview/features/packs/service.py

Interview pack catalog.

Handles:
- Catalog seeding (idempotent)
- Pack lookup and listing
"""

from typing import List, Optional
from sqlalchemy import select, insert

from mockinterview.core.database import get_db_session, interview_packs, utc_now
from mockinterview.models.pack import InterviewPack


DEFAULT_PACKS = {
    "devops-entry": {
        "title": "DevOps Engineer - Entry Level",
        "role": "DevOps Engineer",
        "level": "Entry",
        "duration_minutes": 45,
        "price": 0,
        "description": "Covers basic DevOps concepts, CI/CD fundamentals, and cloud basics.",
    },
    "devops-senior": {
        "title": "DevOps Engineer - Senior",
        "role": "DevOps Engineer",
        "level": "Senior",
        "duration_minutes": 60,
        "price": 0,
        "description": "Scalability, incident management, and complex infrastructure.",
    },
    "sre": {
        "title": "SRE Engineer",
        "role": "SRE",
        "level": "Mid-Senior",
        "duration_minutes": 45,
        "price": 0,
        "description": "Reliability, SLOs, observability, and on-call scenarios.",
    },
    "backend-senior": {
        "title": "Backend Engineer - Senior",
        "role": "Backend Engineer",
        "level": "Senior",
        "duration_minutes": 60,
        "price": 49,
        "description": "System design, data modelling, and API architecture.",
    },
}


def pack_from_row(row) -> InterviewPack:
    return InterviewPack(
        id=row.id,
        title=row.title,
        role=row.role,
        level=row.level,
        duration_minutes=row.duration_minutes,
        price=row.price,
        description=row.description,
        created_at=row.created_at,
    )


def seed_packs() -> int:
    """
    Seed the default catalog (idempotent).

    Returns:
        Number of packs inserted.
    """
    inserted = 0
    with get_db_session() as session:
        for pack_id, config in DEFAULT_PACKS.items():
            existing = session.execute(
                select(interview_packs.c.id).where(interview_packs.c.id == pack_id)
            ).first()
            if existing:
                continue
            session.execute(insert(interview_packs).values(id=pack_id, created_at=utc_now(), **config))
            inserted += 1
    return inserted


def get_pack(pack_id: str) -> Optional[InterviewPack]:
    with get_db_session() as session:
        row = session.execute(select(interview_packs).where(interview_packs.c.id == pack_id)).first()
        return pack_from_row(row) if row else None


def list_packs() -> List[InterviewPack]:
    with get_db_session() as session:
        rows = session.execute(select(interview_packs).order_by(interview_packs.c.title)).fetchall()
    return [pack_from_row(r) for r in rows]
