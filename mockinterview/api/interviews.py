"""
Interview pack and session API routes.

Surface:
- GET  /v1/packs: Catalog
- GET  /v1/entitlements: Remaining attempts per pack for the caller
- POST /v1/packs/{pack_id}/purchase: Buy a pack, open its first session
- POST /v1/packs/{pack_id}/attempts: Open a new attempt (resumes a pending one, re-sells when exhausted)
- POST /v1/interviews/{session_id}/start: Start a pending session
- GET  /v1/interviews/{session_id}/progress: Progress summary (delegated)
- POST /v1/interviews/{session_id}/turns: Raw audio turn (delegated)

Purchase and attempt responses carry `next_path`; the client navigates.
"""
from typing import Any, Dict, List, Optional
from datetime import datetime

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from mockinterview.core.auth import get_current_user
from mockinterview.core.errors import ValidationError
from mockinterview.core.logging import log_event
from mockinterview.features.entitlements.service import EntitlementManager, EntitlementResult
from mockinterview.features.interview.collaborators import (
    ProgressReader,
    TurnProcessor,
    UnconfiguredProgressReader,
    UnconfiguredTurnProcessor,
)
from mockinterview.features.packs.service import list_packs
from mockinterview.models.user import User


router = APIRouter(prefix="/v1", tags=["interviews"])

# Upper bound for a single audio turn upload
MAX_TURN_AUDIO_BYTES = 10 * 1024 * 1024


def get_entitlement_manager(request: Request) -> EntitlementManager:
    manager = getattr(request.app.state, "entitlement_manager", None)
    if manager is None:
        manager = EntitlementManager()
        request.app.state.entitlement_manager = manager
    return manager


def get_turn_processor(request: Request) -> TurnProcessor:
    return getattr(request.app.state, "turn_processor", None) or UnconfiguredTurnProcessor()


def get_progress_reader(request: Request) -> ProgressReader:
    return getattr(request.app.state, "progress_reader", None) or UnconfiguredProgressReader()


class PackResponse(BaseModel):
    id: str
    title: str
    role: str
    level: str
    duration_minutes: int
    price: int
    description: Optional[str] = None


class PackEntitlementResponse(BaseModel):
    pack: PackResponse
    attempts_remaining: int
    action: str  # START_ATTEMPT | PURCHASE
    order_id: Optional[str] = None


class EntitlementResponse(BaseModel):
    session_id: str
    order_id: str
    created_order: bool
    created_session: bool  # False when an unstarted session was handed back
    next_path: str


class StartSessionRequest(BaseModel):
    is_practice: bool = False


class SessionResponse(BaseModel):
    id: str
    pack_id: str
    order_id: Optional[str] = None
    status: str
    is_practice: bool
    started_at: Optional[datetime] = None
    next_path: str


def _entitlement_response(result: EntitlementResult) -> EntitlementResponse:
    return EntitlementResponse(
        session_id=result.session_id,
        order_id=result.order_id,
        created_order=result.created_order,
        created_session=result.created_session,
        next_path=result.next_path,
    )


@router.get("/packs", response_model=List[PackResponse])
def get_packs():
    return [PackResponse(**pack.model_dump(exclude={"created_at"})) for pack in list_packs()]


@router.get("/entitlements", response_model=List[PackEntitlementResponse])
def get_entitlements(
    user: User = Depends(get_current_user),
    manager: EntitlementManager = Depends(get_entitlement_manager),
):
    return [
        PackEntitlementResponse(
            pack=PackResponse(**item.pack.model_dump(exclude={"created_at"})),
            attempts_remaining=item.attempts_remaining,
            action=item.action.value,
            order_id=item.order_id,
        )
        for item in manager.get_entitlements(user.id)
    ]


@router.post("/packs/{pack_id}/purchase", response_model=EntitlementResponse)
def purchase_pack(
    pack_id: str,
    user: User = Depends(get_current_user),
    manager: EntitlementManager = Depends(get_entitlement_manager),
):
    """
    Buy a pack (payment is mocked).

    Errors:
        401: Not signed in
        404: Unknown pack
    """
    return _entitlement_response(manager.purchase(user.id, pack_id))


@router.post("/packs/{pack_id}/attempts", response_model=EntitlementResponse)
def start_new_attempt(
    pack_id: str,
    user: User = Depends(get_current_user),
    manager: EntitlementManager = Depends(get_entitlement_manager),
):
    return _entitlement_response(manager.start_new_attempt(user.id, pack_id))


@router.post("/interviews/{session_id}/start", response_model=SessionResponse)
def start_session(
    session_id: str,
    body: Optional[StartSessionRequest] = None,
    user: User = Depends(get_current_user),
    manager: EntitlementManager = Depends(get_entitlement_manager),
):
    is_practice = body.is_practice if body else False
    started = manager.consume_attempt(user.id, session_id, is_practice=is_practice)
    return SessionResponse(
        id=started.id,
        pack_id=started.pack_id,
        order_id=started.order_id,
        status=started.status.value,
        is_practice=started.is_practice,
        started_at=started.started_at,
        next_path=f"/interview/{started.id}/room",
    )


@router.get("/interviews/{session_id}/progress")
def get_progress(
    session_id: str,
    user: User = Depends(get_current_user),
    manager: EntitlementManager = Depends(get_entitlement_manager),
    reader: ProgressReader = Depends(get_progress_reader),
) -> Dict[str, Any]:
    manager.get_owned_session(user.id, session_id)
    return reader.get_progress(session_id)


@router.post("/interviews/{session_id}/turns")
async def post_turn(
    session_id: str,
    request: Request,
    user: User = Depends(get_current_user),
    manager: EntitlementManager = Depends(get_entitlement_manager),
    processor: TurnProcessor = Depends(get_turn_processor),
) -> Dict[str, Any]:
    manager.get_owned_session(user.id, session_id)
    audio = await request.body()
    if not audio:
        raise ValidationError("Missing audio body")
    if len(audio) > MAX_TURN_AUDIO_BYTES:
        raise ValidationError("Audio body too large")
    log_event(
        "info",
        "interview.turn",
        user_id=user.id,
        session_id=session_id,
        event_type="interview.turn",
        extra={"audio_bytes": len(audio), "content_type": request.headers.get("content-type")},
    )
    return processor.process_turn(session_id, audio)
