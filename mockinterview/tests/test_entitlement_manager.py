"""Entitlement manager: purchase, attempt reservation and attempt consumption."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import insert, select

from mockinterview.core.database import get_db_session, orders, interview_sessions, audit_events
from mockinterview.core.errors import ConflictError, NotFoundError, UnauthorizedError
from mockinterview.features.entitlements.repository import SqlEntitlementRepository
from mockinterview.features.entitlements.service import EntitlementManager, PackAction
from mockinterview.models.interview_session import SessionStatus


def insert_order(user_id, pack_id="devops-entry", *, used=0, reserved=0, total=2, amount=0, minutes_ago=60):
    order_id = str(uuid.uuid4())
    with get_db_session() as session:
        session.execute(
            insert(orders).values(
                id=order_id,
                user_id=user_id,
                pack_id=pack_id,
                amount=amount,
                status="PURCHASED",
                attempts_used=used,
                attempts_reserved=reserved,
                attempts_total=total,
                created_at=datetime.now(timezone.utc) - timedelta(minutes=minutes_ago),
            )
        )
    return order_id


def insert_session(user_id, pack_id="devops-entry", order_id=None, status="PENDING"):
    session_id = str(uuid.uuid4())
    with get_db_session() as session:
        session.execute(
            insert(interview_sessions).values(
                id=session_id,
                user_id=user_id,
                pack_id=pack_id,
                order_id=order_id,
                status=status,
                is_practice=False,
                created_at=datetime.now(timezone.utc),
            )
        )
    return session_id


def get_order(order_id):
    with get_db_session() as session:
        return session.execute(select(orders).where(orders.c.id == order_id)).first()


def assert_attempt_invariant(rows):
    for row in rows:
        assert 0 <= row.attempts_used <= row.attempts_total
        assert row.attempts_used + row.attempts_reserved <= row.attempts_total


@pytest.fixture
def manager():
    return EntitlementManager()


@pytest.fixture
def alice(make_user):
    return make_user()


# ---------------------------------------------------------------- purchase

def test_purchase_creates_order_and_pending_session(manager, alice, fetch_orders, fetch_sessions):
    result = manager.purchase(alice.id, "backend-senior")

    order_rows = fetch_orders(alice.id)
    assert len(order_rows) == 1
    order = order_rows[0]
    assert order.amount == 49
    assert order.status == "PURCHASED"
    assert order.attempts_used == 0
    assert order.attempts_total == 2

    session_rows = fetch_sessions(alice.id)
    assert len(session_rows) == 1
    assert session_rows[0].status == SessionStatus.PENDING.value
    assert session_rows[0].order_id == order.id

    assert result.created_order is True
    assert result.order_id == order.id
    assert result.session_id == session_rows[0].id
    assert result.next_path == f"/interview/{result.session_id}/start"


def test_purchase_twice_creates_independent_orders(manager, alice, fetch_orders):
    manager.purchase(alice.id, "sre")
    manager.purchase(alice.id, "sre")
    assert len(fetch_orders(alice.id)) == 2


def test_purchase_unknown_pack_raises_not_found(manager, alice, fetch_orders, fetch_sessions):
    with pytest.raises(NotFoundError):
        manager.purchase(alice.id, "no-such-pack")
    assert fetch_orders(alice.id) == []
    assert fetch_sessions(alice.id) == []


@pytest.mark.parametrize("user_id", [None, "", "user_ghost"])
def test_purchase_requires_existing_user(manager, user_id):
    with pytest.raises(UnauthorizedError):
        manager.purchase(user_id, "sre")


def test_purchase_rolls_back_order_when_session_insert_fails(manager, alice, fetch_orders, monkeypatch):
    def boom(session, interview):
        raise RuntimeError("insert failed")

    monkeypatch.setattr(SqlEntitlementRepository, "_insert_session", staticmethod(boom))
    with pytest.raises(RuntimeError):
        manager.purchase(alice.id, "sre")
    assert fetch_orders(alice.id) == []


def test_purchase_survives_audit_failure(alice, fetch_orders):
    def broken_sink(**kwargs):
        raise RuntimeError("audit store down")

    manager = EntitlementManager(audit_sink=broken_sink)
    result = manager.purchase(alice.id, "backend-senior")
    assert result.created_order is True
    assert len(fetch_orders(alice.id)) == 1


def test_purchase_writes_audit_event(manager, alice):
    result = manager.purchase(alice.id, "backend-senior")
    with get_db_session() as session:
        rows = session.execute(
            select(audit_events).where(audit_events.c.action == "interview.purchased")
        ).fetchall()
    assert len(rows) == 1
    meta = rows[0]._mapping["metadata"]
    assert rows[0].user_id == alice.id
    assert meta["pack_id"] == "backend-senior"
    assert meta["pack_title"] == "Backend Engineer - Senior"
    assert meta["amount"] == 49
    assert meta["order_id"] == result.order_id


# ------------------------------------------------------- start_new_attempt

def test_new_attempt_reuses_order_with_free_attempt(manager, alice, fetch_orders, fetch_sessions):
    first = manager.purchase(alice.id, "devops-entry")
    second = manager.start_new_attempt(alice.id, "devops-entry")

    assert second.created_order is False
    assert second.order_id == first.order_id
    assert second.session_id != first.session_id

    order_rows = fetch_orders(alice.id)
    assert len(order_rows) == 1
    assert order_rows[0].attempts_used == 0
    assert order_rows[0].attempts_reserved == 2
    assert len(fetch_sessions(alice.id)) == 2


def test_new_attempt_with_no_order_behaves_like_purchase(manager, alice, fetch_orders, fetch_sessions):
    result = manager.start_new_attempt(alice.id, "devops-entry")

    assert result.created_order is True
    order_rows = fetch_orders(alice.id)
    assert len(order_rows) == 1
    assert order_rows[0].attempts_used == 0
    assert order_rows[0].attempts_total == 2
    assert [s.status for s in fetch_sessions(alice.id)] == ["PENDING"]


def test_new_attempt_on_exhausted_order_purchases_again(manager, alice, fetch_orders):
    exhausted = insert_order(alice.id, used=2, total=2)

    result = manager.start_new_attempt(alice.id, "devops-entry")

    assert result.created_order is True
    assert result.order_id != exhausted
    assert len(fetch_orders(alice.id)) == 2
    assert get_order(exhausted).attempts_used == 2


def test_new_attempt_prefers_oldest_open_order(manager, alice):
    older = insert_order(alice.id, used=1, minutes_ago=120)
    insert_order(alice.id, used=0, minutes_ago=10)

    result = manager.start_new_attempt(alice.id, "devops-entry")
    assert result.order_id == older


def test_new_attempt_ignores_other_packs(manager, alice):
    insert_order(alice.id, pack_id="sre", used=0)
    result = manager.start_new_attempt(alice.id, "devops-entry")
    assert result.created_order is True


def test_reservation_on_full_order_returns_none(alice):
    repo = SqlEntitlementRepository()
    order_id = insert_order(alice.id, used=1, total=2)
    order = repo.list_orders(alice.id)[0]

    assert repo.reserve_attempt_and_create_session(order) is not None
    # Second caller read the same snapshot but the last attempt is gone
    assert repo.reserve_attempt_and_create_session(order) is None

    row = get_order(order_id)
    assert row.attempts_used + row.attempts_reserved == row.attempts_total


class StaleRepository(SqlEntitlementRepository):
    """Eligibility lookup frozen at an earlier snapshot, as seen by a racing request."""

    def __init__(self, snapshot):
        self.snapshot = snapshot

    def find_eligible_orders(self, user_id, pack_id):
        return list(self.snapshot)


def test_new_attempt_falls_back_to_purchase_when_last_attempt_is_lost(alice, fetch_orders):
    order_id = insert_order(alice.id, used=1, total=2)
    manager = EntitlementManager()
    snapshot = manager.repository.list_orders(alice.id)
    # A concurrent request takes and starts the last attempt after our lookup
    winner = manager.start_new_attempt(alice.id, "devops-entry")
    manager.consume_attempt(alice.id, winner.session_id)

    result = EntitlementManager(repository=StaleRepository(snapshot)).start_new_attempt(alice.id, "devops-entry")

    assert result.created_order is True
    assert result.order_id != order_id
    order_rows = fetch_orders(alice.id)
    assert len(order_rows) == 2
    assert_attempt_invariant(order_rows)
    assert get_order(order_id).attempts_used == 2


def test_concurrent_new_attempts_on_last_attempt_share_one_session(alice, fetch_orders, fetch_sessions):
    order_id = insert_order(alice.id, used=1, total=2)
    manager = EntitlementManager()
    snapshot = manager.repository.list_orders(alice.id)
    winner = manager.start_new_attempt(alice.id, "devops-entry")

    loser = EntitlementManager(repository=StaleRepository(snapshot)).start_new_attempt(alice.id, "devops-entry")

    assert winner.created_session is True
    assert loser.created_order is False
    assert loser.created_session is False
    assert loser.session_id == winner.session_id
    assert len(fetch_sessions(alice.id)) == 1
    order_rows = fetch_orders(alice.id)
    assert [r.id for r in order_rows] == [order_id]
    assert_attempt_invariant(order_rows)


def test_repeated_new_attempts_never_resell_unused_attempts(manager, alice, fetch_orders, fetch_sessions):
    first = manager.purchase(alice.id, "sre")
    second = manager.start_new_attempt(alice.id, "sre")
    third = manager.start_new_attempt(alice.id, "sre")
    fourth = manager.start_new_attempt(alice.id, "sre")

    order_rows = fetch_orders(alice.id)
    assert len(order_rows) == 1
    assert order_rows[0].attempts_used == 0
    assert order_rows[0].attempts_reserved == 2
    assert second.created_session is True
    assert third.created_order is False
    assert third.created_session is False
    assert third.session_id == first.session_id
    assert fourth.session_id == first.session_id
    assert len(fetch_sessions(alice.id)) == 2


def test_resumed_session_is_freed_once_started(manager, alice, fetch_orders):
    first = manager.purchase(alice.id, "sre")
    second = manager.start_new_attempt(alice.id, "sre")
    manager.consume_attempt(alice.id, first.session_id)

    # One attempt left, held by the second pending session
    again = manager.start_new_attempt(alice.id, "sre")

    assert again.created_order is False
    assert again.session_id == second.session_id
    assert len(fetch_orders(alice.id)) == 1


# --------------------------------------------------------- consume_attempt

def test_starting_session_consumes_reserved_attempt(manager, alice):
    result = manager.purchase(alice.id, "devops-entry")

    started = manager.consume_attempt(alice.id, result.session_id)

    assert started.status == SessionStatus.IN_PROGRESS
    assert started.started_at is not None
    row = get_order(result.order_id)
    assert row.attempts_used == 1
    assert row.attempts_reserved == 0


def test_practice_start_releases_reservation_without_using_attempt(manager, alice):
    result = manager.purchase(alice.id, "devops-entry")

    started = manager.consume_attempt(alice.id, result.session_id, is_practice=True)

    assert started.is_practice is True
    row = get_order(result.order_id)
    assert row.attempts_used == 0
    assert row.attempts_reserved == 0


def test_starting_session_twice_conflicts(manager, alice):
    result = manager.purchase(alice.id, "devops-entry")
    manager.consume_attempt(alice.id, result.session_id)

    with pytest.raises(ConflictError):
        manager.consume_attempt(alice.id, result.session_id)
    assert get_order(result.order_id).attempts_used == 1


def test_cannot_start_another_users_session(manager, alice, make_user):
    bob = make_user("user_bob", "bob@example.com", "Bob")
    result = manager.purchase(alice.id, "devops-entry")

    with pytest.raises(NotFoundError):
        manager.consume_attempt(bob.id, result.session_id)


def test_unlinked_session_consumes_oldest_open_order(manager, alice):
    oldest = insert_order(alice.id, used=0, minutes_ago=120)
    newer = insert_order(alice.id, used=0, minutes_ago=5)
    session_id = insert_session(alice.id)

    started = manager.consume_attempt(alice.id, session_id)

    assert started.order_id == oldest
    assert get_order(oldest).attempts_used == 1
    assert get_order(newer).attempts_used == 0
    with get_db_session() as session:
        linked = session.execute(
            select(interview_sessions.c.order_id).where(interview_sessions.c.id == session_id)
        ).scalar_one()
    assert linked == oldest


def test_unlinked_session_skips_order_filled_after_lookup(manager, alice, monkeypatch):
    full = insert_order(alice.id, used=2, total=2, minutes_ago=120)
    open_order = insert_order(alice.id, used=0, minutes_ago=5)
    session_id = insert_session(alice.id)
    # Lookup still lists the order a concurrent start already filled
    monkeypatch.setattr(
        SqlEntitlementRepository, "_open_order_ids", staticmethod(lambda session, interview: [full, open_order])
    )

    started = manager.consume_attempt(alice.id, session_id)

    assert started.order_id == open_order
    assert get_order(full).attempts_used == 2
    assert get_order(open_order).attempts_used == 1


def test_unlinked_session_conflicts_when_every_order_filled_after_lookup(manager, alice, monkeypatch):
    full = insert_order(alice.id, used=2, total=2)
    session_id = insert_session(alice.id)
    monkeypatch.setattr(SqlEntitlementRepository, "_open_order_ids", staticmethod(lambda session, interview: [full]))

    with pytest.raises(ConflictError):
        manager.consume_attempt(alice.id, session_id)

    assert get_order(full).attempts_used == 2
    interview = manager.get_owned_session(alice.id, session_id)
    assert interview.status == SessionStatus.PENDING
    assert interview.order_id is None


def test_attempt_accounting_holds_across_a_full_lifecycle(manager, alice, fetch_orders, fetch_sessions):
    first = manager.purchase(alice.id, "devops-entry")
    manager.consume_attempt(alice.id, first.session_id)
    second = manager.start_new_attempt(alice.id, "devops-entry")
    assert second.created_order is False
    manager.consume_attempt(alice.id, second.session_id, is_practice=True)
    third = manager.start_new_attempt(alice.id, "devops-entry")
    assert third.created_order is False
    manager.consume_attempt(alice.id, third.session_id)
    fourth = manager.start_new_attempt(alice.id, "devops-entry")
    assert fourth.created_order is True
    fifth = manager.start_new_attempt(alice.id, "devops-entry")
    assert fifth.order_id == fourth.order_id
    sixth = manager.start_new_attempt(alice.id, "devops-entry")
    assert sixth.created_session is False
    assert sixth.session_id == fourth.session_id

    order_rows = fetch_orders(alice.id)
    assert len(order_rows) == 2
    assert_attempt_invariant(order_rows)
    assert order_rows[0].attempts_used == 2
    assert order_rows[1].attempts_reserved == 2
    assert len(fetch_sessions(alice.id)) == 5


# -------------------------------------------------------- get_entitlements

def test_entitlements_report_remaining_attempts_per_pack(manager, alice):
    manager.purchase(alice.id, "sre")

    by_pack = {item.pack.id: item for item in manager.get_entitlements(alice.id)}

    assert set(by_pack) == {"devops-entry", "devops-senior", "sre", "backend-senior"}
    assert by_pack["sre"].action == PackAction.START_ATTEMPT
    assert by_pack["sre"].attempts_remaining == 2
    assert by_pack["devops-entry"].action == PackAction.PURCHASE
    assert by_pack["devops-entry"].attempts_remaining == 0


def test_entitlements_require_user(manager):
    with pytest.raises(UnauthorizedError):
        manager.get_entitlements("user_ghost")
