# test_table_sessions.py
import pytest
from decimal import Decimal

from tableside.config import settings
from tableside.errors import ConflictError, ValidationError
from tableside.models.core import AuditLog, DiningTable, KotTicket, OrderType, TableSession, TableStatus
from tableside.services import kot, orders, shifts, tables
from tableside.services.orders import NewItem
from tableside.services.status import open_session_for, recompute_table_status


@pytest.mark.parametrize("current, has_session, kot_sent, billed, expected", [
    (TableStatus.AVAILABLE, False, False, False, TableStatus.AVAILABLE),
    (TableStatus.OCCUPIED, True, False, False, TableStatus.OCCUPIED),
    (TableStatus.OCCUPIED, True, True, False, TableStatus.RUNNING),
    (TableStatus.RUNNING, True, True, True, TableStatus.BILLING),
    (TableStatus.BILLING, False, True, True, TableStatus.AVAILABLE),
    (TableStatus.CLEANING, False, False, False, TableStatus.CLEANING),
    (TableStatus.BLOCKED, False, False, False, TableStatus.BLOCKED),
    (TableStatus.RESERVED, True, False, False, TableStatus.OCCUPIED),
])
def test_recompute_table_status(current, has_session, kot_sent, billed, expected):
    assert recompute_table_status(current, has_session, kot_sent, billed) == expected


def test_start_session_occupies_table(db, menu):
    s, t, effects = tables.start_session(db, menu.t1, 3, "captain-1")
    assert t.status == TableStatus.OCCUPIED
    assert s.closed_at is None and s.guest_count == 3 and s.floor_id == menu.floor_id
    assert [e.event for e in effects] == ["table:updated"]
    assert effects[0].rooms == (f"floor:{menu.outlet_id}:{menu.floor_id}", f"outlet:{menu.outlet_id}")


def test_second_session_on_same_table_conflicts(db, menu):
    tables.start_session(db, menu.t1, 2, "captain-1")
    with pytest.raises(ConflictError) as ei:
        tables.start_session(db, menu.t1, 2, "captain-2")
    assert ei.value.detail["status"] == "occupied"
    open_sessions = db.query(TableSession).filter(TableSession.table_id == menu.t1,
                                                  TableSession.closed_at.is_(None)).count()
    assert open_sessions == 1


def test_reserved_table_can_be_seated_but_blocked_cannot(db, menu):
    tables.set_status(db, menu.t1, TableStatus.RESERVED, "manager-1", "walk-in at 8")
    _, t, _ = tables.start_session(db, menu.t1, 2, "captain-1")
    assert t.status == TableStatus.OCCUPIED

    tables.set_status(db, menu.t2, TableStatus.BLOCKED, "manager-1")
    with pytest.raises(ConflictError) as ei:
        tables.start_session(db, menu.t2, 2, "captain-1")
    assert ei.value.detail["status"] == "blocked"


def test_end_session_is_idempotent(db, menu):
    tables.start_session(db, menu.t1, 2, "captain-1")
    t, effects = tables.end_session(db, menu.t1, "captain-1")
    assert t.status == TableStatus.AVAILABLE
    assert effects

    t, effects = tables.end_session(db, menu.t1, "captain-1")
    assert t.status == TableStatus.AVAILABLE
    assert effects == []


def test_end_session_keeps_cleaning_override(db, menu):
    tables.start_session(db, menu.t1, 2, "captain-1")
    tables.end_session(db, menu.t1, "captain-1")
    tables.set_status(db, menu.t1, TableStatus.CLEANING, "busser-1")
    t, _ = tables.end_session(db, menu.t1, "captain-1")
    assert t.status == TableStatus.CLEANING


def test_set_status_is_audited(db, menu):
    tables.set_status(db, menu.t3, TableStatus.BLOCKED, "manager-1", "broken chair")
    log = db.query(AuditLog).filter(AuditLog.entity_id == menu.t3).one()
    assert log.action == "STATUS_OVERRIDE" and log.reason == "broken chair"


def test_session_links_its_order(db, menu):
    s, _, _ = tables.start_session(db, menu.t1, 2, "captain-1")
    o, _ = orders.create_order(db, menu.outlet_id, OrderType.DINE_IN, "captain-1", table_id=menu.t1)
    db.refresh(s)
    assert s.order_id == o.id
    _, detail = tables.get_table(db, menu.t1)
    assert detail.id == s.id


def test_create_table_rejects_duplicate_code(db, menu):
    with pytest.raises(ConflictError):
        tables.create_table(db, menu.outlet_id, "T1", menu.floor_id)
    t = tables.create_table(db, menu.outlet_id, "P1", "patio", capacity=6)
    assert [x.code for x in tables.list_tables(db, menu.outlet_id, "patio")] == ["P1"]
    assert t.status == TableStatus.AVAILABLE


# ── Floor shifts ────────────────────────────────────────────────────────────
def test_required_floor_shift(db, menu, monkeypatch):
    monkeypatch.setattr(settings, "REQUIRE_FLOOR_SHIFT", True)
    with pytest.raises(ConflictError) as ei:
        tables.start_session(db, menu.t1, 2, "captain-1")
    assert ei.value.detail["floor_id"] == menu.floor_id

    sh = shifts.open_shift(db, menu.outlet_id, menu.floor_id, "cashier-1", 500)
    s, _, _ = tables.start_session(db, menu.t1, 2, "captain-1")
    assert s.shift_id == sh.id


def test_only_one_open_shift_per_floor(db, menu):
    shifts.open_shift(db, menu.outlet_id, menu.floor_id, "cashier-1")
    with pytest.raises(ConflictError):
        shifts.open_shift(db, menu.outlet_id, menu.floor_id, "cashier-2")


def test_close_shift_needs_floor_cleared(db, menu):
    sh = shifts.open_shift(db, menu.outlet_id, menu.floor_id, "cashier-1", 500)
    tables.start_session(db, menu.t1, 2, "captain-1")
    with pytest.raises(ConflictError) as ei:
        shifts.close_shift(db, sh.id, "cashier-1", actual_cash=500)
    assert ei.value.detail["open_sessions"] == 1

    tables.end_session(db, menu.t1, "captain-1")
    closed, mismatch = shifts.close_shift(db, sh.id, "cashier-1", actual_cash=480, note="short")
    assert closed.expected_cash == Decimal("500.00")
    assert mismatch == Decimal("-20.00")

    with pytest.raises(ConflictError):
        shifts.close_shift(db, sh.id, "cashier-1", actual_cash=480)


# ── Transfers ───────────────────────────────────────────────────────────────
def _running_order(db, menu, catalog, table):
    s, _, _ = tables.start_session(db, table, 2, "captain-1")
    o, _ = orders.create_order(db, menu.outlet_id, OrderType.DINE_IN, "captain-1", table_id=table)
    orders.add_items(db, catalog, o.id, [NewItem(menu.soda)], "captain-1")
    kot.send_kot(db, catalog, o.id, "captain-1")
    return s, o


def test_transfer_moves_order_and_session(db, menu, catalog):
    s, o = _running_order(db, menu, catalog, menu.t1)
    assert db.get(DiningTable, menu.t1).status == TableStatus.RUNNING

    order, src, dst, effects = tables.transfer_table(db, o.id, menu.t2, "captain-1")
    assert order.table_id == menu.t2
    assert (src.status, dst.status) == (TableStatus.AVAILABLE, TableStatus.RUNNING)
    assert open_session_for(db, menu.t1) is None
    assert open_session_for(db, menu.t2).id == s.id

    table_events = [e for e in effects if e.event == "table:updated"]
    assert [(e.payload["table_id"], e.payload["status"]) for e in table_events] == [
        (menu.t1, "available"), (menu.t2, "running")]
    assert table_events[1].payload["session_id"] == s.id
    assert effects[-1].event == "order:transferred" and effects[-1].payload["from_table"] == "T1"

    (ticket,) = db.query(KotTicket).filter(KotTicket.order_id == o.id).all()
    assert ticket.table_code == "T2"
    assert db.query(AuditLog).filter(AuditLog.entity_id == o.id, AuditLog.action == "TRANSFER").count() == 1


def test_transfer_rejects_busy_or_same_table(db, menu, catalog):
    _, o = _running_order(db, menu, catalog, menu.t1)
    tables.start_session(db, menu.t2, 2, "captain-2")
    with pytest.raises(ConflictError) as ei:
        tables.transfer_table(db, o.id, menu.t2, "captain-1")
    assert ei.value.detail["status"] == "occupied"

    tables.set_status(db, menu.t3, TableStatus.BLOCKED, "manager-1")
    with pytest.raises(ConflictError):
        tables.transfer_table(db, o.id, menu.t3, "captain-1")
    with pytest.raises(ValidationError):
        tables.transfer_table(db, o.id, menu.t1, "captain-1")

    # nothing moved
    assert db.get(DiningTable, menu.t1).status == TableStatus.RUNNING
    db.refresh(o)
    assert o.table_id == menu.t1

    orders.cancel_order(db, catalog, o.id, "manager-1", "left")
    tables.set_status(db, menu.t3, TableStatus.AVAILABLE, "manager-1")
    with pytest.raises(ConflictError):
        tables.transfer_table(db, o.id, menu.t3, "captain-1")
