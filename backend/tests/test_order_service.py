# Overview: Pytest coverage for the orchestrator: end-to-end lifecycles, atomicity and concurrency.

"""
Order Orchestrator Tests

Each test drives requests through order_service and checks the three coupled
resources together: request status, inventory counter and ledger account.

Test Coverage:
- Delivery and rejection walkthroughs with exact balances
- Budget conservation for rejected / cancelled / deleted requests
- Delivery profit of +0.5 x total cost
- Inventory moves once in and once out
- Repeated transitions are no-ops
- Failed units of work leave nothing behind
- Optimistic-version conflicts
"""

import pytest
from sqlalchemy import text

from conftest import advance, budget_cents, load_request, on_hand, place, spent_cents
from replenish.errors import (
    ConcurrentModification,
    InsufficientBudget,
    InsufficientStock,
    InvalidTransition,
    MissingReason,
    NonPositiveAmount,
    NotFound,
)
from replenish.extensions import db
from replenish.models import LedgerTransaction, ProductRequest
from replenish.models.ledger import CREDIT_DELETED, CREDIT_DELIVERY_PROFIT, DEBIT_ORDER
from replenish.services import inventory_service, ledger_service, order_service
from replenish.services.concurrency import unit_of_work
from replenish.services.products_service import create_product


def ledger_rows() -> int:
    return db.session.query(LedgerTransaction).count()


class TestScenarios:
    def test_order_to_delivery(self, db_session, product):
        assert budget_cents() == 100000

        result = order_service.place_order(
            product_id=product.id, requested_quantity=10, requested_by="alice", notes="weekly top-up"
        )
        r1 = result["request"]["id"]
        assert result["request"]["total_cost_cents"] == 5000
        assert result["request"]["status"] == "Pending"
        assert result["ledger_balance_after_cents"] == 95000
        assert budget_cents() == 95000

        approved = order_service.execute_transition(r1, "approve", actor="bob")
        assert approved["new_status"] == "Approved"
        assert approved["inventory_quantity"] == 10
        assert on_hand(product.id) == 10

        ready = order_service.execute_transition(r1, "mark_ready", actor="bob")
        assert ready["new_status"] == "ReadyForShipment"
        assert ready["inventory_quantity"] is None

        delivered = order_service.execute_transition(r1, "deliver", actor="carol")
        assert delivered["new_status"] == "SoldOut"
        assert delivered["inventory_quantity"] == 0
        assert delivered["ledger_balance_after_cents"] == 102500
        assert budget_cents() == 102500

        req = load_request(r1)
        assert req.status == "SoldOut"
        assert req.approved_by == "bob"
        assert req.received_by == "carol"
        assert req.requested_at <= req.decided_at <= req.received_at

    def test_reject_then_approve_fails(self, db_session, cheap_product):
        r2 = place(cheap_product.id, 10)
        assert budget_cents() == 97000

        result = order_service.execute_transition(r2, "reject", actor="bob", notes="damaged")
        assert result["new_status"] == "Rejected"
        assert budget_cents() == 100000

        with pytest.raises(InvalidTransition) as exc_info:
            order_service.execute_transition(r2, "approve", actor="bob")
        assert exc_info.value.current == "Rejected"

        req = load_request(r2)
        assert req.notes.splitlines()[-1] == "[REJECTED] bob: damaged"


class TestLedgerLaws:
    @pytest.mark.parametrize("steps,notes,final", [
        (("reject",), "wrong item", "Rejected"),
        (("cancel",), "no longer needed", "Cancelled"),
        (("approve", "cancel"), "supplier recall", "Cancelled"),
        (("approve", "mark_ready", "abort", "cancel"), "customer withdrew", "Cancelled"),
    ])
    def test_conservation(self, db_session, product, steps, notes, final):
        before = budget_cents()
        spent_before = spent_cents()

        rid = place(product.id, 4)
        advance(rid, *steps, notes=notes)

        assert ledger_service.request_net_effect(rid) == 0
        assert budget_cents() == before
        assert spent_cents() == spent_before
        assert on_hand(product.id) == 0
        assert load_request(rid).status == final

    def test_conservation_on_delete(self, db_session, product):
        before = budget_cents()
        rid = place(product.id, 6)

        result = order_service.delete_request(rid, actor="alice")
        assert result["deleted"] is True
        assert budget_cents() == before
        assert ledger_service.request_net_effect(rid) == 0
        assert load_request(rid) is None

        credit = db.session.query(LedgerTransaction).filter_by(request_id=rid, type=CREDIT_DELETED).one()
        assert credit.amount_cents == 3000

    def test_profit_law(self, db_session, product):
        before = budget_cents()
        rid = place(product.id, 3)
        advance(rid, "approve", "mark_ready", "deliver")

        req = load_request(rid)
        assert ledger_service.request_net_effect(rid) == req.total_cost_cents // 2
        assert budget_cents() == before + 750

        profit = db.session.query(LedgerTransaction).filter_by(request_id=rid, type=CREDIT_DELIVERY_PROFIT).one()
        assert profit.amount_cents == 2250

    def test_replay_after_full_lifecycle(self, db_session, product, cheap_product):
        r1 = place(product.id, 2)
        r2 = place(cheap_product.id, 5)
        advance(r1, "approve", "mark_ready", "deliver")
        advance(r2, "reject", notes="late")

        assert ledger_service.replay_ledger()["ok"] is True


class TestInventoryMovement:
    def test_abort_does_not_touch_stock(self, db_session, product):
        rid = place(product.id, 5)
        advance(rid, "approve", "mark_ready")
        assert on_hand(product.id) == 5

        result = order_service.execute_transition(rid, "abort", actor="bob", notes="truck broke down")
        assert result["new_status"] == "Approved"
        assert on_hand(product.id) == 5

        advance(rid, "mark_ready", "deliver")
        assert on_hand(product.id) == 0

    def test_abort_keeps_decision_fields(self, db_session, product):
        rid = place(product.id, 5)
        advance(rid, "approve", actor="bob")
        decided_at = load_request(rid).decided_at
        advance(rid, "mark_ready", actor="dave")
        advance(rid, "abort", actor="dave", notes="recount")

        req = load_request(rid)
        assert req.approved_by == "bob"
        assert req.decided_at == decided_at
        assert req.notes.splitlines()[-1] == "[ABORTED] dave: recount"

    def test_cancel_approved_fails_when_stock_consumed(self, db_session, product):
        rid = place(product.id, 5)
        advance(rid, "approve")
        with unit_of_work():
            inventory_service.adjust_stock(product.id, -3)

        before = budget_cents()
        rows = ledger_rows()
        with pytest.raises(InsufficientStock):
            order_service.execute_transition(rid, "cancel", actor="bob", notes="too late")

        assert load_request(rid).status == "Approved"
        assert on_hand(product.id) == 2
        assert budget_cents() == before
        assert ledger_rows() == rows


class TestIdempotence:
    def test_second_approve_is_noop(self, db_session, product):
        rid = place(product.id, 10)
        first = order_service.execute_transition(rid, "approve", actor="bob")
        rows = ledger_rows()
        version = load_request(rid).version_id

        second = order_service.execute_transition(rid, "approve", actor="bob")

        assert first["noop"] is False
        assert second["noop"] is True
        assert second["new_status"] == "Approved"
        assert on_hand(product.id) == 10
        assert ledger_rows() == rows
        assert load_request(rid).version_id == version

    def test_second_deliver_is_noop(self, db_session, product):
        rid = place(product.id, 2)
        advance(rid, "approve", "mark_ready", "deliver")
        balance = budget_cents()

        result = order_service.execute_transition(rid, "deliver", actor="carol")
        assert result["noop"] is True
        assert budget_cents() == balance
        assert on_hand(product.id) == 0

    def test_notes_only_grow(self, db_session, product):
        rid = place(product.id, 1, notes="first line")
        advance(rid, "approve", "mark_ready")
        lines = load_request(rid).notes.splitlines()
        assert lines == ["first line", "[APPROVED] bob", "[READY] bob"]


class TestFailuresLeaveNothingBehind:
    def test_place_order_over_budget(self, db_session, product):
        expensive = create_product(sku="CRANE", name="Crane", unit_price_cents=60000)
        db_session.commit()

        rid = place(expensive.id, 1)
        rows = ledger_rows()
        with pytest.raises(InsufficientBudget):
            place(expensive.id, 1)

        assert db.session.query(ProductRequest).count() == 1
        assert ledger_rows() == rows
        assert budget_cents() == 40000
        assert load_request(rid).status == "Pending"

    def test_place_order_validation(self, db_session, product):
        with pytest.raises(NonPositiveAmount):
            place(product.id, 0)
        with pytest.raises(MissingReason):
            place(product.id, 1, actor=" ")
        with pytest.raises(NotFound):
            place(999999, 1)
        assert db.session.query(ProductRequest).count() == 0

    def test_deliver_without_stock_rolls_back(self, db_session, product):
        rid = place(product.id, 10)
        advance(rid, "approve", "mark_ready")
        with unit_of_work():
            inventory_service.adjust_stock(product.id, -5)

        before = budget_cents()
        rows = ledger_rows()
        with pytest.raises(InsufficientStock):
            order_service.execute_transition(rid, "deliver", actor="carol")

        req = load_request(rid)
        assert req.status == "ReadyForShipment"
        assert req.received_at is None
        assert on_hand(product.id) == 5
        assert budget_cents() == before
        assert ledger_rows() == rows

    def test_missing_reason_changes_nothing(self, db_session, product):
        rid = place(product.id, 1)
        with pytest.raises(MissingReason):
            order_service.execute_transition(rid, "reject", actor="bob")
        assert load_request(rid).status == "Pending"

    def test_delete_only_pending(self, db_session, product):
        rid = place(product.id, 1)
        advance(rid, "approve")
        with pytest.raises(InvalidTransition):
            order_service.delete_request(rid, actor="alice")
        assert load_request(rid).status == "Approved"

    def test_unknown_request(self, db_session):
        with pytest.raises(NotFound):
            order_service.execute_transition(424242, "approve", actor="bob")


class TestConcurrency:
    def test_expected_version_mismatch(self, db_session, product):
        rid = place(product.id, 3)
        version = load_request(rid).version_id

        with pytest.raises(ConcurrentModification):
            order_service.execute_transition(rid, "approve", actor="bob", expected_version=version + 1)

        assert load_request(rid).status == "Pending"
        assert on_hand(product.id) == 0

        result = order_service.execute_transition(rid, "approve", actor="bob", expected_version=version)
        assert result["new_status"] == "Approved"
        assert result["version_id"] > version

    def test_concurrent_writer_rolls_back_stock_and_ledger(self, db_session, product, monkeypatch):
        rid = place(product.id, 4)
        advance(rid, "approve")
        version = load_request(rid).version_id
        before = budget_cents()
        rows = ledger_rows()

        original = inventory_service.adjust_stock

        def racing_adjust(product_id, delta, **kwargs):
            item = original(product_id, delta, **kwargs)
            # another transaction commits a change to the same request meanwhile
            db.session.execute(
                text("UPDATE product_requests SET version_id = version_id + 1 WHERE id = :id"), {"id": rid}
            )
            return item

        monkeypatch.setattr(inventory_service, "adjust_stock", racing_adjust)

        with pytest.raises(ConcurrentModification):
            order_service.execute_transition(rid, "cancel", actor="bob", notes="supplier recall")

        req = load_request(rid)
        assert req.status == "Approved"
        assert req.version_id == version
        assert budget_cents() == before
        assert ledger_rows() == rows
        assert on_hand(product.id) == 4

    def test_retry_wrapper_recovers_from_transient_conflict(self, db_session, product, monkeypatch):
        rid = place(product.id, 2)
        original = inventory_service.adjust_stock
        calls = {"n": 0}

        def flaky_adjust(product_id, delta, **kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                raise ConcurrentModification("counter changed underneath")
            return original(product_id, delta, **kwargs)

        monkeypatch.setattr(inventory_service, "adjust_stock", flaky_adjust)

        result = order_service.execute_transition_with_retry(rid, "approve", actor="bob")
        assert result["new_status"] == "Approved"
        assert calls["n"] == 2
        assert on_hand(product.id) == 2

    def test_in_flight_request_is_locked(self, db_session, product):
        rid = place(product.id, 2)
        db.session.execute(text("UPDATE product_requests SET saga_id = 99 WHERE id = :id"), {"id": rid})
        db.session.commit()

        with pytest.raises(ConcurrentModification):
            order_service.execute_transition(rid, "approve", actor="bob")
        with pytest.raises(ConcurrentModification):
            order_service.delete_request(rid, actor="alice")


class TestAccountView:
    def test_get_account(self, db_session, product):
        place(product.id, 2)
        account = order_service.get_account()
        assert account["available_budget"] == "990.00"
        assert account["total_spent"] == "10.00"
        assert account["current_revenue"] == "1000.00"
        assert account["last_updated"].endswith("Z")

    def test_debit_is_written_with_request(self, db_session, product):
        rid = place(product.id, 2)
        debit = db.session.query(LedgerTransaction).filter_by(request_id=rid).one()
        assert debit.type == DEBIT_ORDER
        assert debit.amount_cents == 1000
        assert debit.actor == "alice"
