# Overview: Pytest coverage for remote-ledger sagas: confirm, compensate, unknown outcome and recovery.

"""
Remote Ledger Saga Tests

The ledger runs behind an httpx.MockTransport backed by FakeLedger, which
can be told to refuse, to time out before or after applying an entry, or
to be unreachable for lookups. The last section runs the same flows against
the real /api/ledger blueprint through httpx.WSGITransport.
"""

import json

import httpx
import pytest

from conftest import advance, budget_cents, load_request, on_hand, place
from replenish.errors import ConcurrentModification, InsufficientBudget, InvalidTransition, StorageFailure
from replenish.extensions import db
from replenish.models import LedgerTransaction, ProductRequest, SagaLog
from replenish.models.ledger import DEBIT_ORDER
from replenish.models.sagas import SAGA_COMPENSATED, SAGA_COMPLETED, SAGA_STARTED
from replenish.services import ledger_service, order_service, saga_service
from replenish.services.concurrency import unit_of_work
from replenish.services.ledger_client import RemoteLedgerClient


class FakeLedger:
    """Minimal in-memory ledger speaking the /api/ledger JSON contract."""

    def __init__(self, budget_cents=100000):
        self.budget_cents = budget_cents
        self.rows = []
        self.refuse_next = None      # error code to answer the next POST with
        self.timeout_before = False  # drop the next POST without applying it
        self.timeout_after = False   # apply the next POST, then time out
        self.lookups_down = False

    def balance_effect(self, kind, amount):
        return -amount if kind == "deduct" else amount

    def find(self, key):
        return next((row for row in self.rows if row["idempotency_key"] == key), None)

    def apply(self, kind, payload):
        direction = "DEBIT" if kind == "deduct" else "CREDIT"
        existing = self.find(payload["idempotency_key"])
        if existing is not None:
            return existing
        tx_type = {"deduct": "DEBIT_ORDER", "profit": "CREDIT_DELIVERY_PROFIT"}.get(kind) or payload["type"]
        self.budget_cents += self.balance_effect(kind, payload["amount_cents"])
        row = {
            "id": len(self.rows) + 1,
            "type": tx_type,
            "direction": direction,
            "amount_cents": payload["amount_cents"],
            "request_id": payload["request_id"],
            "actor": payload["actor"],
            "balance_after_cents": self.budget_cents,
            "idempotency_key": payload["idempotency_key"],
        }
        self.rows.append(row)
        return row

    def account(self):
        return {"available_budget_cents": self.budget_cents}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path

        if request.method == "GET" and path == "/api/ledger/transactions":
            if self.lookups_down:
                raise httpx.ConnectError("ledger unreachable", request=request)
            row = self.find(request.url.params["idempotency_key"])
            rows = [row] if row is not None else []
            return httpx.Response(200, json={"transactions": rows, "count": len(rows)})

        if request.method == "GET" and path == "/api/ledger/account":
            return httpx.Response(200, json={"account": self.account()})

        kind = path.rsplit("/", 1)[-1]
        payload = json.loads(request.content)

        if self.timeout_before:
            self.timeout_before = False
            raise httpx.ReadTimeout("ledger timed out", request=request)
        if self.refuse_next:
            code, self.refuse_next = self.refuse_next, None
            return httpx.Response(400, json={"error": "Refused by ledger", "code": code})
        if kind == "deduct" and payload["amount_cents"] > self.budget_cents:
            return httpx.Response(400, json={"error": "Insufficient budget", "code": "InsufficientBudget"})

        row = self.apply(kind, payload)
        if self.timeout_after:
            self.timeout_after = False
            raise httpx.ReadTimeout("ledger timed out", request=request)
        return httpx.Response(201, json={"transaction": row, "account": self.account()})


@pytest.fixture
def ledger(app, db_session):
    fake = FakeLedger()
    app.config["LEDGER_MODE"] = "remote"
    app.extensions["ledger_client"] = RemoteLedgerClient("http://ledger", transport=httpx.MockTransport(fake))
    yield fake
    app.extensions.pop("ledger_client", None)


def saga_rows(request_id=None):
    q = db.session.query(SagaLog)
    if request_id is not None:
        q = q.filter_by(request_id=request_id)
    return q.order_by(SagaLog.id.asc()).all()


class TestPlaceOrder:
    def test_confirmed(self, ledger, product):
        rid = place(product.id, 10)

        req = load_request(rid)
        assert req.status == "Pending"
        assert req.saga_id is None
        assert ledger.budget_cents == 95000
        assert [s.status for s in saga_rows(rid)] == [SAGA_COMPLETED]

    def test_refused_removes_request(self, ledger, product):
        ledger.budget_cents = 100

        with pytest.raises(InsufficientBudget):
            place(product.id, 10)

        assert db.session.query(ProductRequest).count() == 0
        (saga,) = saga_rows()
        assert saga.status == SAGA_COMPENSATED
        assert "Insufficient budget" in saga.error

    def test_timeout_after_apply_is_confirmed_by_lookup(self, ledger, product):
        ledger.timeout_after = True

        rid = place(product.id, 2)

        assert load_request(rid).saga_id is None
        assert ledger.budget_cents == 99000
        assert saga_rows(rid)[0].status == SAGA_COMPLETED

    def test_saga_write_failure_is_storage_failure(self, ledger, product, monkeypatch):
        monkeypatch.setattr(saga_service, "_new_idempotency_key", lambda: "saga-fixed")
        place(product.id, 1)

        with pytest.raises(StorageFailure):
            place(product.id, 2)

        assert db.session.query(ProductRequest).count() == 1
        assert len(saga_rows()) == 1
        assert len(ledger.rows) == 1


class TestTransitions:
    def test_transition_without_ledger_effect_needs_no_saga(self, ledger, product):
        rid = place(product.id, 3)
        result = order_service.execute_transition(rid, "approve", actor="bob")

        assert result["new_status"] == "Approved"
        assert on_hand(product.id) == 3
        assert len(saga_rows(rid)) == 1

    def test_deliver_confirmed(self, ledger, product):
        rid = place(product.id, 4)
        advance(rid, "approve", "mark_ready")

        result = order_service.execute_transition(rid, "deliver", actor="carol")

        assert result["new_status"] == "SoldOut"
        assert result["ledger_balance_after_cents"] == 100000 - 2000 + 3000
        assert on_hand(product.id) == 0
        assert load_request(rid).saga_id is None

    def test_refused_credit_restores_request_and_stock(self, ledger, product):
        rid = place(product.id, 4)
        advance(rid, "approve")
        ledger.refuse_next = "InvalidTransition"

        with pytest.raises(InvalidTransition):
            order_service.execute_transition(rid, "cancel", actor="bob", notes="recall")

        req = load_request(rid)
        assert req.status == "Approved"
        assert req.saga_id is None
        assert "[CANCELLED]" not in req.notes
        assert on_hand(product.id) == 4
        assert saga_rows(rid)[-1].status == SAGA_COMPENSATED

    def test_timeout_before_apply_is_compensated(self, ledger, product):
        rid = place(product.id, 4)
        advance(rid, "approve", "mark_ready")
        ledger.timeout_before = True
        balance = ledger.budget_cents

        with pytest.raises(StorageFailure):
            order_service.execute_transition(rid, "deliver", actor="carol")

        req = load_request(rid)
        assert req.status == "ReadyForShipment"
        assert req.received_at is None
        assert on_hand(product.id) == 4
        assert ledger.budget_cents == balance

    def test_delete_confirmed(self, ledger, product):
        rid = place(product.id, 5)

        result = order_service.delete_request(rid, actor="alice")

        assert result["deleted"] is True
        assert load_request(rid) is None
        assert ledger.budget_cents == 100000
        assert [r["type"] for r in ledger.rows] == ["DEBIT_ORDER", "CREDIT_DELETED"]


class TestUnknownOutcome:
    def _stuck_delivery(self, ledger, product, *, applied):
        rid = place(product.id, 4)
        advance(rid, "approve", "mark_ready")
        ledger.lookups_down = True
        if applied:
            ledger.timeout_after = True
        else:
            ledger.timeout_before = True

        with pytest.raises(StorageFailure):
            order_service.execute_transition(rid, "deliver", actor="carol")
        return rid

    def test_reservation_is_kept_and_locked(self, ledger, product):
        rid = self._stuck_delivery(ledger, product, applied=False)

        req = load_request(rid)
        assert req.status == "SoldOut"
        assert req.saga_id is not None
        assert req.to_dict()["in_flight"] is True
        assert saga_rows(rid)[-1].status == SAGA_STARTED

        with pytest.raises(ConcurrentModification):
            order_service.execute_transition(rid, "deliver", actor="carol")

    def test_recovery_leaves_saga_while_ledger_is_down(self, ledger, product):
        rid = self._stuck_delivery(ledger, product, applied=False)

        summary = saga_service.recover_incomplete_sagas(older_than_seconds=0)

        assert summary["unresolved"] == [saga_rows(rid)[-1].id]
        assert load_request(rid).saga_id is not None

    def test_recovery_compensates_unapplied_entry(self, ledger, product):
        rid = self._stuck_delivery(ledger, product, applied=False)
        ledger.lookups_down = False

        summary = saga_service.recover_incomplete_sagas(older_than_seconds=0)

        assert len(summary["compensated"]) == 1
        req = load_request(rid)
        assert req.status == "ReadyForShipment"
        assert req.saga_id is None
        assert on_hand(product.id) == 4

    def test_recovery_completes_applied_entry(self, ledger, product):
        rid = self._stuck_delivery(ledger, product, applied=True)
        ledger.lookups_down = False

        summary = saga_service.recover_incomplete_sagas(older_than_seconds=0)

        assert len(summary["completed"]) == 1
        req = load_request(rid)
        assert req.status == "SoldOut"
        assert req.saga_id is None
        assert on_hand(product.id) == 0
        assert ledger.budget_cents == 101000

    def test_recovery_leaves_saga_when_entry_does_not_match(self, ledger, product):
        rid = self._stuck_delivery(ledger, product, applied=True)
        ledger.lookups_down = False
        ledger.rows[-1]["amount_cents"] += 1

        summary = saga_service.recover_incomplete_sagas(older_than_seconds=0)

        assert summary["unresolved"] == [saga_rows(rid)[-1].id]
        assert load_request(rid).saga_id is not None

    def test_cli_lists_started_sagas(self, app, ledger, product):
        rid = self._stuck_delivery(ledger, product, applied=False)

        result = app.test_cli_runner().invoke(args=["ledger", "sagas", "--status", "started"])

        assert result.exit_code == 0, result.output
        assert f"request {rid}" in result.output
        assert "deliver" in result.output
        assert "STARTED" in result.output

    def test_recent_sagas_are_not_touched(self, ledger, product):
        self._stuck_delivery(ledger, product, applied=False)
        ledger.lookups_down = False

        summary = saga_service.recover_incomplete_sagas(older_than_seconds=3600)

        assert summary == {"completed": [], "compensated": [], "unresolved": []}


class TestRemoteAccount:
    def test_account_is_read_from_ledger(self, ledger, product):
        place(product.id, 1)
        assert order_service.get_account()["available_budget_cents"] == 99500


# =============================================================================
# AGAINST THE REAL /api/ledger ROUTES
# =============================================================================


class InterruptibleTransport(httpx.BaseTransport):
    """Wraps a transport and can drop a POST before or after it reaches the ledger."""

    def __init__(self, inner: httpx.BaseTransport):
        self.inner = inner
        self.timeout_before = False
        self.timeout_after = False
        self.lookups_down = False

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET" and self.lookups_down:
            raise httpx.ConnectError("ledger unreachable", request=request)
        if request.method == "POST" and self.timeout_before:
            self.timeout_before = False
            raise httpx.ReadTimeout("ledger timed out", request=request)

        response = self.inner.handle_request(request)
        if request.method == "POST" and self.timeout_after:
            self.timeout_after = False
            response.read()
            raise httpx.ReadTimeout("ledger timed out", request=request)
        return response


@pytest.fixture
def wsgi_ledger(app, db_session):
    """Remote mode whose ledger is this app's own blueprint, reached over WSGI."""
    transport = InterruptibleTransport(httpx.WSGITransport(app=app))
    app.config["LEDGER_MODE"] = "remote"
    app.extensions["ledger_client"] = RemoteLedgerClient("http://ledger.local", transport=transport)
    yield transport
    app.extensions.pop("ledger_client", None)


def debit_rows(request_id):
    db.session.expire_all()
    return (
        db.session.query(LedgerTransaction)
        .filter_by(request_id=request_id, type=DEBIT_ORDER)
        .order_by(LedgerTransaction.id.asc())
        .all()
    )


class TestAgainstLedgerRoutes:
    def test_confirmed_order_debits_budget(self, wsgi_ledger, product):
        rid = place(product.id, 10)

        assert budget_cents() == 95000
        (row,) = debit_rows(rid)
        (saga,) = saga_rows(rid)
        assert saga.status == SAGA_COMPLETED
        assert row.idempotency_key == saga.idempotency_key
        assert row.amount_cents == 5000

    def test_request_id_already_used_by_another_instance(self, wsgi_ledger, product):
        first = place(product.id, 2)
        with unit_of_work():
            ledger_service.deduct(9999, request_id=first + 1, actor="peer", description="Order at another site")

        second = place(product.id, 3)

        assert second == first + 1
        assert budget_cents() == 100000 - 1000 - 9999 - 1500
        assert [r.amount_cents for r in debit_rows(second)] == [9999, 1500]
        assert saga_rows(second)[0].status == SAGA_COMPLETED

    def test_refused_for_budget_removes_request(self, wsgi_ledger, product):
        with unit_of_work():
            ledger_service.adjust(actor="finance", reason="Freeze", delta_cents=-99900)

        with pytest.raises(InsufficientBudget):
            place(product.id, 10)

        assert db.session.query(ProductRequest).count() == 0
        (saga,) = saga_rows()
        assert saga.status == SAGA_COMPENSATED
        assert "Insufficient budget" in saga.error
        assert budget_cents() == 100

    def test_timeout_after_apply_is_confirmed_by_lookup(self, wsgi_ledger, product):
        wsgi_ledger.timeout_after = True

        rid = place(product.id, 2)

        assert load_request(rid).saga_id is None
        assert saga_rows(rid)[0].status == SAGA_COMPLETED
        assert len(debit_rows(rid)) == 1
        assert budget_cents() == 99000

    def test_timeout_before_apply_is_compensated(self, wsgi_ledger, product):
        wsgi_ledger.timeout_before = True

        with pytest.raises(StorageFailure):
            place(product.id, 2)

        assert db.session.query(ProductRequest).count() == 0
        assert saga_rows()[0].status == SAGA_COMPENSATED
        assert budget_cents() == 100000

    def test_unknown_outcome_is_recovered_later(self, wsgi_ledger, product):
        rid = place(product.id, 4)
        advance(rid, "approve", "mark_ready")
        wsgi_ledger.timeout_after = True
        wsgi_ledger.lookups_down = True

        with pytest.raises(StorageFailure):
            order_service.execute_transition(rid, "deliver", actor="carol")
        assert saga_rows(rid)[-1].status == SAGA_STARTED

        wsgi_ledger.lookups_down = False
        summary = saga_service.recover_incomplete_sagas(older_than_seconds=0)

        assert summary["completed"] == [saga_rows(rid)[-1].id]
        assert load_request(rid).status == "SoldOut"
        assert budget_cents() == 100000 - 2000 + 3000

    def test_delete_credits_back(self, wsgi_ledger, product):
        rid = place(product.id, 5)

        order_service.delete_request(rid, actor="alice")

        assert load_request(rid) is None
        assert budget_cents() == 100000
        assert ledger_service.request_net_effect(rid) == 0
        assert order_service.get_account()["available_budget_cents"] == 100000
