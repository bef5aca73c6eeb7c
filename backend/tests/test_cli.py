# Overview: Pytest coverage for the Flask CLI command groups.

from sqlalchemy import text

from conftest import load_request, place
from replenish.extensions import db
from replenish.models import InventoryItem, Product


class TestSystemInit:
    def test_init_with_demo_products(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=["system", "init", "--demo-products"])
        assert result.exit_code == 0, result.output
        assert "PASS Ledger account: budget 1000.00" in result.output
        assert "DONE Initialization complete" in result.output
        assert db.session.query(Product).count() == 3
        assert db.session.query(InventoryItem).count() == 3

    def test_init_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()
        runner.invoke(args=["system", "init", "--demo-products"])
        result = runner.invoke(args=["system", "init", "--demo-products"])

        assert result.exit_code == 0, result.output
        assert "Created product" not in result.output
        assert db.session.query(Product).count() == 3


class TestLedgerCommands:
    def test_account(self, app, product):
        place(product.id, 2)
        result = app.test_cli_runner().invoke(args=["ledger", "account"])
        assert result.exit_code == 0
        assert "Available budget: 990.00" in result.output

    def test_verify_passes(self, app, product):
        place(product.id, 2)
        result = app.test_cli_runner().invoke(args=["ledger", "verify"])
        assert result.exit_code == 0, result.output
        assert "PASS Ledger is consistent" in result.output

    def test_verify_fails_on_tampered_balance(self, app, product):
        place(product.id, 2)
        db.session.execute(text("UPDATE ledger_transactions SET balance_after_cents = 5 WHERE type = 'DEBIT_ORDER'"))
        db.session.commit()

        result = app.test_cli_runner().invoke(args=["ledger", "verify"])
        assert result.exit_code != 0
        assert "FAIL Transaction" in result.output

    def test_recover_sagas_with_nothing_pending(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["ledger", "recover-sagas", "--older-than", "0"])
        assert result.exit_code == 0
        assert "Unresolved:  0" in result.output


class TestRequestCommands:
    def test_transition(self, app, product):
        rid = place(product.id, 3)
        runner = app.test_cli_runner()

        result = runner.invoke(args=["requests", "transition", str(rid), "approve", "--actor", "bob"])
        assert result.exit_code == 0, result.output
        assert f"Request {rid}: Pending -> Approved" in result.output

        again = runner.invoke(args=["requests", "transition", str(rid), "approve", "--actor", "bob"])
        assert "(no-op)" in again.output
        assert load_request(rid).status == "Approved"

    def test_transition_error(self, app, product):
        rid = place(product.id, 3)
        result = app.test_cli_runner().invoke(
            args=["requests", "transition", str(rid), "reject", "--actor", "bob"]
        )
        assert result.exit_code != 0
        assert "MissingReason" in result.output


class TestInventoryCommands:
    def test_low_stock(self, app, product):
        result = app.test_cli_runner().invoke(args=["inventory", "low-stock"])
        assert result.exit_code == 0
        assert "M8 Bolt" in result.output
        assert "(min 5)" in result.output

    def test_low_stock_none(self, app, product):
        result = app.test_cli_runner().invoke(args=["inventory", "low-stock", "--threshold", "-1"])
        assert result.exit_code == 0
        assert "No low-stock items." in result.output
