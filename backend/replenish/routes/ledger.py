# Overview: Flask API routes for the budget ledger; reads, manual adjustment and the remote-ledger entry points.

from flask import Blueprint, request, jsonify, current_app

from ..errors import OrderError
from ..services import ledger_service
from ..services.concurrency import unit_of_work
from ..time_utils import parse_iso_datetime
from ..validation import (
    ValidationError,
    optional_text,
    parse_amount_cents,
    require_text,
)

"""
Money in responses: *_cents integers plus 2-decimal strings.
Money in requests: either "<field>_cents" (integer) or "<field>" (decimal string).

POST /deduct, /restore and /profit are what RemoteLedgerClient calls when
another instance runs with LEDGER_MODE=remote. They are idempotent per
"idempotency_key" (at most 64 characters); without one the key defaults to
the request id and direction, which only the owning instance may rely on.
"""

ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")

MAX_IDEMPOTENCY_KEY_LENGTH = 64


def _json_payload() -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


@ledger_bp.get("/account")
def get_account_route():
    try:
        with unit_of_work():
            account = ledger_service.ensure_account().to_dict()
        return jsonify({"account": account}), 200
    except OrderError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load ledger account")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.get("/transactions")
def list_transactions_route():
    """Newest first. ?limit= (default 50, max 500), ?request_id=, ?type=, ?idempotency_key=."""
    limit = request.args.get("limit", default=ledger_service.DEFAULT_TRANSACTION_LIMIT, type=int)
    request_id = request.args.get("request_id", type=int)
    tx_type = request.args.get("type")
    idempotency_key = request.args.get("idempotency_key")

    try:
        rows = ledger_service.list_transactions(
            limit, request_id=request_id, tx_type=tx_type, idempotency_key=idempotency_key
        )
        return jsonify({"transactions": [r.to_dict() for r in rows], "count": len(rows)}), 200
    except Exception:
        current_app.logger.exception("Failed to list ledger transactions")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.get("/statistics")
def statistics_route():
    try:
        with unit_of_work():
            stats = ledger_service.get_statistics()
        return jsonify(stats), 200
    except OrderError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to compute ledger statistics")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.get("/monthly-spending")
def monthly_spending_route():
    """?as_of=ISO-8601 picks the month (default: now)."""
    try:
        as_of = parse_iso_datetime(request.args.get("as_of"))
    except ValueError:
        return jsonify({"error": "as_of must be an ISO-8601 datetime"}), 400

    try:
        return jsonify(ledger_service.get_monthly_spending(as_of)), 200
    except Exception:
        current_app.logger.exception("Failed to compute monthly spending")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.get("/replay")
def replay_route():
    try:
        return jsonify(ledger_service.replay_ledger()), 200
    except Exception:
        current_app.logger.exception("Failed to replay ledger")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.put("/adjust")
def adjust_route():
    """
    Manual correction.

    Request body:
        {
            "actor": "finance",
            "reason": "Quarterly revenue update",
            "amount": "-250.00",                 // optional signed budget delta
            "new_current_revenue": "1600000.00"  // optional; budget shifts by the difference
        }
    """
    try:
        payload = _json_payload()
        actor = require_text(payload, "actor", max_length=50)
        reason = require_text(payload, "reason", max_length=255)
        delta = parse_amount_cents(payload, required=False, signed=True)
        new_revenue = parse_amount_cents(
            payload,
            cents_key="new_current_revenue_cents",
            decimal_key="new_current_revenue",
            required=False,
        )

        with unit_of_work():
            tx = ledger_service.adjust(
                actor=actor,
                reason=reason,
                delta_cents=delta,
                new_current_revenue_cents=new_revenue,
            )
            account = ledger_service.ensure_account().to_dict()

        return jsonify({"transaction": tx.to_dict(), "account": account}), 200

    except (OrderError, ValidationError) as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to adjust ledger")
        return jsonify({"error": "Internal server error"}), 500


def _entry_route(apply):
    try:
        payload = _json_payload()
        amount = parse_amount_cents(payload, signed=True)
        request_id = payload.get("request_id")
        if request_id is not None and (isinstance(request_id, bool) or not isinstance(request_id, int)):
            raise ValidationError("request_id must be an integer")
        idempotency_key = optional_text(payload, "idempotency_key")
        if idempotency_key is not None and len(idempotency_key) > MAX_IDEMPOTENCY_KEY_LENGTH:
            raise ValidationError(f"idempotency_key must be at most {MAX_IDEMPOTENCY_KEY_LENGTH} characters")

        with unit_of_work():
            tx = apply(
                amount,
                request_id=request_id,
                actor=optional_text(payload, "actor"),
                description=optional_text(payload, "description"),
                idempotency_key=idempotency_key,
                payload=payload,
            )
            account = ledger_service.ensure_account().to_dict()

        return jsonify({"transaction": tx.to_dict(), "account": account}), 201

    except (OrderError, ValidationError) as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record ledger entry")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.post("/deduct")
def deduct_route():
    return _entry_route(
        lambda amount, payload, **kw: ledger_service.deduct(amount, **kw)
    )


@ledger_bp.post("/restore")
def restore_route():
    def _restore(amount, payload, **kw):
        tx_type = str(payload.get("type") or "").strip().upper()
        if tx_type not in ledger_service.RESTORE_TYPES:
            raise ValidationError(
                f"type must be one of: {', '.join(sorted(ledger_service.RESTORE_TYPES))}"
            )
        return ledger_service.restore(amount, tx_type=tx_type, **kw)

    return _entry_route(_restore)


@ledger_bp.post("/profit")
def profit_route():
    return _entry_route(
        lambda amount, payload, **kw: ledger_service.add_profit(amount, **kw)
    )
