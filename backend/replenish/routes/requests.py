# backend/replenish/routes/requests.py
"""
Replenishment Request API Routes

- POST   /api/requests                                  - Place an order (Pending + budget debit)
- GET    /api/requests                                  - List requests (?status=&requested_by=&product_id=&limit=)
- GET    /api/requests/:id                              - One request with its allowed transitions
- POST   /api/requests/:id/transitions/:name            - approve | reject | cancel | mark_ready | abort | deliver
- DELETE /api/requests/:id                              - Delete a Pending request (budget restored)

Error bodies are {"error": message, "code": ErrorCode}; the HTTP status
follows the code (400 domain/validation, 404 unknown id, 409 conflict,
503 storage).
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import OrderError
from ..models import ProductRequest
from ..services import order_service, request_service
from ..services.lifecycle_service import allowed_transitions
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    coerce_int,
    enforce_rules_request,
    optional_text,
    parse_int_arg,
    validate_payload,
)


requests_bp = Blueprint("requests", __name__, url_prefix="/api/requests")

REQUEST_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"product_id", "requested_quantity", "requested_by", "notes", "warehouse_id"}),
    required_on_create=frozenset({"product_id", "requested_quantity", "requested_by"}),
)


@requests_bp.post("")
def place_order_route():
    """
    Place a replenishment order.

    Request body:
        {
            "product_id": 7,
            "requested_quantity": 10,
            "requested_by": "alice",
            "notes": "weekly top-up",       // optional
            "warehouse_id": 1               // optional
        }

    The unit cost is taken from the product's current price and the total
    is debited from the available budget in the same transaction.
    """
    try:
        payload = request.get_json(silent=True)
        patch = validate_payload(model=ProductRequest, payload=payload, policy=REQUEST_POLICY, partial=False)
        enforce_rules_request(patch)

        result = order_service.place_order(
            product_id=patch["product_id"],
            requested_quantity=patch["requested_quantity"],
            requested_by=patch["requested_by"],
            notes=patch.get("notes"),
            warehouse_id=patch.get("warehouse_id") or 1,
        )
        return jsonify(result), 201

    except (OrderError, ValidationError) as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to place order")
        return jsonify({"error": "Internal server error"}), 500


@requests_bp.get("")
def list_requests_route():
    try:
        limit = parse_int_arg(request.args.get("limit"), "limit", default=100, minimum=1, maximum=500)
        product_id = parse_int_arg(request.args.get("product_id"), "product_id")

        rows = request_service.list_requests(
            status=request.args.get("status"),
            requested_by=request.args.get("requested_by"),
            product_id=product_id,
            limit=limit,
        )
        return jsonify({"requests": [r.to_dict() for r in rows], "count": len(rows)}), 200

    except (OrderError, ValidationError) as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list requests")
        return jsonify({"error": "Internal server error"}), 500


@requests_bp.get("/<int:request_id>")
def get_request_route(request_id: int):
    try:
        req = request_service.get_request(request_id)
        return jsonify({
            "request": req.to_dict(include_product=True),
            "allowed_transitions": [] if req.saga_id is not None else allowed_transitions(req.status),
        }), 200

    except (OrderError, ValidationError) as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load request")
        return jsonify({"error": "Internal server error"}), 500


@requests_bp.post("/<int:request_id>/transitions/<string:transition>")
def transition_route(request_id: int, transition: str):
    """
    Execute a lifecycle transition.

    Request body:
        {
            "actor": "bob",
            "notes": "damaged on arrival",  // required for reject/abort, and cancel unless actor is "system"
            "expected_version": 3           // optional optimistic-concurrency token
        }

    Without expected_version, transient conflicts are retried automatically
    (repeating an applied transition is a no-op). With it, a mismatch is
    returned as 409 ConcurrentModification and nothing is applied.

    Response:
        {
            "request_id": 1,
            "old_status": "Pending",
            "new_status": "Approved",
            "noop": false,
            "inventory_quantity": 10,
            "ledger_balance_after": null,
            "version_id": 3,
            "request": {...}
        }
    """
    try:
        payload = request.get_json(silent=True) or {}
        if not isinstance(payload, dict):
            raise ValidationError("Invalid JSON payload")

        actor = optional_text(payload, "actor")
        notes = optional_text(payload, "notes")
        expected_version = payload.get("expected_version")

        if expected_version is None:
            result = order_service.execute_transition_with_retry(
                request_id, transition, actor=actor, notes=notes
            )
        else:
            result = order_service.execute_transition(
                request_id,
                transition,
                actor=actor,
                notes=notes,
                expected_version=coerce_int("expected_version", expected_version),
            )
        return jsonify(result), 200

    except (OrderError, ValidationError) as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to execute transition")
        return jsonify({"error": "Internal server error"}), 500


@requests_bp.delete("/<int:request_id>")
def delete_request_route(request_id: int):
    """Delete a Pending request. actor comes from the JSON body or ?actor=."""
    try:
        payload = request.get_json(silent=True) or {}
        actor = (payload.get("actor") if isinstance(payload, dict) else None) or request.args.get("actor")

        result = order_service.delete_request(request_id, actor=actor)
        return jsonify(result), 200

    except (OrderError, ValidationError) as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to delete request")
        return jsonify({"error": "Internal server error"}), 500
