# Overview: Flask API routes for inventory counters; snapshots plus counter setup (levels and location).

from flask import Blueprint, request, jsonify, current_app

from ..errors import OrderError
from ..models import InventoryItem
from ..services import inventory_service
from ..services.concurrency import unit_of_work
from ..services.products_service import get_product
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_counter,
    parse_int_arg,
    validate_payload,
)

"""
Stock only moves through request transitions (approve in, deliver out).
This blueprint creates counters and edits their min/max levels and location;
quantity_in_stock is never writable here.
"""

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

COUNTER_CREATE_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"product_id", "warehouse_id", "location", "minimum_level", "maximum_level"}),
    required_on_create=frozenset({"product_id"}),
)

COUNTER_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"location", "minimum_level", "maximum_level"}),
)


@inventory_bp.get("/product/<int:product_id>")
def get_product_inventory_route(product_id: int):
    """
    Counter(s) for one product.

    ?warehouse_id=N returns that warehouse's counter (404 if none); otherwise
    every warehouse plus the total on hand.
    """
    try:
        product = get_product(product_id)
        warehouse_id = request.args.get("warehouse_id", type=int)

        if warehouse_id is not None:
            item = inventory_service.get_counter(product_id, warehouse_id=warehouse_id)
            return jsonify({"product": product.to_dict(), "counter": item.to_dict()}), 200

        counters = inventory_service.list_counters_for_product(product_id)
        return jsonify({
            "product": product.to_dict(),
            "counters": [c.to_dict() for c in counters],
            "quantity_in_stock": sum(c.quantity_in_stock for c in counters),
        }), 200

    except (OrderError, ValidationError) as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load inventory")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/low-stock")
def low_stock_route():
    """?threshold=N lists counters at or below N; without it each counter's minimum_level applies."""
    try:
        threshold = request.args.get("threshold", type=int)
        if threshold is None:
            threshold = current_app.config.get("LOW_STOCK_DEFAULT_THRESHOLD")
        limit = request.args.get("limit", default=500, type=int)
        limit = max(1, min(limit, 500))

        rows = inventory_service.list_low_stock(threshold, limit=limit)
        return jsonify({
            "threshold": threshold,
            "items": [
                {**item.to_dict(), "product_name": item.product.name if item.product else None}
                for item in rows
            ],
            "count": len(rows),
        }), 200

    except Exception:
        current_app.logger.exception("Failed to list low stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("")
def list_counters_route():
    """Every counter, by product then warehouse. ?warehouse_id=, ?limit= (default 500)."""
    try:
        warehouse_id = parse_int_arg(request.args.get("warehouse_id"), "warehouse_id")
        limit = parse_int_arg(request.args.get("limit"), "limit", default=500, minimum=1, maximum=500)

        rows = inventory_service.list_counters(warehouse_id=warehouse_id, limit=limit)
        return jsonify({"counters": [c.to_dict() for c in rows], "count": len(rows)}), 200

    except (OrderError, ValidationError) as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list inventory counters")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("")
def create_counter_route():
    """
    Set up a counter for a product in a warehouse.

    Request body:
        {
            "product_id": 7,
            "warehouse_id": 1,          // optional, default 1
            "location": "Aisle 4",      // optional
            "minimum_level": 5,         // optional, default 0
            "maximum_level": 100        // optional, 0 = no ceiling
        }

    201 with a new empty counter; 200 with the existing counter, unchanged,
    when the product already has one in that warehouse.
    """
    try:
        patch = validate_payload(
            model=InventoryItem,
            payload=request.get_json(silent=True),
            policy=COUNTER_CREATE_POLICY,
            partial=False,
        )
        enforce_rules_counter(patch)
        product_id = patch["product_id"]
        warehouse_id = patch.get("warehouse_id") or inventory_service.DEFAULT_WAREHOUSE_ID

        with unit_of_work():
            created = inventory_service.find_counter(product_id, warehouse_id=warehouse_id) is None
            item = inventory_service.ensure_counter(
                product_id,
                warehouse_id=warehouse_id,
                minimum_level=patch.get("minimum_level") or 0,
                maximum_level=patch.get("maximum_level") or 0,
                location=patch.get("location") or None,
            )
            counter = item.to_dict()

        return jsonify({"counter": counter, "created": created}), 201 if created else 200

    except (OrderError, ValidationError) as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create inventory counter")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.put("/<int:counter_id>")
def update_counter_route(counter_id: int):
    """Change location and/or min/max levels. An empty location clears it."""
    try:
        patch = validate_payload(
            model=InventoryItem,
            payload=request.get_json(silent=True),
            policy=COUNTER_UPDATE_POLICY,
            partial=True,
        )
        if not patch:
            raise ValidationError("Nothing to update")

        with unit_of_work():
            current = inventory_service.get_counter_by_id(counter_id)
            enforce_rules_counter({
                "minimum_level": current.minimum_level,
                "maximum_level": current.maximum_level,
                **patch,
            })
            item = inventory_service.update_levels(
                counter_id,
                minimum_level=patch.get("minimum_level"),
                maximum_level=patch.get("maximum_level"),
                location=patch.get("location"),
            )
            counter = item.to_dict()

        return jsonify({"counter": counter}), 200

    except (OrderError, ValidationError) as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update inventory counter")
        return jsonify({"error": "Internal server error"}), 500
