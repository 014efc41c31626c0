# Overview: Flask API routes for stock levels, movement history, and adjustments.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import StockLedgerError
from ..services import stock_service, supply_service
from ..validation import coerce_int, coerce_datetime, parse_adjustment
from ..decorators import require_actor, require_permission


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api")


@inventory_bp.get("/inventory/stock")
@require_actor
@require_permission("VIEW_INVENTORY")
def stock_levels_route():
    try:
        return jsonify({"products": stock_service.get_stock_levels()}), 200
    except Exception:
        current_app.logger.exception("Failed to read stock levels")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/inventory/movements")
@require_actor
@require_permission("VIEW_INVENTORY")
def movements_route():
    """
    Movement history, newest first.

    Query: product_id, type, start, end (ISO-8601), limit (max 1000)
    """
    try:
        movements = stock_service.list_movements(
            entity_id=coerce_int(request.args.get("product_id"), "product_id", required=False),
            movement_type=request.args.get("type") or None,
            start=coerce_datetime(request.args.get("start"), "start"),
            end=coerce_datetime(request.args.get("end"), "end"),
            limit=min(request.args.get("limit", 200, type=int), 1000),
        )
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200

    except StockLedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list movements")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/inventory/adjustments")
@require_actor
@require_permission("ADJUST_INVENTORY")
def adjust_route():
    try:
        data = parse_adjustment(request.get_json(silent=True))
        movement = stock_service.adjust_stock(
            g.auth, data["product_id"], data["quantity_delta"], note=data["note"]
        )
        return jsonify({"movement": movement.to_dict()}), 201

    except StockLedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/supplies/low-stock")
@require_actor
@require_permission("VIEW_INVENTORY")
def low_stock_supplies_route():
    try:
        return jsonify({"supplies": supply_service.get_low_stock_supplies()}), 200
    except Exception:
        current_app.logger.exception("Failed to read low-stock supplies")
        return jsonify({"error": "Internal server error"}), 500
