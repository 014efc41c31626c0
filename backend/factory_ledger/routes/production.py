# Overview: Flask API routes for production runs and raw-material purchases.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import StockLedgerError
from ..services import production_service, purchase_service
from ..validation import coerce_date, parse_production_request, parse_purchase_request
from ..decorators import require_actor, require_permission
from factory_ledger.time_utils import day_bounds, today


production_bp = Blueprint("production", __name__, url_prefix="/api")


@production_bp.post("/production")
@require_actor
@require_permission("RECORD_PRODUCTION")
def record_production_route():
    try:
        data = parse_production_request(request.get_json(silent=True))
        record = production_service.record_production(g.auth, **data)
        return jsonify({"production": record.to_dict()}), 201

    except StockLedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record production")
        return jsonify({"error": "Internal server error"}), 500


@production_bp.post("/purchases")
@require_actor
@require_permission("CREATE_PURCHASE")
def create_purchase_route():
    try:
        data = parse_purchase_request(request.get_json(silent=True))
        purchase = purchase_service.create_purchase(g.auth, **data)
        return jsonify({"purchase": purchase.to_dict()}), 201

    except StockLedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create purchase")
        return jsonify({"error": "Internal server error"}), 500


@production_bp.get("/production/summary")
@require_actor
@require_permission("VIEW_INVENTORY")
def production_summary_route():
    """Production totals per product for one day (query: date, default today)."""
    try:
        day = coerce_date(request.args.get("date"), "date") or today()
        start, end = day_bounds(day)
        summary = production_service.production_summary(start, end)
        summary["date"] = day.isoformat()
        return jsonify(summary), 200

    except StockLedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to build production summary")
        return jsonify({"error": "Internal server error"}), 500
