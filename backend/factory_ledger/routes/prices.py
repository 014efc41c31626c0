# Overview: Flask API route listing the price offers a role may use.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import StockLedgerError, ValidationError
from ..models.sales import SALES_CHANNELS
from ..services import pricing_service
from ..validation import coerce_int
from ..decorators import require_actor, require_permission


prices_bp = Blueprint("prices", __name__, url_prefix="/api/prices")


@prices_bp.get("/available")
@require_actor
@require_permission("VIEW_PRICES")
def available_prices_route():
    """
    Eligible prices for the acting role in a channel, cheapest first.

    Query: channel (required), product_id
    """
    try:
        channel = (request.args.get("channel") or "").strip().upper()
        if channel not in SALES_CHANNELS:
            raise ValidationError(
                "channel must be FACTORY or FIELD",
                details={"field": "channel", "allowed": list(SALES_CHANNELS)},
            )
        prices = pricing_service.available_prices(
            g.auth.role,
            channel,
            product_id=coerce_int(request.args.get("product_id"), "product_id", required=False),
        )
        return jsonify({"prices": [p.to_dict() for p in prices]}), 200

    except StockLedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list available prices")
        return jsonify({"error": "Internal server error"}), 500
