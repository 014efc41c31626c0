# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

"""Sales API routes with permission enforcement"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import StockLedgerError
from ..services import sales_service
from ..validation import parse_sale_request
from ..decorators import require_actor, require_permission


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@require_actor
@require_permission("CREATE_SALE")
def create_sale_route():
    """
    Create a completed sale with its items and stock movements.

    Requires: CREATE_SALE permission, and the role must sell in the channel.
    """
    try:
        kwargs = parse_sale_request(request.get_json(silent=True))
        sale = sales_service.create_sale(g.auth, **kwargs)
        return jsonify({"sale": sale.to_dict()}), 201

    except StockLedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
@require_actor
@require_permission("VIEW_SALES")
def list_sales_route():
    try:
        sales = sales_service.list_sales(
            channel=request.args.get("channel"),
            status=request.args.get("status"),
            payment_status=request.args.get("payment_status"),
            limit=min(request.args.get("limit", 200, type=int), 500),
        )
        return jsonify({"sales": [s.to_dict(include_items=False) for s in sales]}), 200

    except StockLedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_actor
@require_permission("VIEW_SALES")
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
        return jsonify({"sale": sale.to_dict()}), 200

    except StockLedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/cancel")
@require_actor
@require_permission("CANCEL_SALE")
def cancel_sale_route(sale_id: int):
    """
    Cancel a completed sale; posts RETURN movements restoring stock.

    Requires: CANCEL_SALE permission
    """
    try:
        data = request.get_json(silent=True) or {}
        sale = sales_service.cancel_sale(sale_id, g.auth, reason=data.get("reason"))
        return jsonify({"sale": sale.to_dict()}), 200

    except StockLedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to cancel sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/mark-paid")
@require_actor
@require_permission("MARK_SALE_PAID")
def mark_paid_route(sale_id: int):
    try:
        sale = sales_service.mark_as_paid(sale_id, g.auth)
        return jsonify({"sale": sale.to_dict()}), 200

    except StockLedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to mark sale as paid")
        return jsonify({"error": "Internal server error"}), 500
