# Overview: Flask API routes for offline sync push and conflict review.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import StockLedgerError
from ..services import sync_service
from ..validation import parse_push_request, parse_resolution
from ..decorators import require_actor, require_permission


sync_bp = Blueprint("sync", __name__, url_prefix="/api/sync")


@sync_bp.post("/push")
@require_actor
@require_permission("PUSH_SYNC")
def push_route():
    """
    Replay a batch of offline transactions.

    Always 200 once the batch itself is well formed; each transaction has its
    own status (synced, conflict, failed) in request order.
    """
    try:
        transactions = parse_push_request(request.get_json(silent=True))
        results = sync_service.push_batch(transactions, g.auth)
        return jsonify({"results": results}), 200

    except StockLedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to push sync batch")
        return jsonify({"error": "Internal server error"}), 500


@sync_bp.get("/status")
@require_actor
def status_route():
    try:
        return jsonify(sync_service.sync_summary(g.auth)), 200
    except Exception:
        current_app.logger.exception("Failed to read sync status")
        return jsonify({"error": "Internal server error"}), 500


@sync_bp.get("/conflicts")
@require_actor
@require_permission("VIEW_SYNC")
def conflicts_route():
    try:
        entries = sync_service.list_conflicts(g.auth)
        return jsonify({"conflicts": [e.to_dict() for e in entries]}), 200

    except StockLedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list sync conflicts")
        return jsonify({"error": "Internal server error"}), 500


@sync_bp.post("/conflicts/<int:entry_id>/resolve")
@require_actor
@require_permission("RESOLVE_SYNC")
def resolve_route(entry_id: int):
    """Approve (forced replay) or reject one conflict entry."""
    try:
        decision, note = parse_resolution(request.get_json(silent=True))
        entry = sync_service.resolve_conflict(entry_id, decision, g.auth, note=note)
        return jsonify({"entry": entry.to_dict()}), 200

    except StockLedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to resolve sync conflict")
        return jsonify({"error": "Internal server error"}), 500
