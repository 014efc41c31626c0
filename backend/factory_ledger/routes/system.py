# backend/factory_ledger/routes/system.py
"""
System health endpoint.

Reports database connectivity and the sizes of the two ledgers.
"""

import time
from flask import Blueprint, current_app, jsonify
from ..extensions import db
from ..models import InventoryMovement, SupplyMovement, SyncQueueEntry
from ..models.sync import QUEUE_CONFLICT
from factory_ledger.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        inventory_movements = db.session.query(InventoryMovement).count()
        supply_movements = db.session.query(SupplyMovement).count()
        open_conflicts = (
            db.session.query(SyncQueueEntry)
            .filter(SyncQueueEntry.status == QUEUE_CONFLICT)
            .count()
        )
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "inventory_movements": inventory_movements,
                "supply_movements": supply_movements,
                "open_sync_conflicts": open_conflicts,
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/api/health")
def health():
    database = check_database_health()
    status_code = 200 if database["status"] == "healthy" else 503
    return jsonify({
        "status": database["status"],
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database},
    }), status_code
