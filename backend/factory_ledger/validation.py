from __future__ import annotations

from datetime import date, datetime
from typing import Any

from .errors import ValidationError
from .models.sales import OFFLINE_CHANNEL, PAYMENT_CASH, PAYMENT_TRANSFER
from factory_ledger.time_utils import parse_iso_datetime, parse_iso_date


# Offline transactions cannot carry a due date, so deferred payment is online only
OFFLINE_PAYMENT_METHODS = (PAYMENT_CASH, PAYMENT_TRANSFER)

RESOLVE_APPROVE = "approve"
RESOLVE_REJECT = "reject"
RESOLVE_DECISIONS = (RESOLVE_APPROVE, RESOLVE_REJECT)


def require_object(payload: Any, name: str = "body") -> dict:
    if not isinstance(payload, dict):
        raise ValidationError(f"{name} must be a JSON object")
    return payload


def coerce_int(value: Any, field: str, *, required: bool = True, minimum: int | None = None) -> int | None:
    """
    Strict integer coercion for request fields.

    Rejects bools, floats, decimals and scientific notation. Digit strings
    are accepted since query strings and some clients send them.
    """
    if value is None or value == "":
        if required:
            raise ValidationError(f"{field} is required", details={"field": field})
        return None

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", details={"field": field})
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{field} must be a plain integer", details={"field": field})
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", details={"field": field})
    else:
        raise ValidationError(f"{field} must be an integer", details={"field": field})

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be at least {minimum}", details={"field": field})
    return result


def coerce_datetime(value: Any, field: str) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 datetime", details={"field": field})
        return dt
    raise ValidationError(f"{field} must be an ISO-8601 datetime", details={"field": field})


def coerce_date(value: Any, field: str) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return parse_iso_date(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 date", details={"field": field})
    raise ValidationError(f"{field} must be an ISO-8601 date", details={"field": field})


def coerce_bool(value: Any, field: str) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "1", "yes"):
        return True
    if isinstance(value, str) and value.strip().lower() in ("false", "0", "no", ""):
        return False
    if isinstance(value, int):
        return bool(value)
    raise ValidationError(f"{field} must be a boolean", details={"field": field})


def parse_items(raw: Any, field: str = "items") -> list[dict]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError(f"{field} must be a non-empty list", details={"field": field})
    items = []
    for index, item in enumerate(raw):
        item = require_object(item, f"{field}[{index}]")
        items.append({
            "product_id": coerce_int(item.get("product_id"), f"{field}[{index}].product_id"),
            "price_id": coerce_int(item.get("price_id"), f"{field}[{index}].price_id"),
            "quantity": coerce_int(item.get("quantity"), f"{field}[{index}].quantity", minimum=1),
        })
    return items


def parse_sale_request(payload: Any) -> dict:
    """Keyword arguments for sales_service.create_sale from a JSON body."""
    payload = require_object(payload)
    channel = payload.get("channel")
    if not channel:
        raise ValidationError("channel is required", details={"field": "channel"})
    payment_method = payload.get("payment_method")
    if not payment_method:
        raise ValidationError("payment_method is required", details={"field": "payment_method"})
    return {
        "channel": str(channel).strip().upper(),
        "items": parse_items(payload.get("items")),
        "payment_method": str(payment_method).strip().upper(),
        "customer_id": coerce_int(payload.get("customer_id"), "customer_id", required=False),
        "sold_at": coerce_datetime(payload.get("sold_at"), "sold_at"),
        "due_date": coerce_date(payload.get("due_date"), "due_date"),
        "is_new_kit_unit": coerce_bool(payload.get("is_new_kit_unit"), "is_new_kit_unit"),
    }


def parse_offline_transaction(tx: Any) -> dict:
    """
    Keyword arguments for create_sale from one offline transaction.

    The channel is always the offline one; local_id is the client's
    correlation id and is not passed on.
    """
    tx = require_object(tx, "transaction")
    local_id = tx.get("local_id")
    if local_id is None or str(local_id).strip() == "":
        raise ValidationError("local_id is required", details={"field": "local_id"})
    payment_method = str(tx.get("payment_method") or "").strip().upper()
    if payment_method not in OFFLINE_PAYMENT_METHODS:
        raise ValidationError(
            "Offline transactions must be paid in CASH or TRANSFER",
            details={"field": "payment_method", "allowed": list(OFFLINE_PAYMENT_METHODS)},
        )
    return {
        "channel": OFFLINE_CHANNEL,
        "items": parse_items(tx.get("items")),
        "payment_method": payment_method,
        "customer_id": coerce_int(tx.get("customer_id"), "customer_id", required=False),
        "sold_at": coerce_datetime(tx.get("sold_at"), "sold_at"),
        "is_new_kit_unit": coerce_bool(tx.get("is_new_kit_unit"), "is_new_kit_unit"),
    }


def parse_push_request(payload: Any) -> list:
    payload = require_object(payload)
    transactions = payload.get("transactions")
    if not isinstance(transactions, list) or not transactions:
        raise ValidationError("transactions must be a non-empty list", details={"field": "transactions"})
    return transactions


def parse_resolution(payload: Any) -> tuple[str, str | None]:
    payload = require_object(payload)
    decision = str(payload.get("decision") or "").strip().lower()
    if decision not in RESOLVE_DECISIONS:
        raise ValidationError(
            "decision must be approve or reject",
            details={"field": "decision", "allowed": list(RESOLVE_DECISIONS)},
        )
    note = payload.get("note")
    return decision, (str(note).strip() or None) if note is not None else None


def parse_adjustment(payload: Any) -> dict:
    payload = require_object(payload)
    delta = coerce_int(payload.get("quantity_delta"), "quantity_delta")
    if delta == 0:
        raise ValidationError("quantity_delta cannot be zero", details={"field": "quantity_delta"})
    return {
        "product_id": coerce_int(payload.get("product_id"), "product_id"),
        "quantity_delta": delta,
        "note": (payload.get("note") or None),
    }


def parse_production_request(payload: Any) -> dict:
    payload = require_object(payload)
    machine_on_at = coerce_datetime(payload.get("machine_on_at"), "machine_on_at")
    machine_off_at = coerce_datetime(payload.get("machine_off_at"), "machine_off_at")
    if machine_on_at is None or machine_off_at is None:
        raise ValidationError("machine_on_at and machine_off_at are required")
    return {
        "product_id": coerce_int(payload.get("product_id"), "product_id"),
        "quantity": coerce_int(payload.get("quantity"), "quantity", minimum=1),
        "machine_on_at": machine_on_at,
        "machine_off_at": machine_off_at,
        "notes": payload.get("notes"),
    }


def parse_purchase_items(raw_items: Any) -> list[dict]:
    if not isinstance(raw_items, (list, tuple)) or not raw_items:
        raise ValidationError("items must be a non-empty list", details={"field": "items"})
    items = []
    for index, item in enumerate(raw_items):
        item = require_object(item, f"items[{index}]")
        items.append({
            "supply_id": coerce_int(item.get("supply_id"), f"items[{index}].supply_id"),
            "quantity": coerce_int(item.get("quantity"), f"items[{index}].quantity", minimum=1),
            "price_per_unit_cents": coerce_int(
                item.get("price_per_unit_cents"), f"items[{index}].price_per_unit_cents", minimum=0
            ),
        })
    return items


def parse_purchase_request(payload: Any) -> dict:
    payload = require_object(payload)
    return {
        "supplier_name": payload.get("supplier_name"),
        "items": parse_purchase_items(payload.get("items")),
        "purchased_at": coerce_datetime(payload.get("purchased_at"), "purchased_at"),
        "notes": payload.get("notes"),
    }
