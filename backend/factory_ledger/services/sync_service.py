# Overview: Offline sync processor; replays field transactions and queues stock conflicts.

"""
Offline Sync Rules

push_batch:
- Each transaction is its own unit of work. A failure in one never touches
  the others; results come back in request order.
- Pre-flight: if any product cannot cover the transaction's aggregated
  quantity, the sale is not attempted. The raw payload is stored as a
  SyncQueueEntry in "conflict" and the result is {"status": "conflict"}.
- Otherwise the sale is created through the orchestrator with
  sync_status=synced. A shortage discovered under lock (another writer won
  the race after the pre-flight) is routed to the queue the same way.

resolve_conflict:
- approve: replay the payload as the original submitter with stock checks
  bypassed (force); the entry becomes "synced" with the resulting sale.
- reject: the entry becomes "failed" with a note; no stock is touched.
- A replay that fails rolls back its sale unit; retry_count is then bumped
  in a separate commit and the entry becomes "failed" once it reaches
  SYNC_MAX_RETRIES.
- An approval that finds the entry already resolved by someone else fails
  with a ValidationError and does not count as a retry.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..errors import ConflictDetected, InsufficientStock, NotFound, StockLedgerError, ValidationError
from ..models import SyncQueueEntry, User
from ..models.sales import SYNC_SYNCED
from ..models.sync import (
    ACTION_CREATE_SALE,
    QUEUE_CONFLICT,
    QUEUE_FAILED,
    QUEUE_PENDING,
)
from ..permissions import auth_context_for_user
from ..validation import RESOLVE_REJECT, RESOLVE_DECISIONS, parse_offline_transaction
from .concurrency import RETRYABLE_WITH_INTEGRITY, lock_for_update, run_with_retry
from .sales_service import create_sale, normalize_items, stock_shortages


RESULT_SYNCED = "synced"
RESULT_CONFLICT = "conflict"
RESULT_FAILED = "failed"

CONFLICT_REASON = "Insufficient stock at sync time"


def _max_retries() -> int:
    return int(current_app.config.get("SYNC_MAX_RETRIES", 3))


def _check_stock_conflict(sale_kwargs: dict) -> None:
    """Raise ConflictDetected if current stock cannot cover the transaction."""
    short = stock_shortages(normalize_items(sale_kwargs["items"]))
    if short:
        raise ConflictDetected(CONFLICT_REASON, details={"items": short})


def _queue_conflict(tx: dict, ctx, reason: str) -> SyncQueueEntry:
    def _op():
        entry = SyncQueueEntry(
            user_id=ctx.user_id,
            action=ACTION_CREATE_SALE,
            local_id=str(tx.get("local_id")),
            payload=tx,
            status=QUEUE_CONFLICT,
            error_message=reason,
        )
        db.session.add(entry)
        db.session.commit()
        return entry

    return run_with_retry(_op)


def _process_transaction(tx, ctx) -> dict:
    local_id = tx.get("local_id") if isinstance(tx, dict) else None
    sale_kwargs = parse_offline_transaction(tx)

    try:
        _check_stock_conflict(sale_kwargs)
        sale = create_sale(ctx, sync_status=SYNC_SYNCED, **sale_kwargs)
    except (ConflictDetected, InsufficientStock) as exc:
        db.session.rollback()
        entry = _queue_conflict(tx, ctx, exc.message)
        current_app.logger.info(
            "sync conflict local_id=%s queue_id=%s user_id=%s", local_id, entry.id, ctx.user_id
        )
        return {
            "local_id": local_id,
            "status": RESULT_CONFLICT,
            "queue_id": entry.id,
            "error": exc.message,
            "details": exc.details,
        }

    current_app.logger.info(
        "sync synced local_id=%s sale_id=%s invoice=%s", local_id, sale.id, sale.invoice_number
    )
    return {
        "local_id": local_id,
        "status": RESULT_SYNCED,
        "sale_id": sale.id,
        "invoice_number": sale.invoice_number,
    }


def push_batch(transactions, ctx) -> list[dict]:
    """
    Replay a batch of offline transactions; one result per transaction.

    Errors are reported per transaction, never raised for the batch.
    """
    ctx.require("PUSH_SYNC")
    results = []
    for tx in transactions:
        local_id = tx.get("local_id") if isinstance(tx, dict) else None
        try:
            results.append(_process_transaction(tx, ctx))
        except StockLedgerError as exc:
            db.session.rollback()
            current_app.logger.warning("sync failed local_id=%s error=%s", local_id, exc.message)
            results.append({
                "local_id": local_id,
                "status": RESULT_FAILED,
                "error": exc.message,
                "error_code": exc.code,
            })
        except Exception:
            db.session.rollback()
            current_app.logger.exception("sync failed local_id=%s", local_id)
            results.append({
                "local_id": local_id,
                "status": RESULT_FAILED,
                "error": "Internal error while processing transaction",
                "error_code": "INTERNAL_ERROR",
            })
    return results


def list_conflicts(ctx) -> list[SyncQueueEntry]:
    """Entries awaiting admin review, newest first."""
    ctx.require("VIEW_SYNC")
    return (
        db.session.query(SyncQueueEntry)
        .filter(SyncQueueEntry.status == QUEUE_CONFLICT)
        .order_by(SyncQueueEntry.created_at.desc(), SyncQueueEntry.id.desc())
        .all()
    )


def sync_summary(ctx) -> dict:
    """Queue counts for the acting user's own submissions."""
    def _count(status):
        return (
            db.session.query(db.func.count(SyncQueueEntry.id))
            .filter(SyncQueueEntry.user_id == ctx.user_id, SyncQueueEntry.status == status)
            .scalar()
        ) or 0

    return {
        "pending": _count(QUEUE_PENDING),
        "conflicts": _count(QUEUE_CONFLICT),
        "failed": _count(QUEUE_FAILED),
    }


def _get_entry(entry_id: int) -> SyncQueueEntry:
    entry = db.session.get(SyncQueueEntry, entry_id)
    if entry is None:
        raise NotFound("Sync queue entry not found", details={"queue_id": entry_id})
    return entry


class ReplayFailed(Exception):
    """The approved payload itself failed to replay; wraps the business error."""

    def __init__(self, error: StockLedgerError):
        super().__init__(error.message)
        self.error = error


def _reject(entry_id: int, ctx, note: str | None) -> SyncQueueEntry:
    def _op():
        entry = lock_for_update(db.session.query(SyncQueueEntry).filter_by(id=entry_id)).first()
        if entry is None:
            raise NotFound("Sync queue entry not found", details={"queue_id": entry_id})
        _ensure_resolvable(entry)
        entry.status = QUEUE_FAILED
        entry.resolved_by_user_id = ctx.user_id
        entry.error_message = f"Rejected by user {ctx.user_id}" + (f": {note}" if note else "")
        db.session.commit()
        return entry

    return run_with_retry(_op)


def _approve(entry_id: int, ctx) -> SyncQueueEntry:
    def _op():
        entry = lock_for_update(db.session.query(SyncQueueEntry).filter_by(id=entry_id)).first()
        if entry is None:
            raise NotFound("Sync queue entry not found", details={"queue_id": entry_id})
        _ensure_resolvable(entry)

        try:
            submitter = db.session.get(User, entry.user_id)
            if submitter is None:
                raise NotFound(
                    "Submitter of sync queue entry not found",
                    details={"queue_id": entry.id, "user_id": entry.user_id},
                )
            sale = create_sale(
                auth_context_for_user(submitter),
                force=True,
                sync_status=SYNC_SYNCED,
                commit=False,
                **parse_offline_transaction(entry.payload),
            )
        except StockLedgerError as exc:
            raise ReplayFailed(exc) from exc
        entry.mark_as_synced(sale.id, resolved_by_user_id=ctx.user_id)
        entry.error_message = None
        db.session.commit()
        return entry

    return run_with_retry(_op, retry_on=RETRYABLE_WITH_INTEGRITY)


def _record_failed_replay(entry_id: int, reason: str) -> SyncQueueEntry:
    def _op():
        entry = lock_for_update(db.session.query(SyncQueueEntry).filter_by(id=entry_id)).first()
        if entry is None:
            raise NotFound("Sync queue entry not found", details={"queue_id": entry_id})
        # Resolved by someone else in the meantime
        if entry.status != QUEUE_CONFLICT:
            db.session.rollback()
            return entry
        entry.increment_retry(reason, max_retries=_max_retries())
        db.session.commit()
        return entry

    return run_with_retry(_op)


def _ensure_resolvable(entry: SyncQueueEntry) -> None:
    if entry.status != QUEUE_CONFLICT:
        raise ValidationError(
            f"Sync queue entry {entry.id} is {entry.status}, only conflicts can be resolved",
            details={"queue_id": entry.id, "status": entry.status},
        )


def resolve_conflict(entry_id: int, decision: str, ctx, note: str | None = None) -> SyncQueueEntry:
    """
    Apply an admin decision to a conflict entry.

    A failed approval is re-raised after its retry has been recorded; the
    entry stays in "conflict" until SYNC_MAX_RETRIES failures.
    """
    ctx.require("RESOLVE_SYNC")
    if decision not in RESOLVE_DECISIONS:
        raise ValidationError(
            "decision must be approve or reject",
            details={"field": "decision", "allowed": list(RESOLVE_DECISIONS)},
        )

    if decision == RESOLVE_REJECT:
        entry = _reject(entry_id, ctx, note)
        current_app.logger.info("sync conflict rejected queue_id=%s by user_id=%s", entry.id, ctx.user_id)
        return entry

    _ensure_resolvable(_get_entry(entry_id))
    try:
        entry = _approve(entry_id, ctx)
    except ReplayFailed as failure:
        exc = failure.error
        entry = _record_failed_replay(entry_id, exc.message)
        current_app.logger.warning(
            "sync replay failed queue_id=%s retry_count=%s status=%s error=%s",
            entry.id, entry.retry_count, entry.status, exc.message,
        )
        raise exc from None

    current_app.logger.info(
        "sync conflict approved queue_id=%s sale_id=%s by user_id=%s", entry.id, entry.sale_id, ctx.user_id
    )
    return entry

