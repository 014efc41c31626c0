from __future__ import annotations

from ..extensions import db
from factory_ledger.time_utils import utcnow, to_utc_z


QUEUE_PENDING = "pending"
QUEUE_SYNCED = "synced"
QUEUE_FAILED = "failed"
QUEUE_CONFLICT = "conflict"

ACTION_CREATE_SALE = "CREATE_SALE"


class SyncQueueEntry(db.Model):
    """
    An offline transaction that could not be reconciled automatically.

    payload is the transaction exactly as the client sent it, so an admin
    approval can replay it later.
    """
    __tablename__ = "sync_queue"
    __table_args__ = (
        db.Index("ix_sync_queue_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    action = db.Column(db.String(50), nullable=False, default=ACTION_CREATE_SALE)
    local_id = db.Column(db.String(64), nullable=True)
    payload = db.Column(db.JSON, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=QUEUE_PENDING)
    retry_count = db.Column(db.Integer, nullable=False, default=0)
    error_message = db.Column(db.Text, nullable=True)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True)
    resolved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    synced_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User", foreign_keys=[user_id])
    __mapper_args__ = {"version_id_col": version_id}

    def mark_as_synced(self, sale_id: int, resolved_by_user_id: int | None = None) -> None:
        self.status = QUEUE_SYNCED
        self.sale_id = sale_id
        self.resolved_by_user_id = resolved_by_user_id
        self.synced_at = utcnow()

    def increment_retry(self, reason: str, max_retries: int = 3) -> None:
        self.retry_count = (self.retry_count or 0) + 1
        self.error_message = reason
        if self.retry_count >= max_retries:
            self.status = QUEUE_FAILED

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "action": self.action,
            "local_id": self.local_id,
            "payload": self.payload,
            "status": self.status,
            "retry_count": self.retry_count,
            "error_message": self.error_message,
            "sale_id": self.sale_id,
            "resolved_by_user_id": self.resolved_by_user_id,
            "synced_at": to_utc_z(self.synced_at) if self.synced_at else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
