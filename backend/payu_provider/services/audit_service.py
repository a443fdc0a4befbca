"""
Audit Service — Manages the immutable, hash-chained payment audit trail.
"""
from datetime import datetime
from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session

from payu_provider.models.audit import AuditLog
from payu_provider.utils.hashing import generate_chain_hash


class AuditService:
    """Creates tamper-evident audit log entries with hash chaining."""

    @staticmethod
    def log(
        db: Session,
        correlation_id: str,
        action: str,
        payload: Optional[Dict] = None,
        metadata: Optional[Dict] = None,
    ) -> AuditLog:
        """Create an audit log entry with hash chaining.

        Args:
            db: Database session.
            correlation_id: Host session id or txnid this action belongs to.
            action: Action identifier (e.g. WEBHOOK_REJECTED, REFUND_COMPLETED).
            payload: Data payload to hash.
            metadata: Additional metadata to store.

        Returns:
            The created AuditLog entry.
        """
        # Get the hash of the last entry for this correlation id (chain linking)
        last_entry = (
            db.query(AuditLog)
            .filter(AuditLog.correlation_id == correlation_id)
            .order_by(AuditLog.id.desc())
            .first()
        )
        previous_hash = last_entry.payload_hash if last_entry else ""

        payload_data = payload or {}
        metadata = metadata or {}
        chain_hash = generate_chain_hash(_hashed_content(action, payload_data, metadata), previous_hash)

        entry = AuditLog(
            correlation_id=correlation_id,
            action=action,
            payload_hash=chain_hash,
            previous_hash=previous_hash,
            payload=payload_data,
            log_metadata=metadata,
            timestamp=datetime.utcnow(),
        )

        db.add(entry)
        db.commit()
        db.refresh(entry)

        return entry

    @staticmethod
    def record(
        session_factory: Optional[Callable[[], Session]],
        correlation_id: str,
        action: str,
        payload: Optional[Dict] = None,
        metadata: Optional[Dict] = None,
    ) -> Optional[AuditLog]:
        """Open a short-lived session and log one entry. No-op without a factory."""
        if session_factory is None:
            return None
        db = session_factory()
        try:
            return AuditService.log(db, correlation_id, action, payload=payload, metadata=metadata)
        finally:
            db.close()

    @staticmethod
    def get_trail(db: Session, correlation_id: str) -> list[AuditLog]:
        """Get the full audit trail for a correlation id, ordered chronologically."""
        return (
            db.query(AuditLog)
            .filter(AuditLog.correlation_id == correlation_id)
            .order_by(AuditLog.timestamp.asc(), AuditLog.id.asc())
            .all()
        )

    @staticmethod
    def verify_chain(db: Session, correlation_id: str) -> dict:
        """Verify the integrity of the audit chain for a correlation id.

        Checks both the link to the previous entry and each entry's own hash,
        recomputed from its stored action, payload and metadata.

        Returns:
            dict with 'valid' (bool), 'total_entries', and 'broken_at' (if invalid).
        """
        entries = (
            db.query(AuditLog)
            .filter(AuditLog.correlation_id == correlation_id)
            .order_by(AuditLog.id.asc())
            .all()
        )

        if not entries:
            return {"valid": True, "total_entries": 0, "broken_at": None}

        for i, entry in enumerate(entries):
            expected_prev = entries[i - 1].payload_hash if i > 0 else ""
            if entry.previous_hash != expected_prev:
                return {
                    "valid": False,
                    "total_entries": len(entries),
                    "broken_at": entry.id,
                    "message": f"Chain broken at entry {entry.id} ({entry.action})",
                }
            content = _hashed_content(entry.action, entry.payload or {}, entry.log_metadata or {})
            if generate_chain_hash(content, entry.previous_hash or "") != entry.payload_hash:
                return {
                    "valid": False,
                    "total_entries": len(entries),
                    "broken_at": entry.id,
                    "message": f"Entry {entry.id} ({entry.action}) was modified after it was written",
                }

        return {"valid": True, "total_entries": len(entries), "broken_at": None}


def _hashed_content(action: str, payload: Dict, metadata: Dict) -> Dict:
    return {"action": action, "payload": payload, "metadata": metadata}
