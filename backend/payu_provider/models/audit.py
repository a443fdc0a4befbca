"""
Audit Log Model — Immutable, tamper-evident audit trail.
Every webhook decision and session transition is SHA-256 hash-chained.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, JSON

from payu_provider.database import Base


class AuditLog(Base):
    __tablename__ = "payu_audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    correlation_id = Column(String(64), nullable=False, index=True)   # host session id or txnid

    action = Column(String(50), nullable=False)
    # Actions: WEBHOOK_REJECTED, WEBHOOK_AUTHORIZED, WEBHOOK_FAILED,
    #          WEBHOOK_REFUND_ACKNOWLEDGED, WEBHOOK_MANUAL_REVIEW,
    #          PAYMENT_AUTHORIZED, PAYMENT_FAILED, REFUND_COMPLETED, REFUND_REJECTED

    payload_hash = Column(String(64))       # SHA-256 chain hash of action, payload and metadata
    previous_hash = Column(String(64))      # Hash chain for tamper detection

    payload = Column(JSON, default=dict)     # hashed together with action and metadata
    log_metadata = Column(JSON, default=dict)
    timestamp = Column(DateTime, default=datetime.utcnow)
