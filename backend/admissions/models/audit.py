"""
Audit Log Model — Immutable, tamper-evident trail of payment lifecycle events.
Every action is SHA-256 hashed and chained per application.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, JSON, ForeignKey

from admissions.database import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    application_id = Column(Integer, ForeignKey("applications.id"), nullable=False, index=True)
    payment_reference = Column(String(100), index=True)

    action = Column(String(50), nullable=False)
    # Actions: PAYMENT_INITIALIZED, PAYMENT_REUSED, PAYMENT_EXPIRED, PAYMENT_ROLLED_BACK,
    #          PAYMENT_SUCCEEDED, PAYMENT_FAILED, APPLICATION_ENROLLED,
    #          CASCADE_FAILED, CASCADE_RETRIED, LATE_OUTCOME

    payload_hash = Column(String(64))       # SHA-256 hash of the action payload
    previous_hash = Column(String(64))      # Hash chain for tamper detection

    ip_address = Column(String(45))

    log_metadata = Column(JSON, default=dict)
    timestamp = Column(DateTime, default=datetime.utcnow)
