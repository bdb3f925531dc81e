"""
Audit Service — Manages the immutable, hash-chained payment audit trail.
"""
from datetime import datetime
from typing import Optional, Dict

from sqlalchemy.orm import Session

from admissions.models.audit import AuditLog
from admissions.utils.hashing import generate_hash, generate_chain_hash


class AuditService:
    """Creates tamper-evident audit log entries with hash chaining."""

    @staticmethod
    def log(
        db: Session,
        application_id: int,
        action: str,
        payment_reference: Optional[str] = None,
        payload: Optional[Dict] = None,
        ip_address: Optional[str] = None,
        metadata: Optional[Dict] = None,
    ) -> AuditLog:
        """Create an audit log entry with hash chaining.

        Args:
            db: Database session.
            application_id: Application this event belongs to.
            action: Action identifier (e.g. PAYMENT_INITIALIZED, CASCADE_FAILED).
            payment_reference: Payment reference the event concerns.
            payload: Data payload to hash.
            ip_address: Client IP.
            metadata: Additional metadata to store.

        Returns:
            The created AuditLog entry.
        """
        # Get the hash of the last entry for this application (chain linking)
        last_entry = (
            db.query(AuditLog)
            .filter(AuditLog.application_id == application_id)
            .order_by(AuditLog.id.desc())
            .first()
        )
        previous_hash = last_entry.payload_hash if last_entry else ""

        payload_data = payload or {}
        chain_hash = generate_chain_hash(payload_data, previous_hash)

        entry = AuditLog(
            application_id=application_id,
            payment_reference=payment_reference,
            action=action,
            payload_hash=chain_hash,
            previous_hash=previous_hash,
            ip_address=ip_address,
            log_metadata={"payload_digest": generate_hash(payload_data), **(metadata or {})},
            timestamp=datetime.utcnow(),
        )

        db.add(entry)
        db.commit()
        db.refresh(entry)

        return entry

    @staticmethod
    def get_trail(db: Session, payment_reference: str) -> list[AuditLog]:
        """Get the audit trail for one payment, ordered chronologically."""
        return (
            db.query(AuditLog)
            .filter(AuditLog.payment_reference == payment_reference)
            .order_by(AuditLog.id.asc())
            .all()
        )

    @staticmethod
    def count(db: Session, payment_reference: str, action: str) -> int:
        return (
            db.query(AuditLog)
            .filter(AuditLog.payment_reference == payment_reference, AuditLog.action == action)
            .count()
        )

    @staticmethod
    def verify_chain(db: Session, application_id: int) -> dict:
        """Verify the integrity of the audit chain for an application.

        Returns:
            dict with 'valid' (bool), 'total_entries', and 'broken_at' (if invalid).
        """
        entries = (
            db.query(AuditLog)
            .filter(AuditLog.application_id == application_id)
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

        return {"valid": True, "total_entries": len(entries), "broken_at": None}
