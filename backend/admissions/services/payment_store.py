"""
Payment Record Store — Durable Payment rows keyed by reference.

compare_and_transition is the only write path for status changes: a single
conditional UPDATE guarded on the expected status and ``verified = False``.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from admissions.exceptions import ConflictError, DuplicateReferenceError, NotFoundError
from admissions.models.payment import Payment, PENDING

logger = structlog.get_logger(component="payment_store")


class PaymentStore:
    """Repository over the payments table for one database session."""

    def __init__(self, db: Session):
        self.db = db

    def create(self, payment: Payment) -> int:
        """Insert a new payment. Raises DuplicateReferenceError on a reused reference."""
        self.db.add(payment)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateReferenceError(
                f"Payment reference {payment.reference} already exists",
                reference=payment.reference,
            ) from e
        self.db.refresh(payment)
        return payment.id

    def get_by_reference(self, reference: str) -> Payment:
        payment = (
            self.db.query(Payment)
            .filter(Payment.reference == reference)
            .populate_existing()
            .first()
        )
        if not payment:
            raise NotFoundError("Payment not found", reference=reference)
        return payment

    def get_by_id(self, payment_id: int, user_id: Optional[int] = None) -> Payment:
        query = self.db.query(Payment).filter(Payment.id == payment_id)
        if user_id is not None:
            query = query.filter(Payment.user_id == user_id)
        payment = query.populate_existing().first()
        if not payment:
            raise NotFoundError("Payment not found", payment_id=payment_id)
        return payment

    def find_pending_for_application(self, application_id: int) -> Optional[Payment]:
        """Most recent pending payment for an application, expired or not."""
        return (
            self.db.query(Payment)
            .filter(Payment.application_id == application_id, Payment.status == PENDING)
            .order_by(Payment.created_at.desc(), Payment.id.desc())
            .first()
        )

    def find_pending(self, user_id: int, now: Optional[datetime] = None) -> List[Payment]:
        """Pending payments still inside their expiry horizon. Display only."""
        now = now or datetime.utcnow()
        return (
            self.db.query(Payment)
            .filter(
                Payment.user_id == user_id,
                Payment.status == PENDING,
                Payment.expires_at > now,
            )
            .order_by(Payment.created_at.desc())
            .all()
        )

    def find_overdue(self, now: Optional[datetime] = None, limit: int = 100) -> List[Payment]:
        now = now or datetime.utcnow()
        return (
            self.db.query(Payment)
            .filter(Payment.status == PENDING, Payment.expires_at <= now)
            .order_by(Payment.expires_at.asc())
            .limit(limit)
            .all()
        )

    def list_for_user(self, user_id: int, page: int = 1, limit: int = 10) -> tuple[List[Payment], int]:
        query = self.db.query(Payment).filter(Payment.user_id == user_id)
        total = query.count()
        payments = (
            query.order_by(Payment.created_at.desc(), Payment.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return payments, total

    def compare_and_transition(
        self,
        reference: str,
        expected_status: str,
        mutation: Dict[str, Any],
    ) -> Payment:
        """Apply ``mutation`` only if the row is still ``expected_status`` and unverified.

        Raises ConflictError when another caller already moved the record.
        """
        values = dict(mutation)
        values["updated_at"] = datetime.utcnow()

        updated = (
            self.db.query(Payment)
            .filter(
                Payment.reference == reference,
                Payment.status == expected_status,
                Payment.verified.is_(False),
            )
            .update(values, synchronize_session=False)
        )
        if updated != 1:
            self.db.rollback()
            raise ConflictError(
                f"Payment {reference} is no longer {expected_status}",
                reference=reference,
            )

        self.db.commit()
        return self.get_by_reference(reference)

    def assign_checkout(self, payment: Payment, gateway_reference: str, checkout_url: str, access_code: str) -> Payment:
        """Adopt the gateway's canonical reference and checkout session."""
        payment.reference = gateway_reference
        payment.checkout_url = checkout_url
        payment.access_code = access_code
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateReferenceError(
                f"Payment reference {gateway_reference} already exists",
                reference=gateway_reference,
            ) from e
        self.db.refresh(payment)
        return payment

    def delete(self, payment: Payment) -> None:
        """Compensating delete for a payment whose checkout never opened."""
        self.db.delete(payment)
        self.db.commit()
