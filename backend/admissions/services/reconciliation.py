"""
Reconciliation Engine — The single authority for payment state transitions.

Both the client verify call and the gateway webhook funnel outcomes through
``reconcile``. Exactly one caller wins the conditional transition for a
reference; only the winner runs the Application/User cascade. The payment
commit is the point of no return: cascade errors are recorded for retry and
never roll the payment back.
"""
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

import structlog
from sqlalchemy.orm import Session

from admissions.exceptions import ConflictError, NotFoundError, ValidationError
from admissions.models.payment import Payment, PENDING, SUCCESS, FAILED, EXPIRED
from admissions.services.audit_service import AuditService
from admissions.services.enrollment_service import EnrollmentService
from admissions.services.gateway_client import OUTCOME_SUCCESS, OUTCOME_FAILURE
from admissions.services.payment_store import PaymentStore

logger = structlog.get_logger(component="reconciliation")

_OUTCOME_STATUS = {OUTCOME_SUCCESS: SUCCESS, OUTCOME_FAILURE: FAILED}


@dataclass
class ReconciliationResult:
    payment: Payment
    transitioned: bool          # this call committed the terminal transition
    cascade_ok: bool = True


def _echoed_metadata(gateway_data: Dict[str, Any]) -> Dict[str, Any]:
    """The metadata bag the gateway echoes back, which may arrive JSON-encoded."""
    echoed = gateway_data.get("metadata")
    if isinstance(echoed, str):
        try:
            echoed = json.loads(echoed)
        except ValueError:
            return {}
    return echoed if isinstance(echoed, dict) else {}


class ReconciliationEngine:
    """Applies verify/webhook outcomes to a Payment exactly once."""

    def __init__(self, db: Session, store: Optional[PaymentStore] = None):
        self.db = db
        self.store = store or PaymentStore(db)

    def reconcile(
        self,
        reference: str,
        outcome: str,
        paid_at: Optional[datetime] = None,
        gateway_data: Optional[Dict[str, Any]] = None,
        source: str = "verify",
    ) -> ReconciliationResult:
        """Drive one terminal transition for ``reference`` and cascade if this call won.

        Raises NotFoundError for an unknown reference; duplicates and lost
        races return the settled payment with ``transitioned=False``.
        """
        if outcome not in _OUTCOME_STATUS:
            raise ValidationError(f"Unsupported reconciliation outcome: {outcome}")

        log = logger.bind(reference=reference, outcome=outcome, source=source)
        gateway_data = gateway_data or {}

        try:
            payment = self.store.get_by_reference(reference)
        except NotFoundError:
            log.warning("Reconciliation for unknown payment reference")
            raise

        if payment.verified:
            log.info("Payment already settled", status=payment.status)
            self._note_late_outcome(payment, outcome, source)
            return ReconciliationResult(payment=payment, transitioned=False)

        new_status = _OUTCOME_STATUS[outcome]
        metadata = dict(payment.payment_metadata or {})
        for key, value in _echoed_metadata(gateway_data).items():
            metadata.setdefault(key, value)
        metadata[f"gateway_{source}"] = gateway_data

        mutation = {
            "status": new_status,
            "verified": True,
            "payment_metadata": metadata,
        }
        if new_status == SUCCESS:
            mutation["paid_at"] = paid_at or datetime.utcnow()

        try:
            payment = self.store.compare_and_transition(reference, PENDING, mutation)
        except ConflictError:
            payment = self.store.get_by_reference(reference)
            log.info("Lost reconciliation race, returning settled payment", status=payment.status)
            self._note_late_outcome(payment, outcome, source)
            return ReconciliationResult(payment=payment, transitioned=False)

        log.info("Payment settled", status=payment.status, amount=payment.amount)
        AuditService.log(
            self.db, payment.application_id,
            "PAYMENT_SUCCEEDED" if new_status == SUCCESS else "PAYMENT_FAILED",
            payment_reference=reference,
            payload={"status": new_status, "amount": payment.amount, "source": source},
            metadata={"source": source},
        )

        cascade_ok = self._cascade(payment, source=source)
        return ReconciliationResult(payment=payment, transitioned=True, cascade_ok=cascade_ok)

    def expire(self, payment: Payment, now: Optional[datetime] = None) -> ReconciliationResult:
        """Move an overdue pending payment to ``expired``."""
        now = now or datetime.utcnow()
        if not payment.is_overdue(now):
            return ReconciliationResult(payment=payment, transitioned=False)

        reference = payment.reference
        try:
            payment = self.store.compare_and_transition(
                reference, PENDING, {"status": EXPIRED, "verified": True},
            )
        except ConflictError:
            payment = self.store.get_by_reference(reference)
            return ReconciliationResult(payment=payment, transitioned=False)

        logger.info("Payment expired", reference=reference, expires_at=payment.expires_at.isoformat())
        AuditService.log(
            self.db, payment.application_id, "PAYMENT_EXPIRED",
            payment_reference=reference,
            payload={"expires_at": payment.expires_at.isoformat()},
        )
        cascade_ok = self._cascade(payment, source="expiry")
        return ReconciliationResult(payment=payment, transitioned=True, cascade_ok=cascade_ok)

    def retry_cascade(self, reference: str) -> ReconciliationResult:
        """Re-apply the cascade of a settled payment; safe to repeat."""
        payment = self.store.get_by_reference(reference)
        if not payment.is_terminal:
            raise ValidationError("Payment is not settled yet", reference=reference)

        cascade_ok = self._cascade(payment, source="retry")
        if cascade_ok:
            AuditService.log(
                self.db, payment.application_id, "CASCADE_RETRIED",
                payment_reference=reference,
                payload={"status": payment.status},
            )
        return ReconciliationResult(payment=payment, transitioned=False, cascade_ok=cascade_ok)

    # ─── Cascade ─────────────────────────────────────────────────────

    def _cascade(self, payment: Payment, source: str) -> bool:
        """Best-effort Application/User updates after the payment commit."""
        reference = payment.reference
        application_id = payment.application_id
        try:
            if payment.status == SUCCESS:
                enrolled = EnrollmentService.mark_enrolled(self.db, application_id)
                EnrollmentService.add_enrolled_program(self.db, payment.user_id, application_id)
                if enrolled:
                    AuditService.log(
                        self.db, application_id, "APPLICATION_ENROLLED",
                        payment_reference=reference,
                        payload={"user_id": payment.user_id},
                    )
            elif payment.status == FAILED:
                EnrollmentService.mark_payment_failed(self.db, application_id)
            elif payment.status == EXPIRED:
                EnrollmentService.mark_payment_expired(self.db, application_id, payment.id)
        except Exception as e:
            self.db.rollback()
            logger.exception(
                "Cascade failed after payment commit",
                reference=reference, application_id=application_id,
                status=payment.status, source=source,
            )
            self._record_cascade_failure(payment, source, e)
            return False
        return True

    def _record_cascade_failure(self, payment: Payment, source: str, error: Exception) -> None:
        try:
            AuditService.log(
                self.db, payment.application_id, "CASCADE_FAILED",
                payment_reference=payment.reference,
                payload={"status": payment.status, "error": str(error)},
                metadata={"source": source, "requires_retry": True},
            )
        except Exception:
            self.db.rollback()
            logger.exception("Could not record cascade failure", reference=payment.reference)

    def _note_late_outcome(self, payment: Payment, outcome: str, source: str) -> None:
        """Flag an outcome that contradicts the already-settled status."""
        if _OUTCOME_STATUS[outcome] == payment.status:
            return
        logger.warning(
            "Outcome arrived for settled payment with a different status",
            reference=payment.reference, status=payment.status,
            outcome=outcome, source=source,
        )
        AuditService.log(
            self.db, payment.application_id, "LATE_OUTCOME",
            payment_reference=payment.reference,
            payload={"status": payment.status, "outcome": outcome, "source": source},
            metadata={"requires_investigation": True},
        )
