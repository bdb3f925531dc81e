"""
Payment Orchestrator — Public payment operations for the enrollment flow.

Composes the gateway client, the payment store and the reconciliation
engine: initialize (create or reuse a checkout), verify (client pull),
webhook (gateway push), plus read-side history/details/pending listings.
"""
import json
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from admissions.config import Settings, get_settings
from admissions.exceptions import (
    AuthenticationError, ConflictError, DuplicateReferenceError, GatewayError,
    NotFoundError, PaymentServiceError, ValidationError,
)
from admissions.models.application import Application
from admissions.models.payment import Payment, PENDING, SUCCESS
from admissions.services.audit_service import AuditService
from admissions.services.enrollment_service import EnrollmentService
from admissions.services.gateway_client import (
    OUTCOME_SUCCESS, OUTCOME_FAILURE, OUTCOME_PENDING, PaystackClient, parse_gateway_time,
)
from admissions.services.payment_store import PaymentStore
from admissions.services.reconciliation import ReconciliationEngine, ReconciliationResult
from admissions.utils.references import generate_reference

logger = structlog.get_logger(component="payments")

# Webhook event type → reconciliation outcome; anything else is acknowledged and ignored
WEBHOOK_OUTCOMES = {
    "charge.success": OUTCOME_SUCCESS,
    "charge.failed": OUTCOME_FAILURE,
    "invoice.payment_failed": OUTCOME_FAILURE,
}

_REFERENCE_ATTEMPTS = 3


@dataclass
class CheckoutResult:
    payment: Payment
    checkout_url: str
    access_code: str
    reused: bool = False

    @property
    def reference(self) -> str:
        return self.payment.reference


@dataclass
class VerifyResult:
    payment: Payment
    status: str
    message: str
    redirect_url: Optional[str] = None
    already_verified: bool = False
    cascade_ok: bool = True


class PaymentOrchestrator:
    """Payment use cases over one database session."""

    def __init__(self, db: Session, gateway: PaystackClient, settings: Settings | None = None):
        self.db = db
        self.gateway = gateway
        self.settings = settings or get_settings()
        self.store = PaymentStore(db)
        self.engine = ReconciliationEngine(db, self.store)

    # ─── Initialize ──────────────────────────────────────────────────

    def initialize(
        self,
        application_id: int,
        amount: int,
        currency: Optional[str] = None,
        payer_email: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
    ) -> CheckoutResult:
        """Open (or re-issue) the checkout session for an application's fee."""
        if amount is None or int(amount) <= 0:
            raise ValidationError("Amount must be a positive integer in minor units")

        application = EnrollmentService.find_application(self.db, application_id)
        if application.payment_status == "paid":
            raise ValidationError("Application has already been paid for", application_id=application_id)

        user = EnrollmentService.find_user(self.db, application.user_id)
        email = payer_email or user.email
        currency = (currency or self.settings.DEFAULT_CURRENCY).upper()
        metadata = dict(metadata or {})
        now = datetime.utcnow()

        # Read before the pending lookup: the claim below only succeeds if no
        # concurrent initialize has moved the application since.
        observed_payment_id = application.payment_id

        existing = self.store.find_pending_for_application(application.id)
        if existing is not None:
            if existing.is_overdue(now):
                self.engine.expire(existing, now)
            else:
                return self._reissue(existing, application, email, ip_address)

        payment = self._create_pending(application, int(amount), currency, metadata, now)
        if not EnrollmentService.claim_payment(self.db, application.id, observed_payment_id, payment.id):
            return self._defer_to_concurrent(payment, application, email, ip_address)

        try:
            session = self.gateway.create_checkout(
                email, payment.amount, payment.currency,
                self._gateway_metadata(payment, application, metadata),
            )
        except GatewayError as e:
            self._rollback(payment, application, reason=e.message)
            raise

        payment = self._adopt_checkout(payment, application, session)

        logger.info(
            "Payment initialized",
            reference=payment.reference, application_id=application.id,
            amount=payment.amount, currency=payment.currency,
        )
        AuditService.log(
            self.db, application.id, "PAYMENT_INITIALIZED",
            payment_reference=payment.reference,
            payload={"amount": payment.amount, "currency": payment.currency},
            ip_address=ip_address,
        )
        return CheckoutResult(
            payment=payment,
            checkout_url=payment.checkout_url,
            access_code=payment.access_code or "",
        )

    def _create_pending(
        self,
        application: Application,
        amount: int,
        currency: str,
        metadata: Dict[str, Any],
        now: datetime,
    ) -> Payment:
        for attempt in range(1, _REFERENCE_ATTEMPTS + 1):
            payment = Payment(
                reference=generate_reference(),
                user_id=application.user_id,
                application_id=application.id,
                track=application.track,
                program=application.program,
                amount=amount,
                currency=currency,
                status=PENDING,
                verified=False,
                payment_metadata={**metadata, "application_id": str(application.id)},
                expires_at=now + timedelta(hours=self.settings.PAYMENT_EXPIRY_HOURS),
            )
            try:
                self.store.create(payment)
                return payment
            except DuplicateReferenceError:
                logger.warning("Placeholder reference collision", attempt=attempt)
        raise PaymentServiceError("Could not allocate a unique payment reference")

    def _reissue(self, payment: Payment, application: Application, email: str, ip_address: Optional[str]) -> CheckoutResult:
        """Hand back the live checkout session of an unexpired pending payment."""
        if not payment.checkout_url:
            if self._checkout_in_flight(payment):
                raise ConflictError(
                    "Payment initialization already in progress for this application",
                    reference=payment.reference,
                )
            # Earlier attempt never recorded its session; open one under the same reference.
            try:
                session = self.gateway.create_checkout(
                    email, payment.amount, payment.currency,
                    self._gateway_metadata(payment, application, payment.payment_metadata or {}),
                    reference=payment.reference,
                )
            except GatewayError as e:
                self._rollback(payment, application, reason=e.message)
                raise
            payment = self._adopt_checkout(payment, application, session)

        if application.payment_id != payment.id:
            EnrollmentService.link_payment(self.db, application, payment.id)

        logger.info("Reusing pending payment", reference=payment.reference, application_id=application.id)
        AuditService.log(
            self.db, application.id, "PAYMENT_REUSED",
            payment_reference=payment.reference,
            payload={"amount": payment.amount},
            ip_address=ip_address,
        )
        return CheckoutResult(
            payment=payment,
            checkout_url=payment.checkout_url,
            access_code=payment.access_code or "",
            reused=True,
        )

    def _checkout_in_flight(self, payment: Payment) -> bool:
        """A session-less payment younger than two gateway timeouts may still be opening one."""
        window = timedelta(seconds=2 * self.settings.GATEWAY_TIMEOUT_SECONDS)
        return payment.created_at is not None and payment.created_at > datetime.utcnow() - window

    def _defer_to_concurrent(
        self, payment: Payment, application: Application, email: str, ip_address: Optional[str],
    ) -> CheckoutResult:
        """Lost the claim: drop our unopened payment and hand back the winner's."""
        self.store.delete(payment)
        logger.info("Concurrent initialize won the claim", application_id=application.id)

        winner = self.store.find_pending_for_application(application.id)
        if winner is None:
            raise ConflictError(
                "Payment initialization already in progress for this application",
                application_id=application.id,
            )
        return self._reissue(winner, application, email, ip_address)

    def _adopt_checkout(self, payment: Payment, application: Application, session) -> Payment:
        try:
            return self.store.assign_checkout(
                payment, session.gateway_reference, session.checkout_url, session.access_token,
            )
        except (DuplicateReferenceError, SQLAlchemyError) as e:
            self.db.rollback()
            self._rollback(payment, application, reason=str(e))
            raise PaymentServiceError("Could not record the checkout session") from e

    def _gateway_metadata(self, payment: Payment, application: Application, metadata: Dict[str, Any]) -> Dict[str, Any]:
        return {
            **metadata,
            "payment_id": str(payment.id),
            "application_id": str(application.id),
            "track": application.track,
            "program": application.program,
        }

    def _rollback(self, payment: Payment, application: Application, reason: str) -> None:
        """Compensating delete: no orphaned pending payment outlives a failed initialize."""
        reference = payment.reference
        if application.payment_id == payment.id:
            EnrollmentService.link_payment(self.db, application, None)
        self.store.delete(payment)

        logger.warning("Payment initialization rolled back", reference=reference, application_id=application.id, reason=reason)
        AuditService.log(
            self.db, application.id, "PAYMENT_ROLLED_BACK",
            payment_reference=reference,
            payload={"reason": reason},
        )

    # ─── Verify (client pull) ────────────────────────────────────────

    def verify(self, reference: str) -> VerifyResult:
        """Ask the gateway for the outcome and reconcile it."""
        if not reference:
            raise ValidationError("Payment reference is required")

        payment = self.store.get_by_reference(reference)
        if payment.verified:
            return self._verify_result(payment, already_verified=True)

        result = self.gateway.verify_transaction(reference)

        if result.outcome == OUTCOME_PENDING:
            if payment.is_overdue():
                payment = self.engine.expire(payment).payment
                return self._verify_result(payment, already_verified=False)
            return VerifyResult(payment=payment, status=payment.status, message="Payment is still in progress")

        reconciled = self.engine.reconcile(
            reference, result.outcome,
            paid_at=result.paid_at, gateway_data=result.raw_payload, source="verify",
        )
        return self._verify_result(
            reconciled.payment,
            already_verified=not reconciled.transitioned,
            cascade_ok=reconciled.cascade_ok,
        )

    def _verify_result(self, payment: Payment, already_verified: bool, cascade_ok: bool = True) -> VerifyResult:
        if payment.status == SUCCESS:
            message = "Payment already verified" if already_verified else "Payment verified successfully"
            return VerifyResult(
                payment=payment,
                status=payment.status,
                message=message,
                redirect_url=f"{self.settings.FRONTEND_URL.rstrip('/')}/dashboard",
                already_verified=already_verified,
                cascade_ok=cascade_ok,
            )
        return VerifyResult(
            payment=payment,
            status=payment.status,
            message="Payment was not successful",
            already_verified=already_verified,
            cascade_ok=cascade_ok,
        )

    # ─── Webhook (gateway push) ──────────────────────────────────────

    def handle_webhook(self, raw_body: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Authenticate, dispatch by event type and reconcile. Returns the acknowledgement."""
        if not self.gateway.authenticate_webhook(raw_body, signature):
            logger.warning("Invalid webhook signature")
            raise AuthenticationError("Invalid signature")

        try:
            event = json.loads(raw_body)
        except ValueError as e:
            raise ValidationError("Malformed webhook payload") from e
        if not isinstance(event, dict):
            raise ValidationError("Malformed webhook payload")

        event_type = event.get("event")
        data = event.get("data") or {}
        if not isinstance(event_type, str) or not isinstance(data, dict):
            raise ValidationError("Malformed webhook payload")
        ack = {"received": True, "event": event_type, "handled": False}

        outcome = WEBHOOK_OUTCOMES.get(event_type)
        if outcome is None:
            logger.info("Unhandled webhook event type", event=event_type)
            return ack

        reference = data.get("reference")
        if not reference:
            logger.warning("Webhook event without a reference", event=event_type)
            return ack

        try:
            reconciled: ReconciliationResult = self.engine.reconcile(
                reference, outcome,
                paid_at=parse_gateway_time(data.get("paid_at") or data.get("paidAt")),
                gateway_data=data,
                source="webhook",
            )
        except NotFoundError:
            logger.error("Dropping webhook for unknown payment", event=event_type, reference=reference)
            return ack

        ack.update({
            "handled": True,
            "reference": reference,
            "status": reconciled.payment.status,
        })
        return ack

    # ─── Read side ───────────────────────────────────────────────────

    def get_payment_details(self, payment_id: int, user_id: int) -> Payment:
        payment = self.store.get_by_id(payment_id, user_id=user_id)
        if payment.is_overdue():
            payment = self.engine.expire(payment).payment
        return payment

    def get_payment_history(self, user_id: int, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        page = max(1, int(page))
        limit = max(1, min(int(limit), 100))
        payments, total = self.store.list_for_user(user_id, page=page, limit=limit)
        return {
            "payments": payments,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit) if total else 0,
            },
        }

    def list_pending(self, user_id: int) -> List[Payment]:
        return self.store.find_pending(user_id)

    # ─── Recovery ────────────────────────────────────────────────────

    def retry_cascade(self, reference: str) -> ReconciliationResult:
        return self.engine.retry_cascade(reference)

    def expire_overdue(self, now: Optional[datetime] = None, limit: Optional[int] = None) -> int:
        """Sweep overdue pending payments to ``expired``. Returns how many moved."""
        now = now or datetime.utcnow()
        limit = limit or self.settings.EXPIRY_SWEEP_BATCH_SIZE
        expired = 0
        for payment in self.store.find_overdue(now, limit=limit):
            if self.engine.expire(payment, now).transitioned:
                expired += 1
        if expired:
            logger.info("Expired overdue payments", count=expired)
        return expired
