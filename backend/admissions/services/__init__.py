from admissions.services.gateway_client import PaystackClient
from admissions.services.payment_store import PaymentStore
from admissions.services.reconciliation import ReconciliationEngine
from admissions.services.payment_service import PaymentOrchestrator
from admissions.services.enrollment_service import EnrollmentService
from admissions.services.audit_service import AuditService

__all__ = [
    "PaystackClient", "PaymentStore", "ReconciliationEngine",
    "PaymentOrchestrator", "EnrollmentService", "AuditService",
]
