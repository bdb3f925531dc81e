"""
Admin Routes — Payment audit trail and reconciliation recovery.
"""
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from admissions.database import get_db
from admissions.schemas.schemas import AuditLogEntry, CascadeRetryResponse, ExpirySweepResponse
from admissions.services.audit_service import AuditService
from admissions.services.enrollment_service import EnrollmentService
from admissions.services.payment_service import PaymentOrchestrator
from admissions.services.payment_store import PaymentStore
from admissions.routes.payment import get_orchestrator

router = APIRouter(prefix="/api/admin", tags=["Admin"])


@router.get("/payments/{reference}/audit", response_model=List[AuditLogEntry])
def get_payment_audit(reference: str, db: Session = Depends(get_db)):
    """Full audit trail for a payment reference."""
    PaymentStore(db).get_by_reference(reference)
    return [AuditLogEntry.model_validate(entry) for entry in AuditService.get_trail(db, reference)]


@router.post("/payments/{reference}/retry-cascade", response_model=CascadeRetryResponse)
def retry_cascade(reference: str, orchestrator: PaymentOrchestrator = Depends(get_orchestrator)):
    """Re-apply Application/User updates for a settled payment after a CASCADE_FAILED entry."""
    result = orchestrator.retry_cascade(reference)
    return CascadeRetryResponse(
        success=result.cascade_ok,
        reference=reference,
        status=result.payment.status,
        message="Cascade applied" if result.cascade_ok else "Cascade failed again; see audit trail",
    )


@router.post("/payments/expire-overdue", response_model=ExpirySweepResponse)
def expire_overdue(orchestrator: PaymentOrchestrator = Depends(get_orchestrator)):
    """Run one expiry sweep now."""
    return ExpirySweepResponse(expired=orchestrator.expire_overdue())


@router.get("/applications/{application_id}/audit/verify")
def verify_audit_chain(application_id: int, db: Session = Depends(get_db)):
    """Verify the integrity of the audit hash chain for an application."""
    EnrollmentService.find_application(db, application_id)
    return AuditService.verify_chain(db, application_id)
