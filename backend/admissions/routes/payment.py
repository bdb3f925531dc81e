"""
Payment Routes — Enrollment fee checkout, verification and gateway webhooks.
Callers are identified by the `user-id` header set by the auth layer.
"""
from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from admissions.database import get_db
from admissions.schemas.schemas import (
    PaymentInitRequest, PaymentInitResponse, CheckoutData,
    PaymentVerifyResponse, PaymentVerifyData, PaymentOut,
    PaymentHistoryResponse, PaymentDetailResponse, PendingPaymentsResponse,
    WebhookAck,
)
from admissions.services.gateway_client import PaystackClient, get_gateway
from admissions.services.payment_service import PaymentOrchestrator
from admissions.utils.rate_limiter import rate_limit

router = APIRouter(prefix="/api/payments", tags=["Payments"])


def get_orchestrator(
    db: Session = Depends(get_db),
    gateway: PaystackClient = Depends(get_gateway),
) -> PaymentOrchestrator:
    return PaymentOrchestrator(db, gateway)


@router.post("/webhook", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    """Gateway push: authenticated against the untouched request bytes."""
    raw_body = await request.body()
    signature = request.headers.get("x-paystack-signature")

    ack = await run_in_threadpool(orchestrator.handle_webhook, raw_body, signature)
    return WebhookAck(**ack)


@router.post("/initialize", response_model=PaymentInitResponse)
def initialize_payment(
    payload: PaymentInitRequest,
    request: Request,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
    _throttle: bool = Depends(rate_limit(requests=10, window=60)),
):
    """Open the checkout session for an application, reusing a live pending payment."""
    result = orchestrator.initialize(
        application_id=payload.application_id,
        amount=payload.amount,
        currency=payload.currency,
        payer_email=payload.email,
        metadata=payload.metadata,
        ip_address=request.client.host if request.client else None,
    )
    return PaymentInitResponse(
        message="Payment session reused" if result.reused else "Payment initialized successfully",
        data=CheckoutData(
            authorization_url=result.checkout_url,
            reference=result.reference,
            access_code=result.access_code,
            reused=result.reused,
        ),
    )


@router.get("/verify", response_model=PaymentVerifyResponse)
def verify_payment(
    reference: str = Query("", description="Payment reference returned by initialize"),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    """Client pull: confirm the outcome with the gateway and settle the payment."""
    result = orchestrator.verify(reference)
    response = PaymentVerifyResponse(
        success=result.status in ("success", "pending"),
        message=result.message,
        data=PaymentVerifyData(
            payment=PaymentOut.model_validate(result.payment),
            redirect_url=result.redirect_url,
        ),
    )
    if result.status in ("success", "pending"):
        return response
    return JSONResponse(status_code=400, content=response.model_dump(mode="json"))


@router.get("/history", response_model=PaymentHistoryResponse)
def payment_history(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user_id: int = Header(..., alias="user-id"),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    """The caller's payments, newest first."""
    history = orchestrator.get_payment_history(user_id, page=page, limit=limit)
    return PaymentHistoryResponse(data={
        "payments": [PaymentOut.model_validate(p) for p in history["payments"]],
        "pagination": history["pagination"],
    })


@router.get("/pending", response_model=PendingPaymentsResponse)
def pending_payments(
    user_id: int = Header(..., alias="user-id"),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    """Pending, unexpired payments for display."""
    pending = orchestrator.list_pending(user_id)
    return PendingPaymentsResponse(data={
        "pending_payments": [PaymentOut.model_validate(p) for p in pending],
    })


@router.get("/{payment_id}", response_model=PaymentDetailResponse)
def payment_details(
    payment_id: int,
    user_id: int = Header(..., alias="user-id"),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    """A single payment owned by the caller."""
    payment = orchestrator.get_payment_details(payment_id, user_id)
    return PaymentDetailResponse(data={"payment": PaymentOut.model_validate(payment)})
