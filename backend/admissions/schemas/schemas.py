"""
Pydantic Schemas — Request & Response models for API validation.
"""
from datetime import datetime
from typing import Any, Optional, Dict, List
from pydantic import BaseModel, Field


# ──────────────── Payment ────────────────

class PaymentInitRequest(BaseModel):
    application_id: int
    amount: int = Field(..., gt=0, description="Amount in minor units (kobo)")
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    email: Optional[str] = None      # Defaults to the applicant's account email
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PaymentOut(BaseModel):
    id: int
    reference: str
    user_id: int
    application_id: int
    track: Optional[str] = None
    program: Optional[str] = None
    amount: int
    currency: str
    status: str
    verified: bool
    paid_at: Optional[datetime] = None
    expires_at: datetime
    created_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="payment_metadata")

    class Config:
        from_attributes = True


class CheckoutData(BaseModel):
    authorization_url: str
    reference: str
    access_code: str = ""
    reused: bool = False


class PaymentInitResponse(BaseModel):
    success: bool = True
    message: str = "Payment initialized successfully"
    data: CheckoutData


class PaymentVerifyData(BaseModel):
    payment: PaymentOut
    redirect_url: Optional[str] = None


class PaymentVerifyResponse(BaseModel):
    success: bool
    message: str
    data: PaymentVerifyData


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class PaymentHistoryData(BaseModel):
    payments: List[PaymentOut]
    pagination: Pagination


class PaymentHistoryResponse(BaseModel):
    success: bool = True
    data: PaymentHistoryData


class PaymentDetailResponse(BaseModel):
    success: bool = True
    data: Dict[str, PaymentOut]


class PendingPaymentsResponse(BaseModel):
    success: bool = True
    data: Dict[str, List[PaymentOut]]


class WebhookAck(BaseModel):
    success: bool = True
    received: bool = True
    event: Optional[str] = None
    handled: bool = False
    reference: Optional[str] = None
    status: Optional[str] = None


# ──────────────── Admin / Audit ────────────────

class AuditLogEntry(BaseModel):
    id: int
    application_id: int
    payment_reference: Optional[str] = None
    action: str
    payload_hash: Optional[str] = None
    timestamp: datetime
    log_metadata: Optional[Dict] = None

    class Config:
        from_attributes = True


class CascadeRetryResponse(BaseModel):
    success: bool
    reference: str
    status: str
    message: str = ""


class ExpirySweepResponse(BaseModel):
    success: bool = True
    expired: int


# ──────────────── Generic ────────────────

class HealthResponse(BaseModel):
    status: str
    database: str
    gateway: str
    webhook_auth: str
    uptime_seconds: float
    version: str


class ErrorResponse(BaseModel):
    success: bool = False
    detail: str
    error_code: Optional[str] = None
