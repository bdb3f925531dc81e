"""
Payment Model — One checkout attempt for an application's enrollment fee.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, JSON, ForeignKey, Boolean, Index

from admissions.database import Base

PENDING = "pending"
SUCCESS = "success"
FAILED = "failed"
CANCELLED = "cancelled"
EXPIRED = "expired"

TERMINAL_STATUSES = frozenset({SUCCESS, FAILED, CANCELLED, EXPIRED})


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        Index("ix_payments_user_status", "user_id", "status"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    reference = Column(String(100), unique=True, nullable=False, index=True)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    application_id = Column(Integer, ForeignKey("applications.id"), nullable=False, index=True)

    track = Column(String(32))
    program = Column(String(32))

    amount = Column(Integer, nullable=False)        # Minor units (kobo)
    currency = Column(String(3), default="NGN")

    # Statuses: pending → success | failed | cancelled | expired (terminal)
    status = Column(String(16), default=PENDING, nullable=False, index=True)
    verified = Column(Boolean, default=False, nullable=False)
    payment_method = Column(String(16), default="paystack")

    # Checkout session issued by the gateway
    checkout_url = Column(String(512))
    access_code = Column(String(128))

    payment_metadata = Column(JSON, default=dict)

    paid_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_overdue(self, now: datetime | None = None) -> bool:
        """Pending past its expiry horizon."""
        return self.status == PENDING and self.expires_at < (now or datetime.utcnow())
