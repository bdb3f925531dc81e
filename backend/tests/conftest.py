import json
import os
import tempfile
import threading

# Environment must be in place before admissions.config is first imported.
_TMP_DIR = tempfile.mkdtemp(prefix="admissions-tests-")
WEBHOOK_SECRET = "whsec_test_secret"

os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["ENVIRONMENT"] = "test"
os.environ["PAYSTACK_SECRET_KEY"] = "sk_test_dummy"
os.environ["PAYSTACK_WEBHOOK_SECRET"] = WEBHOOK_SECRET
os.environ["FRONTEND_URL"] = "http://frontend.test"
os.environ["EXPIRY_SWEEP_INTERVAL_SECONDS"] = "0"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
from fastapi.testclient import TestClient

from admissions.database import Base, SessionLocal, engine, init_db
from admissions.exceptions import GatewayError
from admissions.models.application import Application
from admissions.models.user import User
from admissions.services.gateway_client import (
    CheckoutSession, PaystackClient, VerificationResult, _STATUS_OUTCOMES, OUTCOME_FAILURE,
    get_gateway, parse_gateway_time,
)
from admissions.services.payment_service import PaymentOrchestrator
from admissions.utils.hashing import sign_payload
from admissions.utils.rate_limiter import limiter


class FakeGateway(PaystackClient):
    """In-process stand-in for Paystack; webhook authentication stays real."""

    def __init__(self, settings=None):
        super().__init__(settings)
        self.checkouts = []
        self.verify_calls = []
        self.outcomes = {}
        self.fail_checkout = False
        self._counter = 0
        self._lock = threading.Lock()

    def create_checkout(self, payer_email, amount, currency, metadata, reference=None):
        self.checkouts.append({
            "email": payer_email, "amount": amount, "currency": currency,
            "metadata": metadata, "reference": reference,
        })
        if self.fail_checkout:
            raise GatewayError("Payment gateway error: checkout unavailable")
        with self._lock:
            self._counter += 1
            counter = self._counter
        gateway_reference = reference or f"GW-REF-{counter:04d}"
        return CheckoutSession(
            checkout_url=f"https://checkout.paystack.test/{gateway_reference}",
            gateway_reference=gateway_reference,
            access_token=f"ACCESS-{counter}",
        )

    def verify_transaction(self, gateway_reference):
        self.verify_calls.append(gateway_reference)
        status = self.outcomes.get(gateway_reference, "success")
        data = {
            "reference": gateway_reference,
            "status": status,
            "paid_at": "2026-10-16T10:00:00.000Z" if status == "success" else None,
            "metadata": {"channel": "card"},
        }
        return VerificationResult(
            outcome=_STATUS_OUTCOMES.get(status, OUTCOME_FAILURE),
            paid_at=parse_gateway_time(data["paid_at"]),
            raw_payload=data,
        )


def webhook_body(event, reference, **data):
    return json.dumps({"event": event, "data": {"reference": reference, **data}}).encode("utf-8")


def sign(body: bytes) -> str:
    return sign_payload(body, WEBHOOK_SECRET)


@pytest.fixture(autouse=True)
def _fresh_database():
    Base.metadata.drop_all(bind=engine)
    init_db()
    limiter.reset()
    yield


@pytest.fixture
def db_session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def gateway():
    fake = FakeGateway()
    yield fake
    fake.close()


@pytest.fixture
def orchestrator(db_session, gateway):
    return PaymentOrchestrator(db_session, gateway)


@pytest.fixture
def make_applicant(db_session):
    """Create a user and an application for them; returns (user, application)."""
    created = {"n": 0}

    def _make(email=None, status="pending"):
        created["n"] += 1
        n = created["n"]
        user = User(email=email or f"applicant{n}@example.com", first_name="Ada", last_name=f"Applicant{n}")
        db_session.add(user)
        db_session.commit()
        application = Application(
            user_id=user.id,
            first_name=user.first_name,
            last_name=user.last_name,
            email=user.email,
            track="backend-development",
            program="professional",
            status=status,
            payment_status="pending",
        )
        db_session.add(application)
        db_session.commit()
        return user, application

    return _make


@pytest.fixture
def client(gateway):
    from admissions.main import app

    app.dependency_overrides[get_gateway] = lambda: gateway
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
