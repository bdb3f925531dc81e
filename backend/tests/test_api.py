import time
from datetime import datetime, timedelta

from fastapi.testclient import TestClient

from admissions.config import get_settings
from admissions.models.audit import AuditLog
from admissions.models.payment import Payment
from admissions.services.expiry_sweeper import sweeper

from conftest import sign, webhook_body


def _initialize(client, application_id, amount=500000, **extra):
    return client.post("/api/payments/initialize", json={"application_id": application_id, "amount": amount, **extra})


def test_initialize_returns_checkout_session(client, make_applicant):
    _, application = make_applicant()

    response = _initialize(client, application.id, metadata={"source": "landing-page"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["reference"] == "GW-REF-0001"
    assert body["data"]["authorization_url"].endswith("/GW-REF-0001")
    assert body["data"]["reused"] is False

    again = _initialize(client, application.id)
    assert again.json()["data"]["reference"] == "GW-REF-0001"
    assert again.json()["data"]["reused"] is True


def test_initialize_unknown_application_is_404(client):
    response = _initialize(client, 4242)

    assert response.status_code == 404
    assert response.json() == {"success": False, "detail": "Application not found", "error_code": "NOT_FOUND"}


def test_initialize_gateway_failure_is_502_with_no_payment(client, gateway, make_applicant, db_session):
    _, application = make_applicant()
    gateway.fail_checkout = True

    response = _initialize(client, application.id)

    assert response.status_code == 502
    assert response.json()["error_code"] == "GATEWAY_ERROR"
    assert db_session.query(Payment).count() == 0


def test_initialize_rejects_non_positive_amount(client, make_applicant):
    _, application = make_applicant()
    assert _initialize(client, application.id, amount=0).status_code == 422


def test_verify_success_then_idempotent(client, make_applicant):
    _, application = make_applicant()
    reference = _initialize(client, application.id).json()["data"]["reference"]

    first = client.get("/api/payments/verify", params={"reference": reference})
    assert first.status_code == 200
    assert first.json()["message"] == "Payment verified successfully"
    assert first.json()["data"]["redirect_url"] == "http://frontend.test/dashboard"
    payment = first.json()["data"]["payment"]
    assert payment["status"] == "success"
    assert payment["verified"] is True

    second = client.get("/api/payments/verify", params={"reference": reference})
    assert second.status_code == 200
    assert second.json()["message"] == "Payment already verified"
    assert second.json()["data"]["payment"]["paid_at"] == payment["paid_at"]


def test_verify_failed_payment_is_400(client, gateway, make_applicant):
    _, application = make_applicant()
    reference = _initialize(client, application.id).json()["data"]["reference"]
    gateway.outcomes[reference] = "failed"

    response = client.get("/api/payments/verify", params={"reference": reference})

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert response.json()["data"]["payment"]["status"] == "failed"


def test_verify_requires_known_reference(client):
    assert client.get("/api/payments/verify").status_code == 400
    assert client.get("/api/payments/verify", params={"reference": "missing"}).status_code == 404


def test_webhook_rejects_bad_signature(client, make_applicant):
    _, application = make_applicant()
    reference = _initialize(client, application.id).json()["data"]["reference"]
    body = webhook_body("charge.success", reference)

    response = client.post(
        "/api/payments/webhook", content=body,
        headers={"content-type": "application/json", "x-paystack-signature": "bad"},
    )

    assert response.status_code == 401
    assert response.json()["error_code"] == "INVALID_SIGNATURE"


def test_webhook_settles_payment_and_acknowledges(client, make_applicant):
    user, application = make_applicant()
    reference = _initialize(client, application.id).json()["data"]["reference"]
    body = webhook_body("charge.success", reference, paid_at="2026-10-16T12:00:00Z")

    response = client.post(
        "/api/payments/webhook", content=body,
        headers={"content-type": "application/json", "x-paystack-signature": sign(body)},
    )

    assert response.status_code == 200
    assert response.json()["handled"] is True
    assert response.json()["status"] == "success"

    # Verify after the webhook is a no-op that still reports success.
    verify = client.get("/api/payments/verify", params={"reference": reference})
    assert verify.status_code == 200
    assert verify.json()["message"] == "Payment already verified"
    assert verify.json()["data"]["payment"]["paid_at"].startswith("2026-10-16T12:00:00")


def test_webhook_ignores_unknown_events(client):
    body = webhook_body("subscription.create", "anything")
    response = client.post(
        "/api/payments/webhook", content=body,
        headers={"content-type": "application/json", "x-paystack-signature": sign(body)},
    )
    assert response.status_code == 200
    assert response.json()["handled"] is False


def test_history_pending_and_details(client, make_applicant, db_session):
    user, application = make_applicant()
    other_user, other_application = make_applicant()
    reference = _initialize(client, application.id).json()["data"]["reference"]
    _initialize(client, other_application.id)
    headers = {"user-id": str(user.id)}

    history = client.get("/api/payments/history", params={"page": 1, "limit": 5}, headers=headers)
    assert history.status_code == 200
    data = history.json()["data"]
    assert [p["reference"] for p in data["payments"]] == [reference]
    assert data["pagination"] == {"page": 1, "limit": 5, "total": 1, "pages": 1}

    pending = client.get("/api/payments/pending", headers=headers)
    assert [p["reference"] for p in pending.json()["data"]["pending_payments"]] == [reference]

    payment_id = data["payments"][0]["id"]
    details = client.get(f"/api/payments/{payment_id}", headers=headers)
    assert details.status_code == 200
    assert details.json()["data"]["payment"]["reference"] == reference

    foreign = client.get(f"/api/payments/{payment_id}", headers={"user-id": str(other_user.id)})
    assert foreign.status_code == 404


def test_details_lazily_expire_overdue_payment(client, make_applicant, db_session):
    user, application = make_applicant()
    reference = _initialize(client, application.id).json()["data"]["reference"]
    db_session.query(Payment).filter(Payment.reference == reference).update(
        {"expires_at": datetime.utcnow() - timedelta(seconds=1)}
    )
    db_session.commit()
    payment_id = db_session.query(Payment.id).filter(Payment.reference == reference).scalar()

    details = client.get(f"/api/payments/{payment_id}", headers={"user-id": str(user.id)})

    assert details.json()["data"]["payment"]["status"] == "expired"
    assert client.get("/api/payments/pending", headers={"user-id": str(user.id)}).json()["data"]["pending_payments"] == []


def test_admin_audit_trail_and_sweep(client, make_applicant, db_session):
    _, application = make_applicant()
    reference = _initialize(client, application.id).json()["data"]["reference"]
    client.get("/api/payments/verify", params={"reference": reference})

    trail = client.get(f"/api/admin/payments/{reference}/audit")
    assert trail.status_code == 200
    assert [entry["action"] for entry in trail.json()] == [
        "PAYMENT_INITIALIZED", "PAYMENT_SUCCEEDED", "APPLICATION_ENROLLED",
    ]

    retry = client.post(f"/api/admin/payments/{reference}/retry-cascade")
    assert retry.status_code == 200
    assert retry.json()["success"] is True
    assert retry.json()["status"] == "success"

    sweep = client.post("/api/admin/payments/expire-overdue")
    assert sweep.json() == {"success": True, "expired": 0}

    assert client.get("/api/admin/payments/missing/audit").status_code == 404


def test_retry_cascade_requires_settled_payment(client, make_applicant):
    _, application = make_applicant()
    reference = _initialize(client, application.id).json()["data"]["reference"]

    response = client.post(f"/api/admin/payments/{reference}/retry-cascade")

    assert response.status_code == 400
    assert response.json()["error_code"] == "VALIDATION_ERROR"


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["database"] == "connected"
    assert response.json()["webhook_auth"] == "signed"
    assert response.json()["gateway"] == "test"


def test_webhook_with_malformed_data_is_400(client):
    body = b'{"event": "charge.success", "data": "oops"}'
    response = client.post(
        "/api/payments/webhook", content=body,
        headers={"content-type": "application/json", "x-paystack-signature": sign(body)},
    )
    assert response.status_code == 400
    assert response.json()["error_code"] == "VALIDATION_ERROR"


def test_audit_chain_verification_detects_tampering(client, make_applicant, db_session):
    _, application = make_applicant()
    reference = _initialize(client, application.id).json()["data"]["reference"]
    client.get("/api/payments/verify", params={"reference": reference})

    intact = client.get(f"/api/admin/applications/{application.id}/audit/verify")
    assert intact.status_code == 200
    assert intact.json()["valid"] is True
    assert intact.json()["total_entries"] == 3

    second = (
        db_session.query(AuditLog)
        .filter(AuditLog.application_id == application.id)
        .order_by(AuditLog.id.asc())
        .all()[1]
    )
    second.previous_hash = "0" * 64
    db_session.commit()

    tampered = client.get(f"/api/admin/applications/{application.id}/audit/verify")
    assert tampered.json()["valid"] is False
    assert tampered.json()["broken_at"] == second.id

    assert client.get("/api/admin/applications/9999/audit/verify").status_code == 404


def test_background_sweep_expires_overdue_payment(gateway, orchestrator, make_applicant, db_session, monkeypatch):
    from admissions.main import app

    _, application = make_applicant()
    reference = orchestrator.initialize(application.id, 500000).reference
    db_session.query(Payment).filter(Payment.reference == reference).update(
        {"expires_at": datetime.utcnow() - timedelta(seconds=1)}
    )
    db_session.commit()
    monkeypatch.setattr(get_settings(), "EXPIRY_SWEEP_INTERVAL_SECONDS", 1)

    status = None
    with TestClient(app):
        assert sweeper.running
        deadline = time.time() + 10
        while time.time() < deadline:
            db_session.expire_all()
            status = db_session.query(Payment.status).filter(Payment.reference == reference).scalar()
            if status == "expired":
                break
            time.sleep(0.05)

    assert status == "expired"
    assert sweeper.running is False
