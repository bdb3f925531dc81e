import json
from datetime import datetime

import httpx
import pytest

from admissions.config import Settings
from admissions.exceptions import GatewayError
from admissions.services.gateway_client import PaystackClient, parse_gateway_time
from admissions.utils.hashing import sign_payload


def _settings(**overrides):
    values = {
        "PAYSTACK_SECRET_KEY": "sk_test_abc",
        "PAYSTACK_BASE_URL": "https://api.paystack.test",
        "PAYSTACK_WEBHOOK_SECRET": "whsec_unit",
        "FRONTEND_URL": "http://frontend.test",
        "ENVIRONMENT": "test",
    }
    values.update(overrides)
    return Settings(**values)


def _client(handler, **overrides):
    return PaystackClient(_settings(**overrides), transport=httpx.MockTransport(handler))


def test_create_checkout_sends_minor_units_and_json_metadata():
    seen = {}

    def handler(request: httpx.Request):
        seen["path"] = request.url.path
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "status": True,
            "message": "Authorization URL created",
            "data": {
                "authorization_url": "https://checkout.paystack.com/abc123",
                "access_code": "abc123",
                "reference": "ref_gw_1",
            },
        })

    session = _client(handler).create_checkout(
        "ada@example.com", 500000, "NGN", {"application_id": "7", "track": "devops"},
    )

    assert session.gateway_reference == "ref_gw_1"
    assert session.checkout_url == "https://checkout.paystack.com/abc123"
    assert session.access_token == "abc123"
    assert seen["path"] == "/transaction/initialize"
    assert seen["auth"] == "Bearer sk_test_abc"
    assert seen["body"]["amount"] == 500000
    assert seen["body"]["callback_url"] == "http://frontend.test"
    assert json.loads(seen["body"]["metadata"]) == {"application_id": "7", "track": "devops"}
    assert "reference" not in seen["body"]


def test_create_checkout_rejected_by_gateway():
    def handler(request):
        return httpx.Response(400, json={"status": False, "message": "Invalid key"})

    with pytest.raises(GatewayError, match="Invalid key"):
        _client(handler).create_checkout("ada@example.com", 100, "NGN", {})


def test_timeout_becomes_gateway_error():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(GatewayError, match="timed out"):
        _client(handler).verify_transaction("ref_gw_1")


@pytest.mark.parametrize("status,outcome", [
    ("success", "success"),
    ("failed", "failure"),
    ("reversed", "failure"),
    ("abandoned", "pending"),
    ("ongoing", "pending"),
])
def test_verify_maps_gateway_status(status, outcome):
    def handler(request):
        assert request.url.path == "/transaction/verify/ref_gw_1"
        return httpx.Response(200, json={
            "status": True,
            "data": {"reference": "ref_gw_1", "status": status, "paid_at": "2026-10-16T09:15:30.000Z"},
        })

    result = _client(handler).verify_transaction("ref_gw_1")

    assert result.outcome == outcome
    assert result.paid_at == datetime(2026, 10, 16, 9, 15, 30)
    assert result.raw_payload["status"] == status


def test_parse_gateway_time_normalizes_offsets():
    assert parse_gateway_time("2026-10-16T10:00:00+01:00") == datetime(2026, 10, 16, 9, 0, 0)
    assert parse_gateway_time(None) is None
    assert parse_gateway_time("not a date") is None


def test_authenticate_webhook_uses_hmac_sha512():
    client = _client(lambda r: httpx.Response(200, json={}))
    body = b'{"event":"charge.success","data":{"reference":"ref_gw_1"}}'

    assert client.authenticate_webhook(body, sign_payload(body, "whsec_unit")) is True
    assert client.authenticate_webhook(body, sign_payload(body, "other")) is False
    assert client.authenticate_webhook(body, None) is False


def test_missing_webhook_secret_fails_closed_by_default():
    client = _client(lambda r: httpx.Response(200, json={}), PAYSTACK_WEBHOOK_SECRET="")
    assert client.authenticate_webhook(b"{}", None) is False


def test_unsigned_webhooks_only_allowed_outside_production():
    sandbox = _client(
        lambda r: httpx.Response(200, json={}),
        PAYSTACK_WEBHOOK_SECRET="", WEBHOOK_ALLOW_UNSIGNED=True,
    )
    production = _client(
        lambda r: httpx.Response(200, json={}),
        PAYSTACK_WEBHOOK_SECRET="", WEBHOOK_ALLOW_UNSIGNED=True, ENVIRONMENT="production",
    )

    assert sandbox.authenticate_webhook(b"{}", None) is True
    assert production.authenticate_webhook(b"{}", None) is False
