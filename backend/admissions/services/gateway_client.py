"""
Gateway Client — Narrow wrapper around the Paystack transaction API.

Holds no local state. Checkout creation opens a remote session and must not
be retried blindly; verification is read-only and safe to retry; webhook
authentication is a local HMAC check over the untouched request bytes.
"""
import json
from dataclasses import dataclass, field
from functools import lru_cache
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
import structlog

from admissions.config import Settings, get_settings
from admissions.exceptions import GatewayError
from admissions.utils.hashing import sign_payload, signatures_match

logger = structlog.get_logger(component="gateway")

OUTCOME_SUCCESS = "success"
OUTCOME_FAILURE = "failure"
OUTCOME_PENDING = "pending"

# Paystack transaction statuses → reconciliation outcome
_STATUS_OUTCOMES = {
    "success": OUTCOME_SUCCESS,
    "failed": OUTCOME_FAILURE,
    "reversed": OUTCOME_FAILURE,
    "abandoned": OUTCOME_PENDING,
    "ongoing": OUTCOME_PENDING,
    "pending": OUTCOME_PENDING,
    "processing": OUTCOME_PENDING,
    "queued": OUTCOME_PENDING,
}


@dataclass
class CheckoutSession:
    checkout_url: str
    gateway_reference: str
    access_token: str


@dataclass
class VerificationResult:
    outcome: str                       # success | failure | pending
    paid_at: Optional[datetime]
    raw_payload: Dict[str, Any] = field(default_factory=dict)


def parse_gateway_time(value: Any) -> Optional[datetime]:
    """Parse Paystack ISO-8601 timestamps into naive UTC datetimes."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class PaystackClient:
    """Synchronous Paystack client with a bounded timeout on every call."""

    def __init__(self, settings: Settings | None = None, transport: httpx.BaseTransport | None = None):
        self.settings = settings or get_settings()
        self._client = httpx.Client(
            base_url=self.settings.PAYSTACK_BASE_URL,
            timeout=self.settings.GATEWAY_TIMEOUT_SECONDS,
            headers={
                "Authorization": f"Bearer {self.settings.PAYSTACK_SECRET_KEY}",
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    # ─── Outbound calls ──────────────────────────────────────────────

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.error("Gateway timeout", path=path)
            raise GatewayError("Payment gateway timed out", path=path) from e
        except httpx.HTTPError as e:
            logger.error("Gateway transport error", path=path, error=str(e))
            raise GatewayError(f"Payment gateway unreachable: {e}", path=path) from e

        try:
            body = response.json()
        except ValueError as e:
            raise GatewayError(
                f"Payment gateway returned a non-JSON response ({response.status_code})",
                path=path,
            ) from e

        if response.status_code >= 400 or not body.get("status"):
            message = body.get("message") or f"HTTP {response.status_code}"
            logger.error("Gateway rejected request", path=path, status_code=response.status_code, message=message)
            raise GatewayError(f"Payment gateway error: {message}", path=path)

        return body.get("data") or {}

    def create_checkout(
        self,
        payer_email: str,
        amount: int,
        currency: str,
        metadata: Dict[str, Any],
        reference: str | None = None,
    ) -> CheckoutSession:
        """Open a hosted checkout session. Not idempotent on the provider side."""
        payload = {
            "email": payer_email,
            "amount": int(amount),
            "currency": currency,
            "metadata": json.dumps(metadata, default=str),
            "callback_url": self.settings.FRONTEND_URL,
        }
        if reference:
            payload["reference"] = reference

        data = self._request("POST", "/transaction/initialize", json=payload)
        try:
            return CheckoutSession(
                checkout_url=data["authorization_url"],
                gateway_reference=data["reference"],
                access_token=data.get("access_code", ""),
            )
        except KeyError as e:
            raise GatewayError(f"Payment gateway response missing {e.args[0]}") from e

    def verify_transaction(self, gateway_reference: str) -> VerificationResult:
        """Look up the transaction outcome. Read-only, safe to retry."""
        data = self._request("GET", f"/transaction/verify/{gateway_reference}")
        status = str(data.get("status", "")).lower()
        outcome = _STATUS_OUTCOMES.get(status, OUTCOME_FAILURE)
        return VerificationResult(
            outcome=outcome,
            paid_at=parse_gateway_time(data.get("paid_at") or data.get("paidAt")),
            raw_payload=data,
        )

    # ─── Inbound webhooks ────────────────────────────────────────────

    def authenticate_webhook(self, raw_body: bytes, provided_signature: str | None) -> bool:
        """HMAC-SHA512 over the raw body, compared in constant time.

        Fails closed without a secret unless WEBHOOK_ALLOW_UNSIGNED is set
        outside production.
        """
        secret = self.settings.PAYSTACK_WEBHOOK_SECRET
        if not secret:
            if self.settings.WEBHOOK_ALLOW_UNSIGNED and not self.settings.is_production:
                logger.warning("Webhook secret not set, accepting unsigned webhook", environment=self.settings.ENVIRONMENT)
                return True
            logger.error("Webhook secret not set, rejecting webhook")
            return False

        return signatures_match(sign_payload(raw_body, secret), provided_signature)


@lru_cache()
def get_gateway() -> PaystackClient:
    """FastAPI dependency: one shared gateway client per process."""
    return PaystackClient()
