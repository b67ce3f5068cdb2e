"""Shared constants and builders for the test suite.

Webhook payloads are signed with the same HMAC-SHA256 scheme Stripe uses, so
the real signature verification runs in contract and integration tests.
"""

import hashlib
import hmac
import json
import time
from typing import Any

TABLE_PREFIX = "test-membership"
REGION = "us-east-1"
APP_URL = "https://portal.example.org"
WEBHOOK_SECRET = "whsec_test_secret_for_testing"

MEMBER_ID = "sub-member-0001"
RENEWING_MEMBER_ID = "sub-member-0002"
OTHER_MEMBER_ID = "sub-member-0003"
ADMIN_ID = "sub-admin-0001"

SESSION_ID = "cs_test_abc123"
CHECKOUT_URL = "https://checkout.stripe.com/c/pay/cs_test_abc123"
NEW_CUSTOMER_ID = "cus_new123"
EXISTING_CUSTOMER_ID = "cus_existing456"
PAYMENT_INTENT_ID = "pi_3ABC123DEF456"
REFUND_ID = "re_3ABC123DEF456"


# === Identity headers ===


def member_headers(member_id: str = MEMBER_ID) -> dict[str, str]:
    return {"x-user-sub": member_id, "x-user-role": "member"}


def admin_headers() -> dict[str, str]:
    return {"x-user-sub": ADMIN_ID, "x-user-role": "admin"}


# === Stripe webhook payloads ===


def create_stripe_signature(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    """Create a valid Stripe-Signature header value for testing."""
    timestamp = int(time.time())
    signed_payload = f"{timestamp}.{payload.decode('utf-8')}"
    signature = hmac.new(
        secret.encode("utf-8"),
        signed_payload.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_event(event_id: str, event_type: str, data_object: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": int(time.time()),
        "data": {"object": data_object},
    }


def checkout_session(
    session_id: str = SESSION_ID,
    *,
    member_id: str = MEMBER_ID,
    metadata: dict[str, str] | None = None,
    payment_status: str = "paid",
    status: str = "complete",
    amount_total: int = 7500,
    payment_intent: str | None = PAYMENT_INTENT_ID,
    customer: str | None = NEW_CUSTOMER_ID,
) -> dict[str, Any]:
    """Checkout Session object as delivered in webhook events."""
    if metadata is None:
        metadata = {
            "member_id": member_id,
            "membership_type_slug": "adult-annual",
            "payment_type": "membership_dues",
        }
    return {
        "id": session_id,
        "object": "checkout.session",
        "mode": "payment",
        "status": status,
        "payment_status": payment_status,
        "amount_total": amount_total,
        "currency": "usd",
        "customer": customer,
        "payment_intent": payment_intent,
        "metadata": metadata,
    }


def checkout_completed_event(
    event_id: str = "evt_checkout_completed_001", **session_kwargs: Any
) -> dict[str, Any]:
    return make_event(
        event_id, "checkout.session.completed", checkout_session(**session_kwargs)
    )


def payment_failed_event(
    event_id: str = "evt_payment_failed_001",
    payment_intent_id: str = PAYMENT_INTENT_ID,
    message: str | None = "Your card was declined.",
) -> dict[str, Any]:
    last_error: dict[str, Any] = {"code": "card_declined", "decline_code": "generic_decline"}
    if message:
        last_error["message"] = message
    return make_event(
        event_id,
        "payment_intent.payment_failed",
        {
            "id": payment_intent_id,
            "object": "payment_intent",
            "status": "requires_payment_method",
            "last_payment_error": last_error,
        },
    )


def payment_succeeded_event(
    event_id: str = "evt_payment_succeeded_001",
    payment_intent_id: str = PAYMENT_INTENT_ID,
) -> dict[str, Any]:
    return make_event(
        event_id,
        "payment_intent.succeeded",
        {"id": payment_intent_id, "object": "payment_intent", "status": "succeeded"},
    )


def signed_request(event: dict[str, Any]) -> tuple[bytes, dict[str, str]]:
    """Body and headers for posting an event to the webhook endpoint."""
    payload = json.dumps(event).encode("utf-8")
    return payload, {
        "Stripe-Signature": create_stripe_signature(payload),
        "Content-Type": "application/json",
    }


# === Direct table access ===


def put_item(resource: Any, table: str, item: dict[str, Any]) -> None:
    resource.Table(f"{TABLE_PREFIX}-{table}").put_item(Item=item)


def get_item(resource: Any, table: str, key: dict[str, Any]) -> dict[str, Any] | None:
    return resource.Table(f"{TABLE_PREFIX}-{table}").get_item(Key=key).get("Item")
