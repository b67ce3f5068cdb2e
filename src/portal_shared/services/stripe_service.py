"""Stripe gateway for the membership portal.

Everything the portal asks of Stripe goes through `StripeService`: creating
customers, opening payment-mode Checkout sessions, looking sessions back up
during reconciliation, verifying webhook deliveries and issuing full refunds.
Keys are resolved lazily through `Settings.resolve_secret`, so a process that
never talks to Stripe never needs them.

Any `stripe.StripeError` is re-raised as `StripeServiceError` carrying the
Stripe error code; callers map that code to a user-facing message.
"""

import hashlib
import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any

import stripe
from pydantic import BaseModel, Field
from stripe import StripeClient

from portal_shared.config import Settings, get_settings

logger = logging.getLogger(__name__)

CURRENCY = "usd"


class StripeServiceError(Exception):
    """A Stripe call failed. The message is for logs only."""

    def __init__(self, message: str, stripe_error_code: str | None = None) -> None:
        super().__init__(message)
        self.stripe_error_code = stripe_error_code


class WebhookSecretMissingError(StripeServiceError):
    """No webhook signing secret is configured for this environment."""


class CheckoutLineItem(BaseModel):
    name: str
    description: str | None = None
    amount_cents: int = Field(..., gt=0, description="Unit amount in USD cents")
    quantity: int = Field(default=1, gt=0)

    def to_stripe(self) -> dict[str, Any]:
        product: dict[str, str] = {"name": self.name}
        if self.description:
            product["description"] = self.description
        return {
            "price_data": {
                "currency": CURRENCY,
                "unit_amount": self.amount_cents,
                "product_data": product,
            },
            "quantity": self.quantity,
        }


class CheckoutSessionResult(BaseModel):
    session_id: str
    checkout_url: str | None = None
    expires_at: datetime | None = None


class RefundResult(BaseModel):
    refund_id: str
    amount_cents: int | None = None
    status: str | None = None


def _as_dict(stripe_object: Any) -> dict[str, Any]:
    # str() of a StripeObject is its JSON form, nested objects included
    return json.loads(str(stripe_object))


def _timestamp(value: int | None) -> datetime | None:
    return datetime.fromtimestamp(value, tz=timezone.utc) if value else None


@contextmanager
def _stripe_errors(action: str) -> Iterator[None]:
    """Translate Stripe SDK failures raised while performing `action`."""
    try:
        yield
    except stripe.StripeError as e:
        code = getattr(e, "code", None)
        logger.error("Stripe failed to %s: %s (code: %s)", action, e, code)
        raise StripeServiceError(f"Failed to {action}: {e}", stripe_error_code=code) from e


class StripeService:
    """Portal operations against the Stripe API.

    Usage:
        session = get_stripe_service().create_checkout_session(
            customer_id="cus_123",
            line_items=[CheckoutLineItem(name="Adult Annual", amount_cents=7500)],
            metadata={"member_id": "mem-123"},
            success_url="https://example.com/success",
            cancel_url="https://example.com/cancel",
        )
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._client: StripeClient | None = None
        self._webhook_secret: str | None = None

    def _get_client(self) -> StripeClient:
        if self._client is not None:
            return self._client
        secret_key = self._settings.resolve_secret("secret_key")
        if not secret_key:
            raise StripeServiceError("Stripe secret key is not configured")
        self._client = StripeClient(secret_key)
        logger.info("Stripe client ready (environment=%s)", self._settings.environment)
        return self._client

    def _get_webhook_secret(self) -> str:
        if self._webhook_secret is None:
            secret = self._settings.resolve_secret("webhook_secret")
            if not secret:
                raise WebhookSecretMissingError("Stripe webhook secret is not configured")
            self._webhook_secret = secret
        return self._webhook_secret

    def has_webhook_secret(self) -> bool:
        try:
            self._get_webhook_secret()
        except WebhookSecretMissingError:
            return False
        return True

    def create_customer(self, *, email: str, name: str, member_id: str) -> str:
        """Create the Stripe customer for a member and return its `cus_` id."""
        client = self._get_client()
        with _stripe_errors("create customer"):
            customer = client.customers.create(
                params={"email": email, "name": name, "metadata": {"member_id": member_id}}
            )
        logger.info("Created Stripe customer %s for member %s", customer.id, member_id)
        return customer.id

    def create_checkout_session(
        self,
        *,
        customer_id: str,
        line_items: list[CheckoutLineItem],
        metadata: dict[str, str],
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSessionResult:
        """Open a one-off payment Checkout session.

        Args:
            customer_id: Stripe customer to charge.
            line_items: Priced lines, amounts in USD cents.
            metadata: Echoed back on the completed session and its webhook.
            success_url: Redirect after payment; may contain {CHECKOUT_SESSION_ID}.
            cancel_url: Redirect when the member backs out.

        Raises:
            StripeServiceError: If Stripe rejects the session.
        """
        client = self._get_client()
        params = {
            "mode": "payment",
            "customer": customer_id,
            "line_items": [item.to_stripe() for item in line_items],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
        }
        with _stripe_errors("create checkout session"):
            session = client.checkout.sessions.create(params=params)

        logger.info(
            "Opened checkout session %s for %s (%d line item(s))",
            session.id,
            customer_id,
            len(line_items),
        )
        return CheckoutSessionResult(
            session_id=session.id,
            checkout_url=session.url,
            expires_at=_timestamp(getattr(session, "expires_at", None)),
        )

    def retrieve_checkout_session(self, session_id: str) -> dict[str, Any]:
        client = self._get_client()
        with _stripe_errors(f"retrieve checkout session {session_id}"):
            session = client.checkout.sessions.retrieve(session_id)
        return _as_dict(session)

    def find_session_for_payment_intent(self, payment_intent_id: str) -> dict[str, Any] | None:
        """The Checkout session behind a PaymentIntent, or None if there is none."""
        client = self._get_client()
        with _stripe_errors(f"look up checkout session for {payment_intent_id}"):
            found = client.checkout.sessions.list(
                params={"payment_intent": payment_intent_id, "limit": 1}
            )
        return _as_dict(found.data[0]) if found.data else None

    def verify_webhook_signature(self, payload: bytes, signature: str) -> dict[str, Any]:
        """Check the Stripe-Signature header and return the event as plain dicts.

        Raises:
            WebhookSecretMissingError: If no signing secret is configured.
            StripeServiceError: If the signature does not match or the body
                is not a Stripe event.
        """
        secret = self._get_webhook_secret()
        try:
            event = stripe.Webhook.construct_event(payload, signature, secret)
        except (stripe.SignatureVerificationError, ValueError) as e:
            logger.warning("Rejected webhook delivery: %s", e)
            raise StripeServiceError("Invalid webhook signature") from e

        logger.info("Verified webhook event %s", event["id"])
        return json.loads(payload)

    def create_refund(self, *, payment_intent_id: str, reason: str | None = None) -> RefundResult:
        """Refund a PaymentIntent in full; `reason` is kept as refund metadata."""
        client = self._get_client()
        params: dict[str, Any] = {"payment_intent": payment_intent_id}
        if reason:
            params["metadata"] = {"reason": reason}

        with _stripe_errors(f"refund {payment_intent_id}"):
            refund = client.refunds.create(params=params)

        logger.info("Refund %s issued for %s", refund.id, payment_intent_id)
        return RefundResult(refund_id=refund.id, amount_cents=refund.amount, status=refund.status)

    @staticmethod
    def compute_payload_hash(payload: bytes) -> str:
        """SHA-256 hex digest of a raw webhook body, stored on the audit row."""
        return hashlib.sha256(payload).hexdigest()


@lru_cache(maxsize=1)
def get_stripe_service() -> StripeService:
    return StripeService()
