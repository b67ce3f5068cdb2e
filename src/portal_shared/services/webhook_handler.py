"""Webhook handler for processing verified Stripe events.

Provides business logic for handling webhook events separate from
HTTP routing concerns. This enables:
- Unit testing without HTTP overhead
- Reuse across different transport mechanisms

The route verifies the signature; this handler never raises. Handler
exceptions become an "error" processing result so Stripe still gets a 200.
"""

import logging
from typing import TYPE_CHECKING, Any, Callable

from pydantic import BaseModel

from portal_shared.models import ProcessingResult, WebhookEvent, payment_id_for_session
from portal_shared.utils.dates import utc_now
from portal_shared.utils.logging import log_webhook_event

from .reconciliation import HandlerResult, ReconciliationService

if TYPE_CHECKING:
    from .record_store import ServiceStore

logger = logging.getLogger(__name__)

CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"
PROCESSING_FAILED_MESSAGE = "Event processing failed"


class WebhookOutcome(BaseModel):
    """What happened to one verified delivery."""

    event_id: str | None = None
    event_type: str | None = None
    processing_result: ProcessingResult
    message: str | None = None


class WebhookHandler:
    """Handler for processing Stripe webhook events.

    Dispatches by event type and records every delivery in the
    stripe-webhook-events table for idempotency and audit.
    """

    def __init__(
        self,
        store: "ServiceStore",
        reconciliation: ReconciliationService,
    ) -> None:
        self._store = store
        self._reconciliation = reconciliation
        self._handlers: dict[str, Callable[[dict[str, Any]], HandlerResult]] = {
            CHECKOUT_SESSION_COMPLETED: reconciliation.fulfill_checkout_session,
            PAYMENT_INTENT_SUCCEEDED: reconciliation.record_payment_intent,
            PAYMENT_INTENT_FAILED: reconciliation.record_payment_failure,
        }

    @property
    def handled_event_types(self) -> set[str]:
        return set(self._handlers)

    def dispatch(self, event: dict[str, Any]) -> HandlerResult:
        """Route an event to its handler.

        Returns:
            Tuple of (processing_result, message). Unrecognized types are skipped.
        """
        event_type = event.get("type")
        handler = self._handlers.get(event_type or "")
        if handler is None:
            logger.info("Unhandled event type %s, skipping", event_type)
            return ProcessingResult.SKIPPED, f"Event type '{event_type}' not handled"

        data_object = (event.get("data") or {}).get("object") or {}
        return handler(data_object)

    def handle(self, event: dict[str, Any], payload_hash: str) -> WebhookOutcome:
        """Process one verified event: dedupe, dispatch and audit."""
        event_id = event.get("id")
        event_type = event.get("type")

        log_webhook_event(logger, event_type, event_id, result="received")

        if event_id and self._already_processed(event_id):
            log_webhook_event(logger, event_type, event_id, result="duplicate")
            return WebhookOutcome(
                event_id=event_id,
                event_type=event_type,
                processing_result=ProcessingResult.DUPLICATE,
                message="Event already processed",
            )

        try:
            result, message = self.dispatch(event)
            reply = message
        except Exception as e:
            logger.exception(
                "Webhook handler failed for %s (%s)", event_type, event_id
            )
            # exception text stays in logs and the audit row
            result, message = ProcessingResult.ERROR, f"{type(e).__name__}: {e}"
            reply = PROCESSING_FAILED_MESSAGE

        session_id = self._checkout_session_id(event)
        payment_id = payment_id_for_session(session_id) if session_id else None
        log_webhook_event(
            logger,
            event_type,
            event_id,
            session_id=session_id,
            payment_id=payment_id,
            result=result.value,
            error=message if result == ProcessingResult.ERROR else None,
        )

        if event_id:
            self._audit(
                WebhookEvent(
                    event_id=event_id,
                    event_type=event_type or "unknown",
                    processed_at=utc_now(),
                    payload_hash=payload_hash,
                    checkout_session_id=session_id,
                    payment_id=payment_id,
                    processing_result=result,
                    error_message=message if result == ProcessingResult.ERROR else None,
                )
            )

        return WebhookOutcome(
            event_id=event_id,
            event_type=event_type,
            processing_result=result,
            message=reply if result != ProcessingResult.SUCCESS else None,
        )

    def _already_processed(self, event_id: str) -> bool:
        try:
            return self._store.is_event_processed(event_id)
        except Exception as e:
            logger.error("Idempotency lookup failed for %s: %s", event_id, e)
            return False

    def _audit(self, record: WebhookEvent) -> None:
        try:
            self._store.log_webhook_event(record)
        except Exception as e:
            logger.error("Failed to log webhook event %s: %s", record.event_id, e)

    @staticmethod
    def _checkout_session_id(event: dict[str, Any]) -> str | None:
        if not (event.get("type") or "").startswith("checkout.session."):
            return None
        data_object = (event.get("data") or {}).get("object") or {}
        return data_object.get("id")
