"""Payment reconciliation: applies Stripe outcomes to local records.

Called from the webhook handler for checkout.session.completed and
payment_intent.* events, and from the periodic sweep for pending payments
whose webhook never arrived.

Only the delivery that performs the conditional transition to succeeded
(from pending, or from failed after a declined card is retried) runs
fulfillment, so replays never extend a membership twice.
"""

import datetime as dt
import logging
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from portal_shared.models import (
    MembershipStatus,
    Payment,
    PaymentStatus,
    PaymentType,
    ProcessingResult,
    get_user_friendly_stripe_message,
    payment_id_for_session,
)
from portal_shared.utils.dates import add_months, utc_now
from portal_shared.utils.logging import log_payment_operation

from .checkout import FEE_PURCHASE_DESCRIPTION
from .stripe_service import StripeService, StripeServiceError

if TYPE_CHECKING:
    from .record_store import ServiceStore

logger = logging.getLogger(__name__)

PAID_STATUSES = {"paid", "no_payment_required"}
EXPIRED_REASON = "checkout session expired"

MEMBERSHIP_PAYMENT_TYPES = {PaymentType.MEMBERSHIP_DUES, PaymentType.MEMBERSHIP_RENEWAL}

HandlerResult = tuple[ProcessingResult, str | None]


class ReconciliationReport(BaseModel):
    """Counts from one sweep over pending payments."""

    checked: int = 0
    fulfilled: int = 0
    expired: int = 0
    unchanged: int = 0
    errors: int = 0


def _intent_id(value: Any) -> str | None:
    """Payment intent may arrive as an ID or an expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def compute_membership_window(
    status: MembershipStatus,
    current_start: dt.datetime | None,
    current_expiry: dt.datetime | None,
    duration_months: int | None,
    now: dt.datetime,
) -> tuple[dt.datetime | None, dt.datetime | None]:
    """Work out (new_start, new_expiry) for a paid membership.

    A new start is only returned when the member is not currently active;
    None means keep the existing start. Paid time is added on top of any
    remaining time. A None duration is a lifetime membership with no expiry.
    """
    currently_active = status == MembershipStatus.ACTIVE and (
        current_expiry is None or current_expiry > now
    )
    new_start = None if currently_active and current_start else now

    if duration_months is None:
        return new_start, None

    base = now
    if currently_active and current_expiry is not None and current_expiry > now:
        base = current_expiry
    return new_start, add_months(base, duration_months)


class ReconciliationService:
    """Applies completed, failed and expired checkouts to local records."""

    def __init__(self, stripe_service: StripeService, store: "ServiceStore") -> None:
        self._stripe = stripe_service
        self._store = store

    # === checkout.session.completed ===

    def fulfill_checkout_session(self, session: dict[str, Any]) -> HandlerResult:
        """Mark the session's payment succeeded and fulfill what it paid for.

        Args:
            session: Stripe Checkout Session object as a dict

        Returns:
            Tuple of (processing_result, message)
        """
        session_id = session.get("id")
        if not session_id:
            return ProcessingResult.ERROR, "Checkout session has no id"

        payment_status = session.get("payment_status")
        if payment_status not in PAID_STATUSES:
            logger.warning(
                "Checkout session %s has payment_status=%s, skipping",
                session_id,
                payment_status,
            )
            return ProcessingResult.SKIPPED, f"Payment status is '{payment_status}'"

        metadata: dict[str, str] = session.get("metadata") or {}
        payment_intent_id = _intent_id(session.get("payment_intent"))

        payment = self._store.mark_payment_succeeded(session_id, payment_intent_id)
        if payment is None:
            existing = self._store.get_payment_by_session(session_id)
            if existing is not None:
                logger.info(
                    "Payment %s for session %s already %s",
                    existing.payment_id,
                    session_id,
                    existing.status.value,
                )
                return ProcessingResult.DUPLICATE, f"Payment already {existing.status.value}"

            payment = self._build_fallback_payment(session, metadata, payment_intent_id)
            if payment is None:
                return ProcessingResult.ERROR, "Missing member_id in metadata"
            if not self._store.insert_payment(payment):
                return ProcessingResult.DUPLICATE, "Payment recorded by another delivery"
            log_payment_operation(
                logger,
                "insert_fallback_payment",
                payment_id=payment.payment_id,
                member_id=payment.member_id,
                session_id=session_id,
                amount_cents=payment.amount_cents,
                status=payment.status.value,
            )

        log_payment_operation(
            logger,
            "payment_succeeded",
            payment_id=payment.payment_id,
            member_id=payment.member_id,
            session_id=session_id,
            amount_cents=payment.amount_cents,
            status=payment.status.value,
        )

        if payment.payment_type in MEMBERSHIP_PAYMENT_TYPES:
            return self._activate_membership(payment, metadata, session.get("customer"))
        if payment.payment_type == PaymentType.ADDITIONAL_FEES:
            return self._confirm_fee_purchases(payment)
        return self._confirm_entries(payment, metadata)

    def _build_fallback_payment(
        self,
        session: dict[str, Any],
        metadata: dict[str, str],
        payment_intent_id: str | None,
    ) -> Payment | None:
        """Payment row for a paid session whose pending insert was lost."""
        member_id = metadata.get("member_id")
        if not member_id:
            logger.warning("Checkout session %s has no member_id in metadata", session["id"])
            return None

        try:
            payment_type = PaymentType(metadata.get("payment_type", ""))
        except ValueError:
            payment_type = (
                PaymentType.ENTRY_FEES
                if metadata.get("entry_ids")
                else PaymentType.MEMBERSHIP_DUES
            )

        slug = metadata.get("membership_type_slug") or None
        if payment_type in MEMBERSHIP_PAYMENT_TYPES:
            membership_type = self._store.get_membership_type(slug) if slug else None
            description = (
                f"{membership_type.name} Membership" if membership_type else "Membership"
            )
        elif payment_type == PaymentType.ADDITIONAL_FEES:
            slug = None
            description = FEE_PURCHASE_DESCRIPTION
        else:
            slug = None
            description = "Show Entry Fees"

        now = utc_now()
        return Payment(
            payment_id=payment_id_for_session(session["id"]),
            member_id=member_id,
            amount_cents=int(session.get("amount_total") or 0),
            currency=session.get("currency") or "usd",
            payment_type=payment_type,
            membership_type_slug=slug,
            description=description,
            stripe_checkout_session_id=session["id"],
            stripe_payment_intent_id=payment_intent_id,
            status=PaymentStatus.SUCCEEDED,
            created_at=now,
            updated_at=now,
        )

    def _activate_membership(
        self,
        payment: Payment,
        metadata: dict[str, str],
        customer_id: Any,
    ) -> HandlerResult:
        slug = payment.membership_type_slug or metadata.get("membership_type_slug")
        if not slug:
            return ProcessingResult.ERROR, "Missing membership_type_slug"

        member = self._store.get_member(payment.member_id)
        if member is None:
            logger.error("Member %s not found for payment %s", payment.member_id, payment.payment_id)
            return ProcessingResult.ERROR, "Member not found"

        membership_type = self._store.get_membership_type(slug)
        if membership_type is None:
            logger.error("Membership type %s not found for payment %s", slug, payment.payment_id)
            return ProcessingResult.ERROR, "Membership type not found"

        start, expiry = compute_membership_window(
            member.membership_status,
            member.membership_start,
            member.membership_expiry,
            membership_type.duration_months,
            utc_now(),
        )
        updated = self._store.activate_membership(
            member.member_id,
            slug,
            start,
            expiry,
            customer_id=customer_id if isinstance(customer_id, str) else None,
        )
        if updated is None:
            return ProcessingResult.ERROR, "Member not found"

        logger.info(
            "Membership %s activated for member %s until %s",
            slug,
            member.member_id,
            expiry.isoformat() if expiry else "lifetime",
        )
        return ProcessingResult.SUCCESS, None

    def _confirm_entries(self, payment: Payment, metadata: dict[str, str]) -> HandlerResult:
        entry_ids = [e.strip() for e in metadata.get("entry_ids", "").split(",") if e.strip()]
        if not entry_ids:
            logger.warning("Entry payment %s has no entry_ids in metadata", payment.payment_id)
            return ProcessingResult.SUCCESS, None

        confirmed = self._store.confirm_entries(entry_ids, payment.payment_id)
        logger.info(
            "Confirmed %d of %d entries for payment %s",
            confirmed,
            len(entry_ids),
            payment.payment_id,
        )
        return ProcessingResult.SUCCESS, None

    def _confirm_fee_purchases(self, payment: Payment) -> HandlerResult:
        confirmed = self._store.confirm_fee_purchases(payment.payment_id)
        if not confirmed:
            logger.warning("Fee payment %s has no pending purchase lines", payment.payment_id)
        else:
            logger.info("Confirmed %d fee purchase(s) for payment %s", confirmed, payment.payment_id)
        return ProcessingResult.SUCCESS, None

    # === payment_intent.* ===

    def _session_for_intent(self, intent: dict[str, Any]) -> dict[str, Any] | None:
        intent_id = intent.get("id")
        if not intent_id:
            return None
        return self._stripe.find_session_for_payment_intent(intent_id)

    def record_payment_intent(self, intent: dict[str, Any]) -> HandlerResult:
        """Record the payment intent ID on the matching payment if unset."""
        session = self._session_for_intent(intent)
        if session is None:
            return ProcessingResult.SKIPPED, "No checkout session for payment intent"

        updated = self._store.set_payment_intent(session["id"], intent["id"])
        if updated is None:
            return ProcessingResult.SKIPPED, "Payment intent already recorded or payment unknown"
        return ProcessingResult.SUCCESS, None

    def record_payment_failure(self, intent: dict[str, Any]) -> HandlerResult:
        """Mark the matching pending payment failed with the decline reason."""
        session = self._session_for_intent(intent)
        if session is None:
            return ProcessingResult.SKIPPED, "No checkout session for payment intent"

        last_error = intent.get("last_payment_error") or {}
        reason = last_error.get("message") or get_user_friendly_stripe_message(
            last_error.get("decline_code") or last_error.get("code")
        )

        updated = self._store.mark_payment_failed(session["id"], reason)
        if updated is None:
            return ProcessingResult.SKIPPED, "Payment is not pending"

        log_payment_operation(
            logger,
            "payment_failed",
            payment_id=updated.payment_id,
            member_id=updated.member_id,
            session_id=session["id"],
            status=updated.status.value,
            failure_reason=reason,
        )
        return ProcessingResult.SUCCESS, None

    # === Sweep ===

    def reconcile_pending(self, older_than: dt.timedelta) -> ReconciliationReport:
        """Resolve pending payments older than the given age against Stripe.

        Completed and paid sessions are fulfilled, expired sessions are marked
        failed, anything else is left pending. A payment that cannot be
        resolved is counted in `errors` and the sweep moves on.
        """
        report = ReconciliationReport()
        cutoff = utc_now() - older_than

        for payment in self._store.list_pending_payments(cutoff):
            report.checked += 1
            session_id = payment.stripe_checkout_session_id
            try:
                self._reconcile_one(session_id, report)
            except StripeServiceError as e:
                logger.error("Could not retrieve session %s: %s", session_id, e)
                report.errors += 1
            except Exception:
                logger.exception("Sweep failed on payment %s", payment.payment_id)
                report.errors += 1

        logger.info(
            "Reconciliation sweep: checked=%d fulfilled=%d expired=%d unchanged=%d errors=%d",
            report.checked,
            report.fulfilled,
            report.expired,
            report.unchanged,
            report.errors,
        )
        return report

    def _reconcile_one(self, session_id: str, report: ReconciliationReport) -> None:
        session = self._stripe.retrieve_checkout_session(session_id)
        status = session.get("status")

        if status == "complete" and session.get("payment_status") in PAID_STATUSES:
            result, message = self.fulfill_checkout_session(session)
            if result == ProcessingResult.SUCCESS:
                report.fulfilled += 1
            elif result == ProcessingResult.ERROR:
                logger.error("Sweep could not fulfill %s: %s", session_id, message)
                report.errors += 1
            else:
                report.unchanged += 1
        elif status == "expired" and self._store.mark_payment_failed(session_id, EXPIRED_REASON):
            report.expired += 1
        else:
            report.unchanged += 1
