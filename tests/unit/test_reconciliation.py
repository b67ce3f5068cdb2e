"""Unit tests for ReconciliationService.

Covers checkout completion (including replays and the fallback payment row),
payment intent events and the pending-payment sweep.
"""

import datetime as dt
from unittest.mock import patch

import pytest
from botocore.exceptions import ClientError

from portal_shared.models import (
    EntryStatus,
    FeePurchase,
    FeePurchaseStatus,
    MembershipStatus,
    Payment,
    PaymentStatus,
    PaymentType,
    ProcessingResult,
    payment_id_for_session,
)
from portal_shared.services.reconciliation import EXPIRED_REASON, ReconciliationService
from portal_shared.services.stripe_service import StripeServiceError
from portal_shared.utils.dates import add_months, utc_now

from helpers import (
    EXISTING_CUSTOMER_ID,
    MEMBER_ID,
    NEW_CUSTOMER_ID,
    PAYMENT_INTENT_ID,
    RENEWING_MEMBER_ID,
    SESSION_ID,
    checkout_session,
)


@pytest.fixture
def reconciliation(mock_stripe, store, seeded) -> ReconciliationService:
    return ReconciliationService(stripe_service=mock_stripe, store=store)


def _pending(
    store,
    session_id: str = SESSION_ID,
    member_id: str = MEMBER_ID,
    payment_type: PaymentType = PaymentType.MEMBERSHIP_DUES,
    slug: str | None = "adult-annual",
    amount_cents: int = 7500,
    created_at: dt.datetime | None = None,
) -> Payment:
    created = created_at or utc_now()
    payment = Payment(
        payment_id=payment_id_for_session(session_id),
        member_id=member_id,
        amount_cents=amount_cents,
        payment_type=payment_type,
        membership_type_slug=slug,
        description="Adult Annual Membership" if slug else "Show Entry Fees - Spring Classic",
        stripe_checkout_session_id=session_id,
        created_at=created,
        updated_at=created,
    )
    assert store.insert_payment(payment)
    return payment


def _within_a_minute(actual: dt.datetime, expected: dt.datetime) -> bool:
    return abs(actual - expected) < dt.timedelta(minutes=1)


class TestFulfillMembership:
    def test_activates_new_member(self, reconciliation, store):
        _pending(store)

        result, message = reconciliation.fulfill_checkout_session(checkout_session())

        assert (result, message) == (ProcessingResult.SUCCESS, None)
        payment = store.get_payment_by_session(SESSION_ID)
        assert payment.status == PaymentStatus.SUCCEEDED
        assert payment.stripe_payment_intent_id == PAYMENT_INTENT_ID

        member = store.get_member(MEMBER_ID)
        now = utc_now()
        assert member.membership_status == MembershipStatus.ACTIVE
        assert member.membership_type == "adult-annual"
        assert _within_a_minute(member.membership_start, now)
        assert _within_a_minute(member.membership_expiry, add_months(now, 12))
        assert member.stripe_customer_id == NEW_CUSTOMER_ID

    def test_renewal_extends_from_current_expiry(self, reconciliation, store):
        before = store.get_member(RENEWING_MEMBER_ID)
        _pending(store, member_id=RENEWING_MEMBER_ID, payment_type=PaymentType.MEMBERSHIP_RENEWAL)

        result, _ = reconciliation.fulfill_checkout_session(
            checkout_session(member_id=RENEWING_MEMBER_ID, customer=EXISTING_CUSTOMER_ID)
        )

        assert result == ProcessingResult.SUCCESS
        member = store.get_member(RENEWING_MEMBER_ID)
        assert member.membership_expiry == add_months(before.membership_expiry, 12)
        assert member.membership_start == before.membership_start

    def test_lifetime_clears_expiry(self, reconciliation, store):
        _pending(store, member_id=RENEWING_MEMBER_ID, slug="lifetime", amount_cents=50000)

        reconciliation.fulfill_checkout_session(
            checkout_session(
                member_id=RENEWING_MEMBER_ID,
                metadata={
                    "member_id": RENEWING_MEMBER_ID,
                    "membership_type_slug": "lifetime",
                    "payment_type": "membership_renewal",
                },
            )
        )

        member = store.get_member(RENEWING_MEMBER_ID)
        assert member.membership_type == "lifetime"
        assert member.membership_expiry is None

    def test_replay_is_duplicate_and_changes_nothing(self, reconciliation, store):
        """A second delivery must not extend the membership again."""
        _pending(store)
        reconciliation.fulfill_checkout_session(checkout_session())
        after_first = store.get_member(MEMBER_ID)

        result, message = reconciliation.fulfill_checkout_session(checkout_session())

        assert result == ProcessingResult.DUPLICATE
        assert message == "Payment already succeeded"
        assert store.get_member(MEMBER_ID).membership_expiry == after_first.membership_expiry

    def test_unpaid_session_skipped(self, reconciliation, store):
        _pending(store)

        result, _ = reconciliation.fulfill_checkout_session(
            checkout_session(payment_status="unpaid")
        )

        assert result == ProcessingResult.SKIPPED
        assert store.get_payment_by_session(SESSION_ID).status == PaymentStatus.PENDING
        assert store.get_member(MEMBER_ID).membership_status == MembershipStatus.PENDING

    def test_no_payment_required_counts_as_paid(self, reconciliation, store):
        _pending(store)
        result, _ = reconciliation.fulfill_checkout_session(
            checkout_session(payment_status="no_payment_required", payment_intent=None)
        )
        assert result == ProcessingResult.SUCCESS

    def test_declined_then_paid_in_same_session(self, reconciliation, mock_stripe, store):
        """A card declined and retried in the same session ends up paid."""
        _pending(store)
        mock_stripe.find_session_for_payment_intent.return_value = {"id": SESSION_ID}
        reconciliation.record_payment_failure(
            {"id": PAYMENT_INTENT_ID, "last_payment_error": {"message": "Your card was declined."}}
        )
        assert store.get_payment_by_session(SESSION_ID).status == PaymentStatus.FAILED

        result, _ = reconciliation.fulfill_checkout_session(checkout_session(payment_status="paid"))

        assert result == ProcessingResult.SUCCESS
        payment = store.get_payment_by_session(SESSION_ID)
        assert payment.status == PaymentStatus.SUCCEEDED
        assert payment.failure_reason is None
        assert store.get_member(MEMBER_ID).membership_status == MembershipStatus.ACTIVE

    def test_paid_after_decline_replay_is_duplicate(self, reconciliation, store):
        _pending(store)
        store.mark_payment_failed(SESSION_ID, "Your card was declined.")
        reconciliation.fulfill_checkout_session(checkout_session())

        result, message = reconciliation.fulfill_checkout_session(checkout_session())

        assert result == ProcessingResult.DUPLICATE
        assert message == "Payment already succeeded"

    def test_missing_member_is_error(self, reconciliation, store):
        _pending(store, member_id="sub-nobody")
        result, message = reconciliation.fulfill_checkout_session(
            checkout_session(member_id="sub-nobody")
        )
        assert result == ProcessingResult.ERROR
        assert message == "Member not found"

    def test_session_without_id(self, reconciliation):
        result, _ = reconciliation.fulfill_checkout_session({"payment_status": "paid"})
        assert result == ProcessingResult.ERROR


class TestFallbackPayment:
    """A paid session whose pending row was never written still gets recorded."""

    def test_creates_succeeded_row_and_activates(self, reconciliation, store):
        result, _ = reconciliation.fulfill_checkout_session(checkout_session())

        assert result == ProcessingResult.SUCCESS
        payment = store.get_payment_by_session(SESSION_ID)
        assert payment.status == PaymentStatus.SUCCEEDED
        assert payment.member_id == MEMBER_ID
        assert payment.amount_cents == 7500
        assert payment.payment_type == PaymentType.MEMBERSHIP_DUES
        assert payment.description == "Adult Annual Membership"
        assert store.get_member(MEMBER_ID).membership_status == MembershipStatus.ACTIVE

    def test_fallback_replay_is_duplicate(self, reconciliation, store):
        reconciliation.fulfill_checkout_session(checkout_session())
        result, _ = reconciliation.fulfill_checkout_session(checkout_session())
        assert result == ProcessingResult.DUPLICATE

    def test_missing_member_metadata(self, reconciliation, store):
        result, message = reconciliation.fulfill_checkout_session(checkout_session(metadata={}))
        assert result == ProcessingResult.ERROR
        assert message == "Missing member_id in metadata"
        assert store.get_payment_by_session(SESSION_ID) is None

    def test_entry_fees_inferred_from_metadata(self, reconciliation, store):
        result, _ = reconciliation.fulfill_checkout_session(
            checkout_session(
                amount_total=7500,
                metadata={"member_id": MEMBER_ID, "entry_ids": "ENT-1,ENT-2"},
            )
        )

        assert result == ProcessingResult.SUCCESS
        payment = store.get_payment_by_session(SESSION_ID)
        assert payment.payment_type == PaymentType.ENTRY_FEES
        assert payment.membership_type_slug is None


class TestFulfillEntries:
    def test_confirms_entries(self, reconciliation, store):
        _pending(store, payment_type=PaymentType.ENTRY_FEES, slug=None)
        metadata = {
            "member_id": MEMBER_ID,
            "payment_type": "entry_fees",
            "entry_ids": "ENT-1,ENT-2,ENT-4",
            "show_id": "SHOW-1",
        }

        result, _ = reconciliation.fulfill_checkout_session(checkout_session(metadata=metadata))

        assert result == ProcessingResult.SUCCESS
        entries = {e.entry_id: e for e in store.get_entries(["ENT-1", "ENT-2", "ENT-4"])}
        payment_id = payment_id_for_session(SESSION_ID)
        assert entries["ENT-1"].status == EntryStatus.CONFIRMED
        assert entries["ENT-1"].payment_id == payment_id
        assert entries["ENT-2"].status == EntryStatus.CONFIRMED
        assert entries["ENT-4"].payment_id is None
        assert store.get_member(MEMBER_ID).membership_status == MembershipStatus.PENDING


FEE_METADATA = {"member_id": MEMBER_ID, "payment_type": "additional_fees", "show_id": "SHOW-1"}


class TestFulfillFees:
    def _purchase_lines(self, store, *fee_type_ids: str) -> str:
        payment_id = payment_id_for_session(SESSION_ID)
        now = utc_now()
        store.insert_fee_purchases(
            [
                FeePurchase(
                    purchase_id=f"{payment_id}#{fee_type_id}",
                    payment_id=payment_id,
                    fee_type_id=fee_type_id,
                    quantity=2,
                    unit_price_cents=4500,
                    total_cents=9000,
                    show_id="SHOW-1",
                    purchaser_name="Jane Rider",
                    purchaser_email="jane.rider@example.org",
                    created_at=now,
                    updated_at=now,
                )
                for fee_type_id in fee_type_ids
            ]
        )
        return payment_id

    def test_confirms_purchase_lines(self, reconciliation, store):
        _pending(store, payment_type=PaymentType.ADDITIONAL_FEES, slug=None, amount_cents=9000)
        payment_id = self._purchase_lines(store, "FEE-STALL", "FEE-SHAVINGS")

        result, _ = reconciliation.fulfill_checkout_session(
            checkout_session(amount_total=9000, metadata=FEE_METADATA)
        )

        assert result == ProcessingResult.SUCCESS
        assert store.get_payment(payment_id).status == PaymentStatus.SUCCEEDED
        purchases = store.list_fee_purchases(payment_id)
        assert [p.status for p in purchases] == [FeePurchaseStatus.CONFIRMED] * 2
        assert store.get_member(MEMBER_ID).membership_status == MembershipStatus.PENDING

    def test_lost_purchase_lines_still_succeed(self, reconciliation, store):
        _pending(store, payment_type=PaymentType.ADDITIONAL_FEES, slug=None, amount_cents=9000)

        result, _ = reconciliation.fulfill_checkout_session(
            checkout_session(amount_total=9000, metadata=FEE_METADATA)
        )

        assert result == ProcessingResult.SUCCESS
        assert store.get_payment_by_session(SESSION_ID).status == PaymentStatus.SUCCEEDED

    def test_fallback_row_for_fee_session(self, reconciliation, store):
        payment_id = self._purchase_lines(store, "FEE-STALL")

        result, _ = reconciliation.fulfill_checkout_session(
            checkout_session(amount_total=9000, metadata=FEE_METADATA)
        )

        assert result == ProcessingResult.SUCCESS
        payment = store.get_payment(payment_id)
        assert payment.payment_type == PaymentType.ADDITIONAL_FEES
        assert payment.description == "Additional Fee Purchase"
        assert payment.membership_type_slug is None
        (purchase,) = store.list_fee_purchases(payment_id)
        assert purchase.status == FeePurchaseStatus.CONFIRMED


class TestPaymentIntentEvents:
    def test_failure_marks_pending_failed(self, reconciliation, mock_stripe, store):
        _pending(store)
        mock_stripe.find_session_for_payment_intent.return_value = {"id": SESSION_ID}

        result, _ = reconciliation.record_payment_failure(
            {
                "id": PAYMENT_INTENT_ID,
                "last_payment_error": {"code": "card_declined", "message": "Your card was declined."},
            }
        )

        assert result == ProcessingResult.SUCCESS
        payment = store.get_payment_by_session(SESSION_ID)
        assert payment.status == PaymentStatus.FAILED
        assert payment.failure_reason == "Your card was declined."

    def test_failure_reason_falls_back_to_friendly_message(self, reconciliation, mock_stripe, store):
        _pending(store)
        mock_stripe.find_session_for_payment_intent.return_value = {"id": SESSION_ID}

        reconciliation.record_payment_failure(
            {"id": PAYMENT_INTENT_ID, "last_payment_error": {"decline_code": "insufficient_funds"}}
        )

        payment = store.get_payment_by_session(SESSION_ID)
        assert payment.failure_reason == (
            "Your card has insufficient funds. Please try a different card."
        )

    def test_failure_after_success_is_skipped(self, reconciliation, mock_stripe, store):
        _pending(store)
        reconciliation.fulfill_checkout_session(checkout_session())
        mock_stripe.find_session_for_payment_intent.return_value = {"id": SESSION_ID}

        result, _ = reconciliation.record_payment_failure({"id": PAYMENT_INTENT_ID})

        assert result == ProcessingResult.SKIPPED
        assert store.get_payment_by_session(SESSION_ID).status == PaymentStatus.SUCCEEDED

    def test_unknown_intent_is_skipped(self, reconciliation, mock_stripe):
        mock_stripe.find_session_for_payment_intent.return_value = None
        result, _ = reconciliation.record_payment_failure({"id": "pi_unknown"})
        assert result == ProcessingResult.SKIPPED

    def test_succeeded_records_intent(self, reconciliation, mock_stripe, store):
        _pending(store)
        mock_stripe.find_session_for_payment_intent.return_value = {"id": SESSION_ID}

        result, _ = reconciliation.record_payment_intent({"id": PAYMENT_INTENT_ID})

        assert result == ProcessingResult.SUCCESS
        payment = store.get_payment_by_session(SESSION_ID)
        assert payment.stripe_payment_intent_id == PAYMENT_INTENT_ID
        assert payment.status == PaymentStatus.PENDING

    def test_succeeded_twice_is_skipped(self, reconciliation, mock_stripe, store):
        _pending(store)
        mock_stripe.find_session_for_payment_intent.return_value = {"id": SESSION_ID}
        reconciliation.record_payment_intent({"id": PAYMENT_INTENT_ID})

        result, _ = reconciliation.record_payment_intent({"id": PAYMENT_INTENT_ID})

        assert result == ProcessingResult.SKIPPED


class TestReconcilePending:
    def test_sweep(self, reconciliation, mock_stripe, store):
        old = utc_now() - dt.timedelta(hours=2)
        _pending(store, session_id="cs_paid", created_at=old)
        _pending(store, session_id="cs_expired", created_at=old)
        _pending(store, session_id="cs_open", created_at=old)
        _pending(store, session_id="cs_fresh")

        sessions = {
            "cs_paid": checkout_session("cs_paid"),
            "cs_expired": checkout_session("cs_expired", status="expired", payment_status="unpaid"),
            "cs_open": checkout_session("cs_open", status="open", payment_status="unpaid"),
        }
        mock_stripe.retrieve_checkout_session.side_effect = sessions.__getitem__

        report = reconciliation.reconcile_pending(dt.timedelta(hours=1))

        assert report.checked == 3
        assert report.fulfilled == 1
        assert report.expired == 1
        assert report.unchanged == 1
        assert report.errors == 0

        assert store.get_payment_by_session("cs_paid").status == PaymentStatus.SUCCEEDED
        expired = store.get_payment_by_session("cs_expired")
        assert expired.status == PaymentStatus.FAILED
        assert expired.failure_reason == EXPIRED_REASON
        assert store.get_payment_by_session("cs_open").status == PaymentStatus.PENDING
        assert store.get_payment_by_session("cs_fresh").status == PaymentStatus.PENDING
        assert store.get_member(MEMBER_ID).membership_status == MembershipStatus.ACTIVE

    def test_gateway_error_counted(self, reconciliation, mock_stripe, store):
        _pending(store, created_at=utc_now() - dt.timedelta(hours=2))
        mock_stripe.retrieve_checkout_session.side_effect = StripeServiceError("down")

        report = reconciliation.reconcile_pending(dt.timedelta(hours=1))

        assert report.checked == 1
        assert report.errors == 1
        assert store.get_payment_by_session(SESSION_ID).status == PaymentStatus.PENDING

    def test_store_error_on_one_row_does_not_stop_sweep(self, reconciliation, mock_stripe, store):
        now = utc_now()
        _pending(store, session_id="cs_bad", created_at=now - dt.timedelta(hours=3))
        _pending(store, session_id="cs_good", created_at=now - dt.timedelta(hours=2))
        mock_stripe.retrieve_checkout_session.side_effect = checkout_session

        real_mark = store.mark_payment_succeeded

        def mark_succeeded(session_id, payment_intent_id):
            if session_id == "cs_bad":
                raise ClientError(
                    {"Error": {"Code": "ProvisionedThroughputExceededException", "Message": "slow down"}},
                    "UpdateItem",
                )
            return real_mark(session_id, payment_intent_id)

        with patch.object(store, "mark_payment_succeeded", side_effect=mark_succeeded):
            report = reconciliation.reconcile_pending(dt.timedelta(hours=1))

        assert report.checked == 2
        assert report.errors == 1
        assert report.fulfilled == 1
        assert store.get_payment_by_session("cs_bad").status == PaymentStatus.PENDING
        assert store.get_payment_by_session("cs_good").status == PaymentStatus.SUCCEEDED
