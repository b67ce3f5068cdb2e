"""Read-side views over payments for members and administrators."""

from collections import Counter
from typing import TYPE_CHECKING

from portal_shared.models import (
    AdminPaymentDetail,
    AdminPaymentRow,
    Identity,
    Payment,
    PaymentStatus,
    PaymentSummary,
    PaymentType,
)

if TYPE_CHECKING:
    from .record_store import ServiceStore


def summarize_payments(payments: list[Payment]) -> PaymentSummary:
    """Totals for the admin dashboard. Revenue counts succeeded payments only."""
    return PaymentSummary(
        total_count=len(payments),
        total_revenue_cents=sum(
            p.amount_cents for p in payments if p.status == PaymentStatus.SUCCEEDED
        ),
        count_by_type=dict(Counter(p.payment_type.value for p in payments)),
        count_by_status=dict(Counter(p.status.value for p in payments)),
    )


class PaymentQueryService:
    """Payment listings scoped by caller."""

    def __init__(self, store: "ServiceStore") -> None:
        self._store = store

    def member_payments(self, identity: Identity) -> list[Payment]:
        return self._store.for_member(identity.member_id).list_payments()

    def member_payment_for_session(
        self, identity: Identity, session_id: str
    ) -> Payment | None:
        """The caller's payment for a checkout session, pending or not."""
        return self._store.for_member(identity.member_id).get_payment_by_session(
            session_id
        )

    def admin_payments(self) -> list[AdminPaymentRow]:
        """All payments, newest first, with payer name and email."""
        payments = self._store.list_payments()
        members = self._store.get_members([p.member_id for p in payments])
        rows = []
        for payment in payments:
            member = members.get(payment.member_id)
            rows.append(
                AdminPaymentRow(
                    payment=payment,
                    payer_name=member.full_name if member else None,
                    payer_email=member.email if member else None,
                )
            )
        return rows

    def admin_payment_detail(self, payment_id: str) -> AdminPaymentDetail | None:
        """One payment with its payer and the entries or fee lines it paid for."""
        payment = self._store.get_payment(payment_id)
        if payment is None:
            return None

        member = self._store.get_member(payment.member_id)
        detail = AdminPaymentDetail(
            payment=payment,
            payer_name=member.full_name if member else None,
            payer_email=member.email if member else None,
        )
        if payment.payment_type == PaymentType.ENTRY_FEES:
            detail.show_entries = self._store.list_entries_for_payment(payment_id)
        elif payment.payment_type == PaymentType.ADDITIONAL_FEES:
            detail.fee_purchases = self._store.list_fee_purchases(payment_id)
        return detail

    def summary(self) -> PaymentSummary:
        return summarize_payments(self._store.list_payments())
