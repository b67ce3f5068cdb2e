"""Checkout session builder for membership dues, show entry fees and additional fees.

Every action returns a discriminated result: CheckoutUrl on success, or an
ActionError carrying a fixed user-safe message. Gateway and store error text
is logged, never returned.

Steps after the session exists (persisting the customer ID, inserting the
pending payment row, moving entries to pending_payment, recording fee
purchase lines) are best-effort: the checkout.session.completed webhook
creates a fallback payment row if the insert was lost.
"""

import logging
from typing import TYPE_CHECKING

from portal_shared.models import (
    ActionError,
    CheckoutResult,
    CheckoutUrl,
    EntryStatus,
    ErrorCode,
    FeePurchase,
    FeeSelection,
    FeeType,
    Identity,
    Member,
    MembershipStatus,
    Payment,
    PaymentStatus,
    PaymentType,
    payment_id_for_session,
    sanitize_store_error,
)
from portal_shared.utils.dates import utc_now
from portal_shared.utils.logging import log_payment_operation

from .stripe_service import (
    CURRENCY,
    CheckoutLineItem,
    CheckoutSessionResult,
    StripeService,
    StripeServiceError,
)

if TYPE_CHECKING:
    from .record_store import MemberScopedStore, ServiceStore

logger = logging.getLogger(__name__)

PAYABLE_ENTRY_STATUSES = {EntryStatus.DRAFT, EntryStatus.PENDING_PAYMENT}
FEE_PURCHASE_DESCRIPTION = "Additional Fee Purchase"


class _CheckoutAborted(Exception):
    """Internal short-circuit carrying the ActionError to return."""

    def __init__(self, error: ActionError) -> None:
        super().__init__(error.error)
        self.error = error


def classify_membership_payment(member: Member) -> PaymentType:
    """Renewal for members who have held a membership, dues otherwise."""
    if member.membership_status in (MembershipStatus.ACTIVE, MembershipStatus.EXPIRED):
        return PaymentType.MEMBERSHIP_RENEWAL
    return PaymentType.MEMBERSHIP_DUES


class CheckoutService:
    """Builds Stripe Checkout sessions for authenticated members."""

    def __init__(
        self,
        stripe_service: StripeService,
        store: "ServiceStore",
        app_url: str,
    ) -> None:
        self._stripe = stripe_service
        self._store = store
        self._app_url = app_url.rstrip("/")

    @property
    def success_url(self) -> str:
        return f"{self._app_url}/member/checkout/success?session_id={{CHECKOUT_SESSION_ID}}"

    def cancel_url(self, return_to: str) -> str:
        return f"{self._app_url}/member/checkout/cancel?return={return_to}"

    # === Membership dues ===

    def create_membership_checkout(
        self,
        identity: Identity | None,
        membership_type_slug: str | None,
    ) -> CheckoutResult:
        """Start checkout for a membership type.

        Args:
            identity: Authenticated caller, or None when signed out
            membership_type_slug: Slug of the membership type to buy

        Returns:
            CheckoutUrl with the Stripe-hosted page, or ActionError
        """
        slug = (membership_type_slug or "").strip()
        if not slug:
            return ActionError.from_code(ErrorCode.SELECTION_REQUIRED)
        if identity is None:
            return ActionError.from_code(ErrorCode.SIGN_IN_REQUIRED)

        scoped = self._store.for_member(identity.member_id)
        try:
            member = self._load_member(scoped)

            try:
                membership_type = scoped.get_active_membership_type(slug)
            except Exception as e:
                logger.error("Failed to load membership type %s: %s", slug, e)
                return ActionError.from_code(sanitize_store_error(e))
            if membership_type is None:
                return ActionError.from_code(ErrorCode.NOT_AVAILABLE)
            if membership_type.price_cents <= 0:
                return ActionError.from_code(ErrorCode.NO_PAYMENT_REQUIRED)

            payment_type = classify_membership_payment(member)
            customer_id = self._resolve_customer(member)
            description = f"{membership_type.name} Membership"

            session = self._create_session(
                customer_id=customer_id,
                line_items=[
                    CheckoutLineItem(
                        name=description,
                        description=membership_type.description or None,
                        amount_cents=membership_type.price_cents,
                    )
                ],
                metadata={
                    "member_id": member.member_id,
                    "membership_type_slug": membership_type.slug,
                    "payment_type": payment_type.value,
                },
                return_to="dues",
            )
        except _CheckoutAborted as aborted:
            return aborted.error

        self._insert_pending_payment(
            member_id=member.member_id,
            session=session,
            amount_cents=membership_type.price_cents,
            payment_type=payment_type,
            membership_type_slug=membership_type.slug,
            description=description,
        )
        log_payment_operation(
            logger,
            "create_membership_checkout",
            member_id=member.member_id,
            session_id=session.session_id,
            amount_cents=membership_type.price_cents,
            payment_type=payment_type.value,
        )
        return CheckoutUrl(url=session.checkout_url)

    # === Show entry fees ===

    def create_entry_checkout(
        self,
        identity: Identity | None,
        entry_ids: list[str] | None,
    ) -> CheckoutResult:
        """Start checkout for the fees of one or more show entries.

        All entries must belong to the caller, be unpaid, and be for the
        same show.
        """
        if not entry_ids:
            return ActionError.from_code(ErrorCode.SELECTION_REQUIRED)
        trimmed = [(entry_id or "").strip() for entry_id in entry_ids]
        if not all(trimmed):
            return ActionError.from_code(ErrorCode.INVALID_SELECTION)
        if identity is None:
            return ActionError.from_code(ErrorCode.SIGN_IN_REQUIRED)

        unique_ids = list(dict.fromkeys(trimmed))
        scoped = self._store.for_member(identity.member_id)
        try:
            member = self._load_member(scoped)

            try:
                entries = scoped.get_entries(unique_ids)
            except Exception as e:
                logger.error("Failed to load entries for %s: %s", member.member_id, e)
                return ActionError.from_code(sanitize_store_error(e))

            payable = [e for e in entries if e.status in PAYABLE_ENTRY_STATUSES]
            if len(payable) != len(unique_ids):
                return ActionError.from_code(ErrorCode.NOT_AVAILABLE)

            show_ids = {entry.show_id for entry in payable}
            if len(show_ids) != 1:
                return ActionError.from_code(ErrorCode.MIXED_SHOWS)
            show_id = show_ids.pop()

            total_cents = sum(entry.total_cents for entry in payable)
            if total_cents <= 0:
                return ActionError.from_code(ErrorCode.NO_PAYMENT_REQUIRED)

            try:
                show = self._store.get_show(show_id)
            except Exception as e:
                logger.error("Failed to load show %s: %s", show_id, e)
                return ActionError.from_code(sanitize_store_error(e))
            if show is None:
                return ActionError.from_code(ErrorCode.NOT_AVAILABLE)

            customer_id = self._resolve_customer(member)
            by_id = {entry.entry_id: entry for entry in payable}
            line_items = [
                CheckoutLineItem(
                    name=by_id[entry_id].line_item_name,
                    description=show.name or None,
                    amount_cents=by_id[entry_id].total_cents,
                )
                for entry_id in unique_ids
                if by_id[entry_id].total_cents > 0
            ]

            session = self._create_session(
                customer_id=customer_id,
                line_items=line_items,
                metadata={
                    "member_id": member.member_id,
                    "payment_type": PaymentType.ENTRY_FEES.value,
                    "entry_ids": ",".join(unique_ids),
                    "show_id": show_id,
                },
                return_to="entries",
            )
        except _CheckoutAborted as aborted:
            return aborted.error

        self._insert_pending_payment(
            member_id=member.member_id,
            session=session,
            amount_cents=total_cents,
            payment_type=PaymentType.ENTRY_FEES,
            membership_type_slug=None,
            description=f"Show Entry Fees - {show.name}",
        )

        try:
            self._store.mark_entries_pending_payment(unique_ids)
        except Exception as e:
            logger.error("Failed to move entries to pending_payment: %s", e)

        log_payment_operation(
            logger,
            "create_entry_checkout",
            member_id=member.member_id,
            session_id=session.session_id,
            amount_cents=total_cents,
            entry_count=len(unique_ids),
        )
        return CheckoutUrl(url=session.checkout_url)

    # === Additional fees ===

    def create_fee_checkout(
        self,
        identity: Identity | None,
        items: list[FeeSelection] | None,
        show_id: str | None = None,
    ) -> CheckoutResult:
        """Start checkout for additional fee items (stalls, shavings and the like).

        Each fee type may appear once, must be active, and its quantity must
        respect max_quantity_per_order. A pending FeePurchase line is stored
        per item and confirmed when the payment succeeds.
        """
        if not items:
            return ActionError.from_code(ErrorCode.SELECTION_REQUIRED)
        fee_type_ids = [(item.fee_type_id or "").strip() for item in items]
        if not all(fee_type_ids) or len(set(fee_type_ids)) != len(fee_type_ids):
            return ActionError.from_code(ErrorCode.INVALID_SELECTION)
        if any(item.quantity < 1 for item in items):
            return ActionError.from_code(ErrorCode.INVALID_QUANTITY)
        if identity is None:
            return ActionError.from_code(ErrorCode.SIGN_IN_REQUIRED)

        show_id = (show_id or "").strip() or None
        quantities = dict(zip(fee_type_ids, (item.quantity for item in items)))
        scoped = self._store.for_member(identity.member_id)
        try:
            member = self._load_member(scoped)

            try:
                fee_types = self._store.get_fee_types(fee_type_ids)
            except Exception as e:
                logger.error("Failed to load fee types %s: %s", fee_type_ids, e)
                return ActionError.from_code(sanitize_store_error(e))

            selected = [fee_types.get(fee_type_id) for fee_type_id in fee_type_ids]
            if any(fee_type is None or not fee_type.is_active for fee_type in selected):
                return ActionError.from_code(ErrorCode.NOT_AVAILABLE)

            for fee_type in selected:
                limit = fee_type.max_quantity_per_order
                if limit is not None and quantities[fee_type.fee_type_id] > limit:
                    return ActionError.from_code(
                        ErrorCode.QUANTITY_LIMIT,
                        details={"fee_type_id": fee_type.fee_type_id, "max_quantity": str(limit)},
                    )

            total_cents = sum(f.price_cents * quantities[f.fee_type_id] for f in selected)
            if total_cents <= 0:
                return ActionError.from_code(ErrorCode.NO_PAYMENT_REQUIRED)

            customer_id = self._resolve_customer(member)
            metadata = {
                "member_id": member.member_id,
                "payment_type": PaymentType.ADDITIONAL_FEES.value,
            }
            if show_id:
                metadata["show_id"] = show_id

            session = self._create_session(
                customer_id=customer_id,
                line_items=[
                    CheckoutLineItem(
                        name=f.name,
                        description=f.description or f.category,
                        amount_cents=f.price_cents,
                        quantity=quantities[f.fee_type_id],
                    )
                    for f in selected
                    if f.price_cents > 0
                ],
                metadata=metadata,
                return_to="fees",
            )
        except _CheckoutAborted as aborted:
            return aborted.error

        self._insert_pending_payment(
            member_id=member.member_id,
            session=session,
            amount_cents=total_cents,
            payment_type=PaymentType.ADDITIONAL_FEES,
            membership_type_slug=None,
            description=FEE_PURCHASE_DESCRIPTION,
        )
        self._insert_fee_purchases(member, session, selected, quantities, show_id)

        log_payment_operation(
            logger,
            "create_fee_checkout",
            member_id=member.member_id,
            session_id=session.session_id,
            amount_cents=total_cents,
            item_count=len(selected),
        )
        return CheckoutUrl(url=session.checkout_url)

    def _insert_fee_purchases(
        self,
        member: Member,
        session: CheckoutSessionResult,
        fee_types: list[FeeType],
        quantities: dict[str, int],
        show_id: str | None,
    ) -> None:
        payment_id = payment_id_for_session(session.session_id)
        now = utc_now()
        purchases = [
            FeePurchase(
                purchase_id=f"{payment_id}#{fee_type.fee_type_id}",
                payment_id=payment_id,
                fee_type_id=fee_type.fee_type_id,
                quantity=quantities[fee_type.fee_type_id],
                unit_price_cents=fee_type.price_cents,
                total_cents=fee_type.price_cents * quantities[fee_type.fee_type_id],
                show_id=show_id or fee_type.show_id,
                purchaser_name=member.full_name,
                purchaser_email=member.email,
                created_at=now,
                updated_at=now,
            )
            for fee_type in fee_types
        ]
        try:
            self._store.insert_fee_purchases(purchases)
        except Exception as e:
            log_payment_operation(
                logger,
                "insert_fee_purchases",
                payment_id=payment_id,
                member_id=member.member_id,
                session_id=session.session_id,
                error=str(e),
            )

    # === Shared steps ===

    def _load_member(self, scoped: "MemberScopedStore") -> Member:
        try:
            member = scoped.get_member()
        except Exception as e:
            logger.error("Failed to load member %s: %s", scoped.member_id, e)
            raise _CheckoutAborted(
                ActionError.from_code(ErrorCode.PROFILE_UNAVAILABLE)
            ) from e
        if member is None:
            raise _CheckoutAborted(ActionError.from_code(ErrorCode.PROFILE_UNAVAILABLE))
        return member

    def _resolve_customer(self, member: Member) -> str:
        """Reuse the member's Stripe customer, creating and storing one if needed."""
        if member.stripe_customer_id:
            return member.stripe_customer_id

        try:
            customer_id = self._stripe.create_customer(
                email=member.email,
                name=member.full_name,
                member_id=member.member_id,
            )
        except StripeServiceError as e:
            log_payment_operation(
                logger, "create_customer", member_id=member.member_id, error=str(e)
            )
            raise _CheckoutAborted(ActionError.from_code(ErrorCode.CHECKOUT_FAILED)) from e

        try:
            if not self._store.set_stripe_customer_id(member.member_id, customer_id):
                logger.warning(
                    "Stripe customer ID for member %s was not stored", member.member_id
                )
        except Exception as e:
            logger.error(
                "Failed to store Stripe customer ID for member %s: %s",
                member.member_id,
                e,
            )
        return customer_id

    def _create_session(
        self,
        *,
        customer_id: str,
        line_items: list[CheckoutLineItem],
        metadata: dict[str, str],
        return_to: str,
    ) -> CheckoutSessionResult:
        try:
            session = self._stripe.create_checkout_session(
                customer_id=customer_id,
                line_items=line_items,
                metadata=metadata,
                success_url=self.success_url,
                cancel_url=self.cancel_url(return_to),
            )
        except StripeServiceError as e:
            log_payment_operation(
                logger,
                "create_checkout_session",
                member_id=metadata.get("member_id"),
                error=str(e),
            )
            raise _CheckoutAborted(ActionError.from_code(ErrorCode.CHECKOUT_FAILED)) from e

        if not session.checkout_url:
            logger.error("Checkout session %s has no URL", session.session_id)
            raise _CheckoutAborted(ActionError.from_code(ErrorCode.CHECKOUT_FAILED))
        return session

    def _insert_pending_payment(
        self,
        *,
        member_id: str,
        session: CheckoutSessionResult,
        amount_cents: int,
        payment_type: PaymentType,
        membership_type_slug: str | None,
        description: str,
    ) -> None:
        now = utc_now()
        payment = Payment(
            payment_id=payment_id_for_session(session.session_id),
            member_id=member_id,
            amount_cents=amount_cents,
            currency=CURRENCY,
            payment_type=payment_type,
            membership_type_slug=membership_type_slug,
            description=description,
            stripe_checkout_session_id=session.session_id,
            status=PaymentStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        try:
            if not self._store.insert_payment(payment):
                logger.warning("Payment row for session %s already exists", session.session_id)
        except Exception as e:
            log_payment_operation(
                logger,
                "insert_pending_payment",
                payment_id=payment.payment_id,
                member_id=member_id,
                session_id=session.session_id,
                error=str(e),
            )
