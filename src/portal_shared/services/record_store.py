"""Capability-scoped access to the portal tables.

Two handles wrap the same DynamoDBService:

- MemberScopedStore: what an authenticated member may read about themselves.
  Every read is filtered by the member_id the handle was built with.
- ServiceStore: privileged reads and the payment/membership state
  transitions. Used by checkout, webhook reconciliation, refunds and the
  admin views.

All status transitions are conditional updates, so a replayed event or a
second concurrent delivery finds the condition false and changes nothing.
"""

import datetime as dt
import logging
from typing import TYPE_CHECKING, Any

from boto3.dynamodb.conditions import Attr

from portal_shared.models import (
    EntryStatus,
    FeePurchase,
    FeePurchaseStatus,
    FeeType,
    Member,
    MembershipStatus,
    MembershipType,
    Payment,
    PaymentStatus,
    PaymentType,
    ProcessingResult,
    Show,
    ShowEntry,
    WebhookEvent,
    payment_id_for_session,
)
from portal_shared.utils.dates import parse_timestamp, utc_now

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService

logger = logging.getLogger(__name__)

MEMBERS_TABLE = "members"
MEMBERSHIP_TYPES_TABLE = "membership-types"
PAYMENTS_TABLE = "payments"
PAYMENTS_MEMBER_INDEX = "member-index"
ENTRIES_TABLE = "show-entries"
ENTRIES_PAYMENT_INDEX = "payment-index"
FEE_TYPES_TABLE = "fee-types"
FEE_PURCHASES_TABLE = "fee-purchases"
FEE_PURCHASES_PAYMENT_INDEX = "payment-index"
SHOWS_TABLE = "shows"
WEBHOOK_EVENTS_TABLE = "stripe-webhook-events"


# === Item converters ===


def _iso(value: dt.datetime | None) -> str | None:
    return value.isoformat() if value else None


def _drop_none(item: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in item.items() if v is not None}


def item_to_member(item: dict[str, Any]) -> Member:
    """Convert DynamoDB item to Member model."""
    return Member(
        member_id=item["member_id"],
        email=item["email"],
        first_name=item.get("first_name", ""),
        last_name=item.get("last_name", ""),
        phone=item.get("phone"),
        address_line1=item.get("address_line1"),
        address_line2=item.get("address_line2"),
        city=item.get("city"),
        state=item.get("state"),
        zip=item.get("zip"),
        membership_type=item.get("membership_type"),
        membership_status=MembershipStatus(
            item.get("membership_status", MembershipStatus.PENDING.value)
        ),
        membership_start=parse_timestamp(item.get("membership_start")),
        membership_expiry=parse_timestamp(item.get("membership_expiry")),
        stripe_customer_id=item.get("stripe_customer_id"),
        created_at=parse_timestamp(item.get("created_at")),
        updated_at=parse_timestamp(item.get("updated_at")),
    )


def member_to_item(member: Member) -> dict[str, Any]:
    """Convert Member model to DynamoDB item."""
    return _drop_none(
        {
            "member_id": member.member_id,
            "email": member.email,
            "first_name": member.first_name,
            "last_name": member.last_name,
            "phone": member.phone,
            "address_line1": member.address_line1,
            "address_line2": member.address_line2,
            "city": member.city,
            "state": member.state,
            "zip": member.zip,
            "membership_type": member.membership_type,
            "membership_status": member.membership_status.value,
            "membership_start": _iso(member.membership_start),
            "membership_expiry": _iso(member.membership_expiry),
            "stripe_customer_id": member.stripe_customer_id,
            "created_at": _iso(member.created_at),
            "updated_at": _iso(member.updated_at),
        }
    )


def item_to_membership_type(item: dict[str, Any]) -> MembershipType:
    """Convert DynamoDB item to MembershipType model."""
    duration = item.get("duration_months")
    return MembershipType(
        membership_type_id=item.get("membership_type_id", item["slug"]),
        name=item["name"],
        slug=item["slug"],
        description=item.get("description"),
        price_cents=int(item["price_cents"]),
        duration_months=int(duration) if duration is not None else None,
        benefits=list(item.get("benefits", [])),
        sort_order=int(item.get("sort_order", 0)),
        is_active=bool(item.get("is_active", True)),
    )


def item_to_payment(item: dict[str, Any]) -> Payment:
    """Convert DynamoDB item to Payment model."""
    slug = item.get("membership_type_slug")
    return Payment(
        payment_id=item["payment_id"],
        member_id=item["member_id"],
        amount_cents=int(item["amount_cents"]),
        currency=item.get("currency", "usd"),
        payment_type=PaymentType(item["payment_type"]),
        membership_type_slug=slug,
        description=item.get("description", ""),
        stripe_checkout_session_id=item["stripe_checkout_session_id"],
        stripe_payment_intent_id=item.get("stripe_payment_intent_id"),
        status=PaymentStatus(item["status"]),
        failure_reason=item.get("failure_reason"),
        stripe_refund_id=item.get("stripe_refund_id"),
        refunded_at=parse_timestamp(item.get("refunded_at")),
        created_at=parse_timestamp(item["created_at"]),
        updated_at=parse_timestamp(item.get("updated_at") or item["created_at"]),
    )


def payment_to_item(payment: Payment) -> dict[str, Any]:
    """Convert Payment model to DynamoDB item."""
    return _drop_none(
        {
            "payment_id": payment.payment_id,
            "member_id": payment.member_id,
            "amount_cents": payment.amount_cents,
            "currency": payment.currency,
            "payment_type": payment.payment_type.value,
            "membership_type_slug": payment.membership_type_slug,
            "description": payment.description,
            "stripe_checkout_session_id": payment.stripe_checkout_session_id,
            "stripe_payment_intent_id": payment.stripe_payment_intent_id,
            "status": payment.status.value,
            "failure_reason": payment.failure_reason,
            "stripe_refund_id": payment.stripe_refund_id,
            "refunded_at": _iso(payment.refunded_at),
            "created_at": payment.created_at.isoformat(),
            "updated_at": payment.updated_at.isoformat(),
        }
    )


def item_to_entry(item: dict[str, Any]) -> ShowEntry:
    """Convert DynamoDB item to ShowEntry model."""
    return ShowEntry(
        entry_id=item["entry_id"],
        show_id=item["show_id"],
        member_id=item["member_id"],
        horse_name=item.get("horse_name", ""),
        rider_name=item.get("rider_name", ""),
        status=EntryStatus(item.get("status", EntryStatus.DRAFT.value)),
        total_cents=int(item.get("total_cents", 0)),
        payment_id=item.get("payment_id"),
    )


def item_to_fee_type(item: dict[str, Any]) -> FeeType:
    max_quantity = item.get("max_quantity_per_order")
    return FeeType(
        fee_type_id=item["fee_type_id"],
        name=item["name"],
        description=item.get("description"),
        price_cents=int(item["price_cents"]),
        category=item.get("category", "general"),
        show_id=item.get("show_id"),
        max_quantity_per_order=int(max_quantity) if max_quantity is not None else None,
        is_active=bool(item.get("is_active", True)),
        sort_order=int(item.get("sort_order", 0)),
    )


def item_to_fee_purchase(item: dict[str, Any]) -> FeePurchase:
    return FeePurchase(
        purchase_id=item["purchase_id"],
        payment_id=item["payment_id"],
        fee_type_id=item["fee_type_id"],
        quantity=int(item["quantity"]),
        unit_price_cents=int(item["unit_price_cents"]),
        total_cents=int(item["total_cents"]),
        show_id=item.get("show_id"),
        purchaser_name=item.get("purchaser_name", ""),
        purchaser_email=item.get("purchaser_email", ""),
        status=FeePurchaseStatus(item.get("status", FeePurchaseStatus.PENDING.value)),
        created_at=parse_timestamp(item["created_at"]),
        updated_at=parse_timestamp(item.get("updated_at") or item["created_at"]),
    )


def fee_purchase_to_item(purchase: FeePurchase) -> dict[str, Any]:
    return _drop_none(
        {
            "purchase_id": purchase.purchase_id,
            "payment_id": purchase.payment_id,
            "fee_type_id": purchase.fee_type_id,
            "quantity": purchase.quantity,
            "unit_price_cents": purchase.unit_price_cents,
            "total_cents": purchase.total_cents,
            "show_id": purchase.show_id,
            "purchaser_name": purchase.purchaser_name,
            "purchaser_email": purchase.purchaser_email,
            "status": purchase.status.value,
            "created_at": purchase.created_at.isoformat(),
            "updated_at": purchase.updated_at.isoformat(),
        }
    )


def _sort_newest_first(payments: list[Payment]) -> list[Payment]:
    return sorted(payments, key=lambda p: p.created_at, reverse=True)


class MemberScopedStore:
    """Record store handle limited to one member's own rows."""

    def __init__(self, db: "DynamoDBService", member_id: str) -> None:
        self._db = db
        self.member_id = member_id

    def get_member(self) -> Member | None:
        item = self._db.get_item(MEMBERS_TABLE, {"member_id": self.member_id})
        return item_to_member(item) if item else None

    def get_active_membership_type(self, slug: str) -> MembershipType | None:
        """Public read of a purchasable membership type."""
        item = self._db.get_item(MEMBERSHIP_TYPES_TABLE, {"slug": slug})
        if not item:
            return None
        membership_type = item_to_membership_type(item)
        return membership_type if membership_type.is_active else None

    def list_payments(self) -> list[Payment]:
        """The member's payments, newest first."""
        items = self._db.query_index(
            PAYMENTS_TABLE,
            PAYMENTS_MEMBER_INDEX,
            "member_id",
            self.member_id,
        )
        return _sort_newest_first([item_to_payment(i) for i in items])

    def get_payment_by_session(self, session_id: str) -> Payment | None:
        """The member's payment for a checkout session, if they own it."""
        item = self._db.get_item(
            PAYMENTS_TABLE, {"payment_id": payment_id_for_session(session_id)}
        )
        if not item or item.get("member_id") != self.member_id:
            return None
        return item_to_payment(item)

    def get_entries(self, entry_ids: list[str]) -> list[ShowEntry]:
        """Entries by ID, silently dropping any the member does not own."""
        items = self._db.batch_get(
            ENTRIES_TABLE, [{"entry_id": entry_id} for entry_id in dict.fromkeys(entry_ids)]
        )
        return [
            item_to_entry(item)
            for item in items
            if item.get("member_id") == self.member_id
        ]


class ServiceStore:
    """Privileged record store handle for payment and membership writes."""

    def __init__(self, db: "DynamoDBService") -> None:
        self._db = db

    def for_member(self, member_id: str) -> MemberScopedStore:
        return MemberScopedStore(self._db, member_id)

    # === Members ===

    def get_member(self, member_id: str) -> Member | None:
        item = self._db.get_item(MEMBERS_TABLE, {"member_id": member_id})
        return item_to_member(item) if item else None

    def get_members(self, member_ids: list[str]) -> dict[str, Member]:
        keys = [{"member_id": member_id} for member_id in dict.fromkeys(member_ids)]
        members = (item_to_member(item) for item in self._db.batch_get(MEMBERS_TABLE, keys))
        return {member.member_id: member for member in members}

    def set_stripe_customer_id(self, member_id: str, customer_id: str) -> bool:
        """Store the member's Stripe customer ID if none is set yet.

        Returns:
            True if written, False if the member is missing or already has one
        """
        result = self._db.update_item(
            MEMBERS_TABLE,
            {"member_id": member_id},
            "SET stripe_customer_id = :cid, updated_at = :now",
            {":cid": customer_id, ":now": utc_now().isoformat()},
            condition_expression=(
                "attribute_exists(member_id) AND attribute_not_exists(stripe_customer_id)"
            ),
        )
        return result is not None

    def activate_membership(
        self,
        member_id: str,
        slug: str,
        start: dt.datetime | None,
        expiry: dt.datetime | None,
        customer_id: str | None = None,
    ) -> Member | None:
        """Mark a membership active.

        Args:
            member_id: Member to update
            slug: Membership type purchased
            start: New start date, or None to keep the current one
            expiry: New expiry, or None for a lifetime membership
            customer_id: Stripe customer to record if the member has none

        Returns:
            Updated member, or None if the member row does not exist
        """
        now = utc_now().isoformat()
        set_parts = [
            "membership_status = :active",
            "membership_type = :slug",
            "updated_at = :now",
        ]
        remove_parts: list[str] = []
        values: dict[str, Any] = {
            ":active": MembershipStatus.ACTIVE.value,
            ":slug": slug,
            ":now": now,
        }
        if start is not None:
            set_parts.append("membership_start = :start")
            values[":start"] = start.isoformat()
        if expiry is not None:
            set_parts.append("membership_expiry = :expiry")
            values[":expiry"] = expiry.isoformat()
        else:
            remove_parts.append("membership_expiry")
        if customer_id:
            set_parts.append(
                "stripe_customer_id = if_not_exists(stripe_customer_id, :cid)"
            )
            values[":cid"] = customer_id

        update_expression = "SET " + ", ".join(set_parts)
        if remove_parts:
            update_expression += " REMOVE " + ", ".join(remove_parts)

        attrs = self._db.update_item(
            MEMBERS_TABLE,
            {"member_id": member_id},
            update_expression,
            values,
            condition_expression="attribute_exists(member_id)",
        )
        return item_to_member(attrs) if attrs else None

    # === Membership types, shows, entries ===

    def get_membership_type(self, slug: str) -> MembershipType | None:
        item = self._db.get_item(MEMBERSHIP_TYPES_TABLE, {"slug": slug})
        return item_to_membership_type(item) if item else None

    def get_show(self, show_id: str) -> Show | None:
        item = self._db.get_item(SHOWS_TABLE, {"show_id": show_id})
        if not item:
            return None
        return Show(show_id=item["show_id"], name=item.get("name", ""))

    def get_entries(self, entry_ids: list[str]) -> list[ShowEntry]:
        keys = [{"entry_id": entry_id} for entry_id in dict.fromkeys(entry_ids)]
        return [item_to_entry(item) for item in self._db.batch_get(ENTRIES_TABLE, keys)]

    def mark_entries_pending_payment(self, entry_ids: list[str]) -> int:
        """Move draft entries to pending_payment. Returns the number moved."""
        moved = 0
        for entry_id in entry_ids:
            attrs = self._db.update_item(
                ENTRIES_TABLE,
                {"entry_id": entry_id},
                "SET #status = :pending, updated_at = :now",
                {
                    ":pending": EntryStatus.PENDING_PAYMENT.value,
                    ":draft": EntryStatus.DRAFT.value,
                    ":now": utc_now().isoformat(),
                },
                expression_attribute_names={"#status": "status"},
                condition_expression="attribute_exists(entry_id) AND #status = :draft",
            )
            if attrs is not None:
                moved += 1
        return moved

    def confirm_entries(self, entry_ids: list[str], payment_id: str) -> int:
        """Confirm paid entries and link them to the payment.

        Entries already confirmed or cancelled are left untouched.

        Returns:
            Number of entries confirmed
        """
        confirmed = 0
        for entry_id in entry_ids:
            attrs = self._db.update_item(
                ENTRIES_TABLE,
                {"entry_id": entry_id},
                "SET #status = :confirmed, payment_id = :pid, updated_at = :now",
                {
                    ":confirmed": EntryStatus.CONFIRMED.value,
                    ":pid": payment_id,
                    ":draft": EntryStatus.DRAFT.value,
                    ":pending": EntryStatus.PENDING_PAYMENT.value,
                    ":now": utc_now().isoformat(),
                },
                expression_attribute_names={"#status": "status"},
                condition_expression=(
                    "attribute_exists(entry_id) AND (#status = :draft OR #status = :pending)"
                ),
            )
            if attrs is not None:
                confirmed += 1
        return confirmed

    def list_entries_for_payment(self, payment_id: str) -> list[ShowEntry]:
        items = self._db.query_index(ENTRIES_TABLE, ENTRIES_PAYMENT_INDEX, "payment_id", payment_id)
        return [item_to_entry(item) for item in items]

    # === Additional fees ===

    def get_fee_types(self, fee_type_ids: list[str]) -> dict[str, FeeType]:
        """Fee types by ID, active or not; unknown IDs are absent."""
        keys = [{"fee_type_id": fee_type_id} for fee_type_id in dict.fromkeys(fee_type_ids)]
        fee_types = (item_to_fee_type(item) for item in self._db.batch_get(FEE_TYPES_TABLE, keys))
        return {fee_type.fee_type_id: fee_type for fee_type in fee_types}

    def insert_fee_purchases(self, purchases: list[FeePurchase]) -> int:
        """Insert purchase lines, skipping any already recorded. Returns the number inserted."""
        inserted = 0
        for purchase in purchases:
            if self._db.put_item(
                FEE_PURCHASES_TABLE,
                fee_purchase_to_item(purchase),
                condition_expression="attribute_not_exists(purchase_id)",
            ):
                inserted += 1
        return inserted

    def list_fee_purchases(self, payment_id: str) -> list[FeePurchase]:
        items = self._db.query_index(
            FEE_PURCHASES_TABLE, FEE_PURCHASES_PAYMENT_INDEX, "payment_id", payment_id
        )
        return sorted((item_to_fee_purchase(item) for item in items), key=lambda p: p.purchase_id)

    def confirm_fee_purchases(self, payment_id: str) -> int:
        """Confirm the payment's pending purchase lines. Returns the number confirmed."""
        confirmed = 0
        for purchase in self.list_fee_purchases(payment_id):
            attrs = self._db.update_item(
                FEE_PURCHASES_TABLE,
                {"purchase_id": purchase.purchase_id},
                "SET #status = :confirmed, updated_at = :now",
                {
                    ":confirmed": FeePurchaseStatus.CONFIRMED.value,
                    ":pending": FeePurchaseStatus.PENDING.value,
                    ":now": utc_now().isoformat(),
                },
                expression_attribute_names={"#status": "status"},
                condition_expression="attribute_exists(purchase_id) AND #status = :pending",
            )
            if attrs is not None:
                confirmed += 1
        return confirmed

    # === Payments ===

    def insert_payment(self, payment: Payment) -> bool:
        """Insert a payment row.

        Returns:
            True if inserted, False if a row for the same session already exists
        """
        return self._db.put_item(
            PAYMENTS_TABLE,
            payment_to_item(payment),
            condition_expression="attribute_not_exists(payment_id)",
        )

    def get_payment(self, payment_id: str) -> Payment | None:
        item = self._db.get_item(PAYMENTS_TABLE, {"payment_id": payment_id})
        return item_to_payment(item) if item else None

    def get_payment_by_session(self, session_id: str) -> Payment | None:
        return self.get_payment(payment_id_for_session(session_id))

    def _transition(
        self,
        payment_id: str,
        from_statuses: tuple[PaymentStatus, ...],
        to_status: PaymentStatus,
        fields: dict[str, Any],
        remove: tuple[str, ...] = (),
    ) -> Payment | None:
        set_parts = ["#status = :to", "updated_at = :now"]
        values: dict[str, Any] = {":to": to_status.value, ":now": utc_now().isoformat()}
        for name, value in fields.items():
            if value is None:
                continue
            set_parts.append(f"{name} = :{name}")
            values[f":{name}"] = value

        placeholders = []
        for n, status in enumerate(from_statuses):
            values[f":from{n}"] = status.value
            placeholders.append(f":from{n}")

        update_expression = "SET " + ", ".join(set_parts)
        if remove:
            update_expression += " REMOVE " + ", ".join(remove)

        attrs = self._db.update_item(
            PAYMENTS_TABLE,
            {"payment_id": payment_id},
            update_expression,
            values,
            expression_attribute_names={"#status": "status"},
            condition_expression=(
                f"attribute_exists(payment_id) AND #status IN ({', '.join(placeholders)})"
            ),
        )
        return item_to_payment(attrs) if attrs else None

    def mark_payment_succeeded(
        self, session_id: str, payment_intent_id: str | None
    ) -> Payment | None:
        """Transition the session's payment to succeeded.

        A failed payment can still succeed: Checkout lets the member retry a
        declined card within the same session. The decline reason is cleared.

        Returns:
            The updated payment, or None if it was missing or neither pending
            nor failed
        """
        return self._transition(
            payment_id_for_session(session_id),
            (PaymentStatus.PENDING, PaymentStatus.FAILED),
            PaymentStatus.SUCCEEDED,
            {"stripe_payment_intent_id": payment_intent_id},
            remove=("failure_reason",),
        )

    def mark_payment_failed(self, session_id: str, reason: str) -> Payment | None:
        """Transition the session's payment pending -> failed."""
        return self._transition(
            payment_id_for_session(session_id),
            (PaymentStatus.PENDING,),
            PaymentStatus.FAILED,
            {"failure_reason": reason},
        )

    def mark_payment_refunded(
        self, payment_id: str, refund_id: str, refunded_at: dt.datetime
    ) -> Payment | None:
        """Transition a payment succeeded -> refunded."""
        return self._transition(
            payment_id,
            (PaymentStatus.SUCCEEDED,),
            PaymentStatus.REFUNDED,
            {"stripe_refund_id": refund_id, "refunded_at": refunded_at.isoformat()},
        )

    def set_payment_intent(
        self, session_id: str, payment_intent_id: str
    ) -> Payment | None:
        """Record the payment intent on the session's payment if not yet known."""
        attrs = self._db.update_item(
            PAYMENTS_TABLE,
            {"payment_id": payment_id_for_session(session_id)},
            "SET stripe_payment_intent_id = :pi, updated_at = :now",
            {":pi": payment_intent_id, ":now": utc_now().isoformat()},
            condition_expression=(
                "attribute_exists(payment_id) "
                "AND attribute_not_exists(stripe_payment_intent_id)"
            ),
        )
        return item_to_payment(attrs) if attrs else None

    def list_payments(self) -> list[Payment]:
        """All payments, newest first."""
        return _sort_newest_first(
            [item_to_payment(item) for item in self._db.scan(PAYMENTS_TABLE)]
        )

    def list_pending_payments(self, older_than: dt.datetime) -> list[Payment]:
        """Pending payments created before the cutoff, oldest first."""
        items = self._db.scan(
            PAYMENTS_TABLE,
            filter_expression=Attr("status").eq(PaymentStatus.PENDING.value),
        )
        payments = [item_to_payment(item) for item in items]
        return sorted(
            (p for p in payments if p.created_at < older_than),
            key=lambda p: p.created_at,
        )

    # === Webhook audit log ===

    def is_event_processed(self, event_id: str) -> bool:
        """Whether a delivery with this event ID was already handled.

        Deliveries that ended in error are not counted. The receiver answers
        them with 200, so Stripe does not redeliver on its own; resending the
        event from the Stripe dashboard processes it again.
        """
        item = self._db.get_item(WEBHOOK_EVENTS_TABLE, {"event_id": event_id})
        if item is None:
            return False
        return item.get("processing_result") != ProcessingResult.ERROR.value

    def log_webhook_event(self, event: WebhookEvent) -> None:
        item = _drop_none(
            {
                "event_id": event.event_id,
                "event_type": event.event_type,
                "processed_at": event.processed_at.isoformat(),
                "payload_hash": event.payload_hash,
                "checkout_session_id": event.checkout_session_id,
                "payment_id": event.payment_id,
                "processing_result": event.processing_result.value,
                "error_message": event.error_message,
            }
        )
        self._db.put_item(WEBHOOK_EVENTS_TABLE, item)
