"""Pytest configuration and fixtures for the membership payments backend tests.

This module provides reusable fixtures for testing:
- DynamoDB mocking with moto
- Sample data fixtures (members, membership types, shows, entries, fee types)
- A mocked StripeService
- Identity headers as set by the API Gateway authorizer
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Any, Generator
from unittest.mock import MagicMock

import boto3
import pytest
from moto import mock_aws

# === Environment Setup ===

# Set environment variables for testing before imports
os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
os.environ["ENVIRONMENT"] = "dev"
os.environ["DYNAMODB_TABLE_PREFIX"] = "test-membership"
os.environ["APP_URL"] = "https://portal.example.org"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_abc123xyz"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret_for_testing"
os.environ["COGNITO_CLIENT_ID"] = "test-client-id"
os.environ["COGNITO_DOMAIN"] = "auth.portal.example.org"
os.environ.pop("SSM_PARAMETER_PREFIX", None)
os.environ.pop("DYNAMODB_ENDPOINT_URL", None)
os.environ.pop("COGNITO_CLIENT_SECRET", None)

if not os.environ.get("AWS_PROFILE") and not os.environ.get("AWS_ACCESS_KEY_ID"):
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")

from portal_shared.models import Member, MembershipStatus  # noqa: E402
from portal_shared.services.dynamodb import DynamoDBService  # noqa: E402
from portal_shared.services.record_store import ServiceStore, member_to_item  # noqa: E402
from portal_shared.services.stripe_service import (  # noqa: E402
    CheckoutSessionResult,
    RefundResult,
    StripeService,
)

from helpers import (  # noqa: E402
    ADMIN_ID,
    CHECKOUT_URL,
    EXISTING_CUSTOMER_ID,
    MEMBER_ID,
    NEW_CUSTOMER_ID,
    OTHER_MEMBER_ID,
    REFUND_ID,
    REGION,
    RENEWING_MEMBER_ID,
    SESSION_ID,
    TABLE_PREFIX,
    put_item,
)


# === Singleton Reset ===


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Reset cached settings and services before and after each test.

    This ensures tests using mock_aws get fresh boto3 clients inside the
    mock context rather than reusing a singleton from a previous test.
    """
    from portal_api.dependencies import reset_services

    reset_services()
    yield
    reset_services()


# === DynamoDB Fixtures ===

TABLE_DEFINITIONS: list[dict[str, Any]] = [
    {
        "TableName": f"{TABLE_PREFIX}-members",
        "KeySchema": [{"AttributeName": "member_id", "KeyType": "HASH"}],
        "AttributeDefinitions": [{"AttributeName": "member_id", "AttributeType": "S"}],
        "BillingMode": "PAY_PER_REQUEST",
    },
    {
        "TableName": f"{TABLE_PREFIX}-membership-types",
        "KeySchema": [{"AttributeName": "slug", "KeyType": "HASH"}],
        "AttributeDefinitions": [{"AttributeName": "slug", "AttributeType": "S"}],
        "BillingMode": "PAY_PER_REQUEST",
    },
    {
        "TableName": f"{TABLE_PREFIX}-payments",
        "KeySchema": [{"AttributeName": "payment_id", "KeyType": "HASH"}],
        "AttributeDefinitions": [
            {"AttributeName": "payment_id", "AttributeType": "S"},
            {"AttributeName": "member_id", "AttributeType": "S"},
        ],
        "GlobalSecondaryIndexes": [
            {
                "IndexName": "member-index",
                "KeySchema": [{"AttributeName": "member_id", "KeyType": "HASH"}],
                "Projection": {"ProjectionType": "ALL"},
            },
        ],
        "BillingMode": "PAY_PER_REQUEST",
    },
    {
        "TableName": f"{TABLE_PREFIX}-show-entries",
        "KeySchema": [{"AttributeName": "entry_id", "KeyType": "HASH"}],
        "AttributeDefinitions": [
            {"AttributeName": "entry_id", "AttributeType": "S"},
            {"AttributeName": "payment_id", "AttributeType": "S"},
        ],
        "GlobalSecondaryIndexes": [
            {
                "IndexName": "payment-index",
                "KeySchema": [{"AttributeName": "payment_id", "KeyType": "HASH"}],
                "Projection": {"ProjectionType": "ALL"},
            },
        ],
        "BillingMode": "PAY_PER_REQUEST",
    },
    {
        "TableName": f"{TABLE_PREFIX}-fee-types",
        "KeySchema": [{"AttributeName": "fee_type_id", "KeyType": "HASH"}],
        "AttributeDefinitions": [{"AttributeName": "fee_type_id", "AttributeType": "S"}],
        "BillingMode": "PAY_PER_REQUEST",
    },
    {
        "TableName": f"{TABLE_PREFIX}-fee-purchases",
        "KeySchema": [{"AttributeName": "purchase_id", "KeyType": "HASH"}],
        "AttributeDefinitions": [
            {"AttributeName": "purchase_id", "AttributeType": "S"},
            {"AttributeName": "payment_id", "AttributeType": "S"},
        ],
        "GlobalSecondaryIndexes": [
            {
                "IndexName": "payment-index",
                "KeySchema": [{"AttributeName": "payment_id", "KeyType": "HASH"}],
                "Projection": {"ProjectionType": "ALL"},
            },
        ],
        "BillingMode": "PAY_PER_REQUEST",
    },
    {
        "TableName": f"{TABLE_PREFIX}-shows",
        "KeySchema": [{"AttributeName": "show_id", "KeyType": "HASH"}],
        "AttributeDefinitions": [{"AttributeName": "show_id", "AttributeType": "S"}],
        "BillingMode": "PAY_PER_REQUEST",
    },
    {
        "TableName": f"{TABLE_PREFIX}-stripe-webhook-events",
        "KeySchema": [{"AttributeName": "event_id", "KeyType": "HASH"}],
        "AttributeDefinitions": [{"AttributeName": "event_id", "AttributeType": "S"}],
        "BillingMode": "PAY_PER_REQUEST",
    },
]


@pytest.fixture
def mock_dynamodb_tables() -> Generator[Any, None, None]:
    """Create all portal tables inside a moto context."""
    with mock_aws():
        client = boto3.client("dynamodb", region_name=REGION)
        for definition in TABLE_DEFINITIONS:
            client.create_table(**definition)
        yield boto3.resource("dynamodb", region_name=REGION)


@pytest.fixture
def db(mock_dynamodb_tables: Any) -> DynamoDBService:
    return DynamoDBService()


@pytest.fixture
def store(db: DynamoDBService) -> ServiceStore:
    return ServiceStore(db)


# === Sample Data ===


def _now() -> datetime:
    return datetime.now(timezone.utc)


@pytest.fixture
def seeded(mock_dynamodb_tables: Any) -> Any:
    """Members, membership types, shows, entries and fee types used across tests."""
    resource = mock_dynamodb_tables

    members = [
        Member(
            member_id=MEMBER_ID,
            email="jane.rider@example.org",
            first_name="Jane",
            last_name="Rider",
            membership_status=MembershipStatus.PENDING,
            created_at=_now(),
            updated_at=_now(),
        ),
        Member(
            member_id=RENEWING_MEMBER_ID,
            email="sam.reiner@example.org",
            first_name="Sam",
            last_name="Reiner",
            membership_type="adult-annual",
            membership_status=MembershipStatus.ACTIVE,
            membership_start=_now() - timedelta(days=300),
            membership_expiry=_now() + timedelta(days=65),
            stripe_customer_id=EXISTING_CUSTOMER_ID,
            created_at=_now(),
            updated_at=_now(),
        ),
        Member(
            member_id=OTHER_MEMBER_ID,
            email="other@example.org",
            first_name="Otto",
            last_name="Other",
            created_at=_now(),
            updated_at=_now(),
        ),
        Member(
            member_id=ADMIN_ID,
            email="admin@example.org",
            first_name="Ada",
            last_name="Admin",
            created_at=_now(),
            updated_at=_now(),
        ),
    ]
    for member in members:
        put_item(resource, "members", member_to_item(member))

    membership_types = [
        {
            "membership_type_id": "mt-1",
            "name": "Adult Annual",
            "slug": "adult-annual",
            "description": "Full voting membership for one year",
            "price_cents": 7500,
            "duration_months": 12,
            "benefits": ["Voting rights", "Member entry rates"],
            "sort_order": 1,
            "is_active": True,
        },
        {
            "membership_type_id": "mt-2",
            "name": "Lifetime",
            "slug": "lifetime",
            "price_cents": 50000,
            "benefits": [],
            "sort_order": 2,
            "is_active": True,
        },
        {
            "membership_type_id": "mt-3",
            "name": "Youth",
            "slug": "youth-free",
            "price_cents": 0,
            "duration_months": 12,
            "sort_order": 3,
            "is_active": True,
        },
        {
            "membership_type_id": "mt-4",
            "name": "Family (retired)",
            "slug": "family-retired",
            "price_cents": 12000,
            "duration_months": 12,
            "sort_order": 4,
            "is_active": False,
        },
    ]
    for membership_type in membership_types:
        put_item(resource, "membership-types", membership_type)

    put_item(resource, "shows", {"show_id": "SHOW-1", "name": "Spring Classic"})
    put_item(resource, "shows", {"show_id": "SHOW-2", "name": "Fall Futurity"})

    entries = [
        ("ENT-1", "SHOW-1", MEMBER_ID, "Dun It Gotta Gun", "Jane Rider", "draft", 3500),
        ("ENT-2", "SHOW-1", MEMBER_ID, "Smart Chic Olena", "Jane Rider", "pending_payment", 4000),
        ("ENT-3", "SHOW-2", MEMBER_ID, "Whiz N Tag", "Jane Rider", "draft", 2000),
        ("ENT-4", "SHOW-1", MEMBER_ID, "Gunner", "Jane Rider", "confirmed", 3000),
        ("ENT-5", "SHOW-1", OTHER_MEMBER_ID, "Not Mine", "Otto Other", "draft", 3000),
        ("ENT-6", "SHOW-1", MEMBER_ID, "Free Class", "Jane Rider", "draft", 0),
    ]
    for entry_id, show_id, member_id, horse, rider, status, total in entries:
        put_item(
            resource,
            "show-entries",
            {
                "entry_id": entry_id,
                "show_id": show_id,
                "member_id": member_id,
                "horse_name": horse,
                "rider_name": rider,
                "status": status,
                "total_cents": total,
            },
        )

    fee_types = [
        {
            "fee_type_id": "FEE-STALL",
            "name": "Stall (per night)",
            "description": "Covered stall with one bag of shavings",
            "price_cents": 4500,
            "category": "stalls",
            "max_quantity_per_order": 4,
            "is_active": True,
            "sort_order": 1,
        },
        {
            "fee_type_id": "FEE-SHAVINGS",
            "name": "Shavings bag",
            "price_cents": 1200,
            "category": "supplies",
            "is_active": True,
            "sort_order": 2,
        },
        {
            "fee_type_id": "FEE-RV",
            "name": "RV hookup (retired)",
            "price_cents": 6000,
            "category": "camping",
            "is_active": False,
            "sort_order": 3,
        },
        {
            "fee_type_id": "FEE-PARKING",
            "name": "Trailer parking",
            "price_cents": 0,
            "category": "parking",
            "is_active": True,
            "sort_order": 4,
        },
    ]
    for fee_type in fee_types:
        put_item(resource, "fee-types", fee_type)

    return resource


# === Stripe ===


@pytest.fixture
def mock_stripe() -> MagicMock:
    """StripeService double returning canned customers, sessions and refunds."""
    stripe_service = MagicMock(spec=StripeService)
    stripe_service.create_customer.return_value = NEW_CUSTOMER_ID
    stripe_service.create_checkout_session.return_value = CheckoutSessionResult(
        session_id=SESSION_ID,
        checkout_url=CHECKOUT_URL,
        expires_at=_now() + timedelta(hours=24),
    )
    stripe_service.create_refund.return_value = RefundResult(
        refund_id=REFUND_ID, amount_cents=7500, status="succeeded"
    )
    stripe_service.has_webhook_secret.return_value = True
    stripe_service.find_session_for_payment_intent.return_value = None
    return stripe_service

