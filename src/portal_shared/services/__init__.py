"""Services for the membership portal payments backend."""

from .checkout import CheckoutService
from .dynamodb import DynamoDBService, get_dynamodb_service, reset_dynamodb_service
from .identity import IdentityService, resolve_identity
from .payment_queries import PaymentQueryService
from .reconciliation import ReconciliationReport, ReconciliationService
from .record_store import MemberScopedStore, ServiceStore
from .refunds import RefundService
from .ssm_service import SSMService, SSMServiceError, get_ssm_service
from .stripe_service import (
    StripeService,
    StripeServiceError,
    WebhookSecretMissingError,
    get_stripe_service,
)
from .webhook_handler import WebhookHandler, WebhookOutcome

__all__ = [
    "CheckoutService",
    "DynamoDBService",
    "get_dynamodb_service",
    "reset_dynamodb_service",
    "IdentityService",
    "resolve_identity",
    "PaymentQueryService",
    "ReconciliationReport",
    "ReconciliationService",
    "MemberScopedStore",
    "ServiceStore",
    "RefundService",
    "SSMService",
    "SSMServiceError",
    "get_ssm_service",
    "StripeService",
    "StripeServiceError",
    "WebhookSecretMissingError",
    "get_stripe_service",
    "WebhookHandler",
    "WebhookOutcome",
]
