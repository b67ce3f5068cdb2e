"""FastAPI dependency injection providers for shared services.

Services are lazily instantiated and cached with @lru_cache.

Service Dependency Graph:
    DynamoDBService (singleton via get_dynamodb_service)
        └── ServiceStore
                ├── CheckoutService      (+ StripeService)
                ├── ReconciliationService (+ StripeService)
                │       └── WebhookHandler
                ├── RefundService        (+ StripeService)
                └── PaymentQueryService

Identity:
    get_current_identity returns None for anonymous callers; require_identity
    and require_admin raise PortalError instead.

Testing:
    Use reset_services() to clear cached instances between tests.
"""

from functools import lru_cache

from fastapi import Depends, Request

from portal_shared.config import get_settings
from portal_shared.models import ErrorCode, Identity, PortalError
from portal_shared.services.checkout import CheckoutService
from portal_shared.services.dynamodb import get_dynamodb_service
from portal_shared.services.identity import IdentityService, resolve_identity
from portal_shared.services.payment_queries import PaymentQueryService
from portal_shared.services.reconciliation import ReconciliationService
from portal_shared.services.record_store import ServiceStore
from portal_shared.services.refunds import RefundService
from portal_shared.services.stripe_service import StripeService, get_stripe_service
from portal_shared.services.webhook_handler import WebhookHandler


@lru_cache
def get_service_store() -> ServiceStore:
    return ServiceStore(get_dynamodb_service())


def get_stripe() -> StripeService:
    """StripeService provider; overridable in tests via dependency_overrides."""
    return get_stripe_service()


def get_checkout_service(
    stripe_service: StripeService = Depends(get_stripe),
) -> CheckoutService:
    return CheckoutService(
        stripe_service=stripe_service,
        store=get_service_store(),
        app_url=get_settings().app_url,
    )


def get_reconciliation_service(
    stripe_service: StripeService = Depends(get_stripe),
) -> ReconciliationService:
    return ReconciliationService(stripe_service=stripe_service, store=get_service_store())


def get_webhook_handler(
    reconciliation: ReconciliationService = Depends(get_reconciliation_service),
) -> WebhookHandler:
    return WebhookHandler(store=get_service_store(), reconciliation=reconciliation)


def get_refund_service(
    stripe_service: StripeService = Depends(get_stripe),
) -> RefundService:
    return RefundService(stripe_service=stripe_service, store=get_service_store())


@lru_cache
def get_payment_query_service() -> PaymentQueryService:
    return PaymentQueryService(store=get_service_store())


@lru_cache
def get_identity_service() -> IdentityService:
    return IdentityService(get_settings())


def get_current_identity(request: Request) -> Identity | None:
    """Identity established by the API Gateway authorizer, if any."""
    return resolve_identity(request.headers, request.scope.get("aws.event"))


def require_identity(
    identity: Identity | None = Depends(get_current_identity),
) -> Identity:
    if identity is None:
        raise PortalError(ErrorCode.SIGN_IN_REQUIRED)
    return identity


def require_admin(identity: Identity = Depends(require_identity)) -> Identity:
    if not identity.is_admin:
        raise PortalError(ErrorCode.FORBIDDEN)
    return identity


def reset_services() -> None:
    """Clear all cached service instances.

    Call this in test fixtures to ensure clean state between tests.
    Also resets the underlying DynamoDB, SSM, Stripe and settings singletons.
    """
    from portal_shared.services.dynamodb import reset_dynamodb_service
    from portal_shared.services.ssm_service import get_ssm_service

    get_service_store.cache_clear()
    get_payment_query_service.cache_clear()
    get_identity_service.cache_clear()
    get_stripe_service.cache_clear()
    get_settings.cache_clear()
    get_ssm_service.cache_clear()

    reset_dynamodb_service()
