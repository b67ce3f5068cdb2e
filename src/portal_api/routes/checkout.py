"""Checkout endpoints for membership dues, show entry fees and additional fees.

Every endpoint returns the Stripe Checkout URL the browser should be sent to.
Validation and gateway failures come back as the standard error body with a
fixed, user-safe message.
"""

from fastapi import APIRouter, Depends
from starlette.status import HTTP_200_OK

from portal_api.dependencies import get_checkout_service, get_current_identity
from portal_api.models.checkout import (
    EntryCheckoutRequest,
    FeeCheckoutRequest,
    MembershipCheckoutRequest,
)
from portal_shared.models import ActionError, CheckoutUrl, Identity, PortalError
from portal_shared.services.checkout import CheckoutService

router = APIRouter(tags=["checkout"])

ERROR_RESPONSES = {
    400: {"description": "Missing or invalid selection or quantity", "model": ActionError},
    401: {"description": "Sign-in required", "model": ActionError},
    404: {"description": "Profile or selection not available", "model": ActionError},
    502: {"description": "Stripe could not start checkout", "model": ActionError},
}


@router.post(
    "/checkout/membership",
    summary="Start membership checkout",
    description="""
Create a Stripe Checkout session for a membership type.

Members who already hold (or held) a membership pay a renewal; everyone else
pays dues. Free membership types return an error instead of a session.
""",
    response_model=CheckoutUrl,
    status_code=HTTP_200_OK,
    responses=ERROR_RESPONSES,
)
def create_membership_checkout(
    body: MembershipCheckoutRequest,
    identity: Identity | None = Depends(get_current_identity),
    checkout: CheckoutService = Depends(get_checkout_service),
) -> CheckoutUrl:
    result = checkout.create_membership_checkout(identity, body.membership_type_slug)
    if isinstance(result, ActionError):
        raise PortalError.from_action_error(result)
    return result


@router.post(
    "/checkout/entries",
    summary="Start show entry checkout",
    description="""
Create a Stripe Checkout session paying the fees of one or more of the
caller's draft or pending entries. All entries must be for the same show.
""",
    response_model=CheckoutUrl,
    status_code=HTTP_200_OK,
    responses=ERROR_RESPONSES,
)
def create_entry_checkout(
    body: EntryCheckoutRequest,
    identity: Identity | None = Depends(get_current_identity),
    checkout: CheckoutService = Depends(get_checkout_service),
) -> CheckoutUrl:
    result = checkout.create_entry_checkout(identity, body.entry_ids)
    if isinstance(result, ActionError):
        raise PortalError.from_action_error(result)
    return result


@router.post(
    "/checkout/fees",
    summary="Start additional fee checkout",
    description="""
Create a Stripe Checkout session for additional fee items such as stalls or
shavings. Each fee type may appear once with a quantity of at least 1, up to
its per-order limit.
""",
    response_model=CheckoutUrl,
    status_code=HTTP_200_OK,
    responses=ERROR_RESPONSES,
)
def create_fee_checkout(
    body: FeeCheckoutRequest,
    identity: Identity | None = Depends(get_current_identity),
    checkout: CheckoutService = Depends(get_checkout_service),
) -> CheckoutUrl:
    result = checkout.create_fee_checkout(identity, body.items, body.show_id)
    if isinstance(result, ActionError):
        raise PortalError.from_action_error(result)
    return result
