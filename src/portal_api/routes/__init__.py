"""API routes package.

Routers are organized by domain:

- health: Health check
- checkout: Membership and show entry checkout
- payments: Member payment history
- admin_payments: Admin listing, summary and refunds
- webhooks: Stripe webhook receiver
- auth: OAuth2 callback and email confirmation redirects

All routers are registered in main.py with /api prefix.
"""

from portal_api.routes.admin_payments import router as admin_payments_router
from portal_api.routes.auth import router as auth_router
from portal_api.routes.checkout import router as checkout_router
from portal_api.routes.health import router as health_router
from portal_api.routes.payments import router as payments_router
from portal_api.routes.webhooks import router as webhooks_router

__all__ = [
    "admin_payments_router",
    "auth_router",
    "checkout_router",
    "health_router",
    "payments_router",
    "webhooks_router",
]
