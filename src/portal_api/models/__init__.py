"""API-specific request models.

Domain models (Payment, ActionError, CheckoutUrl, etc.) are in
portal_shared.models and are reused as response schemas.

Modules:
- checkout: Checkout and refund request bodies
"""

__all__: list[str] = []
