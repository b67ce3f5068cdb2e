"""Process configuration read from environment variables.

Stripe secrets may alternatively live in SSM Parameter Store. When
SSM_PARAMETER_PREFIX is set and a secret is absent from the environment, it is
resolved lazily from `{prefix}/stripe/secret_key` and
`{prefix}/stripe/webhook_secret`.
"""

import logging
import os
from functools import lru_cache

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

DEFAULT_APP_URL = "http://localhost:3000"


class Settings(BaseModel):
    """Runtime settings for the API and the reconciliation sweep."""

    model_config = ConfigDict(frozen=True)

    environment: str = Field(default="dev", description="Deployment environment")
    app_url: str = Field(
        default=DEFAULT_APP_URL,
        description="Public base URL used to build checkout redirect targets",
    )
    stripe_secret_key: str | None = Field(default=None, repr=False)
    stripe_webhook_secret: str | None = Field(default=None, repr=False)
    table_prefix: str = Field(default="membership-dev")
    dynamodb_endpoint_url: str | None = Field(
        default=None, description="Database URL override (local DynamoDB)"
    )
    cognito_user_pool_id: str | None = None
    cognito_client_id: str | None = Field(
        default=None, description="Public app client id"
    )
    cognito_client_secret: str | None = Field(
        default=None, repr=False, description="Privileged app client secret"
    )
    cognito_domain: str | None = Field(
        default=None, description="Hosted UI domain for the OAuth2 token endpoint"
    )
    ssm_parameter_prefix: str | None = None

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the current process environment."""
        environment = os.environ.get("ENVIRONMENT", "dev")
        return cls(
            environment=environment,
            app_url=os.environ.get("APP_URL", DEFAULT_APP_URL).rstrip("/"),
            stripe_secret_key=os.environ.get("STRIPE_SECRET_KEY") or None,
            stripe_webhook_secret=os.environ.get("STRIPE_WEBHOOK_SECRET") or None,
            table_prefix=os.environ.get(
                "DYNAMODB_TABLE_PREFIX", f"membership-{environment}"
            ),
            dynamodb_endpoint_url=os.environ.get("DYNAMODB_ENDPOINT_URL") or None,
            cognito_user_pool_id=os.environ.get("COGNITO_USER_POOL_ID") or None,
            cognito_client_id=os.environ.get("COGNITO_CLIENT_ID") or None,
            cognito_client_secret=os.environ.get("COGNITO_CLIENT_SECRET") or None,
            cognito_domain=os.environ.get("COGNITO_DOMAIN") or None,
            ssm_parameter_prefix=os.environ.get("SSM_PARAMETER_PREFIX") or None,
        )

    def resolve_secret(self, name: str) -> str | None:
        """Resolve a Stripe secret from the environment, then SSM.

        Args:
            name: Either "secret_key" or "webhook_secret".

        Returns:
            The secret value, or None when it is not configured anywhere.
        """
        value = getattr(self, f"stripe_{name}")
        if value:
            return value
        if not self.ssm_parameter_prefix:
            return None

        from portal_shared.services.ssm_service import SSMServiceError, get_ssm_service

        try:
            return get_ssm_service(self.ssm_parameter_prefix).get_stripe_secret(name) or None
        except SSMServiceError as e:
            if e.not_found:
                logger.warning("Stripe %s not set in SSM (%s)", name, e.parameter)
            else:
                logger.error("Stripe %s unavailable from SSM: %s", name, e)
            return None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the cached process settings.

    Tests call `get_settings.cache_clear()` after changing the environment.
    """
    return Settings.from_env()
