"""Stripe secrets held in SSM Parameter Store.

Each deployment keeps its secrets as SecureStrings under
`{prefix}/stripe/secret_key` and `{prefix}/stripe/webhook_secret`. Values are
cached per process for a few minutes so a rotated webhook secret is picked up
without a redeploy.
"""

import logging
import time
from functools import lru_cache
from typing import Any

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

STRIPE_SECRET_NAMES = ("secret_key", "webhook_secret")
CACHE_TTL_SECONDS = 300.0


class SSMServiceError(Exception):
    """A Stripe secret could not be read from Parameter Store."""

    def __init__(self, parameter: str, code: str) -> None:
        super().__init__(f"SSM parameter {parameter} unavailable ({code})")
        self.parameter = parameter
        self.code = code

    @property
    def not_found(self) -> bool:
        return self.code == "ParameterNotFound"


class SSMService:
    """Reads the Stripe secrets of one deployment."""

    def __init__(
        self,
        prefix: str,
        *,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        client: Any = None,
    ) -> None:
        self._prefix = prefix.rstrip("/")
        self._ttl = ttl_seconds
        self._client = client or boto3.client("ssm")
        self._cache: dict[str, tuple[float, str]] = {}

    def parameter_name(self, secret: str) -> str:
        if secret not in STRIPE_SECRET_NAMES:
            raise ValueError(f"Unknown Stripe secret: {secret}")
        return f"{self._prefix}/stripe/{secret}"

    def get_stripe_secret(self, secret: str) -> str:
        """Decrypted value of a Stripe secret.

        Args:
            secret: "secret_key" or "webhook_secret"

        Raises:
            SSMServiceError: If the parameter is missing or unreadable.
        """
        name = self.parameter_name(secret)
        now = time.monotonic()
        cached = self._cache.get(name)
        if cached is not None and now - cached[0] < self._ttl:
            return cached[1]

        try:
            response = self._client.get_parameter(Name=name, WithDecryption=True)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "Unknown")
            raise SSMServiceError(name, code) from e

        value = response["Parameter"]["Value"]
        self._cache[name] = (now, value)
        logger.info("Loaded Stripe %s from %s", secret, name)
        return value

    def invalidate(self) -> None:
        """Forget cached values, e.g. right after rotating a secret."""
        self._cache.clear()


@lru_cache(maxsize=8)
def get_ssm_service(prefix: str) -> SSMService:
    return SSMService(prefix)
