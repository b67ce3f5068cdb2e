"""Base64url helpers and unverified JWT claim decoding.

ID tokens reach this code straight from the Cognito token endpoint over TLS,
or already validated by the API Gateway authorizer, so claims are read
without checking the signature.
"""

import base64
import binascii
import json
import logging
from typing import Any

logger = logging.getLogger(__name__)


def b64url_encode(raw: bytes) -> str:
    """Unpadded base64url, as used in JWT segments and confirmation links."""
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def b64url_decode(segment: str) -> bytes:
    """Decode unpadded base64url.

    Raises:
        ValueError: If the segment is not valid base64url.
    """
    try:
        return base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))
    except binascii.Error as e:
        raise ValueError(str(e)) from e


def decode_jwt_payload(token: str | None) -> dict[str, Any] | None:
    """Claims of a JWT, or None if it is not a well-formed three-part token."""
    if not token:
        return None

    segments = token.split(".")
    if len(segments) != 3:
        logger.debug("Invalid JWT format: expected 3 segments, got %d", len(segments))
        return None

    try:
        claims = json.loads(b64url_decode(segments[1]))
    except (ValueError, UnicodeDecodeError) as e:
        logger.warning("Failed to decode JWT payload: %s", type(e).__name__)
        return None
    return claims if isinstance(claims, dict) else None
