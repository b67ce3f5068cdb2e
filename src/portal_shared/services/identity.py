"""Cognito-backed identity: request identity, code exchange, email confirmation.

Supports two API Gateway configurations when reading the caller:
1. HTTP API with JWT authorizer: claims mapped to x-user-sub / x-user-role headers
2. REST API with Cognito User Pools: claims in event.requestContext.authorizer.claims
"""

import base64
import hashlib
import hmac
import logging
from collections.abc import Mapping
from typing import Any

import boto3
import httpx
from botocore.exceptions import ClientError

from portal_shared.config import Settings, get_settings
from portal_shared.models import AuthSession, Identity, UserRole
from portal_shared.utils.jwt import b64url_decode, b64url_encode, decode_jwt_payload

logger = logging.getLogger(__name__)

CONFIRMABLE_OTP_TYPES = {"signup", "email"}
TOKEN_TIMEOUT_SECONDS = 10.0


def role_from_claims(claims: Mapping[str, Any]) -> UserRole:
    """Admin if the custom:role claim or any Cognito group says so."""
    if str(claims.get("custom:role", "")).strip().lower() == UserRole.ADMIN.value:
        return UserRole.ADMIN

    groups = claims.get("cognito:groups") or []
    if isinstance(groups, str):
        # REST API authorizers flatten the list to "[a b]" or "a,b"
        groups = groups.strip("[]").replace(",", " ").split()
    if UserRole.ADMIN.value in {str(g).strip().lower() for g in groups}:
        return UserRole.ADMIN
    return UserRole.MEMBER


def resolve_identity(
    headers: Mapping[str, str],
    aws_event: Mapping[str, Any] | None = None,
) -> Identity | None:
    """Build the caller's identity from authorizer output.

    Verified REST API authorizer claims, when present, are the only source;
    x-user-* headers are read only when there are none, as with the HTTP API
    JWT authorizer that writes them.

    Args:
        headers: Request headers (case-insensitive mapping)
        aws_event: Raw Lambda event, when running behind Mangum

    Returns:
        Identity, or None for an unauthenticated request
    """
    claims: Mapping[str, Any] = {}
    if aws_event:
        claims = (
            aws_event.get("requestContext", {}).get("authorizer", {}).get("claims") or {}
        )

    if claims:
        member_id = claims.get("sub")
        if not member_id:
            return None
        email = claims.get("email")
        role = role_from_claims(claims)
    else:
        member_id = headers.get("x-user-sub")
        if not member_id:
            return None
        email = headers.get("x-user-email")
        header_role = (headers.get("x-user-role") or "").strip().lower()
        role = UserRole.ADMIN if header_role == UserRole.ADMIN.value else UserRole.MEMBER

    return Identity(member_id=str(member_id), role=role, email=email or None)


def encode_confirmation_token(username: str, code: str) -> str:
    """Token hash carried by confirmation links: base64url of "username:code"."""
    return b64url_encode(f"{username}:{code}".encode())


def decode_confirmation_token(token_hash: str) -> tuple[str, str] | None:
    try:
        decoded = b64url_decode(token_hash).decode()
    except (ValueError, UnicodeDecodeError):
        return None
    username, sep, code = decoded.rpartition(":")
    if not sep or not username or not code:
        return None
    return username, code


class IdentityService:
    """Talks to the Cognito user pool and its hosted-UI token endpoint."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._cognito_client: Any = None

    @property
    def cognito_client(self) -> Any:
        if self._cognito_client is None:
            self._cognito_client = boto3.client("cognito-idp")
        return self._cognito_client

    @property
    def token_url(self) -> str | None:
        domain = self._settings.cognito_domain
        if not domain:
            return None
        if not domain.startswith(("http://", "https://")):
            domain = f"https://{domain}"
        return f"{domain.rstrip('/')}/oauth2/token"

    @property
    def redirect_uri(self) -> str:
        return f"{self._settings.app_url}/api/auth/callback"

    def _secret_hash(self, username: str) -> str | None:
        secret = self._settings.cognito_client_secret
        client_id = self._settings.cognito_client_id
        if not secret or not client_id:
            return None
        digest = hmac.new(
            secret.encode(), (username + client_id).encode(), hashlib.sha256
        ).digest()
        return base64.b64encode(digest).decode()

    def exchange_code(self, code: str) -> AuthSession | None:
        """Exchange an authorization code for tokens.

        Returns:
            AuthSession with the identity read from the ID token, or None
            if the exchange fails for any reason
        """
        token_url = self.token_url
        client_id = self._settings.cognito_client_id
        if not token_url or not client_id:
            logger.error("Cognito domain or client id not configured")
            return None

        data = {
            "grant_type": "authorization_code",
            "client_id": client_id,
            "code": code,
            "redirect_uri": self.redirect_uri,
        }
        auth = None
        if self._settings.cognito_client_secret:
            auth = (client_id, self._settings.cognito_client_secret)

        try:
            response = httpx.post(
                token_url, data=data, auth=auth, timeout=TOKEN_TIMEOUT_SECONDS
            )
            response.raise_for_status()
            tokens = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Authorization code exchange failed: %s", e)
            return None

        claims = decode_jwt_payload(tokens.get("id_token"))
        if not claims or not claims.get("sub") or not tokens.get("access_token"):
            logger.warning("Token response missing ID token claims or access token")
            return None

        identity = Identity(
            member_id=str(claims["sub"]),
            role=role_from_claims(claims),
            email=claims.get("email"),
        )
        logger.info("Session established for %s...", identity.member_id[:8])
        return AuthSession(
            identity=identity,
            id_token=tokens["id_token"],
            access_token=tokens["access_token"],
            refresh_token=tokens.get("refresh_token"),
            expires_in=int(tokens.get("expires_in", 3600)),
        )

    def confirm_email(self, token_hash: str | None, otp_type: str | None) -> bool:
        """Confirm a sign-up from an email verification link.

        Args:
            token_hash: base64url of "username:code"
            otp_type: Link type; only "signup" and "email" are accepted

        Returns:
            True if Cognito confirmed the user
        """
        if not token_hash or otp_type not in CONFIRMABLE_OTP_TYPES:
            return False
        if not self._settings.cognito_client_id:
            logger.error("Cognito client id not configured")
            return False

        decoded = decode_confirmation_token(token_hash)
        if decoded is None:
            logger.warning("Malformed confirmation token")
            return False
        username, code = decoded

        kwargs: dict[str, Any] = {
            "ClientId": self._settings.cognito_client_id,
            "Username": username,
            "ConfirmationCode": code,
        }
        secret_hash = self._secret_hash(username)
        if secret_hash:
            kwargs["SecretHash"] = secret_hash

        try:
            self.cognito_client.confirm_sign_up(**kwargs)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            logger.warning("Email confirmation failed: %s", error_code)
            return False

        logger.info("Email confirmed for user")
        return True
