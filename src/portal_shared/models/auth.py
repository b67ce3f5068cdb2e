"""Authenticated identity models."""

from pydantic import BaseModel, ConfigDict

from .enums import UserRole


class Identity(BaseModel):
    """The caller as established by the API Gateway authorizer."""

    model_config = ConfigDict(strict=True, frozen=True)

    member_id: str
    role: UserRole = UserRole.MEMBER
    email: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class AuthSession(BaseModel):
    """Tokens returned by the authorization-code exchange."""

    model_config = ConfigDict(strict=True)

    identity: Identity
    id_token: str
    access_token: str
    refresh_token: str | None = None
    expires_in: int = 3600
