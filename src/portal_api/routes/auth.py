"""Authentication redirect endpoints.

- /auth/callback: Cognito hosted-UI redirect target; exchanges the
  authorization code, stores the tokens as cookies and sends the browser to
  the admin or member area.
- /auth/confirm: email verification link target.

Both always answer with a 302 redirect.
"""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse
from starlette.status import HTTP_302_FOUND

from portal_api.dependencies import get_identity_service
from portal_shared.config import get_settings
from portal_shared.models import AuthSession
from portal_shared.services.identity import IdentityService
from portal_shared.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

ID_TOKEN_COOKIE = "id_token"
ACCESS_TOKEN_COOKIE = "access_token"
REFRESH_TOKEN_COOKIE = "refresh_token"


def _redirect(path: str) -> RedirectResponse:
    return RedirectResponse(f"{get_settings().app_url}{path}", status_code=HTTP_302_FOUND)


def _set_session_cookies(response: RedirectResponse, session: AuthSession) -> None:
    secure = get_settings().environment != "dev"
    cookies = {
        ID_TOKEN_COOKIE: session.id_token,
        ACCESS_TOKEN_COOKIE: session.access_token,
    }
    for name, value in cookies.items():
        response.set_cookie(
            name,
            value,
            max_age=session.expires_in,
            httponly=True,
            secure=secure,
            samesite="lax",
        )
    if session.refresh_token:
        response.set_cookie(
            REFRESH_TOKEN_COOKIE,
            session.refresh_token,
            max_age=30 * 24 * 3600,
            httponly=True,
            secure=secure,
            samesite="lax",
        )


@router.get(
    "/callback",
    summary="OAuth2 authorization-code callback",
    response_class=RedirectResponse,
    status_code=HTTP_302_FOUND,
)
def auth_callback(
    code: str | None = Query(default=None),
    identity_service: IdentityService = Depends(get_identity_service),
) -> RedirectResponse:
    """Redirect to /admin for administrators, /member otherwise, /login on failure."""
    if not code:
        return _redirect("/login")

    session = identity_service.exchange_code(code)
    if session is None:
        return _redirect("/login")

    response = _redirect("/admin" if session.identity.is_admin else "/member")
    _set_session_cookies(response, session)
    return response


@router.get(
    "/confirm",
    summary="Email verification link",
    response_class=RedirectResponse,
    status_code=HTTP_302_FOUND,
)
def auth_confirm(
    token_hash: str | None = Query(default=None),
    otp_type: str | None = Query(default=None, alias="type"),
    identity_service: IdentityService = Depends(get_identity_service),
) -> RedirectResponse:
    if identity_service.confirm_email(token_hash, otp_type):
        return _redirect("/member/login?confirmed=true")
    logger.warning("Email verification failed for link type %s", otp_type)
    return _redirect("/member/register?error=verification_failed")
