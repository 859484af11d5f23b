"""FastAPI dependencies: get_current_user, require_platform_admin.

Usage in any protected router:
    from src.am_identity.auth.dependencies import CallerIdentity, get_current_user

    @router.get("/protected")
    async def protected(caller: Annotated[CallerIdentity, Depends(get_current_user)]):
        ...
"""

from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from config.settings import settings
from src.am_common.errors import AdminRequiredError, InvalidCredentialsError
from src.am_identity.auth.jwt_handler import CALLER_TOKEN_TYPE, decode_token

# Tokens come from the external auth service; tokenUrl only feeds Swagger UI.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")

_CREDENTIALS_EXCEPTION = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Invalid or expired token",
    headers={"WWW-Authenticate": "Bearer"},
)


@dataclass(frozen=True)
class CallerIdentity:
    user_id: str
    email: str | None = None
    # Payment address linked by the auth service; chain purchases are bound to it
    wallet: str | None = None


async def get_current_user(token: str = Depends(oauth2_scheme)) -> CallerIdentity:
    """Validate the Bearer token and return the caller identity. HTTP 401 otherwise."""
    try:
        payload = decode_token(token, expected_type=CALLER_TOKEN_TYPE)
    except InvalidCredentialsError:
        raise _CREDENTIALS_EXCEPTION from None

    user_id = payload.get("sub")
    if not user_id:
        raise _CREDENTIALS_EXCEPTION
    return CallerIdentity(
        user_id=str(user_id), email=payload.get("email"), wallet=payload.get("wallet")
    )


async def require_platform_admin(
    caller: CallerIdentity = Depends(get_current_user),
) -> CallerIdentity:
    """Allow only PLATFORM_ADMIN_USER_IDS (fee verification, alerts)."""
    if caller.user_id not in settings.PLATFORM_ADMIN_USER_IDS:
        raise AdminRequiredError()
    return caller
