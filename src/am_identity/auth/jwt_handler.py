"""JWT decoding for caller tokens and signing of access credentials.

Caller tokens are issued by the external auth service (HS256, shared
JWT_SECRET); this service only verifies them. Access credentials are issued
here, one per request, to prove an active entitlement to downstream content
hosts. The "type" claim separates the two so one can never stand in for the
other.
"""

from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from config.settings import settings
from src.am_common.errors import InvalidCredentialsError

_ALGORITHM = settings.JWT_ALGORITHM  # "HS256"
_CREDENTIAL_EXPIRE = timedelta(minutes=settings.ACCESS_CREDENTIAL_EXPIRE_MINUTES)

CALLER_TOKEN_TYPE = "access"
ACCESS_CREDENTIAL_TYPE = "entitlement"


def decode_token(token: str, expected_type: str) -> dict[str, Any]:
    """Decode and validate a JWT.

    Raises:
        InvalidCredentialsError: signature invalid, expired, or wrong "type" claim.
    """
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[_ALGORITHM],  # Explicit list prevents algorithm confusion
        )
    except JWTError:
        raise InvalidCredentialsError() from None

    if payload.get("type") != expected_type:
        raise InvalidCredentialsError()
    return payload


def create_access_credential(
    user_id: str,
    subject_id: str,
    entitlement_id: str,
    not_after: datetime | None = None,
    now: datetime | None = None,
) -> tuple[str, datetime]:
    """Sign a short-lived access credential. Returns (token, expires_at).

    The credential never outlives `not_after` (a subscription expiry).
    """
    issued_at = now or datetime.now(timezone.utc)
    expires_at = issued_at + _CREDENTIAL_EXPIRE
    if not_after is not None and not_after < expires_at:
        expires_at = not_after
    payload = {
        "sub": user_id,
        "subject": subject_id,
        "ent": entitlement_id,
        "type": ACCESS_CREDENTIAL_TYPE,
        "iat": issued_at,
        "exp": expires_at,
    }
    token = str(jwt.encode(payload, settings.JWT_SECRET, algorithm=_ALGORITHM))
    return token, expires_at
