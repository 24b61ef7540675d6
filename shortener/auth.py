"""Identity seam: who is making this request.

Sign-up, sign-in and third-party login live in the identity service. This
service only needs the current user id, carried as a signed JWT in the
``accessToken`` cookie with the user id in the ``sub`` claim.
"""

import datetime

import jwt
from fastapi import HTTPException, Request

from shortener.config import Settings, get_settings
from shortener.exceptions import UnauthenticatedError

__all__ = ["decode_access_token", "get_current_user_id", "issue_access_token"]


def issue_access_token(user_id: str, settings: Settings | None = None) -> str:
    """Mint an access token in the format ``get_current_user_id`` accepts."""
    settings = settings or get_settings()
    now = datetime.datetime.now(datetime.timezone.utc)
    payload = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + datetime.timedelta(seconds=settings.ACCESS_TOKEN_TTL_SECONDS),
    }
    return jwt.encode(payload, settings.JWT_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str, settings: Settings | None = None) -> str:
    """Return the user id carried by ``token``.

    Raises:
        UnauthenticatedError: missing, expired, forged or malformed token.
    """
    settings = settings or get_settings()
    if not token:
        raise UnauthenticatedError("Access token missing")
    try:
        payload = jwt.decode(token, settings.JWT_KEY, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError as exc:
        raise UnauthenticatedError("Access token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise UnauthenticatedError("Access token invalid") from exc

    user_id = payload.get("sub")
    if not user_id:
        raise UnauthenticatedError("Access token has no subject")
    return str(user_id)


async def get_current_user_id(request: Request) -> str:
    """FastAPI dependency resolving the authenticated user id, or 401."""
    settings = get_settings()
    try:
        return decode_access_token(request.cookies.get(settings.ACCESS_TOKEN_COOKIE, ""), settings)
    except UnauthenticatedError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
