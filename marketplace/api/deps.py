import logging
from typing import Optional

from fastapi import Depends, Request, Response

from marketplace.config import settings
from marketplace.core import security
from marketplace.core.errors import ForbiddenError, UnauthorizedError
from marketplace.core.permissions import UserRole, has_role
from marketplace.db.cache import get_redis
from marketplace.db.mongo import get_database
from marketplace.services import auth_service
from marketplace.services.mail import get_mailer as _get_mailer
from marketplace.services.media import get_media as _get_media

logger = logging.getLogger(__name__)

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"


def get_db():
    return get_database()


def get_cache():
    return get_redis()


def get_mailer():
    return _get_mailer()


def get_media():
    return _get_media()


def access_token_from(request: Request) -> Optional[str]:
    auth = request.headers.get("authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip() or None
    return request.headers.get("access-token") or request.cookies.get(ACCESS_COOKIE)


def refresh_token_from(request: Request) -> Optional[str]:
    return request.headers.get("refresh-token") or request.cookies.get(REFRESH_COOKIE)


def set_auth_cookies(response: Response, access_token: str, refresh_token: Optional[str] = None) -> None:
    response.set_cookie(
        ACCESS_COOKIE, access_token, httponly=True, samesite="lax",
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )
    if refresh_token:
        response.set_cookie(
            REFRESH_COOKIE, refresh_token, httponly=True, samesite="lax",
            max_age=settings.SESSION_EXPIRE_SECONDS,
        )


async def get_current_user(request: Request, response: Response, cache=Depends(get_cache)) -> dict:
    """Resolve the session for the request, refreshing an expired access token."""
    token = access_token_from(request)
    if not token:
        raise UnauthorizedError("Please login to access this resource")

    try:
        payload = security.decode_access_token(token)
    except security.ExpiredSignatureError:
        session = await auth_service.refresh_session(cache, refresh_token_from(request))
        access_token = security.create_access_token(session["_id"])
        set_auth_cookies(response, access_token)
        response.headers["access-token"] = access_token
        logger.info(f"Access token refreshed for user {session['_id']}")
        return session
    except security.JWTError:
        raise UnauthorizedError("Access token is not valid")

    user_id = payload.get("sub")
    session = await auth_service.load_session(cache, user_id) if user_id else None
    if not session:
        raise UnauthorizedError("Session expired, please login again")
    return session


def authorize_roles(*roles: UserRole):
    def checker(user: dict = Depends(get_current_user)) -> dict:
        if not has_role(user.get("role"), roles):
            raise ForbiddenError(f"Role: {user.get('role')} is not allowed to access this resource")
        return user

    return checker


get_admin_user = authorize_roles(UserRole.ADMIN)
get_seller_user = authorize_roles(UserRole.SELLER)
