"""Shared FastAPI dependencies."""

import hmac

from fastapi import Header, Request

from gomi_credits.core.config import get_settings
from gomi_credits.core.exceptions import ForbiddenError, UnauthorizedError
from gomi_credits.core.logging import bind_user_id
from gomi_credits.core.security import load_session_cookie
from gomi_credits.models.user import User

SESSION_COOKIE_NAME = "gomi_session"


async def get_current_user(request: Request) -> User:
    """Dependency: load session from cookie and return User."""
    cookie = request.cookies.get(SESSION_COOKIE_NAME)
    if not cookie:
        raise UnauthorizedError("Not authenticated")
    payload = load_session_cookie(cookie)
    if not payload:
        raise UnauthorizedError("Invalid or expired session")
    user_id = payload.get("user_id")
    if not user_id:
        raise UnauthorizedError("Invalid session")
    user = await User.get(user_id)
    if not user:
        raise UnauthorizedError("User not found")
    if payload.get("session_version") != user.session_version:
        raise UnauthorizedError("Session invalidated")
    bind_user_id(str(user.id))
    return user


async def require_admin(
    request: Request,
    x_admin_key: str | None = Header(None, alias="X-Admin-Key"),
) -> str:
    """Dependency: operator API key or an admin session. Returns the actor id for the audit log."""
    admin_key = get_settings().admin_api_key
    if admin_key and x_admin_key and hmac.compare_digest(admin_key, x_admin_key):
        return "admin_api_key"
    user = await get_current_user(request)
    if getattr(user, "role", "user") != "admin":
        raise ForbiddenError("Admin only")
    return str(user.id)


def get_client_ip(request: Request) -> str:
    """First hop of X-Forwarded-For (behind the load balancer), else the peer address."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else ""
