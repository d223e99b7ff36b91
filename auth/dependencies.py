"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

get_authentication() builds one Authentication per request from the shared
objects on app.state (Database, UserStore, Vault) and the Starlette session.
Constructing it runs the cookie-trust check, so any cookie it queues (for
example deleting a stale remember-me cookie) is written to the response
FastAPI hands to the route. The same Set-Cookie values are kept on
request.state.set_cookies for error responses, which FastAPI builds from
scratch (see with_pending_cookies).

get_current_user() wraps it and raises HTTP 401 if unauthenticated.
require_admin() wraps get_current_user() and raises HTTP 403 if not admin.

Layer rule: this is the only module in auth/ that imports fastapi.
"""

from __future__ import annotations

from collections.abc import Iterator

from fastapi import Depends, HTTPException, Request, Response

from auth.authentication import Authentication
from auth.models import RequestContext
from auth.users import Users
from core.config import get_settings


def request_context(request: Request) -> RequestContext:
    return RequestContext(
        session=request.session,
        cookies=dict(request.cookies),
        ip_addr=request.client.host if request.client else "",
        user_agent=request.headers.get("user-agent", ""),
        url=str(request.url),
        headers=dict(request.headers),
    )


def get_authentication(request: Request, response: Response) -> Iterator[Authentication]:
    """Yield a per-request Authentication; send debug reports afterwards.

    Use as a FastAPI dependency:
        @router.get("/x")
        def route(response: Response, auth: Authentication = Depends(get_authentication)): ...
    """
    state = request.app.state
    settings = get_settings()
    users = Users(state.db, state.user_store, state.vault, settings)
    auth = Authentication(state.db, users, state.vault, request_context(request), settings, state.user_store)
    auth.write_cookies(response)
    # An HTTPException replaces this response; the handler re-attaches these.
    request.state.set_cookies = response.headers.getlist("set-cookie")
    try:
        yield auth
    finally:
        auth.close()


def with_pending_cookies(request: Request, response: Response) -> Response:
    """Copy the Set-Cookie headers queued by get_authentication onto response."""
    for value in getattr(request.state, "set_cookies", ()):
        response.headers.append("set-cookie", value)
    return response


def get_current_user(auth: Authentication = Depends(get_authentication)) -> Authentication:
    """Require authentication. Raises HTTP 401 if the request is not authenticated."""
    if not auth.is_logged_in():
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return auth


def require_admin(auth: Authentication = Depends(get_current_user)) -> Authentication:
    """Require admin role. Raises HTTP 401 if unauthenticated, HTTP 403 if not admin."""
    if auth.users.get("role") != "admin":
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return auth
