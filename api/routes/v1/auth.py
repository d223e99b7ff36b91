"""
api/routes/v1/auth.py -- Registration, login and password recovery endpoints.

Routes:
  POST /api/v1/auth/register  -- create an account (if self registration is on)
  POST /api/v1/auth/login     -- password login; optional remember-me cookie
  POST /api/v1/auth/logout    -- drop session and remember-me cookie
  GET  /api/v1/auth/me        -- current user info (requires auth)
  POST /api/v1/auth/recover   -- mail a password reset token; always 202
  POST /api/v1/auth/reset     -- set a new password with a reset token

Security:
  POST /login is rate-limited per IP (Settings.login_rate_limit).
  Users.check_login() provides timing equalization.
  Cache-Control: no-store on login responses.
  POST /recover answers 202 whether or not the account exists, so it cannot
  be used to enumerate accounts.

Cookies queued by Authentication are written to the injected Response, so
handlers return models (not Response objects) and FastAPI merges the headers.
"""

from __future__ import annotations

import logging
import smtplib

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.limiter import limiter
from api.models import LoginRequest, MessageResponse, RecoverRequest, RegisterRequest, ResetRequest, UserResponse
from auth.authentication import Authentication
from auth.dependencies import get_authentication, get_current_user
from core.config import get_settings
from core.errors import ErrorCode
from core.mailer import send_mail

logger = logging.getLogger("splkit.api.auth")

# Auth policy:
# - POST /api/v1/auth/register: public (disabled by SELF_REGISTRATION_ENABLED=false)
# - POST /api/v1/auth/login:    public
# - POST /api/v1/auth/logout:   public -- clearing a session needs no prior auth
# - GET  /api/v1/auth/me:       requires auth (get_current_user)
# - POST /api/v1/auth/recover:  public
# - POST /api/v1/auth/reset:    public, gated by the one-time token
router = APIRouter()

_SERVER_SIDE = {
    ErrorCode.REGISTER_QUERY_FAILED,
    ErrorCode.LOGIN_QUERY_FAILED,
    ErrorCode.USER_INFO_QUERY_FAILED,
    ErrorCode.INTERNAL_ERROR,
    ErrorCode.REMEMBER_INSERT_FAILED,
}


def fail(
    status_code: int,
    code: str,
    message: str,
    errors: list[int] | None = None,
    detail: str | None = None,
    **kwargs,
) -> HTTPException:
    """Build an HTTPException carrying the structured error envelope."""
    body = {"code": code, "message": message, "errors": list(errors or [])}
    if detail is not None:
        body["detail"] = detail
    return HTTPException(status_code=status_code, detail=body, **kwargs)


def _status_for(errors: list[int], default: int) -> int:
    return 500 if any(e in _SERVER_SIDE for e in errors) else default


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=UserResponse, status_code=201)
def register(
    body: RegisterRequest,
    response: Response,
    auth: Authentication = Depends(get_authentication),
) -> UserResponse:
    """Create an account. Error codes 20-29 describe which field was rejected."""
    if not get_settings().self_registration_enabled:
        raise fail(403, "registration_disabled", "Self registration is disabled.")

    users = auth.users
    ok = users.do_register({"username": body.username, "passwd": body.password, "email": body.email})
    if not ok:
        errors = users.get_errors()
        conflict = ErrorCode.USERNAME_EXISTS in errors or ErrorCode.EMAIL_EXISTS in errors
        raise fail(_status_for(errors, 409 if conflict else 400), "registration_failed", "Registration failed.", errors)

    created = users.lookup_user(auth.db.insert_id() or 0)
    if created is None:
        raise fail(500, "internal_error", "User not found after write.", users.get_errors())
    auth.write_cookies(response)
    return UserResponse(**created)


# ---------------------------------------------------------------------------
# Login / logout
# ---------------------------------------------------------------------------


@limiter.limit(lambda: get_settings().login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=UserResponse)
def login(
    request: Request,
    body: LoginRequest,
    response: Response,
    auth: Authentication = Depends(get_authentication),
) -> UserResponse:
    """Authenticate with username and password.

    Wrong username and wrong password give the same 401 so the response
    does not reveal which usernames exist.
    """
    no_store = {"Cache-Control": "no-store"}
    if not auth.do_login({"username": body.username, "passwd": body.password}, remember=body.remember):
        errors = auth.get_errors()
        if ErrorCode.USER_INACTIVE in errors:
            raise fail(403, "user_inactive", ErrorCode.USER_INACTIVE.message, errors, headers=no_store)
        status = _status_for(errors, 401)
        raise fail(status, "bad_credentials", "Invalid username or password.", errors, headers=no_store)

    auth.write_cookies(response)
    response.headers.update(no_store)
    return UserResponse(**auth.users.userinfo)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(response: Response, auth: Authentication = Depends(get_authentication)) -> MessageResponse:
    """End the session and forget the remember-me cookie."""
    auth.do_logout()
    auth.write_cookies(response)
    return MessageResponse(message="Logged out.")


@router.get("/auth/me", response_model=UserResponse)
def me(auth: Authentication = Depends(get_current_user)) -> UserResponse:
    """Return the account of the currently authenticated user."""
    return UserResponse(**auth.users.userinfo)


# ---------------------------------------------------------------------------
# Password recovery
# ---------------------------------------------------------------------------


@router.post("/auth/recover", response_model=MessageResponse, status_code=202)
def recover(body: RecoverRequest, auth: Authentication = Depends(get_authentication)) -> MessageResponse:
    """Mail a one-time reset token to the account owner.

    Always 202. Unknown accounts and mail failures are only logged.
    """
    result = auth.users.recover_password({"email": body.email, "username": body.username})
    if result is not None:
        info, token = result
        text = (
            f"Hello {info['username']},\n\n"
            "A password reset was requested for your account. Use this token to\n"
            f"choose a new password within {get_settings().recovery_expire_seconds // 60} minutes:\n\n"
            f"{token}\n\n"
            "If you did not ask for this, ignore this message.\n"
        )
        try:
            send_mail(info["email"], "Password recovery", text)
        except (smtplib.SMTPException, OSError):
            logger.exception("Could not send recovery mail for user %s", info["user_id"])
    return MessageResponse(message="If the account exists, a recovery mail has been sent.")


@router.post("/auth/reset", response_model=MessageResponse)
def reset(body: ResetRequest, auth: Authentication = Depends(get_authentication)) -> MessageResponse:
    """Set a new password using the token from /auth/recover."""
    users = auth.users
    if not users.reset_password({"token": body.token, "passwd": body.password}):
        errors = users.get_errors()
        raise fail(_status_for(errors, 400), "reset_failed", "The password could not be reset.", errors)
    return MessageResponse(message="Password changed.")
