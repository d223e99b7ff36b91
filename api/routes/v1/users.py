"""
api/routes/v1/users.py -- User administration endpoints (admin only).

Routes:
  GET    /api/v1/users             -- list users (filters: active, role, limit, offset)
  POST   /api/v1/users             -- create a user
  PATCH  /api/v1/users/{user_id}   -- update email, password, role or active; a new
                                      password or active=false ends the user's logins
  DELETE /api/v1/users/{user_id}   -- delete a user and end its sessions and remember-me logins

Admins cannot deactivate or delete their own account, so an installation
cannot be locked out through the API.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from api.models import UserCreate, UserPatch, UserResponse
from api.routes.v1.auth import fail
from auth.authentication import Authentication
from auth.dependencies import require_admin
from auth.models import User

router = APIRouter()


def _load(auth: Authentication, user_id: int) -> dict:
    info = auth.users.lookup_user(user_id)
    if info is None:
        raise fail(404, "not_found", "User not found.", auth.users.get_errors())
    return info


@router.get("/users", response_model=list[UserResponse])
def list_users(
    active: Optional[bool] = None,
    role: Optional[str] = None,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    auth: Authentication = Depends(require_admin),
) -> list[UserResponse]:
    users = auth.users
    users.set_user_prototype(User())
    result = users.get_user_list({"active": active, "role": role, "limit": limit, "offset": offset})
    if result is None:
        raise fail(500, "user_list_failed", "The user list could not be retrieved.", users.get_errors())
    return [UserResponse(**u.info) for u in result]


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(body: UserCreate, auth: Authentication = Depends(require_admin)) -> UserResponse:
    users = auth.users
    ok = users.user_add(
        {
            "username": body.username,
            "passwd": body.password,
            "email": body.email,
            "role": body.role,
            "active": int(body.active),
        }
    )
    if not ok:
        # Unique constraint violations land here too.
        raise fail(409, "conflict", "The user could not be added.", users.get_errors())
    return UserResponse(**_load(auth, auth.db.insert_id() or 0))


@router.patch("/users/{user_id}", response_model=UserResponse)
def update_user(user_id: int, body: UserPatch, auth: Authentication = Depends(require_admin)) -> UserResponse:
    current_id = auth.users.get("user_id")
    _load(auth, user_id)

    if body.active is False and user_id == current_id:
        raise fail(400, "self_deactivation", "You cannot deactivate your own account.")

    params: dict = {"user_id": user_id}
    if body.email is not None:
        params["email"] = body.email
    if body.password is not None:
        params["passwd"] = body.password
    if body.role is not None:
        params["role"] = body.role
    if body.active is not None:
        params["active"] = int(body.active)
    if len(params) == 1:
        raise fail(400, "no_changes", "No fields to update.")

    if not auth.users.user_update(params):
        raise fail(409, "conflict", "The user could not be updated.", auth.users.get_errors())
    return UserResponse(**_load(auth, user_id))


@router.delete("/users/{user_id}", status_code=204)
def delete_user(user_id: int, auth: Authentication = Depends(require_admin)) -> Response:
    if user_id == auth.users.get("user_id"):
        raise fail(400, "self_deletion", "You cannot delete your own account.")
    _load(auth, user_id)
    if not auth.users.user_delete({"user_id": user_id}):
        raise fail(500, "user_delete_failed", "The user could not be deleted.", auth.users.get_errors())
    return Response(status_code=204)
