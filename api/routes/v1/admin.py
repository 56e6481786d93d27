"""
api/routes/v1/admin.py -- Identity administration endpoints.

Routes (all admin only):
  GET    /api/v1/admin/users              -- list all identities
  PATCH  /api/v1/admin/users/{id}/role    -- change a user's role
  DELETE /api/v1/admin/users/{id}         -- delete a user
  GET    /api/v1/admin/dashboard          -- identity statistics

Security:
  require_admin gates on the token's role claim (403 for other roles). The
  store then re-reads the actor's role before a write, so an admin demoted
  after their token was minted cannot keep changing roles with it.
  Self-demotion and self-deletion are refused with 403.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from api.models import DashboardResponse, MessageResponse, RolePatch, UserResponse
from auth.dependencies import require_admin
from auth.models import TokenClaims
from auth.otp import OtpChallengeManager
from auth.store import UserStore

logger = logging.getLogger("secureblog.api.admin")

router = APIRouter()


@router.get("/admin/users", response_model=list[UserResponse])
def list_users(request: Request, principal: TokenClaims = Depends(require_admin)) -> list[UserResponse]:
    """List all user accounts. Password hashes are never included."""
    user_store: UserStore = request.app.state.user_store
    return [UserResponse.from_user(u) for u in user_store.list_users()]


@router.patch("/admin/users/{user_id}/role", response_model=UserResponse)
def update_role(
    request: Request,
    user_id: int,
    body: RolePatch,
    principal: TokenClaims = Depends(require_admin),
) -> UserResponse:
    """Change a user's role. Existing tokens keep their old role until they expire."""
    user_store: UserStore = request.app.state.user_store
    updated = user_store.change_role(principal.user_id, user_id, body.role)
    return UserResponse.from_user(updated)


@router.delete("/admin/users/{user_id}", response_model=MessageResponse)
def delete_user(request: Request, user_id: int, principal: TokenClaims = Depends(require_admin)) -> MessageResponse:
    """Delete a user account and any verification code still pending for it."""
    user_store: UserStore = request.app.state.user_store
    otp: OtpChallengeManager = request.app.state.otp
    deleted = user_store.delete_user(principal.user_id, user_id)
    otp.discard(deleted.email)
    return MessageResponse(message="User deleted successfully.")


@router.get("/admin/dashboard", response_model=DashboardResponse)
def dashboard(request: Request, principal: TokenClaims = Depends(require_admin)) -> DashboardResponse:
    """Identity statistics for the admin dashboard."""
    user_store: UserStore = request.app.state.user_store
    return DashboardResponse(**user_store.stats())
