"""
api/routes/v1/auth.py -- Registration, verification and session endpoints.

Routes:
  POST /api/v1/auth/register    -- create unverified account; OTP emailed
  POST /api/v1/auth/verify-otp  -- consume OTP; returns token + sets cookie
  POST /api/v1/auth/resend-otp  -- replace the OTP of an unverified account
  POST /api/v1/auth/login       -- email/password login; returns token + sets cookie
  POST /api/v1/auth/logout      -- clears the cookie
  GET  /api/v1/auth/me          -- current identity (requires auth)

Security:
  verify-otp and resend-otp are in the "otp" rate-limit class (5 per 15
      minutes per client); everything else here is in the general class.
      Both limits are enforced in middleware, see api/limiter.py.
  [C1] authenticate_user() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on every response that carries a token.
  OTP delivery runs as a background task after the response is sent; a mail
      outage never fails registration or resend.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse

from api.models import (
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    RegisterResponse,
    ResendOtpRequest,
    SessionResponse,
    UserSummary,
    VerifyOtpRequest,
)
from auth.dependencies import get_principal, try_get_principal
from auth.errors import AuthenticationRequired
from auth.models import Role, TokenClaims, User
from auth.notify import deliver_otp
from auth.otp import OtpChallengeManager
from auth.service import authenticate_user, register_identity, resend_challenge, verify_challenge
from auth.store import UserStore
from auth.tokens import clear_auth_cookie, mint_token, set_auth_cookie
from core.config import get_settings

logger = logging.getLogger("secureblog.api.auth")

_settings = get_settings()

# Auth policy:
# - POST /api/v1/auth/register:    public
# - POST /api/v1/auth/verify-otp:  public, otp rate class
# - POST /api/v1/auth/resend-otp:  public, otp rate class
# - POST /api/v1/auth/login:       public
# - POST /api/v1/auth/logout:      public -- clearing a cookie needs no prior auth
# - GET  /api/v1/auth/me:          requires auth (get_principal)
router = APIRouter()


def _session_response(user: User, message: str) -> JSONResponse:
    """Mint a fresh token for user and return it in the body and as a cookie."""
    token = mint_token(user.id, user.role)
    resp = JSONResponse(
        status_code=200,
        content=SessionResponse(
            message=message,
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=_settings.token_expire_seconds,
            user=UserSummary.from_user(user),
        ).model_dump(mode="json"),
    )
    set_auth_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=RegisterResponse, status_code=201)
def register(request: Request, body: RegisterRequest, background_tasks: BackgroundTasks) -> RegisterResponse:
    """Create an unverified account and email its first OTP.

    The role is limited to reader/author by the request model. Duplicate
    username or email -> 409 before anything is written or sent.
    """
    user_store: UserStore = request.app.state.user_store
    otp: OtpChallengeManager = request.app.state.otp
    user, code = register_identity(user_store, otp, body.username, body.email, body.password, Role(body.role.value))
    background_tasks.add_task(deliver_otp, request.app.state.notifier, user.email, code)
    return RegisterResponse(
        message="User registered successfully. Please check your email for the verification code.",
        email=user.email,
    )


@router.post("/auth/verify-otp", response_model=SessionResponse)
def verify_otp(request: Request, body: VerifyOtpRequest) -> JSONResponse:
    """Consume the OTP, mark the account verified and start a session.

    Rejections are distinguishable: 404 otp_not_found, 410 otp_expired,
    400 otp_mismatch (the code stays live, the user may retry).
    """
    user_store: UserStore = request.app.state.user_store
    otp: OtpChallengeManager = request.app.state.otp
    user = verify_challenge(user_store, otp, body.email, body.otp)
    return _session_response(user, "Account verified successfully.")


@router.post("/auth/resend-otp", response_model=MessageResponse)
def resend_otp(request: Request, body: ResendOtpRequest, background_tasks: BackgroundTasks) -> MessageResponse:
    """Issue a replacement OTP. The previous code stops working immediately."""
    user_store: UserStore = request.app.state.user_store
    otp: OtpChallengeManager = request.app.state.otp
    code = resend_challenge(user_store, otp, body.email)
    background_tasks.add_task(deliver_otp, request.app.state.notifier, body.email, code)
    return MessageResponse(message="A new verification code has been sent.")


@router.post("/auth/login", response_model=SessionResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Wrong password and unknown email both return 401 invalid_credentials.
    A correct password on an unverified account returns 403
    verification_required with requires_verification=true.
    """
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.email, body.password)
    return _session_response(user, "Logged in successfully.")


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Clear the session cookie.

    Tokens are stateless: a copy of the token held elsewhere stays valid
    until it expires. Nothing is written server side.
    """
    principal = try_get_principal(request)
    if principal is not None:
        logger.info("User logged out: user_id=%s", principal.user_id)
    resp = JSONResponse(content=MessageResponse(message="Logged out successfully.").model_dump())
    clear_auth_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserSummary)
def me(request: Request, principal: TokenClaims = Depends(get_principal)) -> UserSummary:
    """Return the identity behind the current session."""
    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_id(principal.user_id)
    if user is None:
        # Token outlived its account.
        raise AuthenticationRequired()
    return UserSummary.from_user(user)
