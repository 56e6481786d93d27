"""
auth/dependencies.py -- FastAPI Depends() helpers for access control.

Token sources, tried in priority order:
  1. "access_token" cookie -- set by the browser login / OTP verification flow.
  2. Authorization: Bearer <token> header -- API clients.
The first token that verifies wins. A stale or forged cookie does not hide a
valid Bearer header; when no candidate verifies, the error for the first one
is raised.

Authentication is stateless: the verified token claims ARE the principal and
no store lookup happens per request. The claims are attached to
request.state.principal for downstream code.

try_get_principal() is the soft variant (returns None on failure).
get_principal() raises 401 (AuthenticationRequired / TokenExpired).
require_roles(*roles) builds a dependency that additionally raises 403
(Forbidden) when the principal's role is not in the allowed set. 401 and 403
stay distinct so clients know whether to log in again or give up.

Layer rule: may import from fastapi because this module is part of the
FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from auth.errors import AuthenticationRequired, AuthError, Forbidden
from auth.models import Role, TokenClaims
from auth.tokens import AUTH_COOKIE, verify_token


def _candidate_tokens(request: Request) -> list[str]:
    tokens = []
    cookie = request.cookies.get(AUTH_COOKIE)
    if cookie:
        tokens.append(cookie)
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        bearer = auth_header[7:].strip()
        if bearer:
            tokens.append(bearer)
    return tokens


def get_principal(request: Request) -> TokenClaims:
    """Require a valid session token. Raises 401 if missing, malformed, forged or expired.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(principal: TokenClaims = Depends(get_principal)): ...
    """
    candidates = _candidate_tokens(request)
    if not candidates:
        raise AuthenticationRequired()
    first_error: AuthenticationRequired | None = None
    for token in candidates:
        try:
            claims = verify_token(token)
        except AuthenticationRequired as exc:
            first_error = first_error or exc
            continue
        request.state.principal = claims
        return claims
    raise first_error


def try_get_principal(request: Request) -> TokenClaims | None:
    """Soft variant of get_principal(). Never raises."""
    try:
        return get_principal(request)
    except AuthError:
        return None


def require_roles(*roles: Role) -> Callable[[Request], TokenClaims]:
    """Build a dependency that admits only principals holding one of roles.

    Use as a FastAPI dependency:
        @router.post("/drafts")
        def route(principal: TokenClaims = Depends(require_roles(Role.author, Role.admin))): ...
    """
    if not roles:
        raise ValueError("require_roles() needs at least one role")
    allowed = frozenset(Role(r) for r in roles)

    def dependency(request: Request) -> TokenClaims:
        principal = get_principal(request)
        if principal.role not in allowed:
            raise Forbidden()
        return principal

    return dependency


require_admin = require_roles(Role.admin)
