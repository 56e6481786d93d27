"""
auth/tokens.py -- Signed session tokens and the auth cookie.

Security design decisions:
  JWT: python-jose with HS256. A token carries sub (user id), role, iat, exp
       and a random jti, so two tokens minted for the same user in the same
       second still differ. Possessing a valid token *is* the session: there
       is no server-side session table and no revocation list.

  Verification is a pure function of (token, SECRET_KEY, now) and raises one
       of three distinct errors:
         TokenMalformed        -- not a JWT, or required claims missing/invalid
         TokenSignatureInvalid -- tampered, wrong key, or wrong algorithm
         TokenExpired          -- now >= exp
       The expiry comparison is done here rather than by python-jose so the
       boundary is exact (jose accepts a token during its final second) and
       so tests can pass an explicit clock.

  SECRET_KEY: sourced from core.config.get_settings(); validated at startup
       (>= 32 chars, required outside DEBUG) [M6][M7].

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
import time

from jose import jwt
from jose.exceptions import JOSEError, JWTClaimsError

from auth.errors import TokenExpired, TokenMalformed, TokenSignatureInvalid
from auth.models import Role, TokenClaims
from core.config import get_settings

logger = logging.getLogger("secureblog.tokens")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton [M6]
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

AUTH_COOKIE = "access_token"


# ---------------------------------------------------------------------------
# Mint / verify
# ---------------------------------------------------------------------------


def mint_token(
    user_id: int,
    role: Role,
    ttl_seconds: int = 0,
    *,
    now: float | None = None,
    secret_key: str | None = None,
) -> str:
    """Encode a signed session token.

    Args:
        user_id:     Identity the token speaks for (stored as the sub claim).
        role:        Role at mint time. Not refreshed if the role changes later.
        ttl_seconds: Lifetime. 0 (default) means Settings.token_expire_seconds.
        now:         Epoch seconds to treat as issue time (tests).
        secret_key:  Signing key override (tests); defaults to SECRET_KEY.
    """
    duration = ttl_seconds if ttl_seconds > 0 else _settings.token_expire_seconds
    issued_at = int(time.time() if now is None else now)
    payload = {
        "sub": str(user_id),
        "role": Role(role).value,
        "iat": issued_at,
        "exp": issued_at + duration,
        "jti": secrets.token_hex(16),
    }
    return jwt.encode(payload, secret_key or _settings.secret_key, algorithm=_ALGORITHM)


def verify_token(token: str, *, now: float | None = None, secret_key: str | None = None) -> TokenClaims:
    """Verify a session token and return its claims.

    Side-effect free and lock free -- safe to call from any thread.
    """
    if not token:
        raise TokenMalformed()

    # Structural pass first, so garbage is reported as malformed rather than
    # as a signature failure.
    try:
        jwt.get_unverified_header(token)
        jwt.get_unverified_claims(token)
    except JOSEError as exc:
        raise TokenMalformed() from exc

    try:
        payload = jwt.decode(
            token,
            secret_key or _settings.secret_key,
            algorithms=[_ALGORITHM],
            options={"verify_exp": False},
        )
    except JWTClaimsError as exc:
        raise TokenMalformed() from exc
    except JOSEError as exc:
        raise TokenSignatureInvalid() from exc

    try:
        claims = TokenClaims(
            user_id=int(payload["sub"]),
            role=Role(payload["role"]),
            issued_at=int(payload["iat"]),
            expires_at=int(payload["exp"]),
            token_id=str(payload.get("jti", "")),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise TokenMalformed() from exc

    current = time.time() if now is None else now
    if current >= claims.expires_at:
        raise TokenExpired()
    return claims


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite: "lax" by default; "none" for cross-site deployments where the UI
        lives on another origin (config enforces secure=True in that case).
    max_age: matches the token expiry so both expire together.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    response.set_cookie(
        AUTH_COOKIE,
        value=token,
        httponly=True,
        samesite=_settings.cookie_samesite,
        secure=_settings.secure_cookies,
        max_age=duration,
    )


def clear_auth_cookie(response) -> None:
    """Delete the auth cookie. The token itself stays valid until its exp."""
    response.delete_cookie(
        AUTH_COOKIE,
        httponly=True,
        samesite=_settings.cookie_samesite,
        secure=_settings.secure_cookies,
    )
