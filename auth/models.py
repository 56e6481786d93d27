"""
auth/models.py -- Domain dataclasses and enums for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; the store, the OTP manager and the routes do the work.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Closed set of roles. Access checks compare members, never raw strings."""

    reader = "reader"
    author = "author"
    admin = "admin"


# Roles a visitor may pick for themselves at registration. Admins are only
# ever created by main.py bootstrap-admin or promoted by another admin.
SELF_SERVICE_ROLES: frozenset[Role] = frozenset({Role.reader, Role.author})


class VerifyOutcome(str, Enum):
    """Result of checking a submitted OTP against the live challenge."""

    valid = "valid"
    not_found = "not_found"
    expired = "expired"
    mismatch = "mismatch"


@dataclass
class User:
    """An identity on the platform.

    email is stored stripped and lower-cased so uniqueness is case-insensitive.
    hashed_password is a bcrypt hash; the plaintext never reaches this class.
    is_verified flips to True exactly once, when a matching OTP is consumed.
    """

    username: str
    email: str
    hashed_password: str
    role: Role = Role.reader
    is_verified: bool = False
    id: int | None = None
    created_at: str | None = None
    last_login: str | None = None


@dataclass(frozen=True)
class OtpChallenge:
    """A live one-time passcode for an email address.

    Timestamps are epoch seconds from the manager's clock.
    """

    email: str
    code: str
    issued_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class TokenClaims:
    """The verified content of a session token -- what a request is allowed to be."""

    user_id: int
    role: Role
    issued_at: int
    expires_at: int
    token_id: str = ""
