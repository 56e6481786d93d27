"""
auth/service.py -- Registration, OTP verification, resend and login flows.

Each function takes its collaborators explicitly (store, OTP manager) and
either returns a result or raises an AuthError subclass. Token minting,
cookies and notification dispatch stay in the route layer.

Anti-enumeration policy [C1]:
  - authenticate_user() raises the same InvalidCredential for an unknown email
    and a wrong password, and runs bcrypt in both cases.
  - The OTP flows never say "user not found": an unknown email, an already
    verified account and an account without a live code all produce
    ChallengeNotFound.
  - Registration has to reveal duplicates (DuplicateIdentity); that is the
    only place account existence leaks.
"""

from __future__ import annotations

import logging

from auth.errors import ChallengeNotFound, ExpiredChallenge, Forbidden, InvalidCredential, MismatchChallenge, Unverified
from auth.models import SELF_SERVICE_ROLES, Role, User, VerifyOutcome
from auth.otp import OtpChallengeManager
from auth.passwords import DUMMY_HASH, verify_password
from auth.store import UserStore, normalize_email

logger = logging.getLogger("secureblog.auth")


def register_identity(
    store: UserStore,
    otp: OtpChallengeManager,
    username: str,
    email: str,
    password: str,
    role: Role = Role.reader,
) -> tuple[User, str]:
    """Create an unverified identity and issue its first OTP.

    Returns (user, code). The caller hands the code to the notification
    channel. Duplicate identities are rejected before anything is written.
    """
    if role not in SELF_SERVICE_ROLES:
        logger.warning("Blocked self-registration with role=%s for %s", role.value, email)
        raise Forbidden("Admin registration is not allowed.")

    user = store.create_credential(username, email, password, role)
    code = otp.issue(user.email)
    logger.info("User registered: user_id=%s role=%s", user.id, user.role.value)
    return user, code


def verify_challenge(store: UserStore, otp: OtpChallengeManager, email: str, code: str) -> User:
    """Consume the OTP for email and mark the identity verified.

    OtpChallengeManager.verify() hands out VerifyOutcome.valid at most once per
    challenge, so mark_verified() runs exactly once per issued code even under
    concurrent submissions.
    """
    email = normalize_email(email)
    outcome = otp.verify(email, code)
    if outcome is VerifyOutcome.not_found:
        logger.warning("OTP verification failed: no live challenge for %s", email)
        raise ChallengeNotFound()
    if outcome is VerifyOutcome.expired:
        logger.warning("OTP verification failed: expired code for %s", email)
        raise ExpiredChallenge()
    if outcome is VerifyOutcome.mismatch:
        logger.warning("OTP verification failed: wrong code for %s", email)
        raise MismatchChallenge()
    assert outcome is VerifyOutcome.valid

    user = store.get_by_email(email)
    if user is None:
        # Account deleted between issue and verify.
        raise ChallengeNotFound()
    store.mark_verified(user.id)
    store.update_last_login(user.id)
    user.is_verified = True
    logger.info("User verified: user_id=%s", user.id)
    return user


def resend_challenge(store: UserStore, otp: OtpChallengeManager, email: str) -> str:
    """Issue a replacement OTP for a registered, not yet verified identity."""
    user = store.get_by_email(email)
    if user is None or user.is_verified:
        logger.warning("OTP resend refused for %s", normalize_email(email))
        raise ChallengeNotFound()
    return otp.issue(user.email)


def authenticate_user(store: UserStore, email: str, password: str) -> User:
    """Authenticate an email/password login with timing equalization.

    Always runs bcrypt whether or not the account exists:
    - Unknown email: bcrypt runs against DUMMY_HASH (same cost as a real check)
    - Wrong password: bcrypt runs against the real hash

    Raises InvalidCredential for both, Unverified for a correct password on an
    account that has not completed OTP verification.
    """
    user = store.get_by_email(email)
    if user is None:
        # Equalize timing -- do NOT return early before running bcrypt [C1]
        verify_password(password, DUMMY_HASH)
        logger.warning("Login failed: incorrect credentials")
        raise InvalidCredential()
    if not store.verify_password(password, user.hashed_password):
        logger.warning("Login failed: incorrect credentials")
        raise InvalidCredential()
    if not user.is_verified:
        logger.warning("Login refused: user_id=%s not verified", user.id)
        raise Unverified()

    store.update_last_login(user.id)
    logger.info("User logged in: user_id=%s role=%s", user.id, user.role.value)
    return user
