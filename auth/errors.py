"""
auth/errors.py -- Exception hierarchy for identity and session failures.

Every class carries an HTTP status_code and a stable error_code. The api/
layer registers one exception handler for AuthError and renders the shared
error envelope, so auth/ never needs to know about HTTP responses.

Anti-enumeration [C1]: InvalidCredential is deliberately the same error for
"unknown email" and "wrong password". ChallengeNotFound is the same error for
"no such account", "already verified" and "no live code".
"""

from __future__ import annotations

from typing import Any


class AuthError(Exception):
    """Base class for per-request auth failures. Never fatal to the process."""

    status_code: int = 400
    error_code: str = "bad_request"
    default_message: str = "Request could not be processed."

    def __init__(self, message: str | None = None, **extra: Any) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)
        # Additional machine-readable fields merged into the error envelope.
        self.extra = extra


class ValidationError(AuthError):
    status_code = 422
    error_code = "validation_error"
    default_message = "Request validation failed."


class DuplicateIdentity(AuthError):
    status_code = 409
    error_code = "duplicate_identity"
    default_message = "A user with this email or username already exists."


class NotFound(AuthError):
    status_code = 404
    error_code = "not_found"
    default_message = "User not found."


class InvalidCredential(AuthError):
    status_code = 401
    error_code = "invalid_credentials"
    default_message = "Incorrect email or password."


class Unverified(AuthError):
    status_code = 403
    error_code = "verification_required"
    default_message = "Please verify your account with the code we emailed you."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message, requires_verification=True)


class ChallengeNotFound(AuthError):
    status_code = 404
    error_code = "otp_not_found"
    default_message = "No pending verification for this email. Please request a new code."


class ExpiredChallenge(AuthError):
    status_code = 410
    error_code = "otp_expired"
    default_message = "The verification code has expired. Please request a new one."


class MismatchChallenge(AuthError):
    status_code = 400
    error_code = "otp_mismatch"
    default_message = "Invalid verification code."


class AuthenticationRequired(AuthError):
    status_code = 401
    error_code = "unauthorized"
    default_message = "Authentication required."


class TokenMalformed(AuthenticationRequired):
    default_message = "Session token is malformed."


class TokenSignatureInvalid(AuthenticationRequired):
    default_message = "Session token signature is invalid."


class TokenExpired(AuthenticationRequired):
    error_code = "token_expired"
    default_message = "Session has expired. Please log in again."


class Forbidden(AuthError):
    status_code = 403
    error_code = "forbidden"
    default_message = "You do not have permission to perform this action."


class PayloadTooLarge(AuthError):
    status_code = 413
    error_code = "payload_too_large"
    default_message = "Request body is too large."


class RateLimited(AuthError):
    status_code = 429
    error_code = "rate_limited"
    default_message = "Too many requests, please try again later."

    def __init__(self, message: str | None = None, retry_after: int = 60) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class InternalError(AuthError):
    status_code = 500
    error_code = "internal_error"
    default_message = "An unexpected error occurred."
