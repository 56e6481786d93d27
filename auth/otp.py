"""
auth/otp.py -- One-time passcode challenges for email verification.

OtpChallengeManager owns a map of email -> OtpChallenge. The map is private;
callers only get issue(), verify(), sweep() and discard(), each of which runs
entirely under one lock:

  - issue() overwrites any previous challenge for the email, so an older code
    stops matching the moment a new one is issued.
  - verify() checks and removes in one critical section, so two concurrent
    submissions of the right code cannot both see VerifyOutcome.valid.
  - sweep() removes expired challenges left behind by abandoned
    registrations. The API lifespan calls it on a fixed interval.

Expiry is passive: nothing cancels a challenge at its deadline, verify() and
sweep() compare against the clock.

Codes come from the secrets module and are uniform over the fixed-width range
(100000-999999 for six digits). Comparison uses hmac.compare_digest.
"""

from __future__ import annotations

import hmac
import logging
import secrets
import threading
import time
from collections.abc import Callable

from auth.models import OtpChallenge, VerifyOutcome

logger = logging.getLogger("secureblog.otp")


class OtpChallengeManager:
    """Thread-safe, expiry-checked store of live OTP challenges.

    Args:
        ttl_seconds: Validity window of each challenge.
        digits:      Code width. The first digit is never zero, so every code
                     has exactly this many characters.
        clock:       Returns epoch seconds. Tests inject a fake clock.
    """

    def __init__(self, ttl_seconds: int = 600, digits: int = 6, clock: Callable[[], float] = time.time) -> None:
        if digits < 4:
            raise ValueError("OTP codes need at least 4 digits")
        self.ttl_seconds = ttl_seconds
        self.digits = digits
        self._clock = clock
        self._lock = threading.Lock()
        self._challenges: dict[str, OtpChallenge] = {}

    def _generate_code(self) -> str:
        low = 10 ** (self.digits - 1)
        return str(low + secrets.randbelow(9 * low))

    def issue(self, email: str) -> str:
        """Create a fresh challenge for email, replacing any previous one. Returns the code."""
        code = self._generate_code()
        with self._lock:
            now = self._clock()
            superseded = email in self._challenges
            self._challenges[email] = OtpChallenge(
                email=email,
                code=code,
                issued_at=now,
                expires_at=now + self.ttl_seconds,
            )
        if superseded:
            logger.info("OTP re-issued for %s (previous code invalidated)", email)
        else:
            logger.info("OTP issued for %s", email)
        return code

    def verify(self, email: str, submitted_code: str) -> VerifyOutcome:
        """Check submitted_code against the live challenge for email.

        valid     -- code matches and is unexpired; the challenge is consumed.
        not_found -- no live challenge (never issued, consumed, swept or superseded).
        expired   -- TTL elapsed; the challenge is removed.
        mismatch  -- wrong code; the challenge is kept so the user can retry.
        """
        with self._lock:
            challenge = self._challenges.get(email)
            if challenge is None:
                return VerifyOutcome.not_found
            if challenge.is_expired(self._clock()):
                del self._challenges[email]
                return VerifyOutcome.expired
            if not hmac.compare_digest(challenge.code.encode(), submitted_code.encode()):
                return VerifyOutcome.mismatch
            del self._challenges[email]
            return VerifyOutcome.valid

    def sweep(self) -> int:
        """Delete every expired challenge. Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired = [email for email, c in self._challenges.items() if c.is_expired(now)]
            for email in expired:
                del self._challenges[email]
        if expired:
            logger.info("Swept %d expired OTP challenge(s)", len(expired))
        return len(expired)

    def discard(self, email: str) -> bool:
        """Drop the live challenge for email, if any. Returns True if one existed."""
        with self._lock:
            return self._challenges.pop(email, None) is not None

    def has_pending(self, email: str) -> bool:
        """True if email has an unexpired challenge."""
        with self._lock:
            challenge = self._challenges.get(email)
            return challenge is not None and not challenge.is_expired(self._clock())

    def __len__(self) -> int:
        with self._lock:
            return len(self._challenges)
