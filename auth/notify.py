"""
auth/notify.py -- Outbound delivery of OTP codes.

The core only depends on the contract send(email, code) -> bool. Two channels:

  MailjetNotifier -- Mailjet v3.1 send API over a pooled requests.Session.
  LogNotifier     -- writes the code to the application log. Used when Mailjet
                     is not configured (local development) and as the Mailjet
                     fallback when DEBUG is on.

deliver_otp() is what routes schedule as a background task. It never raises:
a failed delivery is logged and the registration/resend flow carries on, the
user can always ask for another code.
"""

from __future__ import annotations

import logging
from typing import Protocol

import requests

from core.config import Settings

logger = logging.getLogger("secureblog.notify")

MAILJET_SEND_URL = "https://api.mailjet.com/v3.1/send"

_SUBJECT = "Your verification code - Secure Blog"


class NotificationChannel(Protocol):
    def send(self, email: str, code: str) -> bool: ...


def _render_text(code: str, ttl_minutes: int) -> str:
    return (
        "Thank you for registering with Secure Blog.\n\n"
        f"Your one-time verification code is: {code}\n\n"
        f"It expires in {ttl_minutes} minutes. Do not share this code with anyone.\n"
        "If you didn't request this, you can ignore this email."
    )


def _render_html(code: str, ttl_minutes: int) -> str:
    return (
        "<h2>Secure Blog account verification</h2>"
        "<p>Please use the following one-time code to verify your account:</p>"
        f'<p style="font-size:32px;font-weight:bold;letter-spacing:8px">{code}</p>'
        f"<p><strong>Important:</strong> this code expires in {ttl_minutes} minutes. "
        "Do not share it with anyone.</p>"
        "<p>If you didn't request this verification, please ignore this email.</p>"
    )


class MailjetNotifier:
    """Sends OTP emails through Mailjet's v3.1 REST API."""

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        sender_email: str,
        sender_name: str,
        ttl_minutes: int = 10,
        session: requests.Session | None = None,
        fallback: NotificationChannel | None = None,
    ) -> None:
        self._auth = (api_key, secret_key)
        self.sender_email = sender_email
        self.sender_name = sender_name
        self.ttl_minutes = ttl_minutes
        self.fallback = fallback
        self._session = session or requests.Session()
        self._session.max_redirects = 3

    def _message(self, email: str, code: str) -> dict:
        return {
            "Messages": [
                {
                    "From": {"Email": self.sender_email, "Name": self.sender_name},
                    "To": [{"Email": email, "Name": email.split("@")[0]}],
                    "Subject": _SUBJECT,
                    "TextPart": _render_text(code, self.ttl_minutes),
                    "HTMLPart": _render_html(code, self.ttl_minutes),
                }
            ]
        }

    def send(self, email: str, code: str) -> bool:
        try:
            resp = self._session.post(MAILJET_SEND_URL, json=self._message(email, code), auth=self._auth, timeout=10)
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.warning("Mailjet delivery to %s failed: %s", email, e)
            if self.fallback is not None:
                return self.fallback.send(email, code)
            return False
        logger.info("OTP email sent to %s", email)
        return True


class LogNotifier:
    """Development channel: the code goes to the log instead of an inbox."""

    def __init__(self, ttl_minutes: int = 10) -> None:
        self.ttl_minutes = ttl_minutes

    def send(self, email: str, code: str) -> bool:
        logger.warning(
            "Email delivery not configured. OTP for %s: %s (expires in %d minutes)",
            email,
            code,
            self.ttl_minutes,
        )
        return True


def build_notifier(settings: Settings) -> NotificationChannel:
    """Pick the delivery channel from configuration."""
    ttl_minutes = max(1, settings.otp_ttl_seconds // 60)
    if not settings.mailjet_enabled:
        logger.warning("Mailjet API keys not configured -- OTP codes will be written to the log")
        return LogNotifier(ttl_minutes)
    return MailjetNotifier(
        api_key=settings.mailjet_api_key,
        secret_key=settings.mailjet_secret_key,
        sender_email=settings.mailjet_sender_email,
        sender_name=settings.mailjet_sender_name,
        ttl_minutes=ttl_minutes,
        # Never print codes to the log in production, even if Mailjet is down.
        fallback=LogNotifier(ttl_minutes) if settings.debug else None,
    )


def deliver_otp(channel: NotificationChannel, email: str, code: str) -> bool:
    """Fire-and-forget delivery. Returns the channel's result, never raises."""
    try:
        delivered = channel.send(email, code)
    except Exception:
        logger.exception("OTP delivery to %s raised", email)
        return False
    if not delivered:
        logger.error("OTP delivery to %s failed; user can request a resend", email)
    return delivered
