"""
api/limiter.py -- Shared fixed-window rate limiter for the API.

Requests are counted per (client, endpoint class):

  api -- every /api/ route (default 100 per 15 minutes)
  otp -- verify-otp and resend-otp (default 5 per 15 minutes)

A request belongs to exactly one class, so OTP guessing draws only on the otp
budget and cannot be spread over the general quota. The health endpoint is
not counted.

The check runs from HTTP middleware in api/main.py, i.e. before routing,
authentication and request-body validation: the sixth OTP request in a window
is rejected whether or not its body is valid. slowapi's per-route decorators
run after FastAPI has validated the body, so only slowapi's client-key helper
is used here and the counting is done with the `limits` strategy slowapi
itself is built on.

Counters live in limits' MemoryStorage, whose increment is atomic per key.
Two racing requests cannot both slip under the ceiling.

Import the module-level `limiter` everywhere. A second instance would get its
own isolated counters and limits would never trigger.
"""

from __future__ import annotations

import logging
import time
from enum import Enum

from limits import parse
from limits.storage import MemoryStorage, Storage
from limits.strategies import FixedWindowRateLimiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from auth.errors import RateLimited
from core.config import get_settings

logger = logging.getLogger("secureblog.ratelimit")

API_PREFIX = "/api/"
OTP_PATHS = frozenset({"/api/v1/auth/verify-otp", "/api/v1/auth/resend-otp"})
EXEMPT_PATHS = frozenset({"/api/v1/health"})


class EndpointClass(str, Enum):
    api = "api"
    otp = "otp"


class RequestRateLimiter:
    """Fixed-window counters keyed by client identifier and endpoint class."""

    def __init__(
        self,
        general_limit: str,
        otp_limit: str,
        *,
        enabled: bool = True,
        trust_forwarded_for: bool = False,
        storage: Storage | None = None,
    ) -> None:
        self.enabled = enabled
        self.trust_forwarded_for = trust_forwarded_for
        self._storage = storage or MemoryStorage()
        self._strategy = FixedWindowRateLimiter(self._storage)
        self._limits = {
            EndpointClass.api: parse(general_limit),
            EndpointClass.otp: parse(otp_limit),
        }

    def classify(self, path: str) -> EndpointClass | None:
        """Return the endpoint class for a request path, or None if it is not limited."""
        path = path.rstrip("/") or "/"
        if path in EXEMPT_PATHS or not path.startswith(API_PREFIX):
            return None
        if path in OTP_PATHS:
            return EndpointClass.otp
        return EndpointClass.api

    def client_key(self, request: Request) -> str:
        """Client identifier: socket peer address, or the first X-Forwarded-For hop behind a trusted proxy."""
        if self.trust_forwarded_for:
            forwarded = request.headers.get("X-Forwarded-For", "")
            first_hop = forwarded.split(",")[0].strip()
            if first_hop:
                return first_hop
        return get_remote_address(request)

    def hit(self, client: str, endpoint_class: EndpointClass) -> None:
        """Count one request. Raises RateLimited once the window's ceiling is exceeded."""
        if not self.enabled:
            return
        limit = self._limits[endpoint_class]
        if self._strategy.hit(limit, endpoint_class.value, client):
            return
        reset_time, _remaining = self._strategy.get_window_stats(limit, endpoint_class.value, client)
        retry_after = max(1, int(reset_time - time.time()))
        logger.warning("Rate limit exceeded: client=%s class=%s limit=%s", client, endpoint_class.value, limit)
        raise RateLimited(retry_after=retry_after)

    def check(self, request: Request) -> None:
        """Classify and count an incoming request. Raises RateLimited on breach."""
        endpoint_class = self.classify(request.url.path)
        if endpoint_class is not None:
            self.hit(self.client_key(request), endpoint_class)

    def remaining(self, client: str, endpoint_class: EndpointClass) -> int:
        limit = self._limits[endpoint_class]
        return self._strategy.get_window_stats(limit, endpoint_class.value, client)[1]

    def reset(self) -> None:
        """Clear every counter (tests, operator tooling)."""
        self._storage.reset()


_settings = get_settings()

limiter = RequestRateLimiter(
    _settings.general_rate_limit,
    _settings.otp_rate_limit,
    enabled=_settings.rate_limit_enabled,
    trust_forwarded_for=_settings.trust_forwarded_for,
)
