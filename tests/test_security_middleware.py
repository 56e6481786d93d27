"""
tests/test_security_middleware.py -- Response hardening headers and body size cap.

Covers:
  - nosniff / frame denial / referrer policy on every response
  - CSP only under /api/
  - HSTS only when secure cookies are enabled
  - Headers are also present on error responses from inner layers
  - 413 payload_too_large for bodies over max_request_bytes, before validation
"""

from __future__ import annotations

import json

import pytest

import api.main as api_main


def test_hardening_headers_on_api_response(client):
    resp = client.get("/api/v1/health")
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
    assert resp.headers["X-Frame-Options"] == "DENY"
    assert resp.headers["Referrer-Policy"] == "no-referrer"
    assert "frame-ancestors 'none'" in resp.headers["Content-Security-Policy"]


def test_no_hsts_without_secure_cookies(client, monkeypatch):
    monkeypatch.setattr(api_main._settings, "secure_cookies", False)
    assert "Strict-Transport-Security" not in client.get("/api/v1/health").headers


def test_hsts_with_secure_cookies(client, monkeypatch):
    monkeypatch.setattr(api_main._settings, "secure_cookies", True)
    resp = client.get("/api/v1/health")
    assert resp.headers["Strict-Transport-Security"].startswith("max-age=")


def test_docs_page_has_no_api_csp(client):
    resp = client.get("/docs")
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
    assert "Content-Security-Policy" not in resp.headers


def test_headers_present_on_error_responses(client):
    resp = client.get("/api/v1/auth/me")
    assert resp.status_code == 401
    assert resp.headers["X-Frame-Options"] == "DENY"


def test_oversized_body_is_413(client, api_harness):
    body = json.dumps({"username": "bigbody", "email": "big@x.com", "password": "x" * (11 * 1024)})
    resp = client.post("/api/v1/auth/register", content=body, headers={"Content-Type": "application/json"})
    assert resp.status_code == 413
    assert resp.json()["error"]["code"] == "payload_too_large"
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
    assert api_harness.store.get_by_email("big@x.com") is None


@pytest.mark.parametrize("size,expected", [(100, 422), (300, 413)])
def test_limit_follows_setting(client, monkeypatch, size, expected):
    monkeypatch.setattr(api_main._settings, "max_request_bytes", 200)
    resp = client.post("/api/v1/auth/login", content=b"x" * size, headers={"Content-Type": "application/json"})
    assert resp.status_code == expected
