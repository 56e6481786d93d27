"""Unit tests for auth/dependencies.py -- principal extraction and role gates.

A throwaway FastAPI app mounts routes guarded by get_principal and
require_roles so the dependencies are exercised without the real routers or
store: authentication is decided by the token alone.
"""

import time

import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient

from api.main import auth_error_handler, generic_exception_handler
from auth.dependencies import get_principal, require_roles, try_get_principal
from auth.errors import AuthError
from auth.models import Role, TokenClaims
from auth.tokens import AUTH_COOKIE, mint_token


def _build_app() -> FastAPI:
    mini = FastAPI()
    mini.add_exception_handler(AuthError, auth_error_handler)

    @mini.get("/whoami")
    def whoami(request: Request, principal: TokenClaims = Depends(get_principal)):
        assert request.state.principal == principal
        return {"user_id": principal.user_id, "role": principal.role.value}

    @mini.get("/maybe")
    def maybe(request: Request):
        principal = try_get_principal(request)
        return {"user_id": principal.user_id if principal else None}

    @mini.get("/drafts")
    def drafts(principal: TokenClaims = Depends(require_roles(Role.author, Role.admin))):
        return {"ok": True}

    @mini.get("/admin-only")
    def admin_only(principal: TokenClaims = Depends(require_roles(Role.admin))):
        return {"ok": True}

    return mini


@pytest.fixture(scope="module")
def mini_client():
    with TestClient(_build_app()) as c:
        yield c


def _bearer(user_id: int, role: Role, **kwargs) -> dict[str, str]:
    return {"Authorization": f"Bearer {mint_token(user_id, role, 600, **kwargs)}"}


def test_missing_token_is_401(mini_client):
    resp = mini_client.get("/whoami")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthorized"


def test_bearer_token(mini_client):
    resp = mini_client.get("/whoami", headers=_bearer(5, Role.author))
    assert resp.json() == {"user_id": 5, "role": "author"}


def test_cookie_takes_priority_over_header(mini_client):
    cookie_token = mint_token(1, Role.reader, 600)
    mini_client.cookies.set(AUTH_COOKIE, cookie_token)
    try:
        resp = mini_client.get("/whoami", headers=_bearer(2, Role.admin))
    finally:
        mini_client.cookies.clear()
    assert resp.json()["user_id"] == 1


def test_expired_cookie_falls_back_to_valid_bearer(mini_client):
    mini_client.cookies.set(AUTH_COOKIE, mint_token(1, Role.reader, 600, now=time.time() - 601))
    try:
        resp = mini_client.get("/whoami", headers=_bearer(2, Role.author))
    finally:
        mini_client.cookies.clear()
    assert resp.status_code == 200
    assert resp.json() == {"user_id": 2, "role": "author"}


def test_garbage_cookie_falls_back_to_valid_bearer(mini_client):
    mini_client.cookies.set(AUTH_COOKIE, "garbage")
    try:
        resp = mini_client.get("/whoami", headers=_bearer(4, Role.reader))
    finally:
        mini_client.cookies.clear()
    assert resp.json()["user_id"] == 4


def test_cookie_failure_is_reported_when_nothing_verifies(mini_client):
    mini_client.cookies.set(AUTH_COOKIE, mint_token(1, Role.reader, 600, now=time.time() - 601))
    try:
        resp = mini_client.get("/whoami", headers={"Authorization": "Bearer garbage"})
    finally:
        mini_client.cookies.clear()
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "token_expired"


def test_non_bearer_scheme_ignored(mini_client):
    token = mint_token(1, Role.reader, 600)
    resp = mini_client.get("/whoami", headers={"Authorization": f"Basic {token}"})
    assert resp.status_code == 401


def test_expired_token_is_401_token_expired(mini_client):
    resp = mini_client.get("/whoami", headers=_bearer(1, Role.admin, now=time.time() - 601))
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "token_expired"


def test_garbage_token_is_401(mini_client):
    resp = mini_client.get("/whoami", headers={"Authorization": "Bearer garbage"})
    assert resp.status_code == 401


def test_soft_principal(mini_client):
    assert mini_client.get("/maybe").json() == {"user_id": None}
    assert mini_client.get("/maybe", headers=_bearer(9, Role.reader)).json() == {"user_id": 9}


@pytest.mark.parametrize(
    "role,drafts_status,admin_status",
    [
        (Role.reader, 403, 403),
        (Role.author, 200, 403),
        (Role.admin, 200, 200),
    ],
)
def test_role_gates(mini_client, role, drafts_status, admin_status):
    headers = _bearer(3, role)
    assert mini_client.get("/drafts", headers=headers).status_code == drafts_status
    assert mini_client.get("/admin-only", headers=headers).status_code == admin_status


def test_role_gate_without_token_is_401_not_403(mini_client):
    assert mini_client.get("/admin-only").status_code == 401


def test_require_roles_needs_a_role():
    with pytest.raises(ValueError):
        require_roles()


def test_unexpected_failure_is_generic_500():
    mini = FastAPI()
    mini.add_exception_handler(Exception, generic_exception_handler)

    @mini.get("/boom")
    def boom():
        raise RuntimeError("database password is hunter2")

    with TestClient(mini, raise_server_exceptions=False) as c:
        resp = c.get("/boom")
    assert resp.status_code == 500
    assert resp.json() == {"error": {"code": "internal_error", "message": "An unexpected error occurred."}}
    assert "hunter2" not in resp.text
