"""End-to-end tests for the auth middleware and account routes."""

import time
from datetime import datetime, timedelta, timezone

import pytest
from flask import g, jsonify

from conftest import auth_header
from models import TokenKind
from service import SessionManager, VerifiedToken, get_session_manager
from utils.decorators import authenticate, authorize, brand_required, optional_authenticate
from utils.exceptions import StoreUnavailableError


def _register(client, email="brand@example.com", password="secret123", brand=True):
    body = {"name": "Acme", "email": email, "password": password}
    if brand:
        body["company_name"] = "Acme Inc"
    url = "/api/users/register-brand" if brand else "/api/users/register"
    return client.post(url, json=body)


def _login(client, email, password="secret123"):
    return client.post("/api/users/login", json={"email": email, "password": password})


@pytest.fixture
def guarded_app(app):
    """注册只用于测试的路由"""
    @app.route("/_guarded/optional")
    @optional_authenticate
    def optional_view():
        return jsonify(user_id=g.user_id)

    @app.route("/_guarded/brand")
    @authenticate
    @authorize("brand")
    def brand_view():
        return jsonify(ok=True)

    @app.route("/_guarded/brand-or-admin")
    @brand_required
    def brand_or_admin_view():
        return jsonify(role=g.user["role"])

    return app


class TestEndToEnd:
    def test_register_authenticate_logout_replay(self, client):
        resp = _register(client)
        assert resp.status_code == 201
        body = resp.get_json()
        token = body["token"]
        user_id = body["user"]["id"]
        assert body["user"]["role"] == "brand"
        expiry = datetime.fromisoformat(body["token_expiry"])
        assert abs((expiry - datetime.now(timezone.utc) - timedelta(hours=1)).total_seconds()) < 5

        resp = client.get("/api/users/verify-token", headers=auth_header(token))
        assert resp.status_code == 200
        assert resp.get_json()["user"]["id"] == user_id

        resp = client.post("/api/users/logout", headers=auth_header(token))
        assert resp.status_code == 200
        assert resp.get_json()["revoked"] is True

        resp = client.get("/api/users/verify-token", headers=auth_header(token))
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "INVALID_TOKEN"


class TestAuthenticate:
    def test_missing_token(self, client):
        resp = client.get("/api/users/profile")

        assert resp.status_code == 401
        assert resp.get_json()["error"] == "NO_TOKEN"

    def test_wrong_scheme(self, client):
        resp = client.get("/api/users/profile", headers={"Authorization": "Token abc"})

        assert resp.get_json()["error"] == "NO_TOKEN"

    def test_malformed_token(self, client):
        resp = client.get("/api/users/profile", headers=auth_header("abc.def.ghi"))

        assert resp.status_code == 401
        assert resp.get_json()["error"] == "INVALID_TOKEN"

    def test_expired_token(self, app, client):
        token = _register(client).get_json()["token"]
        with app.app_context():
            claims = get_session_manager().codec.peek(token)
            expired = get_session_manager().codec.issue(
                {"user_id": claims["user_id"], "email": claims["email"], "role": claims["role"],
                 "type": TokenKind.ACCESS, "iat": int(time.time()) - 7200},
                "1h",
            )

        resp = client.get("/api/users/profile", headers=auth_header(expired))

        assert resp.status_code == 401
        assert resp.get_json()["error"] == "TOKEN_EXPIRED"

    def test_store_unavailable_returns_503(self, app, client, monkeypatch):
        token = _register(client).get_json()["token"]

        def unavailable(self, token):
            raise StoreUnavailableError()

        monkeypatch.setattr(type(get_session_manager()), "verify_access_token", unavailable)

        resp = client.get("/api/users/profile", headers=auth_header(token))

        assert resp.status_code == 503
        assert resp.get_json()["error"] == "STORE_UNAVAILABLE"

    def test_optional_authenticate(self, guarded_app, client):
        token = _register(client).get_json()["token"]

        assert client.get("/_guarded/optional").get_json()["user_id"] is None
        assert client.get("/_guarded/optional", headers=auth_header("bad")).get_json()["user_id"] is None
        assert client.get("/_guarded/optional", headers=auth_header(token)).get_json()["user_id"] is not None

    def test_authorize_role(self, guarded_app, client):
        brand_token = _register(client).get_json()["token"]
        user_token = _register(client, email="user@example.com", brand=False).get_json()["token"]

        assert client.get("/_guarded/brand", headers=auth_header(brand_token)).status_code == 200
        resp = client.get("/_guarded/brand", headers=auth_header(user_token))
        assert resp.status_code == 403
        assert resp.get_json()["error"] == "INSUFFICIENT_PERMISSIONS"

    def test_brand_required_admits_admin(self, guarded_app, client, make_user):
        brand_token = _register(client).get_json()["token"]
        user_token = _register(client, email="user@example.com", brand=False).get_json()["token"]
        make_user(email="admin@example.com", role="admin")
        admin_token = _login(client, "admin@example.com").get_json()["token"]

        assert client.get("/_guarded/brand-or-admin", headers=auth_header(brand_token)).get_json()["role"] == "brand"
        assert client.get("/_guarded/brand-or-admin", headers=auth_header(admin_token)).get_json()["role"] == "admin"
        resp = client.get("/_guarded/brand-or-admin", headers=auth_header(user_token))
        assert resp.status_code == 403
        assert resp.get_json()["required"] == ["brand", "admin"]
        assert client.get("/_guarded/brand-or-admin").get_json()["error"] == "NO_TOKEN"


class TestAccountRoutes:
    def test_register_validation(self, client):
        assert client.post("/api/users/register", json={"email": "a@example.com"}).status_code == 400
        assert _register(client, password="123").get_json()["error"] == "WEAK_PASSWORD"
        _register(client)
        assert _register(client).get_json()["error"] == "USER_EXISTS"

    def test_login_does_not_leak_account_existence(self, client):
        _register(client)

        unknown = _login(client, "nobody@example.com")
        wrong = _login(client, "brand@example.com", "wrong-password")

        assert unknown.status_code == wrong.status_code == 401
        assert unknown.get_json() == wrong.get_json()
        assert _login(client, "brand@example.com").status_code == 200

    def test_logout_all(self, client):
        first = _register(client).get_json()["token"]
        second = _login(client, "brand@example.com").get_json()["token"]

        resp = client.post("/api/users/logout-all", headers=auth_header(second))

        assert resp.get_json()["revoked_count"] == 2
        assert client.get("/api/users/profile", headers=auth_header(first)).status_code == 401
        assert client.get("/api/users/profile", headers=auth_header(second)).status_code == 401

    def test_change_password(self, client):
        old = _register(client).get_json()["token"]
        other_device = _login(client, "brand@example.com").get_json()["token"]

        resp = client.put("/api/users/change-password", headers=auth_header(old),
                          json={"old_password": "secret123", "new_password": "newsecret"})

        assert resp.status_code == 200
        new = resp.get_json()["token"]
        assert client.get("/api/users/profile", headers=auth_header(old)).status_code == 401
        assert client.get("/api/users/profile", headers=auth_header(other_device)).status_code == 401
        assert client.get("/api/users/profile", headers=auth_header(new)).status_code == 200
        assert _login(client, "brand@example.com", "newsecret").status_code == 200

    def test_change_password_wrong_old(self, client):
        token = _register(client).get_json()["token"]

        resp = client.put("/api/users/change-password", headers=auth_header(token),
                          json={"old_password": "nope", "new_password": "newsecret"})

        assert resp.get_json()["error"] == "INVALID_PASSWORD"
        assert client.get("/api/users/profile", headers=auth_header(token)).status_code == 200

    def test_refresh_token(self, client):
        old = _register(client).get_json()["token"]

        resp = client.post("/api/users/refresh-token", headers=auth_header(old))

        assert resp.status_code == 200
        new = resp.get_json()["token"]
        assert new != old
        assert client.get("/api/users/profile", headers=auth_header(old)).status_code == 401
        assert client.get("/api/users/profile", headers=auth_header(new)).status_code == 200

    def test_sessions(self, client):
        _register(client)
        token = client.post("/api/users/login", json={"email": "brand@example.com", "password": "secret123"},
                            headers={"User-Agent": "laptop"}).get_json()["token"]

        sessions = client.get("/api/users/sessions", headers=auth_header(token)).get_json()["sessions"]

        assert len(sessions) == 2
        assert [s["user_agent"] for s in sessions if s["current"]] == ["laptop"]


class TestPasswordReset:
    def test_reset_flow(self, client):
        session_token = _register(client).get_json()["token"]

        resp = client.post("/api/users/forgot-password", json={"email": "brand@example.com"})
        reset_token = resp.get_json()["reset_token"]

        resp = client.post("/api/users/reset-password", json={"token": reset_token, "new_password": "resetpass"})
        assert resp.status_code == 200

        assert client.get("/api/users/profile", headers=auth_header(session_token)).status_code == 401
        assert _login(client, "brand@example.com", "resetpass").status_code == 200

        reuse = client.post("/api/users/reset-password", json={"token": reset_token, "new_password": "another1"})
        assert reuse.get_json()["error"] == "INVALID_TOKEN"

    def test_unknown_email_gets_same_answer(self, client):
        _register(client)

        known = client.post("/api/users/forgot-password", json={"email": "brand@example.com"}).get_json()
        unknown = client.post("/api/users/forgot-password", json={"email": "ghost@example.com"}).get_json()

        assert known["message"] == unknown["message"]
        assert "reset_token" not in unknown

    def test_access_token_cannot_reset(self, client):
        token = _register(client).get_json()["token"]

        resp = client.post("/api/users/reset-password", json={"token": token, "new_password": "resetpass"})

        assert resp.get_json()["error"] == "INVALID_TOKEN"


class TestEmailVerification:
    def test_verify_email_flow(self, client):
        token = _register(client).get_json()["token"]

        resp = client.post("/api/users/send-verification", headers=auth_header(token))
        verification_token = resp.get_json()["verification_token"]

        resp = client.post("/api/users/verify-email", json={"token": verification_token})
        assert resp.status_code == 200

        profile = client.get("/api/users/profile", headers=auth_header(token)).get_json()
        assert profile["user"]["is_email_verified"] is True
        resp = client.post("/api/users/send-verification", headers=auth_header(token))
        assert resp.get_json()["error"] == "ALREADY_VERIFIED"


class TestAccountRemovedAfterConsume:
    """令牌消费成功后账号被删除，应返回 USER_NOT_FOUND 而不是 500"""

    @pytest.fixture
    def consumed_for_missing_user(self, monkeypatch):
        def consume(self, token, expected_kind):
            return VerifiedToken(claims={"user_id": 999999, "type": expected_kind}, token_id=1)

        monkeypatch.setattr(SessionManager, "consume_special_token", consume)

    def test_reset_password(self, client, consumed_for_missing_user):
        resp = client.post("/api/users/reset-password", json={"token": "x", "new_password": "resetpass"})

        assert resp.status_code == 404
        assert resp.get_json()["error"] == "USER_NOT_FOUND"

    def test_verify_email(self, client, consumed_for_missing_user):
        resp = client.post("/api/users/verify-email", json={"token": "x"})

        assert resp.status_code == 404
        assert resp.get_json()["error"] == "USER_NOT_FOUND"
