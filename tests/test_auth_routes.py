"""
tests/test_auth_routes.py -- Integration tests for the /auth password and session routes.

These tests exercise the full stack: FastAPI routing -> dependency injection
-> AuthService -> UserStore / RefreshSessionRegistry -> cookie transport.

Coverage:
  - Signup: 201, cookies set, jti of the refresh cookie is whitelisted, conflicts
  - Login: success, identical 401 for unknown email and wrong password, inactive
  - /auth/me round trip with cookies and with a Bearer header
  - Refresh: rotation, reuse of a consumed token -> 401, missing cookie -> 401
  - Logout idempotency, logout-all, session count, password set / change
  - Admin status change revokes sessions; role guard
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from auth.errors import BadRequestError
from auth.models import Role
from auth.store import UserStore
from conftest import PASSWORD, login, make_user, signup


def _jti(token: str) -> str:
    return jwt.get_unverified_claims(token)["jti"]


def _set_cookie_headers(resp) -> list[str]:
    return resp.headers.get_list("set-cookie")


class TestSignup:
    def test_signup_creates_user_and_one_session(self, client: TestClient, store: UserStore) -> None:
        """POST /auth/signup returns 201 with the user and whitelists the refresh cookie's jti."""
        resp = signup(client, "a@x.com", role="INFLUENCER")
        assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
        user = resp.json()["user"]
        assert user["role"] == "INFLUENCER"
        assert user["email"] == "a@x.com"
        assert "hashedPassword" not in user and "hashed_password" not in user

        refresh_token = client.cookies.get("refresh_token")
        assert refresh_token, "refresh_token cookie must be set"
        assert client.cookies.get("access_token"), "access_token cookie must be set"

        sessions = client.app.state.auth.sessions
        assert sessions.count_active(user["id"]) == 1
        session = sessions.get(_jti(refresh_token))
        assert session is not None and session.user_id == user["id"]

    def test_signup_then_me_returns_same_user(self, client: TestClient) -> None:
        uid = signup(client, "a@x.com").json()["user"]["id"]
        resp = client.get("/auth/me")
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["user"]["id"] == uid
        assert data["hasPassword"] is True
        assert data["authMethods"] == {"password": True, "oauth": False, "providers": []}
        assert data["linkedAccounts"] == []

    def test_signup_creates_role_profile(self, client: TestClient, store: UserStore) -> None:
        uid = signup(client, "adv@x.com", role="ADVERTISER").json()["user"]["id"]
        assert store.has_role_profile(uid, "ADVERTISER")

    def test_duplicate_email_conflict(self, client: TestClient) -> None:
        assert signup(client, "dup@x.com").status_code == 201
        resp = signup(client, "DUP@x.com")
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "conflict"
        assert resp.json()["error"]["message"] == "Email is already registered."

    def test_duplicate_username_conflict(self, client: TestClient) -> None:
        assert signup(client, "one@x.com", username="taken").status_code == 201
        resp = signup(client, "two@x.com", username="taken")
        assert resp.status_code == 409
        assert resp.json()["error"]["message"] == "Username is already taken."

    def test_malformed_website_is_bad_request(self, client: TestClient) -> None:
        resp = signup(client, "web@x.com", website="not a url")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "bad_request"

    def test_admin_role_rejected_by_validation(self, client: TestClient) -> None:
        resp = signup(client, "root@x.com", role="ADMIN")
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_short_password_rejected(self, client: TestClient) -> None:
        resp = signup(client, "short@x.com", password="12345")
        assert resp.status_code == 422


class TestLogin:
    def test_login_success_sets_cookies(self, client: TestClient, store: UserStore) -> None:
        user = make_user(store, "login@x.com")
        resp = login(client, "login@x.com")
        assert resp.status_code == 200, resp.text
        assert resp.json()["user"]["id"] == user.id
        assert resp.headers["cache-control"] == "no-store"
        assert client.cookies.get("refresh_token")
        assert store.get_by_id(user.id).last_login_at is not None

    def test_wrong_password_and_unknown_email_are_indistinguishable(
        self, client: TestClient, store: UserStore
    ) -> None:
        """Both failures return 401 with an identical body (no enumeration signal)."""
        make_user(store, "known@x.com")
        wrong = login(client, "known@x.com", "wrong-password")
        unknown = login(client, "nobody@x.com", "wrong-password")
        assert wrong.status_code == 401
        assert unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert wrong.json()["error"]["message"] == "Invalid email or password."

    def test_oauth_only_user_cannot_password_login(self, client: TestClient, store: UserStore) -> None:
        from auth.models import User, UserIdentity

        store.create_user(
            User(role="INFLUENCER", email="oauth@x.com"),
            identity=UserIdentity(user_id=0, provider="google", provider_subject="g-1"),
        )
        resp = login(client, "oauth@x.com", "anything")
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Invalid email or password."

    def test_suspended_user_rejected(self, client: TestClient, store: UserStore) -> None:
        make_user(store, "susp@x.com", status="SUSPENDED")
        resp = login(client, "susp@x.com")
        assert resp.status_code == 401

    def test_login_caps_sessions(self, client: TestClient, store: UserStore) -> None:
        """Six logins leave at most five live sessions."""
        user = make_user(store, "many@x.com")
        for _ in range(6):
            assert login(client, "many@x.com").status_code == 200
        assert client.app.state.auth.sessions.count_active(user.id) == 5


class TestMeAndGuards:
    def test_me_requires_auth(self, client: TestClient) -> None:
        resp = client.get("/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_me_accepts_bearer_token(self, client: TestClient, store: UserStore) -> None:
        user = make_user(store, "bearer@x.com")
        token = client.app.state.auth.tokens.issue_access_token(user.id, user.email, user.role)
        client.cookies.clear()
        resp = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200
        assert resp.json()["user"]["id"] == user.id

    def test_refresh_token_not_accepted_as_access_token(self, client: TestClient, store: UserStore) -> None:
        user = make_user(store, "typed@x.com")
        refresh_token, _ = client.app.state.auth.tokens.issue_refresh_token(user.id)
        resp = client.get("/auth/me", headers={"Authorization": f"Bearer {refresh_token}"})
        assert resp.status_code == 401

    def test_providers_is_public(self, client: TestClient) -> None:
        resp = client.get("/auth/providers")
        assert resp.status_code == 200
        names = [p["name"] for p in resp.json()["providers"]]
        assert names == ["google", "kakao"]


class TestRefresh:
    def test_refresh_rotates_tokens(self, client: TestClient) -> None:
        uid = signup(client, "r@x.com").json()["user"]["id"]
        old = client.cookies.get("refresh_token")

        resp = client.post("/auth/refresh")
        assert resp.status_code == 200, resp.text
        assert resp.json()["success"] is True

        new = client.cookies.get("refresh_token")
        assert new and new != old
        sessions = client.app.state.auth.sessions
        assert sessions.get(_jti(old)) is None
        assert sessions.get(_jti(new)) is not None
        assert sessions.count_active(uid) == 1

    def test_reusing_consumed_refresh_token_fails(self, client: TestClient) -> None:
        """One successful refresh, then the same original token again -> 401."""
        signup(client, "reuse@x.com")
        old = client.cookies.get("refresh_token")
        assert client.post("/auth/refresh").status_code == 200

        resp = client.post("/auth/refresh", headers={"Cookie": f"refresh_token={old}"})
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Invalid refresh token"

    def test_refresh_failure_clears_cookies(self, client: TestClient) -> None:
        resp = client.post("/auth/refresh", headers={"Cookie": "refresh_token=garbage"})
        assert resp.status_code == 401
        cookies = " ".join(_set_cookie_headers(resp))
        assert "refresh_token=" in cookies and "Max-Age=0" in cookies

    def test_missing_refresh_cookie(self, client: TestClient) -> None:
        resp = client.post("/auth/refresh")
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Invalid refresh token"

    def test_refresh_for_suspended_user_fails(self, client: TestClient, store: UserStore) -> None:
        uid = signup(client, "later-suspended@x.com").json()["user"]["id"]
        store.update_user(uid, status="SUSPENDED")
        assert client.post("/auth/refresh").status_code == 401


class TestLogout:
    def test_logout_is_idempotent(self, client: TestClient) -> None:
        uid = signup(client, "bye@x.com").json()["user"]["id"]
        token = client.cookies.get("refresh_token")
        header = {"Cookie": f"refresh_token={token}"}

        first = client.post("/auth/logout", headers=header)
        second = client.post("/auth/logout", headers=header)
        assert first.status_code == 200 and second.status_code == 200
        assert first.json()["success"] is True and second.json()["success"] is True
        assert client.app.state.auth.sessions.count_active(uid) == 0

    def test_logout_without_cookie_succeeds(self, client: TestClient) -> None:
        assert client.post("/auth/logout").status_code == 200

    def test_logout_all_revokes_every_session(self, client: TestClient, store: UserStore) -> None:
        user = make_user(store, "all@x.com")
        for _ in range(3):
            login(client, "all@x.com")
        resp = client.post("/auth/logout-all")
        assert resp.status_code == 200, resp.text
        assert resp.json() == {"success": True, "sessionCount": 3}
        assert client.app.state.auth.sessions.count_active(user.id) == 0

    def test_logout_all_requires_auth(self, client: TestClient) -> None:
        assert client.post("/auth/logout-all").status_code == 401

    def test_session_count(self, client: TestClient, store: UserStore) -> None:
        make_user(store, "count@x.com")
        login(client, "count@x.com")
        login(client, "count@x.com")
        resp = client.get("/auth/sessions")
        assert resp.status_code == 200
        assert resp.json() == {"activeSessionCount": 2}


class TestPassword:
    def test_change_password_requires_current(self, client: TestClient, store: UserStore) -> None:
        make_user(store, "pw@x.com")
        login(client, "pw@x.com")
        resp = client.put("/auth/password", json={"newPassword": "another1"})
        assert resp.status_code == 401
        resp = client.put("/auth/password", json={"currentPassword": PASSWORD, "newPassword": "another1"})
        assert resp.status_code == 200, resp.text
        client.cookies.clear()
        assert login(client, "pw@x.com", "another1").status_code == 200


class TestAdminStatus:
    def test_admin_suspension_revokes_sessions(self, client: TestClient, store: UserStore) -> None:
        target = make_user(store, "target@x.com")
        login(client, "target@x.com")
        assert client.app.state.auth.sessions.count_active(target.id) == 1

        client.cookies.clear()
        make_user(store, "admin@x.com", role=Role.ADMIN.value)
        login(client, "admin@x.com")
        resp = client.patch(f"/auth/users/{target.id}/status", json={"status": "SUSPENDED"})
        assert resp.status_code == 200, resp.text
        assert resp.json()["user"]["status"] == "SUSPENDED"
        assert client.app.state.auth.sessions.count_active(target.id) == 0

    def test_admin_cannot_change_own_status(self, client: TestClient, store: UserStore) -> None:
        admin = make_user(store, "self@x.com", role=Role.ADMIN.value)
        login(client, "self@x.com")
        resp = client.patch(f"/auth/users/{admin.id}/status", json={"status": "INACTIVE"})
        assert resp.status_code == 400

    def test_non_admin_forbidden(self, client: TestClient, store: UserStore) -> None:
        other = make_user(store, "other@x.com")
        make_user(store, "plain@x.com")
        login(client, "plain@x.com")
        resp = client.patch(f"/auth/users/{other.id}/status", json={"status": "SUSPENDED"})
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_unknown_user_not_found(self, client: TestClient, store: UserStore) -> None:
        make_user(store, "admin2@x.com", role=Role.ADMIN.value)
        login(client, "admin2@x.com")
        resp = client.patch("/auth/users/9999/status", json={"status": "SUSPENDED"})
        assert resp.status_code == 404


class TestPasswordLength:
    """bcrypt reads at most 72 UTF-8 bytes; multi-byte passwords hit that well before 50 characters."""

    # 24 Hangul syllables = 72 bytes, exactly at the limit.
    KOREAN_PASSWORD = "가나다라마바사아자차카타" * 2
    TOO_LONG = "가" * 30  # 30 characters, 90 bytes

    def test_korean_password_signup_and_login(self, client: TestClient) -> None:
        assert signup(client, "ko@x.com", password=self.KOREAN_PASSWORD).status_code == 201
        client.cookies.clear()
        resp = login(client, "ko@x.com", self.KOREAN_PASSWORD)
        assert resp.status_code == 200, resp.text

    def test_signup_over_72_bytes_is_validation_error(self, client: TestClient, store: UserStore) -> None:
        resp = signup(client, "long@x.com", password=self.TOO_LONG)
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"
        assert store.get_by_email("long@x.com") is None

    def test_password_change_over_72_bytes_is_validation_error(self, client: TestClient, store: UserStore) -> None:
        make_user(store, "change@x.com")
        login(client, "change@x.com")
        resp = client.put("/auth/password", json={"currentPassword": PASSWORD, "newPassword": self.TOO_LONG})
        assert resp.status_code == 422
        assert login(client, "change@x.com").status_code == 200

    def test_login_over_72_bytes_is_plain_401(self, client: TestClient, store: UserStore) -> None:
        make_user(store, "l@x.com")
        resp = login(client, "l@x.com", self.TOO_LONG)
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Invalid email or password."

    def test_service_rejects_long_password_without_api_layer(self, service, store: UserStore) -> None:
        with pytest.raises(BadRequestError):
            service.signup("direct@x.com", self.TOO_LONG, "INFLUENCER")
        assert store.get_by_email("direct@x.com") is None

        user = make_user(store, "direct2@x.com")
        with pytest.raises(BadRequestError):
            service.set_password(user.id, self.TOO_LONG, current_password=PASSWORD)
