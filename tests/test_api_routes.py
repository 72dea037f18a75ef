"""
tests/test_api_routes.py -- Integration tests for the auth, user-management
and ad routes.

These tests exercise the full stack: FastAPI routing -> auth dependency injection
-> guard decision -> UserStore/AdStore operations -> response model serialization.
Unit testing individual route functions would miss middleware, dependency
injection, exception handlers and response model validation -- integration
tests are the right tool here.

Fixtures used (from conftest.py):
  - api_client: (client, token, uid) -- TestClient with admin JWT.
    The fixture creates an admin user with username="testadmin", password="testpass123".

The client is module-scoped, so every test registers its own usernames and
phone numbers.
"""

from __future__ import annotations

from datetime import datetime, timezone
from itertools import count

import pytest
from fastapi.testclient import TestClient

from auth.models import Role
from auth.tokens import create_access_token

_phones = count(9120000001)

AD_BODY = {
    "title": "Sunny flat",
    "description": "Two bedrooms near the park",
    "address": "12 Vali-e-Asr St",
    "province": "Tehran",
    "city": "Tehran",
    "lat": 35.7,
    "lng": 51.4,
    "phone": "09121234567",
    "price": 250000,
    "property_type": "apartment",
}


def _h(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _register(client: TestClient, username: str, password: str = "secret1") -> tuple[str, int]:
    """Register a fresh user and return (access_token, user_id)."""
    resp = client.post(
        "/api/v1/auth/register",
        json={"name": username.title(), "phone": f"0{next(_phones)}", "username": username, "password": password},
    )
    assert resp.status_code == 201, resp.text
    data = resp.json()
    return data["access_token"], data["user"]["id"]


def _create_ad(client: TestClient, token: str, **overrides) -> dict:
    resp = client.post("/api/v1/ads", json={**AD_BODY, **overrides}, headers=_h(token))
    assert resp.status_code == 201, resp.text
    return resp.json()


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class TestRegister:
    def test_register_alice(self, api_client: tuple[TestClient, str, int]) -> None:
        """alice / 09120000000 / secret1 gets a token and the user role."""
        client, _token, _uid = api_client
        resp = client.post(
            "/api/v1/auth/register",
            json={"name": "Alice", "phone": "09120000000", "username": "alice", "password": "secret1"},
        )
        assert resp.status_code == 201, resp.text
        assert resp.headers["cache-control"] == "no-store"
        data = resp.json()
        assert data["access_token"]
        assert data["refresh_token"]
        assert data["token_type"] == "bearer"
        assert data["user"]["role"] == "user"
        assert data["user"]["username"] == "alice"
        assert "hashed_password" not in data["user"]

    def test_duplicate_phone_conflicts(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        client.post(
            "/api/v1/auth/register",
            json={"name": "Dup", "phone": "09125550000", "username": "dup_one", "password": "secret1"},
        )
        resp = client.post(
            "/api/v1/auth/register",
            json={"name": "Dup", "phone": "09125550000", "username": "dup_two", "password": "secret1"},
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "phone_taken"

    def test_duplicate_username_conflicts(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        _register(client, "taken_name")
        resp = client.post(
            "/api/v1/auth/register",
            json={"name": "X", "phone": "09125550001", "username": "taken_name", "password": "secret1"},
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "username_taken"

    def test_client_supplied_role_ignored(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.post(
            "/api/v1/auth/register",
            json={
                "name": "Sneaky",
                "phone": "09125550002",
                "username": "sneaky",
                "password": "secret1",
                "role": "admin",
            },
        )
        assert resp.status_code == 201
        assert resp.json()["user"]["role"] == "user"

    @pytest.mark.parametrize(
        "override",
        [
            {"phone": "12345"},
            {"username": "no spaces"},
            {"password": "short"},
            {"password": "ü" * 40},
        ],
    )
    def test_invalid_body_is_422_envelope(self, api_client: tuple[TestClient, str, int], override) -> None:
        client, _token, _uid = api_client
        body = {"name": "V", "phone": "09125550003", "username": "valid_name", "password": "secret1", **override}
        resp = client.post("/api/v1/auth/register", json=body)
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"


# ---------------------------------------------------------------------------
# Login, lockout, refresh
# ---------------------------------------------------------------------------


class TestLogin:
    def test_login_valid_credentials(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.post("/api/v1/auth/login", json={"username": "testadmin", "password": "testpass123"})
        assert resp.status_code == 200, resp.text
        assert resp.headers["cache-control"] == "no-store"
        data = resp.json()
        assert data["user"]["username"] == "testadmin"
        assert data["user"]["role"] == "admin"

    def test_wrong_password(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        _register(client, "wrongpw")
        resp = client.post("/api/v1/auth/login", json={"username": "wrongpw", "password": "nope123"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"
        assert resp.headers["cache-control"] == "no-store"

    def test_unknown_user_looks_like_wrong_password(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        _register(client, "known")
        unknown = client.post("/api/v1/auth/login", json={"username": "ghost", "password": "secret1"})
        wrong = client.post("/api/v1/auth/login", json={"username": "known", "password": "secret2"})
        assert unknown.status_code == wrong.status_code == 401
        assert unknown.json() == wrong.json()

    def test_five_failures_lock_then_admin_unlock(self, api_client: tuple[TestClient, str, int]) -> None:
        client, admin_token, _uid = api_client
        _token, uid = _register(client, "locky")
        for _ in range(5):
            resp = client.post("/api/v1/auth/login", json={"username": "locky", "password": "wrong1"})
            assert resp.status_code == 401

        locked = client.post("/api/v1/auth/login", json={"username": "locky", "password": "secret1"})
        assert locked.status_code == 423
        assert locked.json()["error"]["code"] == "account_locked"

        users = client.get("/api/v1/auth/users", headers=_h(admin_token)).json()
        row = next(u for u in users if u["id"] == uid)
        assert row["is_locked"] is True
        assert row["login_attempts"] == 5

        resp = client.patch(f"/api/v1/auth/users/{uid}", json={"unlock": True}, headers=_h(admin_token))
        assert resp.status_code == 200
        assert resp.json()["is_locked"] is False

        again = client.post("/api/v1/auth/login", json={"username": "locky", "password": "secret1"})
        assert again.status_code == 200

    def test_banned_user_cannot_login(self, api_client: tuple[TestClient, str, int]) -> None:
        client, admin_token, _uid = api_client
        _token, uid = _register(client, "banme")
        client.patch(f"/api/v1/auth/users/{uid}", json={"is_banned": True}, headers=_h(admin_token))
        resp = client.post("/api/v1/auth/login", json={"username": "banme", "password": "secret1"})
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "account_disabled"


class TestRefresh:
    def _login(self, client: TestClient, username: str) -> dict:
        return client.post("/api/v1/auth/login", json={"username": username, "password": "secret1"}).json()

    def test_refresh_issues_access_token(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        _register(client, "refresher")
        tokens = self._login(client, "refresher")
        resp = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert resp.status_code == 200
        new_access = resp.json()["access_token"]
        assert client.get("/api/v1/auth/profile", headers=_h(new_access)).status_code == 200

    def test_access_token_is_not_a_refresh_token(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        access, _ = _register(client, "mixup")
        resp = client.post("/api/v1/auth/refresh", json={"refresh_token": access})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_refresh"

    def test_refresh_token_is_not_an_access_token(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        _register(client, "mixup2")
        tokens = self._login(client, "mixup2")
        resp = client.get("/api/v1/auth/profile", headers=_h(tokens["refresh_token"]))
        assert resp.status_code == 403

    def test_refresh_refused_after_ban(self, api_client: tuple[TestClient, str, int]) -> None:
        client, admin_token, _uid = api_client
        _token, uid = _register(client, "banned_refresh")
        tokens = self._login(client, "banned_refresh")
        client.patch(f"/api/v1/auth/users/{uid}", json={"is_banned": True}, headers=_h(admin_token))
        resp = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert resp.status_code == 401


# ---------------------------------------------------------------------------
# Credentials on protected routes
# ---------------------------------------------------------------------------


class TestCredentials:
    def test_missing_token_is_401(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.get("/api/v1/auth/profile")
        assert resp.status_code == 401
        assert resp.headers["www-authenticate"] == "Bearer"
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_garbage_token_is_403(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.get("/api/v1/auth/profile", headers=_h("not.a.jwt"))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "invalid_token"

    def test_expired_token_is_403(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, uid = api_client
        expired = create_access_token(
            uid, "testadmin", Role.admin, expire_seconds=60, now=datetime(2020, 1, 1, tzinfo=timezone.utc)
        )
        resp = client.get("/api/v1/auth/profile", headers=_h(expired))
        assert resp.status_code == 403

    def test_non_admin_cannot_list_users(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        token, _ = _register(client, "curious")
        resp = client.get("/api/v1/auth/users", headers=_h(token))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_profile(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        token, uid = _register(client, "profiled")
        data = client.get("/api/v1/auth/profile", headers=_h(token)).json()
        assert data["id"] == uid
        assert data["username"] == "profiled"
        assert "hashed_password" not in data
        assert data["created_at"]


# ---------------------------------------------------------------------------
# Ads: ownership, visibility, moderation
# ---------------------------------------------------------------------------


class TestAds:
    def test_create_is_pending_and_owned_by_caller(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        token, uid = _register(client, "seller")
        ad = _create_ad(client, token, user_id=99999)
        assert ad["status"] == "pending"
        assert ad["user_id"] == uid

    def test_create_requires_auth(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        assert client.post("/api/v1/ads", json=AD_BODY).status_code == 401

    def test_pending_ad_hidden_from_public(self, api_client: tuple[TestClient, str, int]) -> None:
        client, admin_token, _uid = api_client
        token, _ = _register(client, "hider")
        ad = _create_ad(client, token, title="Hidden gem")

        assert client.get(f"/api/v1/ads/{ad['id']}").status_code == 404
        assert client.get(f"/api/v1/ads/{ad['id']}", headers=_h(token)).status_code == 200
        assert client.get(f"/api/v1/ads/{ad['id']}", headers=_h(admin_token)).status_code == 200
        public_titles = [a["title"] for a in client.get("/api/v1/ads").json()["ads"]]
        assert "Hidden gem" not in public_titles

    def test_approval_publishes_without_admin_notes(self, api_client: tuple[TestClient, str, int]) -> None:
        client, admin_token, _uid = api_client
        token, _ = _register(client, "publisher")
        ad = _create_ad(client, token, title="Published flat")

        resp = client.patch(
            f"/api/v1/ads/{ad['id']}/status",
            json={"status": "approved", "admin_notes": "Checked by phone"},
            headers=_h(admin_token),
        )
        assert resp.status_code == 200
        assert resp.json()["admin_notes"] == "Checked by phone"

        public = client.get(f"/api/v1/ads/{ad['id']}").json()
        assert public["status"] == "approved"
        assert public["admin_notes"] is None
        assert public["view_count"] == 1

        owner_view = client.get(f"/api/v1/ads/{ad['id']}", headers=_h(token)).json()
        assert owner_view["admin_notes"] == "Checked by phone"

        listing = client.get("/api/v1/ads", params={"q": "Published"}).json()
        assert [a["title"] for a in listing["ads"]] == ["Published flat"]

    def test_only_owner_or_admin_mutates(self, api_client: tuple[TestClient, str, int]) -> None:
        client, admin_token, _uid = api_client
        owner_token, _ = _register(client, "owner1")
        other_token, _ = _register(client, "intruder")
        ad = _create_ad(client, owner_token)

        resp = client.put(f"/api/v1/ads/{ad['id']}", json={"title": "Mine now"}, headers=_h(other_token))
        assert resp.status_code == 403
        assert client.delete(f"/api/v1/ads/{ad['id']}", headers=_h(other_token)).status_code == 403

        resp = client.put(f"/api/v1/ads/{ad['id']}", json={"title": "Owner edit"}, headers=_h(owner_token))
        assert resp.status_code == 200
        assert resp.json()["title"] == "Owner edit"

        resp = client.put(f"/api/v1/ads/{ad['id']}", json={"price": 1}, headers=_h(admin_token))
        assert resp.status_code == 200
        assert resp.json()["title"] == "Owner edit"

        assert client.delete(f"/api/v1/ads/{ad['id']}", headers=_h(admin_token)).status_code == 200
        assert client.get(f"/api/v1/ads/{ad['id']}", headers=_h(admin_token)).status_code == 404

    def test_mutating_missing_ad_is_404(self, api_client: tuple[TestClient, str, int]) -> None:
        client, admin_token, _uid = api_client
        assert client.put("/api/v1/ads/999999", json={"title": "x"}, headers=_h(admin_token)).status_code == 404
        assert client.delete("/api/v1/ads/999999", headers=_h(admin_token)).status_code == 404

    def test_moderation_is_admin_only(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _admin_token, _uid = api_client
        token, _ = _register(client, "selfapprover")
        ad = _create_ad(client, token)
        resp = client.patch(f"/api/v1/ads/{ad['id']}/status", json={"status": "approved"}, headers=_h(token))
        assert resp.status_code == 403
        assert client.post(f"/api/v1/ads/{ad['id']}/rate", json={"stars": 5}, headers=_h(token)).status_code == 403
        assert client.get("/api/v1/ads/stats", headers=_h(token)).status_code == 403
        assert client.get("/api/v1/ads/admin", headers=_h(token)).status_code == 403

    def test_rating(self, api_client: tuple[TestClient, str, int]) -> None:
        client, admin_token, _uid = api_client
        token, _ = _register(client, "rated")
        ad = _create_ad(client, token)
        resp = client.post(f"/api/v1/ads/{ad['id']}/rate", json={"stars": 4}, headers=_h(admin_token))
        assert resp.json()["stars"] == 4
        bad = client.post(f"/api/v1/ads/{ad['id']}/rate", json={"stars": 6}, headers=_h(admin_token))
        assert bad.status_code == 422

    def test_counters(self, api_client: tuple[TestClient, str, int]) -> None:
        client, admin_token, _uid = api_client
        token, _ = _register(client, "counted")
        ad = _create_ad(client, token)
        assert client.post(f"/api/v1/ads/{ad['id']}/click").status_code == 200
        assert client.post(f"/api/v1/ads/{ad['id']}/view").status_code == 200
        data = client.get(f"/api/v1/ads/{ad['id']}", headers=_h(admin_token)).json()
        assert data["click_count"] == 1
        assert data["view_count"] == 2
        assert client.post("/api/v1/ads/999999/click").status_code == 404

    def test_admin_views(self, api_client: tuple[TestClient, str, int]) -> None:
        client, admin_token, _uid = api_client
        token, _ = _register(client, "statted")
        _create_ad(client, token)
        stats = client.get("/api/v1/ads/stats", headers=_h(admin_token)).json()
        assert stats["total_ads"] >= 1
        assert stats["pending_ads"] >= 1
        everything = client.get("/api/v1/ads/admin", params={"limit": 100}, headers=_h(admin_token)).json()
        assert any(a["status"] == "pending" for a in everything["ads"])

    def test_my_ads_and_dashboard(self, api_client: tuple[TestClient, str, int]) -> None:
        client, admin_token, _uid = api_client
        token, uid = _register(client, "dashboarder")
        first = _create_ad(client, token, title="First")
        _create_ad(client, token, title="Second")
        client.patch(f"/api/v1/ads/{first['id']}/status", json={"status": "approved"}, headers=_h(admin_token))

        mine = client.get("/api/v1/auth/my-ads", headers=_h(token)).json()
        assert {a["title"] for a in mine} == {"First", "Second"}
        assert all(a["user_id"] == uid for a in mine)

        dash = client.get("/api/v1/auth/dashboard", headers=_h(token)).json()
        assert dash["total_ads"] == 2
        assert dash["approved_ads"] == 1
        assert dash["pending_ads"] == 1
        assert len(dash["recent_ads"]) == 2


# ---------------------------------------------------------------------------
# User management
# ---------------------------------------------------------------------------


class TestUserManagement:
    def test_delete_user_with_ads_refused_until_ads_gone(self, api_client: tuple[TestClient, str, int]) -> None:
        """Admin deletes bob who owns an ad: refused; after the ad goes, it succeeds."""
        client, admin_token, _uid = api_client
        bob_token, bob_id = _register(client, "bob")
        ad = _create_ad(client, bob_token)

        resp = client.delete(f"/api/v1/auth/users/{bob_id}", headers=_h(admin_token))
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "user_has_ads"

        assert client.delete(f"/api/v1/ads/{ad['id']}", headers=_h(bob_token)).status_code == 200
        resp = client.delete(f"/api/v1/auth/users/{bob_id}", headers=_h(admin_token))
        assert resp.status_code == 200
        assert client.delete(f"/api/v1/auth/users/{bob_id}", headers=_h(admin_token)).status_code == 404

    def test_admin_cannot_delete_self(self, api_client: tuple[TestClient, str, int]) -> None:
        client, admin_token, admin_id = api_client
        resp = client.delete(f"/api/v1/auth/users/{admin_id}", headers=_h(admin_token))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "self_deletion"

    def test_non_admin_cannot_delete(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _admin_token, _uid = api_client
        token, _ = _register(client, "vandal")
        _, victim = _register(client, "victim")
        assert client.delete(f"/api/v1/auth/users/{victim}", headers=_h(token)).status_code == 403

    def test_promote_user(self, api_client: tuple[TestClient, str, int]) -> None:
        client, admin_token, _uid = api_client
        _token, uid = _register(client, "promoted")
        resp = client.patch(f"/api/v1/auth/users/{uid}", json={"role": "admin"}, headers=_h(admin_token))
        assert resp.status_code == 200
        assert resp.json()["role"] == "admin"
        login = client.post("/api/v1/auth/login", json={"username": "promoted", "password": "secret1"})
        assert login.json()["user"]["role"] == "admin"

    def test_empty_patch_rejected(self, api_client: tuple[TestClient, str, int]) -> None:
        client, admin_token, _uid = api_client
        _token, uid = _register(client, "untouched")
        resp = client.patch(f"/api/v1/auth/users/{uid}", json={}, headers=_h(admin_token))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "no_changes"

    def test_admin_cannot_ban_self(self, api_client: tuple[TestClient, str, int]) -> None:
        client, admin_token, admin_id = api_client
        resp = client.patch(f"/api/v1/auth/users/{admin_id}", json={"is_banned": True}, headers=_h(admin_token))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "self_moderation"

    def test_patch_missing_user(self, api_client: tuple[TestClient, str, int]) -> None:
        client, admin_token, _uid = api_client
        resp = client.patch("/api/v1/auth/users/999999", json={"is_active": False}, headers=_h(admin_token))
        assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Tokens of accounts that were deleted or blocked
# ---------------------------------------------------------------------------


class TestStaleAccounts:
    def test_deleted_users_token_does_not_pass_to_next_registrant(
        self, api_client: tuple[TestClient, str, int]
    ) -> None:
        client, admin_token, _uid = api_client
        dora_token, dora_id = _register(client, "dora")
        assert client.delete(f"/api/v1/auth/users/{dora_id}", headers=_h(admin_token)).status_code == 200
        _token, ernie_id = _register(client, "ernie")
        assert ernie_id != dora_id

        resp = client.get("/api/v1/auth/profile", headers=_h(dora_token))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "invalid_token"

    def test_deleted_user_cannot_post_ads(self, api_client: tuple[TestClient, str, int]) -> None:
        client, admin_token, _uid = api_client
        token, uid = _register(client, "ghost")
        assert client.delete(f"/api/v1/auth/users/{uid}", headers=_h(admin_token)).status_code == 200

        resp = client.post("/api/v1/ads", json=AD_BODY, headers=_h(token))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "invalid_token"

    @pytest.mark.parametrize(
        "username, change",
        [("banned_seller", {"is_banned": True}), ("inactive_seller", {"is_active": False})],
    )
    def test_blocked_users_token_rejected(self, api_client: tuple[TestClient, str, int], username, change) -> None:
        client, admin_token, _uid = api_client
        token, uid = _register(client, username)
        ad = _create_ad(client, token)
        client.patch(f"/api/v1/auth/users/{uid}", json=change, headers=_h(admin_token))

        assert client.post("/api/v1/ads", json=AD_BODY, headers=_h(token)).status_code == 403
        assert client.delete(f"/api/v1/ads/{ad['id']}", headers=_h(token)).status_code == 403

    def test_banned_owner_no_longer_sees_own_pending_ad(self, api_client: tuple[TestClient, str, int]) -> None:
        client, admin_token, _uid = api_client
        token, uid = _register(client, "vanished")
        ad = _create_ad(client, token)
        assert client.get(f"/api/v1/ads/{ad['id']}", headers=_h(token)).status_code == 200

        client.patch(f"/api/v1/auth/users/{uid}", json={"is_banned": True}, headers=_h(admin_token))
        assert client.get(f"/api/v1/ads/{ad['id']}", headers=_h(token)).status_code == 404
