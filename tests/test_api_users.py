"""
tests/test_api_users.py -- Integration tests for the /api/v1/users routes.

Coverage:
  - admin-only routes: 401 without token, 403 for role `user`
  - list with pagination metadata, newest first
  - create (201, 409 on duplicate), get (200, 404)
  - PATCH /users/{id}: role/isActive/password changes and the [M4] guards
  - DELETE /users/{id}: 204, self-deletion 400 with the record untouched
  - PATCH /users/me: own name/email, 403 on self-promotion, 409 on taken email
  - a demoted admin loses admin access on the next request
"""

from __future__ import annotations

import pytest

from auth.models import Role

PASSWORD = "Secret@123"


@pytest.fixture
def admin(api):
    """(identity, token) for an admin in the harness database."""
    return api.add_user("root@b.com", role=Role.admin, name="Root")


@pytest.fixture
def user(api):
    return api.add_user("user@b.com", name="Plain User")


class TestAccessControl:
    @pytest.mark.parametrize(
        "method,path",
        [
            ("get", "/api/v1/users"),
            ("post", "/api/v1/users"),
            ("get", "/api/v1/users/1"),
            ("patch", "/api/v1/users/1"),
            ("delete", "/api/v1/users/1"),
        ],
    )
    def test_admin_routes_forbidden_for_user(self, api, user, method: str, path: str) -> None:
        _, token = user
        kwargs = {"json": {}} if method in ("post", "patch") else {}
        resp = getattr(api.client, method)(path, headers=api.headers(token), **kwargs)
        assert resp.status_code in (403, 422)
        if resp.status_code == 403:
            assert resp.json()["error"]["code"] == "forbidden"

    def test_list_forbidden_for_user(self, api, user) -> None:
        _, token = user
        resp = api.client.get("/api/v1/users", headers=api.headers(token))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_list_requires_auth(self, api) -> None:
        resp = api.client.get("/api/v1/users")
        assert resp.status_code == 401

    def test_demoted_admin_loses_access(self, api, admin) -> None:
        """Authorization reads the stored role, not the role claim in the token."""
        _, root_token = admin
        second, second_token = api.add_user("second@b.com", role=Role.admin)
        assert api.client.get("/api/v1/users", headers=api.headers(second_token)).status_code == 200

        resp = api.client.patch(
            f"/api/v1/users/{second.id}", json={"role": "user"}, headers=api.headers(root_token)
        )
        assert resp.status_code == 200
        assert api.client.get("/api/v1/users", headers=api.headers(second_token)).status_code == 403


class TestListAndGet:
    def test_list_paginated(self, api, admin) -> None:
        _, token = admin
        for i in range(3):
            api.clock.advance(1)
            api.add_user(f"u{i}@b.com")
        resp = api.client.get("/api/v1/users", params={"page": 1, "limit": 2}, headers=api.headers(token))
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert [u["email"] for u in data["users"]] == ["u2@b.com", "u1@b.com"]
        assert data["pagination"] == {"page": 1, "limit": 2, "total": 4, "pages": 2}

    def test_list_default_limit(self, api, admin) -> None:
        _, token = admin
        data = api.client.get("/api/v1/users", headers=api.headers(token)).json()
        assert data["pagination"]["limit"] == 10
        assert data["pagination"]["page"] == 1

    def test_list_bad_page(self, api, admin) -> None:
        _, token = admin
        resp = api.client.get("/api/v1/users", params={"page": 0}, headers=api.headers(token))
        assert resp.status_code == 422

    def test_get_user(self, api, admin, user) -> None:
        _, token = admin
        target, _ = user
        resp = api.client.get(f"/api/v1/users/{target.id}", headers=api.headers(token))
        assert resp.status_code == 200
        data = resp.json()
        assert data["email"] == "user@b.com"
        assert data["lastLogin"] is not None
        assert "hashed_password" not in data
        assert "reset_token_hash" not in data

    def test_get_missing_user(self, api, admin) -> None:
        _, token = admin
        resp = api.client.get("/api/v1/users/9999", headers=api.headers(token))
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"


class TestCreate:
    def test_create_admin_user(self, api, admin) -> None:
        _, token = admin
        resp = api.client.post(
            "/api/v1/users",
            json={"name": "Ops", "email": "ops@b.com", "password": PASSWORD, "role": "admin"},
            headers=api.headers(token),
        )
        assert resp.status_code == 201, resp.text
        assert resp.json()["role"] == "admin"
        login = api.client.post("/api/v1/auth/login", json={"email": "ops@b.com", "password": PASSWORD})
        assert login.status_code == 200

    def test_create_duplicate(self, api, admin, user) -> None:
        _, token = admin
        resp = api.client.post(
            "/api/v1/users",
            json={"name": "Dup", "email": "USER@b.com", "password": PASSWORD},
            headers=api.headers(token),
        )
        assert resp.status_code == 409

    def test_create_unknown_role(self, api, admin) -> None:
        _, token = admin
        resp = api.client.post(
            "/api/v1/users",
            json={"name": "X", "email": "x@b.com", "password": PASSWORD, "role": "superuser"},
            headers=api.headers(token),
        )
        assert resp.status_code == 422


class TestUpdate:
    def test_deactivate_user_invalidates_token(self, api, admin, user) -> None:
        _, admin_token = admin
        target, user_token = user
        resp = api.client.patch(
            f"/api/v1/users/{target.id}", json={"isActive": False}, headers=api.headers(admin_token)
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["isActive"] is False

        me = api.client.get("/api/v1/auth/me", headers=api.headers(user_token))
        assert me.status_code == 401
        assert me.json()["error"]["code"] == "invalid_token"

    def test_self_deactivation_blocked(self, api, admin) -> None:
        root, token = admin
        resp = api.client.patch(f"/api/v1/users/{root.id}", json={"isActive": False}, headers=api.headers(token))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"

    def test_last_admin_demotion_blocked(self, api, admin) -> None:
        root, token = admin
        resp = api.client.patch(f"/api/v1/users/{root.id}", json={"role": "user"}, headers=api.headers(token))
        assert resp.status_code == 400
        assert "last active admin" in resp.json()["error"]["message"]

    def test_admin_sets_password(self, api, admin, user) -> None:
        _, admin_token = admin
        target, user_token = user
        api.clock.advance(5)
        resp = api.client.patch(
            f"/api/v1/users/{target.id}", json={"password": "Fresh@1234"}, headers=api.headers(admin_token)
        )
        assert resp.status_code == 200
        assert api.client.get("/api/v1/auth/me", headers=api.headers(user_token)).status_code == 401
        login = api.client.post("/api/v1/auth/login", json={"email": "user@b.com", "password": "Fresh@1234"})
        assert login.status_code == 200

    def test_empty_patch(self, api, admin, user) -> None:
        _, token = admin
        target, _ = user
        resp = api.client.patch(f"/api/v1/users/{target.id}", json={}, headers=api.headers(token))
        assert resp.status_code == 400

    def test_patch_missing_user(self, api, admin) -> None:
        _, token = admin
        resp = api.client.patch("/api/v1/users/9999", json={"name": "Nobody"}, headers=api.headers(token))
        assert resp.status_code == 404


class TestDelete:
    def test_delete_user(self, api, admin, user) -> None:
        _, token = admin
        target, _ = user
        resp = api.client.delete(f"/api/v1/users/{target.id}", headers=api.headers(token))
        assert resp.status_code == 204
        assert api.client.get(f"/api/v1/users/{target.id}", headers=api.headers(token)).status_code == 404

    def test_self_deletion_blocked(self, api, admin) -> None:
        root, token = admin
        resp = api.client.delete(f"/api/v1/users/{root.id}", headers=api.headers(token))
        assert resp.status_code == 400
        assert api.store.get_by_id(root.id) is not None
        assert api.client.get("/api/v1/auth/me", headers=api.headers(token)).status_code == 200

    def test_delete_missing(self, api, admin) -> None:
        _, token = admin
        assert api.client.delete("/api/v1/users/9999", headers=api.headers(token)).status_code == 404


class TestProfile:
    def test_update_own_profile(self, api, user) -> None:
        _, token = user
        resp = api.client.patch(
            "/api/v1/users/me", json={"name": "Renamed", "email": "Renamed@b.com"}, headers=api.headers(token)
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["name"] == "Renamed"
        assert resp.json()["email"] == "renamed@b.com"

    def test_self_promotion_forbidden(self, api, user) -> None:
        target, token = user
        resp = api.client.patch("/api/v1/users/me", json={"role": "admin"}, headers=api.headers(token))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"
        assert api.store.get_by_id(target.id).role is Role.user

    def test_taken_email(self, api, admin, user) -> None:
        _, token = user
        resp = api.client.patch("/api/v1/users/me", json={"email": "root@b.com"}, headers=api.headers(token))
        assert resp.status_code == 409

    def test_requires_auth(self, api) -> None:
        assert api.client.patch("/api/v1/users/me", json={"name": "X"}).status_code == 401
