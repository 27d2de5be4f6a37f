"""Tests for the users API: sign-up, guards, caching and soft delete."""

import json

import pytest
from sqlalchemy import select

from tests.conftest import headers_for
from wellmesh.models.user import Role, User

USERS = "/api/wellmesh/users"


def signup_payload(**overrides) -> dict:
    payload = {
        "email": "jordan@example.com",
        "username": "jordan",
        "password": "long-enough-password",
        "role": "manager",
        "secret_code": "manager-signup-code",
    }
    payload.update(overrides)
    return payload


class TestCreate:
    @pytest.mark.asyncio
    async def test_signup_creates_unverified_user(self, async_client, db_session, kv_store):
        response = await async_client.post(f"{USERS}/create", json=signup_payload())

        assert response.status_code == 201
        assert response.json()["verify_url"] is None

        user = (
            await db_session.execute(select(User).where(User.username == "jordan"))
        ).scalar_one()
        assert user.role == Role.MANAGER
        assert user.is_verified is False
        assert user.password_hash != "long-enough-password"

        verify_values = [v for k, (v, _) in kv_store._data.items() if k.startswith("verify:")]
        assert verify_values == [str(user.id)]

    @pytest.mark.asyncio
    async def test_wrong_secret_code(self, async_client):
        response = await async_client.post(
            f"{USERS}/create", json=signup_payload(secret_code="staff-signup-code")
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_missing_secret_code(self, async_client):
        response = await async_client.post(
            f"{USERS}/create", json=signup_payload(secret_code=None)
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_duplicate_email(self, async_client, staff_user):
        response = await async_client.post(
            f"{USERS}/create", json=signup_payload(email=staff_user.email.upper())
        )
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_invalid_body(self, async_client):
        response = await async_client.post(
            f"{USERS}/create", json=signup_payload(role="owner", password="short")
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_signup_invalidates_list_cache(self, async_client, kv_store):
        await kv_store.set("users:list:page=1:limit=10:role=:search=", "{}", 60)

        await async_client.post(f"{USERS}/create", json=signup_payload())

        assert await kv_store.get("users:list:page=1:limit=10:role=:search=") is None


class TestList:
    @pytest.mark.asyncio
    async def test_staff_forbidden(self, async_client, staff_user):
        response = await async_client.get(f"{USERS}/", headers=headers_for(staff_user))
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_requires_token(self, async_client):
        response = await async_client.get(f"{USERS}/")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_manager_lists_active_users(
        self, async_client, manager_user, staff_user, user_factory
    ):
        await user_factory(username="gone", is_deleted=True)

        response = await async_client.get(f"{USERS}/", headers=headers_for(manager_user))

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert data["page"] == 1
        assert data["total_pages"] == 1
        assert {u["username"] for u in data["users"]} == {"manager", "staff"}

    @pytest.mark.asyncio
    async def test_role_and_search_filters(self, async_client, admin_user, user_factory):
        await user_factory(username="alice")
        await user_factory(username="bob")

        by_role = await async_client.get(
            f"{USERS}/", params={"role": "admin"}, headers=headers_for(admin_user)
        )
        by_search = await async_client.get(
            f"{USERS}/", params={"search": "ALI"}, headers=headers_for(admin_user)
        )

        assert [u["username"] for u in by_role.json()["users"]] == ["admin"]
        assert [u["username"] for u in by_search.json()["users"]] == ["alice"]

    @pytest.mark.asyncio
    async def test_search_wildcards_are_literal(self, async_client, admin_user, user_factory):
        await user_factory(username="dana_r")
        await user_factory(username="dana")

        underscore = await async_client.get(
            f"{USERS}/", params={"search": "_"}, headers=headers_for(admin_user)
        )
        percent = await async_client.get(
            f"{USERS}/", params={"search": "%"}, headers=headers_for(admin_user)
        )

        assert [u["username"] for u in underscore.json()["users"]] == ["dana_r"]
        assert percent.json()["users"] == []

    @pytest.mark.asyncio
    async def test_paging(self, async_client, admin_user, user_factory):
        for _ in range(4):
            await user_factory()

        response = await async_client.get(
            f"{USERS}/", params={"page": 2, "limit": 2}, headers=headers_for(admin_user)
        )

        data = response.json()
        assert data["total"] == 5
        assert data["total_pages"] == 3
        assert len(data["users"]) == 2

    @pytest.mark.asyncio
    async def test_list_is_cached(self, async_client, kv_store, admin_user):
        await async_client.get(f"{USERS}/", headers=headers_for(admin_user))

        key = "users:list:page=1:limit=10:role=:search="
        cached = json.loads(await kv_store.get(key))
        assert cached["total"] == 1
        assert await kv_store.ttl(key) == 60

    @pytest.mark.asyncio
    async def test_store_outage_fails_closed(self, async_client, failing_store, admin_user):
        from wellmesh.core.kv_store import get_kv_store
        from wellmesh.main import app

        app.dependency_overrides[get_kv_store] = lambda: failing_store

        response = await async_client.get(f"{USERS}/", headers=headers_for(admin_user))

        assert response.status_code == 503


class TestGet:
    @pytest.mark.asyncio
    async def test_own_profile(self, async_client, staff_user):
        response = await async_client.get(
            f"{USERS}/{staff_user.id}", headers=headers_for(staff_user)
        )

        assert response.status_code == 200
        assert response.json()["email"] == staff_user.email

    @pytest.mark.asyncio
    async def test_other_profile_forbidden(self, async_client, staff_user, manager_user):
        response = await async_client.get(
            f"{USERS}/{manager_user.id}", headers=headers_for(staff_user)
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_admin_reads_any_profile(self, async_client, admin_user, staff_user):
        response = await async_client.get(
            f"{USERS}/{staff_user.id}", headers=headers_for(admin_user)
        )
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_missing_user(self, async_client, admin_user):
        response = await async_client.get(f"{USERS}/9999", headers=headers_for(admin_user))
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_profile_served_from_cache(self, async_client, kv_store, staff_user):
        cached = {
            "id": staff_user.id,
            "username": "from-cache",
            "email": staff_user.email,
            "role": "staff",
            "is_verified": True,
        }
        await kv_store.set(f"users:{staff_user.id}", json.dumps(cached), 60)

        response = await async_client.get(
            f"{USERS}/{staff_user.id}", headers=headers_for(staff_user)
        )

        assert response.json()["username"] == "from-cache"


class TestUpdate:
    @pytest.mark.asyncio
    async def test_update_own_profile(self, async_client, kv_store, staff_user):
        await kv_store.set(f"users:{staff_user.id}", "{}", 60)

        response = await async_client.put(
            f"{USERS}/update/{staff_user.id}",
            json={"phone": "+1 555 0100"},
            headers=headers_for(staff_user),
        )

        assert response.status_code == 200
        assert response.json()["phone"] == "+1 555 0100"
        assert await kv_store.get(f"users:{staff_user.id}") is None

    @pytest.mark.asyncio
    async def test_update_other_profile_forbidden(self, async_client, staff_user, manager_user):
        response = await async_client.put(
            f"{USERS}/update/{manager_user.id}",
            json={"phone": "x"},
            headers=headers_for(staff_user),
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_non_admin_cannot_change_role(self, async_client, manager_user):
        response = await async_client.put(
            f"{USERS}/update/{manager_user.id}",
            json={"role": "admin"},
            headers=headers_for(manager_user),
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_admin_changes_role(self, async_client, admin_user, staff_user):
        response = await async_client.put(
            f"{USERS}/update/{staff_user.id}",
            json={"role": "manager"},
            headers=headers_for(admin_user),
        )

        assert response.status_code == 200
        assert response.json()["role"] == "manager"

    @pytest.mark.asyncio
    async def test_taken_username_conflicts(self, async_client, admin_user, staff_user):
        response = await async_client.put(
            f"{USERS}/update/{staff_user.id}",
            json={"username": admin_user.username},
            headers=headers_for(staff_user),
        )

        assert response.status_code == 409
        assert "error" in response.json()

        profile = await async_client.get(
            f"{USERS}/{staff_user.id}", headers=headers_for(staff_user)
        )
        assert profile.json()["username"] == "staff"

    @pytest.mark.asyncio
    async def test_keeping_own_username(self, async_client, staff_user):
        response = await async_client.put(
            f"{USERS}/update/{staff_user.id}",
            json={"username": "staff", "phone": "+1 555 0101"},
            headers=headers_for(staff_user),
        )

        assert response.status_code == 200
        assert response.json()["phone"] == "+1 555 0101"


class TestRemove:
    @pytest.mark.asyncio
    async def test_admin_soft_deletes(self, async_client, db_session, admin_user, staff_user):
        response = await async_client.put(
            f"{USERS}/remove/{staff_user.id}", headers=headers_for(admin_user)
        )

        assert response.status_code == 200
        await db_session.refresh(staff_user)
        assert staff_user.is_deleted is True

        missing = await async_client.get(
            f"{USERS}/{staff_user.id}", headers=headers_for(admin_user)
        )
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_owner_cannot_remove_self(self, async_client, manager_user):
        response = await async_client.put(
            f"{USERS}/remove/{manager_user.id}", headers=headers_for(manager_user)
        )
        assert response.status_code == 403
