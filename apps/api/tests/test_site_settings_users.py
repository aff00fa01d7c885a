import pytest
from unittest.mock import patch

from main import app
from services.site_settings import DEFAULT_SITE_SETTINGS, SiteSettingsCache


@pytest.mark.asyncio
async def test_public_settings_return_seeded_defaults(api_client):
    resp = await api_client.get("/api/settings")
    assert resp.status_code == 200
    assert resp.json() == DEFAULT_SITE_SETTINGS


@pytest.mark.asyncio
async def test_admin_partial_update_invalidates_cache(api_client, create_user):
    _, admin = await create_user("urahara", role="admin")

    before = await api_client.get("/api/settings")
    assert before.json()["site_name"] == "ShinigamiStream"
    assert isinstance(app.state.site_settings_cache, SiteSettingsCache)
    assert app.state.site_settings_cache.is_loaded

    resp = await api_client.post(
        "/api/settings",
        json={"site_name": "Seireitei TV", "hero_image": "/uploads/logo-1-1.png"},
        headers=admin,
    )
    assert resp.status_code == 200
    assert resp.json() == {
        "message": "Site settings updated successfully",
        "updated": ["hero_image", "site_name"],
    }
    assert not app.state.site_settings_cache.is_loaded

    after = (await api_client.get("/api/settings")).json()
    assert after["site_name"] == "Seireitei TV"
    assert after["hero_image"] == "/uploads/logo-1-1.png"
    assert after["site_logo"] == DEFAULT_SITE_SETTINGS["site_logo"]


@pytest.mark.asyncio
async def test_settings_update_is_admin_only(api_client, create_user):
    _, staff = await create_user("soi_fon", role="staff")
    resp = await api_client.post("/api/settings", json={"site_name": "Hijack"}, headers=staff)
    assert resp.status_code == 403
    assert (await api_client.get("/api/settings")).json()["site_name"] == "ShinigamiStream"


@pytest.mark.asyncio
async def test_settings_update_rejects_unknown_or_empty_payload(api_client, create_user):
    _, admin = await create_user("yoruichi", role="admin")

    unknown = await api_client.post("/api/settings", json={"theme": "dark"}, headers=admin)
    assert unknown.status_code == 400

    empty = await api_client.post("/api/settings", json={}, headers=admin)
    assert empty.status_code == 400
    assert empty.json()["message"] == "No settings supplied"


@pytest.mark.asyncio
async def test_admin_lists_users_and_changes_roles(api_client, create_user):
    _, admin = await create_user("kyoraku", role="admin")
    target_id, target = await create_user("chad")

    listing = await api_client.get("/api/users", headers=admin)
    assert listing.status_code == 200
    rows = listing.json()
    assert {row["username"] for row in rows} == {"kyoraku", "chad"}
    assert all("password_hash" not in row for row in rows)

    promoted = await api_client.put(f"/api/users/{target_id}", json={"role": "staff"}, headers=admin)
    assert promoted.status_code == 200
    assert promoted.json()["message"] == "User role updated successfully"

    # Roles are re-read on every request, so the existing token gains staff rights.
    me = await api_client.get("/api/auth/me", headers=target)
    assert me.json()["role"] == "staff"


@pytest.mark.asyncio
async def test_role_update_errors(api_client, create_user):
    _, admin = await create_user("ukitake", role="admin")
    target_id, staff = await create_user("rangiku", role="staff")

    invalid = await api_client.put(f"/api/users/{target_id}", json={"role": "captain"}, headers=admin)
    assert invalid.status_code == 400
    assert invalid.json()["message"] == "Invalid role"

    missing = await api_client.put("/api/users/4040", json={"role": "staff"}, headers=admin)
    assert missing.status_code == 404
    assert missing.json()["message"] == "User not found"

    assert (await api_client.get("/api/users", headers=staff)).status_code == 403
    self_promotion = await api_client.put(f"/api/users/{target_id}", json={"role": "admin"}, headers=staff)
    assert self_promotion.status_code == 403


@pytest.mark.asyncio
async def test_cache_drops_a_load_that_raced_an_invalidate():
    cache = SiteSettingsCache()
    reads = []

    async def racing_load(db):
        reads.append(db)
        if len(reads) == 1:
            cache.invalidate()
            return {"site_name": "stale"}
        return {"site_name": "fresh"}

    with patch("services.site_settings.load_settings_map", side_effect=racing_load):
        first = await cache.get(db="session")
        assert first == {"site_name": "stale"}
        assert not cache.is_loaded

        second = await cache.get(db="session")
        assert second == {"site_name": "fresh"}
        assert cache.is_loaded
        assert await cache.get(db="session") == {"site_name": "fresh"}

    assert len(reads) == 2
