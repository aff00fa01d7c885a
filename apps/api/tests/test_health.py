import pytest
from unittest.mock import patch


@pytest.mark.asyncio
async def test_root_and_liveness(api_client):
    root = await api_client.get("/")
    assert root.status_code == 200
    assert root.json()["status"] == "running"

    live = await api_client.get("/health/live")
    assert live.json() == {"alive": True}


@pytest.mark.asyncio
async def test_readiness_tracks_upload_directory(api_client, upload_dir):
    ready = await api_client.get("/health/ready")
    assert ready.status_code == 200
    assert ready.json() == {"ready": True}

    with patch("routers.health._upload_dir_writable", return_value=False):
        not_ready = await api_client.get("/health/ready")
    assert not_ready.status_code == 503
    assert not_ready.json()["missing"] == ["UPLOAD_DIR"]


@pytest.mark.asyncio
async def test_health_reports_redis_without_degrading(api_client, upload_dir):
    with patch("routers.health.redis.from_url", side_effect=ConnectionError("redis offline")):
        resp = await api_client.get("/health")
    data = resp.json()
    assert data["redis"].startswith("down")
    assert data["uploads"] == "writable"
    assert data["status"] == ("healthy" if data["database"] == "up" else "degraded")
