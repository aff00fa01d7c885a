import httpx
import pytest
from unittest.mock import patch

from uploader import (
    HttpUploadTransport,
    UploadController,
    UploadError,
    UploadErrorKind,
    UploadSource,
    UploadState,
    UploadTarget,
)


def _token(headers):
    return headers["Authorization"].split(" ", 1)[1]


def test_targets_map_to_endpoints_and_fields():
    assert UploadTarget.SITE_LOGO.path == "/api/upload/site-logo"
    assert UploadTarget.SITE_LOGO.field_name == "logo"
    assert UploadTarget.ANIME_COVER.field_name == "cover"
    assert UploadTarget.EPISODE_THUMBNAIL.field_name == "thumbnail"
    assert UploadTarget.EPISODE_VIDEO.path == "/api/upload/episode-video"


@pytest.mark.asyncio
async def test_streams_file_to_server_with_monotonic_progress(api_client, create_user, upload_dir):
    _, staff = await create_user("shinji", role="staff")
    payload = b"\x00\x01" * (8 * 1024)
    source = UploadSource.from_bytes("opening.mp4", payload, "video/mp4")
    transport = HttpUploadTransport(api_client, UploadTarget.EPISODE_VIDEO, token=_token(staff), chunk_size=1024)

    progress = []
    result = await transport.send(source, progress.append)

    assert result.url == f"/uploads/{result.filename}"
    assert result.message == "Video uploaded successfully"
    assert (upload_dir / result.filename).read_bytes() == payload
    assert progress == sorted(progress)
    assert progress[-1] == 100
    assert len(progress) > 10


@pytest.mark.asyncio
async def test_reads_source_from_disk(api_client, create_user, upload_dir, tmp_path):
    _, staff = await create_user("hiyori", role="staff")
    local = tmp_path / "thumb.png"
    local.write_bytes(b"\x89PNG" + b"p" * 3000)
    source = UploadSource.from_path(local)
    assert source.content_type == "image/png"
    assert source.size == 3004

    transport = HttpUploadTransport(api_client, UploadTarget.EPISODE_THUMBNAIL, token=_token(staff), chunk_size=512)
    result = await transport.send(source, lambda value: None)
    assert (upload_dir / result.filename).read_bytes() == local.read_bytes()


@pytest.mark.asyncio
async def test_server_size_rejection_maps_to_file_too_large(api_client, create_user, upload_dir):
    _, staff = await create_user("love", role="staff")
    source = UploadSource.from_bytes("big.mp4", b"v" * 4096, "video/mp4")
    transport = HttpUploadTransport(api_client, UploadTarget.EPISODE_VIDEO, token=_token(staff))

    with patch("config.settings.MAX_UPLOAD_BYTES", 1024):
        with pytest.raises(UploadError) as exc_info:
            await transport.send(source, lambda value: None)

    assert exc_info.value.kind is UploadErrorKind.FILE_TOO_LARGE
    assert exc_info.value.status_code == 413
    assert list(upload_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_server_refusal_carries_server_message(api_client, create_user, upload_dir):
    _, staff = await create_user("rose", role="staff")
    source = UploadSource.from_bytes("logo.png", b"png", "image/png")
    transport = HttpUploadTransport(api_client, UploadTarget.SITE_LOGO, token=_token(staff))

    with pytest.raises(UploadError) as exc_info:
        await transport.send(source, lambda value: None)

    assert exc_info.value.kind is UploadErrorKind.SERVER_REJECTED
    assert exc_info.value.status_code == 403
    assert exc_info.value.user_message == "Insufficient permissions"


@pytest.mark.asyncio
async def test_transport_failures_are_classified():
    source = UploadSource.from_bytes("cover.png", b"png", "image/png")

    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    def stall(request):
        raise httpx.ReadTimeout("timed out", request=request)

    def garbled(request):
        return httpx.Response(200, json={"message": "ok"})

    expectations = [
        (refuse, UploadErrorKind.NETWORK),
        (stall, UploadErrorKind.TIMEOUT),
        (garbled, UploadErrorKind.UNKNOWN),
    ]
    for handler, kind in expectations:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test") as client:
            transport = HttpUploadTransport(client, UploadTarget.ANIME_COVER, token="t")
            with pytest.raises(UploadError) as exc_info:
                await transport.send(source, lambda value: None)
        assert exc_info.value.kind is kind


@pytest.mark.asyncio
async def test_request_carries_multipart_framing_and_auth():
    captured = {}

    async def handler(request):
        captured["headers"] = request.headers
        captured["body"] = await request.aread()
        return httpx.Response(200, json={"message": "Cover uploaded successfully", "filename": "cover-1-1.png", "url": "/uploads/cover-1-1.png"})

    source = UploadSource.from_bytes('we"ird.png', b"PNGDATA", "image/png")
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test") as client:
        result = await HttpUploadTransport(client, UploadTarget.ANIME_COVER, token="abc").send(source, lambda v: None)

    headers = captured["headers"]
    body = captured["body"]
    assert result.filename == "cover-1-1.png"
    assert headers["authorization"] == "Bearer abc"
    assert headers["content-type"].startswith("multipart/form-data; boundary=")
    assert int(headers["content-length"]) == len(body)
    assert b'name="cover"; filename="we%22ird.png"' in body
    assert b"PNGDATA" in body


@pytest.mark.asyncio
async def test_controller_drives_real_upload(api_client, create_user, upload_dir):
    _, admin = await create_user("ichimaru", role="admin")
    controller = UploadController(HttpUploadTransport(api_client, UploadTarget.SITE_LOGO, token=_token(admin)))

    await controller.select(UploadSource.from_bytes("brand.png", b"logo-bytes", "image/png"))
    result = await controller.wait()

    assert controller.state is UploadState.COMPLETED
    assert result.url.startswith("/uploads/logo-")
    assert (upload_dir / result.filename).read_bytes() == b"logo-bytes"
