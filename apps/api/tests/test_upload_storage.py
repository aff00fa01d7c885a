import threading
from unittest.mock import patch

import pytest

from services.upload_storage import (
    _MultipartFileReceiver,
    UploadRejected,
    filename_from_url,
    generate_stored_filename,
    is_allowed_mime,
    log_orphaned_assets,
    parse_content_length,
    receive_single_file,
    resolve_asset_path,
)

BOUNDARY = "catalogboundary"
CONTENT_TYPE = f"multipart/form-data; boundary={BOUNDARY}"


def _multipart(field: str, filename: str, mime: str, payload: bytes, extra_text_field: bool = False) -> bytes:
    parts = []
    if extra_text_field:
        parts.append(
            f'--{BOUNDARY}\r\nContent-Disposition: form-data; name="note"\r\n\r\nhello\r\n'.encode()
        )
    parts.append(
        (
            f"--{BOUNDARY}\r\n"
            f'Content-Disposition: form-data; name="{field}"; filename="{filename}"\r\n'
            f"Content-Type: {mime}\r\n\r\n"
        ).encode()
        + payload
        + b"\r\n"
    )
    parts.append(f"--{BOUNDARY}--\r\n".encode())
    return b"".join(parts)


async def _chunks(body: bytes, size: int):
    for offset in range(0, len(body), size):
        yield body[offset:offset + size]


@pytest.mark.asyncio
async def test_receives_file_split_across_small_chunks(upload_dir):
    payload = bytes(range(256)) * 40
    body = _multipart("video", "clip.MP4", "video/mp4", payload, extra_text_field=True)

    stored = await receive_single_file(_chunks(body, 7), content_type=CONTENT_TYPE, field_name="video")

    assert stored.filename.startswith("video-")
    assert stored.filename.endswith(".mp4")
    assert stored.url == f"/uploads/{stored.filename}"
    assert stored.size_bytes == len(payload)
    assert stored.mime_type == "video/mp4"
    assert stored.original_filename == "clip.MP4"
    assert stored.path.read_bytes() == payload
    assert [p.name for p in upload_dir.iterdir()] == [stored.filename]


@pytest.mark.asyncio
async def test_size_limit_is_inclusive(upload_dir):
    body = _multipart("logo", "logo.png", "image/png", b"x" * 100)
    stored = await receive_single_file(
        _chunks(body, 64), content_type=CONTENT_TYPE, field_name="logo", max_bytes=100
    )
    assert stored.size_bytes == 100

    with pytest.raises(UploadRejected) as exc_info:
        await receive_single_file(
            _chunks(_multipart("logo", "logo.png", "image/png", b"x" * 101), 64),
            content_type=CONTENT_TYPE,
            field_name="logo",
            max_bytes=100,
        )
    assert exc_info.value.status_code == 413
    assert [p.name for p in upload_dir.iterdir()] == [stored.filename]


@pytest.mark.asyncio
async def test_truncated_body_leaves_nothing_behind(upload_dir):
    body = _multipart("cover", "cover.jpg", "image/jpeg", b"y" * 5000)
    truncated = body[: len(body) // 2]

    with pytest.raises(UploadRejected) as exc_info:
        await receive_single_file(_chunks(truncated, 512), content_type=CONTENT_TYPE, field_name="cover")

    assert exc_info.value.status_code == 400
    assert list(upload_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_bad_content_type_and_boundary(upload_dir):
    with pytest.raises(UploadRejected) as not_multipart:
        await receive_single_file(_chunks(b"{}", 2), content_type="application/json", field_name="cover")
    assert not_multipart.value.message == "Expected a multipart/form-data request"

    with pytest.raises(UploadRejected) as no_boundary:
        await receive_single_file(_chunks(b"", 2), content_type="multipart/form-data", field_name="cover")
    assert no_boundary.value.message == "Missing multipart boundary"


def test_helpers():
    assert is_allowed_mime("IMAGE/PNG")
    assert is_allowed_mime("video/webm")
    assert not is_allowed_mime("application/octet-stream")
    assert not is_allowed_mime("")

    assert parse_content_length("42") == 42
    assert parse_content_length("-1") is None
    assert parse_content_length("abc") is None
    assert parse_content_length(None) is None

    name = generate_stored_filename("thumbnail", "../../etc/My Thumb.JPEG")
    assert name.startswith("thumbnail-")
    assert name.endswith(".jpeg")
    assert "/" not in name

    assert filename_from_url("/uploads/cover-1-2.png") == "cover-1-2.png"
    assert filename_from_url("https://cdn.example.com/cover.png") is None
    assert filename_from_url(None) is None


def test_resolve_asset_path_blocks_traversal(upload_dir):
    (upload_dir / "logo-1-1.png").write_bytes(b"png")
    assert resolve_asset_path("logo-1-1.png") == upload_dir / "logo-1-1.png"
    assert resolve_asset_path("../catalog.db") is None
    assert resolve_asset_path(".logo-1-1.png.part") is None
    assert resolve_asset_path("") is None


def test_orphaned_assets_are_reported_not_deleted(upload_dir):
    (upload_dir / "video-1-1.mp4").write_bytes(b"v")
    orphaned = log_orphaned_assets(["/uploads/video-1-1.mp4", None, "https://elsewhere/x.mp4"], "test")
    assert orphaned == ["video-1-1.mp4"]
    assert (upload_dir / "video-1-1.mp4").exists()


@pytest.mark.asyncio
async def test_chunks_are_written_off_the_event_loop_thread(upload_dir):
    loop_thread = threading.get_ident()
    feeding_threads = set()
    original_feed = _MultipartFileReceiver.feed

    def recording_feed(self, chunk):
        feeding_threads.add(threading.get_ident())
        return original_feed(self, chunk)

    body = _multipart("cover", "cover.png", "image/png", b"z" * 4096)
    with patch.object(_MultipartFileReceiver, "feed", recording_feed):
        stored = await receive_single_file(_chunks(body, 1024), content_type=CONTENT_TYPE, field_name="cover")

    assert stored.path.read_bytes() == b"z" * 4096
    assert feeding_threads
    assert loop_thread not in feeding_threads
