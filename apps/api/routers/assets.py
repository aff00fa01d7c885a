"""
Serves stored upload files under the public uploads path.
"""

import mimetypes

from fastapi import APIRouter, HTTPException
from fastapi.responses import FileResponse

from services.upload_storage import resolve_asset_path

router = APIRouter()


@router.api_route("/{filename}", methods=["GET", "HEAD"])
async def get_asset(filename: str, download: bool = False):
    """Stream an uploaded asset; `?download=1` asks the browser to save it instead."""
    path = resolve_asset_path(filename)
    if path is None:
        raise HTTPException(status_code=404, detail="File not found")
    media_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    if download:
        return FileResponse(path, media_type=media_type, filename=path.name)
    return FileResponse(path, media_type=media_type)
