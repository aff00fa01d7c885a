"""
Upload receiver endpoints: one multipart file per request, stored under a generated name.

The route is authorized before the body is read; the body is then parsed as a
stream so oversized or mistyped files are refused without buffering them.
"""

import logging
from dataclasses import dataclass

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import ClientDisconnect

from database import get_db
from routers.auth_scope import AuthContext, require_capability
from services.permissions import Capability
from services.upload_storage import UploadRejected, parse_content_length, receive_single_file

router = APIRouter()
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadTarget:
    slug: str
    field_name: str
    label: str
    capability: Capability


UPLOAD_TARGETS = (
    UploadTarget("site-logo", "logo", "Logo", Capability.MANAGE_SITE),
    UploadTarget("anime-cover", "cover", "Cover", Capability.UPLOAD_MEDIA),
    UploadTarget("episode-thumbnail", "thumbnail", "Thumbnail", Capability.UPLOAD_MEDIA),
    UploadTarget("episode-video", "video", "Video", Capability.UPLOAD_MEDIA),
)


class UploadResponse(BaseModel):
    message: str
    filename: str
    url: str


def _multipart_openapi(field_name: str) -> dict:
    return {
        "requestBody": {
            "required": True,
            "content": {
                "multipart/form-data": {
                    "schema": {
                        "type": "object",
                        "required": [field_name],
                        "properties": {field_name: {"type": "string", "format": "binary"}},
                    }
                }
            },
        }
    }


def _make_upload_endpoint(target: UploadTarget):
    async def upload_endpoint(
        request: Request,
        auth: AuthContext = Depends(require_capability(target.capability)),
        db: AsyncSession = Depends(get_db),
    ) -> UploadResponse:
        # Same session the auth check used; hand its connection back before a long body stream.
        await db.close()
        try:
            stored = await receive_single_file(
                request.stream(),
                content_type=request.headers.get("content-type", ""),
                content_length=parse_content_length(request.headers.get("content-length")),
                field_name=target.field_name,
            )
        except UploadRejected as exc:
            logger.warning("%s upload rejected for user %s: %s", target.label, auth.user_id, exc.message)
            raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc
        except ClientDisconnect as exc:
            logger.info("%s upload by user %s aborted by client", target.label, auth.user_id)
            raise HTTPException(status_code=400, detail="Upload interrupted") from exc
        except OSError as exc:
            logger.exception("Error storing %s upload: %s", target.label.lower(), exc)
            raise HTTPException(status_code=500, detail=f"Failed to upload {target.label.lower()}") from exc

        logger.info(
            "%s uploaded by user %s: %s (%d bytes, %s)",
            target.label,
            auth.user_id,
            stored.url,
            stored.size_bytes,
            stored.mime_type,
        )
        return UploadResponse(
            message=f"{target.label} uploaded successfully",
            filename=stored.filename,
            url=stored.url,
        )

    upload_endpoint.__name__ = f"upload_{target.slug.replace('-', '_')}"
    return upload_endpoint


for _target in UPLOAD_TARGETS:
    router.add_api_route(
        f"/{_target.slug}",
        _make_upload_endpoint(_target),
        methods=["POST"],
        response_model=UploadResponse,
        summary=f"Upload {_target.label.lower()} (multipart field `{_target.field_name}`)",
        openapi_extra=_multipart_openapi(_target.field_name),
    )
