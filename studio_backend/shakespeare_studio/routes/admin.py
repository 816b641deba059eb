import logging
import math
from typing import List, Literal, Optional
from urllib.parse import unquote, urlparse

from fastapi import APIRouter, Depends, Query

from .. import settings
from ..auth import admin_uid
from ..deps import get_repo
from ..errors import NotFound, StoreError
from ..repository import Repository
from ..schemas import DeleteVideosRequest, Video, VideoStatus
from ..store import Filter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])

DEFAULT_LIMIT = 50
MAX_LIMIT = 100


def storage_name(url: str) -> Optional[str]:
    name = unquote(urlparse(url).path.rstrip("/").rsplit("/", 1)[-1])
    return name or None


@router.get("/videos")
async def list_videos(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    status: Optional[VideoStatus] = None,
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    uid: Optional[str] = None,
    search: Optional[str] = None,
    mode: Optional[Literal["instant", "workflow"]] = None,
    _admin: str = Depends(admin_uid),
    repo: Repository = Depends(get_repo),
):
    filters: List[Filter] = []
    if status:
        filters.append(("status", "eq", status))
    if date_from:
        filters.append(("created_at", "gte", date_from))
    if date_to:
        filters.append(("created_at", "lte", date_to))
    if uid:
        filters.append(("uid", "eq", uid))
    if search:
        filters.append(("title", "ilike", f"%{search}%"))
    if mode:
        workflow_ids = await repo.workflow_ids(instant_mode=mode == "instant")
        if not workflow_ids:
            return {"videos": [], "pagination": {"total": 0, "page": page, "limit": limit, "totalPages": 0}}
        filters.append(("workflow_id", "in", workflow_ids))

    rows, total = await repo.search_videos(filters, page, limit)
    return {
        "videos": [Video.model_validate(r).model_dump(mode="json") for r in rows],
        "pagination": {"total": total, "page": page, "limit": limit, "totalPages": math.ceil(total / limit)},
    }


@router.delete("/videos")
async def delete_videos(body: DeleteVideosRequest, admin: str = Depends(admin_uid),
                        repo: Repository = Depends(get_repo)):
    videos = await repo.videos_by_ids(body.videoIds)
    if not videos:
        raise NotFound("No videos found")

    storage_errors = []
    for video in videos:
        name = storage_name(video["url"]) if video.get("url") else None
        if not name:
            continue
        try:
            await repo.remove_object(settings.VIDEO_BUCKET, name)
        except StoreError as e:
            logger.error(f"Failed to delete storage object for video {video['id']}: {e.message}")
            storage_errors.append({"videoId": str(video["id"]), "error": e.message})

    deleted = await repo.delete_videos([v["id"] for v in videos])
    logger.info(f"Admin {admin} deleted {deleted} videos ({len(storage_errors)} storage errors)")
    data = {"deletedCount": deleted}
    if storage_errors:
        data["storageErrors"] = storage_errors
    return {"success": True, "data": data}
