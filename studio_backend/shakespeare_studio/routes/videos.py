import hmac
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header

from .. import settings
from ..auth import current_uid, normalize_uid
from ..deps import get_repo
from ..errors import AuthenticationRequired, NotFound
from ..repository import Repository
from ..schemas import VideoCallback
from ..status import video_status
from ..videos import apply_callback

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/videos", tags=["videos"])


@router.get("/{video_id}/status")
async def get_video_status(video_id: UUID, uid: str = Depends(current_uid), repo: Repository = Depends(get_repo)):
    video = await repo.get_video(video_id, uid)
    if video is None:
        raise NotFound("Video not found")
    return video_status(video)


@router.post("/{video_id}/callback")
async def renderer_callback(video_id: UUID, body: VideoCallback, repo: Repository = Depends(get_repo),
                            x_webhook_secret: Optional[str] = Header(None)):
    if settings.RENDER_CALLBACK_SECRET and not hmac.compare_digest(
        x_webhook_secret or "", settings.RENDER_CALLBACK_SECRET
    ):
        logger.warning(f"Rejected renderer callback for video {video_id}: bad secret")
        raise AuthenticationRequired("Invalid webhook secret")
    uid = normalize_uid(body.uid)
    video = await apply_callback(repo, video_id, uid, body.model_dump(exclude_none=True))
    if video is None:
        raise NotFound("Video not found")
    return {"success": True, "status": video["status"]}
