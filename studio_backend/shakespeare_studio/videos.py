"""
Video rows as an outbox: a row is created in `queued`, the renderer is asked to
pick it up, and from then on only the renderer callback moves it forward.
"""
import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel

from .errors import Conflict, RateLimited, ValidationFailed, WorkflowGenerationError
from .mulmoscript import build_mulmoscript
from .webhook import DispatchResult, WebhookDispatcher, dispatch_preview, dispatch_video

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ("queued", "processing")
PREVIEW_ACTIVE = ("pending", "processing")

TRANSITIONS = {
    "queued": {"processing", "failed"},
    "processing": {"completed", "failed", "error"},
    "completed": set(),
    "failed": set(),
    "error": set(),
}


class VideoRequest(BaseModel):
    video: Dict[str, Any]
    created: bool
    message: str
    dispatch: Optional[DispatchResult] = None


def is_preview_only(video: Dict[str, Any]) -> bool:
    return bool((video.get("preview_data") or {}).get("preview_only"))


def is_dispatch_pending(video: Dict[str, Any]) -> bool:
    return bool((video.get("preview_data") or {}).get("dispatch_pending"))


async def request_video(repo, dispatcher: WebhookDispatcher, story: Dict[str, Any], uid: str,
                        workflow_id: Optional[str] = None) -> VideoRequest:
    """
    Idempotent: a finished or in-flight video for the story is returned as-is,
    except a queued one whose dispatch was rate-limited, which is re-sent.
    A preview-only record is promoted instead of inserting a second row.
    """
    script_json = story.get("script_json")
    if not script_json:
        raise ValidationFailed("Story must have a generated script before generating a video")

    existing = await repo.videos_for_story(story["id"], uid)
    for video in existing:
        if video["status"] == "completed" and video.get("url"):
            logger.info(f"Video {video['id']} already exists for story {story['id']}")
            return VideoRequest(video=video, created=False, message="Video already exists")
    for video in existing:
        if video["status"] in ACTIVE_STATUSES and not is_preview_only(video):
            if video["status"] == "queued" and is_dispatch_pending(video):
                logger.info(f"Re-sending rate-limited video {video['id']} for story {story['id']}")
                return await _dispatch(repo, dispatcher, video, story, uid, script_json, created=False)
            logger.info(f"Video {video['id']} already in progress for story {story['id']}")
            return VideoRequest(video=video, created=False, message="Video generation already in progress")

    preview = next((v for v in existing if is_preview_only(v)), None)
    if preview is not None:
        values = {
            "status": "queued",
            "error_msg": None,
            "title": story.get("title"),
            "preview_data": dict(preview.get("preview_data") or {}, preview_only=False),
        }
        if workflow_id:
            values["workflow_id"] = str(workflow_id)
        video = await repo.update_video(preview["id"], uid, values)
        logger.info(f"Promoted preview record {video['id']} to a video job")
    else:
        video = await repo.create_video(uid, story["id"], status="queued",
                                        title=story.get("title"), workflow_id=workflow_id)

    await repo.update_story(story["id"], uid, {"status": "processing"})
    return await _dispatch(repo, dispatcher, video, story, uid, script_json, created=True)


async def _dispatch(repo, dispatcher: WebhookDispatcher, video: Dict[str, Any], story: Dict[str, Any], uid: str,
                    script_json: Dict[str, Any], created: bool) -> VideoRequest:
    # a 429 leaves the row queued with dispatch_pending so the next request re-sends it
    result = await dispatch_video(repo, dispatcher, video, story, script_json)
    preview_data = dict(video.get("preview_data") or {})
    if result.rate_limited:
        preview_data["dispatch_pending"] = True
        await repo.update_video(video["id"], uid, {"preview_data": preview_data})
        raise RateLimited("Video renderer is busy, please retry later",
                          retry_after=result.retry_after, details={"videoId": str(video["id"])})
    if preview_data.pop("dispatch_pending", None):
        video = await repo.update_video(video["id"], uid, {"preview_data": preview_data})
    if not result.ok:
        await repo.update_story(story["id"], uid, {"status": "error"})
        video = dict(video, status="failed", error_msg=f"Webhook error: {result.error}")
    return VideoRequest(video=video, created=created, message="Video generation started", dispatch=result)


async def apply_callback(repo, video_id, uid: str, update: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Renderer progress report. Returns None when the video does not exist for uid."""
    video = await repo.get_video(video_id, uid)
    if video is None:
        return None
    current = video["status"]
    target = update.get("status") or current
    if target != current and target not in TRANSITIONS.get(current, set()):
        raise Conflict(f"Cannot move video from {current} to {target}")

    values = {"status": target}
    for key in ("url", "duration_sec", "resolution", "size_mb", "error_msg", "preview_status"):
        if update.get(key) is not None:
            values[key] = update[key]
    if update.get("preview_data"):
        values["preview_data"] = dict(video.get("preview_data") or {}, **update["preview_data"])
    video = await repo.update_video(video_id, uid, values)
    if target == current:
        logger.info(f"Video {video_id}: progress report ({current})")
        return video
    logger.info(f"Video {video_id}: {current} -> {target}")

    if target == "completed":
        await repo.update_story(video["story_id"], uid, {"status": "completed"})
    elif target in ("failed", "error"):
        await repo.update_story(video["story_id"], uid, {"status": "error"})
    return video


async def request_preview(repo, dispatcher: WebhookDispatcher, workflow: Dict[str, Any], story: Dict[str, Any],
                          uid: str) -> VideoRequest:
    """Ask the renderer for scene images only, using the step-4 script."""
    outputs = {n: workflow[f"step{n}_out"] for n in range(1, 7) if workflow.get(f"step{n}_out")}
    if 4 not in outputs:
        raise ValidationFailed("Script (step 4) must be completed before generating preview images")

    existing = await repo.videos_for_story(story["id"], uid)
    for video in existing:
        if video.get("preview_status") in PREVIEW_ACTIVE:
            return VideoRequest(video=video, created=False, message="Preview generation already in progress")

    script_json = build_mulmoscript(story.get("title") or "untitled", outputs).to_json()
    values = {"preview_status": "pending", "error_msg": None, "workflow_id": str(workflow["id"])}
    target = next((v for v in existing if is_preview_only(v)), None)
    if target is not None:
        video = await repo.update_video(target["id"], uid, values)
    else:
        video = await repo.create_video(uid, story["id"], status="queued", title=story.get("title"),
                                        preview_data={"preview_only": True}, **values)

    result = await dispatch_preview(repo, dispatcher, video, story, script_json)
    if result.rate_limited:
        raise RateLimited("Video renderer is busy, please retry later",
                          retry_after=result.retry_after, details={"videoId": str(video["id"])})
    if not result.ok:
        raise WorkflowGenerationError("Failed to start image preview", step=4, code="WEBHOOK_ERROR",
                                      details=f"Webhook error: {result.error}")
    return VideoRequest(video=video, created=True, message="Preview generation started", dispatch=result)
