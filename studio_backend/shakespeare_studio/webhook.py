import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel

from . import settings

logger = logging.getLogger(__name__)

VIDEO_GENERATION = "video_generation"
IMAGE_PREVIEW = "image_preview"
DEFAULT_RETRY_AFTER = 60


class DispatchResult(BaseModel):
    ok: bool
    skipped: bool = False
    timed_out: bool = False
    rate_limited: bool = False
    retry_after: Optional[int] = None
    status_code: Optional[int] = None
    error: Optional[str] = None


def build_payload(kind: str, video: Dict[str, Any], story: Dict[str, Any], script_json: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "type": kind,
        "payload": {
            "video_id": str(video["id"]),
            "story_id": str(story["id"]),
            "uid": video["uid"],
            "title": story.get("title") or "",
            "text_raw": story.get("text_raw") or "",
            "script_json": script_json,
        },
    }


def _retry_after(response: httpx.Response) -> int:
    try:
        return max(1, int(float(response.headers.get("retry-after", DEFAULT_RETRY_AFTER))))
    except ValueError:
        return DEFAULT_RETRY_AFTER


class WebhookDispatcher:
    def __init__(self, url: Optional[str] = None, timeout: Optional[float] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None, disabled: Optional[bool] = None):
        self._url = url
        self.timeout = timeout or settings.RENDER_WEBHOOK_TIMEOUT_S
        self.transport = transport
        self._disabled = disabled

    @property
    def url(self) -> str:
        return self._url if self._url is not None else settings.webhook_url()

    @property
    def disabled(self) -> bool:
        return settings.DISABLE_WEBHOOK if self._disabled is None else self._disabled

    async def send(self, body: Dict[str, Any]) -> DispatchResult:
        kind = body.get("type")
        video_id = body.get("payload", {}).get("video_id")
        if self.disabled:
            logger.info(f"Webhook disabled, skipping {kind} for video {video_id}")
            return DispatchResult(ok=True, skipped=True)
        if not self.url:
            logger.error("Renderer webhook URL is not configured")
            return DispatchResult(ok=False, error="Webhook URL not configured")

        logger.info(f"Calling renderer webhook ({kind}) for video {video_id}: {self.url}")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.url, json=body)
        except httpx.TimeoutException:
            # the renderer keeps working after we stop waiting
            logger.warning(f"Webhook timed out for video {video_id}; assuming accepted")
            return DispatchResult(ok=True, timed_out=True)
        except httpx.HTTPError as e:
            logger.error(f"Webhook request failed for video {video_id}: {e}")
            return DispatchResult(ok=False, error=str(e) or e.__class__.__name__)

        if response.status_code == 429:
            retry_after = _retry_after(response)
            logger.warning(f"Renderer is busy (429) for video {video_id}, retry after {retry_after}s")
            return DispatchResult(ok=False, rate_limited=True, retry_after=retry_after, status_code=429)
        if response.is_success:
            logger.info(f"Webhook accepted for video {video_id}")
            return DispatchResult(ok=True, status_code=response.status_code)
        detail = f"{response.status_code} {response.text[:200]}".strip()
        logger.error(f"Webhook rejected for video {video_id}: {detail}")
        return DispatchResult(ok=False, status_code=response.status_code, error=detail)


async def dispatch_video(repo, dispatcher: WebhookDispatcher, video: Dict[str, Any], story: Dict[str, Any],
                         script_json: Dict[str, Any]) -> DispatchResult:
    """Send video_generation and record a failed dispatch on the row."""
    result = await dispatcher.send(build_payload(VIDEO_GENERATION, video, story, script_json))
    if not result.ok and not result.rate_limited:
        await repo.update_video(video["id"], video["uid"], {
            "status": "failed",
            "error_msg": f"Webhook error: {result.error}",
        })
    return result


async def dispatch_preview(repo, dispatcher: WebhookDispatcher, video: Dict[str, Any], story: Dict[str, Any],
                           script_json: Dict[str, Any]) -> DispatchResult:
    """Send image_preview and record a failed dispatch on the preview sub-status."""
    result = await dispatcher.send(build_payload(IMAGE_PREVIEW, video, story, script_json))
    if not result.ok and not result.rate_limited:
        await repo.update_video(video["id"], video["uid"], {
            "preview_status": "failed",
            "error_msg": f"Webhook error: {result.error}",
        })
    return result
