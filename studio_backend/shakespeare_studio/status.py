import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional

VIDEO_STATUS_MESSAGES = {
    "queued": "動画生成の順番待ちです",
    "processing": "動画を生成中です",
    "completed": "動画が完成しました",
    "failed": "動画の生成に失敗しました",
    "error": "動画の生成中にエラーが発生しました",
}

# instant_step value -> message, in pipeline order
INSTANT_STEPS = {
    "analyzing": "ストーリーを解析中...",
    "structuring": "物語の構成を作成中...",
    "characters": "キャラクターを設定中...",
    "script": "台本を作成中...",
    "voices": "音声を割り当て中...",
    "finalizing": "最終調整中...",
    "generating": "動画を生成中...",
}
INSTANT_STEP_ORDER = list(INSTANT_STEPS)
PENDING_MESSAGE = "準備中..."
COMPLETED_MESSAGE = "完成しました！"

PROCESSING_MIN_PROGRESS = 10
PROCESSING_MAX_PROGRESS = 90
PROCESSING_EXPECTED_SECONDS = 300


def _parse_time(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def video_progress(video: Dict[str, Any], now: Optional[datetime] = None) -> int:
    status = video["status"]
    if status == "completed":
        return 100
    if status != "processing":
        return 0
    started = _parse_time(video.get("updated_at")) or _parse_time(video.get("created_at"))
    if started is None:
        return PROCESSING_MIN_PROGRESS
    elapsed = ((now or datetime.now(timezone.utc)) - started).total_seconds()
    span = PROCESSING_MAX_PROGRESS - PROCESSING_MIN_PROGRESS
    estimate = PROCESSING_MIN_PROGRESS + int(span * max(elapsed, 0) / PROCESSING_EXPECTED_SECONDS)
    return min(PROCESSING_MAX_PROGRESS, estimate)


def video_status(video: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    status = video["status"]
    body = {
        "id": str(video["id"]),
        "status": status,
        "message": VIDEO_STATUS_MESSAGES.get(status, status),
        "progress": video_progress(video, now),
        "duration_sec": video.get("duration_sec"),
        "resolution": video.get("resolution"),
        "size_mb": video.get("size_mb"),
        "preview_status": video.get("preview_status"),
        "created_at": video.get("created_at"),
    }
    if status == "completed":
        body["url"] = video.get("url")
    if status in ("failed", "error"):
        body["error_msg"] = video.get("error_msg")
    return body


def instant_progress(step: str) -> int:
    index = INSTANT_STEP_ORDER.index(step)
    return math.floor((index + 1) / len(INSTANT_STEP_ORDER) * 90)


def instant_status(workflow: Dict[str, Any], video: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    body = {"id": str(workflow["id"]), "storyId": str(workflow["story_id"])}
    if workflow.get("error_message"):
        body.update(status="failed", message=workflow["error_message"], progress=0,
                    error=workflow["error_message"])
    elif video and video["status"] in ("failed", "error"):
        body.update(status="failed", message=VIDEO_STATUS_MESSAGES[video["status"]], progress=0,
                    error=video.get("error_msg"), videoId=str(video["id"]))
    elif workflow.get("status") == "completed" and video and video["status"] == "completed":
        body.update(status="completed", message=COMPLETED_MESSAGE, progress=100,
                    videoId=str(video["id"]), videoUrl=video.get("url"))
    elif workflow.get("instant_step") in INSTANT_STEPS:
        step = workflow["instant_step"]
        body.update(status="processing", currentStep=step, message=INSTANT_STEPS[step],
                    progress=instant_progress(step))
        if video:
            body["videoId"] = str(video["id"])
    else:
        body.update(status="pending", message=PENDING_MESSAGE, progress=0)
    return body
