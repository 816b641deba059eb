"""
uid-scoped data access.

Every user-facing read and write filters on the row id and the owning uid, so a
row that belongs to somebody else looks exactly like a missing one. The admin
helpers at the bottom are the only unscoped queries and are reachable only
through admin-checked routes.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from .store import Filter

logger = logging.getLogger(__name__)

STORIES = "stories"
WORKFLOWS = "workflows"
VIDEOS = "videos"
FACES = "detected_faces"
ADMINS = "admins"


def _owned(row_id, uid: str) -> List[Filter]:
    return [("id", "eq", str(row_id)), ("uid", "eq", uid)]


def _first(rows: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    return rows[0] if rows else None


class Repository:
    def __init__(self, store):
        self.store = store

    # --- stories ---

    async def create_story(self, uid: str, title: str, text_raw: str, beats: int = 5, **extra) -> Dict[str, Any]:
        row = {"uid": uid, "title": title, "text_raw": text_raw, "beats": beats, "status": "draft"}
        row.update(extra)
        story = await self.store.insert(STORIES, row)
        logger.info(f"Created story {story['id']} for {uid}")
        return story

    async def get_story(self, story_id, uid: str) -> Optional[Dict[str, Any]]:
        return _first(await self.store.select(STORIES, _owned(story_id, uid), limit=1))

    async def list_stories(self, uid: str) -> List[Dict[str, Any]]:
        return await self.store.select(STORIES, [("uid", "eq", uid)], order="created_at")

    async def update_story(self, story_id, uid: str, values: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return _first(await self.store.update(STORIES, _owned(story_id, uid), values))

    async def delete_story(self, story_id, uid: str) -> bool:
        scope = [("story_id", "eq", str(story_id)), ("uid", "eq", uid)]
        workflows = await self.store.select(WORKFLOWS, scope)
        for workflow in workflows:
            await self.store.delete(FACES, [("workflow_id", "eq", workflow["id"]), ("uid", "eq", uid)])
        await self.store.delete(WORKFLOWS, scope)
        await self.store.delete(VIDEOS, scope)
        deleted = await self.store.delete(STORIES, _owned(story_id, uid))
        return deleted > 0

    # --- workflows ---

    async def create_workflow(self, uid: str, story_id, instant_mode: bool = False,
                              instant_metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        row = {
            "uid": uid,
            "story_id": str(story_id),
            "current_step": 1,
            "status": "active",
            "instant_mode": instant_mode,
            "instant_metadata": instant_metadata,
        }
        workflow = await self.store.insert(WORKFLOWS, row)
        logger.info(f"Created workflow {workflow['id']} (instant={instant_mode}) for {uid}")
        return workflow

    async def get_workflow(self, workflow_id, uid: str) -> Optional[Dict[str, Any]]:
        return _first(await self.store.select(WORKFLOWS, _owned(workflow_id, uid), limit=1))

    async def update_workflow(self, workflow_id, uid: str, values: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return _first(await self.store.update(WORKFLOWS, _owned(workflow_id, uid), values))

    # --- videos ---

    async def create_video(self, uid: str, story_id, status: str = "queued", **extra) -> Dict[str, Any]:
        row = {"uid": uid, "story_id": str(story_id), "status": status}
        row.update(extra)
        if row.get("workflow_id") is not None:
            row["workflow_id"] = str(row["workflow_id"])
        video = await self.store.insert(VIDEOS, row)
        logger.info(f"Created video {video['id']} ({status}) for story {story_id}")
        return video

    async def get_video(self, video_id, uid: str) -> Optional[Dict[str, Any]]:
        return _first(await self.store.select(VIDEOS, _owned(video_id, uid), limit=1))

    async def videos_for_story(self, story_id, uid: str) -> List[Dict[str, Any]]:
        scope = [("story_id", "eq", str(story_id)), ("uid", "eq", uid)]
        return await self.store.select(VIDEOS, scope, order="created_at")

    async def videos_for_workflow(self, workflow_id, uid: str) -> List[Dict[str, Any]]:
        scope = [("workflow_id", "eq", str(workflow_id)), ("uid", "eq", uid)]
        return await self.store.select(VIDEOS, scope, order="created_at")

    async def update_video(self, video_id, uid: str, values: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return _first(await self.store.update(VIDEOS, _owned(video_id, uid), values))

    # --- detected faces ---

    async def upsert_face(self, uid: str, workflow_id, original_image_url: str, face: Dict[str, Any]) -> Dict[str, Any]:
        key = [
            ("workflow_id", "eq", str(workflow_id)),
            ("face_index", "eq", face["face_index"]),
            ("uid", "eq", uid),
        ]
        values = dict(face, original_image_url=original_image_url)
        existing = await self.store.update(FACES, key, values)
        if existing:
            return existing[0]
        row = dict(values, uid=uid, workflow_id=str(workflow_id))
        row.setdefault("position_order", face["face_index"])
        return await self.store.insert(FACES, row)

    async def list_faces(self, workflow_id, uid: str) -> List[Dict[str, Any]]:
        scope = [("workflow_id", "eq", str(workflow_id)), ("uid", "eq", uid)]
        return await self.store.select(FACES, scope, order="position_order", desc=False)

    async def update_face(self, face_id, workflow_id, uid: str, values: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        scope = _owned(face_id, uid) + [("workflow_id", "eq", str(workflow_id))]
        return _first(await self.store.update(FACES, scope, values))

    # --- admin (unscoped) ---

    async def is_admin(self, uid: str) -> bool:
        rows = await self.store.select(ADMINS, [("uid", "eq", uid), ("is_active", "eq", True)], limit=1)
        return bool(rows)

    async def search_videos(self, filters: Sequence[Filter], page: int, limit: int) -> Tuple[List[Dict[str, Any]], int]:
        total = await self.store.count(VIDEOS, filters)
        rows = await self.store.select(VIDEOS, filters, order="created_at", limit=limit, offset=(page - 1) * limit)
        return rows, total

    async def videos_by_ids(self, video_ids: Sequence[UUID]) -> List[Dict[str, Any]]:
        return await self.store.select(VIDEOS, [("id", "in", [str(v) for v in video_ids])])

    async def workflow_ids(self, instant_mode: bool) -> List[str]:
        rows = await self.store.select(WORKFLOWS, [("instant_mode", "eq", instant_mode)])
        return [str(r["id"]) for r in rows]

    async def delete_videos(self, video_ids: Sequence[UUID]) -> int:
        return await self.store.delete(VIDEOS, [("id", "in", [str(v) for v in video_ids])])

    async def remove_object(self, bucket: str, name: str) -> None:
        await self.store.remove_object(bucket, name)
