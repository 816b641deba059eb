import asyncio
import logging
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends

from .. import settings
from ..auth import current_uid
from ..deps import get_dispatcher, get_generator, get_repo
from ..errors import NotFound, ValidationFailed, now_iso
from ..fallback_script import build_fallback_script
from ..llm import ScriptGenerator
from ..repository import Repository
from ..schemas import (
    STORY_TITLE_MAX, GenerateScriptOptions, MulmoScript, Story, StoryCreate, StoryUpdate, ensure_valid,
)
from ..videos import request_video
from ..webhook import WebhookDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stories", tags=["stories"])

COPY_SUFFIX = " (コピー)"
CATEGORY_COLUMNS = (
    "summary_data", "acts_data", "characters_data", "scenes_data", "audio_data", "style_data", "caption_data",
)


def story_out(row: Dict[str, Any]) -> Dict[str, Any]:
    return Story.model_validate(row).model_dump(mode="json")


async def _load(repo: Repository, story_id: UUID, uid: str) -> Dict[str, Any]:
    story = await repo.get_story(story_id, uid)
    if story is None:
        raise NotFound("Story not found")
    return story


@router.post("", status_code=201)
async def create_story(body: StoryCreate, uid: str = Depends(current_uid), repo: Repository = Depends(get_repo)):
    story = await repo.create_story(uid, body.title, body.text_raw, body.beats)
    return story_out(story)


@router.get("")
async def list_stories(uid: str = Depends(current_uid), repo: Repository = Depends(get_repo)):
    return [story_out(s) for s in await repo.list_stories(uid)]


@router.get("/{story_id}")
async def get_story(story_id: UUID, uid: str = Depends(current_uid), repo: Repository = Depends(get_repo)):
    return story_out(await _load(repo, story_id, uid))


@router.put("/{story_id}")
async def update_story(story_id: UUID, body: StoryUpdate, uid: str = Depends(current_uid),
                       repo: Repository = Depends(get_repo)):
    await _load(repo, story_id, uid)
    values = body.model_dump(exclude_unset=True)
    if not values:
        raise ValidationFailed("No fields to update")
    if values.get("script_json") is not None:
        values["script_json"] = ensure_valid(MulmoScript, values["script_json"], "Invalid script_json").to_json()
    story = await repo.update_story(story_id, uid, values)
    return story_out(story)


@router.delete("/{story_id}")
async def delete_story(story_id: UUID, uid: str = Depends(current_uid), repo: Repository = Depends(get_repo)):
    if not await repo.delete_story(story_id, uid):
        raise NotFound("Story not found")
    logger.info(f"Deleted story {story_id} for {uid}")
    return {"success": True}


@router.post("/{story_id}/copy", status_code=201)
async def copy_story(story_id: UUID, uid: str = Depends(current_uid), repo: Repository = Depends(get_repo)):
    story = await _load(repo, story_id, uid)
    if story["status"] != "completed" or not story.get("script_json"):
        raise ValidationFailed("Only completed stories with a script can be copied")
    title = story["title"][:STORY_TITLE_MAX - len(COPY_SUFFIX)] + COPY_SUFFIX
    extra = {column: story.get(column) for column in CATEGORY_COLUMNS if story.get(column) is not None}
    copy = await repo.create_story(
        uid, title, story.get("text_raw") or "", story.get("beats") or 5,
        script_json=story["script_json"], status="script_generated", **extra,
    )
    return story_out(copy)


@router.post("/{story_id}/generate-script")
async def generate_script(
    story_id: UUID,
    options: Optional[GenerateScriptOptions] = None,
    uid: str = Depends(current_uid),
    repo: Repository = Depends(get_repo),
    generator: ScriptGenerator = Depends(get_generator),
):
    options = options or GenerateScriptOptions()
    story = await _load(repo, story_id, uid)
    if story["status"] == "script_generated" and story.get("script_json") and not options.force:
        return {
            "success": True,
            "data": {"script_json": story["script_json"], "status": story["status"],
                     "generated_with_ai": None, "story": story_out(story)},
            "message": "Script already generated",
            "timestamp": now_iso(),
        }
    if not story.get("text_raw"):
        raise ValidationFailed("Story text is empty")

    options = options.model_copy(update={"beats": options.beats or story.get("beats") or 5})
    if settings.ENABLE_DIRECT_GENERATION:
        result = await asyncio.to_thread(generator.generate_script, story["title"], story["text_raw"], options)
        script, generated_with_ai = result.script, result.generated_with_ai
    else:
        logger.info("Direct generation disabled, using template script")
        script = build_fallback_script(story["title"], story["text_raw"], options.style, options.language,
                                       options.beats, options.scene_titles)
        generated_with_ai = False

    script_json = ensure_valid(MulmoScript, script.to_json(), "Generated script is invalid").to_json()
    story = await repo.update_story(story_id, uid, {"script_json": script_json, "status": "script_generated"})
    logger.info(f"Script stored for story {story_id} (ai={generated_with_ai})")
    return {
        "success": True,
        "data": {"script_json": script_json, "status": story["status"],
                 "generated_with_ai": generated_with_ai, "story": story_out(story)},
        "message": "Script generated successfully" if generated_with_ai else "Script generated from template",
        "timestamp": now_iso(),
    }


@router.post("/{story_id}/generate-video")
async def generate_video(
    story_id: UUID,
    uid: str = Depends(current_uid),
    repo: Repository = Depends(get_repo),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    story = await _load(repo, story_id, uid)
    request = await request_video(repo, dispatcher, story, uid)
    return {
        "success": True,
        "data": {"video_id": str(request.video["id"]), "status": request.video["status"]},
        "message": request.message,
        "timestamp": now_iso(),
    }
