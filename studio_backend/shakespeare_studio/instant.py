"""
Instant mode: the seven workflow steps run back to back without the user.

Each graph node accepts the preview generated by the previous step as the
user's answer and submits it through the same WorkflowEngine the wizard uses,
so every invariant of the step state machine still holds. Progress is exposed
through workflow.instant_step and per-node timings in instant_metadata.
"""
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from langgraph.graph import END, StateGraph
from pydantic import BaseModel, Field

from .errors import RateLimited, StudioError
from .faces import assign_faces
from .schemas import InstantCreate
from .step_models import IMAGE_STYLE_PRESETS

logger = logging.getLogger(__name__)

DURATION_SCENES = {"short": 3, "medium": 5, "long": 8}
WORKFLOW_TEXT_LIMIT = 2000


class InstantState(BaseModel):
    workflow_id: str
    uid: str
    request: InstantCreate
    next_input: Optional[Dict[str, Any]] = None
    timings: Dict[str, float] = Field(default_factory=dict)
    video_id: Optional[str] = None
    video_status: Optional[str] = None


def _metadata(request: InstantCreate) -> Dict[str, Any]:
    return {
        "style": request.style,
        "duration": request.duration,
        "imageUrls": request.imageUrls,
        "started_at": datetime.now(timezone.utc).isoformat(),
        "timings": {},
    }


async def create_instant(engine, uid: str, request: InstantCreate) -> Dict[str, Any]:
    return await engine.create(
        uid,
        instant_mode=True,
        instant_metadata=_metadata(request),
        title=request.title or "untitled",
        text_raw=request.storyText,
    )


def build_graph(engine):
    """Compile the pipeline for one engine; nodes close over it."""
    repo = engine.repo

    async def stage(state: InstantState, name: str, work) -> Dict[str, Any]:
        await repo.update_workflow(state.workflow_id, state.uid, {"instant_step": name})
        logger.info(f"Instant {state.workflow_id}: {name}")
        started = time.monotonic()
        updates = await work()
        timings = dict(state.timings, **{name: round(time.monotonic() - started, 3)})
        workflow = await engine.load(state.workflow_id, state.uid)
        metadata = dict(workflow.get("instant_metadata") or {}, timings=timings)
        await repo.update_workflow(state.workflow_id, state.uid, {"instant_metadata": metadata})
        updates["timings"] = timings
        return updates

    async def submit(state: InstantState, step: int, user_input: Dict[str, Any], render: bool = True) -> Dict[str, Any]:
        result = await engine.submit_step(state.workflow_id, state.uid, step, user_input, render=render)
        return {"next_input": result.get("nextStepInput")}

    async def node_analyzing(state: InstantState) -> Dict[str, Any]:
        request = state.request
        user_input = {
            "storyText": request.storyText[:WORKFLOW_TEXT_LIMIT],
            "totalScenes": DURATION_SCENES[request.duration],
            "settings": {"style": "shakespeare", "language": "ja"},
        }
        return await stage(state, "analyzing", lambda: submit(state, 1, user_input))

    async def node_structuring(state: InstantState) -> Dict[str, Any]:
        preview = state.next_input
        user_input = {"title": state.request.title or preview["suggestedTitle"], "acts": preview["acts"]}
        return await stage(state, "structuring", lambda: submit(state, 2, user_input))

    async def node_characters(state: InstantState) -> Dict[str, Any]:
        preview = state.next_input

        async def work():
            characters = [
                {
                    "id": c["id"],
                    "name": c["name"],
                    "description": " ".join(p for p in (c.get("personality"), c.get("visualDescription")) if p),
                }
                for c in preview["detailedCharacters"]
            ]
            faces = await repo.list_faces(state.workflow_id, state.uid)
            if faces:
                characters = assign_faces(characters, faces)
                logger.info(f"Instant {state.workflow_id}: mapped {len(faces)} faces onto characters")
            preset = state.request.style
            if preset not in IMAGE_STYLE_PRESETS:
                preset = preview["suggestedImageStyle"]["preset"]
            return await submit(state, 3, {"characters": characters, "imageStyle": {"preset": preset}})

        return await stage(state, "characters", work)

    async def node_script(state: InstantState) -> Dict[str, Any]:
        user_input = {"acts": state.next_input["acts"]}
        return await stage(state, "script", lambda: submit(state, 4, user_input))

    async def node_voices(state: InstantState) -> Dict[str, Any]:
        speakers = {
            name: {"voiceId": assignment["voiceId"], "displayName": {"ja": name, "en": name}}
            for name, assignment in state.next_input["voiceAssignments"].items()
        }
        return await stage(state, "voices", lambda: submit(state, 5, {"speakers": speakers}))

    async def node_finalizing(state: InstantState) -> Dict[str, Any]:
        preview = state.next_input

        async def work():
            caption = preview.get("captionSettings") or {}
            audio = {
                "bgm": {"url": preview["bgmSuggestions"][0]["url"], "volume": 0.5},
                "caption": {"enabled": caption.get("enabled", True), "lang": caption.get("lang", "ja")},
            }
            final = (await submit(state, 6, audio))["next_input"]
            user_input = {
                "title": state.request.title or final["finalTitle"],
                "description": final.get("description", ""),
                "tags": final.get("tags", []),
                "confirmed": True,
            }
            return await submit(state, 7, user_input, render=False)

        return await stage(state, "finalizing", work)

    async def node_generating(state: InstantState) -> Dict[str, Any]:
        async def work():
            workflow = await engine.load(state.workflow_id, state.uid)
            story = await repo.get_story(workflow["story_id"], state.uid)
            try:
                request = await engine.start_render(story, state.uid, state.workflow_id)
            except RateLimited as e:
                # the video stays queued; generate-video can pick it up later
                logger.warning(f"Instant {state.workflow_id}: renderer busy, retry after {e.retry_after}s")
                videos = await repo.videos_for_workflow(state.workflow_id, state.uid)
                video = videos[0] if videos else None
                return {"video_id": str(video["id"]) if video else None, "video_status": "queued"}
            return {"video_id": str(request.video["id"]), "video_status": request.video["status"]}

        return await stage(state, "generating", work)

    g = StateGraph(InstantState)
    g.add_node("analyzing", node_analyzing)
    g.add_node("structuring", node_structuring)
    g.add_node("characters", node_characters)
    g.add_node("script", node_script)
    g.add_node("voices", node_voices)
    g.add_node("finalizing", node_finalizing)
    g.add_node("generating", node_generating)
    g.set_entry_point("analyzing")
    g.add_edge("analyzing", "structuring")
    g.add_edge("structuring", "characters")
    g.add_edge("characters", "script")
    g.add_edge("script", "voices")
    g.add_edge("voices", "finalizing")
    g.add_edge("finalizing", "generating")
    g.add_edge("generating", END)
    return g.compile()


async def run_instant(engine, workflow_id, uid: str, request: InstantCreate) -> Optional[InstantState]:
    """Background entry point. Failures are recorded on the workflow, not raised."""
    state = InstantState(workflow_id=str(workflow_id), uid=uid, request=request)
    started = time.monotonic()
    try:
        logger.info(f"Starting instant pipeline for workflow {workflow_id}")
        final_state = await build_graph(engine).ainvoke(state)
    except Exception as e:
        message = e.message if isinstance(e, StudioError) else "Instant generation failed"
        logger.exception(f"Instant pipeline failed for workflow {workflow_id}: {e}")
        await engine.repo.update_workflow(workflow_id, uid, {"error_message": message, "status": "archived"})
        return None

    # LangGraph hands back a dict of channel values for pydantic states
    if hasattr(final_state, "get"):
        final_state = InstantState.model_validate(dict(final_state))
    workflow = await engine.load(workflow_id, uid)
    metadata = dict(
        workflow.get("instant_metadata") or {},
        total_seconds=round(time.monotonic() - started, 3),
        completed_at=datetime.now(timezone.utc).isoformat(),
    )
    await engine.repo.update_workflow(workflow_id, uid, {"instant_metadata": metadata})
    logger.info(f"Instant pipeline finished for workflow {workflow_id}, video {final_state.video_id}")
    return final_state
