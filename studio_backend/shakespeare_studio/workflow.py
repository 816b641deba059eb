"""
Seven-step workflow state machine.

current_step is the highest step the user may open. Submitting step n stores
its output, caches the generated preview for n + 1 and moves current_step to
at least n + 1. Later outputs are never cleared by an earlier resubmission;
only an explicit go_back lowers current_step. Nothing is written when the
preview generation fails.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from .errors import (
    ExternalServiceError, NotFound, RateLimited, ValidationFailed, WorkflowGenerationError,
)
from .mulmoscript import build_mulmoscript
from .schemas import ensure_valid
from .step_models import STEP_INPUT_MODELS, STEP_OUTPUT_MODELS, TOTAL_STEPS, Step1Input
from .step_processors import StepContext, generate_next_input
from .videos import request_video

logger = logging.getLogger(__name__)


def step_outputs(workflow: Dict[str, Any]) -> Dict[int, Dict[str, Any]]:
    return {
        n: workflow[f"step{n}_out"]
        for n in range(1, TOTAL_STEPS + 1)
        if workflow.get(f"step{n}_out")
    }


def progress(workflow: Dict[str, Any]) -> Dict[str, Any]:
    completed = sorted(step_outputs(workflow))
    if workflow.get("status") == "completed":
        completed = list(range(1, TOTAL_STEPS + 1))
    return {
        "currentStep": workflow["current_step"],
        "totalSteps": TOTAL_STEPS,
        "completedSteps": completed,
        "progress": int(len(completed) / TOTAL_STEPS * 100),
    }


def _check_step(step: int) -> None:
    if step < 1 or step > TOTAL_STEPS:
        raise ValidationFailed(f"Invalid step number: {step}. Must be between 1 and {TOTAL_STEPS}")


class WorkflowEngine:
    def __init__(self, repo, generator, dispatcher):
        self.repo = repo
        self.generator = generator
        self.dispatcher = dispatcher

    async def create(self, uid: str, instant_mode: bool = False,
                     instant_metadata: Optional[Dict[str, Any]] = None,
                     title: str = "untitled", text_raw: str = "") -> Dict[str, Any]:
        story = await self.repo.create_story(uid, title, text_raw)
        return await self.repo.create_workflow(uid, story["id"], instant_mode, instant_metadata)

    async def load(self, workflow_id, uid: str) -> Dict[str, Any]:
        workflow = await self.repo.get_workflow(workflow_id, uid)
        if workflow is None:
            raise NotFound("Workflow not found")
        return workflow

    async def story_for(self, workflow: Dict[str, Any], uid: str) -> Dict[str, Any]:
        story = await self.repo.get_story(workflow["story_id"], uid)
        if story is None:
            raise NotFound("Story not found")
        return story

    async def get_step(self, workflow_id, uid: str, step: int) -> Dict[str, Any]:
        _check_step(step)
        workflow = await self.load(workflow_id, uid)
        if step > workflow["current_step"]:
            raise ValidationFailed(f"Step {step} is not available yet",
                                   details={"currentStep": workflow["current_step"]})
        step_input = workflow.get(f"step{step}_in")
        if step_input is None:
            step_input = await self._synthesize_input(workflow, uid, step)
        return {
            "stepInput": step_input,
            "stepOutput": workflow.get(f"step{step}_out"),
            "canEdit": workflow["status"] == "active",
            "workflow": progress(workflow),
        }

    async def _synthesize_input(self, workflow: Dict[str, Any], uid: str, step: int) -> Optional[Dict[str, Any]]:
        """Rebuild a preview from the story's storyboard data when none was cached."""
        if step == 1:
            return Step1Input().model_dump()
        story = await self.story_for(workflow, uid)
        characters = ((story.get("characters_data") or {}).get("characters")) or []
        acts = ((story.get("acts_data") or {}).get("acts")) or []
        title = story.get("title") or "untitled"
        candidates = {
            2: {"suggestedTitle": title, "acts": acts, "charactersList": characters},
            3: {"title": title, "detailedCharacters": characters},
            4: {"title": title, "acts": ((story.get("scenes_data") or {}).get("acts")) or []},
        }
        data = candidates.get(step)
        if data is None:
            return None
        try:
            return STEP_INPUT_MODELS[step].model_validate(data).model_dump()
        except ValidationError:
            logger.warning(f"Could not rebuild step {step} input for workflow {workflow['id']}")
            return None

    async def go_back(self, workflow_id, uid: str, step: int) -> Dict[str, Any]:
        _check_step(step)
        workflow = await self.load(workflow_id, uid)
        if workflow["status"] != "active":
            raise ValidationFailed(f"Workflow is {workflow['status']}")
        if step > workflow["current_step"]:
            raise ValidationFailed("Cannot go back to a later step")
        workflow = await self.repo.update_workflow(workflow_id, uid, {"current_step": step})
        logger.info(f"Workflow {workflow_id} moved back to step {step}")
        return workflow

    async def submit_step(self, workflow_id, uid: str, step: int, user_input: Dict[str, Any],
                          render: bool = True) -> Dict[str, Any]:
        _check_step(step)
        workflow = await self.load(workflow_id, uid)
        if workflow["status"] != "active":
            raise ValidationFailed(f"Workflow is {workflow['status']}, not active")
        current = workflow["current_step"]
        if step > current + 1:
            raise ValidationFailed(f"Step {step} is not reachable from step {current}",
                                   details={"currentStep": current})
        if step > 1 and not workflow.get(f"step{step - 1}_out"):
            raise ValidationFailed(f"Step {step - 1} must be completed first", details={"currentStep": current})

        output = ensure_valid(STEP_OUTPUT_MODELS[step], user_input, f"Invalid input for step {step}").model_dump()
        story = await self.story_for(workflow, uid)
        outputs = step_outputs(workflow)
        outputs[step] = output

        if step == TOTAL_STEPS:
            return await self._finish(workflow, story, uid, outputs, render)

        try:
            result = await asyncio.to_thread(generate_next_input, step, self.generator, StepContext(story=story, outputs=outputs))
        except (RateLimited, WorkflowGenerationError):
            raise
        except ExternalServiceError as e:
            raise WorkflowGenerationError(f"Failed to generate step {step + 1} input", step=step,
                                          code="LLM_ERROR", details=e.message)
        except Exception as e:
            logger.exception(f"Step {step} processing failed for workflow {workflow_id}")
            raise WorkflowGenerationError(f"Failed to generate step {step + 1} input", step=step,
                                          code="PROCESSING_ERROR", details=str(e))

        new_current = min(TOTAL_STEPS, max(current, step + 1))
        values = {
            f"step{step}_out": output,
            f"step{step + 1}_in": result.next_input,
            "current_step": new_current,
        }
        if step == 1:
            values["step1_in"] = output
        if result.story_updates:
            await self.repo.update_story(story["id"], uid, result.story_updates)
        await self.repo.update_workflow(workflow_id, uid, values)
        logger.info(f"Workflow {workflow_id}: step {step} saved, current step {new_current}")
        return {"success": True, "nextStepInput": result.next_input, "currentStep": new_current}

    async def _finish(self, workflow: Dict[str, Any], story: Dict[str, Any], uid: str,
                      outputs: Dict[int, Dict[str, Any]], render: bool) -> Dict[str, Any]:
        output = outputs[TOTAL_STEPS]
        workflow_id = workflow["id"]
        if not output["confirmed"]:
            await self.repo.update_workflow(workflow_id, uid, {f"step{TOTAL_STEPS}_out": output})
            return {"success": True, "nextStepInput": None, "currentStep": workflow["current_step"], "completed": False}

        try:
            script = build_mulmoscript(output["title"], outputs)
        except ValidationError as e:
            raise WorkflowGenerationError("Failed to build the final script", step=TOTAL_STEPS,
                                          code="SCRIPT_BUILD_FAILED", details=str(e))
        script_json = script.to_json()
        summary = dict(story.get("summary_data") or {}, description=output["description"], tags=output["tags"])
        story = await self.repo.update_story(story["id"], uid, {
            "title": output["title"],
            "script_json": script_json,
            "status": "script_generated",
            "summary_data": summary,
        })
        await self.repo.update_workflow(workflow_id, uid, {
            f"step{TOTAL_STEPS}_out": output,
            "current_step": TOTAL_STEPS,
            "status": "completed",
        })
        logger.info(f"Workflow {workflow_id} completed")

        response = {"success": True, "nextStepInput": None, "currentStep": TOTAL_STEPS, "completed": True}
        if render:
            request = await self.start_render(story, uid, workflow_id)
            response["videoId"] = str(request.video["id"])
            response["videoStatus"] = request.video["status"]
        return response

    async def start_render(self, story: Dict[str, Any], uid: str, workflow_id):
        return await request_video(self.repo, self.dispatcher, story, uid, workflow_id=workflow_id)

