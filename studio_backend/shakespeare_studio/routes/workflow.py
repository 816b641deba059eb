import logging
from uuid import UUID

from fastapi import APIRouter, Depends

from ..auth import current_uid
from ..deps import get_engine
from ..schemas import StepBack, StepSubmission, Workflow
from ..videos import request_preview
from ..workflow import WorkflowEngine, progress

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/workflow", tags=["workflow"])


def workflow_out(row):
    data = Workflow.model_validate(row).model_dump(mode="json")
    data["progress"] = progress(row)
    return data


@router.post("/create", status_code=201)
async def create_workflow(uid: str = Depends(current_uid), engine: WorkflowEngine = Depends(get_engine)):
    workflow = await engine.create(uid)
    return {
        "success": True,
        "workflow_id": str(workflow["id"]),
        "story_id": str(workflow["story_id"]),
        "redirect_url": f"/workflow/{workflow['id']}?step=1",
    }


@router.get("/{workflow_id}")
async def get_workflow(workflow_id: UUID, uid: str = Depends(current_uid),
                       engine: WorkflowEngine = Depends(get_engine)):
    return workflow_out(await engine.load(workflow_id, uid))


@router.get("/{workflow_id}/step/{step}")
async def get_step(workflow_id: UUID, step: int, uid: str = Depends(current_uid),
                   engine: WorkflowEngine = Depends(get_engine)):
    return await engine.get_step(workflow_id, uid, step)


@router.post("/{workflow_id}/step/{step}")
async def submit_step(workflow_id: UUID, step: int, body: StepSubmission, uid: str = Depends(current_uid),
                      engine: WorkflowEngine = Depends(get_engine)):
    return await engine.submit_step(workflow_id, uid, step, body.userInput)


@router.post("/{workflow_id}/back")
async def go_back(workflow_id: UUID, body: StepBack, uid: str = Depends(current_uid),
                  engine: WorkflowEngine = Depends(get_engine)):
    workflow = await engine.go_back(workflow_id, uid, body.step)
    return {"success": True, "currentStep": workflow["current_step"]}


@router.post("/{workflow_id}/preview-images")
async def preview_images(workflow_id: UUID, uid: str = Depends(current_uid),
                         engine: WorkflowEngine = Depends(get_engine)):
    workflow = await engine.load(workflow_id, uid)
    story = await engine.story_for(workflow, uid)
    request = await request_preview(engine.repo, engine.dispatcher, workflow, story, uid)
    return {
        "success": True,
        "data": {"video_id": str(request.video["id"]), "preview_status": request.video.get("preview_status")},
        "message": request.message,
    }
