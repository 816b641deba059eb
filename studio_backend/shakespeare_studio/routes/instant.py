import logging
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends

from .. import faces
from ..auth import current_uid
from ..deps import get_engine, get_repo
from ..errors import NotFound
from ..instant import create_instant, run_instant
from ..repository import Repository
from ..schemas import DetectedFace, FacesCreate, FaceTagUpdate, InstantCreate
from ..status import instant_status
from ..workflow import WorkflowEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/instant", tags=["instant"])


def face_out(row):
    return DetectedFace.model_validate(row).model_dump(mode="json")


@router.post("/create", status_code=202)
async def create(body: InstantCreate, background_tasks: BackgroundTasks, uid: str = Depends(current_uid),
                 engine: WorkflowEngine = Depends(get_engine)):
    workflow = await create_instant(engine, uid, body)
    background_tasks.add_task(run_instant, engine, workflow["id"], uid, body)
    logger.info(f"Queued instant generation {workflow['id']} for {uid}")
    return {"instantId": str(workflow["id"])}


@router.get("/{instant_id}/status")
async def status(instant_id: UUID, uid: str = Depends(current_uid), engine: WorkflowEngine = Depends(get_engine)):
    workflow = await engine.load(instant_id, uid)
    if not workflow.get("instant_mode"):
        raise NotFound("Instant generation not found")
    videos = await engine.repo.videos_for_workflow(instant_id, uid)
    return instant_status(workflow, videos[0] if videos else None)


@router.post("/{workflow_id}/faces", status_code=201)
async def add_faces(workflow_id: UUID, body: FacesCreate, uid: str = Depends(current_uid),
                    repo: Repository = Depends(get_repo)):
    saved = await faces.register_faces(repo, workflow_id, uid, body)
    return {"success": True, "faces": [face_out(f) for f in saved]}


@router.get("/{workflow_id}/faces")
async def list_faces(workflow_id: UUID, uid: str = Depends(current_uid), repo: Repository = Depends(get_repo)):
    return {"faces": [face_out(f) for f in await faces.list_faces(repo, workflow_id, uid)]}


@router.patch("/{workflow_id}/faces/{face_id}")
async def tag_face(workflow_id: UUID, face_id: UUID, body: FaceTagUpdate, uid: str = Depends(current_uid),
                   repo: Repository = Depends(get_repo)):
    return face_out(await faces.tag_face(repo, workflow_id, face_id, uid, body))
