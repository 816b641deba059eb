import logging
from typing import Any, Dict, List

from .errors import NotFound
from .schemas import FacesCreate, FaceTagUpdate

logger = logging.getLogger(__name__)


async def register_faces(repo, workflow_id, uid: str, payload: FacesCreate) -> List[Dict[str, Any]]:
    if await repo.get_workflow(workflow_id, uid) is None:
        raise NotFound("Workflow not found")
    saved = []
    for face in payload.faces:
        values = face.model_dump(exclude_none=True)
        saved.append(await repo.upsert_face(uid, workflow_id, payload.originalImageUrl, values))
    logger.info(f"Stored {len(saved)} detected faces for workflow {workflow_id}")
    return saved


async def list_faces(repo, workflow_id, uid: str) -> List[Dict[str, Any]]:
    if await repo.get_workflow(workflow_id, uid) is None:
        raise NotFound("Workflow not found")
    return await repo.list_faces(workflow_id, uid)


async def tag_face(repo, workflow_id, face_id, uid: str, update: FaceTagUpdate) -> Dict[str, Any]:
    values = update.model_dump(exclude_unset=True)
    face = await repo.update_face(face_id, workflow_id, uid, values)
    if face is None:
        raise NotFound("Face not found")
    return face


def assign_faces(characters: List[Dict[str, Any]], faces: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Attach faceReference to characters. Faces tagged with a name go to the
    character with that name; the rest are handed out by position_order to
    characters still without a face.
    """
    result = [dict(c) for c in characters]
    remaining = sorted(faces, key=lambda f: f.get("position_order") or 0)
    used = set()

    for face in remaining:
        tag = (face.get("tag_name") or "").strip()
        if not tag:
            continue
        for character in result:
            name = character.get("name", "")
            if "faceReference" not in character and (tag == name or tag in name or name in tag):
                character["faceReference"] = {"url": face["face_image_url"], "faceId": str(face["id"])}
                used.add(face["id"])
                break

    untagged = [f for f in remaining if f["id"] not in used and not (f.get("tag_name") or "").strip()]
    for character in result:
        if not untagged:
            break
        if "faceReference" not in character:
            face = untagged.pop(0)
            character["faceReference"] = {"url": face["face_image_url"], "faceId": str(face["id"])}
    return result
