"""
Instant mode: the whole workflow in one background run, its status view and
the detected-face records used to pin characters to uploaded faces.
"""
import asyncio

from conftest import OTHER, USER, auth
from shakespeare_studio.faces import assign_faces
from shakespeare_studio.instant import create_instant, run_instant
from shakespeare_studio.schemas import InstantCreate
from shakespeare_studio.status import instant_progress, instant_status

REQUEST = {"storyText": "夏休みに海辺の町で出会った二人の物語。", "duration": "short"}


def face(index, **extra):
    return dict({
        "face_index": index,
        "face_image_url": f"https://cdn.test/faces/{index}.png",
        "bounding_box": {"x": 10 * index, "y": 5, "width": 40, "height": 40},
        "detection_confidence": 0.9,
    }, **extra)


def test_create_runs_pipeline_in_background(client, renderer):
    response = client.post("/api/instant/create", json=REQUEST, headers=auth())
    assert response.status_code == 202
    instant_id = response.json()["instantId"]

    workflow = client.get(f"/api/workflow/{instant_id}", headers=auth()).json()
    assert workflow["instant_mode"] is True
    assert workflow["status"] == "completed"
    assert workflow["step1_out"]["totalScenes"] == 3
    assert workflow["step3_out"]["imageStyle"]["preset"] == "anime"
    timings = workflow["instant_metadata"]["timings"]
    assert list(timings) == ["analyzing", "structuring", "characters", "script", "voices", "finalizing", "generating"]
    assert "total_seconds" in workflow["instant_metadata"]

    status = client.get(f"/api/instant/{instant_id}/status", headers=auth()).json()
    assert status["status"] == "processing"
    assert status["currentStep"] == "generating"
    assert status["progress"] == 90
    assert [r["type"] for r in renderer.requests] == ["video_generation"]

    video_id = status["videoId"]
    client.post(f"/api/videos/{video_id}/callback", json={"uid": USER, "status": "processing"})
    client.post(f"/api/videos/{video_id}/callback",
                json={"uid": USER, "status": "completed", "url": "https://cdn.test/videos/v.mp4"})
    status = client.get(f"/api/instant/{instant_id}/status", headers=auth()).json()
    assert status["status"] == "completed"
    assert status["progress"] == 100
    assert status["videoUrl"] == "https://cdn.test/videos/v.mp4"


def test_title_from_request_is_kept(client):
    body = dict(REQUEST, title="海辺の約束")
    instant_id = client.post("/api/instant/create", json=body, headers=auth()).json()["instantId"]
    workflow = client.get(f"/api/workflow/{instant_id}", headers=auth()).json()
    assert workflow["step7_out"]["title"] == "海辺の約束"


def test_failure_is_recorded_on_workflow(client, fake_llm, renderer):
    fake_llm.respond_with(lambda messages: RuntimeError("quota exceeded"))
    instant_id = client.post("/api/instant/create", json=REQUEST, headers=auth()).json()["instantId"]

    status = client.get(f"/api/instant/{instant_id}/status", headers=auth()).json()
    assert status["status"] == "failed"
    assert status["error"] == "Failed to generate step 2 input"
    workflow = client.get(f"/api/workflow/{instant_id}", headers=auth()).json()
    assert workflow["status"] == "archived"
    assert renderer.requests == []


def test_status_of_regular_workflow_is_not_found(client):
    workflow_id = client.post("/api/workflow/create", headers=auth()).json()["workflow_id"]
    assert client.get(f"/api/instant/{workflow_id}/status", headers=auth()).status_code == 404


def test_create_validates_payload(client):
    response = client.post("/api/instant/create", json={"storyText": "", "duration": "epic"}, headers=auth())
    assert response.status_code == 400
    assert {d["field"] for d in response.json()["details"]} == {"storyText", "duration"}


def test_faces_are_mapped_onto_characters(engine, repo):
    async def scenario():
        request = InstantCreate(**REQUEST)
        workflow = await create_instant(engine, USER, request)
        await repo.upsert_face(USER, workflow["id"], "https://cdn.test/group.png", face(0, tag_name="ミオ"))
        await repo.upsert_face(USER, workflow["id"], "https://cdn.test/group.png", face(1))
        await run_instant(engine, workflow["id"], USER, request)
        return await repo.get_workflow(workflow["id"], USER)

    workflow = asyncio.run(scenario())
    characters = {c["name"]: c for c in workflow["step3_out"]["characters"]}
    assert characters["ミオ"]["faceReference"]["url"] == "https://cdn.test/faces/0.png"
    assert characters["ハル"]["faceReference"]["url"] == "https://cdn.test/faces/1.png"


def test_face_routes(client):
    instant_id = client.post("/api/instant/create", json=REQUEST, headers=auth()).json()["instantId"]
    path = f"/api/instant/{instant_id}/faces"
    body = {"originalImageUrl": "https://cdn.test/group.png",
            "faces": [face(0, position_order=1), face(1, position_order=0)]}
    response = client.post(path, json=body, headers=auth())
    assert response.status_code == 201
    assert len(response.json()["faces"]) == 2

    # posting the same face_index again updates instead of duplicating
    client.post(path, json={"originalImageUrl": "https://cdn.test/group.png",
                            "faces": [face(1, position_order=0, detection_confidence=0.5)]}, headers=auth())
    faces = client.get(path, headers=auth()).json()["faces"]
    assert [f["face_index"] for f in faces] == [1, 0]
    assert faces[0]["detection_confidence"] == 0.5

    response = client.patch(f"{path}/{faces[0]['id']}", json={"tag_name": "ハル", "tag_role": "protagonist"},
                            headers=auth())
    assert response.status_code == 200
    assert response.json()["tag_role"] == "protagonist"

    assert client.get(path, headers=auth(OTHER)).status_code == 404
    assert client.patch(f"{path}/{faces[0]['id']}", json={"tag_name": "x"}, headers=auth(OTHER)).status_code == 404


def test_face_tag_validation(client):
    instant_id = client.post("/api/instant/create", json=REQUEST, headers=auth()).json()["instantId"]
    response = client.post(f"/api/instant/{instant_id}/faces",
                           json={"originalImageUrl": "https://cdn.test/g.png", "faces": [face(0, detection_confidence=2)]},
                           headers=auth())
    assert response.status_code == 400


def test_assign_faces_by_position():
    characters = [{"id": "c1", "name": "A"}, {"id": "c2", "name": "B"}]
    faces = [
        {"id": "f2", "face_image_url": "u2", "position_order": 2},
        {"id": "f1", "face_image_url": "u1", "position_order": 1},
    ]
    result = assign_faces(characters, faces)
    assert [c["faceReference"]["faceId"] for c in result] == ["f1", "f2"]
    assert "faceReference" not in characters[0]


def test_instant_status_views():
    workflow = {"id": "w", "story_id": "s", "status": "active", "instant_step": None}
    assert instant_status(workflow, None)["status"] == "pending"
    assert instant_status(dict(workflow, instant_step="analyzing"), None)["message"] == "ストーリーを解析中..."
    assert instant_progress("analyzing") == 12
    failed_video = {"id": "v", "status": "failed", "error_msg": "Webhook error: 500"}
    assert instant_status(dict(workflow, instant_step="generating"), failed_video)["status"] == "failed"
