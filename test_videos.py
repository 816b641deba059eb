"""
Video outbox: generate-video idempotence, renderer callbacks and status
polling.
"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from conftest import SCRIPT, USER, auth, connect_error
from shakespeare_studio import settings
from shakespeare_studio.errors import Conflict
from shakespeare_studio.status import video_progress, video_status
from shakespeare_studio.videos import apply_callback


@pytest.fixture()
def story(repo):
    return asyncio.run(repo.create_story(USER, "夏の約束", "海辺の物語", 3, script_json=SCRIPT,
                                         status="script_generated"))


def generate(client, story_id):
    return client.post(f"/api/stories/{story_id}/generate-video", headers=auth())


def callback(client, video_id, **body):
    return client.post(f"/api/videos/{video_id}/callback", json=dict(body, uid=USER))


def test_generate_video_requires_script(client, repo):
    draft = asyncio.run(repo.create_story(USER, "下書き", "まだ台本がない"))
    response = generate(client, draft["id"])
    assert response.status_code == 400


def test_generate_video_is_idempotent_while_in_progress(client, story, renderer):
    first = generate(client, story["id"])
    assert first.status_code == 200
    data = first.json()["data"]
    assert data["status"] == "queued"

    second = generate(client, story["id"])
    assert second.json()["data"]["video_id"] == data["video_id"]
    assert second.json()["message"] == "Video generation already in progress"
    assert len(renderer.requests) == 1


def test_generate_video_returns_finished_video(client, story, renderer):
    video_id = generate(client, story["id"]).json()["data"]["video_id"]
    callback(client, video_id, status="processing")
    callback(client, video_id, status="completed", url="https://cdn.test/videos/final.mp4", duration_sec=42)

    again = generate(client, story["id"])
    assert again.json()["message"] == "Video already exists"
    assert again.json()["data"] == {"video_id": video_id, "status": "completed"}
    assert len(renderer.requests) == 1


def test_failed_video_can_be_requested_again(client, story, renderer):
    renderer.error = connect_error
    first = generate(client, story["id"]).json()["data"]
    assert first["status"] == "failed"

    renderer.error = None
    second = generate(client, story["id"]).json()["data"]
    assert second["video_id"] != first["video_id"]
    assert second["status"] == "queued"


def test_disabled_webhook_leaves_video_queued(client, story, renderer, dispatcher):
    dispatcher._disabled = True
    response = generate(client, story["id"])
    assert response.json()["data"]["status"] == "queued"
    assert renderer.requests == []


def test_callback_completes_video_and_story(client, story):
    video_id = generate(client, story["id"]).json()["data"]["video_id"]
    assert callback(client, video_id, status="processing").status_code == 200
    response = callback(client, video_id, status="completed", url="https://cdn.test/videos/final.mp4",
                        duration_sec=42.5, resolution="1280x720", size_mb=8.1)
    assert response.json() == {"success": True, "status": "completed"}

    status = client.get(f"/api/videos/{video_id}/status", headers=auth()).json()
    assert status["status"] == "completed"
    assert status["progress"] == 100
    assert status["url"] == "https://cdn.test/videos/final.mp4"
    assert status["duration_sec"] == 42.5
    assert "error_msg" not in status

    assert client.get(f"/api/stories/{story['id']}", headers=auth()).json()["status"] == "completed"


def test_callback_failure_marks_story_error(client, story):
    video_id = generate(client, story["id"]).json()["data"]["video_id"]
    callback(client, video_id, status="failed", error_msg="ffmpeg crashed")
    status = client.get(f"/api/videos/{video_id}/status", headers=auth()).json()
    assert status["error_msg"] == "ffmpeg crashed"
    assert status["progress"] == 0
    assert "url" not in status
    assert client.get(f"/api/stories/{story['id']}", headers=auth()).json()["status"] == "error"


def test_callback_rejects_illegal_transition(client, story):
    video_id = generate(client, story["id"]).json()["data"]["video_id"]
    response = callback(client, video_id, status="completed", url="https://cdn.test/x.mp4")
    assert response.status_code == 409


def test_callback_secret(client, story, monkeypatch):
    monkeypatch.setattr(settings, "RENDER_CALLBACK_SECRET", "s3cret")
    video_id = generate(client, story["id"]).json()["data"]["video_id"]
    assert callback(client, video_id, status="processing").status_code == 401
    response = client.post(f"/api/videos/{video_id}/callback", json={"uid": USER, "status": "processing"},
                           headers={"X-Webhook-Secret": "s3cret"})
    assert response.status_code == 200


def test_callback_for_unknown_video(client):
    response = callback(client, "9b2f6f43-3c55-4bd4-9d3c-0d8f7a0f0b11", status="processing")
    assert response.status_code == 404


def test_apply_callback_same_status_is_progress_report(repo, story):
    async def scenario():
        video = await repo.create_video(USER, story["id"], status="processing")
        updated = await apply_callback(repo, video["id"], USER, {"status": "processing", "preview_status": "completed"})
        assert updated["preview_status"] == "completed"
        with pytest.raises(Conflict):
            await apply_callback(repo, video["id"], USER, {"status": "queued"})

    asyncio.run(scenario())


def test_processing_progress_grows_with_time():
    now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    video = {"id": "v", "status": "processing", "updated_at": (now - timedelta(seconds=150)).isoformat()}
    assert video_progress(video, now) == 50
    video["updated_at"] = (now - timedelta(hours=1)).isoformat()
    assert video_progress(video, now) == 90
    assert video_progress({"status": "queued"}) == 0


def test_video_status_message():
    body = video_status({"id": "v", "status": "queued"})
    assert body["message"] == "動画生成の順番待ちです"
    assert body["progress"] == 0
