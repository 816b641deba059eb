"""
Stories API: CRUD, copying finished stories and script generation.
"""
import asyncio
import json

from conftest import SCRIPT, USER, auth
from shakespeare_studio import settings


def create(client, **overrides):
    body = dict({"title": "夏の約束", "text_raw": "海辺の町で二人が出会う。", "beats": 3}, **overrides)
    return client.post("/api/stories", json=body, headers=auth())


def test_create_and_list(client):
    response = create(client)
    assert response.status_code == 201
    story = response.json()
    assert story["status"] == "draft"
    assert story["uid"] == USER
    assert story["beats"] == 3

    create(client, title="二作目")
    titles = [s["title"] for s in client.get("/api/stories", headers=auth()).json()]
    assert sorted(titles) == ["二作目", "夏の約束"]


def test_create_validation_errors_are_400(client):
    response = create(client, title="", beats=50)
    assert response.status_code == 400
    body = response.json()
    assert body["type"] == "VALIDATION"
    fields = {d["field"] for d in body["details"]}
    assert fields == {"title", "beats"}


def test_requires_authentication(client):
    response = client.post("/api/stories", json={"title": "t", "text_raw": "x"})
    assert response.status_code == 401
    assert response.json()["type"] == "AUTHENTICATION"


def test_update_validates_script(client):
    story_id = create(client).json()["id"]
    response = client.put(f"/api/stories/{story_id}", json={"script_json": {"beats": []}}, headers=auth())
    assert response.status_code == 400

    response = client.put(f"/api/stories/{story_id}", json={"title": "改題", "script_json": SCRIPT}, headers=auth())
    assert response.status_code == 200
    assert response.json()["title"] == "改題"
    assert response.json()["script_json"]["beats"][1]["text"] == "約束だよ。"


def test_update_without_fields(client):
    story_id = create(client).json()["id"]
    assert client.put(f"/api/stories/{story_id}", json={}, headers=auth()).status_code == 400


def test_delete_removes_story_and_videos(client, repo):
    story_id = create(client).json()["id"]
    asyncio.run(repo.create_video(USER, story_id, status="completed"))
    assert client.delete(f"/api/stories/{story_id}", headers=auth()).json() == {"success": True}
    assert client.get(f"/api/stories/{story_id}", headers=auth()).status_code == 404
    assert asyncio.run(repo.videos_for_story(story_id, USER)) == []


def test_generate_script_with_llm(client, fake_llm):
    story_id = create(client).json()["id"]
    response = client.post(f"/api/stories/{story_id}/generate-script", json={"style": "romantic"}, headers=auth())
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["generated_with_ai"] is True
    assert body["data"]["status"] == "script_generated"
    assert body["data"]["script_json"]["beats"][0]["text"] == "ある夏の日のこと。"
    assert body["data"]["story"]["script_json"] == body["data"]["script_json"]
    assert fake_llm.calls[0]["response_format"] == {"type": "json_object"}


RABBIT_STORY = "昔々、ある森に小さなウサギが住んでいました。"


def rabbit_script(beats):
    speakers = ["Narrator", "Character", "WiseCharacter"]
    return {
        "$mulmocast": {"version": "1.0"},
        "title": "森のウサギ",
        "lang": "ja",
        "speechParams": {"provider": "openai", "speakers": {
            name: {"voiceId": voice, "displayName": {"ja": name, "en": name}}
            for name, voice in zip(speakers, ["shimmer", "alloy", "echo"])
        }},
        "beats": [
            {"speaker": speakers[i % 3], "text": f"場面{i + 1}のせりふ。", "imagePrompt": f"森の中のウサギ、場面{i + 1}"}
            for i in range(beats)
        ],
    }


def test_generate_script_for_rabbit_story_with_five_dramatic_beats(client, fake_llm):
    fake_llm.respond_with(lambda messages: json.dumps(rabbit_script(5), ensure_ascii=False))
    story_id = create(client, title="森のウサギ", text_raw=RABBIT_STORY, beats=5).json()["id"]

    response = client.post(f"/api/stories/{story_id}/generate-script",
                           json={"beats": 5, "style": "dramatic"}, headers=auth())
    assert response.status_code == 200, response.text
    data = response.json()["data"]
    assert data["generated_with_ai"] is True
    assert data["status"] == "script_generated"
    beats = data["script_json"]["beats"]
    assert len(beats) == 5
    for beat in beats:
        assert beat["speaker"] and beat["text"] and beat["imagePrompt"]

    prompt = fake_llm.calls[0]["messages"][1]["content"]
    assert RABBIT_STORY in prompt
    assert "Exactly 5 beats" in prompt
    assert "Preferred Style: dramatic" in prompt
    assert client.get(f"/api/stories/{story_id}", headers=auth()).json()["status"] == "script_generated"


def test_generate_script_returns_existing_unless_forced(client, fake_llm):
    story_id = create(client).json()["id"]
    client.post(f"/api/stories/{story_id}/generate-script", headers=auth())
    assert len(fake_llm.calls) == 1

    again = client.post(f"/api/stories/{story_id}/generate-script", headers=auth())
    assert again.json()["message"] == "Script already generated"
    assert len(fake_llm.calls) == 1

    client.post(f"/api/stories/{story_id}/generate-script", json={"force": True}, headers=auth())
    assert len(fake_llm.calls) == 2


def test_generate_script_falls_back_to_template(client, fake_llm):
    fake_llm.respond_with(lambda messages: "not json at all")
    story_id = create(client, beats=4).json()["id"]
    body = client.post(f"/api/stories/{story_id}/generate-script", json={"retry_count": 1},
                       headers=auth()).json()
    assert body["data"]["generated_with_ai"] is False
    assert len(body["data"]["script_json"]["beats"]) == 4
    assert len(fake_llm.calls) == 2


def test_direct_generation_disabled_uses_template(client, fake_llm, monkeypatch):
    monkeypatch.setattr(settings, "ENABLE_DIRECT_GENERATION", False)
    story_id = create(client).json()["id"]
    body = client.post(f"/api/stories/{story_id}/generate-script", headers=auth()).json()
    assert body["data"]["generated_with_ai"] is False
    assert body["data"]["script_json"]["title"] == "夏の約束"
    assert fake_llm.calls == []


def test_copy_only_completed_stories(client, repo):
    draft_id = create(client).json()["id"]
    assert client.post(f"/api/stories/{draft_id}/copy", headers=auth()).status_code == 400

    done = asyncio.run(repo.create_story(USER, "夏の約束", "本文", 3, script_json=SCRIPT, status="completed",
                                        summary_data={"genre": "青春"}))
    response = client.post(f"/api/stories/{done['id']}/copy", headers=auth())
    assert response.status_code == 201
    copy = response.json()
    assert copy["title"] == "夏の約束 (コピー)"
    assert copy["status"] == "script_generated"
    assert copy["script_json"] == SCRIPT
    assert copy["summary_data"] == {"genre": "青春"}
    assert copy["id"] != done["id"]
