"""Admin video list and bulk delete."""
import asyncio

import pytest

from conftest import ADMIN, OTHER, USER, auth
from shakespeare_studio.routes.admin import storage_name


@pytest.fixture()
def videos(repo, store):
    async def seed():
        story = await repo.create_story(USER, "夏の約束", "本文")
        other_story = await repo.create_story(OTHER, "冬の手紙", "本文")
        workflow = await repo.create_workflow(USER, story["id"], instant_mode=True)
        rows = [
            await repo.create_video(USER, story["id"], status="completed", title="夏の約束",
                                    url="https://cdn.test/storage/v1/object/public/videos/summer.mp4",
                                    workflow_id=workflow["id"]),
            await repo.create_video(USER, story["id"], status="failed", title="夏の約束 リテイク"),
            await repo.create_video(OTHER, other_story["id"], status="completed", title="冬の手紙",
                                    url="https://cdn.test/storage/v1/object/public/videos/winter.mp4"),
        ]
        return rows

    rows = asyncio.run(seed())
    store.put_object("videos", "summer.mp4")
    return rows


def test_non_admin_is_forbidden(client, videos):
    response = client.get("/api/admin/videos", headers=auth(USER))
    assert response.status_code == 403
    assert response.json()["type"] == "AUTHORIZATION"


def test_admin_table_grants_access(client, store, videos):
    asyncio.run(store.insert("admins", {"uid": OTHER, "is_active": True}))
    assert client.get("/api/admin/videos", headers=auth(OTHER)).status_code == 200


def test_list_all_users_videos(client, videos):
    body = client.get("/api/admin/videos", headers=auth(ADMIN)).json()
    assert body["pagination"] == {"total": 3, "page": 1, "limit": 50, "totalPages": 1}
    assert {v["uid"] for v in body["videos"]} == {USER, OTHER}


def test_list_filters(client, videos):
    def ids(**params):
        body = client.get("/api/admin/videos", params=params, headers=auth(ADMIN)).json()
        return {v["id"] for v in body["videos"]}

    assert ids(status="failed") == {videos[1]["id"]}
    assert ids(uid=OTHER) == {videos[2]["id"]}
    assert ids(search="夏の") == {videos[0]["id"], videos[1]["id"]}
    assert ids(mode="instant") == {videos[0]["id"]}
    assert ids(mode="workflow") == set()


def test_list_pagination(client, videos):
    body = client.get("/api/admin/videos", params={"limit": 2, "page": 2}, headers=auth(ADMIN)).json()
    assert len(body["videos"]) == 1
    assert body["pagination"]["totalPages"] == 2


def test_limit_is_capped(client, videos):
    response = client.get("/api/admin/videos", params={"limit": 500}, headers=auth(ADMIN))
    assert response.status_code == 400


def test_delete_collects_storage_errors(client, repo, store, videos):
    ids = [v["id"] for v in videos]
    response = client.request("DELETE", "/api/admin/videos", json={"videoIds": ids}, headers=auth(ADMIN))
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["deletedCount"] == 3
    # winter.mp4 was never uploaded; the row is still deleted
    assert data["storageErrors"] == [{"videoId": videos[2]["id"], "error": "Object not found: videos/winter.mp4"}]
    assert store.objects["videos"] == set()
    assert asyncio.run(repo.videos_by_ids(ids)) == []


def test_delete_requires_ids(client, videos):
    response = client.request("DELETE", "/api/admin/videos", json={"videoIds": []}, headers=auth(ADMIN))
    assert response.status_code == 400


def test_storage_name():
    assert storage_name("https://x.test/storage/v1/object/public/videos/abc%20def.mp4") == "abc def.mp4"
    assert storage_name("https://x.test/") is None


def test_cookie_admin_can_filter_by_user(client, videos):
    client.cookies.set("showgeki_uid", ADMIN)
    response = client.get("/api/admin/videos", params={"uid": USER})
    assert response.status_code == 200, response.text
    assert {v["id"] for v in response.json()["videos"]} == {videos[0]["id"], videos[1]["id"]}


def test_uid_filter_is_not_an_identity_on_admin_routes(client, videos):
    response = client.get("/api/admin/videos", params={"uid": ADMIN})
    assert response.status_code == 401
