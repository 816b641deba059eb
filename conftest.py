"""
Shared fixtures: an in-memory store, a scripted OpenAI stand-in and a
recording renderer behind httpx.MockTransport, wired into the FastAPI app
through dependency overrides.
"""
import json
from types import SimpleNamespace

import httpx
import pytest
from fastapi.testclient import TestClient

from shakespeare_studio import prompts, settings
from shakespeare_studio.app import app
from shakespeare_studio.deps import get_dispatcher, get_generator, get_store
from shakespeare_studio.llm import ScriptGenerator
from shakespeare_studio.metrics import MetricsCollector
from shakespeare_studio.repository import Repository
from shakespeare_studio.store import MemoryStore
from shakespeare_studio.webhook import WebhookDispatcher
from shakespeare_studio.workflow import WorkflowEngine

USER = "11111111-1111-4111-8111-111111111111"
OTHER = "22222222-2222-4222-8222-222222222222"
ADMIN = "33333333-3333-4333-8333-333333333333"
RENDERER_URL = "http://renderer.test/webhook"

CHARACTERS = [
    {"id": "character-1", "name": "ハル", "role": "主人公", "personality": "明るく前向き",
     "visualDescription": "短い黒髪の少年"},
    {"id": "character-2", "name": "ミオ", "role": "親友", "personality": "思慮深い",
     "visualDescription": "眼鏡をかけた少女"},
]

SCRIPT = {
    "$mulmocast": {"version": "1.0"},
    "title": "夏の約束",
    "lang": "ja",
    "speechParams": {"provider": "openai", "speakers": {
        "Narrator": {"voiceId": "shimmer", "displayName": {"ja": "語り手", "en": "Narrator"}},
        "ハル": {"voiceId": "echo", "displayName": {"ja": "ハル", "en": "Haru"}},
    }},
    "beats": [
        {"speaker": "Narrator", "text": "ある夏の日のこと。", "imagePrompt": "夏の海辺"},
        {"speaker": "ハル", "text": "約束だよ。", "imagePrompt": "夕暮れの約束"},
    ],
}

STEP_RESPONSES = {
    prompts.STORYBOARD_SYSTEM: {
        "summary": {"title": "夏の約束", "description": "二人の少年少女の物語", "genre": "青春",
                    "tags": ["青春", "友情"], "estimatedDuration": 90},
        "acts": {"acts": [
            {"actNumber": 1, "actTitle": "出会い", "description": "始まり", "scenes": [
                {"sceneNumber": 1, "sceneTitle": "海辺", "summary": "ハルとミオが出会う"},
            ]},
            {"actNumber": 2, "actTitle": "約束", "description": "結末", "scenes": [
                {"sceneNumber": 2, "sceneTitle": "夕暮れ", "summary": "二人が約束する"},
                {"sceneNumber": 3, "sceneTitle": "旅立ち", "summary": "ミオが町を去る"},
            ]},
        ]},
        "characters": {"characters": CHARACTERS},
    },
    prompts.CHARACTERS_SYSTEM: {
        "characters": CHARACTERS,
        "imageStyle": {"preset": "watercolor", "description": "淡い水彩"},
    },
    prompts.SCRIPT_SYSTEM: {
        "scenes": [
            {"sceneNumber": 1, "imagePrompt": "夏の海辺で出会う二人", "dialogues": [
                {"speaker": "ハル", "text": "君はどこから来たの？"},
                {"speaker": "ミオ", "text": "遠い町から。"},
            ]},
            {"sceneNumber": 2, "imagePrompt": "夕暮れの堤防", "dialogues": [
                {"speaker": "ハル", "text": "また会おう。"},
            ]},
            {"sceneNumber": 3, "imagePrompt": "駅のホーム", "dialogues": [
                {"speaker": "ミオ", "text": "約束ね。"},
            ]},
        ],
    },
    prompts.VOICES_SYSTEM: {
        "voiceAssignments": [
            {"speaker": "ハル", "suggestedVoice": "echo", "reason": "少年らしい声"},
            {"speaker": "ミオ", "suggestedVoice": "nova", "reason": "明るい少女の声"},
        ],
    },
    prompts.AUDIO_SYSTEM: {
        "bgm": {"type": "story003", "description": "穏やかなピアノ", "mood": "nostalgic"},
        "caption": {"enabled": True, "lang": "ja"},
    },
    prompts.FINALIZE_SYSTEM: {
        "title": "夏の約束",
        "description": "ひと夏の友情の物語",
        "tags": ["青春", "友情"],
    },
}


def canned_response(messages):
    system = messages[0]["content"]
    if system == prompts.SYSTEM_PROMPT:
        return json.dumps(SCRIPT, ensure_ascii=False)
    if system in STEP_RESPONSES:
        return json.dumps(STEP_RESPONSES[system], ensure_ascii=False)
    return json.dumps({"status": "ok"})


class FakeCompletions:
    def __init__(self, responder):
        self.responder = responder
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        content = self.responder(kwargs["messages"])
        if isinstance(content, Exception):
            raise content
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
            usage=SimpleNamespace(prompt_tokens=120, completion_tokens=80),
        )


class FakeOpenAI:
    """Just enough of openai.OpenAI for chat.completions.create."""

    def __init__(self, responder=canned_response):
        self.chat = SimpleNamespace(completions=FakeCompletions(responder))

    @property
    def calls(self):
        return self.chat.completions.calls

    def respond_with(self, responder):
        self.chat.completions.responder = responder


class Renderer:
    """Records webhook bodies and answers with a configurable response."""

    def __init__(self):
        self.requests = []
        self.status_code = 200
        self.headers = {}
        self.error = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        if self.error is not None:
            raise self.error(request)
        return httpx.Response(self.status_code, headers=self.headers, json={"accepted": True})


def timeout_error(request):
    return httpx.ReadTimeout("renderer did not answer", request=request)


def connect_error(request):
    return httpx.ConnectError("connection refused", request=request)


@pytest.fixture(autouse=True)
def studio_settings(monkeypatch):
    monkeypatch.setattr(settings, "AUTH_BYPASS", False)
    monkeypatch.setattr(settings, "ADMIN_UIDS", [ADMIN])
    monkeypatch.setattr(settings, "RENDER_CALLBACK_SECRET", "")
    monkeypatch.setattr(settings, "ENABLE_DIRECT_GENERATION", True)
    monkeypatch.setattr(settings, "OPENAI_API_KEY", "")


@pytest.fixture()
def store():
    return MemoryStore()


@pytest.fixture()
def repo(store):
    return Repository(store)


@pytest.fixture()
def fake_llm():
    return FakeOpenAI()


@pytest.fixture()
def generator(fake_llm):
    return ScriptGenerator(client=fake_llm, metrics=MetricsCollector(), backoff_s=0)


@pytest.fixture()
def renderer():
    return Renderer()


@pytest.fixture()
def dispatcher(renderer):
    return WebhookDispatcher(url=RENDERER_URL, transport=httpx.MockTransport(renderer.handler), disabled=False)


@pytest.fixture()
def engine(repo, generator, dispatcher):
    return WorkflowEngine(repo, generator, dispatcher)


@pytest.fixture()
def client(store, generator, dispatcher):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_generator] = lambda: generator
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


def auth(uid=USER):
    return {"X-User-UID": uid}
