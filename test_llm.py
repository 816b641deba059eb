"""Script generation: JSON extraction, retries, fallback and metrics."""
import json

import httpx
import openai
import pytest

from conftest import SCRIPT, FakeOpenAI
from shakespeare_studio.errors import ExternalServiceError, RateLimited
from shakespeare_studio.llm import ScriptGenerator, ScriptParseError, check_script_structure, extract_json
from shakespeare_studio.metrics import MetricsCollector
from shakespeare_studio.prompts import DEFAULT_TEMPLATE_ID, render_template
from shakespeare_studio.schemas import GenerateScriptOptions


def make_generator(responder, **kwargs):
    return ScriptGenerator(client=FakeOpenAI(responder), metrics=MetricsCollector(), backoff_s=0, **kwargs)


def test_extract_json_variants():
    assert extract_json('{"a": 1}') == {"a": 1}
    assert extract_json('```json\n{"a": 2}\n```') == {"a": 2}
    assert extract_json('Sure! Here it is: {"a": 3} Enjoy.') == {"a": 3}
    with pytest.raises(ScriptParseError):
        extract_json("no braces here")


def test_structure_problems_are_readable():
    problems = check_script_structure({"beats": [{"speaker": "A"}]})
    assert "Missing $mulmocast field" in problems
    assert "Beat 1: Missing text" in problems
    assert "Beat 1: Missing imagePrompt" in problems


def test_generate_script_success_records_metrics():
    generator = make_generator(lambda messages: json.dumps(SCRIPT))
    result = generator.generate_script("夏の約束", "本文")
    assert result.generated_with_ai is True
    assert result.attempts == 1
    assert result.script.title == "夏の約束"
    snapshot = generator.metrics.snapshot()
    assert snapshot["successful_requests"] == 1
    assert snapshot["total_input_tokens"] == 120
    assert snapshot["estimated_cost_usd"] == pytest.approx(0.12 * 0.002 + 0.08 * 0.008)


def test_generate_script_retries_then_succeeds():
    replies = iter(["garbage", json.dumps({"beats": []}), json.dumps(SCRIPT)])
    generator = make_generator(lambda messages: next(replies))
    result = generator.generate_script("夏の約束", "本文", GenerateScriptOptions(retry_count=2))
    assert result.generated_with_ai is True
    assert result.attempts == 3
    assert generator.metrics.snapshot()["failed_requests"] == 2


def test_generate_script_falls_back_after_retries():
    generator = make_generator(lambda messages: RuntimeError("boom"), retry_count=1)
    result = generator.generate_script("夏の約束", "本文", GenerateScriptOptions(beats=3, style="comedic"))
    assert result.generated_with_ai is False
    assert result.attempts == 2
    assert result.error == "boom"
    assert len(result.script.beats) == 3


def test_generate_script_without_client_uses_fallback(monkeypatch):
    generator = ScriptGenerator(metrics=MetricsCollector())
    assert generator.available() is False
    result = generator.generate_script("夏の約束", "本文")
    assert result.generated_with_ai is False
    assert result.attempts == 0
    assert len(result.script.beats) == 5


def test_prompt_includes_story_and_schema():
    prompt = make_generator(lambda m: "{}").build_prompt(
        "夏の約束", "海辺の町の話", GenerateScriptOptions(language="en", scene_titles=["出会い"]), 4)
    assert "海辺の町の話" in prompt
    assert "English" in prompt
    assert "$mulmocast" in prompt
    assert "{{" not in prompt


def test_unknown_template_falls_back_to_default():
    generator = make_generator(lambda m: "{}")
    options = GenerateScriptOptions(template_id="does-not-exist")
    assert generator.build_prompt("t", "s", options, 5) == generator.build_prompt(
        "t", "s", GenerateScriptOptions(template_id=DEFAULT_TEMPLATE_ID), 5)
    with pytest.raises(ValueError):
        render_template("does-not-exist", {})


def test_complete_json_maps_errors():
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    limited = openai.RateLimitError(
        "slow down", response=httpx.Response(429, headers={"retry-after": "7"}, request=request), body=None)
    generator = make_generator(lambda messages: limited)
    with pytest.raises(RateLimited) as info:
        generator.complete_json("system", "user")
    assert info.value.retry_after == 7

    generator = make_generator(lambda messages: "[1, 2]")
    with pytest.raises(ExternalServiceError):
        generator.complete_json("system", "user")


def test_check_connection():
    assert make_generator(lambda messages: '{"status": "ok"}').check_connection()["ok"] is True
    result = make_generator(lambda messages: RuntimeError("down")).check_connection()
    assert result["ok"] is False
    assert result["error"] == "down"


def test_health_endpoints(client):
    body = client.get("/health").json()
    assert body == {"ok": True, "has_llm_key": False, "store": "memory"}

    body = client.get("/api/openai/health").json()
    assert body["connection"]["ok"] is True
    assert body["metrics"]["total_requests"] == 0
    assert "timestamp" in body
