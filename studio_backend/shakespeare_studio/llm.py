import json
import logging
import re
import time
from typing import Any, Dict, List, Optional, Tuple

import openai
from pydantic import BaseModel, ValidationError

from . import settings
from .errors import ExternalServiceError, RateLimited
from .fallback_script import build_fallback_script
from .metrics import GenerationRecord, MetricsCollector
from .prompts import DEFAULT_TEMPLATE_ID, PROMPT_TEMPLATES, SYSTEM_PROMPT, prompt_hash, render_template
from .schemas import GenerateScriptOptions, MulmoScript, field_errors

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_OBJECT = re.compile(r"\{[\s\S]*\}")

LANGUAGE_NAMES = {"ja": "Japanese", "en": "English"}


class ScriptParseError(ValueError):
    pass


class GenerationResult(BaseModel):
    script: MulmoScript
    generated_with_ai: bool
    attempts: int = 0
    error: Optional[str] = None


def extract_json(content: str) -> Dict[str, Any]:
    """Parse the model's reply, tolerating code fences and stray prose."""
    text = (content or "").strip()
    fenced = _FENCE.search(text)
    if fenced:
        text = fenced.group(1).strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        match = _OBJECT.search(text)
        if not match:
            raise ScriptParseError("No JSON object found in response")
        try:
            return json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise ScriptParseError(f"Invalid JSON in response: {e}")


def check_script_structure(data: Any) -> List[str]:
    """Cheap structural checks that give the model readable errors."""
    if not isinstance(data, dict):
        return ["Response is not a JSON object"]
    problems = []
    if "$mulmocast" not in data:
        problems.append("Missing $mulmocast field")
    if not data.get("speechParams", {}).get("speakers"):
        problems.append("Missing speechParams.speakers")
    beats = data.get("beats")
    if not isinstance(beats, list) or not beats:
        problems.append("Missing or empty beats array")
        return problems
    for i, beat in enumerate(beats, start=1):
        if not isinstance(beat, dict):
            problems.append(f"Beat {i}: not an object")
            continue
        if not beat.get("speaker"):
            problems.append(f"Beat {i}: Missing speaker")
        if not beat.get("text"):
            problems.append(f"Beat {i}: Missing text")
        if not beat.get("imagePrompt"):
            problems.append(f"Beat {i}: Missing imagePrompt")
    return problems


class ScriptGenerator:
    """
    Turns story text into a MulmoScript with the chat completions API.

    generate_script never raises: after the configured retries it returns the
    deterministic fallback script instead.
    """

    def __init__(
        self,
        client=None,
        metrics: Optional[MetricsCollector] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        retry_count: Optional[int] = None,
        backoff_s: Optional[float] = None,
    ):
        self._client = client
        self.metrics = metrics or MetricsCollector()
        self.model = model or settings.OPENAI_MODEL
        self.max_tokens = max_tokens or settings.OPENAI_MAX_TOKENS
        self.temperature = settings.OPENAI_TEMPERATURE if temperature is None else temperature
        self.retry_count = settings.SCRIPT_RETRY_COUNT if retry_count is None else retry_count
        self.backoff_s = settings.SCRIPT_RETRY_BACKOFF_S if backoff_s is None else backoff_s

    def available(self) -> bool:
        return self._client is not None or bool(settings.OPENAI_API_KEY)

    def _get_client(self):
        if self._client is None:
            if not settings.OPENAI_API_KEY:
                raise RuntimeError("OPENAI_API_KEY is not set; please configure your .env")
            self._client = openai.OpenAI(api_key=settings.OPENAI_API_KEY)
        return self._client

    def _chat(self, system: str, user: str, model: Optional[str] = None,
              temperature: Optional[float] = None) -> Tuple[str, int, int]:
        resp = self._get_client().chat.completions.create(
            model=model or self.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            temperature=self.temperature if temperature is None else temperature,
            max_tokens=self.max_tokens,
            response_format={"type": "json_object"},
        )
        usage = getattr(resp, "usage", None)
        input_tokens = getattr(usage, "prompt_tokens", 0) or 0
        output_tokens = getattr(usage, "completion_tokens", 0) or 0
        return resp.choices[0].message.content or "", input_tokens, output_tokens

    def build_prompt(self, title: str, story_text: str, options: GenerateScriptOptions, beats: int) -> str:
        return render_template(_template_id(options), {
            "story_title": title,
            "story_text": story_text,
            "target_duration": options.target_duration,
            "style_preference": options.style,
            "language": LANGUAGE_NAMES[options.language],
            "voice_count": 3,
            "beat_count": beats,
            "scene_titles": ", ".join(options.scene_titles),
        })

    def _attempt(self, prompt: str, template_id: str) -> MulmoScript:
        started = time.monotonic()
        record = {"template_id": template_id, "prompt_hash": prompt_hash(prompt)}
        try:
            content, record["input_tokens"], record["output_tokens"] = self._chat(SYSTEM_PROMPT, prompt)
            data = extract_json(content)
            problems = check_script_structure(data)
            if problems:
                raise ScriptParseError("; ".join(problems))
            script = MulmoScript.model_validate(data)
        except ValidationError as e:
            message = "; ".join(f"{err.field}: {err.message}" for err in field_errors(e))
            self._record_failure(record, started, message)
            raise ScriptParseError(message) from e
        except Exception as e:
            self._record_failure(record, started, str(e))
            raise ScriptParseError(str(e)) from e
        self.metrics.record(GenerationRecord(
            success=True, script_valid=True,
            response_time_ms=int((time.monotonic() - started) * 1000), **record))
        return script

    def generate_script(self, title: str, story_text: str,
                        options: Optional[GenerateScriptOptions] = None) -> GenerationResult:
        options = options or GenerateScriptOptions()
        beats = options.beats or 5
        retries = self.retry_count if options.retry_count is None else options.retry_count

        def fallback(attempts: int, error: Optional[str]) -> GenerationResult:
            script = build_fallback_script(title, story_text, options.style, options.language,
                                           beats, options.scene_titles)
            return GenerationResult(script=script, generated_with_ai=False, attempts=attempts, error=error)

        if not self.available():
            logger.warning("No LLM client configured, using fallback script")
            return fallback(0, "LLM not configured")

        prompt = self.build_prompt(title, story_text, options, beats)
        template_id = _template_id(options)
        last_error = None
        for attempt in range(retries + 1):
            if attempt:
                delay = self.backoff_s * (2 ** attempt)
                logger.info(f"Retrying script generation in {delay}s (attempt {attempt + 1}/{retries + 1})")
                time.sleep(delay)
            try:
                logger.info(f"Calling OpenAI API to generate script for '{title}'")
                script = self._attempt(prompt, template_id)
                logger.info(f"Generated script with {len(script.beats)} beats")
                return GenerationResult(script=script, generated_with_ai=True, attempts=attempt + 1)
            except ScriptParseError as e:
                last_error = str(e)
                logger.error(f"Script generation attempt {attempt + 1} failed: {last_error}")

        logger.warning(f"Script generation exhausted {retries + 1} attempts, using fallback")
        return fallback(retries + 1, last_error)

    def complete_json(self, system: str, user: str, temperature: Optional[float] = None,
                      template_id: str = "workflow") -> Dict[str, Any]:
        """Single JSON completion for workflow steps. Raises RateLimited or ExternalServiceError."""
        started = time.monotonic()
        record = {"template_id": template_id, "prompt_hash": prompt_hash(user)}
        try:
            content, record["input_tokens"], record["output_tokens"] = self._chat(system, user, temperature=temperature)
            data = extract_json(content)
            if not isinstance(data, dict):
                raise ScriptParseError("Response is not a JSON object")
        except openai.RateLimitError as e:
            self._record_failure(record, started, str(e))
            raise RateLimited("LLM rate limit exceeded", retry_after=_retry_after(e))
        except Exception as e:
            logger.error(f"OpenAI API call failed: {str(e)}")
            self._record_failure(record, started, str(e))
            raise ExternalServiceError("LLM request failed") from e
        self.metrics.record(GenerationRecord(
            success=True, script_valid=True,
            response_time_ms=int((time.monotonic() - started) * 1000), **record))
        return data

    def _record_failure(self, record: Dict[str, Any], started: float, message: str) -> None:
        self.metrics.record(GenerationRecord(
            success=False, error_message=message,
            response_time_ms=int((time.monotonic() - started) * 1000), **record))

    def check_connection(self) -> Dict[str, Any]:
        started = time.monotonic()
        try:
            content, _, _ = self._chat(
                "Respond with JSON only.", 'Reply with {"status": "ok"}',
                model=settings.OPENAI_HEALTH_MODEL, temperature=0,
            )
            ok = extract_json(content).get("status") == "ok"
            return {"ok": ok, "model": settings.OPENAI_HEALTH_MODEL,
                    "response_time_ms": int((time.monotonic() - started) * 1000)}
        except Exception as e:
            logger.error(f"OpenAI health check failed: {e}")
            return {"ok": False, "model": settings.OPENAI_HEALTH_MODEL, "error": str(e),
                    "response_time_ms": int((time.monotonic() - started) * 1000)}


def _template_id(options: GenerateScriptOptions) -> str:
    if options.template_id in PROMPT_TEMPLATES:
        return options.template_id
    return DEFAULT_TEMPLATE_ID


def _retry_after(error: "openai.RateLimitError") -> int:
    response = getattr(error, "response", None)
    header = response.headers.get("retry-after") if response is not None else None
    try:
        return max(1, int(float(header)))
    except (TypeError, ValueError):
        return 60
