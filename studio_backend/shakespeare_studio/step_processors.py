"""
Generators for the preview shown at the next workflow step.

Each processor takes the accepted output of step n (plus everything accepted
before it and the story's storyboard data), asks the LLM for the next step's
material, and normalizes whatever comes back. They return the next step's
input and the story columns to update; nothing is written here.
"""
import json
import logging
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from . import prompts
from .mulmoscript import build_mulmoscript
from .errors import WorkflowGenerationError
from .step_models import (
    BGM_PRESETS, DEFAULT_BGM, IMAGE_STYLE_PRESETS, VOICE_DESCRIPTIONS,
    Step2Input, Step3Input, Step4Input, Step5Input, Step6Input, Step7Input,
)

logger = logging.getLogger(__name__)

DEFAULT_ACTS = [
    ("序幕", "物語の始まりと設定"),
    ("発展", "問題の発生と展開"),
    ("転換", "劇的な転換点"),
    ("危機", "最大の危機と葛藤"),
    ("結末", "解決と結論"),
]

DEFAULT_CHARACTERS = [
    {"id": "character-1", "name": "主人公", "role": "主人公",
     "personality": "勇敢で決断力のある", "visualDescription": "若々しく凛とした外見"},
    {"id": "character-2", "name": "相手役", "role": "相手役",
     "personality": "優しく理解のある", "visualDescription": "温かみのある外見"},
    {"id": "character-3", "name": "語り手", "role": "語り手",
     "personality": "物語を導く賢明な", "visualDescription": "落ち着いた威厳のある外見"},
]

SECONDS_PER_BEAT = 5


class StepContext(BaseModel):
    """Everything a processor may read."""
    story: Dict[str, Any]
    outputs: Dict[int, Dict[str, Any]] = Field(default_factory=dict)


class StepResult(BaseModel):
    next_input: Optional[Dict[str, Any]] = None
    story_updates: Dict[str, Any] = Field(default_factory=dict)


def default_acts(total_scenes: int) -> List[Dict[str, Any]]:
    per_act, remainder = divmod(total_scenes, len(DEFAULT_ACTS))
    acts = []
    counter = 1
    for index, (title, description) in enumerate(DEFAULT_ACTS):
        count = per_act + (1 if index < remainder else 0)
        scenes = []
        for i in range(count):
            scenes.append({
                "sceneNumber": counter,
                "sceneTitle": f"シーン{counter}",
                "summary": f"第{index + 1}幕のシーン{i + 1}",
            })
            counter += 1
        acts.append({"actNumber": index + 1, "actTitle": title, "description": description, "scenes": scenes})
    return acts


def _normalize_acts(raw: Any, total_scenes: int) -> List[Dict[str, Any]]:
    if not isinstance(raw, list) or not raw:
        return default_acts(total_scenes)
    acts = []
    for index, act in enumerate(raw):
        if not isinstance(act, dict):
            continue
        scenes = []
        for scene_index, scene in enumerate(act.get("scenes") or []):
            if not isinstance(scene, dict):
                continue
            scenes.append({
                "sceneNumber": scene.get("sceneNumber") or scene_index + 1,
                "sceneTitle": scene.get("sceneTitle") or f"シーン{scene_index + 1}",
                "summary": scene.get("summary") or "",
            })
        acts.append({
            "actNumber": act.get("actNumber") or index + 1,
            "actTitle": act.get("actTitle") or f"第{index + 1}幕",
            "description": act.get("description") or "",
            "scenes": scenes,
        })
    return acts or default_acts(total_scenes)


def _normalize_characters(raw: Any, fallback: Optional[List[Dict[str, Any]]] = None) -> List[Dict[str, Any]]:
    if not isinstance(raw, list) or not raw:
        return list(fallback or DEFAULT_CHARACTERS)
    characters = []
    for index, char in enumerate(raw):
        if not isinstance(char, dict) or not char.get("name"):
            continue
        characters.append({
            "id": char.get("id") or f"character-{index + 1}",
            "name": char["name"],
            "role": char.get("role") or "登場人物",
            "personality": char.get("personality") or "",
            "visualDescription": char.get("visualDescription") or "",
        })
    return characters or list(fallback or DEFAULT_CHARACTERS)


def _stored_characters(story: Dict[str, Any]) -> List[Dict[str, Any]]:
    return ((story.get("characters_data") or {}).get("characters")) or []


def _dump(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, indent=2)


# --- step 1 -> 2: storyboard ---

def process_step1(generator, ctx: StepContext) -> StepResult:
    step1 = ctx.outputs[1]
    settings = step1.get("settings") or {}
    total_scenes = step1.get("totalScenes", 5)
    user = prompts.STORYBOARD_PROMPT.format(
        story_text=step1["storyText"],
        characters=step1.get("characters", ""),
        turning_point=step1.get("dramaticTurningPoint", ""),
        future_vision=step1.get("futureVision", ""),
        learnings=step1.get("learnings", ""),
        total_scenes=total_scenes,
        style=settings.get("style", "shakespeare"),
        language=settings.get("language", "ja"),
        schema=prompts.STORYBOARD_SCHEMA,
    )
    result = generator.complete_json(prompts.STORYBOARD_SYSTEM, user, temperature=0.7, template_id="step1_storyboard")

    raw_summary = result.get("summary") or {}
    summary = {
        "title": (raw_summary.get("title") or "untitled")[:100],
        "description": raw_summary.get("description") or "",
        "genre": raw_summary.get("genre") or "ドラマ",
        "tags": raw_summary.get("tags") if isinstance(raw_summary.get("tags"), list) else [],
        "estimatedDuration": raw_summary.get("estimatedDuration") or 120,
    }
    acts = _normalize_acts((result.get("acts") or {}).get("acts"), total_scenes)
    characters = _normalize_characters((result.get("characters") or {}).get("characters"))

    next_input = Step2Input(suggestedTitle=summary["title"], acts=acts, charactersList=characters)
    return StepResult(
        next_input=next_input.model_dump(),
        story_updates={
            "title": summary["title"],
            "text_raw": step1["storyText"],
            "beats": total_scenes,
            "summary_data": summary,
            "acts_data": {"acts": acts},
            "characters_data": {"characters": characters},
        },
    )


# --- step 2 -> 3: characters and image style ---

def process_step2(generator, ctx: StepContext) -> StepResult:
    step2 = ctx.outputs[2]
    existing = _stored_characters(ctx.story)
    user = prompts.CHARACTERS_PROMPT.format(
        title=step2["title"],
        acts=_dump(step2["acts"]),
        characters=_dump(existing),
        schema=prompts.CHARACTERS_SCHEMA,
    )
    result = generator.complete_json(prompts.CHARACTERS_SYSTEM, user, temperature=0.7, template_id="step2_characters")

    characters = _normalize_characters(result.get("characters"), fallback=existing)
    style = result.get("imageStyle") or {}
    preset = style.get("preset") if style.get("preset") in IMAGE_STYLE_PRESETS else "anime"
    next_input = Step3Input(
        title=step2["title"],
        detailedCharacters=characters,
        suggestedImageStyle={"preset": preset, "description": style.get("description") or IMAGE_STYLE_PRESETS[preset]},
    )
    return StepResult(
        next_input=next_input.model_dump(),
        story_updates={
            "title": step2["title"],
            "acts_data": {"acts": step2["acts"]},
            "characters_data": {"characters": characters},
        },
    )


# --- step 3 -> 4: dialogue and image prompts ---

def process_step3(generator, ctx: StepContext) -> StepResult:
    step3 = ctx.outputs[3]
    story = ctx.story
    acts = ((story.get("acts_data") or {}).get("acts")) or default_acts(story.get("beats") or 5)
    image_style = step3.get("imageStyle") or {}
    preset = image_style.get("preset", "anime")
    style_text = IMAGE_STYLE_PRESETS.get(preset, IMAGE_STYLE_PRESETS["anime"])

    scene_lines = []
    for act in acts:
        for scene in act.get("scenes", []):
            scene_lines.append(
                f"- シーン{scene['sceneNumber']} (第{act['actNumber']}幕 {act.get('actTitle', '')}): "
                f"{scene.get('sceneTitle', '')} / {scene.get('summary', '')}"
            )
    user = prompts.SCRIPT_PROMPT.format(
        title=story.get("title") or "",
        image_style=style_text,
        characters="\n".join(f"- {c['name']}: {c.get('description', '')}" for c in step3["characters"]),
        scenes="\n".join(scene_lines),
        schema=prompts.SCRIPT_SCHEMA,
    )
    result = generator.complete_json(prompts.SCRIPT_SYSTEM, user, temperature=0.8, template_id="step3_script")

    generated = result.get("scenes")
    if not isinstance(generated, list) or not generated:
        raise WorkflowGenerationError("Script generation returned no scenes", step=3, code="EMPTY_SCRIPT")
    by_number = {}
    for scene in generated:
        if isinstance(scene, dict) and scene.get("sceneNumber") is not None:
            by_number[int(scene["sceneNumber"])] = scene

    script_acts = []
    for act in acts:
        scenes = []
        for scene in act.get("scenes", []):
            made = by_number.get(int(scene["sceneNumber"]), {})
            dialogues = [
                {"speaker": d["speaker"], "text": d["text"]}
                for d in made.get("dialogues") or []
                if isinstance(d, dict) and d.get("speaker") and d.get("text")
            ]
            if not dialogues:
                dialogues = [{"speaker": "Narrator", "text": scene.get("summary") or scene.get("sceneTitle") or "..."}]
            scenes.append(dict(
                scene,
                dialogues=dialogues,
                imagePrompt=made.get("imagePrompt") or f"{style_text}、{scene.get('sceneTitle', '')}",
            ))
        script_acts.append(dict(act, scenes=scenes))

    stored = {c["id"]: c for c in _stored_characters(story)}
    characters = []
    for choice in step3["characters"]:
        merged = dict(stored.get(choice["id"], {}), id=choice["id"], name=choice["name"])
        merged["description"] = choice.get("description", "")
        if choice.get("faceReference"):
            merged["faceReference"] = choice["faceReference"]
        characters.append(merged)

    next_input = Step4Input(title=story.get("title") or "untitled", acts=script_acts)
    return StepResult(
        next_input=next_input.model_dump(),
        story_updates={
            "characters_data": {"characters": characters},
            "style_data": {"preset": preset, "customPrompt": image_style.get("customPrompt"), "description": style_text},
            "scenes_data": {"acts": script_acts},
        },
    )


# --- step 4 -> 5: voice casting ---

def _speaker_names(acts: List[Dict[str, Any]]) -> List[str]:
    names = []
    for act in acts:
        for scene in act.get("scenes", []):
            for line in scene.get("dialogues", []):
                if line["speaker"] not in names:
                    names.append(line["speaker"])
    return names


def process_step4(generator, ctx: StepContext) -> StepResult:
    step4 = ctx.outputs[4]
    speakers = _speaker_names(step4["acts"])
    user = prompts.VOICES_PROMPT.format(
        speakers="\n".join(f"- {name}" for name in speakers),
        voices="\n".join(f"- {voice}: {desc}" for voice, desc in VOICE_DESCRIPTIONS.items()),
        schema=prompts.VOICES_SCHEMA,
    )
    result = generator.complete_json(prompts.VOICES_SYSTEM, user, temperature=0.3, template_id="step4_voices")

    suggested = {}
    for item in result.get("voiceAssignments") or []:
        if isinstance(item, dict) and item.get("speaker"):
            suggested[item["speaker"]] = item
    assignments = {}
    for name in speakers:
        item = suggested.get(name, {})
        voice = item.get("suggestedVoice") if item.get("suggestedVoice") in VOICE_DESCRIPTIONS else "alloy"
        assignments[name] = {"voiceId": voice, "voiceDescription": item.get("reason") or VOICE_DESCRIPTIONS[voice]}

    characters = _normalize_characters(_stored_characters(ctx.story))
    next_input = Step5Input(characters=characters, voiceAssignments=assignments)
    return StepResult(
        next_input=next_input.model_dump(),
        story_updates={"scenes_data": {"acts": step4["acts"]}},
    )


# --- step 5 -> 6: BGM and captions ---

def process_step5(generator, ctx: StepContext) -> StepResult:
    summary = ctx.story.get("summary_data") or {}
    user = prompts.AUDIO_PROMPT.format(
        title=ctx.story.get("title") or "",
        genre=summary.get("genre") or "ドラマ",
        description=summary.get("description") or "",
        schema=prompts.AUDIO_SCHEMA,
    )
    result = generator.complete_json(prompts.AUDIO_SYSTEM, user, temperature=0.3, template_id="step5_audio")

    bgm = result.get("bgm") or {}
    chosen = BGM_PRESETS.get(bgm.get("type"), DEFAULT_BGM)
    suggestions = [{"url": chosen, "description": bgm.get("description") or "", "mood": bgm.get("mood") or ""}]
    suggestions += [{"url": url, "description": key, "mood": ""} for key, url in BGM_PRESETS.items() if url != chosen]
    caption = result.get("caption") or {}
    step1 = ctx.outputs.get(1) or {}
    language = (step1.get("settings") or {}).get("language", "ja")

    next_input = Step6Input(
        bgmSuggestions=suggestions,
        captionSettings={
            "enabled": bool(caption.get("enabled", True)),
            "lang": caption.get("lang") or language,
            "stylePreset": "default",
        },
    )
    return StepResult(
        next_input=next_input.model_dump(),
        story_updates={"audio_data": {"speakers": ctx.outputs[5]["speakers"]}},
    )


# --- step 6 -> 7: final metadata and preview ---

def process_step6(generator, ctx: StepContext) -> StepResult:
    story = ctx.story
    summary = story.get("summary_data") or {}
    title = story.get("title") or "untitled"
    preview = build_mulmoscript(title, ctx.outputs)
    user = prompts.FINALIZE_PROMPT.format(
        title=title,
        description=summary.get("description") or "",
        scene_count=len(preview.beats),
        schema=prompts.FINALIZE_SCHEMA,
    )
    result = generator.complete_json(prompts.FINALIZE_SYSTEM, user, temperature=0.5, template_id="step6_finalize")

    tags = result.get("tags") if isinstance(result.get("tags"), list) else summary.get("tags") or []
    next_input = Step7Input(
        finalTitle=(result.get("title") or title)[:100],
        description=result.get("description") or summary.get("description") or "",
        tags=[str(t) for t in tags],
        estimatedDuration=len(preview.beats) * SECONDS_PER_BEAT,
        preview=preview,
    )
    step6 = ctx.outputs[6]
    return StepResult(
        next_input=next_input.model_dump(by_alias=True, exclude_none=True),
        story_updates={
            "audio_data": dict(story.get("audio_data") or {}, bgm=step6["bgm"]),
            "caption_data": step6["caption"],
        },
    )


PROCESSORS: Dict[int, Callable[..., StepResult]] = {
    1: process_step1,
    2: process_step2,
    3: process_step3,
    4: process_step4,
    5: process_step5,
    6: process_step6,
}


def generate_next_input(step: int, generator, ctx: StepContext) -> StepResult:
    processor = PROCESSORS.get(step)
    if processor is None:
        return StepResult()
    logger.info(f"Generating step {step + 1} input")
    return processor(generator, ctx)
