import logging
from typing import Any, Dict, List

from .schemas import MulmoScript
from .step_models import DEFAULT_BGM, IMAGE_STYLE_PRESETS

logger = logging.getLogger(__name__)

IMAGE_MODEL = "gpt-image-1"
DEFAULT_VOICE = "alloy"


def _beats(acts: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    beats = []
    for act in acts:
        for scene in act.get("scenes", []):
            image = None
            if scene.get("imageUrl"):
                image = {"type": "image", "source": {"kind": "url", "url": scene["imageUrl"]}}
            lines = scene.get("dialogues") or []
            if not lines and scene.get("summary"):
                lines = [{"speaker": "Narrator", "text": scene["summary"]}]
            for line in lines:
                beat = {
                    "speaker": line["speaker"],
                    "text": line["text"],
                    "imagePrompt": scene.get("imagePrompt") or scene.get("sceneTitle") or "",
                }
                if image:
                    beat["image"] = image
                beats.append(beat)
    return beats


def _speakers(beats: List[Dict[str, Any]], voices: Dict[str, Any]) -> Dict[str, Any]:
    speakers = {}
    for beat in beats:
        name = beat["speaker"]
        if name in speakers:
            continue
        # exact name first, then partial match in either direction
        setting = voices.get(name)
        if setting is None:
            setting = next((v for k, v in voices.items() if k in name or name in k), None)
        if setting:
            display = setting.get("displayName") or {}
            speakers[name] = {
                "voiceId": setting.get("voiceId") or DEFAULT_VOICE,
                "displayName": {"ja": display.get("ja") or name, "en": display.get("en") or name},
            }
        else:
            speakers[name] = {"voiceId": DEFAULT_VOICE, "displayName": {"ja": name, "en": name}}
    return speakers


def _image_params(step3: Dict[str, Any]) -> Dict[str, Any]:
    image_style = step3.get("imageStyle") or {}
    preset = image_style.get("preset") or "anime"
    style = IMAGE_STYLE_PRESETS.get(preset, IMAGE_STYLE_PRESETS["anime"])
    if image_style.get("customPrompt"):
        style = f"{style}、{image_style['customPrompt']}"
    params: Dict[str, Any] = {"model": IMAGE_MODEL, "style": style}
    images = {}
    for character in step3.get("characters", []):
        face = character.get("faceReference")
        if face and face.get("url"):
            images[character["id"]] = {
                "type": "image",
                "name": character["name"],
                "source": {"kind": "url", "url": face["url"]},
            }
    if images:
        params["images"] = images
    return params


def build_mulmoscript(title: str, outputs: Dict[int, Dict[str, Any]]) -> MulmoScript:
    """
    outputs maps step number to the accepted user input of that step. Steps 1,
    3, 4, 5 and 6 contribute; missing steps fall back to defaults.
    """
    step1 = outputs.get(1) or {}
    step3 = outputs.get(3) or {}
    step4 = outputs.get(4) or {}
    step5 = outputs.get(5) or {}
    step6 = outputs.get(6) or {}

    beats = _beats(step4.get("acts", []))
    bgm = step6.get("bgm") or {}
    caption = step6.get("caption") or {}
    script = {
        "$mulmocast": {"version": "1.0"},
        "title": title,
        "lang": (step1.get("settings") or {}).get("language", "ja"),
        "speechParams": {"provider": "openai", "speakers": _speakers(beats, step5.get("speakers") or {})},
        "imageParams": _image_params(step3),
        "audioParams": {
            "bgm": {"kind": "url", "url": bgm.get("url") or DEFAULT_BGM},
            "bgmVolume": bgm.get("volume", 0.5),
        },
        "beats": beats,
    }
    if caption.get("enabled"):
        script["captionParams"] = {"lang": caption.get("lang", "ja"), "styles": caption.get("styles", [])}
    logger.info(f"Built MulmoScript '{title}' with {len(beats)} beats")
    return MulmoScript.model_validate(script)
