from typing import List, Optional

from .schemas import MulmoScript

STYLE_VARIATIONS = {
    "dramatic": {
        "opening": 'In a world where dreams meet reality, "{title}" begins its tale...',
        "image_style": "dramatic, cinematic, moody lighting",
        "closing": "Thus ends our dramatic journey, leaving echoes of profound meaning.",
    },
    "comedic": {
        "opening": 'Once upon a laugh, in the delightfully chaotic story of "{title}"...',
        "image_style": "comedic, bright colors, playful",
        "closing": "And they all lived hilariously ever after!",
    },
    "adventure": {
        "opening": 'Adventure calls! The epic tale of "{title}" awaits...',
        "image_style": "adventure, epic landscape, dynamic action",
        "closing": "The adventure may end, but the legend lives on forever.",
    },
    "romantic": {
        "opening": 'In matters of the heart, "{title}" unfolds its tender story...',
        "image_style": "romantic, soft lighting, beautiful scenery",
        "closing": "Love conquers all, as our romantic tale reaches its sweet conclusion.",
    },
    "mystery": {
        "opening": 'Shadows whisper secrets in the mysterious tale of "{title}"...',
        "image_style": "mysterious, dark atmosphere, shadows",
        "closing": "The mystery is solved, but its intrigue lingers in the mind.",
    },
}

MIDDLE_SPEAKERS = ["Character", "Narrator", "WiseCharacter"]
EXCERPT_LENGTH = 150


def _excerpt(text: str) -> str:
    text = text.strip()
    if len(text) > EXCERPT_LENGTH:
        return text[:EXCERPT_LENGTH] + "..."
    return text


def _speakers() -> dict:
    names = {
        "Narrator": ("shimmer", "語り手", "Narrator"),
        "Character": ("alloy", "主人公", "Main Character"),
        "WiseCharacter": ("echo", "賢者", "Wise Character"),
    }
    return {
        name: {"voiceId": voice, "displayName": {"ja": ja, "en": en}}
        for name, (voice, ja, en) in names.items()
    }


def build_fallback_script(
    title: str,
    text_raw: str,
    style: str = "dramatic",
    language: str = "ja",
    beats: int = 5,
    scene_titles: Optional[List[str]] = None,
) -> MulmoScript:
    variation = STYLE_VARIATIONS.get(style, STYLE_VARIATIONS["dramatic"])
    image_style = variation["image_style"]
    scene_titles = scene_titles or []

    items = [{
        "speaker": "Narrator",
        "text": variation["opening"].format(title=title),
        "imagePrompt": f"Opening scene: {image_style}, establishing shot of the story world",
    }]

    for i in range(1, beats - 1):
        speaker = MIDDLE_SPEAKERS[i % len(MIDDLE_SPEAKERS)]
        hint = f"{scene_titles[i]}, " if i < len(scene_titles) else ""
        if speaker == "Character":
            text = _excerpt(text_raw)
            prompt = f"Character scene {i}: {hint}{image_style}, character portrait or action scene"
        elif speaker == "Narrator":
            text = "The story unfolds with unexpected twists and meaningful moments..."
            prompt = f"Story development {i}: {hint}{image_style}, visual representation of the main plot"
        else:
            text = "The heart of the story reveals its deeper meaning and purpose..."
            prompt = f"Emotional moment {i}: {hint}{image_style}, dramatic moment of realization"
        items.append({"speaker": speaker, "text": text, "imagePrompt": prompt})

    if beats > 1:
        items.append({
            "speaker": "Narrator",
            "text": variation["closing"],
            "imagePrompt": f"Conclusion scene: {image_style}, peaceful resolution showing the outcome",
        })

    return MulmoScript.model_validate({
        "$mulmocast": {"version": "1.0"},
        "title": title,
        "lang": "ja" if language == "ja" else "en",
        "speechParams": {"provider": "openai", "speakers": _speakers()},
        "imageParams": {"style": f"Ghibli style anime, {image_style}, soft pastel colors, high quality"},
        "beats": items,
    })
