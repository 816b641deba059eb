import hashlib
import re
from typing import Dict

SYSTEM_PROMPT = """You are a master storyteller and video script writer for Tokyo Shakespeare Studio.
You turn short personal stories into cinematic, Shakespeare-flavoured scripts for narrated videos.
Output ONLY valid JSON in the mulmocast format. No commentary, no markdown."""


MULMOSCRIPT_SCHEMA = r"""{
  "$mulmocast": {"version": "1.0"},
  "title": "<title>",
  "lang": "<ja|en>",
  "speechParams": {
    "provider": "openai",
    "speakers": {
      "Narrator": {"voiceId": "shimmer", "displayName": {"en": "Narrator", "ja": "語り手"}},
      "Character": {"voiceId": "alloy", "displayName": {"en": "Character", "ja": "登場人物"}}
    }
  },
  "imageParams": {"style": "<visual style shared by every image>"},
  "beats": [
    {"speaker": "<one of the speakers>", "text": "<spoken line>", "imagePrompt": "<vivid visual description>"}
  ]
}"""


BASE_TEMPLATE = """Convert the user story into a structured mulmocast script for video generation.

## Input Story
Title: "{{story_title}}"
Content: {{story_text}}

## Requirements
- Create exactly {{beat_count}} beats that tell a complete story
- Target total duration: approximately {{target_duration}} seconds
- Language: {{language}}
- Style: {{style_preference}}
- Scene hints (may be empty): {{scene_titles}}

## Output Format
Respond with a JSON object matching:
{{schema}}

Use "beats" (not "scenes"); every beat needs speaker, text and imagePrompt."""


ENHANCED_TEMPLATE = """Transform the story into a cinematic mulmocast script.

## Story Analysis
Title: "{{story_title}}"
Content: {{story_text}}
Preferred Style: {{style_preference}}
Target Language: {{language}}
Scene hints (may be empty): {{scene_titles}}

## Creative Direction
Create a {{target_duration}}-second video that:
- captures the emotion of the original story
- varies pacing and speakers for visual interest
- follows a clear arc with setup, development and resolution

## Technical Specifications
- Exactly {{beat_count}} beats
- At most {{voice_count}} different speakers
- Narrator: clear storytelling voice; Character: the protagonist; WiseCharacter: a mentor
- Every beat has speaker, text and a detailed imagePrompt

## Response Format
Respond with ONLY the JSON object:
{{schema}}"""


PROMPT_TEMPLATES: Dict[str, str] = {
    "base_mulmoscript_v1": BASE_TEMPLATE,
    "enhanced_mulmoscript_v1": ENHANCED_TEMPLATE,
}
DEFAULT_TEMPLATE_ID = "enhanced_mulmoscript_v1"

_VARIABLE = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def render_template(template_id: str, variables: Dict[str, object]) -> str:
    """Substitute {{name}} placeholders; unknown names are left as-is."""
    try:
        template = PROMPT_TEMPLATES[template_id]
    except KeyError:
        raise ValueError(f"Unknown prompt template: {template_id}")
    values = dict(variables)
    values.setdefault("schema", MULMOSCRIPT_SCHEMA)
    return _VARIABLE.sub(lambda m: str(values.get(m.group(1), m.group(0))), template)


def prompt_hash(prompt: str) -> str:
    return hashlib.sha256(prompt.encode("utf-8")).hexdigest()[:16]


# --- workflow step prompts ---

STORYBOARD_SYSTEM = "あなたは優秀なストーリー構成専門家です。与えられた情報から、シェイクスピア風5幕構成の物語を作成し、適切な登場人物を設定してください。"

STORYBOARD_SCHEMA = r"""{
  "summary": {"title": "<title>", "description": "<about 200 characters>", "genre": "<genre>", "tags": ["<tag>"], "estimatedDuration": 120},
  "acts": {"acts": [{"actNumber": 1, "actTitle": "<title>", "description": "<summary>",
                     "scenes": [{"sceneNumber": 1, "sceneTitle": "<title>", "summary": "<summary>"}]}]},
  "characters": {"characters": [{"id": "character-1", "name": "<name>", "role": "<role>", "personality": "<personality>", "visualDescription": "<looks>"}]}
}"""

STORYBOARD_PROMPT = """以下の情報から、シェイクスピア風5幕構成の物語を作成してください。

## 入力情報
- ストーリー: {story_text}
- 登場人物: {characters}
- 劇的転換点: {turning_point}
- 未来のビジョン: {future_vision}
- 学びや気づき: {learnings}
- 総シーン数: {total_scenes}
- スタイル: {style}
- 言語: {language}

## 生成要件
1. タイトル案を1つ提案
2. 5幕構成で、シーンの総数を {total_scenes} に合わせる
3. 主要登場人物を3-6名設定し、役割と性格を付ける

## 出力形式
{schema}"""


CHARACTERS_SYSTEM = "あなたはキャラクターデザインの専門家です。物語の登場人物を映像化できるよう詳細化してください。"

CHARACTERS_SCHEMA = r"""{
  "characters": [{"id": "character-1", "name": "<name>", "role": "<role>", "personality": "<personality>", "visualDescription": "<detailed looks for image generation>"}],
  "imageStyle": {"preset": "<anime|watercolor|oil|comic|realistic>", "description": "<why>"}
}"""

CHARACTERS_PROMPT = """作品タイトル: {title}

## 幕場構成
{acts}

## 現在の登場人物
{characters}

登場人物の性格と外見を詳細化し、作品に合う画風を提案してください。

## 出力形式
{schema}"""


SCRIPT_SYSTEM = "あなたはシェイクスピア劇の脚本家です。各シーンのセリフと画像プロンプトを作成してください。"

SCRIPT_SCHEMA = r"""{
  "scenes": [{"sceneNumber": 1, "dialogues": [{"speaker": "<character name>", "text": "<line>"}], "imagePrompt": "<visual description>"}]
}"""

SCRIPT_PROMPT = """作品タイトル: {title}
画風: {image_style}

## 登場人物
{characters}

## シーン一覧
{scenes}

各シーンに1-3行のセリフ（話者は登場人物名か Narrator）と画像生成プロンプトを付けてください。

## 出力形式
{schema}"""


VOICES_SYSTEM = "あなたは音声キャスティングの専門家です。登場人物に最適なOpenAIの音声を割り当ててください。"

VOICES_SCHEMA = r"""{
  "voiceAssignments": [{"speaker": "<speaker name>", "suggestedVoice": "<alloy|echo|fable|nova|onyx|shimmer>", "reason": "<why>"}]
}"""

VOICES_PROMPT = """## 話者
{speakers}

## 利用可能な音声
{voices}

## 出力形式
{schema}"""


AUDIO_SYSTEM = "あなたは映像作品の音響監督です。作品に合うBGMと字幕設定を提案してください。"

AUDIO_SCHEMA = r"""{
  "bgm": {"type": "<story001|story002|story003|story004|story005|none>", "mood": "<mood>", "description": "<why>"},
  "caption": {"enabled": true, "lang": "<ja|en>"}
}"""

AUDIO_PROMPT = """作品タイトル: {title}
ジャンル: {genre}
概要: {description}

## 出力形式
{schema}"""


FINALIZE_SYSTEM = "あなたは映像作品の編集者です。公開用のタイトル、説明文、タグを作成してください。"

FINALIZE_SCHEMA = r"""{"title": "<final title>", "description": "<short description>", "tags": ["<tag>"]}"""

FINALIZE_PROMPT = """作品タイトル案: {title}
概要: {description}
シーン数: {scene_count}

## 出力形式
{schema}"""
