from typing import Dict, List, Literal, Optional, Type

from pydantic import BaseModel, Field, field_validator

from .schemas import DEFAULT_SCENES, MAX_SCENES, MIN_SCENES, MulmoScript

TOTAL_STEPS = 7
WORKFLOW_STORY_TEXT_MAX = 2000
WORKFLOW_TITLE_MAX = 100

ImagePreset = Literal["anime", "watercolor", "oil", "comic", "realistic"]
VoiceId = Literal["alloy", "echo", "fable", "nova", "onyx", "shimmer"]

IMAGE_STYLE_PRESETS = {
    "anime": "アニメ風、ソフトパステルカラー、繊細な線画、シネマティック照明",
    "watercolor": "水彩画風、淡い色調、柔らかな筆致、芸術的な雰囲気",
    "oil": "油絵風、重厚な色彩、印象派的な筆使い、豊かな質感",
    "comic": "コミック風、はっきりした線画、鮮やかな色彩、ダイナミックな構図",
    "realistic": "リアリスティック、写実的、自然な照明、高精細",
}

VOICE_DESCRIPTIONS = {
    "alloy": "中性的で落ち着いた声",
    "echo": "男性的で深みのある声",
    "fable": "若々しく明るい女性の声",
    "nova": "エネルギッシュな女性の声",
    "onyx": "重厚で威厳のある男性の声",
    "shimmer": "優しく柔らかな女性の声",
}

BGM_PRESETS = {
    "story001": "https://github.com/receptron/mulmocast-media/raw/refs/heads/main/bgms/story001.mp3",
    "story002": "https://github.com/receptron/mulmocast-media/raw/refs/heads/main/bgms/story002.mp3",
    "story003": "https://github.com/receptron/mulmocast-media/raw/refs/heads/main/bgms/story003.mp3",
    "story004": "https://github.com/receptron/mulmocast-media/raw/refs/heads/main/bgms/story004.mp3",
    "story005": "https://github.com/receptron/mulmocast-media/raw/refs/heads/main/bgms/story005.mp3",
}
DEFAULT_BGM = BGM_PRESETS["story002"]

DEFAULT_CAPTION_STYLES = [
    "font-size: 32px",
    "color: white",
    "text-shadow: 2px 2px 4px rgba(0,0,0,0.8)",
    "font-family: 'Noto Sans JP', sans-serif",
    "font-weight: bold",
]


# --- shared pieces ---

class SceneOutline(BaseModel):
    sceneNumber: int = Field(ge=1)
    sceneTitle: str = ""
    summary: str = ""


class ActOutline(BaseModel):
    actNumber: int = Field(ge=1)
    actTitle: str = ""
    description: str = ""
    scenes: List[SceneOutline] = Field(default_factory=list)


class Dialogue(BaseModel):
    speaker: str = Field(min_length=1)
    text: str = Field(min_length=1)


class ScriptScene(SceneOutline):
    dialogues: List[Dialogue] = Field(default_factory=list)
    imagePrompt: str = ""
    imageUrl: Optional[str] = None
    duration: Optional[float] = None


class ScriptAct(BaseModel):
    actNumber: int = Field(ge=1)
    actTitle: str = ""
    description: str = ""
    scenes: List[ScriptScene] = Field(default_factory=list)


class CharacterSketch(BaseModel):
    id: str
    name: str
    role: str = ""
    personality: str = ""
    visualDescription: str = ""


class FaceReference(BaseModel):
    url: str
    faceId: Optional[str] = None


class CharacterChoice(BaseModel):
    id: str
    name: str = Field(min_length=1)
    description: str = ""
    faceReference: Optional[FaceReference] = None


class ImageStyle(BaseModel):
    preset: ImagePreset = "anime"
    customPrompt: Optional[str] = None


class DisplayNames(BaseModel):
    ja: str = ""
    en: str = ""


class SpeakerVoice(BaseModel):
    voiceId: VoiceId = "alloy"
    displayName: DisplayNames = Field(default_factory=DisplayNames)


class VoiceAssignment(BaseModel):
    voiceId: VoiceId = "alloy"
    voiceDescription: str = ""


class BgmChoice(BaseModel):
    url: str = DEFAULT_BGM
    volume: float = Field(0.5, ge=0, le=1)


class CaptionChoice(BaseModel):
    enabled: bool = True
    lang: str = "ja"
    styles: List[str] = Field(default_factory=lambda: list(DEFAULT_CAPTION_STYLES))


class StorySettings(BaseModel):
    style: str = "shakespeare"
    language: Literal["ja", "en"] = "ja"


# --- user input per step (step{n}_out) ---

class Step1Output(BaseModel):
    storyText: str = Field(min_length=1, max_length=WORKFLOW_STORY_TEXT_MAX)
    characters: str = ""
    dramaticTurningPoint: str = ""
    futureVision: str = ""
    learnings: str = ""
    totalScenes: int = Field(DEFAULT_SCENES, ge=MIN_SCENES, le=MAX_SCENES)
    settings: StorySettings = Field(default_factory=StorySettings)


class Step2Output(BaseModel):
    title: str = Field(min_length=1, max_length=WORKFLOW_TITLE_MAX)
    acts: List[ActOutline] = Field(min_length=1)


class Step3Output(BaseModel):
    characters: List[CharacterChoice] = Field(min_length=1)
    imageStyle: ImageStyle = Field(default_factory=ImageStyle)


class Step4Output(BaseModel):
    acts: List[ScriptAct] = Field(min_length=1)

    @field_validator("acts")
    @classmethod
    def _has_lines(cls, acts: List[ScriptAct]) -> List[ScriptAct]:
        if not any(scene.dialogues or scene.summary for act in acts for scene in act.scenes):
            raise ValueError("At least one scene needs dialogue or a summary")
        return acts


class Step5Output(BaseModel):
    speakers: Dict[str, SpeakerVoice] = Field(min_length=1)


class Step6Output(BaseModel):
    bgm: BgmChoice = Field(default_factory=BgmChoice)
    caption: CaptionChoice = Field(default_factory=CaptionChoice)


class Step7Output(BaseModel):
    title: str = Field(min_length=1, max_length=WORKFLOW_TITLE_MAX)
    description: str = ""
    tags: List[str] = Field(default_factory=list)
    confirmed: bool = False


# --- generated previews per step (step{n}_in) ---

class Step1Input(BaseModel):
    storyText: str = ""
    characters: str = ""
    dramaticTurningPoint: str = ""
    futureVision: str = ""
    learnings: str = ""
    totalScenes: int = DEFAULT_SCENES
    settings: StorySettings = Field(default_factory=StorySettings)


class Step2Input(BaseModel):
    suggestedTitle: str
    acts: List[ActOutline]
    charactersList: List[CharacterSketch]


class SuggestedImageStyle(BaseModel):
    preset: ImagePreset = "anime"
    description: str = IMAGE_STYLE_PRESETS["anime"]


class Step3Input(BaseModel):
    title: str
    detailedCharacters: List[CharacterSketch]
    suggestedImageStyle: SuggestedImageStyle = Field(default_factory=SuggestedImageStyle)


class Step4Input(BaseModel):
    title: str
    acts: List[ScriptAct]


class Step5Input(BaseModel):
    characters: List[CharacterSketch]
    voiceAssignments: Dict[str, VoiceAssignment]


class BgmSuggestion(BaseModel):
    url: str
    description: str = ""
    mood: str = ""


class CaptionSuggestion(BaseModel):
    enabled: bool = True
    lang: str = "ja"
    stylePreset: str = "default"


class Step6Input(BaseModel):
    bgmSuggestions: List[BgmSuggestion]
    captionSettings: CaptionSuggestion = Field(default_factory=CaptionSuggestion)


class Step7Input(BaseModel):
    finalTitle: str
    description: str = ""
    tags: List[str] = Field(default_factory=list)
    estimatedDuration: int = 0
    preview: Optional[MulmoScript] = None


STEP_OUTPUT_MODELS: Dict[int, Type[BaseModel]] = {
    1: Step1Output,
    2: Step2Output,
    3: Step3Output,
    4: Step4Output,
    5: Step5Output,
    6: Step6Output,
    7: Step7Output,
}

STEP_INPUT_MODELS: Dict[int, Type[BaseModel]] = {
    1: Step1Input,
    2: Step2Input,
    3: Step3Input,
    4: Step4Input,
    5: Step5Input,
    6: Step6Input,
    7: Step7Input,
}
