from datetime import datetime
from typing import Any, Dict, Generic, List, Literal, Optional, Type, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ValidationFailed

STORY_STATUSES = ("draft", "script_generated", "processing", "completed", "error")
VIDEO_STATUSES = ("queued", "processing", "completed", "failed", "error")
PREVIEW_STATUSES = ("pending", "processing", "completed", "failed")
WORKFLOW_STATUSES = ("active", "completed", "archived")

StoryStatus = Literal["draft", "script_generated", "processing", "completed", "error"]
VideoStatus = Literal["queued", "processing", "completed", "failed", "error"]
PreviewStatus = Literal["pending", "processing", "completed", "failed"]
WorkflowStatus = Literal["active", "completed", "archived"]
StylePreference = Literal["dramatic", "comedic", "adventure", "romantic", "mystery"]
Language = Literal["ja", "en"]
FaceRole = Literal["protagonist", "friend", "family", "colleague", "other"]

STORY_TITLE_MAX = 100
STORY_TEXT_MAX = 5000
MIN_SCENES = 1
MAX_SCENES = 20
DEFAULT_SCENES = 5


# --- validation helpers ---

class FieldError(BaseModel):
    field: str
    message: str
    code: str


T = TypeVar("T", bound=BaseModel)


class ValidationResult(BaseModel, Generic[T]):
    success: bool
    data: Optional[T] = None
    errors: List[FieldError] = Field(default_factory=list)


def field_errors(exc: ValidationError) -> List[FieldError]:
    return [
        FieldError(
            field=".".join(str(part) for part in err["loc"]),
            message=err["msg"],
            code=err["type"],
        )
        for err in exc.errors()
    ]


def validate_schema(model: Type[T], data: Any) -> ValidationResult[T]:
    """Validate untyped JSON against a model without raising."""
    try:
        return ValidationResult[model](success=True, data=model.model_validate(data))
    except ValidationError as e:
        return ValidationResult[model](success=False, errors=field_errors(e))


def ensure_valid(model: Type[T], data: Any, message: str = "Invalid request data") -> T:
    result = validate_schema(model, data)
    if not result.success:
        raise ValidationFailed(message, details=[e.model_dump() for e in result.errors])
    return result.data


# --- MulmoScript ---

class MulmocastHeader(BaseModel):
    version: Literal["1.0"] = "1.0"


class DisplayName(BaseModel):
    ja: Optional[str] = None
    en: Optional[str] = None


class Speaker(BaseModel):
    voiceId: str
    displayName: Optional[DisplayName] = None


class SpeechParams(BaseModel):
    provider: Literal["openai", "nijivoice", "google", "elevenlabs"] = "openai"
    speakers: Dict[str, Speaker]


class ImageParams(BaseModel):
    provider: Optional[str] = None
    model: Optional[str] = None
    style: Optional[str] = None
    quality: Optional[str] = None
    images: Optional[Dict[str, Any]] = None


class CanvasSize(BaseModel):
    width: int = 1280
    height: int = 720


class BgmSource(BaseModel):
    kind: Literal["url"] = "url"
    url: str


class AudioParams(BaseModel):
    padding: float = 0.3
    introPadding: float = 1.0
    closingPadding: float = 0.8
    outroPadding: float = 1.0
    bgmVolume: float = Field(0.2, ge=0, le=1)
    audioVolume: float = Field(1.0, ge=0, le=1)
    bgm: Optional[BgmSource] = None


class CaptionParams(BaseModel):
    lang: str = "ja"
    styles: List[str] = Field(default_factory=list)


class Beat(BaseModel):
    speaker: str = "Presenter"
    text: str = ""
    imagePrompt: Optional[str] = None
    id: Optional[str] = None
    description: Optional[str] = None
    image: Optional[Dict[str, Any]] = None
    duration: Optional[float] = None


class MulmoScript(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    mulmocast: MulmocastHeader = Field(alias="$mulmocast")
    title: str = ""
    lang: str = "en"
    speechParams: SpeechParams
    imageParams: Optional[ImageParams] = None
    canvasSize: CanvasSize = Field(default_factory=CanvasSize)
    audioParams: Optional[AudioParams] = None
    captionParams: Optional[CaptionParams] = None
    beats: List[Beat] = Field(min_length=1)

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# --- persisted rows ---

class Story(BaseModel):
    id: UUID
    uid: str
    title: str = Field(min_length=1, max_length=STORY_TITLE_MAX)
    text_raw: str = ""
    beats: int = Field(DEFAULT_SCENES, ge=MIN_SCENES, le=MAX_SCENES)
    script_json: Optional[Dict[str, Any]] = None
    status: StoryStatus = "draft"
    summary_data: Optional[Dict[str, Any]] = None
    acts_data: Optional[Dict[str, Any]] = None
    characters_data: Optional[Dict[str, Any]] = None
    scenes_data: Optional[Dict[str, Any]] = None
    audio_data: Optional[Dict[str, Any]] = None
    style_data: Optional[Dict[str, Any]] = None
    caption_data: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Video(BaseModel):
    id: UUID
    story_id: UUID
    workflow_id: Optional[UUID] = None
    uid: str
    title: Optional[str] = None
    status: VideoStatus = "queued"
    url: Optional[str] = None
    duration_sec: Optional[float] = None
    resolution: Optional[str] = None
    size_mb: Optional[float] = None
    error_msg: Optional[str] = None
    preview_status: Optional[PreviewStatus] = None
    preview_data: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Workflow(BaseModel):
    id: UUID
    story_id: UUID
    uid: str
    current_step: int = Field(1, ge=1, le=7)
    status: WorkflowStatus = "active"
    step1_in: Optional[Dict[str, Any]] = None
    step2_in: Optional[Dict[str, Any]] = None
    step3_in: Optional[Dict[str, Any]] = None
    step4_in: Optional[Dict[str, Any]] = None
    step5_in: Optional[Dict[str, Any]] = None
    step6_in: Optional[Dict[str, Any]] = None
    step7_in: Optional[Dict[str, Any]] = None
    step1_out: Optional[Dict[str, Any]] = None
    step2_out: Optional[Dict[str, Any]] = None
    step3_out: Optional[Dict[str, Any]] = None
    step4_out: Optional[Dict[str, Any]] = None
    step5_out: Optional[Dict[str, Any]] = None
    step6_out: Optional[Dict[str, Any]] = None
    step7_out: Optional[Dict[str, Any]] = None
    instant_mode: bool = False
    instant_step: Optional[str] = None
    instant_metadata: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BoundingBox(BaseModel):
    x: float = Field(ge=0)
    y: float = Field(ge=0)
    width: float = Field(gt=0)
    height: float = Field(gt=0)


class DetectedFace(BaseModel):
    id: UUID
    workflow_id: UUID
    uid: str
    original_image_url: str
    face_index: int = Field(ge=0)
    face_image_url: str
    thumbnail_url: Optional[str] = None
    bounding_box: BoundingBox
    detection_confidence: float = Field(ge=0, le=1)
    face_attributes: Optional[Dict[str, Any]] = None
    tag_name: Optional[str] = None
    tag_role: Optional[FaceRole] = None
    tag_description: Optional[str] = None
    position_order: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# --- request payloads ---

class StoryCreate(BaseModel):
    title: str = Field(min_length=1, max_length=STORY_TITLE_MAX)
    text_raw: str = Field(min_length=1, max_length=STORY_TEXT_MAX)
    beats: int = Field(DEFAULT_SCENES, ge=MIN_SCENES, le=MAX_SCENES)


class StoryUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=STORY_TITLE_MAX)
    text_raw: Optional[str] = Field(None, min_length=1, max_length=STORY_TEXT_MAX)
    beats: Optional[int] = Field(None, ge=MIN_SCENES, le=MAX_SCENES)
    script_json: Optional[Dict[str, Any]] = None


class GenerateScriptOptions(BaseModel):
    template_id: Optional[str] = None
    target_duration: int = Field(60, ge=10, le=600)
    style: StylePreference = "dramatic"
    language: Language = "ja"
    beats: Optional[int] = Field(None, ge=MIN_SCENES, le=MAX_SCENES)
    retry_count: Optional[int] = Field(None, ge=0, le=5)
    scene_titles: List[str] = Field(default_factory=list)
    force: bool = False


class StepSubmission(BaseModel):
    userInput: Dict[str, Any]


class StepBack(BaseModel):
    step: int = Field(ge=1, le=7)


class VideoCallback(BaseModel):
    uid: str
    status: Optional[VideoStatus] = None
    url: Optional[str] = None
    duration_sec: Optional[float] = None
    resolution: Optional[str] = None
    size_mb: Optional[float] = None
    error_msg: Optional[str] = None
    preview_status: Optional[PreviewStatus] = None
    preview_data: Optional[Dict[str, Any]] = None


class DeleteVideosRequest(BaseModel):
    videoIds: List[UUID] = Field(min_length=1)


class InstantCreate(BaseModel):
    storyText: str = Field(min_length=1, max_length=STORY_TEXT_MAX)
    title: Optional[str] = Field(None, max_length=STORY_TITLE_MAX)
    style: str = "anime"
    duration: Literal["short", "medium", "long"] = "medium"
    imageUrls: List[str] = Field(default_factory=list)


class FaceInput(BaseModel):
    face_index: int = Field(ge=0)
    face_image_url: str
    thumbnail_url: Optional[str] = None
    bounding_box: BoundingBox
    detection_confidence: float = Field(ge=0, le=1)
    face_attributes: Optional[Dict[str, Any]] = None
    position_order: Optional[int] = None


class FacesCreate(BaseModel):
    originalImageUrl: str
    faces: List[FaceInput] = Field(min_length=1)


class FaceTagUpdate(BaseModel):
    tag_name: Optional[str] = Field(None, max_length=50)
    tag_role: Optional[FaceRole] = None
    tag_description: Optional[str] = Field(None, max_length=500)
    position_order: Optional[int] = Field(None, ge=0)
