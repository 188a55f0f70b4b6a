from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    ValidatorFunctionWrapHandler,
    field_validator,
)

Lifecycle = Literal["not_started", "starting", "running", "failed"]

ModelState = Literal[
    "unknown", "checking", "not_installed", "downloading", "ready", "failed"
]

GenerationPhase = Literal[
    "idle",
    "connecting",
    "loading_model",
    "processing_prompt",
    "generating",
    "complete",
    "failed",
]

PHASE_ORDER: Dict[str, int] = {
    "idle": 0,
    "connecting": 1,
    "loading_model": 2,
    "processing_prompt": 3,
    "generating": 4,
    "complete": 5,
}

TERMINAL_PHASES = frozenset({"complete", "failed"})

_PHASE_LABELS: Dict[str, str] = {
    "idle": "Ready",
    "connecting": "Connecting...",
    "loading_model": "Loading model...",
    "processing_prompt": "Processing prompt...",
    "generating": "Generating",
    "complete": "Done",
}


def describe_phase(phase: GenerationPhase, error: Optional[str] = None) -> str:
    if phase == "failed":
        return f"Failed: {error or 'unknown error'}"
    return _PHASE_LABELS[phase]


class ProcessStatus(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, protected_namespaces=())

    lifecycle: Lifecycle = "not_started"
    lifecycle_error: Optional[str] = None
    model_state: ModelState = "unknown"
    model_error: Optional[str] = None
    download_progress: float = Field(default=0.0, ge=0.0, le=1.0)
    status_message: str = ""
    base_url: str = ""
    pid: Optional[int] = None
    first_launch: bool = False


class GenerationSnapshot(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    session_id: str
    model: str
    phase: GenerationPhase
    phase_label: str
    error: Optional[str] = None
    text: str = ""
    delta: str = ""
    tokens_generated: int = Field(default=0, ge=0)
    tokens_per_second: float = Field(default=0.0, ge=0.0)
    prompt_tokens: int = Field(default=0, ge=0)
    load_seconds: Optional[float] = None
    elapsed_seconds: float = Field(default=0.0, ge=0.0)
    cancelled: bool = False
    is_generating: bool = False


# Wire schemas for the engine's NDJSON lines. Every field is optional, unknown
# fields are ignored, and a field whose value has the wrong type falls back to
# its default without affecting the rest of the line.


class _WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    @field_validator("*", mode="wrap")
    @classmethod
    def _default_on_bad_value(
        cls, value: Any, handler: ValidatorFunctionWrapHandler, info: ValidationInfo
    ) -> Any:
        try:
            return handler(value)
        except ValidationError:
            return cls.model_fields[info.field_name].get_default(call_default_factory=True)


class ChatMessageChunk(_WireModel):
    role: Optional[str] = None
    content: Optional[str] = None


class ChatStreamLine(_WireModel):
    message: Optional[ChatMessageChunk] = None
    prompt_eval_count: Optional[int] = None
    eval_count: Optional[int] = None
    eval_duration: Optional[int] = None
    load_duration: Optional[int] = None
    done: bool = False
    error: Optional[str] = None

    @property
    def content(self) -> str:
        if self.message is None:
            return ""
        return self.message.content or ""


class PullStreamLine(_WireModel):
    status: Optional[str] = None
    digest: Optional[str] = None
    total: Optional[int] = None
    completed: Optional[int] = None
    error: Optional[str] = None


class TagModel(_WireModel):
    name: Optional[str] = None


class TagsResponse(_WireModel):
    models: List[TagModel] = Field(default_factory=list)

    @field_validator("models", mode="before")
    @classmethod
    def _keep_object_entries(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [item for item in value if isinstance(item, dict)]
        return value

    def names(self) -> List[str]:
        return [item.name for item in self.models if item.name]
