# samvaad: Centralized Pydantic v2 models for the canonical message model (content parts, messages, tool uses), provider responses, usage/rate-limit metadata, file attachments and the patch log. Persisted/event shapes use camelCase aliases; content parts keep the vendor-neutral snake_case keys.

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .fs import normalize_path, now_iso, sortable_id


class CustomBaseModel(BaseModel):
    """Pydantic base model configured to forbid unknown fields for strict validation."""
    model_config = ConfigDict(extra="forbid")


class CamelModel(BaseModel):
    """Base for records that are persisted or emitted with camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# -----------------------------
# Content parts
# -----------------------------

class TextPart(CustomBaseModel):
    type: Literal["text"] = "text"
    text: str


class ImageSource(CustomBaseModel):
    type: Literal["base64"] = "base64"
    media_type: str
    data: str


class ImagePart(CustomBaseModel):
    type: Literal["image"] = "image"
    source: ImageSource


class FilePart(CustomBaseModel):
    """Reference to a project file; expanded to full content (or a staleness note) at hydration time."""
    type: Literal["file"] = "file"
    path: str

    @field_validator("path")
    @classmethod
    def _normalize_path(cls, v: str) -> str:
        return normalize_path(v)


ToolResultContent = Annotated[Union[TextPart, ImagePart, FilePart], Field(discriminator="type")]


class ToolUsePart(CustomBaseModel):
    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: Dict[str, Any] = Field(default_factory=dict)


class ToolResultPart(CustomBaseModel):
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: List[ToolResultContent] = Field(default_factory=list)
    is_error: bool = False


ContentPart = Annotated[
    Union[TextPart, ImagePart, FilePart, ToolUsePart, ToolResultPart],
    Field(discriminator="type"),
]


def text_part(text: str) -> TextPart:
    return TextPart(text=text)


# -----------------------------
# Usage, stats and rate limits
# -----------------------------

class TokenUsage(CamelModel):
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def add(self, other: "TokenUsage") -> None:
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens
        self.total_tokens += other.total_tokens


class ConversationTokenUsage(CamelModel):
    input_tokens_total: int = 0
    output_tokens_total: int = 0
    total_tokens_total: int = 0

    def add(self, usage: TokenUsage) -> None:
        self.input_tokens_total += usage.input_tokens
        self.output_tokens_total += usage.output_tokens
        self.total_tokens_total += usage.total_tokens


class ConversationStats(CamelModel):
    statement_count: int = 0
    statement_turn_count: int = 0
    conversation_turn_count: int = 0


class RateLimit(CamelModel):
    """Rate-limit window metadata; missing vendor fields stay at zero (reset values are epoch seconds)."""
    requests_remaining: int = 0
    requests_limit: int = 0
    requests_reset: float = 0.0
    tokens_remaining: int = 0
    tokens_limit: int = 0
    tokens_reset: float = 0.0


class StopReason(str, Enum):
    tool_call = "tool-call"
    natural_end = "natural-end"
    length_limit = "length-limit"
    content_filtered = "content-filtered"
    other = "other"


# -----------------------------
# Tool use and provider responses
# -----------------------------

class ToolValidation(CamelModel):
    validated: bool = False
    results: str = ""


class ToolUse(CamelModel):
    """A normalized tool invocation extracted from a provider response."""
    tool_use_id: str
    tool_name: str
    tool_input: Dict[str, Any] = Field(default_factory=dict)
    tool_thinking: str = ""
    tool_validation: ToolValidation = Field(default_factory=ToolValidation)


class ResponseMeta(CamelModel):
    status_code: int = 0
    status_text: str = ""


class ProviderResponse(CamelModel):
    id: str = ""
    type: str = "message"
    role: str = "assistant"
    model: str = ""
    provider: str = ""
    timestamp: str = Field(default_factory=now_iso)
    from_cache: bool = False
    answer_content: List[ContentPart] = Field(default_factory=list)
    answer: str = ""
    is_tool: bool = False
    tools_used: List[ToolUse] = Field(default_factory=list)
    tool_thinking: Optional[str] = None
    stop_reason: Optional[str] = None
    stop_reason_kind: StopReason = StopReason.other
    usage: TokenUsage = Field(default_factory=TokenUsage)
    rate_limit: RateLimit = Field(default_factory=RateLimit)
    meta: ResponseMeta = Field(default_factory=ResponseMeta)


class SpeakOptions(BaseModel):
    """Per-call overrides; any field left as None falls back to the interaction's defaults."""
    model_config = ConfigDict(extra="forbid")

    messages: Optional[List["Message"]] = None
    system: Optional[str] = None
    model: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    tool_names: Optional[List[str]] = None


# -----------------------------
# Messages
# -----------------------------

class Message(CamelModel):
    """
    One conversational turn.

    ids come from fs.sortable_id(), so sorting by id gives creation order.
    """
    id: str = Field(default_factory=sortable_id)
    role: Literal["user", "assistant", "system", "tool"]
    content: List[ContentPart]
    tool_call_id: Optional[str] = None
    provider_response: Optional[ProviderResponse] = None
    timestamp: str = Field(default_factory=now_iso)

    def tool_uses(self) -> List[ToolUsePart]:
        return [p for p in self.content if isinstance(p, ToolUsePart)]

    def text(self) -> str:
        return "\n".join(p.text for p in self.content if isinstance(p, TextPart))


SpeakOptions.model_rebuild()


class MessageRecord(Message):
    """A message as written to the message log, carrying its own counters."""
    statement_count: int = 0
    turn_count: int = 0


# -----------------------------
# Attachments and patch log
# -----------------------------

class FileMetadata(CamelModel):
    path: str
    size: int = 0
    last_modified: float = 0.0
    in_system_prompt: bool = False
    message_id: Optional[str] = None
    tool_use_id: Optional[str] = None
    error: Optional[str] = None


class PatchLogEntry(CamelModel):
    timestamp: str = Field(default_factory=now_iso)
    file_path: str
    patch: str


class ToolDescriptor(CustomBaseModel):
    """Model-facing tool advertisement."""
    name: str
    description: str
    input_schema: Dict[str, Any]
