import abc
from typing import Annotated, Literal

import numpy as np
from pydantic import BaseModel, ConfigDict, Field

ItemStatus = Literal["completed", "in_progress", "incomplete"]


# ===== session =====
# ---- session.update ----
class AudioTranscriptionConfig(BaseModel):
    model: str = "whisper-1"


class TurnDetectionConfig(BaseModel):
    type: str = "server_vad"
    threshold: float = 0.5
    prefix_padding_ms: int = 300
    silence_duration_ms: int = 200


class FunctionDefinition(BaseModel):
    type: Literal["function"] = "function"
    name: str
    description: str = ""
    parameters: dict = {}


class ResponseConfig(BaseModel):
    modalities: list[str] = ["text", "audio"]
    instructions: str = ""
    voice: str = "verse"
    output_audio_format: Literal["pcm16", "g711_ulaw", "g711_alaw"] = "pcm16"
    tools: list[FunctionDefinition] = []
    tool_choice: Literal["auto", "none", "required"] | str = "auto"
    temperature: float = 0.8
    max_response_output_tokens: int | Literal["inf"] = 4096


class SessionConfig(ResponseConfig):
    input_audio_format: Literal["pcm16", "g711_ulaw", "g711_alaw"] = "pcm16"
    input_audio_transcription: AudioTranscriptionConfig | None = None
    turn_detection: TurnDetectionConfig | None = None


# ===== conversation items =====
class TextContentPart(BaseModel):
    type: Literal["input_text", "text"] = "input_text"
    text: str = ""


class AudioContentPart(BaseModel):
    type: Literal["input_audio", "audio"] = "input_audio"
    audio: str | None = Field(default=None, repr=False)
    transcript: str | None = None


ContentPart = Annotated[TextContentPart | AudioContentPart, Field(discriminator="type")]


class FormattedTool(BaseModel):
    type: Literal["function"] = "function"
    name: str | None = None
    call_id: str | None = None
    arguments: str = ""


class FormattedItem(BaseModel):
    """
    The client-side view of a conversation item, built up incrementally as deltas arrive.

    ``audio`` is the item's PCM16 samples at 24kHz.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    text: str = ""
    transcript: str = ""
    audio: np.ndarray = Field(default_factory=lambda: np.zeros(0, dtype=np.int16), repr=False)
    tool: FormattedTool | None = None
    output: str | None = None


class ConversationItemBase(BaseModel, abc.ABC):
    id: str | None = None
    type: str
    status: ItemStatus | None = None
    formatted: FormattedItem | None = Field(default=None, exclude=True, repr=False)


class MessageConversationItem(ConversationItemBase):
    type: Literal["message"] = "message"
    role: Literal["user", "assistant", "system"]
    content: list[ContentPart] = []


class FunctionCallConversationItem(ConversationItemBase):
    type: Literal["function_call"] = "function_call"
    call_id: str | None = None
    name: str | None = None
    arguments: str = ""


class FunctionCallOutputConversationItem(ConversationItemBase):
    type: Literal["function_call_output"] = "function_call_output"
    call_id: str | None = None
    output: str = ""


ConversationItem = Annotated[
    MessageConversationItem | FunctionCallConversationItem | FunctionCallOutputConversationItem,
    Field(discriminator="type"),
]


# ===== responses =====
class UsageDetails(BaseModel):
    total_tokens: int
    input_tokens: int
    output_tokens: int


class RealtimeResponse(BaseModel):
    id: str
    object: Literal["realtime.response"] = "realtime.response"
    status: Literal["in_progress", "completed", "cancelled", "failed", "incomplete"] = "in_progress"
    status_details: dict | None = None
    output: list[ConversationItem] = []
    usage: UsageDetails | None = None


class ResponseRecord(BaseModel):
    """A response as tracked by the conversation: its id, and the ids of the items it produced, in order."""

    id: str
    status: str | None = None
    output: list[str] = []


# ===== queued out-of-order state =====
class QueuedSpeechSegment(BaseModel):
    """Speech boundaries (and possibly the sliced input audio) for an item that has not been created yet."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    audio_start_ms: int
    audio_end_ms: int | None = None
    audio: np.ndarray | None = Field(default=None, repr=False)


class QueuedTranscript(BaseModel):
    """An input audio transcript for an item that has not been created yet."""

    transcript: str


# ===== server =====
# ---- error ----
class ErrorDetails(BaseModel):
    type: str
    code: str | None = None
    message: str
    param: str | None = None
    event_id: str | None = None


# ---- session.created ----
# ---- session.updated ----
class SessionDetails(SessionConfig):
    model_config = ConfigDict(extra="allow")

    id: str
    object: Literal["realtime.session"] = "realtime.session"
