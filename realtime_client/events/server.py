from typing import Literal

from pydantic import Field

from .base import ServerEvent as BaseEvent
from ..models import ConversationItem, ContentPart, ErrorDetails, RealtimeResponse, SessionDetails


# ===== session =====
class Error(BaseEvent):
    type: Literal["error"] = "error"
    error: ErrorDetails


class SessionCreated(BaseEvent):
    type: Literal["session.created"] = "session.created"
    session: SessionDetails


class SessionUpdated(BaseEvent):
    type: Literal["session.updated"] = "session.updated"
    session: SessionDetails


# ===== conversation.item =====
class ConversationItemCreated(BaseEvent):
    type: Literal["conversation.item.created"] = "conversation.item.created"
    previous_item_id: str | None = None
    item: ConversationItem


class ConversationItemTruncated(BaseEvent):
    type: Literal["conversation.item.truncated"] = "conversation.item.truncated"
    item_id: str
    content_index: int = 0
    audio_end_ms: int


class ConversationItemDeleted(BaseEvent):
    type: Literal["conversation.item.deleted"] = "conversation.item.deleted"
    item_id: str


class ConversationItemInputAudioTranscriptionCompleted(BaseEvent):
    type: Literal["conversation.item.input_audio_transcription.completed"] = (
        "conversation.item.input_audio_transcription.completed"
    )
    item_id: str
    content_index: int = 0
    transcript: str | None = None


# ===== input_audio_buffer =====
class InputAudioBufferSpeechStarted(BaseEvent):
    type: Literal["input_audio_buffer.speech_started"] = "input_audio_buffer.speech_started"
    audio_start_ms: int
    item_id: str


class InputAudioBufferSpeechStopped(BaseEvent):
    type: Literal["input_audio_buffer.speech_stopped"] = "input_audio_buffer.speech_stopped"
    audio_end_ms: int
    item_id: str


# ===== response =====
class ResponseCreated(BaseEvent):
    type: Literal["response.created"] = "response.created"
    response: RealtimeResponse


class ResponseOutputItemAdded(BaseEvent):
    type: Literal["response.output_item.added"] = "response.output_item.added"
    response_id: str
    output_index: int = 0
    item: ConversationItem


class ResponseOutputItemDone(BaseEvent):
    type: Literal["response.output_item.done"] = "response.output_item.done"
    response_id: str | None = None
    output_index: int = 0
    item: ConversationItem


class ResponseContentPartAdded(BaseEvent):
    type: Literal["response.content_part.added"] = "response.content_part.added"
    response_id: str | None = None
    item_id: str
    output_index: int = 0
    content_index: int = 0
    part: ContentPart


# ---- streaming ----
class ResponseAudioTranscriptDelta(BaseEvent):
    type: Literal["response.audio_transcript.delta"] = "response.audio_transcript.delta"
    response_id: str | None = None
    item_id: str
    output_index: int = 0
    content_index: int = 0
    delta: str


class ResponseAudioDelta(BaseEvent):
    type: Literal["response.audio.delta"] = "response.audio.delta"
    response_id: str | None = None
    item_id: str
    output_index: int = 0
    content_index: int = 0
    delta: str = Field(repr=False)


class ResponseTextDelta(BaseEvent):
    type: Literal["response.text.delta"] = "response.text.delta"
    response_id: str | None = None
    item_id: str
    output_index: int = 0
    content_index: int = 0
    delta: str


class ResponseFunctionCallArgumentsDelta(BaseEvent):
    type: Literal["response.function_call_arguments.delta"] = "response.function_call_arguments.delta"
    response_id: str | None = None
    item_id: str
    output_index: int = 0
    call_id: str | None = None
    delta: str
