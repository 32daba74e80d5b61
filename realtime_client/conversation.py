"""
Reconstruction of the conversation transcript from server events.

Each supported server event type has exactly one processor: a plain function ``(state, event, *context)`` that applies
the event to a :class:`ConversationState` and returns a :class:`ConversationUpdate`. Processors check every reference
they need before mutating anything, so an event either applies fully or raises and leaves the state untouched.
"""

import functools
import logging
from typing import Any, Callable, Mapping, NamedTuple

import numpy as np
from pydantic import ValidationError

from . import audio
from ._internal import event_processor, freeze
from .audio import AudioRing
from .errors import ProtocolViolation, ReferenceNotFound, UnknownEventType
from .events import server
from .events.base import BaseEvent, ServerEvent
from .models import (
    AudioContentPart,
    ConversationItem,
    FormattedItem,
    FormattedTool,
    FunctionCallConversationItem,
    FunctionCallOutputConversationItem,
    MessageConversationItem,
    QueuedSpeechSegment,
    QueuedTranscript,
    ResponseRecord,
    TextContentPart,
)

log = logging.getLogger(__name__)

_processors: dict[str, Callable[..., "ConversationUpdate"]] = {}
processor = functools.partial(event_processor, registry=_processors)


class ConversationUpdate(NamedTuple):
    """The item created or updated by an event (or None), and the incremental change applied to it (or None)."""

    item: ConversationItem | None
    delta: dict[str, Any] | None


NO_UPDATE = ConversationUpdate(None, None)


class ConversationState:
    """
    The mutable state of a conversation: items and responses in order and by id, and the provisional records for
    events that arrive before the item they refer to.
    """

    def __init__(self, audio_buffer_size: int | None = None):
        """
        :param audio_buffer_size: If set, keep at most this many of the most recent samples of each item's streamed
            audio. By default, all streamed audio is kept.
        """
        if audio_buffer_size is not None and audio_buffer_size <= 0:
            raise ValueError(f"audio_buffer_size must be positive, got {audio_buffer_size!r}")
        self.audio_buffer_size = audio_buffer_size
        self.clear()

    def clear(self):
        self.item_lookup: dict[str, ConversationItem] = {}
        self.items: list[ConversationItem] = []
        self.response_lookup: dict[str, ResponseRecord] = {}
        self.responses: list[ResponseRecord] = []
        self.queued_speech_items: dict[str, QueuedSpeechSegment] = {}
        self.queued_transcript_items: dict[str, QueuedTranscript] = {}
        self.queued_input_audio: np.ndarray | None = None
        self.audio_buffers: dict[str, AudioRing] = {}

    # ==== lookups ====
    def require_item(self, item_id: str, event_type: str) -> ConversationItem:
        item = self.item_lookup.get(item_id)
        if item is None:
            raise ReferenceNotFound(f"Item {item_id!r} not found", event_type, ref_id=item_id)
        return item

    def require_response(self, response_id: str, event_type: str) -> ResponseRecord:
        response = self.response_lookup.get(response_id)
        if response is None:
            raise ReferenceNotFound(f"Response {response_id!r} not found", event_type, ref_id=response_id)
        return response


class RealtimeConversation:
    """
    In-memory transcript of a realtime conversation, updated from server events with :meth:`process_event`.

    Items and responses returned by this class are owned by it; read them, but do not modify them.
    """

    default_frequency: int = audio.SAMPLE_RATE
    EventProcessors: Mapping[str, Callable[..., ConversationUpdate]] = {}  # filled in at the end of this module

    def __init__(self, audio_buffer_size: int | None = None):
        self.state = ConversationState(audio_buffer_size=audio_buffer_size)

    def clear(self) -> bool:
        """Reset the transcript, all queued records, and the audio buffers."""
        self.state.clear()
        return True

    def queue_input_audio(self, input_audio) -> np.ndarray:
        """Queue locally captured audio to be attached to the next user message created."""
        self.state.queued_input_audio = audio.as_samples(input_audio)
        return self.state.queued_input_audio

    def process_event(self, event: Mapping[str, Any] | BaseEvent, *args) -> ConversationUpdate:
        """
        Apply a server event to the conversation.

        :param event: The event, as a dict decoded from the wire or a :class:`.ServerEvent`.
        :param args: Extra context for the processor: ``input_audio_buffer.speech_stopped`` takes the locally captured
            input audio buffer.
        :returns: The created or updated item (or None if the event did not change an item) and the delta applied.
        :raises ProtocolViolation: The event is missing its ``event_id`` or ``type``, or its payload is malformed.
        :raises UnknownEventType: There is no processor for the event's type.
        :raises ReferenceNotFound: The event refers to an item, response, or content part that does not exist.
        :raises EncodingError: The event's audio could not be decoded.
        """
        if isinstance(event, BaseEvent):
            event_id, event_type = event.event_id, event.type
        elif isinstance(event, Mapping):
            event_id, event_type = event.get("event_id"), event.get("type")
        else:
            raise ProtocolViolation(f"Expected an event mapping, got {type(event).__name__}")
        if not event_id:
            raise ProtocolViolation('Missing "event_id" on event', event_type)
        if not event_type:
            raise ProtocolViolation('Missing "type" on event')

        event_processor_ = self.EventProcessors.get(event_type)
        if event_processor_ is None:
            raise UnknownEventType(f"Missing conversation event processor for {event_type!r}", event_type)

        if not isinstance(event, ServerEvent):
            try:
                event = ServerEvent.model_validate(dict(event))
            except ValidationError as e:
                raise ProtocolViolation(f"Malformed event payload: {e}", event_type) from e
        return event_processor_(self.state, event, *args)

    # ==== accessors ====
    def get_item(self, item_id: str) -> ConversationItem | None:
        return self.state.item_lookup.get(item_id)

    def get_items(self) -> list[ConversationItem]:
        return self.state.items[:]

    def get_response(self, response_id: str) -> ResponseRecord | None:
        return self.state.response_lookup.get(response_id)

    def get_responses(self) -> list[ResponseRecord]:
        return self.state.responses[:]


# ===== helpers =====
def _copy_item(item: ConversationItem) -> ConversationItem:
    """An independent copy of an inbound item, with its own content list."""
    if isinstance(item, MessageConversationItem):
        return item.model_copy(update={"content": [part.model_copy() for part in item.content], "formatted": None})
    return item.model_copy(update={"formatted": None})


def _require_part(item: ConversationItem, content_index: int, event_type: str, kind: type):
    if not isinstance(item, MessageConversationItem):
        raise ProtocolViolation(f"Item {item.id!r} is a {item.type}, which has no content", event_type)
    if not 0 <= content_index < len(item.content):
        raise ReferenceNotFound(
            f"Content part {content_index} of item {item.id!r} not found (item has {len(item.content)} parts)",
            event_type,
            ref_id=item.id,
        )
    part = item.content[content_index]
    if not isinstance(part, kind):
        raise ProtocolViolation(f"Content part {content_index} of item {item.id!r} is {part.type!r}", event_type)
    return part


# ===== processors =====
# ---- conversation.item ----
@processor("conversation.item.created")
def _process_item_created(state: ConversationState, event: server.ConversationItemCreated, *_) -> ConversationUpdate:
    item_id = event.item.id
    if not item_id:
        raise ProtocolViolation("Created item is missing its id", event.type)
    if item_id in state.item_lookup:
        log.debug(f"Item {item_id!r} was already created, ignoring re-delivery")
        return NO_UPDATE

    new_item = _copy_item(event.item)
    formatted = FormattedItem()

    # recover out-of-order data queued for this item
    speech = state.queued_speech_items.pop(item_id, None)
    if speech is not None and speech.audio is not None:
        formatted.audio = speech.audio
    if isinstance(new_item, MessageConversationItem):
        formatted.text = "".join(part.text for part in new_item.content if isinstance(part, TextContentPart))
    queued_transcript = state.queued_transcript_items.pop(item_id, None)
    if queued_transcript is not None:
        formatted.transcript = queued_transcript.transcript

    match new_item:
        case MessageConversationItem(role="assistant"):
            new_item.status = "in_progress"
        case MessageConversationItem(role="user"):
            new_item.status = "completed"
            if state.queued_input_audio is not None:
                formatted.audio = state.queued_input_audio
                state.queued_input_audio = None
        case MessageConversationItem():
            new_item.status = "completed"
        case FunctionCallConversationItem(name=name, call_id=call_id):
            formatted.tool = FormattedTool(name=name, call_id=call_id)
            new_item.status = "in_progress"
        case FunctionCallOutputConversationItem(output=output):
            formatted.output = output
            new_item.status = "completed"

    new_item.formatted = formatted
    state.item_lookup[item_id] = new_item
    state.items.append(new_item)
    return ConversationUpdate(new_item, None)


@processor("conversation.item.truncated")
def _process_item_truncated(
    state: ConversationState, event: server.ConversationItemTruncated, *_
) -> ConversationUpdate:
    item = state.require_item(event.item_id, event.type)
    end_index = audio.ms_to_sample_index(event.audio_end_ms, RealtimeConversation.default_frequency)
    truncated = item.formatted.audio[:end_index].copy()
    item.formatted.audio = truncated
    item.formatted.transcript = ""
    if (ring := state.audio_buffers.get(item.id)) is not None:
        ring.clear()
        ring.append(truncated)
    return ConversationUpdate(item, None)


@processor("conversation.item.deleted")
def _process_item_deleted(state: ConversationState, event: server.ConversationItemDeleted, *_) -> ConversationUpdate:
    item = state.require_item(event.item_id, event.type)
    del state.item_lookup[item.id]
    state.items = [i for i in state.items if i.id != item.id]
    state.audio_buffers.pop(item.id, None)
    return ConversationUpdate(item, None)


@processor("conversation.item.input_audio_transcription.completed")
def _process_input_audio_transcription_completed(
    state: ConversationState, event: server.ConversationItemInputAudioTranscriptionCompleted, *_
) -> ConversationUpdate:
    # an empty transcript is stored as a single space so consumers always see a non-empty transcript
    transcript = event.transcript or " "
    item = state.item_lookup.get(event.item_id)
    if item is None:
        log.debug(f"Transcript for item {event.item_id!r} arrived before the item, queueing it")
        state.queued_transcript_items[event.item_id] = QueuedTranscript(transcript=transcript)
        return NO_UPDATE

    part = _require_part(item, event.content_index, event.type, AudioContentPart)
    part.transcript = transcript
    item.formatted.transcript = transcript
    return ConversationUpdate(item, {"transcript": transcript})


# ---- input_audio_buffer ----
@processor("input_audio_buffer.speech_started")
def _process_speech_started(
    state: ConversationState, event: server.InputAudioBufferSpeechStarted, *_
) -> ConversationUpdate:
    state.queued_speech_items[event.item_id] = QueuedSpeechSegment(audio_start_ms=event.audio_start_ms)
    return NO_UPDATE


@processor("input_audio_buffer.speech_stopped")
def _process_speech_stopped(
    state: ConversationState, event: server.InputAudioBufferSpeechStopped, input_audio_buffer=None, *_
) -> ConversationUpdate:
    speech = state.queued_speech_items.get(event.item_id)
    if speech is None:
        log.debug(f"Speech stopped for item {event.item_id!r} without a speech start, starting it at the stop")
        speech = QueuedSpeechSegment(audio_start_ms=event.audio_end_ms)

    sliced = None
    if input_audio_buffer is not None:
        samples = audio.as_samples(input_audio_buffer)
        start_index = audio.ms_to_sample_index(speech.audio_start_ms, RealtimeConversation.default_frequency)
        end_index = audio.ms_to_sample_index(event.audio_end_ms, RealtimeConversation.default_frequency)
        sliced = samples[start_index:end_index].copy()

    speech.audio_end_ms = event.audio_end_ms
    if sliced is not None:
        speech.audio = sliced
    state.queued_speech_items[event.item_id] = speech
    return NO_UPDATE


# ---- response ----
@processor("response.created")
def _process_response_created(state: ConversationState, event: server.ResponseCreated, *_) -> ConversationUpdate:
    response = event.response
    if response.id not in state.response_lookup:
        record = ResponseRecord(
            id=response.id, status=response.status, output=[item.id for item in response.output if item.id]
        )
        state.response_lookup[record.id] = record
        state.responses.append(record)
    return NO_UPDATE


@processor("response.output_item.added")
def _process_output_item_added(
    state: ConversationState, event: server.ResponseOutputItemAdded, *_
) -> ConversationUpdate:
    response = state.require_response(event.response_id, event.type)
    if not event.item.id:
        raise ProtocolViolation("Output item is missing its id", event.type)
    response.output.append(event.item.id)
    return NO_UPDATE


@processor("response.output_item.done")
def _process_output_item_done(state: ConversationState, event: server.ResponseOutputItemDone, *_) -> ConversationUpdate:
    if not event.item.id:
        raise ProtocolViolation("Output item is missing its id", event.type)
    found_item = state.require_item(event.item.id, event.type)
    if event.item.status is not None:
        found_item.status = event.item.status
    return ConversationUpdate(found_item, None)


@processor("response.content_part.added")
def _process_content_part_added(
    state: ConversationState, event: server.ResponseContentPartAdded, *_
) -> ConversationUpdate:
    item = state.require_item(event.item_id, event.type)
    if not isinstance(item, MessageConversationItem):
        raise ProtocolViolation(f"Item {item.id!r} is a {item.type}, which has no content", event.type)
    item.content.append(event.part.model_copy())
    return ConversationUpdate(item, None)


# ---- streaming ----
@processor("response.audio_transcript.delta")
def _process_audio_transcript_delta(
    state: ConversationState, event: server.ResponseAudioTranscriptDelta, *_
) -> ConversationUpdate:
    item = state.require_item(event.item_id, event.type)
    part = _require_part(item, event.content_index, event.type, AudioContentPart)
    part.transcript = (part.transcript or "") + event.delta
    item.formatted.transcript += event.delta
    return ConversationUpdate(item, {"transcript": event.delta})


@processor("response.audio.delta")
def _process_audio_delta(state: ConversationState, event: server.ResponseAudioDelta, *_) -> ConversationUpdate:
    item = state.require_item(event.item_id, event.type)
    append_values = audio.base64_to_array(event.delta)

    if state.audio_buffer_size is None:
        item.formatted.audio = audio.merge_int16_arrays(item.formatted.audio, append_values)
    else:
        ring = state.audio_buffers.get(item.id)
        if ring is None:
            ring = state.audio_buffers[item.id] = AudioRing(state.audio_buffer_size)
            ring.append(item.formatted.audio)
        ring.append(append_values)
        item.formatted.audio = ring.snapshot()
    return ConversationUpdate(item, {"audio": append_values})


@processor("response.text.delta")
def _process_text_delta(state: ConversationState, event: server.ResponseTextDelta, *_) -> ConversationUpdate:
    item = state.require_item(event.item_id, event.type)
    part = _require_part(item, event.content_index, event.type, TextContentPart)
    part.text += event.delta
    item.formatted.text += event.delta
    return ConversationUpdate(item, {"text": event.delta})


@processor("response.function_call_arguments.delta")
def _process_function_call_arguments_delta(
    state: ConversationState, event: server.ResponseFunctionCallArgumentsDelta, *_
) -> ConversationUpdate:
    item = state.require_item(event.item_id, event.type)
    if not isinstance(item, FunctionCallConversationItem):
        raise ProtocolViolation(f"Item {item.id!r} is a {item.type}, not a function_call", event.type)
    item.arguments += event.delta
    if item.formatted.tool is not None:
        item.formatted.tool.arguments += event.delta
    return ConversationUpdate(item, {"arguments": event.delta})


RealtimeConversation.EventProcessors = freeze(_processors)
