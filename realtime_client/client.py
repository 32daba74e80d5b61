import asyncio
import datetime
import json
import logging
import math
from typing import Any, Callable, NamedTuple

import numpy as np

from . import audio
from ._internal import ensure_async, get_server_event_handlers, server_event_handler
from .api import DEFAULT_MODEL, RealtimeAPI
from .conversation import NO_UPDATE, ConversationUpdate, RealtimeConversation
from .errors import OpenAIRealtimeError, RealtimeError
from .event_handler import RealtimeEventHandler
from .events import client as client_events
from .models import (
    ConversationItem,
    ErrorDetails,
    FormattedTool,
    FunctionCallOutputConversationItem,
    FunctionDefinition,
    MessageConversationItem,
    SessionConfig,
)

log = logging.getLogger(__name__)


class ToolRegistration(NamedTuple):
    definition: FunctionDefinition
    handler: Callable[[dict], Any]


class RealtimeClient(RealtimeEventHandler):
    """
    High-level client for the Realtime API.

    Wires the server events of a :class:`.RealtimeAPI` into a :class:`.RealtimeConversation` and republishes the
    results as:

    - ``conversation.updated`` ``{item, delta}``: an item was created or changed
    - ``conversation.item.appended`` ``{item}``: an item was added to the conversation
    - ``conversation.item.completed`` ``{item}``: an item finished
    - ``conversation.interrupted``: the server detected the user starting to speak
    - ``error``: the server sent an error (the payload is an :class:`.OpenAIRealtimeError`)
    - ``realtime.event`` ``{time, source, event}``: every event sent and received, if *debug* is set
    """

    def __init__(
        self,
        url: str = None,
        api_key: str = None,
        *,
        model: str = DEFAULT_MODEL,
        debug: bool = False,
        audio_buffer_size: int | None = None,
    ):
        """
        :param url: The WebSocket URL to connect to (default "wss://api.openai.com/v1/realtime").
        :param api_key: Your OpenAI API key. By default, the API key will be read from the `OPENAI_API_KEY` environment
            variable.
        :param model: The id of the realtime model to use.
        :param debug: Whether to republish every event as ``realtime.event`` and log wire traffic.
        :param audio_buffer_size: If set, keep only this many of the most recent samples of each item's streamed audio.
        """
        super().__init__()
        self.model = model
        self.debug = debug
        self.realtime = RealtimeAPI(url=url, api_key=api_key, debug=debug)
        self.conversation = RealtimeConversation(audio_buffer_size=audio_buffer_size)
        self._reset_config()
        self._add_api_event_handlers()

    def _reset_config(self):
        self.session_created = False
        self._session_created = asyncio.Event()
        self.tools: dict[str, ToolRegistration] = {}
        self.session_config = SessionConfig()
        self.input_audio_buffer = np.zeros(0, dtype=np.int16)

    def _add_api_event_handlers(self):
        self.realtime.on("client.*", self._log_client_event)
        self.realtime.on("server.*", self._log_server_event)
        for event_type, handler in get_server_event_handlers(self).items():
            self.realtime.on(f"server.{event_type}", handler)

    # ==== lifecycle ====
    @property
    def is_connected(self) -> bool:
        return self.realtime.is_connected

    async def connect(self) -> bool:
        """Connect to the Realtime API and send the current session configuration."""
        if self.is_connected:
            raise RuntimeError("Already connected, use disconnect() first")
        await self.realtime.connect(model=self.model)
        await self.update_session()
        return True

    async def wait_for_session_created(self) -> bool:
        if not self.is_connected:
            raise RuntimeError("Not connected, use connect() first")
        await self._session_created.wait()
        return True

    async def disconnect(self):
        """Disconnect from the Realtime API and clear the conversation."""
        self.session_created = False
        self._session_created.clear()
        if self.realtime.is_connected:
            await self.realtime.disconnect()
        self.conversation.clear()

    async def reset(self) -> bool:
        """Disconnect, remove all listeners and tools, and restore the default session configuration."""
        await self.disconnect()
        self.clear_event_handlers()
        self.realtime.clear_event_handlers()
        self._reset_config()
        self._add_api_event_handlers()
        return True

    # ==== session ====
    def get_turn_detection_type(self) -> str | None:
        if self.session_config.turn_detection is None:
            return None
        return self.session_config.turn_detection.type

    async def update_session(self, **session_config) -> bool:
        """
        Update the session configuration (see :class:`.SessionConfig` for the accepted keys) and, if connected, send
        it to the server. Tools added with :meth:`add_tool` are always included.
        """
        unknown = set(session_config) - set(SessionConfig.model_fields)
        if unknown:
            raise ValueError(f"Unknown session configuration keys: {sorted(unknown)}")
        if (tools := session_config.get("tools")) is not None:
            definitions = [FunctionDefinition.model_validate(t) for t in tools]
            for definition in definitions:
                if definition.name in self.tools:
                    raise ValueError(f"Tool {definition.name!r} has already been defined")
            session_config["tools"] = definitions

        self.session_config = SessionConfig.model_validate(self.session_config.model_dump() | session_config)
        session = self.session_config.model_copy(
            update={"tools": [*self.session_config.tools, *(t.definition for t in self.tools.values())]}
        )
        if self.realtime.is_connected:
            await self.realtime.send(client_events.SessionUpdate(session=session))
        return True

    # ==== tools ====
    async def add_tool(self, definition: FunctionDefinition | dict, handler: Callable[[dict], Any]) -> ToolRegistration:
        """
        Register a tool the model can call. *handler* (sync or async) is called with the parsed JSON arguments and
        its return value is sent back to the model as JSON.
        """
        definition = FunctionDefinition.model_validate(definition)
        if definition.name in self.tools:
            raise ValueError(f"Tool {definition.name!r} already added. Please use remove_tool() first.")
        if not callable(handler):
            raise ValueError(f"Tool {definition.name!r} handler must be callable")
        self.tools[definition.name] = registration = ToolRegistration(definition, handler)
        await self.update_session()
        return registration

    def remove_tool(self, name: str) -> bool:
        if name not in self.tools:
            raise ValueError(f"Tool {name!r} does not exist, can not be removed.")
        del self.tools[name]
        return True

    async def call_tool(self, tool: FormattedTool):
        """Call a registered tool, send its output (or the error it raised) to the server, and request a response."""
        # noinspection PyBroadException
        try:
            registration = self.tools.get(tool.name)
            if registration is None:
                raise ValueError(f"Tool {tool.name!r} has not been added")
            arguments = json.loads(tool.arguments) if tool.arguments else {}
            result = await ensure_async(registration.handler)(arguments)
            output = json.dumps(result)
        except Exception as e:
            log.warning(f"Exception when calling tool {tool.name!r}:", exc_info=e)
            output = json.dumps({"error": str(e)})
        await self.realtime.send(
            client_events.ConversationItemCreate(
                item=FunctionCallOutputConversationItem(call_id=tool.call_id, output=output)
            )
        )
        await self.create_response()

    # ==== conversation ====
    def get_conversation_items(self) -> list[ConversationItem]:
        return self.conversation.get_items()

    async def delete_item(self, item_id: str) -> bool:
        await self.realtime.send(client_events.ConversationItemDelete(item_id=item_id))
        return True

    async def append_input_audio(self, input_audio) -> bool:
        """
        Send microphone audio to the server and keep a local copy for the conversation.

        :param input_audio: PCM16 samples (int16 array or raw little-endian bytes), or float samples in [-1, 1].
        """
        samples = _to_pcm16(input_audio)
        if len(samples):
            await self.realtime.send(client_events.InputAudioBufferAppend(audio=audio.array_to_base64(samples)))
            self.input_audio_buffer = audio.merge_int16_arrays(self.input_audio_buffer, samples)
        return True

    async def send_user_message_content(self, content: list[dict] = None) -> bool:
        """
        Send a user message and request a response. ``input_audio`` parts may carry their audio as samples; they are
        base64-encoded before sending.
        """
        if content:
            parts = []
            for part in content:
                part = dict(part)
                if part.get("type") == "input_audio" and not isinstance(part.get("audio"), (str, type(None))):
                    part["audio"] = audio.array_to_base64(part["audio"])
                parts.append(part)
            item = MessageConversationItem.model_validate({"role": "user", "content": parts})
            await self.realtime.send(client_events.ConversationItemCreate(item=item))
        await self.create_response()
        return True

    async def create_response(self) -> bool:
        """
        Request a response from the model. Without turn detection, the pending input audio is committed first and
        attached to the next user message.
        """
        if self.get_turn_detection_type() is None and len(self.input_audio_buffer) > 0:
            await self.realtime.send(client_events.InputAudioBufferCommit())
            self.conversation.queue_input_audio(self.input_audio_buffer)
            self.input_audio_buffer = np.zeros(0, dtype=np.int16)
        await self.realtime.send(client_events.ResponseCreate())
        return True

    async def cancel_response(self, response_id: str | None = None, sample_count: int = 0) -> ConversationItem | None:
        """
        Cancel the in-progress response. If *response_id* is given, also truncate that response's audio message at
        *sample_count* samples, the amount of audio actually played back.

        :returns: The truncated item, if any.
        """
        if not response_id:
            await self.realtime.send(client_events.ResponseCancel())
            return None
        response = self.conversation.get_response(response_id)
        if response is None:
            raise ValueError(f"Could not find response {response_id!r}")
        item = self.conversation.get_item(response.output[0]) if response.output else None
        if item is None:
            raise ValueError(f"Could not find item for response {response_id!r}")
        if not isinstance(item, MessageConversationItem) or item.role != "assistant":
            raise ValueError("Can only cancel response messages with type 'message' and role 'assistant'")

        await self.realtime.send(client_events.ResponseCancel())
        audio_index = next((idx for idx, part in enumerate(item.content) if part.type == "audio"), None)
        if audio_index is None:
            raise ValueError("Could not find audio on item to cancel")
        audio_end_ms = math.floor(sample_count / self.conversation.default_frequency * 1000)
        await self.realtime.send(
            client_events.ConversationItemTruncate(
                item_id=item.id, content_index=audio_index, audio_end_ms=audio_end_ms
            )
        )
        return item

    async def wait_for_next_item(self, timeout: float | None = None) -> ConversationItem | None:
        """Wait for the next item to be appended to the conversation, up to *timeout* seconds."""
        event = await self.wait_for_next("conversation.item.appended", timeout)
        return event["item"] if event is not None else None

    async def wait_for_next_completed_item(self, timeout: float | None = None) -> ConversationItem | None:
        """Wait for the next conversation item to complete, up to *timeout* seconds."""
        event = await self.wait_for_next("conversation.item.completed", timeout)
        return event["item"] if event is not None else None

    # ==== ws event handlers ====
    def _log_client_event(self, event: dict):
        if self.debug:
            self.dispatch("realtime.event", _realtime_event("client", event))

    def _log_server_event(self, event: dict):
        if self.debug:
            self.dispatch("realtime.event", _realtime_event("server", event))

    def _handler_with_dispatch(self, event: dict, *args) -> ConversationUpdate:
        try:
            item, delta = self.conversation.process_event(event, *args)
        except RealtimeError as e:
            log.warning(f"Could not apply {event.get('type')!r} event to the conversation: {e}")
            return NO_UPDATE
        if item is not None:
            self.dispatch("conversation.updated", {"item": item, "delta": delta})
        return ConversationUpdate(item, delta)

    @server_event_handler("session.created")
    def _handle_session_created(self, _: dict):
        self.session_created = True
        self._session_created.set()

    @server_event_handler("error")
    def _handle_error(self, event: dict):
        err = OpenAIRealtimeError.from_ws_error(ErrorDetails.model_validate(event.get("error", {})))
        log.error(f"Error from the Realtime API: {err}")
        self.dispatch("error", err)

    @server_event_handler(
        "response.created",
        "response.output_item.added",
        "response.content_part.added",
        "conversation.item.truncated",
        "conversation.item.deleted",
        "conversation.item.input_audio_transcription.completed",
        "response.audio_transcript.delta",
        "response.audio.delta",
        "response.text.delta",
        "response.function_call_arguments.delta",
    )
    def _handle_conversation_event(self, event: dict):
        self._handler_with_dispatch(event)

    @server_event_handler("input_audio_buffer.speech_started")
    def _handle_speech_started(self, event: dict):
        self._handler_with_dispatch(event)
        self.dispatch("conversation.interrupted", event)

    @server_event_handler("input_audio_buffer.speech_stopped")
    def _handle_speech_stopped(self, event: dict):
        self._handler_with_dispatch(event, self.input_audio_buffer)

    @server_event_handler("conversation.item.created")
    def _handle_item_created(self, event: dict):
        item, _ = self._handler_with_dispatch(event)
        if item is None:
            return
        self.dispatch("conversation.item.appended", {"item": item})
        if item.status == "completed":
            self.dispatch("conversation.item.completed", {"item": item})

    @server_event_handler("response.output_item.done")
    async def _handle_output_item_done(self, event: dict):
        item, _ = self._handler_with_dispatch(event)
        if item is None:
            return
        if item.status == "completed":
            self.dispatch("conversation.item.completed", {"item": item})
        if item.status == "completed" and item.formatted.tool is not None:
            await self.call_tool(item.formatted.tool)


def _to_pcm16(input_audio) -> np.ndarray:
    if isinstance(input_audio, np.ndarray) and np.issubdtype(input_audio.dtype, np.floating):
        return audio.float_to_16bit_pcm(input_audio)
    return audio.as_samples(input_audio)


def _realtime_event(source: str, event: dict) -> dict:
    return {"time": datetime.datetime.now(datetime.timezone.utc).isoformat(), "source": source, "event": event}
