"""Translation between Kani models and conversation items"""

import base64
import itertools
from typing import TYPE_CHECKING

import numpy as np
from kani import AIFunction, ChatMessage, ChatRole, FunctionCall, MessagePart, ToolCall
from pydantic import Field
from pydub import AudioSegment

from . import audio
from .models import (
    AudioContentPart,
    ContentPart,
    ConversationItem,
    FunctionCallConversationItem,
    FunctionCallOutputConversationItem,
    FunctionDefinition,
    MessageConversationItem,
    TextContentPart,
)

if TYPE_CHECKING:
    from .conversation import RealtimeConversation


class TextPart(MessagePart):
    oai_type: str
    text: str

    def __str__(self):
        return self.text


class AudioPart(MessagePart):
    oai_type: str
    transcript: str | None
    audio_b64: str | None = Field(repr=False)

    @property
    def audio_bytes(self) -> bytes | None:
        if self.audio_b64 is None:
            return None
        return base64.b64decode(self.audio_b64)

    @property
    def audio_samples(self) -> np.ndarray | None:
        if self.audio_b64 is None:
            return None
        return audio.base64_to_array(self.audio_b64)

    @property
    def audio_segment(self) -> AudioSegment | None:
        if self.audio_b64 is None:
            return None
        return audio.samples_to_segment(self.audio_samples)

    @property
    def audio_duration(self) -> float:
        if self.audio_b64 is None:
            return 0.0
        return len(self.audio_samples) / audio.SAMPLE_RATE

    def __str__(self):
        return self.transcript if self.transcript is not None else ""

    def __repr__(self):
        if self.audio_b64 is None:
            audio_repr = "None"
        else:
            audio_repr = f"[audio: {self.audio_duration:.3f}s]"
        return f'{self.__repr_name__()}({self.__repr_str__(", ")}, audio={audio_repr})'


# ===== translators =====
# ---- conversation -> kani ----
def content_part_to_message_part(part: ContentPart) -> MessagePart:
    match part:
        case TextContentPart(type=oai_type, text=text):
            return TextPart(oai_type=oai_type, text=text)
        case AudioContentPart(type=oai_type, audio=b64, transcript=transcript):
            return AudioPart(oai_type=oai_type, audio_b64=b64, transcript=transcript)
    raise ValueError(f"Unknown content part: {part!r}")


def _message_parts(item: MessageConversationItem) -> list[MessagePart]:
    # the server does not echo audio back in content parts; the audio streamed for the item is in `formatted`
    streamed = item.formatted.audio if item.formatted is not None else None
    parts = []
    for part in item.content:
        if isinstance(part, AudioContentPart) and part.audio is None and streamed is not None and len(streamed):
            part = part.model_copy(update={"audio": audio.array_to_base64(streamed)})
            streamed = None
        parts.append(content_part_to_message_part(part))
    return parts


def conv_items_to_chat_message(conv_items: list[ConversationItem]) -> ChatMessage:
    # this takes a list because ASST messages can have tool calls as separate item in a single response
    out_role = None
    out_content = []
    out_tool_calls = []
    out_kwargs = {}
    for item in conv_items:
        match item:
            case FunctionCallConversationItem(call_id=call_id, name=name, arguments=args):
                out_tool_calls.append(ToolCall.from_function_call(FunctionCall(name=name, arguments=args), call_id))
            case FunctionCallOutputConversationItem(call_id=call_id, output=output):
                out_role = ChatRole.FUNCTION
                out_kwargs["tool_call_id"] = call_id
                out_content.append(output)
            case MessageConversationItem(role=role):
                if out_role is not None and out_role != ChatRole(role):
                    raise ValueError(f"Got 2 different message roles in response: {out_role}, {role}")
                out_role = ChatRole(role)
                out_content.extend(_message_parts(item))
            case other:
                raise ValueError(f"A response shouldn't have this but it did: {other!r}")
    return ChatMessage(
        role=out_role or ChatRole.ASSISTANT, content=out_content, tool_calls=out_tool_calls, **out_kwargs
    )


def item_to_chat_message(item: ConversationItem) -> ChatMessage:
    return conv_items_to_chat_message([item])


def chat_history_from_conversation(conversation: "RealtimeConversation") -> list[ChatMessage]:
    """Given a conversation, get the chat history, grouping each response's output into a single message."""

    def _is_asst_or_func_call(item):
        return (item.type == "message" and item.role == "assistant") or (item.type == "function_call")

    history = []
    for is_asst_or_func_call, items in itertools.groupby(conversation.get_items(), key=_is_asst_or_func_call):
        if is_asst_or_func_call:
            # group all the items together as a single message
            msgs = [conv_items_to_chat_message(list(items))]
        else:
            # make a message for each item
            msgs = [conv_items_to_chat_message([item]) for item in items]
        # an item created by response.output_item.added may not have any content yet
        history.extend(m for m in msgs if m.content or m.tool_calls)
    return history


# ---- kani -> conversation ----
def chat_message_to_conv_items(message: ChatMessage) -> list[ConversationItem]:
    if message.role == ChatRole.FUNCTION:
        return [FunctionCallOutputConversationItem(call_id=message.tool_call_id, output=message.text)]

    items = []
    # content
    content = []
    for part in message.parts:
        match part:
            case str():
                content.append(
                    TextContentPart(type="input_text" if message.role != ChatRole.ASSISTANT else "text", text=part)
                )
            case TextPart(oai_type=oai_type, text=text):
                content.append(TextContentPart(type=oai_type, text=text))
            case AudioPart(oai_type=oai_type, audio_b64=b64, transcript=transcript):
                content.append(AudioContentPart(type=oai_type, audio=b64, transcript=transcript))
            case _:
                raise ValueError(f"Unknown content part: {part!r}")
    if content:
        items.append(MessageConversationItem(role=message.role.value, content=content))

    # tool calls
    if message.tool_calls:
        for tc in message.tool_calls:
            items.append(
                FunctionCallConversationItem(call_id=tc.id, name=tc.function.name, arguments=tc.function.arguments)
            )

    return items


def ai_function_to_tool(func: AIFunction) -> FunctionDefinition:
    return FunctionDefinition(name=func.name, description=func.desc, parameters=func.json_schema)
