from .api import DEFAULT_MODEL, RealtimeAPI
from .audio import (
    SAMPLE_RATE,
    AudioRing,
    array_to_base64,
    base64_to_array,
    float_to_16bit_pcm,
    merge_int16_arrays,
)
from .client import RealtimeClient
from .conversation import ConversationUpdate, RealtimeConversation
from .errors import (
    ConversationError,
    EncodingError,
    OpenAIRealtimeError,
    ProtocolViolation,
    RealtimeError,
    ReferenceNotFound,
    UnknownEventType,
)
from .event_handler import RealtimeEventHandler
from .models import FunctionDefinition, SessionConfig, TurnDetectionConfig
