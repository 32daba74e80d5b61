class RealtimeError(Exception):
    pass


# ===== conversation reconstruction =====
class ConversationError(RealtimeError):
    """Base class for errors raised while applying a server event to the conversation."""

    def __init__(self, message: str, event_type: str | None = None):
        super().__init__(message)
        self.msg = message
        self.event_type = event_type

    def __str__(self):
        if self.event_type is None:
            return self.msg
        return f"[{self.event_type}] {self.msg}"


class ProtocolViolation(ConversationError):
    """The event is malformed (missing event_id or type, or the payload does not match its schema)."""


class UnknownEventType(ConversationError):
    """There is no conversation processor registered for the event's type."""


class ReferenceNotFound(ConversationError):
    """The event references an item, response, or content part that the conversation does not have."""

    def __init__(self, message: str, event_type: str | None = None, ref_id: str | None = None):
        super().__init__(message, event_type)
        self.ref_id = ref_id


class EncodingError(ConversationError):
    """The event carries audio that could not be decoded."""


# WS Error event
class OpenAIRealtimeError(RealtimeError):
    def __init__(
        self, message: str, type: str, code: str | None = None, event_id: str | None = None, param: str | None = None
    ):
        super().__init__(message)
        self.msg = message
        self.type = type
        self.code = code
        self.event_id = event_id
        self.param = param

    @classmethod
    def from_ws_error(cls, err):
        return cls(message=err.message, type=err.type, code=err.code, event_id=err.event_id, param=err.param)

    def __str__(self):
        return f"{self.type=} {self.code=} {self.event_id=} {self.param=} {self.msg=}"
