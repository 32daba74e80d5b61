import abc
import warnings
from typing import ClassVar, Type

from pydantic import BaseModel, Field, model_validator

from .._internal import generate_id


class BaseEvent(BaseModel, abc.ABC):
    event_id: str | None = Field(default_factory=lambda: generate_id("evt_"))
    type: str


class ClientEvent(BaseEvent, abc.ABC):
    """An event sent from the client to the server."""

    def to_wire(self) -> dict:
        """The JSON-compatible dict to send over the WS. Unset optional fields are omitted."""
        return self.model_dump(mode="json", exclude_none=True)


class ServerEvent(BaseEvent, abc.ABC):
    # this class registers a list of subclasses that will be used later for deserialization
    # validating a dict against ServerEvent returns an instance of the subclass registered for its type
    _server_event_registry: ClassVar[dict[str, Type["ServerEvent"]]] = {}

    event_id: str

    @classmethod
    def __pydantic_init_subclass__(cls, **kwargs):
        super().__pydantic_init_subclass__(**kwargs)
        event_type = cls.model_fields["type"].default
        if not isinstance(event_type, str):
            return
        if event_type in cls._server_event_registry:
            warnings.warn(
                f"The server event with type {event_type!r} was defined multiple times (perhaps a class is being"
                " defined in a function scope). This will likely cause undesired behaviour when deserializing server"
                " events."
            )
        cls._server_event_registry[event_type] = cls

    # noinspection PyNestedDecorators
    @model_validator(mode="wrap")
    @classmethod
    def _validate(cls, v, nxt):
        if cls is ServerEvent and isinstance(v, dict) and "type" in v:
            event_type = v["type"]
            try:
                klass = cls._server_event_registry[event_type]
            except KeyError:
                return UnknownEvent(event_id=v.get("event_id"), type=event_type, data=v)
            return klass.model_validate(v)
        return nxt(v)

    @classmethod
    def is_registered(cls, event_type: str) -> bool:
        return event_type in cls._server_event_registry


class UnknownEvent(BaseEvent):
    """Catch-all unknown event type for server events."""

    data: dict
