from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from game.sync.protocol import split_path

_PATH_PATTERN = r"^[A-Za-z0-9_/-]+$"
_MAX_PATH_LENGTH = 200


class ClientMessageType(StrEnum):
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"
    GET = "get"
    SET = "set"
    UPDATE = "update"
    REMOVE = "remove"
    ON_DISCONNECT = "on_disconnect"
    CANCEL_ON_DISCONNECT = "cancel_on_disconnect"
    PING = "ping"


class ServerMessageType(StrEnum):
    SNAPSHOT = "snapshot"
    RESULT = "result"
    ERROR = "error"
    PONG = "pong"


class ChannelErrorCode(StrEnum):
    INVALID_MESSAGE = "invalid_message"
    WRITE_FAILED = "write_failed"
    ALREADY_SUBSCRIBED = "already_subscribed"
    NOT_SUBSCRIBED = "not_subscribed"


class _PathMessage(BaseModel):
    # Echoed back in the result so clients can match replies to requests.
    id: int | None = None
    path: str = Field(min_length=1, max_length=_MAX_PATH_LENGTH, pattern=_PATH_PATTERN)

    @field_validator("path")
    @classmethod
    def _normalize_path(cls, v: str) -> str:
        return "/".join(split_path(v))


class SubscribeMessage(_PathMessage):
    type: Literal[ClientMessageType.SUBSCRIBE] = ClientMessageType.SUBSCRIBE


class UnsubscribeMessage(_PathMessage):
    type: Literal[ClientMessageType.UNSUBSCRIBE] = ClientMessageType.UNSUBSCRIBE


class GetMessage(_PathMessage):
    type: Literal[ClientMessageType.GET] = ClientMessageType.GET


class SetMessage(_PathMessage):
    type: Literal[ClientMessageType.SET] = ClientMessageType.SET
    value: Any = None


class UpdateMessage(_PathMessage):
    type: Literal[ClientMessageType.UPDATE] = ClientMessageType.UPDATE
    values: dict[str, Any]


class RemoveMessage(_PathMessage):
    type: Literal[ClientMessageType.REMOVE] = ClientMessageType.REMOVE


class OnDisconnectMessage(_PathMessage):
    type: Literal[ClientMessageType.ON_DISCONNECT] = ClientMessageType.ON_DISCONNECT
    op: Literal["set", "update"]
    value: Any = None


class CancelOnDisconnectMessage(_PathMessage):
    type: Literal[ClientMessageType.CANCEL_ON_DISCONNECT] = ClientMessageType.CANCEL_ON_DISCONNECT


class PingMessage(BaseModel):
    type: Literal[ClientMessageType.PING] = ClientMessageType.PING


ClientMessage = (
    SubscribeMessage
    | UnsubscribeMessage
    | GetMessage
    | SetMessage
    | UpdateMessage
    | RemoveMessage
    | OnDisconnectMessage
    | CancelOnDisconnectMessage
    | PingMessage
)


class SnapshotMessage(BaseModel):
    """Latest value at a subscribed path; None when the path is empty."""

    type: Literal[ServerMessageType.SNAPSHOT] = ServerMessageType.SNAPSHOT
    path: str
    value: Any = None


class ResultMessage(BaseModel):
    type: Literal[ServerMessageType.RESULT] = ServerMessageType.RESULT
    id: int | None = None
    value: Any = None


class ErrorMessage(BaseModel):
    type: Literal[ServerMessageType.ERROR] = ServerMessageType.ERROR
    id: int | None = None
    code: ChannelErrorCode
    message: str


class PongMessage(BaseModel):
    type: Literal[ServerMessageType.PONG] = ServerMessageType.PONG


_client_adapter = TypeAdapter(Annotated[ClientMessage, Field(discriminator="type")])


def parse_client_message(data: dict[str, Any]) -> ClientMessage:
    """Parse a raw frame into a typed client message."""
    return _client_adapter.validate_python(data)
