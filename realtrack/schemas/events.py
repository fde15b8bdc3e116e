"""
realtrack.schemas.events
~~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 事件协议的 Pydantic 模型。

每一帧都是一个 JSON 文本，结构为 ``{"event": <事件名>, "data": {...}}``。

- 客户端 → 服务端：按 ``event`` 字段区分的联合类型（discriminated union），
  在调用房间注册表之前统一完成结构校验。
- 服务端 → 客户端：:class:`ServerEvent` 包装具体的数据模型。

字段在 Python 侧使用 snake_case，线上协议使用 camelCase。
"""
from __future__ import annotations

from typing import Annotated, Any, Generic, Literal, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class WireModel(BaseModel):
    """线上协议模型基类：camelCase 别名，同时允许按字段名构造。"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── 客户端 → 服务端 ───────────────────────────────────────────────────

class CreateRoomData(WireModel):
    """创建房间。"""

    username: str = Field(..., description="显示昵称")
    avatar: str = Field(..., description="头像 emoji")
    user_id: Any = Field(default=None, description="客户端持久化身份 ID")


class JoinRoomData(WireModel):
    """加入房间（也用于断线重连）。"""

    code: str = Field(..., description="6 位房间码")
    username: str = Field(..., description="显示昵称")
    avatar: str = Field(..., description="头像 emoji")
    user_id: Any = Field(default=None, description="客户端持久化身份 ID")


class UpdateLocationData(WireModel):
    """位置上报。

    坐标在会话层校验，不合法时静默丢弃；附加字段非数值时按缺失处理。
    """

    lat: Any = None
    lng: Any = None
    accuracy: Any = None
    heading: Any = None
    speed: Any = None


class SendMessageData(WireModel):
    text: str = Field(..., description="聊天文本")


class SetDestinationData(WireModel):
    lat: Any = None
    lng: Any = None
    name: Any = None


class EmptyData(WireModel):
    pass


class CreateRoomEvent(BaseModel):
    event: Literal["create_room"]
    data: CreateRoomData


class JoinRoomEvent(BaseModel):
    event: Literal["join_room"]
    data: JoinRoomData


class UpdateLocationEvent(BaseModel):
    event: Literal["update_location"]
    data: UpdateLocationData


class SendMessageEvent(BaseModel):
    event: Literal["send_message"]
    data: SendMessageData


class SetDestinationEvent(BaseModel):
    event: Literal["set_destination"]
    data: SetDestinationData


class ClearDestinationEvent(BaseModel):
    event: Literal["clear_destination"]
    data: EmptyData = Field(default_factory=EmptyData)


ClientEvent = Annotated[
    Union[
        CreateRoomEvent,
        JoinRoomEvent,
        UpdateLocationEvent,
        SendMessageEvent,
        SetDestinationEvent,
        ClearDestinationEvent,
    ],
    Field(discriminator="event"),
]

_client_event_adapter: TypeAdapter[ClientEvent] = TypeAdapter(ClientEvent)


def parse_client_event(raw: str | bytes) -> ClientEvent:
    """解析一帧客户端消息。

    Raises:
        pydantic.ValidationError: JSON 非法、事件名未知或字段类型不符。
    """
    return _client_event_adapter.validate_json(raw)


# ── 服务端 → 客户端 ───────────────────────────────────────────────────

class LocationData(WireModel):
    lat: float
    lng: float
    accuracy: float | None = None
    heading: float | None = None
    speed: float | None = None
    timestamp: int = Field(..., description="定位时间（毫秒）")


class TrailPointData(WireModel):
    lat: float
    lng: float
    timestamp: int


class DestinationData(WireModel):
    lat: float
    lng: float
    name: str


class MemberData(WireModel):
    """成员快照。不包含持久化身份 ID，避免被其他成员冒用。"""

    socket_id: str
    username: str
    avatar: str
    color: str
    location: LocationData | None = None
    trail: list[TrailPointData] = Field(default_factory=list)
    joined_at: int
    is_host: bool = False
    online: bool = True


class RoomJoinedData(WireModel):
    """``room_created`` / ``room_joined`` 的数据。"""

    code: str
    user: MemberData
    users: list[MemberData]
    is_host: bool
    destination: DestinationData | None = None


class UserJoinedData(WireModel):
    user: MemberData
    previous_socket_id: str | None = Field(
        default=None, description="断线重连时被替换的旧连接 ID",
    )


class LocationUpdateData(WireModel):
    socket_id: str
    user: MemberData


class UserLeftData(WireModel):
    socket_id: str
    username: str


class HostChangedData(WireModel):
    is_host: bool


class NewMessageData(WireModel):
    socket_id: str
    username: str
    color: str
    avatar: str
    text: str
    timestamp: int


class ErrorData(WireModel):
    message: str


class ServerEvent(BaseModel, Generic[T]):
    """服务端推送的统一信封。

    .. code-block:: json

        {"event": "location_update", "data": {...}}
    """

    event: str = Field(..., description="事件名")
    data: T = Field(..., description="事件数据")

    def encode(self) -> str:
        """序列化为线上 JSON 文本（camelCase）。"""
        return self.model_dump_json(by_alias=True)


def server_event(event: str, data: BaseModel | dict[str, Any] | None = None) -> ServerEvent[Any]:
    """快捷构造服务端事件，``data`` 缺省为空对象。"""
    return ServerEvent[Any](event=event, data=data if data is not None else {})
