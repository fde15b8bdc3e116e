"""
realtrack.services.presence
~~~~~~~~~~~~~~~~~~~~~~~~~~~

在线会话协议 —— 单个连接的生命周期状态机。

``CONNECTED`` → ``IDENTIFYING`` → ``IN_ROOM`` → ``CLOSED``

每个入站事件依次经过：结构解析 → 输入校验 → 限流 → 注册表修改 → 广播。
所有业务异常都在 :meth:`PresenceSession.handle` 边界被翻译为 ``error`` 事件，
不会中断连接。
"""
from __future__ import annotations

import enum
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import ValidationError as SchemaValidationError

from realtrack.core.errors import (
    AlreadyInRoomError,
    AuthorizationError,
    RateLimitError,
    RealtrackError,
    ValidationError,
)
from realtrack.core.logging import get_logger
from realtrack.core.rate_limit import ActionRateLimiter
from realtrack.core.validation import (
    clean_chat_text,
    clean_destination_label,
    finite_or_none,
    normalize_identity,
    normalize_room_code,
    sanitize_display_name,
    validate_avatar,
    validate_coordinates,
)
from realtrack.schemas.events import (
    ClientEvent,
    CreateRoomData,
    EmptyData,
    ErrorData,
    HostChangedData,
    JoinRoomData,
    LocationUpdateData,
    NewMessageData,
    RoomJoinedData,
    SendMessageData,
    SetDestinationData,
    UpdateLocationData,
    UserJoinedData,
    UserLeftData,
    parse_client_event,
    server_event,
)
from realtrack.services.broadcaster import ConnectionHub
from realtrack.services.room import Destination, LocationFix, MemberProfile, to_millis
from realtrack.services.room_registry import JoinOutcome, RemovalOutcome, RoomRegistry

logger = get_logger(__name__)

# 非预期异常时返回给客户端的通用提示，不暴露内部细节
_GENERIC_FAILURES: dict[str, str] = {
    "create_room": "创建房间失败，请稍后再试",
    "join_room": "加入房间失败，请稍后再试",
}
_DEFAULT_FAILURE = "服务器内部错误"


class SessionState(str, enum.Enum):
    CONNECTED = "connected"
    IDENTIFYING = "identifying"
    IN_ROOM = "in_room"
    CLOSED = "closed"


class PresenceSession:
    """一个连接的会话。

    一个连接同一时间最多属于一个房间；已在房间中时再次创建 / 加入会被拒绝且不产生副作用。

    Attributes:
        connection_id: 连接唯一标识。
        state: 当前状态。
        room_code: 所在房间码，未加入时为 ``None``。
    """

    def __init__(
        self,
        connection_id: str,
        *,
        registry: RoomRegistry,
        rate_limiter: ActionRateLimiter,
        hub: ConnectionHub,
        sessions: dict[str, PresenceSession] | None = None,
    ) -> None:
        self.connection_id = connection_id
        self.registry = registry
        self.rate_limiter = rate_limiter
        self.hub = hub
        # 连接 ID → 会话，用于释放被重连接管的旧会话
        self.sessions = sessions if sessions is not None else {}
        self.state = SessionState.CONNECTED
        self.room_code: str | None = None
        self._handlers: dict[str, Callable[[Any], Awaitable[None]]] = {
            "create_room": self._on_create_room,
            "join_room": self._on_join_room,
            "update_location": self._on_update_location,
            "send_message": self._on_send_message,
            "set_destination": self._on_set_destination,
            "clear_destination": self._on_clear_destination,
        }

    @property
    def in_room(self) -> bool:
        return self.state is SessionState.IN_ROOM and self.room_code is not None

    # ── 入口 ──────────────────────────────────────────────────────────

    async def handle_text(self, raw: str | bytes) -> None:
        """处理一帧原始 JSON 文本。"""
        try:
            event = parse_client_event(raw)
        except SchemaValidationError as e:
            logger.debug("无法解析的事件 | %d 个错误", e.error_count())
            await self._send_error(ValidationError("无效的请求").message)
            return
        await self.handle(event)

    async def handle(self, event: ClientEvent) -> None:
        """分发一个已解析的事件，并在此处统一处理业务异常。"""
        if self.state is SessionState.CLOSED:
            return
        handler = self._handlers[event.event]
        try:
            await handler(event.data)
        except RateLimitError as e:
            if e.action == "location":
                # GPS 轮询下的限流属于正常现象，静默丢弃
                logger.debug("位置上报被限流，已丢弃")
                return
            logger.info("动作被限流 | action=%s", e.action)
            await self._send_error(e.message)
        except RealtrackError as e:
            logger.debug("事件被拒绝 | event=%s | %s", event.event, e.message)
            await self._send_error(e.message)
        except Exception as e:
            logger.error("处理事件异常: %s | event=%s", e, event.event, exc_info=True)
            await self._send_error(_GENERIC_FAILURES.get(event.event, _DEFAULT_FAILURE))

    async def close(self) -> None:
        """连接关闭：移除成员并通知房间内其他人。可重复调用。"""
        if self.state is SessionState.CLOSED:
            return
        code = self.room_code
        self.state = SessionState.CLOSED
        self.room_code = None
        self.rate_limiter.remove_client(self.connection_id)
        self.hub.unregister(self.connection_id)
        if self.sessions.get(self.connection_id) is self:
            del self.sessions[self.connection_id]
        if code is None:
            return
        outcome = self.registry.remove_member(code, self.connection_id)
        if outcome is not None:
            await self._announce_removal(outcome)

    def release(self) -> None:
        """成员槽位已被同一身份的新连接接管：回到 ``CONNECTED``，可以重新创建或加入房间。"""
        if self.state is not SessionState.IN_ROOM:
            return
        logger.info("会话槽位已被接管 | conn=%s | room=%s", self.connection_id, self.room_code)
        self.state = SessionState.CONNECTED
        self.room_code = None

    # ── 辅助 ──────────────────────────────────────────────────────────

    def _release_superseded(self, connection_id: str | None) -> None:
        if connection_id is None or connection_id == self.connection_id:
            return
        session = self.sessions.get(connection_id)
        if session is not None:
            session.release()

    def _check_rate(self, action: str) -> None:
        if not self.rate_limiter.is_allowed(self.connection_id, action):
            raise RateLimitError(action)

    def _ensure_not_in_room(self) -> None:
        if self.room_code is not None:
            raise AlreadyInRoomError()

    async def _send_error(self, message: str) -> None:
        await self.hub.send(self.connection_id, server_event("error", ErrorData(message=message)))

    async def _identify(self, reply_event: str, join: Callable[[], JoinOutcome]) -> None:
        """执行 ``IDENTIFYING`` 阶段；失败时回到 ``CONNECTED``，客户端可以重试。"""
        self.state = SessionState.IDENTIFYING
        try:
            outcome = join()
        except Exception:
            self.state = SessionState.CONNECTED
            raise
        self.room_code = outcome.code
        self.state = SessionState.IN_ROOM
        await self._enter_room(reply_event, outcome)

    async def _enter_room(self, reply_event: str, outcome: JoinOutcome) -> None:
        self._release_superseded(outcome.previous_connection_id)
        if outcome.evicted is not None:
            self._release_superseded(outcome.evicted.member.socket_id)
        snapshot = outcome.snapshot
        reply = server_event(
            reply_event,
            RoomJoinedData(
                code=outcome.code,
                user=outcome.member,
                users=list(snapshot.members),
                is_host=outcome.is_host,
                destination=snapshot.destination,
            ),
        )
        joined = server_event(
            "user_joined",
            UserJoinedData(user=outcome.member, previous_socket_id=outcome.previous_connection_id),
        )
        await self.hub.send(self.connection_id, reply)
        await self.hub.broadcast(snapshot.connection_ids, joined, exclude=self.connection_id)
        if outcome.demoted_host_id is not None:
            await self.hub.send(
                outcome.demoted_host_id, server_event("host_changed", HostChangedData(is_host=False)),
            )
        if outcome.evicted is not None:
            await self._announce_removal(outcome.evicted)

    async def _announce_removal(self, outcome: RemovalOutcome) -> None:
        left = server_event(
            "user_left",
            UserLeftData(socket_id=outcome.member.socket_id, username=outcome.member.username),
        )
        await self.hub.broadcast(outcome.remaining_connection_ids, left)
        if outcome.new_host_id is not None:
            logger.info("房主已转移 | room=%s | new_host=%s", outcome.code, outcome.new_host_id)
            await self.hub.send(
                outcome.new_host_id, server_event("host_changed", HostChangedData(is_host=True)),
            )

    # ── 事件处理 ──────────────────────────────────────────────────────

    async def _on_create_room(self, data: CreateRoomData) -> None:
        self._ensure_not_in_room()
        profile = MemberProfile(
            display_name=sanitize_display_name(data.username),
            avatar=validate_avatar(data.avatar),
        )
        identity_id = normalize_identity(data.user_id)
        self._check_rate("create")

        def join() -> JoinOutcome:
            code = self.registry.create_room()
            return self.registry.join_room(code, self.connection_id, profile, identity_id)

        await self._identify("room_created", join)

    async def _on_join_room(self, data: JoinRoomData) -> None:
        self._ensure_not_in_room()
        code = normalize_room_code(data.code)
        profile = MemberProfile(
            display_name=sanitize_display_name(data.username),
            avatar=validate_avatar(data.avatar),
        )
        identity_id = normalize_identity(data.user_id)
        self._check_rate("join")
        await self._identify(
            "room_joined",
            lambda: self.registry.join_room(code, self.connection_id, profile, identity_id),
        )

    async def _on_update_location(self, data: UpdateLocationData) -> None:
        if not self.in_room:
            return
        try:
            lat, lng = validate_coordinates(data.lat, data.lng)
        except ValidationError:
            logger.debug("无效坐标，已丢弃 | lat=%r | lng=%r", data.lat, data.lng)
            return
        self._check_rate("location")

        fix = LocationFix(
            latitude=lat,
            longitude=lng,
            accuracy_m=finite_or_none(data.accuracy),
            heading_deg=finite_or_none(data.heading),
            speed_kmh=finite_or_none(data.speed),
        )
        member = self.registry.update_location(self.room_code, self.connection_id, fix)
        if member is None:
            return
        recipients = self.registry.connection_ids(self.room_code)
        await self.hub.broadcast(
            recipients,
            server_event("location_update", LocationUpdateData(socket_id=member.socket_id, user=member)),
        )

    async def _on_send_message(self, data: SendMessageData) -> None:
        if not self.in_room:
            return
        text = clean_chat_text(data.text)
        self._check_rate("message")

        member = self.registry.get_member(self.room_code, self.connection_id)
        if member is None:
            return
        self.registry.touch(self.room_code)
        message = NewMessageData(
            socket_id=member.socket_id,
            username=member.username,
            color=member.color,
            avatar=member.avatar,
            text=text,
            timestamp=to_millis(self.registry.now()),
        )
        recipients = self.registry.connection_ids(self.room_code)
        await self.hub.broadcast(recipients, server_event("new_message", message))

    async def _on_set_destination(self, data: SetDestinationData) -> None:
        if not self.in_room:
            return
        try:
            lat, lng = validate_coordinates(data.lat, data.lng)
        except ValidationError:
            raise ValidationError("目的地坐标无效") from None
        label = clean_destination_label(data.name)
        self._check_rate("destination")

        destination = Destination(latitude=lat, longitude=lng, label=label)
        if not self.registry.set_destination(self.room_code, self.connection_id, destination):
            raise AuthorizationError("只有房主可以设置目的地")
        recipients = self.registry.connection_ids(self.room_code)
        logger.info("目的地已设置 | room=%s | %s (%s, %s)", self.room_code, label, lat, lng)
        await self.hub.broadcast(recipients, server_event("destination_set", destination.to_data()))

    async def _on_clear_destination(self, data: EmptyData) -> None:
        if not self.in_room:
            return
        self._check_rate("destination")
        if not self.registry.set_destination(self.room_code, self.connection_id, None):
            raise AuthorizationError("只有房主可以清除目的地")
        recipients = self.registry.connection_ids(self.room_code)
        logger.info("目的地已清除 | room=%s", self.room_code)
        await self.hub.broadcast(recipients, server_event("destination_cleared"))
