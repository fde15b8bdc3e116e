"""
realtrack.services.room
~~~~~~~~~~~~~~~~~~~~~~~

房间领域模型 —— 房间、成员、位置与目的地。

这些对象只由 :class:`~realtrack.services.room_registry.RoomRegistry` 创建和修改，
其他组件只能拿到 ``to_data()`` 生成的 Pydantic 快照。
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field

from realtrack.schemas.events import (
    DestinationData,
    LocationData,
    MemberData,
    TrailPointData,
)


def to_millis(ts: float) -> int:
    """秒级时间戳 → 毫秒整数（线上协议统一使用毫秒）。"""
    return int(ts * 1000)


@dataclass(frozen=True)
class MemberProfile:
    """成员的展示属性（已通过校验）。"""

    display_name: str
    avatar: str


@dataclass(frozen=True)
class LocationFix:
    """一次 GPS 定位结果。"""

    latitude: float
    longitude: float
    accuracy_m: float | None = None
    heading_deg: float | None = None
    speed_kmh: float | None = None
    # 为空时由注册表在写入时打上当前时间
    observed_at: float | None = None

    def to_data(self) -> LocationData:
        return LocationData(
            lat=self.latitude,
            lng=self.longitude,
            accuracy=self.accuracy_m,
            heading=self.heading_deg,
            speed=self.speed_kmh,
            timestamp=to_millis(self.observed_at or 0.0),
        )


@dataclass(frozen=True)
class TrailPoint:
    latitude: float
    longitude: float
    observed_at: float

    def to_data(self) -> TrailPointData:
        return TrailPointData(
            lat=self.latitude, lng=self.longitude, timestamp=to_millis(self.observed_at),
        )


@dataclass(frozen=True)
class Destination:
    """房间共享目的地，只能由房主设置。"""

    latitude: float
    longitude: float
    label: str

    def to_data(self) -> DestinationData:
        return DestinationData(lat=self.latitude, lng=self.longitude, name=self.label)


@dataclass
class Member:
    """房间中的一个成员槽位。

    Attributes:
        connection_id: 当前绑定的连接 ID，重连后会变化。
        identity_id: 客户端持久化身份 ID，跨重连保持不变（可能为空）。
        color: 从调色板分配的颜色，房间内尽量唯一。
        location: 最近一次定位。
        trail: 最近的轨迹点，超过上限时淘汰最旧的点。
        joined_at: 首次加入时间，重连后保持不变。
        join_seq: 房间内的加入序号，用于确定性地选举房主。
    """

    connection_id: str
    identity_id: str | None
    profile: MemberProfile
    color: str
    joined_at: float
    join_seq: int
    trail: deque[TrailPoint]
    location: LocationFix | None = None
    departed_at: float | None = None
    was_host: bool = False

    @property
    def election_key(self) -> tuple[float, int]:
        return (self.joined_at, self.join_seq)

    def to_data(self, *, is_host: bool = False) -> MemberData:
        """生成不可变的成员快照（不包含持久化身份 ID）。"""
        return MemberData(
            socket_id=self.connection_id,
            username=self.profile.display_name,
            avatar=self.profile.avatar,
            color=self.color,
            location=self.location.to_data() if self.location else None,
            trail=[p.to_data() for p in self.trail],
            joined_at=to_millis(self.joined_at),
            is_host=is_host,
            online=self.departed_at is None,
        )


@dataclass
class Room:
    """一个临时房间。

    Attributes:
        code: 6 位大写字母数字房间码。
        members: 连接 ID → 成员。
        host_connection_id: 当前房主的连接 ID，仅在房间为空时为 ``None``。
        destination: 共享目的地。
        departed: 持久化身份 ID → 已断线但仍可恢复的成员槽位。
    """

    code: str
    created_at: float
    last_activity_at: float
    members: dict[str, Member] = field(default_factory=dict)
    host_connection_id: str | None = None
    destination: Destination | None = None
    departed: dict[str, Member] = field(default_factory=dict)
    next_join_seq: int = 0

    @property
    def member_count(self) -> int:
        return len(self.members)

    def ordered_members(self) -> list[Member]:
        """按加入顺序返回成员（最早加入的在前）。"""
        return sorted(self.members.values(), key=lambda m: m.election_key)

    def find_by_identity(self, identity_id: str) -> Member | None:
        for member in self.members.values():
            if member.identity_id == identity_id:
                return member
        return None

    def used_colors(self) -> set[str]:
        """在线成员与待恢复槽位占用的颜色。"""
        colors = {m.color for m in self.members.values()}
        colors.update(m.color for m in self.departed.values())
        return colors


@dataclass(frozen=True)
class RoomSnapshot:
    """某一时刻的房间只读快照，供广播和展示使用。"""

    code: str
    members: tuple[MemberData, ...]
    destination: DestinationData | None
    host_connection_id: str | None

    @property
    def connection_ids(self) -> tuple[str, ...]:
        return tuple(m.socket_id for m in self.members)
