"""
realtrack.services.room_registry
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间注册表 —— 所有房间与成员状态的唯一持有者。

共享状态的每一次修改都经过这里。所有方法都是同步的，在单事件循环中
天然原子：任何一次操作完成前，其他协程都看不到中间状态。

返回给调用方的都是 Pydantic 快照（``MemberData`` / :class:`RoomSnapshot`），
调用方可以在 ``await`` 之后放心使用，不会读到后续修改。
"""
from __future__ import annotations

import random
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, replace

from realtrack.core.errors import AlreadyInRoomError, CapacityError, NotFoundError
from realtrack.core.logging import get_logger
from realtrack.core.validation import ROOM_CODE_ALPHABET, ROOM_CODE_LENGTH
from realtrack.schemas.events import MemberData
from realtrack.services.room import (
    Destination,
    LocationFix,
    Member,
    MemberProfile,
    Room,
    RoomSnapshot,
    TrailPoint,
)

logger = get_logger(__name__)

# 成员颜色调色板，房间内优先分配未被占用的颜色
PALETTE: tuple[str, ...] = (
    "#00D9FF",  # 青
    "#B24BF3",  # 紫
    "#FF6B6B",  # 红
    "#4ECDC4",  # 水绿
    "#FFE66D",  # 黄
    "#FF6F91",  # 粉
    "#06FFA5",  # 荧光绿
    "#FF9A3C",  # 橙
    "#A8FF3E",  # 青柠
    "#FF3CAC",  # 品红
)


@dataclass(frozen=True)
class RemovalOutcome:
    """一次成员移除的结果，用于通知房间内剩余成员。

    Attributes:
        code: 房间码。
        member: 被移除成员的快照。
        new_host_id: 若发生房主交接，为新房主的连接 ID。
        remaining_connection_ids: 移除后仍在房间中的连接。
    """

    code: str
    member: MemberData
    new_host_id: str | None
    remaining_connection_ids: tuple[str, ...]


@dataclass(frozen=True)
class JoinOutcome:
    """一次加入（或重连合并）的结果。

    Attributes:
        code: 房间码。
        member: 加入者的成员快照。
        is_host: 加入者当前是否为房主。
        snapshot: 加入完成瞬间的房间快照。
        previous_connection_id: 重连时被替换的旧连接 ID。
        demoted_host_id: 原房主重连收回权限时，被撤销权限的临时房主。
        evicted: 同一身份在其他房间的旧槽位被移除的结果。
    """

    code: str
    member: MemberData
    is_host: bool
    snapshot: RoomSnapshot
    previous_connection_id: str | None = None
    demoted_host_id: str | None = None
    evicted: RemovalOutcome | None = None

    @property
    def resumed(self) -> bool:
        return self.previous_connection_id is not None


@dataclass(frozen=True)
class RoomStatus:
    code: str
    member_count: int
    last_activity_at: float


class RoomRegistry:
    """内存中的房间注册表。

    - ``create_room()``                → 生成唯一房间码并创建空房间
    - ``join_room(...)``               → 加入房间（含容量检查，重连豁免）
    - ``merge_or_add(...)``            → 按持久化身份合并重连，或新增成员槽位
    - ``update_location(...)``         → 更新最新定位并追加轨迹
    - ``remove_member(...)``           → 移除成员，必要时选举新房主（不删除房间）
    - ``set_destination(...)``         → 仅房主可设置 / 清除目的地
    - ``snapshot(code)``               → 房间只读快照

    Attributes:
        max_rooms: 存活房间数上限（包括等待回收的空房间）。
        max_members: 单个房间成员数上限。
        trail_limit: 每个成员保留的轨迹点数。
    """

    def __init__(
        self,
        *,
        max_rooms: int = 10,
        max_members: int = 15,
        trail_limit: int = 100,
        palette: tuple[str, ...] = PALETTE,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
    ) -> None:
        self.max_rooms = max_rooms
        self.max_members = max_members
        self.trail_limit = trail_limit
        self.palette = palette
        self._clock = clock
        self._rng = rng or random.SystemRandom()
        self._rooms: dict[str, Room] = {}
        # 持久化身份 ID → 其在线或待恢复槽位所在的房间码
        self._identity_rooms: dict[str, str] = {}

    def now(self) -> float:
        """注册表使用的当前时间（秒）。"""
        return self._clock()

    def clear_all(self) -> None:
        """清空全部状态。在应用关闭时调用。"""
        self._rooms.clear()
        self._identity_rooms.clear()

    # ── 房间 ──────────────────────────────────────────────────────────

    def _generate_code(self) -> str:
        while True:
            code = "".join(
                self._rng.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH)
            )
            if code not in self._rooms:
                return code

    def create_room(self) -> str:
        """创建一个空房间并返回房间码。

        Raises:
            CapacityError: 存活房间数已达上限。
        """
        if len(self._rooms) >= self.max_rooms:
            raise CapacityError("房间数量已达上限，请稍后再试")
        now = self._clock()
        code = self._generate_code()
        self._rooms[code] = Room(code=code, created_at=now, last_activity_at=now)
        logger.info("房间已创建 | room=%s | 房间总数: %d", code, len(self._rooms))
        return code

    def room_exists(self, code: str) -> bool:
        return code in self._rooms

    def _require_room(self, code: str) -> Room:
        room = self._rooms.get(code)
        if room is None:
            raise NotFoundError("房间不存在，请检查房间码")
        return room

    def touch(self, code: str) -> None:
        """刷新房间的最近活动时间。"""
        room = self._rooms.get(code)
        if room is not None:
            room.last_activity_at = self._clock()

    def delete_room(self, code: str) -> bool:
        """删除一个空房间。仍有成员的房间不会被删除。"""
        room = self._rooms.get(code)
        if room is None or room.members:
            return False
        for identity_id in room.departed:
            if self._identity_rooms.get(identity_id) == code:
                del self._identity_rooms[identity_id]
        del self._rooms[code]
        return True

    def list_rooms(self) -> list[RoomStatus]:
        return [
            RoomStatus(code=r.code, member_count=r.member_count, last_activity_at=r.last_activity_at)
            for r in self._rooms.values()
        ]

    # ── 成员 ──────────────────────────────────────────────────────────

    def _assign_color(self, room: Room) -> str:
        used = room.used_colors()
        for color in self.palette:
            if color not in used:
                return color
        return self._rng.choice(self.palette)

    def join_room(
        self,
        code: str,
        connection_id: str,
        profile: MemberProfile,
        identity_id: str | None = None,
    ) -> JoinOutcome:
        """加入房间。

        携带已知持久化身份的重连不受成员上限限制。

        Raises:
            NotFoundError: 房间不存在。
            AlreadyInRoomError: 该连接已是房间成员。
            CapacityError: 房间已满。
        """
        room = self._require_room(code)
        if connection_id in room.members:
            raise AlreadyInRoomError()
        reconnecting = identity_id is not None and (
            room.find_by_identity(identity_id) is not None or identity_id in room.departed
        )
        if not reconnecting and room.member_count >= self.max_members:
            raise CapacityError(f"房间已满（最多 {self.max_members} 人）")
        return self.merge_or_add(code, connection_id, profile, identity_id)

    def merge_or_add(
        self,
        code: str,
        connection_id: str,
        profile: MemberProfile,
        identity_id: str | None = None,
    ) -> JoinOutcome:
        """按持久化身份合并重连，否则新增成员槽位。

        合并时保留颜色、定位、轨迹和加入时间，仅连接 ID 与展示属性更新；
        若旧槽位是房主，房主权限随之转移到新连接。
        """
        room = self._require_room(code)
        now = self._clock()

        evicted = None
        previous = None
        parked = None
        if identity_id is not None:
            evicted = self._release_identity_elsewhere(identity_id, code)
            previous = room.find_by_identity(identity_id)
            parked = room.departed.pop(identity_id, None)

        previous_connection_id = None
        demoted_host_id = None
        if previous is not None:
            # 旧连接尚未断开（或服务端尚未察觉），直接接管它的槽位
            del room.members[previous.connection_id]
            previous_connection_id = previous.connection_id
            member = replace(previous, connection_id=connection_id, profile=profile)
            if room.host_connection_id == previous.connection_id:
                room.host_connection_id = connection_id
        elif parked is not None:
            previous_connection_id = parked.connection_id
            member = replace(
                parked, connection_id=connection_id, profile=profile,
                departed_at=None, was_host=False,
            )
            if parked.was_host and room.host_connection_id is not None:
                demoted_host_id = room.host_connection_id
                room.host_connection_id = connection_id
        else:
            member = Member(
                connection_id=connection_id,
                identity_id=identity_id,
                profile=profile,
                color=self._assign_color(room),
                joined_at=now,
                join_seq=room.next_join_seq,
                trail=deque(maxlen=self.trail_limit),
            )
            room.next_join_seq += 1

        room.members[connection_id] = member
        if room.host_connection_id is None:
            room.host_connection_id = connection_id
        if identity_id is not None:
            self._identity_rooms[identity_id] = code
        room.last_activity_at = now

        is_host = room.host_connection_id == connection_id
        logger.info(
            "成员加入 | room=%s | user=%s | 重连=%s | 房主=%s | 在线: %d",
            code, profile.display_name, previous_connection_id is not None,
            is_host, room.member_count,
        )
        return JoinOutcome(
            code=code,
            member=member.to_data(is_host=is_host),
            is_host=is_host,
            snapshot=self._snapshot(room),
            previous_connection_id=previous_connection_id,
            demoted_host_id=demoted_host_id,
            evicted=evicted,
        )

    def _release_identity_elsewhere(self, identity_id: str, code: str) -> RemovalOutcome | None:
        """同一身份加入另一个房间时，清理它在旧房间的槽位（不跨房间合并）。"""
        old_code = self._identity_rooms.get(identity_id)
        if old_code is None or old_code == code:
            return None
        del self._identity_rooms[identity_id]
        old_room = self._rooms.get(old_code)
        if old_room is None:
            return None
        old_room.departed.pop(identity_id, None)
        previous = old_room.find_by_identity(identity_id)
        if previous is None:
            return None
        logger.info("身份切换房间，移除旧槽位 | from=%s | to=%s", old_code, code)
        return self.remove_member(old_code, previous.connection_id, park=False)

    def update_location(self, code: str, connection_id: str, fix: LocationFix) -> MemberData | None:
        """替换成员的最新定位并追加轨迹点。成员不存在时不做任何事。"""
        room = self._rooms.get(code)
        if room is None:
            return None
        member = room.members.get(connection_id)
        if member is None:
            return None
        if fix.observed_at is None:
            fix = replace(fix, observed_at=self._clock())
        member.location = fix
        member.trail.append(TrailPoint(fix.latitude, fix.longitude, fix.observed_at))
        room.last_activity_at = fix.observed_at
        return member.to_data(is_host=room.host_connection_id == connection_id)

    def remove_member(
        self, code: str, connection_id: str, *, park: bool = True,
    ) -> RemovalOutcome | None:
        """移除成员。

        若被移除的是房主且房间仍有成员，按加入顺序选举最早加入的成员为新房主。
        房间即使变空也不会被删除，由回收任务负责。

        Args:
            park: 为 True 时，带持久化身份的成员槽位会被暂存，供之后重连恢复。
        """
        room = self._rooms.get(code)
        if room is None:
            return None
        member = room.members.pop(connection_id, None)
        if member is None:
            return None

        now = self._clock()
        was_host = room.host_connection_id == connection_id
        new_host_id = None
        if was_host:
            remaining = room.ordered_members()
            room.host_connection_id = remaining[0].connection_id if remaining else None
            new_host_id = room.host_connection_id

        snapshot = member.to_data(is_host=False)
        if member.identity_id is not None:
            if park:
                member.departed_at = now
                member.was_host = was_host
                room.departed[member.identity_id] = member
            elif self._identity_rooms.get(member.identity_id) == code:
                del self._identity_rooms[member.identity_id]
        room.last_activity_at = now

        logger.info(
            "成员离开 | room=%s | user=%s | 新房主=%s | 剩余: %d",
            code, member.profile.display_name, new_host_id, room.member_count,
        )
        return RemovalOutcome(
            code=code,
            member=snapshot,
            new_host_id=new_host_id,
            remaining_connection_ids=tuple(m.connection_id for m in room.ordered_members()),
        )

    def purge_departed(self, older_than: float) -> int:
        """丢弃在 ``older_than`` 之前断开、至今未重连的成员槽位。"""
        purged = 0
        for room in self._rooms.values():
            for identity_id, member in list(room.departed.items()):
                if member.departed_at is not None and member.departed_at < older_than:
                    del room.departed[identity_id]
                    if self._identity_rooms.get(identity_id) == room.code:
                        del self._identity_rooms[identity_id]
                    purged += 1
        return purged

    # ── 房主与目的地 ──────────────────────────────────────────────────

    def is_host(self, code: str, connection_id: str) -> bool:
        room = self._rooms.get(code)
        return room is not None and room.host_connection_id == connection_id

    def get_host(self, code: str) -> str | None:
        room = self._rooms.get(code)
        return room.host_connection_id if room else None

    def set_destination(
        self, code: str, connection_id: str, destination: Destination | None,
    ) -> bool:
        """设置或清除（``None``）目的地。仅房主可操作，否则返回 False。"""
        room = self._rooms.get(code)
        if room is None or room.host_connection_id != connection_id:
            return False
        room.destination = destination
        room.last_activity_at = self._clock()
        return True

    # ── 只读查询 ──────────────────────────────────────────────────────

    def get_member(self, code: str, connection_id: str) -> MemberData | None:
        room = self._rooms.get(code)
        if room is None:
            return None
        member = room.members.get(connection_id)
        if member is None:
            return None
        return member.to_data(is_host=room.host_connection_id == connection_id)

    def connection_ids(self, code: str) -> tuple[str, ...]:
        room = self._rooms.get(code)
        if room is None:
            return ()
        return tuple(m.connection_id for m in room.ordered_members())

    def _snapshot(self, room: Room) -> RoomSnapshot:
        return RoomSnapshot(
            code=room.code,
            members=tuple(
                m.to_data(is_host=m.connection_id == room.host_connection_id)
                for m in room.ordered_members()
            ),
            destination=room.destination.to_data() if room.destination else None,
            host_connection_id=room.host_connection_id,
        )

    def snapshot(self, code: str) -> RoomSnapshot | None:
        """返回房间的只读快照（成员按加入顺序排列）。"""
        room = self._rooms.get(code)
        return self._snapshot(room) if room else None

    def stats(self) -> dict[str, int]:
        """房间统计信息。"""
        return {
            "totalRooms": len(self._rooms),
            "totalUsers": sum(r.member_count for r in self._rooms.values()),
        }
