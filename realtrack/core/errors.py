"""
realtrack.core.errors
~~~~~~~~~~~~~~~~~~~~~

业务异常体系。

所有异常都携带一条可以直接展示给用户的 ``message``，
在会话边界统一翻译为 ``error`` 事件，不会导致连接或进程崩溃。
"""
from __future__ import annotations


class RealtrackError(Exception):
    """业务异常基类。

    Attributes:
        message: 人类可读的错误描述（会原样发送给客户端）。
    """

    default_message: str = "请求处理失败"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(RealtrackError):
    """输入格式不合法（昵称、头像、坐标、房间码、文本等）。"""

    default_message = "请求参数无效"


class CapacityError(RealtrackError):
    """房间数或成员数达到上限。"""

    default_message = "已达到容量上限，请稍后再试"


class AuthorizationError(RealtrackError):
    """非房主尝试执行房主专属操作。"""

    default_message = "只有房主可以执行此操作"


class NotFoundError(RealtrackError):
    """房间码不存在。"""

    default_message = "房间不存在，请检查房间码"


class RateLimitError(RealtrackError):
    """动作触发限流。

    Attributes:
        action: 被限流的动作类型，如 ``"location"``。
    """

    default_message = "操作过于频繁，请稍后再试"

    def __init__(self, action: str, message: str | None = None) -> None:
        self.action = action
        super().__init__(message)


class AlreadyInRoomError(RealtrackError):
    """当前连接已经在某个房间中。"""

    default_message = "您已经在一个房间中了"
