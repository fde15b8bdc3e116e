"""
realtrack.core.validation
~~~~~~~~~~~~~~~~~~~~~~~~~

身份与输入校验 —— 纯函数，无状态。

所有函数要么返回规范化后的值，要么抛出 :class:`ValidationError`。
"""
from __future__ import annotations

import math
import re
from typing import Any

from realtrack.core.errors import ValidationError

ROOM_CODE_ALPHABET: str = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
ROOM_CODE_LENGTH: int = 6
ROOM_CODE_PATTERN = re.compile(r"^[A-Z0-9]{6}$")

DISPLAY_NAME_MAX_CHARS: int = 20
AVATAR_MAX_CHARS: int = 4
CHAT_TEXT_MAX_CHARS: int = 300
DESTINATION_LABEL_MAX_CHARS: int = 100
IDENTITY_MAX_CHARS: int = 64
DEFAULT_DESTINATION_LABEL: str = "目的地"

# 可能被拼进 HTML 的危险字符
_FORBIDDEN_CHARS = re.compile(r"[<>\"'&/\\]")


def _strip_forbidden(value: str) -> str:
    return _FORBIDDEN_CHARS.sub("", value).strip()


def _is_real_number(value: Any) -> bool:
    # bool 是 int 的子类，需要单独排除
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def sanitize_display_name(value: Any) -> str:
    """清洗昵称：去除危险字符、首尾空白，并截断到 20 个字符。"""
    if not isinstance(value, str):
        raise ValidationError("昵称无效")
    cleaned = _strip_forbidden(value)[:DISPLAY_NAME_MAX_CHARS].strip()
    if not cleaned:
        raise ValidationError("昵称无效")
    return cleaned


def validate_avatar(value: Any) -> str:
    """头像必须是 1~4 个字符的 emoji 字形，且不含危险字符。"""
    if (
        not isinstance(value, str)
        or not 1 <= len(value) <= AVATAR_MAX_CHARS
        or _FORBIDDEN_CHARS.search(value)
    ):
        raise ValidationError("头像无效")
    return value


def is_valid_room_code(value: Any) -> bool:
    """判断是否为合法的房间码（6 位大写字母或数字）。"""
    return isinstance(value, str) and ROOM_CODE_PATTERN.match(value) is not None


def normalize_room_code(value: Any) -> str:
    """把房间码转为大写并校验格式。"""
    if not isinstance(value, str):
        raise ValidationError("房间码无效")
    code = value.strip().upper()
    if not is_valid_room_code(code):
        raise ValidationError("房间码格式无效")
    return code


def validate_coordinates(lat: Any, lng: Any) -> tuple[float, float]:
    """校验经纬度：必须是有限实数，纬度 [-90, 90]，经度 [-180, 180]。"""
    if not (_is_real_number(lat) and _is_real_number(lng)):
        raise ValidationError("坐标无效")
    lat_f, lng_f = float(lat), float(lng)
    if not (math.isfinite(lat_f) and math.isfinite(lng_f)):
        raise ValidationError("坐标无效")
    if not (-90.0 <= lat_f <= 90.0 and -180.0 <= lng_f <= 180.0):
        raise ValidationError("坐标超出范围")
    return lat_f, lng_f


def finite_or_none(value: Any) -> float | None:
    """可选的 GPS 附加字段（精度、航向、速度）：非有限数值一律视为缺失。"""
    if _is_real_number(value) and math.isfinite(value):
        return float(value)
    return None


def clean_chat_text(value: Any) -> str:
    """聊天文本：去除首尾空白，不能为空，截断到 300 个字符。"""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("消息内容不能为空")
    return value.strip()[:CHAT_TEXT_MAX_CHARS]


def clean_destination_label(value: Any) -> str:
    """目的地名称：去除危险字符并截断到 100 个字符，缺失时使用默认名称。"""
    if not isinstance(value, str):
        return DEFAULT_DESTINATION_LABEL
    cleaned = _strip_forbidden(value)[:DESTINATION_LABEL_MAX_CHARS].strip()
    return cleaned or DEFAULT_DESTINATION_LABEL


def normalize_identity(value: Any) -> str | None:
    """客户端持久化身份 ID（用于断线重连）。缺失或空白时返回 ``None``。"""
    if not isinstance(value, str) or not value.strip():
        return None
    identity = value.strip()
    if len(identity) > IDENTITY_MAX_CHARS:
        raise ValidationError("用户标识无效")
    return identity
