"""
tests.test_validation
~~~~~~~~~~~~~~~~~~~~~

身份与输入校验函数的单元测试。
"""
from __future__ import annotations

import math

import pytest

from realtrack.core.errors import ValidationError
from realtrack.core.validation import (
    DEFAULT_DESTINATION_LABEL,
    clean_chat_text,
    clean_destination_label,
    finite_or_none,
    is_valid_room_code,
    normalize_identity,
    normalize_room_code,
    sanitize_display_name,
    validate_avatar,
    validate_coordinates,
)


class TestDisplayName:
    """昵称清洗。"""

    def test_strips_forbidden_characters(self) -> None:
        assert sanitize_display_name("  <b>Bob</b>  ") == "bBobb"

    def test_truncates_to_twenty_chars(self) -> None:
        assert sanitize_display_name("x" * 50) == "x" * 20

    @pytest.mark.parametrize("value", ["", "   ", "<>/\\", None, 42])
    def test_rejects_empty_or_non_string(self, value: object) -> None:
        with pytest.raises(ValidationError):
            sanitize_display_name(value)


class TestAvatar:
    """头像字形校验。"""

    @pytest.mark.parametrize("value", ["😊", "🚗", "AB", "👨‍👩"])
    def test_accepts_short_glyphs(self, value: str) -> None:
        assert validate_avatar(value) == value

    @pytest.mark.parametrize("value", ["", "abcde", "<", None, 1])
    def test_rejects_invalid(self, value: object) -> None:
        with pytest.raises(ValidationError):
            validate_avatar(value)


class TestRoomCode:
    """房间码格式。"""

    def test_normalizes_to_upper_case(self) -> None:
        assert normalize_room_code("ab12cd") == "AB12CD"

    @pytest.mark.parametrize("value", ["ABC", "ABCDEFG", "AB-12C", "", None])
    def test_rejects_malformed(self, value: object) -> None:
        with pytest.raises(ValidationError):
            normalize_room_code(value)

    def test_is_valid_requires_upper_case(self) -> None:
        assert is_valid_room_code("AB12CD") is True
        assert is_valid_room_code("ab12cd") is False


class TestCoordinates:
    """经纬度校验。"""

    def test_accepts_ints_and_floats(self) -> None:
        assert validate_coordinates(10, 20.5) == (10.0, 20.5)

    def test_accepts_bounds(self) -> None:
        assert validate_coordinates(-90, 180) == (-90.0, 180.0)

    @pytest.mark.parametrize(
        "lat,lng",
        [
            (91, 0),
            (0, -181),
            (math.inf, 0),
            (0, math.nan),
            ("10", 20),
            (True, 20),
            (None, None),
        ],
    )
    def test_rejects_invalid(self, lat: object, lng: object) -> None:
        with pytest.raises(ValidationError):
            validate_coordinates(lat, lng)

    def test_optional_extras_fall_back_to_none(self) -> None:
        assert finite_or_none(5) == 5.0
        assert finite_or_none(math.inf) is None
        assert finite_or_none("fast") is None
        assert finite_or_none(None) is None


class TestTextFields:
    """聊天文本、目的地名称与持久化身份。"""

    def test_chat_text_trimmed_and_truncated(self) -> None:
        assert clean_chat_text("  hi  ") == "hi"
        assert len(clean_chat_text("a" * 500)) == 300

    @pytest.mark.parametrize("value", ["", "   ", None])
    def test_chat_text_rejects_blank(self, value: object) -> None:
        with pytest.raises(ValidationError):
            clean_chat_text(value)

    def test_destination_label(self) -> None:
        assert clean_destination_label("Central") == "Central"
        assert clean_destination_label("<script>") == "script"
        assert len(clean_destination_label("y" * 300)) == 100
        assert clean_destination_label(None) == DEFAULT_DESTINATION_LABEL
        assert clean_destination_label("<>") == DEFAULT_DESTINATION_LABEL

    def test_identity(self) -> None:
        assert normalize_identity(" u1 ") == "u1"
        assert normalize_identity(None) is None
        assert normalize_identity("") is None
        assert normalize_identity(123) is None
        with pytest.raises(ValidationError):
            normalize_identity("x" * 65)
