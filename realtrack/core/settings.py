"""
realtrack.core.settings
~~~~~~~~~~~~~~~~~~~~~~~

集中式配置管理，基于 pydantic-settings 自动从 ``.env`` 文件加载。

支持多环境配置（dev / test / prod），加载顺序为:
  1. 环境变量（最高优先级）
  2. ``.env.{ENVIRONMENT}`` 环境专属文件
  3. ``.env`` 基础文件
  4. 字段默认值（最低优先级）
"""
from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT: Path = Path(__file__).resolve().parents[2]

# 读取当前环境标识（在 Settings 类定义之前，用于决定加载哪个 .env 文件）
_CURRENT_ENV: str = os.getenv("ENVIRONMENT", "dev")


class Settings(BaseSettings):
    """全局配置对象，字段值按如下优先级加载：环境变量 > .env.{env} > .env > 默认值。"""

    # ── 基础 ──────────────────────────────────────────────────────────
    PROJECT_NAME: str = Field(default="RealTrack Backend", description="项目名称")
    VERSION: str = Field(default="0.1.0", description="版本号")
    ENVIRONMENT: Literal["dev", "test", "prod"] = Field(
        default="dev",
        description="运行环境：dev / test / prod",
    )

    # ── 服务 ──────────────────────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0", description="服务监听地址")
    PORT: int = Field(default=3000, description="服务监听端口")
    LOG_LEVEL: str = Field(default="INFO", description="日志级别（可被环境属性覆盖）")
    ALLOWED_ORIGINS: list[str] = Field(
        default=["*"],
        description="允许的 CORS 来源列表",
    )

    # ── 房间容量 ──────────────────────────────────────────────────────
    MAX_ROOMS: int = Field(default=10, ge=1, description="同时存活的房间数上限")
    MAX_MEMBERS_PER_ROOM: int = Field(default=15, ge=1, description="单个房间成员数上限")
    TRAIL_MAX_POINTS: int = Field(default=100, ge=1, description="每个成员保留的轨迹点数")

    # ── 空房间回收 ────────────────────────────────────────────────────
    ROOM_RETENTION_SECONDS: float = Field(
        default=5 * 60 * 60,
        gt=0,
        description="空房间（及离线成员槽位）保留时长，超时后被回收",
    )
    REAPER_INTERVAL_SECONDS: float = Field(
        default=60.0,
        gt=0,
        description="回收任务的扫描间隔",
    )

    # ── WebSocket 限流（滑动窗口，单位：次/窗口）──────────────────────
    RATE_LIMIT_WINDOW_SECONDS: float = Field(default=60.0, gt=0, description="限流滑动窗口长度")
    RATE_LIMIT_CREATE: int = Field(default=3, ge=1, description="创建房间")
    RATE_LIMIT_JOIN: int = Field(default=5, ge=1, description="加入房间")
    RATE_LIMIT_LOCATION: int = Field(default=60, ge=1, description="位置上报")
    RATE_LIMIT_MESSAGE: int = Field(default=30, ge=1, description="聊天消息")
    RATE_LIMIT_DESTINATION: int = Field(default=10, ge=1, description="目的地变更")

    # ── HTTP 限流 ─────────────────────────────────────────────────────
    HTTP_ROOM_CHECK_LIMIT: str = Field(
        default="30/minute",
        description="房间存在性查询接口的限流规则（slowapi 语法）",
    )

    # ── Pydantic Settings ─────────────────────────────────────────────
    # 后面的文件优先级更高：.env.{env} 覆盖 .env
    model_config = SettingsConfigDict(
        env_file=(".env", f".env.{_CURRENT_ENV}"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── 环境判断 ──────────────────────────────────────────────────────

    @property
    def is_prod(self) -> bool:
        """当前是否为生产环境。"""
        return self.ENVIRONMENT == "prod"

    @property
    def is_test(self) -> bool:
        """当前是否为测试环境。"""
        return self.ENVIRONMENT == "test"

    @property
    def is_dev(self) -> bool:
        """当前是否为开发环境。"""
        return self.ENVIRONMENT == "dev"

    # ── 环境差异化行为 ────────────────────────────────────────────────

    @property
    def debug(self) -> bool:
        """是否开启 debug 模式。仅 dev 环境开启。"""
        return self.is_dev

    @property
    def reload(self) -> bool:
        """是否开启热重载。仅 dev 环境开启。"""
        return self.is_dev

    @property
    def effective_log_level(self) -> str:
        """根据环境自动推断日志级别。

        - dev  → INFO
        - test → DEBUG（方便排查测试失败）
        - prod → WARNING（减少噪音）

        如果环境变量中显式设置了 LOG_LEVEL，会覆盖此默认推断。
        """
        env_log = os.getenv("LOG_LEVEL")
        if env_log:
            return env_log
        return {
            "dev": "INFO",
            "test": "DEBUG",
            "prod": "WARNING",
        }.get(self.ENVIRONMENT, "INFO")

    @property
    def expose_stats(self) -> bool:
        """是否开放 ``/api/stats`` 统计接口。prod 环境关闭。"""
        return not self.is_prod

    @property
    def rate_limit_ceilings(self) -> dict[str, int]:
        """各类动作在一个窗口内允许的最大次数。"""
        return {
            "create": self.RATE_LIMIT_CREATE,
            "join": self.RATE_LIMIT_JOIN,
            "location": self.RATE_LIMIT_LOCATION,
            "message": self.RATE_LIMIT_MESSAGE,
            "destination": self.RATE_LIMIT_DESTINATION,
        }


@lru_cache
def get_settings() -> Settings:
    """获取全局 Settings 单例（带缓存，避免重复解析 .env）。"""
    return Settings()


settings: Settings = get_settings()
