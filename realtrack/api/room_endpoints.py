"""
realtrack.api.room_endpoints
~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间 REST 接口 —— 加入前的房间校验、保活与统计。

端点:
  - ``GET /room/{code}``   → 房间是否存在（格式不合法时直接返回 ``exists: false``）
  - ``GET /keep-alive``    → 客户端保活
  - ``GET /stats``         → 房间统计（prod 环境关闭）
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from realtrack.api.deps import get_room_system
from realtrack.core.rate_limit import limiter
from realtrack.core.settings import settings
from realtrack.core.validation import is_valid_room_code
from realtrack.schemas.api_response import ApiResponse
from realtrack.services.room_system import RoomSystem

router: APIRouter = APIRouter()


class RoomExistsData(BaseModel):
    exists: bool = Field(..., description="房间是否存在")


class RoomStatsData(BaseModel):
    totalRooms: int = Field(..., description="存活房间数")
    totalUsers: int = Field(..., description="在线成员数")


@router.get("/room/{code}", summary="检查房间是否存在", response_model=RoomExistsData)
@limiter.limit(settings.HTTP_ROOM_CHECK_LIMIT)
async def room_exists(
    request: Request, code: str, system: RoomSystem = Depends(get_room_system),
) -> RoomExistsData:
    """加入前校验房间码。非法的房间码不报错，统一视为不存在。"""
    normalized = code.strip().upper()
    if not is_valid_room_code(normalized):
        return RoomExistsData(exists=False)
    return RoomExistsData(exists=system.registry.room_exists(normalized))


@router.get("/keep-alive", summary="客户端保活")
async def keep_alive() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/stats", summary="房间统计", response_model=ApiResponse[RoomStatsData])
async def room_stats(system: RoomSystem = Depends(get_room_system)):
    """返回房间与成员数量。仅在非 prod 环境开放。"""
    if not settings.expose_stats:
        return ApiResponse.fail(msg="禁止访问", code=403).to_response()
    return ApiResponse.ok(data=RoomStatsData(**system.registry.stats()))
