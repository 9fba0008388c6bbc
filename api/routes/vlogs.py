"""
Vlog API路由 - 只读获取与去重浏览计数
"""
from fastapi import APIRouter, Depends, Path

from application.dto import ViewResultDTO, VlogResponseDTO
from application.services.view_service import ViewApplicationService
from api.dependencies import get_view_service, get_viewer_id, view_rate_limit
from core.response import Response as ApiResponse, success_response

router = APIRouter(
    prefix="/vlogs",
    tags=["Vlog"]
)


@router.get("/{vlog_id}", summary="获取Vlog", response_model=ApiResponse[VlogResponseDTO])
async def get_vlog(
    vlog_id: int = Path(..., ge=1),
    service: ViewApplicationService = Depends(get_view_service),
):
    """只读获取，不会增加浏览量"""
    vlog = await service.get_vlog(vlog_id)
    return success_response(data=vlog)


@router.put(
    "/{vlog_id}/view",
    summary="记录一次浏览",
    response_model=ApiResponse[ViewResultDTO],
    dependencies=[Depends(view_rate_limit)],
)
async def record_view(
    vlog_id: int = Path(..., ge=1),
    viewer_id: str = Depends(get_viewer_id),
    service: ViewApplicationService = Depends(get_view_service),
):
    """
    记录浏览（幂等）

    同一观看者在去重窗口内的重复请求只返回当前浏览量，不再计数。
    观看者标识：登录用户ID > `X-Session-ID` 头或 `sid` Cookie > 客户端IP摘要。
    缓存不可用时仍然计数，并在结果中标记 `degraded`。
    """
    result = await service.record_view(vlog_id, viewer_id)
    return success_response(
        data=ViewResultDTO(
            views=result.views,
            has_viewed=True,
            incremented=result.incremented,
            degraded=result.degraded,
            ttl=service.ttl_seconds,
        )
    )
