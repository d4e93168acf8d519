# app/api/bots.py
# 机器人管理 API
#
# - GET /api/bots           所有机器人 Worker 的状态
# - POST /api/restart-bot   重启指定机器人（修改 Token 后调用，仅管理员）

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from app.api.deps import get_current_admin_user, get_current_user, get_worker_manager
from app.core.logging import get_logger
from app.workers import WorkerManager

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["bots"])


# ==================== 请求/响应模型 ====================

class RestartBotRequest(BaseModel):
    type: str = Field(..., description="机器人类型: telegram / bale")


class BotActionResponse(BaseModel):
    """机器人操作响应"""
    success: bool
    message: str


# ==================== API 端点 ====================

@router.get("/bots")
async def list_bots(
    manager: WorkerManager = Depends(get_worker_manager),
    current_user: dict = Depends(get_current_user),
) -> list[dict]:
    return [info.to_dict() for info in manager.get_all_status()]


@router.post("/restart-bot", response_model=BotActionResponse)
async def restart_bot(
    request: RestartBotRequest,
    manager: WorkerManager = Depends(get_worker_manager),
    admin: dict = Depends(get_current_admin_user),
):
    if request.type not in manager.get_worker_types():
        raise HTTPException(status_code=400, detail=f"不支持的机器人类型: {request.type}")

    success, message = await manager.restart(request.type)
    logger.info(f"[BotsAPI] 管理员 {admin['username']} 重启 {request.type}: {message}")
    return BotActionResponse(success=success, message=message)
