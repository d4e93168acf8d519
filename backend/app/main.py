# app/main.py
# FastAPI 应用入口
#
# 功能说明：
# 1. 创建 FastAPI 应用实例
# 2. 配置中间件（CORS、日志）
# 3. 注册路由
# 4. 管理应用生命周期（启动/关闭机器人 Worker、Redis、Web Push 渠道）
#
# 启动命令（在 backend 目录下）：
#   uvicorn app.main:app --reload --host 0.0.0.0 --port 8000
#
# API 文档：
#   - Swagger UI: http://localhost:8000/docs
#   - ReDoc: http://localhost:8000/redoc

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.adapters.push import PushClient
from app.core.config import settings
from app.core.exceptions import ApprovalDeskError
from app.core.logging import setup_logging, get_logger, RequestLoggingMiddleware
from app.core.redis import redis_client
from app.notifications.dispatcher import notification_dispatcher
from app.workers import worker_manager

# 导入路由模块
from app.api import health
from app.api import documents
from app.api import users
from app.api import settings as settings_router
from app.api import warehouse
from app.api import bots


# 初始化日志系统（在应用启动前）
setup_logging()

# 获取当前模块的 logger
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    应用生命周期管理

    - 启动时：连接 Redis（会话保存在 Redis 时）、注册 Web Push 渠道、启动机器人
    - 关闭时：等待后台通知完成、停止机器人、断开 Redis
    """
    # ==================== 启动阶段 ====================
    logger.info(f"正在启动 {settings.APP_NAME}...")

    if settings.SESSION_BACKEND == "redis":
        try:
            await redis_client.connect()
            logger.info("Redis 连接成功")
        except Exception as e:
            logger.error(f"Redis 连接失败: {e}")
            # 连接失败不阻止启动，聊天会话读写会报错

    if settings.PUSH_GATEWAY_URL:
        notification_dispatcher.register_channel(PushClient())
        logger.info("Web Push 渠道已注册")

    # 自动启动所有已配置 Token 的机器人
    try:
        results = await worker_manager.start_all_enabled()
        started_count = sum(1 for success, _ in results.values() if success)
        if started_count > 0:
            logger.info(f"已启动 {started_count} 个机器人")
    except Exception as e:
        logger.warning(f"机器人启动失败: {e}")

    logger.info(f"{settings.APP_NAME} 启动完成")

    yield

    # ==================== 关闭阶段 ====================
    logger.info("正在关闭...")

    await notification_dispatcher.wait_idle()

    try:
        await worker_manager.stop_all()
    except Exception as e:
        logger.warning(f"停止机器人时出错: {e}")

    if redis_client.is_connected:
        try:
            await redis_client.disconnect()
            logger.info("Redis 连接已断开")
        except Exception as e:
            logger.warning(f"Redis 断开连接时出错: {e}")

    logger.info("清理完成，应用已关闭")


# ==================== 创建 FastAPI 应用 ====================

app = FastAPI(
    title=settings.APP_NAME,
    description="""
    Approval Desk - 多级审批与多渠道通知

    ## 功能模块

    - **单据**: 付款单、出门证、出库单、入库单
    - **审批**: 按角色逐级审批、驳回、撤销
    - **通知**: Telegram / Bale / Web Push
    - **仓库**: 物料与库存

    ## 认证说明

    通过 `/api/login` 登录后，在请求头中添加：`X-Username: <username>`
    """,
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


# ==================== 中间件配置 ====================

# CORS 中间件（Web 前端跨域访问）
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 请求日志中间件
# 记录每个请求的方法、路径、耗时、状态码
app.add_middleware(RequestLoggingMiddleware)


# ==================== 全局异常处理 ====================

@app.exception_handler(ApprovalDeskError)
async def approval_desk_exception_handler(request: Request, exc: ApprovalDeskError):
    """业务异常 → 对应状态码（422 / 404 / 403 / 409）"""
    logger.info(f"[API] {request.method} {request.url.path}: {type(exc).__name__}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__, **exc.context},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """处理请求验证错误"""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": exc.errors()},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """处理未捕获的异常"""
    logger.exception(f"未处理的异常: {type(exc).__name__}: {str(exc)}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": f"服务器内部错误: {str(exc)}"},
    )


# ==================== 注册路由 ====================

# 健康检查路由
# - GET /health - 基础健康检查
# - GET /health/detailed - 文档库、Redis、机器人状态
app.include_router(health.router)

# 单据路由
# - GET/POST /api/documents/{doc_type} - 单据列表 / 创建
# - GET/PUT/DELETE /api/documents/{doc_type}/{id} - 详情 / 修改 / 删除
# - POST /api/documents/{doc_type}/{id}/transition - 审批 / 驳回 / 撤销
# - GET /api/documents/{doc_type}/{id}/render - 下载 PDF
app.include_router(documents.router)

# 报表路由
# - GET /api/next-number/{doc_type} - 预览下一个编号
# - GET /api/cartable - 当前用户待办
# - GET /api/archive - 归档搜索
# - GET /api/reports/summary - 状态汇总
app.include_router(documents.reports_router)

# 用户路由
# - POST /api/login - 登录
# - GET/POST /api/users - 用户列表 / 创建（仅管理员）
# - PUT/DELETE /api/users/{id} - 修改 / 删除（仅管理员）
# - GET /api/permissions/{role} - 角色有效权限
app.include_router(users.router)

# 系统设置路由（仅管理员）
# - GET /api/settings - 读取设置
# - PUT /api/settings - 修改设置
app.include_router(settings_router.router)

# 仓库路由
# - GET /api/warehouse/stock - 库存
# - GET/POST /api/warehouse/items - 物料列表 / 创建
# - DELETE /api/warehouse/items/{id} - 删除物料
app.include_router(warehouse.router)

# 机器人路由
# - GET /api/bots - 机器人状态
# - POST /api/restart-bot - 重启机器人（仅管理员）
app.include_router(bots.router)


# ==================== 根路由 ====================

@app.get("/", tags=["Root"])
async def root():
    """
    根路由

    返回应用基本信息和文档链接
    """
    return {
        "app": settings.APP_NAME,
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/health",
    }
