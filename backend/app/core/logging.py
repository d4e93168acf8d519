# app/core/logging.py
# 日志配置模块
#
# 功能说明：
# 1. 统一管理应用日志输出
# 2. 支持两种格式：彩色控制台（开发）和 JSON（生产）
# 3. 自动记录请求信息（中间件）
# 4. 结构化事件：log_event() 把业务字段放进 extra_data，
#    JSON 格式下输出到 "extra"，控制台格式下以 key=value 追加
#
# 使用方法：
#   from app.core.logging import get_logger, log_event
#   logger = get_logger(__name__)
#   logger.info("这是一条日志")
#   log_event(logger, logging.WARNING, "notification.delivery_failed", "投递失败", channel="bale")

import logging
import sys
import json
import time
import asyncio
from datetime import datetime
from typing import Any, Optional, Callable
from functools import wraps

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.config import settings


# ==================== 彩色输出支持 ====================

class Colors:
    """终端颜色代码"""
    RESET = "\033[0m"
    RED = "\033[31m"       # ERROR
    GREEN = "\033[32m"     # INFO
    YELLOW = "\033[33m"    # WARNING
    BLUE = "\033[34m"      # DEBUG
    MAGENTA = "\033[35m"   # CRITICAL
    CYAN = "\033[36m"      # 时间戳
    GRAY = "\033[90m"      # 位置信息、结构化字段


LEVEL_COLORS = {
    "DEBUG": Colors.BLUE,
    "INFO": Colors.GREEN,
    "WARNING": Colors.YELLOW,
    "ERROR": Colors.RED,
    "CRITICAL": Colors.MAGENTA,
}


# ==================== 自定义 Formatter ====================

class ColoredFormatter(logging.Formatter):
    """
    彩色日志格式化器（开发环境使用）

    输出格式：
    2026-01-30 12:00:00 | WARNING  | app.notifications.dispatcher:_deliver:120 - 投递失败 {event=notification.delivery_failed channel=bale}
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")

        level_name = record.levelname
        level_color = LEVEL_COLORS.get(level_name, Colors.RESET)

        location = f"{record.name}:{record.funcName}:{record.lineno}"

        formatted = (
            f"{Colors.CYAN}{timestamp}{Colors.RESET} | "
            f"{level_color}{level_name:8}{Colors.RESET} | "
            f"{Colors.GRAY}{location}{Colors.RESET} - "
            f"{record.getMessage()}"
        )

        # 结构化字段追加在消息后面
        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            pairs = " ".join(f"{k}={v}" for k, v in extra_data.items())
            formatted += f" {Colors.GRAY}{{{pairs}}}{Colors.RESET}"

        if record.exc_info:
            formatted += "\n" + self.formatException(record.exc_info)

        return formatted


class JSONFormatter(logging.Formatter):
    """
    JSON 日志格式化器（生产环境使用）

    输出格式（每行一个 JSON 对象）：
    {"timestamp": "2026-01-30T12:00:00", "level": "INFO", "logger": "app.api.documents", ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # 通过 log_event() 或 extra={"extra_data": {...}} 传入的结构化字段
        if hasattr(record, "extra_data"):
            log_data["extra"] = record.extra_data

        return json.dumps(log_data, ensure_ascii=False, default=str)


# ==================== Logger 工厂函数 ====================

def setup_logging() -> None:
    """
    初始化日志系统

    调用位置：app/main.py 模块加载时
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(settings.LOG_LEVEL)

    # 清除已有的 handler（避免重复添加）
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(settings.LOG_LEVEL)

    if settings.LOG_FORMAT == "json":
        formatter = JSONFormatter()
    else:
        formatter = ColoredFormatter()

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # 第三方库日志级别
    logging.getLogger("uvicorn.access").setLevel(logging.INFO)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    # httpx 每次轮询都会打印请求行（其中包含 bot token），只保留警告
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    # reportlab 字体警告
    logging.getLogger("reportlab").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    获取 logger 实例

    Args:
        name: logger 名称，通常传入 __name__

    Returns:
        logging.Logger: logger 实例
    """
    return logging.getLogger(name)


def log_event(
    logger: logging.Logger,
    level: int,
    event: str,
    message: str,
    **fields: Any,
) -> None:
    """
    记录一条结构化事件日志

    Args:
        logger: 目标 logger
        level: 日志级别（logging.INFO / logging.WARNING ...）
        event: 事件名，例如 notification.delivery_failed
        message: 可读的日志消息
        **fields: 事件字段，写入 extra_data
    """
    logger.log(level, message, extra={"extra_data": {"event": event, **fields}})


# ==================== 请求日志中间件 ====================

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    HTTP 请求日志中间件

    输出示例：
    INFO | POST /api/documents/payment -> 201 (12ms)
    """

    def __init__(self, app, logger: Optional[logging.Logger] = None):
        super().__init__(app)
        self.logger = logger or get_logger("app.request")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        method = request.method
        path = request.url.path
        query = str(request.url.query) if request.url.query else ""

        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception as e:
            duration = (time.time() - start_time) * 1000
            self.logger.error(
                f"{method} {path} -> 500 ERROR ({duration:.0f}ms) - {str(e)}"
            )
            raise

        duration = (time.time() - start_time) * 1000

        log_message = f"{method} {path}"
        if query:
            log_message += f"?{query}"
        log_message += f" -> {status_code} ({duration:.0f}ms)"

        if status_code >= 500:
            self.logger.error(log_message)
        elif status_code >= 400:
            self.logger.warning(log_message)
        else:
            self.logger.info(log_message)

        return response


# ==================== 函数执行日志装饰器 ====================

def log_execution(logger: Optional[logging.Logger] = None):
    """
    函数执行日志装饰器

    自动记录函数的调用和返回（或异常），DEBUG 级别

    使用示例：
        @log_execution()
        async def preview_next_number(self, doc_type, company):
            ...
    """
    def decorator(func: Callable):
        func_logger = logger or get_logger(func.__module__)

        def _format_args(args, kwargs) -> str:
            args_str = ", ".join([repr(a) for a in args])
            kwargs_str = ", ".join([f"{k}={repr(v)}" for k, v in kwargs.items()])
            return ", ".join(filter(None, [args_str, kwargs_str]))

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            func_logger.debug(f"调用 {func.__name__}({_format_args(args, kwargs)})")
            try:
                result = await func(*args, **kwargs)
                func_logger.debug(f"{func.__name__} 返回: {result}")
                return result
            except Exception as e:
                func_logger.error(f"{func.__name__} 异常: {e}")
                raise

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            func_logger.debug(f"调用 {func.__name__}({_format_args(args, kwargs)})")
            try:
                result = func(*args, **kwargs)
                func_logger.debug(f"{func.__name__} 返回: {result}")
                return result
            except Exception as e:
                func_logger.error(f"{func.__name__} 异常: {e}")
                raise

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
