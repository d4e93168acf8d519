# app/core/config.py
# 配置管理模块
#
# 功能说明：
# 1. 使用 Pydantic Settings 从环境变量加载配置
# 2. 支持 .env 文件读取
# 3. 提供类型安全的配置访问
#
# 注意：
#   机器人 Token、角色权限、财年编号等"业务配置"保存在文档库的 settings 对象中，
#   可通过 /api/settings 在线修改；这里只放进程级配置和兜底默认值。
#
# 使用方法：
#   from app.core.config import settings
#   print(settings.APP_NAME)

from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Literal


class Settings(BaseSettings):
    """
    应用配置类

    所有配置项都可以通过环境变量覆盖，环境变量名与属性名相同（大写）
    例如：设置 DATA_FILE=/data/db.json 会覆盖文档库文件位置
    """

    # ==================== 应用基础配置 ====================
    APP_NAME: str = "Approval Desk"   # 应用名称，显示在日志和API文档中
    DEBUG: bool = False                # 调试模式

    # ==================== 日志配置 ====================
    # 日志级别：DEBUG < INFO < WARNING < ERROR < CRITICAL
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    # 日志格式：console（彩色控制台输出）或 json（结构化JSON，适合生产环境）
    LOG_FORMAT: Literal["console", "json"] = "console"

    # ==================== 文档库配置 ====================
    # 单文件 JSON 文档库，一个数组对应一种实体
    DATA_FILE: str = "data/db.json"

    # 没有任何历史单据、也没有配置财年起始号时使用的编号
    DEFAULT_START_NUMBER: int = 1001

    # ==================== Redis 配置 ====================
    # 仅在 SESSION_BACKEND=redis 时使用
    REDIS_URL: str = "redis://localhost:6379/0"

    # ==================== 会话配置 ====================
    # memory: 进程内会话（重启丢失）
    # redis: 会话保存在 Redis，多次重启间保留
    SESSION_BACKEND: Literal["memory", "redis"] = "memory"
    SESSION_TTL_SECONDS: int = 3600    # Redis 会话过期时间

    # ==================== 机器人配置 ====================
    # Token 优先从文档库 settings 中读取，这里是环境变量兜底
    TELEGRAM_BOT_TOKEN: str = ""
    BALE_BOT_TOKEN: str = ""

    # Bot API 地址（Bale 与 Telegram 的 Bot API 兼容）
    TELEGRAM_API_BASE: str = "https://api.telegram.org"
    BALE_API_BASE: str = "https://tapi.bale.ai"

    # 访问 Telegram 的代理（可选），例如 http://127.0.0.1:8118
    BOT_PROXY_URL: str = ""

    # getUpdates 长轮询超时（秒）以及两次轮询之间的间隔（秒）
    BOT_POLL_TIMEOUT: int = 30
    BOT_POLL_INTERVAL: float = 2.0

    # ==================== Web Push 配置 ====================
    # 推送网关地址，为空时不启用 push 渠道
    PUSH_GATEWAY_URL: str = ""

    # ==================== 通知与渲染 ====================
    NOTIFY_TIMEOUT_SECONDS: float = 15.0     # 单个渠道单次投递的超时
    RENDER_TIMEOUT_SECONDS: float = 20.0     # 卡片渲染超时
    RENDER_FONT_PATH: str = ""               # 自定义字体（需支持波斯文）

    # ==================== 聊天回复限制 ====================
    ARCHIVE_MAX_RESULTS: int = 10     # 归档搜索最多返回的单据数
    MESSAGE_MAX_LENGTH: int = 4000    # 单条消息最大长度（Telegram 上限 4096）

    class Config:
        """Pydantic 配置类"""
        env_file = ".env"              # 从 .env 文件读取环境变量
        env_file_encoding = "utf-8"    # 文件编码
        case_sensitive = True          # 环境变量名区分大小写
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """
    获取配置实例（单例模式）

    Returns:
        Settings: 配置实例
    """
    return Settings()


# 导出配置实例，方便其他模块使用
# 使用方式：from app.core.config import settings
settings = get_settings()
