# app/core/exceptions.py
# 业务异常定义
#
# 功能说明：
# 1. 区分四类用户可见的失败：校验失败 / 单据不存在 / 无权限 / 状态不可变更
# 2. HTTP 入口由 main.py 的异常处理器统一映射为状态码
# 3. 聊天入口由 bot/messages.py 映射为简短的波斯文提示
#
# 通知投递失败不在这里：投递失败只记录日志，永远不抛给调用方

from typing import Any


class ApprovalDeskError(Exception):
    """业务异常基类"""

    status_code: int = 400

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class ValidationFailed(ApprovalDeskError):
    """输入字段不合法（如金额不是数字），不做任何修改"""

    status_code = 422


class DocumentNotFound(ApprovalDeskError):
    """单据（或用户、物料）不存在"""

    status_code = 404


class PermissionDenied(ApprovalDeskError):
    """当前用户没有推进该状态所需的权限"""

    status_code = 403


class TransitionNotAllowed(ApprovalDeskError):
    """单据已处于终态或当前动作不适用，状态不可再变更"""

    status_code = 409


class AmbiguousNumber(ApprovalDeskError):
    """同一类型下多个公司的单据共用一个编号，需要指定公司"""

    status_code = 409
