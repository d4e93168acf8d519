# app/services/__init__.py
# 服务层：HTTP 接口和聊天机器人共用的业务逻辑

from app.services.document_service import DocumentService, document_service
from app.services.user_service import UserService, user_service
from app.services.warehouse_service import WarehouseService, warehouse_service

__all__ = [
    "DocumentService",
    "document_service",
    "UserService",
    "user_service",
    "WarehouseService",
    "warehouse_service",
]
