# app/storage/__init__.py
# 存储层模块
#
# - document_store.py: 单文件 JSON 文档库（单据、用户、物料、设置）

from app.storage.document_store import (
    JsonDocumentStore,
    document_store,
    sanitize,
    COLLECTIONS,
    DOCUMENT_COLLECTIONS,
    DEFAULT_ADMIN,
)

__all__ = [
    "JsonDocumentStore",
    "document_store",
    "sanitize",
    "COLLECTIONS",
    "DOCUMENT_COLLECTIONS",
    "DEFAULT_ADMIN",
]
