# app/schemas/__init__.py
# Pydantic Schema 包
#
# 使用方式：from app.schemas import DocumentType, UserCreate

from app.schemas.document import (
    ArchiveSearchMode,
    DocumentType,
    TransitionAction,
    Document,
    DocumentCreate,
    DocumentUpdate,
    TransitionRequest,
    validate_payload,
)
from app.schemas.user import (
    UserRole,
    UserCreate,
    UserUpdate,
    UserResponse,
    LoginRequest,
    LoginResponse,
)
from app.schemas.warehouse import WarehouseItemCreate, StockRow

__all__ = [
    "ArchiveSearchMode",
    "DocumentType",
    "TransitionAction",
    "Document",
    "DocumentCreate",
    "DocumentUpdate",
    "TransitionRequest",
    "validate_payload",
    "UserRole",
    "UserCreate",
    "UserUpdate",
    "UserResponse",
    "LoginRequest",
    "LoginResponse",
    "WarehouseItemCreate",
    "StockRow",
]
