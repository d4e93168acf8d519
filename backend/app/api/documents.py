# app/api/documents.py
# 单据 API
#
# 提供付款单、出门证、出库单、入库单的 HTTP 接口。
# 业务异常（ApprovalDeskError）由 main.py 的异常处理器统一转换为状态码。

import asyncio
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel

from app.api.deps import get_card_renderer, get_current_user, get_document_service
from app.core.logging import get_logger
from app.notifications.renderer import CardRenderer
from app.schemas.document import (
    ArchiveSearchMode,
    DocumentCreate,
    DocumentType,
    DocumentUpdate,
    TransitionRequest,
)
from app.services.document_service import DocumentService

logger = get_logger(__name__)

router = APIRouter(prefix="/api/documents", tags=["documents"])

# 编号预览、待办、归档等报表类接口
reports_router = APIRouter(prefix="/api", tags=["reports"])


# ==================== 请求/响应模型 ====================

class ActionResponse(BaseModel):
    """操作响应"""
    success: bool
    message: str


class NextNumberResponse(BaseModel):
    doc_type: DocumentType
    company: Optional[str]
    next_number: int


# ==================== 单据 CRUD ====================

@router.get("/{doc_type}")
async def list_documents(
    doc_type: DocumentType,
    status: Optional[str] = Query(None, description="按状态过滤"),
    company: Optional[str] = Query(None, description="按公司过滤"),
    service: DocumentService = Depends(get_document_service),
    current_user: dict = Depends(get_current_user),
) -> list[dict[str, Any]]:
    """列出某类型的单据（编号倒序）"""
    return await service.list_documents(doc_type, status=status, company=company)


@router.post("/{doc_type}", status_code=201)
async def create_document(
    doc_type: DocumentType,
    request: DocumentCreate,
    service: DocumentService = Depends(get_document_service),
    current_user: dict = Depends(get_current_user),
) -> dict[str, Any]:
    """
    创建单据

    编号由服务端分配；创建后通知第一个审批阶段的负责人
    """
    return await service.create_document(
        doc_type,
        request.payload,
        actor=current_user,
        company=request.company,
        date=request.date,
    )


@router.get("/{doc_type}/{doc_id}")
async def get_document(
    doc_type: DocumentType,
    doc_id: str,
    service: DocumentService = Depends(get_document_service),
    current_user: dict = Depends(get_current_user),
) -> dict[str, Any]:
    return await service.get_document(doc_type, doc_id)


@router.put("/{doc_type}/{doc_id}")
async def update_document(
    doc_type: DocumentType,
    doc_id: str,
    request: DocumentUpdate,
    service: DocumentService = Depends(get_document_service),
    current_user: dict = Depends(get_current_user),
) -> dict[str, Any]:
    """修改业务字段（状态、编号、审批记录不可通过此接口修改）"""
    return await service.update_document(
        doc_type, doc_id, request.payload, actor=current_user, date=request.date,
    )


@router.delete("/{doc_type}/{doc_id}", response_model=ActionResponse)
async def delete_document(
    doc_type: DocumentType,
    doc_id: str,
    service: DocumentService = Depends(get_document_service),
    current_user: dict = Depends(get_current_user),
):
    await service.delete_document(doc_type, doc_id, actor=current_user)
    return ActionResponse(success=True, message="单据已删除")


# ==================== 状态流转 ====================

@router.post("/{doc_type}/{doc_id}/transition")
async def transition_document(
    doc_type: DocumentType,
    doc_id: str,
    request: TransitionRequest,
    service: DocumentService = Depends(get_document_service),
    current_user: dict = Depends(get_current_user),
) -> dict[str, Any]:
    """
    审批 / 驳回 / 撤销

    - 403: 当前用户不负责该阶段
    - 409: 单据已在终态
    """
    return await service.transition_document(
        doc_type, doc_id, request.action, actor=current_user, reason=request.reason,
    )


@router.get("/{doc_type}/{doc_id}/render")
async def render_document(
    doc_type: DocumentType,
    doc_id: str,
    service: DocumentService = Depends(get_document_service),
    renderer: CardRenderer = Depends(get_card_renderer),
    current_user: dict = Depends(get_current_user),
):
    """下载单据 PDF"""
    document = await service.get_document(doc_type, doc_id)
    try:
        content = await renderer.render_pdf(document)
    except asyncio.TimeoutError:
        logger.error(f"[DocumentsAPI] 渲染超时: {doc_type.value} #{document['number']}")
        raise HTTPException(status_code=504, detail="渲染超时")

    filename = f"{doc_type.value}-{document['number']}.pdf"
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ==================== 报表 ====================

@reports_router.get("/next-number/{doc_type}", response_model=NextNumberResponse)
async def next_number(
    doc_type: DocumentType,
    company: Optional[str] = Query(None, description="公司，不填使用默认公司"),
    service: DocumentService = Depends(get_document_service),
):
    """预览下一个编号（不占用，实际编号在创建时分配）"""
    number = await service.preview_next_number(doc_type, company)
    return NextNumberResponse(doc_type=doc_type, company=company, next_number=number)


@reports_router.get("/cartable")
async def cartable(
    doc_type: Optional[DocumentType] = Query(None),
    service: DocumentService = Depends(get_document_service),
    current_user: dict = Depends(get_current_user),
) -> list[dict[str, Any]]:
    """当前用户的待办"""
    return await service.cartable(current_user, doc_type)


@reports_router.get("/archive")
async def search_archive(
    q: str = Query(..., min_length=1, description="编号或日期片段"),
    by: ArchiveSearchMode = Query(ArchiveSearchMode.NUMBER, description="number: 按编号 / date: 按日期"),
    doc_type: Optional[DocumentType] = Query(None),
    service: DocumentService = Depends(get_document_service),
    current_user: dict = Depends(get_current_user),
) -> list[dict[str, Any]]:
    """归档搜索（只返回终态单据）"""
    return await service.search_archive(q, doc_type, by=by)


@reports_router.get("/reports/summary")
async def status_summary(
    service: DocumentService = Depends(get_document_service),
    current_user: dict = Depends(get_current_user),
) -> dict[str, dict[str, int]]:
    return await service.status_summary()
