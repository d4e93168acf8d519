# app/notifications/renderer.py
# 单据卡片渲染
#
# 功能说明：
# 1. render_card(): 生成小尺寸 PDF 卡片（标题、申请人、日期、公司、业务字段、状态徽章、明细表）
# 2. render_pdf(): 生成 A4 整页 PDF，供 /api/documents/{type}/{id}/render 下载
# 3. 渲染在线程中执行，并受 RENDER_TIMEOUT_SECONDS 约束
#
# 依赖：
#   pip install reportlab
#
# 字体：
#   波斯文需要支持阿拉伯字母的 TTF 字体（Vazirmatn、DejaVuSans、Noto Sans Arabic 等），
#   可通过 RENDER_FONT_PATH 指定；找不到时退回 Helvetica。

import io
import asyncio
from typing import Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, A6, landscape
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import mm
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer

from app.core.config import settings
from app.core.logging import get_logger
from app.notifications.messages import format_amount
from app.schemas.document import DocumentType
from app.workflow.chains import get_chain

logger = get_logger(__name__)


FONT_NAME = "CardFont"

# 常见的支持波斯文的字体路径
FONT_CANDIDATES = [
    "/usr/share/fonts/truetype/vazirmatn/Vazirmatn-Regular.ttf",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/truetype/noto/NotoSansArabic-Regular.ttf",
    "/Library/Fonts/Arial Unicode.ttf",
    "C:/Windows/Fonts/tahoma.ttf",
]

# 状态徽章颜色
STATUS_COLORS = {
    "approved_final": colors.HexColor("#16a34a"),
    "exited": colors.HexColor("#16a34a"),
    "approved": colors.HexColor("#16a34a"),
    "rejected": colors.HexColor("#dc2626"),
    "revoked": colors.HexColor("#6b7280"),
}
PENDING_COLOR = colors.HexColor("#d97706")


class CardRenderer:
    """
    单据卡片渲染器

    使用方法：
        renderer = CardRenderer()
        pdf_bytes = await renderer.render_card(document)
    """

    def __init__(self, font_path: Optional[str] = None, timeout: Optional[float] = None):
        self.font_path = font_path or settings.RENDER_FONT_PATH
        self.timeout = timeout or settings.RENDER_TIMEOUT_SECONDS
        self.font_name: Optional[str] = None

    def _register_font(self) -> str:
        """注册字体，只执行一次"""
        if self.font_name:
            return self.font_name

        candidates = [self.font_path] if self.font_path else []
        candidates += FONT_CANDIDATES

        for path in candidates:
            try:
                pdfmetrics.registerFont(TTFont(FONT_NAME, path))
                self.font_name = FONT_NAME
                logger.info(f"[CardRenderer] 注册字体成功: {path}")
                return self.font_name
            except Exception:
                continue

        logger.warning("[CardRenderer] 未找到波斯文字体，卡片可能无法正确显示波斯文")
        self.font_name = "Helvetica"
        return self.font_name

    # ==================== 对外接口 ====================

    async def render_card(self, document: dict) -> bytes:
        """
        渲染通知卡片

        Raises:
            asyncio.TimeoutError: 渲染超时
        """
        return await asyncio.wait_for(
            asyncio.to_thread(self._build_pdf, document, True),
            timeout=self.timeout,
        )

    async def render_pdf(self, document: dict) -> bytes:
        """渲染整页 PDF"""
        return await asyncio.wait_for(
            asyncio.to_thread(self._build_pdf, document, False),
            timeout=self.timeout,
        )

    # ==================== PDF 构建 ====================

    def _build_pdf(self, document: dict, compact: bool) -> bytes:
        font = self._register_font()
        buffer = io.BytesIO()
        pagesize = landscape(A6) if compact else A4
        margin = 6 * mm if compact else 18 * mm

        doc = SimpleDocTemplate(
            buffer,
            pagesize=pagesize,
            leftMargin=margin,
            rightMargin=margin,
            topMargin=margin,
            bottomMargin=margin,
        )

        styles = getSampleStyleSheet()
        title_style = ParagraphStyle(
            "CardTitle",
            parent=styles["Heading2"],
            fontName=font,
            fontSize=12 if compact else 18,
            alignment=2,
        )
        body_style = ParagraphStyle(
            "CardBody",
            parent=styles["Normal"],
            fontName=font,
            fontSize=8 if compact else 11,
            alignment=2,
        )

        chain = get_chain(document["doc_type"])
        status = document.get("status", "")

        elements = [
            Paragraph(escape(f"{chain.label} #{document.get('number', '')}"), title_style),
            self._status_badge(chain.label_for(status), status, font, compact),
            Spacer(1, 3 * mm),
        ]

        rows = [[value, label] for label, value in self._field_rows(document)]
        field_table = Table(rows, colWidths=None, hAlign="RIGHT")
        field_table.setStyle(TableStyle([
            ("FONTNAME", (0, 0), (-1, -1), font),
            ("FONTSIZE", (0, 0), (-1, -1), 8 if compact else 11),
            ("TEXTCOLOR", (1, 0), (1, -1), colors.HexColor("#6b7280")),
            ("ALIGN", (0, 0), (-1, -1), "RIGHT"),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 2),
        ]))
        elements.append(field_table)

        items_table = self._items_table(document, font, compact)
        if items_table is not None:
            elements.append(Spacer(1, 3 * mm))
            elements.append(items_table)

        if not compact and document.get("approvals"):
            elements.append(Spacer(1, 6 * mm))
            approvals = " | ".join(f"{k}: {v}" for k, v in document["approvals"].items())
            elements.append(Paragraph(escape(approvals), body_style))

        doc.build(elements)
        return buffer.getvalue()

    def _status_badge(self, label: str, status: str, font: str, compact: bool) -> Table:
        badge = Table([[label]], hAlign="RIGHT")
        badge.setStyle(TableStyle([
            ("FONTNAME", (0, 0), (-1, -1), font),
            ("FONTSIZE", (0, 0), (-1, -1), 8 if compact else 10),
            ("TEXTCOLOR", (0, 0), (-1, -1), colors.white),
            ("BACKGROUND", (0, 0), (-1, -1), STATUS_COLORS.get(status, PENDING_COLOR)),
            ("ALIGN", (0, 0), (-1, -1), "CENTER"),
        ]))
        return badge

    def _field_rows(self, document: dict) -> list[tuple[str, str]]:
        payload = document.get("payload") or {}
        rows = [
            ("درخواست کننده", document.get("requester", "")),
            ("تاریخ", document.get("date", "")),
            ("شرکت", document.get("company", "") or "-"),
        ]
        doc_type = document["doc_type"]
        if doc_type == DocumentType.PAYMENT.value:
            rows += [
                ("گیرنده", payload.get("payee", "")),
                ("مبلغ (ریال)", format_amount(payload.get("amount"))),
                ("بابت", payload.get("description", "")),
            ]
        elif doc_type == DocumentType.EXIT_PERMIT.value:
            rows += [
                ("گیرنده کالا", payload.get("recipient_name", "")),
                ("راننده", payload.get("driver_name", "") or "-"),
                ("پلاک", payload.get("plate_number", "") or "-"),
            ]
        else:
            rows += [
                ("تحویل گیرنده", payload.get("recipient_name", "") or "-"),
                ("مقصد", payload.get("destination", "") or "-"),
            ]
        if document.get("rejection_reason"):
            rows.append(("علت رد", document["rejection_reason"]))
        return rows

    def _items_table(self, document: dict, font: str, compact: bool) -> Optional[Table]:
        payload = document.get("payload") or {}
        doc_type = document["doc_type"]

        if doc_type == DocumentType.EXIT_PERMIT.value:
            items = payload.get("items") or [{
                "goods_name": payload.get("goods_name", ""),
                "carton_count": payload.get("carton_count", 0),
                "weight": payload.get("weight", 0),
            }]
            rows = [["وزن", "تعداد", "کالا"]] + [
                [str(i.get("weight", 0)), str(i.get("carton_count", 0)), i.get("goods_name", "")]
                for i in items
            ]
        elif doc_type in (DocumentType.BIJAK.value, DocumentType.RECEIPT.value):
            rows = [["وزن", "مقدار", "کالا"]] + [
                [str(i.get("weight", 0)), str(i.get("quantity", 0)), i.get("item_name", "")]
                for i in payload.get("items") or []
            ]
        else:
            return None

        table = Table(rows, hAlign="RIGHT", repeatRows=1)
        table.setStyle(TableStyle([
            ("FONTNAME", (0, 0), (-1, -1), font),
            ("FONTSIZE", (0, 0), (-1, -1), 7 if compact else 10),
            ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#e5e7eb")),
            ("GRID", (0, 0), (-1, -1), 0.5, colors.HexColor("#9ca3af")),
            ("ALIGN", (0, 0), (-1, -1), "CENTER"),
        ]))
        return table


# 全局单例
card_renderer = CardRenderer()
