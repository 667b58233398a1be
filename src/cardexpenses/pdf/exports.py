from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from src.cardexpenses.config import BrandingConfig
from src.cardexpenses.errors import AttachmentPreviewFailure
from src.cardexpenses.models import UNCATEGORIZED, Attachment, CardInfo, ExpenseRow, RowView
from src.cardexpenses.normalize import format_amount, format_date, month_label_from_key
from src.cardexpenses.pdf.images import prepare_image
from src.cardexpenses.pdf.layout import (
    LEFT_MARGIN,
    LINE_HEIGHT,
    WHITE,
    Column,
    PageHeader,
    draw_footer,
    draw_table_header,
    draw_table_row,
    lines_per_page,
    paginate,
    truncate,
)
from src.cardexpenses.pdf.writer import PAGE_LANDSCAPE, PAGE_PORTRAIT, PdfDocument, PdfImage, PdfPage
from src.cardexpenses.reports import ALL_MONTHS, ReportView, expense_totals_by_category
from src.cardexpenses.runtime import LazyHandle
from src.utils.time import format_local, utcnow


log = logging.getLogger(__name__)

EXPORT_KINDS = ("summary", "expenses")

SUMMARY_COLUMNS = (
    Column("Date", 58),
    Column("Month", 78),
    Column("Card", 64),
    Column("Movement", 150),
    Column("Category", 92),
    Column("Description", 150),
    Column("Amount", 70, align="right"),
    Column("Attachment", 90),
)
EXPENSES_COLUMNS = (
    Column("Expenses by category", 380),
    Column("Amount", 140, align="right"),
)
GRAND_TOTAL_LABEL = "GRAND TOTAL EXPENSES"
GRAND_TOTAL_FILL = (255, 243, 232)

# Attachment pages (portrait): two slots per page.
ATTACHMENT_BAND_HEIGHT = 44.0
SLOT_X = 30.0
SLOT_WIDTH = PAGE_PORTRAIT[0] - 2 * SLOT_X
SLOT_HEIGHT = 340.0
SLOT_TOPS = (70.0, 430.0)
SLOT_IMAGE_WIDTH = SLOT_WIDTH - 24
SLOT_IMAGE_HEIGHT = SLOT_HEIGHT - 58

PDF_PREVIEW_MESSAGE = "PDF preview unavailable: attached file recorded in the report"
UNSUPPORTED_PREVIEW_MESSAGE = "Attachment format not supported for preview"
PREVIEW_UNAVAILABLE_MESSAGE = "Preview unavailable"

LOGO_BOX = (140.0, 36.0)


@dataclass(frozen=True)
class ExportedDocument:
    file_name: str
    content: bytes
    page_count: int = 0


def output_file_name(kind: str, last4: str) -> str:
    if kind not in EXPORT_KINDS:
        raise ValueError(f"Unknown export kind {kind!r}; expected one of: {', '.join(EXPORT_KINDS)}")
    return f"{kind}-{last4}.pdf"


def month_filter_label(month_filter: str) -> str:
    if month_filter == ALL_MONTHS:
        return "all"
    return month_label_from_key(month_filter) or month_filter


def _card_line(card: CardInfo) -> str:
    return f"Card: ****{card.last4} - {card.holder_name}"


def _summary_header(view: ReportView, card: CardInfo, branding: BrandingConfig, logo: Optional[PdfImage]) -> PageHeader:
    return PageHeader(
        title=f"{branding.brand_name} · Expense report summary",
        subtitles=(
            _card_line(card),
            f"Month filter: {month_filter_label(view.month_filter)}",
            f"Opening balance: {format_amount(view.balance.opening_balance)}",
            f"Total movements: {format_amount(view.balance.total_movements)}",
            f"Closing balance: {format_amount(view.balance.closing_balance)}",
        ),
        band_color=branding.band_color,
        logo=logo,
    )


def _expenses_header(view: ReportView, card: CardInfo, branding: BrandingConfig, logo: Optional[PdfImage]) -> PageHeader:
    return PageHeader(
        title=f"{branding.brand_name} · Expenses only",
        subtitles=(
            _card_line(card),
            f"Month filter: {month_filter_label(view.month_filter)}",
            f"Total expenses: {format_amount(view.totals.total_expenses)}",
        ),
        band_color=branding.band_color,
        logo=logo,
    )


def table_rows_per_page(header: PageHeader, page_size: tuple[float, float]) -> int:
    # Column header sits at body_top; data rows start one line below.
    return lines_per_page(page_size[1], header.body_top + LINE_HEIGHT)


def _render_table(
    doc: PdfDocument,
    header: PageHeader,
    columns: tuple[Column, ...],
    rows: list[tuple[list[str], Optional[tuple[int, int, int]]]],
    page_size: tuple[float, float],
) -> None:
    per_page = table_rows_per_page(header, page_size)
    for chunk in paginate(rows, per_page):
        page = doc.new_page(page_size)
        top = header.draw(page)
        draw_table_header(page, columns, top)
        for cells, fill in chunk:
            top += LINE_HEIGHT
            draw_table_row(page, columns, cells, top, fill=fill)


def summary_cells(item: RowView) -> list[str]:
    row = item.row
    return [
        format_date(row.date),
        item.month_label or "-",
        row.card_label or "-",
        row.movement or "-",
        row.category or "-",
        row.detail_description or "-",
        format_amount(row.amount),
        row.attachment.name if row.attachment and row.attachment.name else "-",
    ]


def _draw_slot(doc: PdfDocument, page: PdfPage, row: ExpenseRow, att: Attachment, top: float) -> None:
    text_w = SLOT_WIDTH - 24
    page.stroke_rect(SLOT_X, top, SLOT_WIDTH, SLOT_HEIGHT)
    caption = f"{format_date(row.date)} · {row.category or UNCATEGORIZED} · {format_amount(row.amount)}"
    page.text(SLOT_X + 12, top + 18, truncate(caption, text_w, 10), size=10)
    page.text(SLOT_X + 12, top + 34, truncate(f"File: {att.name or '-'}", text_w, 10), size=10)

    if not att.is_image:
        message = PDF_PREVIEW_MESSAGE if att.is_pdf else UNSUPPORTED_PREVIEW_MESSAGE
        page.text(SLOT_X + 12, top + 62, message, size=11)
        return
    try:
        prepared = prepare_image(att.content, SLOT_IMAGE_WIDTH, SLOT_IMAGE_HEIGHT)
    except AttachmentPreviewFailure as e:
        log.warning("Attachment %r on row %s not rendered: %s", att.name, row.id, e)
        page.text(SLOT_X + 12, top + 62, f"{PREVIEW_UNAVAILABLE_MESSAGE}: {att.name or '-'}", size=11)
        return
    img = doc.add_image(prepared.jpeg, prepared.width, prepared.height)
    dx, dy, w, h = prepared.placement(SLOT_IMAGE_WIDTH, SLOT_IMAGE_HEIGHT)
    page.image(img, SLOT_X + 12 + dx, top + 46 + dy, w, h)


def render_attachment_pages(doc: PdfDocument, rows: list[RowView], branding: BrandingConfig) -> None:
    with_files = [(r.row, r.row.attachment) for r in rows if r.row.attachment is not None and r.row.attachment.content]
    for i in range(0, len(with_files), len(SLOT_TOPS)):
        page = doc.new_page(PAGE_PORTRAIT)
        page.fill_rect(0, 0, page.width, ATTACHMENT_BAND_HEIGHT, branding.band_color)
        page.text(LEFT_MARGIN, 28, f"{branding.brand_name} · Attachments", size=12, rgb=WHITE)
        for slot_top, (row, att) in zip(SLOT_TOPS, with_files[i : i + len(SLOT_TOPS)]):
            _draw_slot(doc, page, row, att, slot_top)


def _load_logo(doc: PdfDocument, logo: Optional[LazyHandle[Optional[bytes]]]) -> Optional[PdfImage]:
    content = logo.get() if logo is not None else None
    if not content:
        return None
    try:
        prepared = prepare_image(content, *LOGO_BOX, allow_rotation=False)
    except AttachmentPreviewFailure as e:
        log.warning("Logo not rendered: %s", e)
        return None
    return doc.add_image(prepared.jpeg, prepared.width, prepared.height)


def _finish(
    doc: PdfDocument,
    render: Callable[[], None],
    *,
    branding: BrandingConfig,
    now: Optional[dt.datetime],
    tz_name: Optional[str],
) -> bytes:
    try:
        render()
    except Exception:
        # Pages laid out so far are kept; the document is still closed and valid.
        log.exception("Export layout failed after %d page(s)", doc.page_count)
    stamp = format_local(now or utcnow(), tz_name=tz_name)
    footer_text = f"Generated by {branding.brand_name} · {stamp}"
    return doc.finalize(lambda page, i, n: draw_footer(page, i, n, left_text=footer_text))


def export_summary_pdf(
    view: ReportView,
    card: CardInfo,
    *,
    branding: Optional[BrandingConfig] = None,
    logo: Optional[LazyHandle[Optional[bytes]]] = None,
    include_attachments: bool = True,
    now: Optional[dt.datetime] = None,
    tz_name: Optional[str] = None,
) -> ExportedDocument:
    """Landscape table of every visible row, followed by attachment pages."""
    branding = branding or BrandingConfig()
    doc = PdfDocument()

    def render() -> None:
        header = _summary_header(view, card, branding, _load_logo(doc, logo))
        rows = [(summary_cells(item), None) for item in view.rows]
        _render_table(doc, header, SUMMARY_COLUMNS, rows, PAGE_LANDSCAPE)
        if include_attachments:
            render_attachment_pages(doc, view.rows, branding)

    content = _finish(doc, render, branding=branding, now=now, tz_name=tz_name)
    log.info("Summary export for card ****%s: %d rows, %d pages", card.last4, len(view.rows), doc.page_count)
    return ExportedDocument(file_name=output_file_name("summary", card.last4), content=content, page_count=doc.page_count)


def expenses_rows(view: ReportView) -> list[tuple[list[str], Optional[tuple[int, int, int]]]]:
    body: list[tuple[list[str], Optional[tuple[int, int, int]]]] = [
        ([f"Total {ct.category}", format_amount(-abs(ct.total))], None) for ct in expense_totals_by_category(view.rows)
    ]
    body.append(([GRAND_TOTAL_LABEL, format_amount(view.totals.total_expenses)], GRAND_TOTAL_FILL))
    return body


def export_expenses_pdf(
    view: ReportView,
    card: CardInfo,
    *,
    branding: Optional[BrandingConfig] = None,
    logo: Optional[LazyHandle[Optional[bytes]]] = None,
    now: Optional[dt.datetime] = None,
    tz_name: Optional[str] = None,
) -> ExportedDocument:
    """Portrait list of expense totals per category with a highlighted grand total."""
    branding = branding or BrandingConfig()
    doc = PdfDocument()

    def render() -> None:
        header = _expenses_header(view, card, branding, _load_logo(doc, logo))
        _render_table(doc, header, EXPENSES_COLUMNS, expenses_rows(view), PAGE_PORTRAIT)

    content = _finish(doc, render, branding=branding, now=now, tz_name=tz_name)
    log.info("Expenses export for card ****%s: %d pages", card.last4, doc.page_count)
    return ExportedDocument(file_name=output_file_name("expenses", card.last4), content=content, page_count=doc.page_count)


def export_document(kind: str, view: ReportView, card: CardInfo, **kwargs) -> ExportedDocument:
    if kind == "summary":
        return export_summary_pdf(view, card, **kwargs)
    if kind == "expenses":
        return export_expenses_pdf(view, card, **kwargs)
    raise ValueError(f"Unknown export kind {kind!r}; expected one of: {', '.join(EXPORT_KINDS)}")
