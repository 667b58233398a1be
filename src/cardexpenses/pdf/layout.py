from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, TypeVar

from src.cardexpenses.pdf.writer import RGB, PdfImage, PdfPage


T = TypeVar("T")

LEFT_MARGIN = 24.0
BOTTOM_MARGIN = 40.0
LINE_HEIGHT = 14.0
HEADER_BAND_HEIGHT = 56.0
SUBTITLE_GAP = 20.0
CELL_PADDING = 3.0
BODY_FONT_SIZE = 8.0
HELVETICA_AVG_WIDTH = 0.52  # average glyph advance, as a fraction of the font size

WHITE: RGB = (255, 255, 255)
TEXT_GREY: RGB = (90, 90, 90)
RULE_GREY: RGB = (200, 200, 200)
HEADER_FILL: RGB = (242, 242, 242)


def text_width(text: str, size: float) -> float:
    return len(text) * size * HELVETICA_AVG_WIDTH


def truncate(text: str, max_width: float, size: float) -> str:
    text = " ".join(str(text or "").split())
    if text_width(text, size) <= max_width:
        return text
    keep = int(max_width / (size * HELVETICA_AVG_WIDTH)) - 3
    if keep <= 0:
        return ""
    return text[:keep].rstrip() + "..."


def lines_per_page(page_height: float, body_top: float, *, bottom_margin: float = BOTTOM_MARGIN, line_height: float = LINE_HEIGHT) -> int:
    return max(1, int((page_height - body_top - bottom_margin) // line_height))


def paginate(items: Sequence[T], per_page: int) -> list[list[T]]:
    """Split into page-sized chunks; an empty sequence still gives one (empty) page."""
    if not items:
        return [[]]
    return [list(items[i : i + per_page]) for i in range(0, len(items), per_page)]


@dataclass(frozen=True)
class PageHeader:
    title: str
    subtitles: tuple[str, ...] = ()
    band_color: RGB = (255, 122, 26)
    band_height: float = HEADER_BAND_HEIGHT
    logo: Optional[PdfImage] = None

    @property
    def body_top(self) -> float:
        return self.band_height + SUBTITLE_GAP + LINE_HEIGHT * (len(self.subtitles) + 1)

    def draw(self, page: PdfPage) -> float:
        page.fill_rect(0, 0, page.width, self.band_height, self.band_color)
        title_x = LEFT_MARGIN
        if self.logo is not None:
            h = self.band_height - 16
            w = h * self.logo.width / max(1, self.logo.height)
            page.image(self.logo, LEFT_MARGIN, 8, w, h)
            title_x += w + 12
        page.text(title_x, self.band_height / 2 + 6, self.title, size=16, rgb=WHITE)
        for i, line in enumerate(self.subtitles):
            page.text(LEFT_MARGIN, self.band_height + SUBTITLE_GAP + i * LINE_HEIGHT, line, size=9, rgb=TEXT_GREY)
        return self.body_top


def draw_footer(page: PdfPage, index: int, total: int, *, left_text: str = "") -> None:
    top = page.height - 28
    page.line(LEFT_MARGIN, top, page.width - LEFT_MARGIN, top, rgb=RULE_GREY)
    if left_text:
        page.text(LEFT_MARGIN, top + 14, left_text, size=7, rgb=TEXT_GREY)
    label = f"page {index}/{total}"
    page.text(page.width - LEFT_MARGIN - text_width(label, 8), top + 14, label, size=8, rgb=TEXT_GREY)


@dataclass(frozen=True)
class Column:
    title: str
    width: float
    align: str = "left"  # left|right


def _cell_x(col: Column, x: float, value: str, size: float) -> float:
    if col.align == "right":
        return x + col.width - CELL_PADDING - text_width(value, size)
    return x + CELL_PADDING


def draw_table_header(page: PdfPage, columns: Sequence[Column], top: float, *, x0: float = LEFT_MARGIN) -> None:
    total_w = sum(c.width for c in columns)
    page.fill_rect(x0, top - LINE_HEIGHT + 3, total_w, LINE_HEIGHT, HEADER_FILL)
    x = x0
    for col in columns:
        label = truncate(col.title, col.width - 2 * CELL_PADDING, BODY_FONT_SIZE)
        page.text(_cell_x(col, x, label, BODY_FONT_SIZE), top, label, size=BODY_FONT_SIZE)
        x += col.width


def draw_table_row(
    page: PdfPage,
    columns: Sequence[Column],
    cells: Sequence[str],
    top: float,
    *,
    x0: float = LEFT_MARGIN,
    fill: Optional[RGB] = None,
) -> None:
    if fill is not None:
        page.fill_rect(x0, top - LINE_HEIGHT + 3, sum(c.width for c in columns), LINE_HEIGHT, fill)
    x = x0
    for col, raw in zip(columns, cells):
        value = truncate(raw, col.width - 2 * CELL_PADDING, BODY_FONT_SIZE)
        if value:
            page.text(_cell_x(col, x, value, BODY_FONT_SIZE), top, value, size=BODY_FONT_SIZE)
        x += col.width
