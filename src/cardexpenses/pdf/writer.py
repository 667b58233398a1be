from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional


PAGE_PORTRAIT = (595.0, 842.0)  # A4, points
PAGE_LANDSCAPE = (842.0, 595.0)

RGB = tuple[int, int, int]

CATALOG_OBJ = 1
PAGES_OBJ = 2
FONT_OBJ = 3
FIRST_PAGE_OBJ = 4


def encode_text(text: str) -> bytes:
    """Encode for the WinAnsi Helvetica font and escape the string delimiters."""
    raw = str(text).encode("cp1252", errors="replace")
    return raw.replace(b"\\", b"\\\\").replace(b"(", b"\\(").replace(b")", b"\\)")


def _num(value: float) -> str:
    s = f"{float(value):.2f}".rstrip("0").rstrip(".")
    return s if s not in ("", "-0") else "0"


def _color(rgb: RGB) -> str:
    return " ".join(_num(c / 255.0) for c in rgb)


@dataclass
class PdfImage:
    name: str
    width: int
    height: int
    jpeg: bytes
    obj_id: int = 0


@dataclass
class PdfPage:
    """
    One page's drawing operations.

    Positions are given from the top-left corner (`top` grows downwards) and converted
    to PDF user space when the operation is recorded.
    """

    width: float
    height: float
    ops: list[bytes] = field(default_factory=list)
    images: list[str] = field(default_factory=list)

    def _y(self, top: float) -> float:
        return self.height - top

    def fill_rect(self, x: float, top: float, w: float, h: float, rgb: RGB) -> None:
        y = self._y(top) - h
        self.ops.append(f"q {_color(rgb)} rg {_num(x)} {_num(y)} {_num(w)} {_num(h)} re f Q".encode("ascii"))

    def stroke_rect(self, x: float, top: float, w: float, h: float, *, rgb: RGB = (210, 210, 210), width: float = 0.75) -> None:
        y = self._y(top) - h
        self.ops.append(
            f"q {_color(rgb)} RG {_num(width)} w {_num(x)} {_num(y)} {_num(w)} {_num(h)} re S Q".encode("ascii")
        )

    def line(self, x1: float, top1: float, x2: float, top2: float, *, rgb: RGB = (200, 200, 200), width: float = 0.5) -> None:
        self.ops.append(
            (
                f"q {_color(rgb)} RG {_num(width)} w {_num(x1)} {_num(self._y(top1))} m "
                f"{_num(x2)} {_num(self._y(top2))} l S Q"
            ).encode("ascii")
        )

    def text(self, x: float, top: float, value: str, *, size: float = 9, rgb: RGB = (0, 0, 0)) -> None:
        head = f"BT /F1 {_num(size)} Tf {_color(rgb)} rg {_num(x)} {_num(self._y(top))} Td (".encode("ascii")
        self.ops.append(head + encode_text(value) + b") Tj ET")

    def image(self, img: PdfImage, x: float, top: float, w: float, h: float) -> None:
        y = self._y(top) - h
        self.ops.append(f"q {_num(w)} 0 0 {_num(h)} {_num(x)} {_num(y)} cm /{img.name} Do Q".encode("ascii"))
        if img.name not in self.images:
            self.images.append(img.name)

    def content(self) -> bytes:
        return b"\n".join(self.ops) + b"\n"


FooterFn = Callable[[PdfPage, int, int], None]


class PdfDocument:
    """
    Minimal PDF 1.4 writer with a single Helvetica font.

    Pages are buffered until `finalize()`, which runs the footer callback with the final
    page count and then serializes catalog, page tree, font, and one page plus one content
    stream per page. Images are stored once as DCT (JPEG) XObjects and shared by name.
    """

    def __init__(self) -> None:
        self.pages: list[PdfPage] = []
        self.images: dict[str, PdfImage] = {}

    @property
    def page_count(self) -> int:
        return len(self.pages)

    @property
    def object_count(self) -> int:
        return 3 + 2 * len(self.pages) + len(self.images)

    def new_page(self, size: tuple[float, float] = PAGE_PORTRAIT) -> PdfPage:
        page = PdfPage(width=size[0], height=size[1])
        self.pages.append(page)
        return page

    def add_image(self, jpeg: bytes, width: int, height: int) -> PdfImage:
        name = f"Im{len(self.images) + 1}"
        img = PdfImage(name=name, width=int(width), height=int(height), jpeg=jpeg)
        self.images[name] = img
        return img

    def finalize(self, footer: Optional[FooterFn] = None) -> bytes:
        if not self.pages:
            self.new_page()
        total = len(self.pages)
        if footer is not None:
            for i, page in enumerate(self.pages, start=1):
                footer(page, i, total)

        next_id = FIRST_PAGE_OBJ + 2 * total
        for img in self.images.values():
            img.obj_id = next_id
            next_id += 1

        objects: dict[int, bytes] = {
            CATALOG_OBJ: f"<< /Type /Catalog /Pages {PAGES_OBJ} 0 R >>".encode("ascii"),
            FONT_OBJ: b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica /Encoding /WinAnsiEncoding >>",
        }
        kids = " ".join(f"{FIRST_PAGE_OBJ + 2 * i} 0 R" for i in range(total))
        objects[PAGES_OBJ] = f"<< /Type /Pages /Kids [{kids}] /Count {total} >>".encode("ascii")

        for i, page in enumerate(self.pages):
            page_id = FIRST_PAGE_OBJ + 2 * i
            content_id = page_id + 1
            xobjects = ""
            if page.images:
                refs = " ".join(f"/{n} {self.images[n].obj_id} 0 R" for n in page.images)
                xobjects = f" /XObject << {refs} >>"
            objects[page_id] = (
                f"<< /Type /Page /Parent {PAGES_OBJ} 0 R /MediaBox [0 0 {_num(page.width)} {_num(page.height)}] "
                f"/Resources << /Font << /F1 {FONT_OBJ} 0 R >>{xobjects} >> /Contents {content_id} 0 R >>"
            ).encode("ascii")
            objects[content_id] = _stream(b"", page.content())

        for img in self.images.values():
            head = (
                f"/Type /XObject /Subtype /Image /Width {img.width} /Height {img.height} "
                "/ColorSpace /DeviceRGB /BitsPerComponent 8 /Filter /DCTDecode"
            ).encode("ascii")
            objects[img.obj_id] = _stream(head, img.jpeg)

        return _serialize(objects)


def _stream(dict_body: bytes, data: bytes) -> bytes:
    sep = b" " if dict_body else b""
    return b"<< " + dict_body + sep + f"/Length {len(data)} >>\nstream\n".encode("ascii") + data + b"\nendstream"


def _serialize(objects: dict[int, bytes]) -> bytes:
    out = bytearray(b"%PDF-1.4\n%\xe2\xe3\xcf\xd3\n")
    offsets: dict[int, int] = {}
    for obj_id in sorted(objects):
        offsets[obj_id] = len(out)
        out += f"{obj_id} 0 obj\n".encode("ascii") + objects[obj_id] + b"\nendobj\n"

    # Object definitions number object_count (3 + 2 per page, plus images); /Size adds
    # xref entry 0, the free-list head.
    size = len(objects) + 1
    xref_at = len(out)
    out += f"xref\n0 {size}\n".encode("ascii")
    out += b"0000000000 65535 f \n"
    for obj_id in range(1, size):
        out += f"{offsets[obj_id]:010d} 00000 n \n".encode("ascii")
    out += f"trailer\n<< /Size {size} /Root {CATALOG_OBJ} 0 R >>\nstartxref\n{xref_at}\n%%EOF\n".encode("ascii")
    return bytes(out)
