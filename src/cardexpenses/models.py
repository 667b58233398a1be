from __future__ import annotations

import base64
import binascii
import datetime as dt
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping, Optional

from pydantic import BaseModel

from src.cardexpenses.errors import UnknownEntityError
from src.utils.time import isoformat_z


EXPENSE_CATEGORIES: tuple[str, ...] = (
    "VITTO",
    "COSTI DI BOLLO",
    "COMMISSIONE SMS",
    "CARBURANTE",
    "PRELIEVO",
    "COMMISSIONI DI PRELIEVO",
    "ACQUISTO MATERIALI",
    "NOLEGGIO MACCHINARI",
)
UNCATEGORIZED = "UNCATEGORIZED"

# Keys owned by the canonical row/report shapes; anything else is carried in `extra`.
ROW_KEYS = frozenset({"id", "date", "cardLabel", "movement", "amount", "category", "detailDescription", "attachment"})
REPORT_KEYS = frozenset({"id", "createdAt", "monthKey", "monthLabel", "rows", "closed", "savedAt"})


@dataclass(frozen=True)
class Attachment:
    name: str
    mime_type: str
    content: bytes = b""

    @property
    def is_image(self) -> bool:
        return self.mime_type.lower().startswith("image/")

    @property
    def is_pdf(self) -> bool:
        return self.mime_type.lower() == "application/pdf"

    def to_data_url(self) -> str:
        b64 = base64.b64encode(self.content).decode("ascii")
        return f"data:{self.mime_type or 'application/octet-stream'};base64,{b64}"

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "type": self.mime_type, "dataUrl": self.to_data_url()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> Optional["Attachment"]:
        if not data:
            return None
        name = str(data.get("name") or "")
        mime = str(data.get("type") or data.get("mimeType") or "")
        content = b""
        raw = data.get("bytes")
        if isinstance(raw, (bytes, bytearray)):
            content = bytes(raw)
        else:
            data_url = str(data.get("dataUrl") or "")
            header, _, payload = data_url.partition(",")
            if header.startswith("data:") and not mime:
                mime = header[5:].split(";", 1)[0]
            try:
                content = base64.b64decode(payload, validate=False)
            except (binascii.Error, ValueError):
                content = b""
        return cls(name=name, mime_type=mime, content=content)


@dataclass(frozen=True)
class ExpenseRow:
    id: str
    date: dt.datetime
    amount: Decimal  # expense negative, credit/reload positive
    card_label: str = ""
    movement: str = ""
    category: str = ""
    detail_description: str = ""
    attachment: Optional[Attachment] = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_expense(self) -> bool:
        return self.amount < 0

    def to_dict(self) -> dict[str, Any]:
        out = dict(self.extra)
        out.update(
            {
                "id": self.id,
                "date": isoformat_z(self.date),
                "cardLabel": self.card_label,
                "movement": self.movement,
                "amount": float(self.amount),
                "category": self.category,
                "detailDescription": self.detail_description,
                "attachment": self.attachment.to_dict() if self.attachment else None,
            }
        )
        return out


@dataclass(frozen=True)
class ExpenseReport:
    id: str
    created_at: dt.datetime
    month_key: str
    month_label: str
    rows: tuple[ExpenseRow, ...] = ()
    closed: bool = False
    saved_at: Optional[dt.datetime] = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    def row(self, row_id: str) -> ExpenseRow:
        for r in self.rows:
            if r.id == row_id:
                return r
        raise UnknownEntityError(f"Row {row_id} not found in report {self.id}")

    def to_dict(self) -> dict[str, Any]:
        out = dict(self.extra)
        out.update(
            {
                "id": self.id,
                "createdAt": isoformat_z(self.created_at),
                "monthKey": self.month_key,
                "monthLabel": self.month_label,
                "rows": [r.to_dict() for r in self.rows],
                "closed": self.closed,
            }
        )
        if self.saved_at is not None:
            out["savedAt"] = isoformat_z(self.saved_at)
        return out


@dataclass(frozen=True)
class RowView:
    """A row annotated with its parent report's month, for presentation."""

    row: ExpenseRow
    month_key: str
    month_label: str
    report_id: str = ""


class CardInfo(BaseModel):
    id: int
    last4: str
    holder_name: str
    status: str  # available|assigned


class MonthlySummary(BaseModel):
    month_key: str
    month_label: str
    report_count: int
    total_amount: Decimal
    total_expense_only: Decimal


class Totals(BaseModel):
    total_all: Decimal
    total_expenses: Decimal


class BalanceChain(BaseModel):
    month_key: str
    opening_balance: Decimal
    total_movements: Decimal
    closing_balance: Decimal


class CategoryTotal(BaseModel):
    category: str
    total: Decimal  # absolute value of the category's expenses


class ImportResult(BaseModel):
    file_name: str
    format_name: str
    report_id: str
    month_key: str
    month_label: str
    row_count: int
    total_all: Decimal
    total_expenses: Decimal
    committed: bool = False
