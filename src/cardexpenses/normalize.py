from __future__ import annotations

import datetime as dt
import logging
import math
import re
from dataclasses import replace
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Optional

from src.cardexpenses.models import REPORT_KEYS, ROW_KEYS, Attachment, ExpenseReport, ExpenseRow
from src.utils.money import format_eur
from src.utils.time import UTC, ensure_utc, format_day, midnight_utc, parse_datetime, utcnow_ms


log = logging.getLogger(__name__)

# Spreadsheet date serials count days from this epoch (the 1900 leap-year bug is baked in).
SPREADSHEET_EPOCH = dt.datetime(1899, 12, 30, tzinfo=UTC)

_WS_RE = re.compile(r"\s+")
_DAY_FIRST_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{2}|\d{4})$")
_MONTH_KEY_RE = re.compile(r"^(\d{4})-(\d{2})$")
_TEXT_DATE_FORMATS = (
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y %H:%M:%S",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%Y/%m/%d",
    "%d %b %Y",
    "%d %B %Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%b %d %Y",
)
_MONTHS_IT = (
    "gennaio",
    "febbraio",
    "marzo",
    "aprile",
    "maggio",
    "giugno",
    "luglio",
    "agosto",
    "settembre",
    "ottobre",
    "novembre",
    "dicembre",
)
INVALID_MONTH_LABEL = "mese non valido"


def parse_amount(value: Any) -> Decimal:
    """
    Parse an it-IT formatted amount ("1.234,56 €", "-45,50") into a Decimal.

    Numbers pass through unchanged. Anything unparsable or non-finite yields 0.
    """
    if value is None or isinstance(value, bool):
        return Decimal("0")
    if isinstance(value, Decimal):
        return value if value.is_finite() else Decimal("0")
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value)) if math.isfinite(value) else Decimal("0")
    s = _WS_RE.sub("", str(value).replace("€", ""))
    s = s.replace(".", "").replace(",", ".")
    if not s:
        return Decimal("0")
    try:
        d = Decimal(s)
    except InvalidOperation:
        log.debug("Unparsable amount %r coerced to 0", value)
        return Decimal("0")
    return d if d.is_finite() else Decimal("0")


def _parse_generic_date(text: str) -> Optional[dt.datetime]:
    iso = parse_datetime(text)
    if iso is not None:
        try:
            return ensure_utc(iso)
        except (OverflowError, ValueError):
            log.debug("Date %r out of range in UTC", text)
            return None
    for fmt in _TEXT_DATE_FORMATS:
        try:
            return dt.datetime.strptime(text, fmt).replace(tzinfo=UTC)
        except ValueError:
            continue
    return None


def parse_date(raw: Any) -> dt.datetime:
    """
    Resolve any imported date cell to a UTC datetime; never raises.

    Order: date values, empty (now), spreadsheet serials, D/M/YYYY text, generic text, now.
    """
    if isinstance(raw, dt.datetime):
        try:
            return ensure_utc(raw)
        except (OverflowError, ValueError):
            log.debug("Date %r out of range in UTC; defaulting to now", raw)
            return utcnow_ms()
    if isinstance(raw, dt.date):
        return midnight_utc(raw)
    if raw is None or isinstance(raw, bool) or raw == "":
        return utcnow_ms()

    if isinstance(raw, (int, float, Decimal)):
        try:
            return SPREADSHEET_EPOCH + dt.timedelta(days=float(raw))
        except (OverflowError, ValueError):
            log.debug("Date serial %r out of range; defaulting to now", raw)
            return utcnow_ms()

    text = str(raw).strip()
    m = _DAY_FIRST_RE.match(text)
    if m:
        day, month, year_token = int(m.group(1)), int(m.group(2)), m.group(3)
        year = 2000 + int(year_token) if len(year_token) == 2 else int(year_token)
        try:
            return dt.datetime(year, month, day, tzinfo=UTC)
        except ValueError:
            pass
    parsed = _parse_generic_date(text)
    if parsed is not None:
        return parsed
    log.debug("Unparsable date %r; defaulting to now", raw)
    return utcnow_ms()


def format_amount(value: Any) -> str:
    return format_eur(value)


def format_date(value: Any) -> str:
    if value is None or value == "":
        return "-"
    if isinstance(value, dt.date):
        return format_day(value)
    parsed = parse_datetime(str(value))
    if parsed is None:
        return str(value)
    try:
        return format_day(parsed)
    except (OverflowError, ValueError):
        return str(value)


def is_valid_month_key(value: str) -> bool:
    m = _MONTH_KEY_RE.match(value or "")
    return bool(m) and 1 <= int(m.group(2)) <= 12


def month_key_from_date(value: Any) -> str:
    d = value if isinstance(value, dt.datetime) else parse_datetime(value)
    if d is None:
        return ""
    try:
        d = ensure_utc(d)
    except (OverflowError, ValueError):
        return ""
    return f"{d.year:04d}-{d.month:02d}"


def month_label_from_key(value: str) -> str:
    if not is_valid_month_key(value):
        return ""
    year, month = value.split("-")
    return f"{_MONTHS_IT[int(month) - 1]} {int(year)}"


def month_label_from_date(value: Any) -> str:
    key = month_key_from_date(value)
    return month_label_from_key(key) or INVALID_MONTH_LABEL


def month_start_label(month_key: str) -> str:
    if not month_key or month_key == "all":
        return "-"
    year, _, month = month_key.partition("-")
    if not year or not month:
        return "-"
    return f"01/{month}/{year}"


def normalize_row(row: ExpenseRow | Mapping[str, Any] | None) -> ExpenseRow:
    if isinstance(row, ExpenseRow):
        return replace(row, amount=parse_amount(row.amount), date=parse_date(row.date))
    data = row or {}
    attachment = data.get("attachment")
    if not isinstance(attachment, Attachment):
        attachment = Attachment.from_dict(attachment) if isinstance(attachment, Mapping) else None
    return ExpenseRow(
        id=str(data.get("id") or ""),
        date=parse_date(data.get("date")),
        amount=parse_amount(data.get("amount")),
        card_label=str(data.get("cardLabel") or ""),
        movement=str(data.get("movement") or ""),
        category=str(data.get("category") or ""),
        detail_description=str(data.get("detailDescription") or ""),
        attachment=attachment,
        extra={k: v for k, v in data.items() if k not in ROW_KEYS},
    )


def _resolve_month(
    month_key: str, month_label: str, rows: tuple[ExpenseRow, ...], created_at: dt.datetime
) -> tuple[str, str]:
    fallback = rows[0].date if rows else created_at
    key = month_key or month_key_from_date(fallback)
    label = month_label or month_label_from_key(key) or month_label_from_date(fallback)
    return key, label


def normalize_report(report: ExpenseReport | Mapping[str, Any] | None) -> ExpenseReport:
    """
    Bring a persisted or in-memory report to canonical form.

    An already-normalized report comes back equal to itself; `monthKey` is only derived
    when absent, so a stored key is never recomputed.
    """
    if isinstance(report, ExpenseReport):
        rows = tuple(normalize_row(r) for r in report.rows)
        created_at = parse_date(report.created_at)
        key, label = _resolve_month(report.month_key, report.month_label, rows, created_at)
        return replace(report, rows=rows, created_at=created_at, month_key=key, month_label=label)

    data = report if isinstance(report, Mapping) else {}
    raw_rows = data.get("rows")
    if not isinstance(raw_rows, (list, tuple)):
        raw_rows = []
    rows = tuple(normalize_row(r) for r in raw_rows if isinstance(r, (Mapping, ExpenseRow)))
    created_at = parse_date(data.get("createdAt"))
    key, label = _resolve_month(str(data.get("monthKey") or ""), str(data.get("monthLabel") or ""), rows, created_at)
    saved_raw = data.get("savedAt")
    return ExpenseReport(
        id=str(data.get("id") or ""),
        created_at=created_at,
        month_key=key,
        month_label=label,
        rows=rows,
        closed=bool(data.get("closed")),
        saved_at=parse_date(saved_raw) if saved_raw else None,
        extra={k: v for k, v in data.items() if k not in REPORT_KEYS},
    )


def normalize_reports(reports: Iterable[ExpenseReport | Mapping[str, Any]] | None) -> list[ExpenseReport]:
    if not reports or isinstance(reports, (str, bytes, Mapping)):
        return []
    out: list[ExpenseReport] = []
    for r in reports:
        if not isinstance(r, (Mapping, ExpenseReport)):
            log.debug("Skipping malformed stored report %r", r)
            continue
        out.append(normalize_report(r))
    return out
