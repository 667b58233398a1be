from __future__ import annotations

import datetime as dt
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from src.cardexpenses.errors import ImportFailure
from src.cardexpenses.importers import default_importers
from src.cardexpenses.importers.base import StatementImporter, read_statement_rows
from src.cardexpenses.models import ExpenseReport, ExpenseRow, ImportResult
from src.cardexpenses.normalize import is_valid_month_key, month_key_from_date, month_label_from_date, month_label_from_key
from src.cardexpenses.reports import totals
from src.utils.time import utcnow_ms


log = logging.getLogger(__name__)

_ID_LOCK = threading.Lock()
_LAST_STAMP = 0


def next_report_id(now: Optional[dt.datetime] = None) -> str:
    """Millisecond stamp of the import, bumped so ids stay unique and increasing within a process."""
    global _LAST_STAMP
    stamp = int((now or utcnow_ms()).timestamp() * 1000)
    with _ID_LOCK:
        if stamp <= _LAST_STAMP:
            stamp = _LAST_STAMP + 1
        _LAST_STAMP = stamp
    return str(stamp)


def detect_importer(headers: list[str], *, format_override: Optional[str] = None) -> StatementImporter:
    importers = default_importers()
    if format_override:
        for imp in importers:
            if imp.format_name == format_override:
                return imp
        raise ValueError(f"Unknown format: {format_override}")
    if not headers:
        # Blank sheet: nothing to map, the draft simply has no rows.
        return importers[0]
    for imp in importers:
        if imp.detect(headers):
            return imp
    log.warning("No importer recognises headers %s", headers[:8])
    raise ImportFailure()


def build_draft_report(
    rows: Sequence[ExpenseRow],
    *,
    report_id: str,
    created_at: Optional[dt.datetime] = None,
    month_key: Optional[str] = None,
) -> ExpenseReport:
    """
    Assemble an uncommitted report. The month is fixed here, once: the operator's choice
    when given, otherwise the first row's date, otherwise the import instant.
    """
    created = created_at or utcnow_ms()
    if month_key and not is_valid_month_key(month_key):
        raise ValueError(f"Invalid month {month_key!r}; expected YYYY-MM")
    report_date = rows[0].date if rows else created
    key = month_key or month_key_from_date(report_date)
    return ExpenseReport(
        id=report_id,
        created_at=created,
        month_key=key,
        month_label=month_label_from_key(key) or month_label_from_date(report_date),
        rows=tuple(rows),
        closed=False,
    )


@dataclass(frozen=True)
class DraftImport:
    report: ExpenseReport
    file_name: str
    format_name: str

    def summary(self, *, committed: bool = False) -> ImportResult:
        t = totals(self.report.rows)
        return ImportResult(
            file_name=self.file_name,
            format_name=self.format_name,
            report_id=self.report.id,
            month_key=self.report.month_key,
            month_label=self.report.month_label,
            row_count=len(self.report.rows),
            total_all=t.total_all,
            total_expenses=t.total_expenses,
            committed=committed,
        )


def import_statement(
    content: bytes,
    *,
    file_name: str,
    month_key: Optional[str] = None,
    format_name: Optional[str] = None,
    now: Optional[dt.datetime] = None,
) -> DraftImport:
    """
    Turn a statement export into a draft report. Only an unreadable source fails
    (ImportFailure); individual cells degrade to safe defaults.
    """
    if month_key and not is_valid_month_key(month_key):
        raise ValueError(f"Invalid month {month_key!r}; expected YYYY-MM")
    headers, raw_rows = read_statement_rows(content, file_name=file_name)
    importer = detect_importer(headers, format_override=format_name)
    created = now or utcnow_ms()
    report_id = next_report_id(created)
    rows = importer.parse_rows(rows=raw_rows, id_prefix=report_id)
    report = build_draft_report(rows, report_id=report_id, created_at=created, month_key=month_key)
    log.info("Parsed %s rows from %s (%s) into draft %s", len(rows), file_name, importer.format_name, report.month_key)
    return DraftImport(report=report, file_name=file_name, format_name=importer.format_name)


def import_statement_file(path: Path, *, month_key: Optional[str] = None, format_name: Optional[str] = None) -> DraftImport:
    try:
        content = path.read_bytes()
    except OSError as e:
        raise ImportFailure(file_name=path.name) from e
    return import_statement(content, file_name=path.name, month_key=month_key, format_name=format_name)
