from __future__ import annotations

import csv
import io
import logging
from abc import ABC, abstractmethod
from pathlib import PurePath
from typing import Any, Iterable

from openpyxl import load_workbook

from src.cardexpenses.errors import ImportFailure
from src.cardexpenses.models import ExpenseRow


log = logging.getLogger(__name__)

WORKBOOK_SUFFIXES = {".xlsx", ".xlsm", ".xltx", ".xltm"}
TEXT_SUFFIXES = {".csv", ".tsv", ".txt"}


def sniff_dialect(sample: str) -> csv.Dialect:
    try:
        return csv.Sniffer().sniff(sample, delimiters=[",", "\t", ";", "|"])
    except csv.Error:
        class _D(csv.Dialect):
            delimiter = ";"
            quotechar = '"'
            doublequote = True
            skipinitialspace = True
            lineterminator = "\n"
            quoting = csv.QUOTE_MINIMAL

        return _D()


def read_csv_rows(content: str) -> tuple[list[str], list[dict[str, Any]]]:
    sample = content[:20000]
    dialect = sniff_dialect(sample)
    f = io.StringIO(content)
    reader = csv.DictReader(f, dialect=dialect)
    headers = [h.strip() for h in (reader.fieldnames or []) if h]
    rows: list[dict[str, Any]] = []
    for r in reader:
        row = {(k or "").strip(): (v or "").strip() for k, v in r.items() if k is not None}
        if any(row.values()):
            rows.append(row)
    return headers, rows


def read_xlsx_rows(content: bytes) -> tuple[list[str], list[dict[str, Any]]]:
    """
    Read the first worksheet: first row is the header, cells keep their native values
    (datetimes, numbers) and empty cells become "".
    """
    workbook = load_workbook(io.BytesIO(content), data_only=True, read_only=True)
    try:
        if not workbook.worksheets:
            return [], []
        sheet = workbook.worksheets[0]
        values = sheet.iter_rows(values_only=True)
        first = next(values, None)
        if first is None:
            return [], []
        headers = [str(h).strip() if h is not None else "" for h in first]
        rows: list[dict[str, Any]] = []
        for cells in values:
            if cells is None or all(c is None or (isinstance(c, str) and not c.strip()) for c in cells):
                continue
            row: dict[str, Any] = {}
            for h, v in zip(headers, cells):
                if h:
                    row[h] = "" if v is None else v
            rows.append(row)
        return [h for h in headers if h], rows
    finally:
        workbook.close()


def read_statement_rows(content: bytes, *, file_name: str) -> tuple[list[str], list[dict[str, Any]]]:
    """
    Decode a statement export (workbook or delimited text) into headers + dict rows.

    Any failure to open or decode the source is an ImportFailure.
    """
    if not content:
        raise ImportFailure(file_name=file_name)
    suffix = PurePath(file_name or "").suffix.lower()
    as_workbook = suffix in WORKBOOK_SUFFIXES or (suffix not in TEXT_SUFFIXES and content[:2] == b"PK")
    try:
        if as_workbook:
            return read_xlsx_rows(content)
        return read_csv_rows(content.decode("utf-8-sig", errors="ignore"))
    except Exception as e:
        log.warning("Could not decode statement %s: %s: %s", file_name, type(e).__name__, e)
        raise ImportFailure(file_name=file_name) from e


class StatementImporter(ABC):
    format_name: str

    @abstractmethod
    def detect(self, headers: Iterable[str]) -> bool: ...

    @abstractmethod
    def parse_rows(self, *, rows: list[dict[str, Any]], id_prefix: str) -> list[ExpenseRow]: ...
