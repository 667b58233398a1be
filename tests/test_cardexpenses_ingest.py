from __future__ import annotations

import datetime as dt
import io
from decimal import Decimal
from pathlib import Path

import pytest
from openpyxl import Workbook

from src.cardexpenses.errors import IMPORT_FAILURE_MESSAGE, ImportFailure
from src.cardexpenses.importers import default_importers
from src.cardexpenses.importers.base import read_csv_rows, read_statement_rows
from src.cardexpenses.ingest import (
    build_draft_report,
    detect_importer,
    import_statement,
    import_statement_file,
    next_report_id,
)
from src.utils.time import UTC


CONTRACT_HEADERS = ["Data operazione", "Carta", "Descrizione", "Importo in euro"]


def _workbook_bytes(rows: list[list]) -> bytes:
    wb = Workbook()
    ws = wb.active
    for r in rows:
        ws.append(r)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def test_literal_row_is_ingested_exactly() -> None:
    imp = next(i for i in default_importers() if i.format_name == "card_movements")
    rows = imp.parse_rows(
        rows=[{"Data operazione": "05/03/2024", "Carta": "1234", "Descrizione": "RISTORANTE", "Importo in euro": "-45,50"}],
        id_prefix="r",
    )
    assert len(rows) == 1
    row = rows[0]
    assert row.id == "r-0"
    assert row.date == dt.datetime(2024, 3, 5, 0, 0, tzinfo=UTC)
    assert row.amount == Decimal("-45.5")
    assert row.card_label == "1234"
    assert row.movement == "RISTORANTE"
    assert row.category == ""
    assert row.attachment is None


def test_csv_fixture_detects_semicolon_and_degrades_bad_cells() -> None:
    content = Path("tests/fixtures/expenses/card_movements_sample.csv").read_text()
    headers, rows = read_csv_rows(content)
    assert headers == CONTRACT_HEADERS
    draft = import_statement(content.encode("utf-8"), file_name="card_movements_sample.csv")
    report = draft.report
    assert draft.format_name == "card_movements"
    assert [r.amount for r in report.rows] == [Decimal("-45.50"), Decimal("-60.00"), Decimal("1000.00"), Decimal("0")]
    assert [r.movement for r in report.rows] == ["RISTORANTE", "ENI STATION", "RICARICA", "COMMISSIONE SMS"]
    assert report.month_key == "2024-03"
    assert report.month_label == "marzo 2024"
    assert report.closed is False


def test_xlsx_import_keeps_native_cells(tmp_path: Path) -> None:
    content = _workbook_bytes(
        [
            CONTRACT_HEADERS + ["Note"],
            [dt.datetime(2024, 3, 5), 1234, "RISTORANTE", -45.5, "ignored"],
            ["07/03/2024", "1234", "ENI STATION", "-60,00", None],
            [None, None, None, None, None],
            [45363, 1234.0, "PRELIEVO ATM", -100, ""],
        ]
    )
    p = tmp_path / "movimenti.xlsx"
    p.write_bytes(content)
    draft = import_statement_file(p)
    rows = draft.report.rows
    assert len(rows) == 3
    assert rows[0].date == dt.datetime(2024, 3, 5, tzinfo=UTC)
    assert rows[0].card_label == "1234"
    assert rows[0].amount == Decimal("-45.5")
    assert rows[1].date == dt.datetime(2024, 3, 7, tzinfo=UTC)
    assert rows[2].date == dt.datetime(2024, 3, 12, tzinfo=UTC)
    assert rows[2].card_label == "1234"
    assert "Note" not in rows[0].extra
    summary = draft.summary()
    assert summary.row_count == 3
    assert summary.total_all == Decimal("-205.5")
    assert summary.total_expenses == Decimal("-205.5")
    assert summary.committed is False


def test_operator_month_overrides_row_dates() -> None:
    content = _workbook_bytes([CONTRACT_HEADERS, ["05/03/2024", "1234", "X", "-1,00"]])
    draft = import_statement(content, file_name="m.xlsx", month_key="2024-02")
    assert draft.report.month_key == "2024-02"
    assert draft.report.month_label == "febbraio 2024"


def test_invalid_operator_month_is_rejected() -> None:
    with pytest.raises(ValueError):
        import_statement(b"a;b\n1;2\n", file_name="x.csv", month_key="2024-13")


def test_unreadable_workbook_raises_import_failure() -> None:
    with pytest.raises(ImportFailure) as exc:
        read_statement_rows(b"PK\x03\x04 definitely not a zip", file_name="broken.xlsx")
    assert str(exc.value) == IMPORT_FAILURE_MESSAGE
    assert exc.value.file_name == "broken.xlsx"


def test_empty_file_raises_import_failure() -> None:
    with pytest.raises(ImportFailure):
        import_statement(b"", file_name="empty.csv")


def test_missing_file_raises_import_failure(tmp_path: Path) -> None:
    with pytest.raises(ImportFailure):
        import_statement_file(tmp_path / "missing.xlsx")


def test_unrelated_headers_raise_import_failure() -> None:
    with pytest.raises(ImportFailure):
        import_statement(b"Date,Amount,Merchant\n2024-03-05,-1,X\n", file_name="other.csv")


def test_headers_only_sheet_yields_empty_draft() -> None:
    content = _workbook_bytes([CONTRACT_HEADERS])
    draft = import_statement(content, file_name="blank.xlsx", now=dt.datetime(2024, 4, 10, tzinfo=UTC))
    assert draft.report.rows == ()
    assert draft.report.month_key == "2024-04"


def test_format_override() -> None:
    with pytest.raises(ValueError):
        detect_importer(CONTRACT_HEADERS, format_override="nope")
    assert detect_importer(["Carta"], format_override="card_movements").format_name == "card_movements"


def test_report_ids_are_unique_and_increasing() -> None:
    now = dt.datetime(2024, 3, 5, tzinfo=UTC)
    ids = [int(next_report_id(now)) for _ in range(5)]
    assert ids == sorted(ids)
    assert len(set(ids)) == 5


def test_build_draft_report_month_from_first_row() -> None:
    imp = default_importers()[0]
    rows = imp.parse_rows(
        rows=[
            {"Data operazione": "28/02/2024", "Importo in euro": "-1"},
            {"Data operazione": "01/03/2024", "Importo in euro": "-1"},
        ],
        id_prefix="p",
    )
    report = build_draft_report(rows, report_id="p")
    assert report.month_key == "2024-02"
    assert [r.id for r in report.rows] == ["p-0", "p-1"]
